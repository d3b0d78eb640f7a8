"""Tests for catalog pricing and coupon previews."""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from rental_kernel.domain.values import Money
from rental_kernel.exceptions import CouponInvalidError, InvalidQuantityError, InvalidRangeError
from rental_kernel.models.coupon import Coupon
from rental_kernel.services.pricing_service import PricingService
from tests.conftest import RENTAL_START


@pytest.fixture
def pricing(session, clock):
    return PricingService(session, clock)


class TestQuote:
    def test_multi_line_quote(self, pricing, seed, line):
        quote = pricing.quote([line(seed.camera), line(seed.tripod, quantity=2)])

        assert quote.subtotal == Money("3500")
        assert quote.tax == Money("630")
        assert quote.deposit == Money("1000")
        assert quote.total == Money("5130")
        assert [l.rental_days for l in quote.lines] == [5, 5]

    def test_partial_day_rounds_up(self, pricing, seed, line):
        end = datetime(2025, 1, 5, 1, 0, tzinfo=timezone.utc)
        quote = pricing.quote([line(seed.tripod, start=RENTAL_START, end=end)])
        assert quote.lines[0].rental_days == 1
        assert quote.subtotal == Money("100")

    def test_fixed_coupon_can_push_total_negative(self, pricing, seed, line, captured_logs):
        quote = pricing.quote([line(seed.tripod)], coupon_code="FLAT5000")

        assert quote.discount == Money("5000")
        assert quote.total.is_negative
        assert any(r["message"] == "checkout_total_negative" for r in captured_logs())

    def test_quote_does_not_redeem(self, pricing, session, seed, line):
        pricing.quote([line(seed.tripod)], coupon_code="ONCE")
        second = pricing.quote([line(seed.tripod)], coupon_code="ONCE")

        assert second.discount == Money("25")
        used = session.execute(select(Coupon.used_count).where(Coupon.code == "ONCE")).scalar_one()
        assert used == 0

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_bad_quantity(self, pricing, seed, line, quantity):
        with pytest.raises(InvalidQuantityError):
            pricing.quote([line(seed.tripod, quantity=quantity)])

    def test_bad_range(self, pricing, seed, line):
        with pytest.raises(InvalidRangeError):
            pricing.quote([line(seed.tripod, start=RENTAL_START, end=RENTAL_START)])


class TestPreviewCoupon:
    def test_percent_capped(self, pricing):
        preview = pricing.preview_coupon("SAVE10", Money("6000"))
        assert preview.discount == Money("500")
        assert preview.final_amount == Money("5500")
        assert preview.discount_type == "percent"

    @pytest.mark.parametrize("code", ["NOPE", "EXPIRED", "   "])
    def test_invalid_codes(self, pricing, code):
        with pytest.raises(CouponInvalidError):
            pricing.preview_coupon(code, Money("6000"))
