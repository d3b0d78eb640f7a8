"""
PricingService -- checkout quotes and coupon redemption.

Responsibility:
    Loads products, coupons and the tax rate, and hands them to the pure
    formulas in ``domain.pricing``.  Also owns the atomic coupon redemption
    performed when an order is placed.

Architecture position:
    Kernel > Services.  Called by OrderService at checkout and by the
    RentalEngine facade for quote/coupon previews.

Invariants enforced:
    - Quotes are deterministic: identical inputs (and settings) always
      produce identical Money outputs.
    - Coupon codes are matched after ``strip().upper()``.
    - ``used_count`` never exceeds ``usage_limit``: redemption is a
      conditional UPDATE.

Failure modes:
    - InvalidRangeError / InvalidQuantityError / ProductNotFoundError for
      malformed lines.
    - ValidationError / InvalidAmountError for a price override outside a
      quotation or a negative override.
    - CouponInvalidError for an unknown or inapplicable coupon, or one that
      was exhausted by a concurrent checkout.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from rental_kernel.domain.availability import validate_range
from rental_kernel.domain.clock import Clock
from rental_kernel.domain.dtos import CheckoutQuote, CouponPreview, OrderLineRequest, QuoteLine
from rental_kernel.domain.pricing import (
    CouponTerms,
    DiscountType,
    checkout_totals,
    evaluate_coupon,
    normalize_coupon_code,
    price_line,
)
from rental_kernel.domain.values import Money
from rental_kernel.exceptions import (
    CouponInvalidError,
    InvalidAmountError,
    InvalidQuantityError,
    ValidationError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.models.coupon import Coupon
from rental_kernel.services.availability_service import AvailabilityService
from rental_kernel.services.base import BaseService
from rental_kernel.services.settings_service import TAX_RATE, SettingsService

logger = get_logger("services.pricing")

DEFAULT_TAX_RATE = Decimal("0.18")


def _optional_money(value: Decimal | None) -> Money | None:
    return None if value is None else Money(value)


def coupon_terms(coupon: Coupon) -> CouponTerms:
    return CouponTerms(
        code=coupon.code,
        discount_type=DiscountType(coupon.discount_type),
        discount_value=coupon.discount_value,
        is_active=coupon.is_active,
        valid_from=coupon.valid_from,
        valid_until=coupon.valid_until,
        used_count=coupon.used_count,
        usage_limit=coupon.usage_limit,
        min_order_amount=_optional_money(coupon.min_order_amount),
        max_discount=_optional_money(coupon.max_discount),
    )


class PricingService(BaseService):
    """
    Checkout pricing.

    Contract:
        ``quote`` and ``preview_coupon`` are read-only.  ``redeem_coupon``
        writes and must run in the same transaction as the order insert.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_tax_rate: Decimal = DEFAULT_TAX_RATE,
    ):
        super().__init__(session, clock)
        self._default_tax_rate = default_tax_rate
        self._settings = SettingsService(session, self.clock)
        self._availability = AvailabilityService(session, self.clock)

    def tax_rate(self) -> Decimal:
        return self._settings.get_decimal(TAX_RATE, self._default_tax_rate)

    def _daily_price(self, line: OrderLineRequest, base_price: Money, allow_override: bool) -> Money:
        if line.price_per_day is None:
            return base_price
        if not allow_override:
            raise ValidationError("Price overrides are only accepted on quotations")
        if not isinstance(line.price_per_day, Money) or line.price_per_day.is_negative:
            raise InvalidAmountError(line.price_per_day, "price_per_day must be a non-negative Money value")
        return line.price_per_day

    def price_lines(
        self,
        lines: list[OrderLineRequest],
        allow_price_override: bool = False,
    ) -> list[QuoteLine]:
        """Validate and price each line against the catalog."""
        if not lines:
            raise ValidationError("At least one order line is required")
        priced = []
        for line in lines:
            validate_range(line.start_date, line.end_date)
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
                raise InvalidQuantityError(line.quantity)
            product = self._availability.get_product(line.product_id, require_active=True)
            daily = self._daily_price(line, Money(product.base_price), allow_price_override)
            price = price_line(daily, line.quantity, line.start_date, line.end_date)
            priced.append(
                QuoteLine(
                    product_id=product.id,
                    vendor_id=product.vendor_id,
                    quantity=line.quantity,
                    start_date=line.start_date,
                    end_date=line.end_date,
                    rental_days=price.days,
                    unit_price=price.unit_price,
                    line_total=price.line_total,
                    security_deposit=Money(product.security_deposit) * line.quantity,
                    variant_id=line.variant_id,
                )
            )
        return priced

    def _load_coupon(self, code: str) -> Coupon:
        coupon = self.session.execute(
            select(Coupon)
            .where(Coupon.code == code)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if coupon is None:
            raise CouponInvalidError(code, "coupon not found")
        return coupon

    def coupon_discount(self, coupon_code: str, subtotal: Money, now: datetime) -> tuple[str, Money]:
        code = normalize_coupon_code(coupon_code)
        if code is None:
            raise CouponInvalidError(str(coupon_code), "coupon code is empty")
        coupon = self._load_coupon(code)
        return code, evaluate_coupon(coupon_terms(coupon), subtotal, now)

    def quote_lines(self, priced: list[QuoteLine], coupon_code: str | None = None) -> CheckoutQuote:
        subtotal = Money.total(line.line_total for line in priced)
        code = None
        discount = Money.zero()
        if normalize_coupon_code(coupon_code) is not None:
            code, discount = self.coupon_discount(coupon_code, subtotal, self._now())

        totals = checkout_totals(
            [line.line_total for line in priced],
            [line.security_deposit for line in priced],
            self.tax_rate(),
            discount,
        )
        if totals.is_negative:
            logger.warning(
                "checkout_total_negative",
                extra={
                    "coupon_code": code,
                    "subtotal": str(totals.subtotal),
                    "discount": str(totals.discount),
                    "total": str(totals.total),
                },
            )
        return CheckoutQuote(
            lines=tuple(priced),
            subtotal=totals.subtotal,
            tax=totals.tax,
            discount=totals.discount,
            deposit=totals.deposit,
            total=totals.total,
            coupon_code=code,
        )

    def quote(self, lines: list[OrderLineRequest], coupon_code: str | None = None) -> CheckoutQuote:
        """Compute subtotal, tax, discount, deposit and total for the lines."""
        return self.quote_lines(self.price_lines(lines), coupon_code)

    def preview_coupon(self, coupon_code: str, amount: Money) -> CouponPreview:
        """Discount a coupon would grant on ``amount`` (no redemption)."""
        code = normalize_coupon_code(coupon_code)
        if code is None:
            raise CouponInvalidError(str(coupon_code), "coupon code is empty")
        coupon = self._load_coupon(code)
        discount = evaluate_coupon(coupon_terms(coupon), amount, self._now())
        return CouponPreview(
            code=code,
            discount_type=coupon.discount_type,
            discount=discount,
            final_amount=amount - discount,
        )

    def redeem_coupon(self, coupon_code: str, actor_id: UUID) -> None:
        """
        Count one use of the coupon.

        Raises:
            CouponInvalidError: the usage limit was reached by another
                checkout since the quote was computed.
        """
        code = normalize_coupon_code(coupon_code)
        result = self.session.execute(
            update(Coupon)
            .where(
                Coupon.code == code,
                or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
            )
            .values(used_count=Coupon.used_count + 1, updated_by_id=actor_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise CouponInvalidError(str(code), "coupon usage limit reached")
        logger.info("coupon_redeemed", extra={"coupon_code": code})
