"""
Pricing -- pure checkout, coupon, tax and late-fee arithmetic.

Responsibility:
    Every money formula the engine applies, expressed over Money values so
    the services only load inputs and persist outputs.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Time is always passed
    in; nothing here reads a clock.

Invariants enforced:
    - ``rental_days`` rounds any partial day up and is never below 1.
    - ``unit_price = base_price × days`` and ``line_total = unit_price × qty``.
    - Percent coupons: ``subtotal × pct / 100`` rounded after the multiply,
      then capped at ``max_discount`` when one is set.
    - Fixed coupons are never capped at the subtotal.  A misconfigured fixed
      coupon can drive the order total negative; ``CheckoutTotals`` exposes
      ``is_negative`` so callers can flag it.
    - ``total = subtotal + tax - discount + deposit``; the deposit is never
      discounted.
    - Late fee: ``ceil((returned_at - end) / 1 day)`` clamped at 0, times the
      per-day rate.

Failure modes:
    - CouponInvalidError when a coupon is inactive, outside its validity
      window, exhausted, or the subtotal is below its minimum.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from rental_kernel.domain.values import Money
from rental_kernel.exceptions import CouponInvalidError, InvalidQuantityError

ONE_DAY = timedelta(days=1)


class DiscountType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


def _ceil_days(delta: timedelta) -> int:
    whole, remainder = divmod(delta, ONE_DAY)
    return whole + (1 if remainder else 0)


def rental_days(start: datetime, end: datetime) -> int:
    """Billable days for ``[start, end)``: partial days round up, minimum 1."""
    return max(1, _ceil_days(end - start))


@dataclass(frozen=True)
class LinePrice:
    days: int
    unit_price: Money
    line_total: Money


def price_line(base_price: Money, quantity: int, start: datetime, end: datetime) -> LinePrice:
    """Price one order line from the per-day base price."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(quantity)
    days = rental_days(start, end)
    unit_price = base_price * days
    return LinePrice(days=days, unit_price=unit_price, line_total=unit_price * quantity)


def compute_tax(subtotal: Money, rate: Decimal) -> Money:
    """Flat-rate tax rounded to the cent after the multiply."""
    return subtotal * Decimal(rate)


def normalize_coupon_code(code: str | None) -> str | None:
    if code is None:
        return None
    normalized = code.strip().upper()
    return normalized or None


@dataclass(frozen=True)
class CouponTerms:
    """
    Snapshot of a coupon row, detached from the session.

    ``usage_limit`` of None means unlimited; ``min_order_amount`` and
    ``max_discount`` of None mean "not set".
    """

    code: str
    discount_type: DiscountType
    discount_value: Decimal
    is_active: bool
    valid_from: datetime
    valid_until: datetime
    used_count: int = 0
    usage_limit: int | None = None
    min_order_amount: Money | None = None
    max_discount: Money | None = None


def evaluate_coupon(terms: CouponTerms, subtotal: Money, now: datetime) -> Money:
    """
    Discount the coupon grants on ``subtotal`` at ``now``.

    Raises:
        CouponInvalidError: with the first failing reason.
    """
    if not terms.is_active:
        raise CouponInvalidError(terms.code, "coupon is not active")
    if now < terms.valid_from or now > terms.valid_until:
        raise CouponInvalidError(terms.code, "coupon is outside its validity window")
    if terms.usage_limit is not None and terms.used_count >= terms.usage_limit:
        raise CouponInvalidError(terms.code, "coupon usage limit reached")
    if terms.min_order_amount is not None and subtotal < terms.min_order_amount:
        raise CouponInvalidError(
            terms.code,
            f"minimum order amount {terms.min_order_amount} required",
        )

    if DiscountType(terms.discount_type) is DiscountType.PERCENT:
        discount = subtotal.percent(terms.discount_value)
        if terms.max_discount is not None and discount > terms.max_discount:
            discount = terms.max_discount
        return discount
    return Money(terms.discount_value)


@dataclass(frozen=True)
class CheckoutTotals:
    subtotal: Money
    tax: Money
    discount: Money
    deposit: Money
    total: Money

    @property
    def is_negative(self) -> bool:
        return self.total.is_negative


def checkout_totals(
    line_totals: list[Money],
    deposits: list[Money],
    tax_rate: Decimal,
    discount: Money | None = None,
) -> CheckoutTotals:
    subtotal = Money.total(line_totals)
    tax = compute_tax(subtotal, tax_rate)
    discount = discount or Money.zero()
    deposit = Money.total(deposits)
    return CheckoutTotals(
        subtotal=subtotal,
        tax=tax,
        discount=discount,
        deposit=deposit,
        total=subtotal + tax - discount + deposit,
    )


def late_delay_days(end: datetime, returned_at: datetime) -> int:
    """Whole or partial days past ``end``; 0 when returned on time."""
    if returned_at <= end:
        return 0
    return _ceil_days(returned_at - end)


def late_fee(end: datetime, returned_at: datetime, per_day_rate: Money) -> tuple[int, Money]:
    """Return ``(delay_days, fee)``."""
    days = late_delay_days(end, returned_at)
    return days, per_day_rate * days
