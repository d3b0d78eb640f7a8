"""
Module: rental_kernel.models.coupon
Responsibility: ORM persistence for discount coupons.
Architecture position: Kernel > Models.

Invariants enforced:
    - code is unique and stored upper-cased.
    - used_count <= usage_limit when a limit is set; redemption is a
      conditional UPDATE so concurrent checkouts cannot exceed it.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import MoneyAmount, TrackedBase, UTCDateTime
from rental_kernel.domain.pricing import DiscountType


class Coupon(TrackedBase):
    __tablename__ = "coupons"

    __table_args__ = (UniqueConstraint("code", name="uq_coupon_code"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    discount_type: Mapped[str] = mapped_column(
        String(10),
        default=DiscountType.PERCENT.value,
        nullable=False,
    )

    # Percent points for PERCENT, an amount for FIXED
    discount_value: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    min_order_amount: Mapped[Decimal | None] = mapped_column(MoneyAmount(), nullable=True)
    max_discount: Mapped[Decimal | None] = mapped_column(MoneyAmount(), nullable=True)

    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    valid_from: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    valid_until: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Coupon {self.code} {self.used_count}/{self.usage_limit}>"
