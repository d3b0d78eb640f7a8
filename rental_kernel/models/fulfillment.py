"""
Module: rental_kernel.models.fulfillment
Responsibility: ORM persistence for the pickup and return records created by
    the PICKED_UP and RETURNED transitions.
Architecture position: Kernel > Models.

Invariants enforced:
    - At most one Pickup and one Return per order (unique order_id), so a
      repeated or racing transition cannot create a second record.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import MoneyAmount, TrackedBase, UTCDateTime, UUIDString


class Pickup(TrackedBase):
    __tablename__ = "pickups"

    __table_args__ = (UniqueConstraint("order_id", name="uq_pickup_order"),)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rental_orders.id"),
        nullable=False,
    )

    picked_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)


class Return(TrackedBase):
    """Return record; late_fee is the fee actually charged (never below the computed fee)."""

    __tablename__ = "order_returns"

    __table_args__ = (UniqueConstraint("order_id", name="uq_return_order"),)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rental_orders.id"),
        nullable=False,
    )

    returned_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    delay_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    late_fee: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    damage_fee: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)
