"""
Module: rental_kernel.models.reservation
Responsibility: ORM persistence for stock holds.  The set of active
    reservations for a product is the only source of truth for availability.
Architecture position: Kernel > Models.

Invariants enforced:
    - One reservation per order item (uq_reservation_order_item), so a
      confirmation can never double-create holds.
    - Released reservations are kept, never deleted.
    - For every product and instant, the quantity of active reservations
      covering it never exceeds stock (enforced by AvailabilityService under
      the per-product compare-and-swap).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from rental_kernel.domain.lifecycle import ReservationStatus


class Reservation(TrackedBase):
    """Hold of ``quantity`` units of a product over ``[start_date, end_date)``."""

    __tablename__ = "reservations"

    __table_args__ = (
        UniqueConstraint("order_item_id", name="uq_reservation_order_item"),
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("idx_reservation_product_status", "product_id", "status"),
        Index("idx_reservation_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rental_orders.id"),
        nullable=False,
    )

    order_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("order_items.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    variant_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ReservationStatus.ACTIVE.value,
        nullable=False,
    )

    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<Reservation product={self.product_id} x{self.quantity} {self.status}>"
