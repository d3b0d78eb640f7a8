"""
Module: rental_kernel.models.order
Responsibility: ORM persistence for rental orders and their line items.
Architecture position: Kernel > Models.  May import from db/ and the
    lifecycle enums in domain/.

Invariants enforced:
    - order_number is unique (uq_order_number).
    - status changes only through OrderService, each one a conditional
      UPDATE on (status, version); version increases by exactly one per change.
    - Order items are immutable after creation; end_date > start_date and
      quantity > 0 are check constraints.
    - reminder_sent_at / overdue_alert_sent_at are written at most once per
      successful notification; they are the durable dedup markers for the
      scanner.

Failure modes:
    - IntegrityError on duplicate order numbers or invalid item rows.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rental_kernel.db.base import MoneyAmount, TrackedBase, UTCDateTime, UUIDString
from rental_kernel.domain.lifecycle import OrderStatus


class RentalOrder(TrackedBase):
    """
    One checkout (or one vendor's share of a cart checkout).

    Contract:
        Never deleted, only cancelled.  Money columns are snapshots taken at
        creation and are not recomputed when catalog prices change.
    """

    __tablename__ = "rental_orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_order_number"),
        Index("idx_order_status", "status"),
        Index("idx_order_vendor", "vendor_id"),
        Index("idx_order_customer", "customer_id"),
    )

    order_number: Mapped[str] = mapped_column(String(40), nullable=False)

    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=OrderStatus.QUOTATION.value,
        nullable=False,
    )

    subtotal: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    tax: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    discount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    deposit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    total: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    coupon_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    delivery_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    billing_address: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Durable scanner markers
    reminder_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    overdue_alert_sent_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        order_by="OrderItem.line_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<RentalOrder {self.order_number}: {self.status}>"

    @property
    def earliest_end(self) -> datetime | None:
        """Earliest item end date; the deadline used for reminders and late fees."""
        if not self.items:
            return None
        return min(item.end_date for item in self.items)


class OrderItem(TrackedBase):
    """A product rented for one interval at a snapshotted price."""

    __tablename__ = "order_items"

    __table_args__ = (
        UniqueConstraint("order_id", "line_number", name="uq_order_item_line"),
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
        CheckConstraint("end_date > start_date", name="ck_order_item_interval"),
        Index("idx_order_item_product", "product_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rental_orders.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    variant_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    rental_days: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    line_total: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    security_deposit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    order: Mapped[RentalOrder] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem {self.line_number} x{self.quantity}>"
