"""
Module: rental_kernel.models.invoice
Responsibility: ORM persistence for invoices and their append-only payments.
Architecture position: Kernel > Models.

Invariants enforced:
    - One invoice per order (uq_invoice_order).
    - amount_paid never decreases; it always equals the sum of the invoice's
      payments.  Every change goes through a compare-and-swap on version.
    - status always matches the paid/total relationship
      (see domain.lifecycle.derive_invoice_status).
    - A gateway transaction id is recorded at most once (uq_payment_external_txn).
    - Payments are append-only: never updated, never deleted.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rental_kernel.db.base import MoneyAmount, TrackedBase, UTCDateTime, UUIDString
from rental_kernel.domain.lifecycle import InvoiceStatus

PAYMENT_STATUS_COMPLETED = "COMPLETED"


class Invoice(TrackedBase):
    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoice_number"),
        UniqueConstraint("order_id", name="uq_invoice_order"),
        Index("idx_invoice_vendor", "vendor_id"),
        Index("idx_invoice_customer", "customer_id"),
    )

    invoice_number: Mapped[str] = mapped_column(String(40), nullable=False)

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("rental_orders.id"),
        nullable=False,
    )

    vendor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT.value,
        nullable=False,
    )

    subtotal: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    tax: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    discount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    deposit: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    late_fee: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    damage_fee: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    total: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    posted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    payments: Mapped[list["Payment"]] = relationship(
        back_populates="invoice",
        order_by="Payment.paid_at",
    )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}: {self.status} {self.amount_paid}/{self.total}>"


class Payment(TrackedBase):
    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("external_txn_id", name="uq_payment_external_txn"),
        Index("idx_payment_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(MoneyAmount(), nullable=False)

    method: Mapped[str] = mapped_column(String(30), nullable=False)

    # NULLs never collide under the unique constraint
    external_txn_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PAYMENT_STATUS_COMPLETED,
        nullable=False,
    )

    paid_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="payments")
