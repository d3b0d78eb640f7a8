"""
Module: rental_kernel.models.product
Responsibility: ORM persistence for rentable products as the engine reads them
    from the catalog.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - stock_qty >= 0 (check constraint).
    - reservation_version only increases; every confirmation that reserves
      units of this product bumps it with a compare-and-swap, which
      serializes confirmations per product.

Failure modes:
    - IntegrityError on negative stock or prices.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import MoneyAmount, TrackedBase, UUIDString


class Product(TrackedBase):
    """
    A rentable item owned by a vendor.

    Contract:
        Catalog CRUD lives outside the engine; the engine reads price, stock,
        ownership and the active flag, and writes only reservation_version.
    """

    __tablename__ = "products"

    __table_args__ = (
        CheckConstraint("stock_qty >= 0", name="ck_product_stock_non_negative"),
        Index("idx_product_vendor", "vendor_id"),
    )

    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )

    # Price per rental day
    base_price: Mapped[Decimal] = mapped_column(
        MoneyAmount(),
        nullable=False,
    )

    hourly_rate: Mapped[Decimal | None] = mapped_column(
        MoneyAmount(),
        nullable=True,
    )

    # Refundable deposit charged per unit
    security_deposit: Mapped[Decimal] = mapped_column(
        MoneyAmount(),
        default=Decimal("0"),
        nullable=False,
    )

    stock_qty: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    reservation_version: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Product {self.name} stock={self.stock_qty}>"
