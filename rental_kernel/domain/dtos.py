"""
DTOs -- immutable data that crosses the engine boundary.

Responsibility:
    Request shapes the host passes in (order lines, delivery details, gateway
    confirmations) and the frozen snapshots every service and selector
    returns instead of ORM entities.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked only from services and selectors, while the
    session that loaded the model is still open.

Invariants enforced:
    - Money fields are Money values, never raw Decimal or float.
    - Snapshots are frozen; mutating one never touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from rental_kernel.domain.lifecycle import InvoiceStatus, OrderStatus, ReservationStatus
from rental_kernel.domain.values import Money

if TYPE_CHECKING:
    from rental_kernel.models.fulfillment import Pickup, Return
    from rental_kernel.models.invoice import Invoice, Payment
    from rental_kernel.models.order import OrderItem, RentalOrder
    from rental_kernel.models.product import Product
    from rental_kernel.models.reservation import Reservation


# =========================================================================
# Requests
# =========================================================================


@dataclass(frozen=True)
class OrderLineRequest:
    """
    One requested line of a checkout or quotation.

    ``price_per_day`` overrides the catalog base price and is honoured only
    on vendor quotations.
    """

    product_id: UUID
    quantity: int
    start_date: datetime
    end_date: datetime
    variant_id: UUID | None = None
    price_per_day: Money | None = None


@dataclass(frozen=True)
class DeliveryDetails:
    method: str | None = None
    delivery_address: str | None = None
    billing_address: str | None = None


@dataclass(frozen=True)
class GatewayConfirmation:
    """
    Signed payment confirmation relayed from the gateway.

    ``amount_minor`` is in minor units (e.g. paise); ``signature`` is the
    hex HMAC-SHA256 of ``"{gateway_order_id}|{gateway_payment_id}"``.
    """

    gateway_order_id: str
    gateway_payment_id: str
    signature: str
    amount_minor: int
    method: str = "GATEWAY"


# =========================================================================
# Snapshots
# =========================================================================


@dataclass(frozen=True)
class ProductInfo:
    id: UUID
    vendor_id: UUID
    name: str
    base_price: Money
    security_deposit: Money
    stock_qty: int
    is_active: bool

    @classmethod
    def from_model(cls, model: Product) -> ProductInfo:
        return cls(
            id=model.id,
            vendor_id=model.vendor_id,
            name=model.name,
            base_price=Money(model.base_price),
            security_deposit=Money(model.security_deposit),
            stock_qty=model.stock_qty,
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class AvailabilityInfo:
    """Result of an availability check: ``available = max(0, total - booked)``."""

    product_id: UUID
    start_date: datetime
    end_date: datetime
    available: int
    booked: int
    total: int


@dataclass(frozen=True)
class QuoteLine:
    """A priced checkout line."""

    product_id: UUID
    vendor_id: UUID
    quantity: int
    start_date: datetime
    end_date: datetime
    rental_days: int
    unit_price: Money
    line_total: Money
    security_deposit: Money
    variant_id: UUID | None = None


@dataclass(frozen=True)
class CheckoutQuote:
    """
    Checkout amounts.

    Guarantees:
        ``total == subtotal + tax - discount + deposit``.  ``total`` can be
        negative only through a misconfigured fixed-amount coupon.
    """

    lines: tuple[QuoteLine, ...]
    subtotal: Money
    tax: Money
    discount: Money
    deposit: Money
    total: Money
    coupon_code: str | None = None


@dataclass(frozen=True)
class CouponPreview:
    code: str
    discount_type: str
    discount: Money
    final_amount: Money


@dataclass(frozen=True)
class OrderItemInfo:
    id: UUID
    line_number: int
    product_id: UUID
    variant_id: UUID | None
    quantity: int
    start_date: datetime
    end_date: datetime
    rental_days: int
    unit_price: Money
    line_total: Money
    security_deposit: Money

    @classmethod
    def from_model(cls, model: OrderItem) -> OrderItemInfo:
        return cls(
            id=model.id,
            line_number=model.line_number,
            product_id=model.product_id,
            variant_id=model.variant_id,
            quantity=model.quantity,
            start_date=model.start_date,
            end_date=model.end_date,
            rental_days=model.rental_days,
            unit_price=Money(model.unit_price),
            line_total=Money(model.line_total),
            security_deposit=Money(model.security_deposit),
        )


@dataclass(frozen=True)
class OrderInfo:
    """Frozen snapshot of a rental order and its items."""

    id: UUID
    order_number: str
    customer_id: UUID
    vendor_id: UUID
    status: OrderStatus
    subtotal: Money
    tax: Money
    discount: Money
    deposit: Money
    total: Money
    version: int
    items: tuple[OrderItemInfo, ...] = field(default_factory=tuple)
    coupon_code: str | None = None
    delivery_method: str | None = None
    delivery_address: str | None = None
    billing_address: str | None = None
    notes: str | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def earliest_end(self) -> datetime | None:
        if not self.items:
            return None
        return min(item.end_date for item in self.items)

    @classmethod
    def from_model(cls, model: RentalOrder) -> OrderInfo:
        return cls(
            id=model.id,
            order_number=model.order_number,
            customer_id=model.customer_id,
            vendor_id=model.vendor_id,
            status=OrderStatus(model.status),
            subtotal=Money(model.subtotal),
            tax=Money(model.tax),
            discount=Money(model.discount),
            deposit=Money(model.deposit),
            total=Money(model.total),
            version=model.version,
            items=tuple(OrderItemInfo.from_model(item) for item in model.items),
            coupon_code=model.coupon_code,
            delivery_method=model.delivery_method,
            delivery_address=model.delivery_address,
            billing_address=model.billing_address,
            notes=model.notes,
            confirmed_at=model.confirmed_at,
            cancelled_at=model.cancelled_at,
        )


@dataclass(frozen=True)
class ReservationInfo:
    id: UUID
    order_id: UUID
    order_item_id: UUID
    product_id: UUID
    quantity: int
    start_date: datetime
    end_date: datetime
    status: ReservationStatus
    released_at: datetime | None = None

    @classmethod
    def from_model(cls, model: Reservation) -> ReservationInfo:
        return cls(
            id=model.id,
            order_id=model.order_id,
            order_item_id=model.order_item_id,
            product_id=model.product_id,
            quantity=model.quantity,
            start_date=model.start_date,
            end_date=model.end_date,
            status=ReservationStatus(model.status),
            released_at=model.released_at,
        )


@dataclass(frozen=True)
class PickupInfo:
    id: UUID
    order_id: UUID
    picked_at: datetime
    notes: str | None = None

    @classmethod
    def from_model(cls, model: Pickup) -> PickupInfo:
        return cls(
            id=model.id,
            order_id=model.order_id,
            picked_at=model.picked_at,
            notes=model.notes,
        )


@dataclass(frozen=True)
class ReturnInfo:
    id: UUID
    order_id: UUID
    returned_at: datetime
    delay_days: int
    late_fee: Money
    damage_fee: Money
    notes: str | None = None

    @classmethod
    def from_model(cls, model: Return) -> ReturnInfo:
        return cls(
            id=model.id,
            order_id=model.order_id,
            returned_at=model.returned_at,
            delay_days=model.delay_days,
            late_fee=Money(model.late_fee),
            damage_fee=Money(model.damage_fee),
            notes=model.notes,
        )


@dataclass(frozen=True)
class PaymentInfo:
    id: UUID
    invoice_id: UUID
    amount: Money
    method: str
    status: str
    paid_at: datetime
    external_txn_id: str | None = None
    gateway_order_id: str | None = None

    @classmethod
    def from_model(cls, model: Payment) -> PaymentInfo:
        return cls(
            id=model.id,
            invoice_id=model.invoice_id,
            amount=Money(model.amount),
            method=model.method,
            status=model.status,
            paid_at=model.paid_at,
            external_txn_id=model.external_txn_id,
            gateway_order_id=model.gateway_order_id,
        )


@dataclass(frozen=True)
class InvoiceInfo:
    """Frozen snapshot of an invoice; ``outstanding`` may be negative on overpayment."""

    id: UUID
    invoice_number: str
    order_id: UUID
    vendor_id: UUID
    customer_id: UUID
    status: InvoiceStatus
    subtotal: Money
    tax: Money
    discount: Money
    deposit: Money
    late_fee: Money
    damage_fee: Money
    total: Money
    amount_paid: Money
    version: int
    posted_at: datetime | None = None

    @property
    def outstanding(self) -> Money:
        return self.total - self.amount_paid

    @classmethod
    def from_model(cls, model: Invoice) -> InvoiceInfo:
        return cls(
            id=model.id,
            invoice_number=model.invoice_number,
            order_id=model.order_id,
            vendor_id=model.vendor_id,
            customer_id=model.customer_id,
            status=InvoiceStatus(model.status),
            subtotal=Money(model.subtotal),
            tax=Money(model.tax),
            discount=Money(model.discount),
            deposit=Money(model.deposit),
            late_fee=Money(model.late_fee),
            damage_fee=Money(model.damage_fee),
            total=Money(model.total),
            amount_paid=Money(model.amount_paid),
            version=model.version,
            posted_at=model.posted_at,
        )


@dataclass(frozen=True)
class PaymentIntent:
    """What the gateway returned for a new payment intent."""

    gateway_order_id: str
    amount_minor: int
    invoice_id: UUID
    key_id: str | None = None


@dataclass(frozen=True)
class PaymentResult:
    """A recorded payment and the invoice as it stands afterwards."""

    payment: PaymentInfo
    invoice: InvoiceInfo


@dataclass(frozen=True)
class ReturnResult:
    """A recorded return, plus the invoice when fees were folded into one."""

    order: OrderInfo
    return_record: ReturnInfo
    invoice: InvoiceInfo | None = None
