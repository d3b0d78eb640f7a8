"""
Lifecycle domain types (``rental_kernel.domain.lifecycle``).

Responsibility
--------------
Status enums and transition tables for rental orders, reservations and
invoices, plus the pure guards the services call before touching storage.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Models import the
enums from here so the database and the state machine share one vocabulary.

Invariants enforced
-------------------
* ``ORDER_TRANSITIONS`` defines the only valid order status transitions.
  ``RETURNED`` and ``CANCELLED`` are terminal and have no outgoing edges.
* ``INVOICE_TRANSITIONS`` only moves forward; payments re-derive the status
  through ``derive_invoice_status``.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from rental_kernel.exceptions import IllegalTransitionError


class OrderStatus(str, Enum):
    """Rental order lifecycle states."""

    QUOTATION = "QUOTATION"
    RENTAL_ORDER = "RENTAL_ORDER"
    CONFIRMED = "CONFIRMED"
    PICKED_UP = "PICKED_UP"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.QUOTATION: frozenset({
        OrderStatus.RENTAL_ORDER,
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.RENTAL_ORDER: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.CONFIRMED: frozenset({
        OrderStatus.PICKED_UP,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.PICKED_UP: frozenset({OrderStatus.RETURNED}),
    OrderStatus.RETURNED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.RETURNED,
    OrderStatus.CANCELLED,
})

# Orders an invoice may be raised from
INVOICEABLE_ORDER_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.RENTAL_ORDER,
    OrderStatus.CONFIRMED,
    OrderStatus.PICKED_UP,
    OrderStatus.RETURNED,
})


class ReservationStatus(str, Enum):
    """Active reservations count against stock; released ones do not."""

    ACTIVE = "active"
    RELEASED = "released"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""

    DRAFT = "DRAFT"
    POSTED = "POSTED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


# Statuses that accept a manually registered payment
PAYABLE_INVOICE_STATUSES: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.POSTED,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.PAID,
})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """True when ``current -> target`` is in the transition table."""
    return target in ORDER_TRANSITIONS[OrderStatus(current)]


def assert_transition(order_id: object, current: OrderStatus, target: OrderStatus) -> None:
    """
    Guard an order transition.

    Raises:
        IllegalTransitionError: ``target`` is not reachable from ``current``.
            Repeating a transition (e.g. a second pickup) always lands here
            because no state has an edge to itself.
    """
    current = OrderStatus(current)
    target = OrderStatus(target)
    if not can_transition(current, target):
        raise IllegalTransitionError("RentalOrder", str(order_id), current.value, target.value)


def derive_invoice_status(
    current: InvoiceStatus,
    amount_paid: Decimal,
    total: Decimal,
) -> InvoiceStatus:
    """
    Status implied by the paid/total relationship.

    ``PAID`` iff paid >= total, ``PARTIALLY_PAID`` iff 0 < paid < total,
    otherwise the invoice keeps its POSTED status.  A DRAFT stays DRAFT:
    payments are only accepted once the invoice is posted.
    """
    current = InvoiceStatus(current)
    if current is InvoiceStatus.DRAFT:
        return current
    if amount_paid > 0 and amount_paid >= total:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.POSTED
