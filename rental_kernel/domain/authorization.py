"""
rental_kernel.domain.authorization -- the single order/invoice access policy.

Responsibility:
    Decide whether a caller (resolved by the host's authentication layer) may
    perform an action on an order-scoped resource.  The state machine, the
    reconciler and the report selectors all call ``authorize()``; no service
    branches on roles itself.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Identity resolution stays with the
    host; this module only sees ``Caller`` values.

Invariants:
    - Admins may do everything.
    - Vendor-side actions (confirm, pickup, return, posting, manual payment)
      require the vendor that owns the order.
    - The owning customer may only create and cancel their own orders, raise
      an invoice from them, and pay it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol
from uuid import UUID

from rental_kernel.exceptions import ForbiddenError


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"


class Action(str, Enum):
    CREATE_QUOTATION = "create_quotation"
    PLACE_ORDER = "place_order"
    VIEW_ORDER = "view_order"
    SUBMIT_QUOTATION = "submit_quotation"
    CONFIRM_ORDER = "confirm_order"
    RECORD_PICKUP = "record_pickup"
    RECORD_RETURN = "record_return"
    CANCEL_ORDER = "cancel_order"
    CREATE_INVOICE = "create_invoice"
    POST_INVOICE = "post_invoice"
    RECORD_PAYMENT = "record_payment"
    PAY_INVOICE = "pay_invoice"
    VIEW_REPORTS = "view_reports"
    MANAGE_SETTINGS = "manage_settings"


@dataclass(frozen=True)
class Caller:
    """Authenticated caller as resolved by the host."""

    user_id: UUID
    role: Role
    vendor_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role(self.role))
        if self.role is Role.VENDOR and self.vendor_id is None:
            raise ValueError("A VENDOR caller must carry a vendor_id")

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class OwnedResource(Protocol):
    customer_id: UUID
    vendor_id: UUID


@dataclass(frozen=True)
class ResourceScope:
    """Ownership of a resource that does not exist yet (e.g. a new quotation)."""

    customer_id: UUID | None = None
    vendor_id: UUID | None = None


# Who may attempt each action at all.  "owner" rules are applied afterwards.
_VENDOR_SIDE = frozenset({Role.VENDOR, Role.ADMIN})
_CUSTOMER_SIDE = frozenset({Role.CUSTOMER, Role.ADMIN})
_EVERYONE = frozenset(Role)

ACTION_ROLES: dict[Action, frozenset[Role]] = {
    Action.CREATE_QUOTATION: _VENDOR_SIDE,
    Action.PLACE_ORDER: _CUSTOMER_SIDE,
    Action.VIEW_ORDER: _EVERYONE,
    Action.SUBMIT_QUOTATION: _VENDOR_SIDE,
    Action.CONFIRM_ORDER: _VENDOR_SIDE,
    Action.RECORD_PICKUP: _VENDOR_SIDE,
    Action.RECORD_RETURN: _VENDOR_SIDE,
    Action.CANCEL_ORDER: _EVERYONE,
    Action.CREATE_INVOICE: _EVERYONE,
    Action.POST_INVOICE: _VENDOR_SIDE,
    Action.RECORD_PAYMENT: _VENDOR_SIDE,
    Action.PAY_INVOICE: _CUSTOMER_SIDE,
    Action.VIEW_REPORTS: _VENDOR_SIDE,
    Action.MANAGE_SETTINGS: frozenset({Role.ADMIN}),
}


def check_access(
    caller: Caller,
    action: Action,
    resource: OwnedResource | ResourceScope | None = None,
) -> tuple[bool, str]:
    """
    Returns:
        (allowed, reason).  reason is empty when allowed.
    """
    if caller.role not in ACTION_ROLES[action]:
        return (False, f"role {caller.role.value} may not {action.value}")
    if caller.is_admin or resource is None:
        return (True, "")

    vendor_id = getattr(resource, "vendor_id", None)
    customer_id = getattr(resource, "customer_id", None)

    if caller.role is Role.VENDOR:
        if vendor_id is not None and vendor_id != caller.vendor_id:
            return (False, "resource belongs to another vendor")
        return (True, "")

    if customer_id is not None and customer_id != caller.user_id:
        return (False, "resource belongs to another customer")
    return (True, "")


def authorize(
    caller: Caller,
    action: Action,
    resource: OwnedResource | ResourceScope | None = None,
) -> None:
    """
    Raises:
        ForbiddenError: when ``check_access`` denies the action.
    """
    allowed, reason = check_access(caller, action, resource)
    if not allowed:
        raise ForbiddenError(str(caller.user_id), action.value, reason)
