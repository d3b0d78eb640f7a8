"""
OrderService -- the rental order state machine.

Responsibility:
    Creates quotations and checkout orders, and drives every status
    transition together with its side effects: reservations on confirm,
    the Pickup record, the Return record with its late fee, reservation
    release, and folding return fees into an existing invoice.

Architecture position:
    Kernel > Services.  Composes AvailabilityService, PricingService,
    InvoiceService and SettingsService inside the caller's transaction.

Invariants enforced:
    - Transitions follow ``domain.lifecycle.ORDER_TRANSITIONS``; RETURNED and
      CANCELLED are terminal.  Repeating a transition raises
      IllegalTransitionError and creates nothing.
    - Every status change is a conditional UPDATE keyed on the status and
      version this transaction read.  Side-effect rows are written only
      after that UPDATE won, so racing transitions cannot both create a
      Pickup, a Return or reservations.
    - Confirmation re-checks stock under the per-product claim
      (AvailabilityService.reserve_items), so confirmed orders never
      overbook a product.
    - Late fee = ceil(days past the earliest item end) × late_fee_per_day,
      never less than an operator-supplied override.

Failure modes:
    - OrderNotFoundError, ForbiddenError, IllegalTransitionError,
      StateConflictError, InsufficientStockError, CouponInvalidError,
      InvalidAmountError, ValidationError.
    - ConcurrencyConflictError when another transaction changed the order
      first (retryable).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rental_kernel.domain.authorization import Action, Caller, ResourceScope, authorize
from rental_kernel.domain.clock import Clock
from rental_kernel.domain.dtos import (
    CheckoutQuote,
    DeliveryDetails,
    OrderInfo,
    OrderLineRequest,
    PickupInfo,
    QuoteLine,
    ReservationInfo,
    ReturnInfo,
    ReturnResult,
)
from rental_kernel.domain.lifecycle import OrderStatus, assert_transition
from rental_kernel.domain.pricing import late_fee
from rental_kernel.domain.values import Money
from rental_kernel.exceptions import (
    ConcurrencyConflictError,
    IllegalTransitionError,
    InvalidAmountError,
    OrderNotFoundError,
    StateConflictError,
    ValidationError,
)
from rental_kernel.logging_config import LogContext, get_logger
from rental_kernel.models.fulfillment import Pickup, Return
from rental_kernel.models.order import OrderItem, RentalOrder
from rental_kernel.models.reservation import Reservation
from rental_kernel.services.availability_service import AvailabilityService
from rental_kernel.services.base import BaseService
from rental_kernel.services.invoice_service import InvoiceService
from rental_kernel.services.pricing_service import DEFAULT_TAX_RATE, PricingService
from rental_kernel.services.settings_service import LATE_FEE_PER_DAY, SettingsService
from rental_kernel.utils.generators import generate_order_number, generate_quotation_number

logger = get_logger("services.order")

DEFAULT_LATE_FEE_PER_DAY = Decimal("100")
DEFAULT_DELIVERY_METHOD = "standard"


def _group_by_vendor(lines: list[QuoteLine]) -> dict[UUID, list[QuoteLine]]:
    groups: dict[UUID, list[QuoteLine]] = {}
    for line in lines:
        groups.setdefault(line.vendor_id, []).append(line)
    return groups


class OrderService(BaseService):
    """
    Order state machine.

    Contract:
        Every public operation takes the acting ``Caller``, authorizes it
        through ``domain.authorization.authorize`` and returns DTOs.
        Notifications are not sent from here; the RentalEngine facade sends
        them after commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_tax_rate: Decimal = DEFAULT_TAX_RATE,
        default_late_fee_per_day: Decimal = DEFAULT_LATE_FEE_PER_DAY,
    ):
        super().__init__(session, clock)
        self._default_late_fee_per_day = default_late_fee_per_day
        self._availability = AvailabilityService(session, self.clock)
        self._pricing = PricingService(session, self.clock, default_tax_rate)
        self._invoices = InvoiceService(session, self.clock)
        self._settings = SettingsService(session, self.clock)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _get_order(self, order_id: UUID) -> RentalOrder:
        order = self.session.execute(
            select(RentalOrder)
            .where(RentalOrder.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def get_order(self, caller: Caller, order_id: UUID) -> OrderInfo:
        order = self._get_order(order_id)
        authorize(caller, Action.VIEW_ORDER, order)
        return OrderInfo.from_model(order)

    def list_reservations(self, caller: Caller, order_id: UUID) -> list[ReservationInfo]:
        order = self._get_order(order_id)
        authorize(caller, Action.VIEW_ORDER, order)
        rows = self.session.execute(
            select(Reservation)
            .where(Reservation.order_id == order_id)
            .order_by(Reservation.start_date)
            .execution_options(populate_existing=True)
        ).scalars()
        return [ReservationInfo.from_model(r) for r in rows]

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    def late_fee_per_day(self) -> Money:
        rate = self._settings.get_decimal(LATE_FEE_PER_DAY, self._default_late_fee_per_day)
        return Money.quantize(rate)

    def compute_late_fee(self, end: datetime, at: datetime) -> tuple[int, Money]:
        """``(delay_days, fee)`` for a return at ``at`` against deadline ``end``."""
        return late_fee(end, at, self.late_fee_per_day())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _create_order(
        self,
        caller: Caller,
        customer_id: UUID,
        vendor_id: UUID,
        quote: CheckoutQuote,
        status: OrderStatus,
        order_number: str,
        delivery: DeliveryDetails | None = None,
        notes: str | None = None,
    ) -> RentalOrder:
        delivery = delivery or DeliveryDetails()
        created_at = self._now()
        order = RentalOrder(
            order_number=order_number,
            customer_id=customer_id,
            vendor_id=vendor_id,
            status=status.value,
            subtotal=quote.subtotal.amount,
            tax=quote.tax.amount,
            discount=quote.discount.amount,
            deposit=quote.deposit.amount,
            total=quote.total.amount,
            coupon_code=quote.coupon_code,
            delivery_method=delivery.method or DEFAULT_DELIVERY_METHOD,
            delivery_address=delivery.delivery_address,
            billing_address=delivery.billing_address,
            notes=notes,
            version=0,
            created_at=created_at,
            created_by_id=caller.user_id,
        )
        for line_number, line in enumerate(quote.lines, start=1):
            order.items.append(
                OrderItem(
                    line_number=line_number,
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    quantity=line.quantity,
                    start_date=line.start_date,
                    end_date=line.end_date,
                    rental_days=line.rental_days,
                    unit_price=line.unit_price.amount,
                    line_total=line.line_total.amount,
                    security_deposit=line.security_deposit.amount,
                    created_at=created_at,
                    created_by_id=caller.user_id,
                )
            )
        self.session.add(order)
        self.session.flush()

        with LogContext.bind(order_id=order.id):
            logger.info(
                "order_created",
                extra={
                    "order_number": order.order_number,
                    "status": order.status,
                    "vendor_id": str(vendor_id),
                    "customer_id": str(customer_id),
                    "total": str(quote.total),
                    "item_count": len(quote.lines),
                },
            )
        return order

    def create_quotation(
        self,
        caller: Caller,
        customer_id: UUID,
        lines: list[OrderLineRequest],
        notes: str | None = None,
    ) -> OrderInfo:
        """
        Vendor/admin-drafted estimate.  No stock is held and no coupon applies.

        Lines may carry a ``price_per_day`` override of the catalog price.

        Raises:
            ValidationError: lines span more than one vendor.
            ForbiddenError: a vendor quoting another vendor's products.
            InsufficientStockError: a line does not fit right now.
        """
        authorize(caller, Action.CREATE_QUOTATION)
        priced = self._pricing.price_lines(lines, allow_price_override=True)
        groups = _group_by_vendor(priced)
        if len(groups) != 1:
            raise ValidationError("A quotation must contain products of a single vendor")
        (vendor_id,) = groups
        authorize(
            caller,
            Action.CREATE_QUOTATION,
            ResourceScope(customer_id=customer_id, vendor_id=vendor_id),
        )

        self._require_stock(priced)
        quote = self._pricing.quote_lines(priced)
        order = self._create_order(
            caller,
            customer_id,
            vendor_id,
            quote,
            OrderStatus.QUOTATION,
            generate_quotation_number(self._now()),
            notes=notes,
        )
        return OrderInfo.from_model(order)

    def _require_stock(self, priced: list[QuoteLine]) -> None:
        # Advisory only: stock is not held until confirmation
        for line in priced:
            self._availability.require_available(
                line.product_id, line.start_date, line.end_date, line.quantity
            )

    def _checkout_group(
        self,
        caller: Caller,
        vendor_id: UUID,
        priced: list[QuoteLine],
        coupon_code: str | None,
        delivery: DeliveryDetails | None,
        notes: str | None,
    ) -> RentalOrder:
        self._require_stock(priced)
        quote = self._pricing.quote_lines(priced, coupon_code)
        if quote.coupon_code is not None:
            self._pricing.redeem_coupon(quote.coupon_code, caller.user_id)

        return self._create_order(
            caller,
            caller.user_id,
            vendor_id,
            quote,
            OrderStatus.RENTAL_ORDER,
            generate_order_number(self._now()),
            delivery=delivery,
            notes=notes,
        )

    def place_order(
        self,
        caller: Caller,
        lines: list[OrderLineRequest],
        coupon_code: str | None = None,
        delivery: DeliveryDetails | None = None,
        notes: str | None = None,
    ) -> OrderInfo:
        """
        Customer checkout of a single vendor's products, in RENTAL_ORDER.

        Raises:
            ValidationError: lines span more than one vendor (use checkout_cart).
            InsufficientStockError: a line does not fit right now.
        """
        authorize(caller, Action.PLACE_ORDER)
        priced = self._pricing.price_lines(lines)
        groups = _group_by_vendor(priced)
        if len(groups) != 1:
            raise ValidationError("Order lines span several vendors; use checkout_cart")
        (vendor_id,) = groups
        order = self._checkout_group(caller, vendor_id, priced, coupon_code, delivery, notes)
        return OrderInfo.from_model(order)

    def checkout_cart(
        self,
        caller: Caller,
        lines: list[OrderLineRequest],
        coupon_code: str | None = None,
        delivery: DeliveryDetails | None = None,
    ) -> list[OrderInfo]:
        """
        Place one RENTAL_ORDER per vendor found in the cart.

        The coupon is evaluated and redeemed against each vendor's order
        separately.  All orders are created in the caller's transaction, so
        one failing group fails the whole cart.
        """
        authorize(caller, Action.PLACE_ORDER)
        priced = self._pricing.price_lines(lines)
        orders = [
            self._checkout_group(caller, vendor_id, group, coupon_code, delivery, None)
            for vendor_id, group in _group_by_vendor(priced).items()
        ]
        logger.info(
            "cart_checked_out",
            extra={"order_count": len(orders), "actor_id": str(caller.user_id)},
        )
        return [OrderInfo.from_model(order) for order in orders]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        order: RentalOrder,
        target: OrderStatus,
        actor_id: UUID,
        **values,
    ) -> None:
        """
        Move ``order`` to ``target`` with a conditional UPDATE.

        Raises:
            IllegalTransitionError: not reachable from the current status.
            ConcurrencyConflictError: status or version changed since read.
        """
        current = OrderStatus(order.status)
        assert_transition(order.id, current, target)
        observed = order.version
        result = self.session.execute(
            update(RentalOrder)
            .where(
                RentalOrder.id == order.id,
                RentalOrder.status == current.value,
                RentalOrder.version == observed,
            )
            .values(
                status=target.value,
                version=observed + 1,
                updated_by_id=actor_id,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "order_transition_conflict",
                extra={
                    "order_id": str(order.id),
                    "from_status": current.value,
                    "to_status": target.value,
                    "observed_version": observed,
                },
            )
            raise ConcurrencyConflictError("RentalOrder", str(order.id))
        self.session.refresh(order)

        with LogContext.bind(order_id=order.id):
            logger.info(
                "order_status_changed",
                extra={
                    "from_status": current.value,
                    "to_status": target.value,
                    "version": order.version,
                },
            )

    def submit_quotation(self, caller: Caller, order_id: UUID) -> OrderInfo:
        """QUOTATION -> RENTAL_ORDER."""
        order = self._get_order(order_id)
        authorize(caller, Action.SUBMIT_QUOTATION, order)
        self._transition(order, OrderStatus.RENTAL_ORDER, caller.user_id)
        return OrderInfo.from_model(order)

    def confirm(self, caller: Caller, order_id: UUID) -> OrderInfo:
        """
        QUOTATION/RENTAL_ORDER -> CONFIRMED, creating one active reservation
        per item.

        Raises:
            IllegalTransitionError: the order is not awaiting confirmation.
            InsufficientStockError: an item no longer fits; nothing is held.
        """
        order = self._get_order(order_id)
        authorize(caller, Action.CONFIRM_ORDER, order)
        now = self._now()
        self._transition(order, OrderStatus.CONFIRMED, caller.user_id, confirmed_at=now)
        self._availability.reserve_items(order.id, list(order.items), caller.user_id)
        return OrderInfo.from_model(order)

    def record_pickup(
        self,
        caller: Caller,
        order_id: UUID,
        notes: str | None = None,
    ) -> PickupInfo:
        """
        CONFIRMED -> PICKED_UP, creating exactly one Pickup.

        Raises:
            IllegalTransitionError: already picked up, or not confirmed.
        """
        order = self._get_order(order_id)
        authorize(caller, Action.RECORD_PICKUP, order)
        assert_transition(order.id, OrderStatus(order.status), OrderStatus.PICKED_UP)
        if self._find_pickup(order.id) is not None:
            raise IllegalTransitionError(
                "RentalOrder", str(order.id), order.status, OrderStatus.PICKED_UP.value
            )

        now = self._now()
        self._transition(order, OrderStatus.PICKED_UP, caller.user_id)
        pickup = Pickup(order_id=order.id, picked_at=now, notes=notes, created_by_id=caller.user_id)
        self.session.add(pickup)
        self.session.flush()

        with LogContext.bind(order_id=order.id):
            logger.info("pickup_recorded", extra={"picked_at": now})
        return PickupInfo.from_model(pickup)

    def _find_pickup(self, order_id: UUID) -> Pickup | None:
        return self.session.execute(
            select(Pickup).where(Pickup.order_id == order_id)
        ).scalar_one_or_none()

    def _find_return(self, order_id: UUID) -> Return | None:
        return self.session.execute(
            select(Return).where(Return.order_id == order_id)
        ).scalar_one_or_none()

    def record_return(
        self,
        caller: Caller,
        order_id: UUID,
        damage_fee: Money | None = None,
        late_fee_override: Money | None = None,
        notes: str | None = None,
    ) -> ReturnResult:
        """
        PICKED_UP -> RETURNED.

        Creates exactly one Return whose late fee is the larger of the
        computed fee (against the earliest item end date) and
        ``late_fee_override``; releases the order's reservations; adds the
        late and damage fee to the order's invoice if it already has one.
        """
        damage_fee = damage_fee or Money.zero()
        late_fee_override = late_fee_override or Money.zero()
        for fee in (damage_fee, late_fee_override):
            if not isinstance(fee, Money) or fee.is_negative:
                raise InvalidAmountError(fee, "fees must be non-negative Money values")

        order = self._get_order(order_id)
        authorize(caller, Action.RECORD_RETURN, order)
        assert_transition(order.id, OrderStatus(order.status), OrderStatus.RETURNED)
        if self._find_pickup(order.id) is None:
            raise StateConflictError(
                "RentalOrder", str(order.id), order.status, "no pickup has been recorded"
            )
        if self._find_return(order.id) is not None:
            raise IllegalTransitionError(
                "RentalOrder", str(order.id), order.status, OrderStatus.RETURNED.value
            )

        now = self._now()
        end = order.earliest_end or now
        delay_days, computed_fee = self.compute_late_fee(end, now)
        charged_fee = max(computed_fee, late_fee_override)

        self._transition(order, OrderStatus.RETURNED, caller.user_id)
        return_record = Return(
            order_id=order.id,
            returned_at=now,
            delay_days=delay_days,
            late_fee=charged_fee.amount,
            damage_fee=damage_fee.amount,
            notes=notes,
            created_by_id=caller.user_id,
        )
        self.session.add(return_record)
        self.session.flush()

        self._availability.release_order(order.id, now, caller.user_id)
        invoice = self._invoices.apply_return_fees(order.id, charged_fee, damage_fee, caller.user_id)

        with LogContext.bind(order_id=order.id):
            logger.info(
                "return_recorded",
                extra={
                    "delay_days": delay_days,
                    "computed_late_fee": str(computed_fee),
                    "late_fee": str(charged_fee),
                    "damage_fee": str(damage_fee),
                    "invoice_updated": invoice is not None,
                },
            )
        return ReturnResult(
            order=OrderInfo.from_model(order),
            return_record=ReturnInfo.from_model(return_record),
            invoice=invoice,
        )

    def cancel(self, caller: Caller, order_id: UUID, reason: str | None = None) -> OrderInfo:
        """
        QUOTATION/RENTAL_ORDER/CONFIRMED -> CANCELLED, releasing any reservations.
        """
        order = self._get_order(order_id)
        authorize(caller, Action.CANCEL_ORDER, order)
        now = self._now()
        self._transition(
            order,
            OrderStatus.CANCELLED,
            caller.user_id,
            cancelled_at=now,
            cancellation_reason=reason,
        )
        self._availability.release_order(order.id, now, caller.user_id)
        return OrderInfo.from_model(order)
