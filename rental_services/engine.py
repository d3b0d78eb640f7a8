"""
rental_services.engine -- RentalEngine, the unit-of-work facade.

Responsibility:
    The single entry point a host application calls.  Each public method
    opens its own session, composes the kernel services it needs, commits,
    and only then talks to the outside world (notifier, payment gateway).

Architecture position:
    Services -- orchestration over the kernel.  Kernel services never
    commit; this facade owns every transaction boundary.

Invariants enforced:
    - One operation == one transaction.  A failure anywhere rolls back the
      whole operation, so no partial transition is ever visible.
    - Concurrency conflicts are retried with bounded, jittered backoff
      (``EngineConfig.max_retry_attempts`` / ``retry_backoff_seconds``).
    - Notifications and gateway calls run after commit.  Their failures are
      logged as ``notification_failed`` and never undo committed state.

Failure modes:
    - Every RentalEngineError raised by the kernel surfaces unchanged.
    - StorageError for unexpected database failures.
    - RuntimeError from create_payment_intent when no gateway is configured.

Usage:
    engine = RentalEngine.from_config(load_config("rental.yaml"))
    order = engine.place_order(caller, lines, coupon_code="SAVE10")
    engine.confirm(vendor_caller, order.id)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from rental_kernel.config import EngineConfig
from rental_kernel.db.engine import create_engine_from_url
from rental_kernel.domain.authorization import Action, Caller, authorize
from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.dtos import (
    AvailabilityInfo,
    CheckoutQuote,
    CouponPreview,
    DeliveryDetails,
    GatewayConfirmation,
    InvoiceInfo,
    OrderInfo,
    OrderLineRequest,
    PaymentInfo,
    PaymentIntent,
    PaymentResult,
    PickupInfo,
    ReservationInfo,
    ReturnResult,
)
from rental_kernel.domain.lifecycle import PAYABLE_INVOICE_STATUSES, OrderStatus
from rental_kernel.domain.values import Money
from rental_kernel.exceptions import InvalidAmountError, StateConflictError
from rental_kernel.logging_config import LogContext, configure_logging, get_logger
from rental_kernel.selectors.order_selector import OrderSelector
from rental_kernel.selectors.report_selector import ReportSelector
from rental_kernel.services.availability_service import AvailabilityService
from rental_kernel.services.invoice_service import InvoiceService
from rental_kernel.services.order_service import OrderService
from rental_kernel.services.pricing_service import PricingService
from rental_kernel.services.settings_service import SettingsService
from rental_services.interfaces import LoggingNotifier, Notifier, PaymentGateway
from rental_services.overdue_scanner import OverdueScanner, ScanResult
from rental_services.transaction import run_in_transaction

logger = get_logger("services.engine")

T = TypeVar("T")


class RentalEngine:
    """
    Facade over the rental kernel.

    Contract:
        Every method is safe to call concurrently from many threads; each
        call uses its own session from ``session_factory``.  Returned values
        are frozen DTOs detached from any session.

    Non-goals:
        - Does NOT schedule scans; see ``rental_batch.scheduler``.
        - Does NOT format reports; it returns rows for an exporter.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        gateway: PaymentGateway | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.config = config or EngineConfig()
        self.clock = clock or SystemClock()
        self.notifier = notifier or LoggingNotifier()
        self.gateway = gateway
        self.scanner = OverdueScanner(
            session_factory,
            self.notifier,
            clock=self.clock,
            config=self.config,
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        gateway: PaymentGateway | None = None,
    ) -> RentalEngine:
        """Build an engine with its own SQLAlchemy engine for ``config.database_url``."""
        configure_logging(level=config.log_level)
        db_engine = create_engine_from_url(config.database_url)
        factory = sessionmaker(bind=db_engine, expire_on_commit=False)
        return cls(factory, config=config, clock=clock, notifier=notifier, gateway=gateway)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[Session], T],
        caller: Caller | None = None,
    ) -> T:
        actor_id = caller.user_id if caller is not None else None
        with LogContext.bind(correlation_id=uuid4().hex, actor_id=actor_id):
            return run_in_transaction(
                self._session_factory,
                work,
                operation=operation,
                max_attempts=self.config.max_retry_attempts,
                backoff_seconds=self.config.retry_backoff_seconds,
            )

    def _orders(self, session: Session) -> OrderService:
        return OrderService(
            session,
            self.clock,
            default_tax_rate=self.config.tax_rate,
            default_late_fee_per_day=self.config.late_fee_per_day,
        )

    def _pricing(self, session: Session) -> PricingService:
        return PricingService(session, self.clock, default_tax_rate=self.config.tax_rate)

    def _invoices(self, session: Session) -> InvoiceService:
        return InvoiceService(session, self.clock)

    def _notify(self, event: str, send: Callable[..., Any], *args: Any) -> None:
        try:
            send(*args)
        except Exception:
            logger.exception("notification_failed", extra={"notification": event})

    # ------------------------------------------------------------------
    # Availability and pricing
    # ------------------------------------------------------------------

    def check_availability(
        self,
        product_id: UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> AvailabilityInfo:
        return self._run(
            "check_availability",
            lambda s: AvailabilityService(s, self.clock).check_availability(product_id, start, end),
        )

    def compute_checkout(
        self,
        lines: list[OrderLineRequest],
        coupon_code: str | None = None,
    ) -> CheckoutQuote:
        return self._run(
            "compute_checkout",
            lambda s: self._pricing(s).quote(lines, coupon_code),
        )

    def validate_coupon(self, coupon_code: str, amount: Money) -> CouponPreview:
        return self._run(
            "validate_coupon",
            lambda s: self._pricing(s).preview_coupon(coupon_code, amount),
        )

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_quotation(
        self,
        caller: Caller,
        customer_id: UUID,
        lines: list[OrderLineRequest],
        notes: str | None = None,
    ) -> OrderInfo:
        return self._run(
            "create_quotation",
            lambda s: self._orders(s).create_quotation(caller, customer_id, lines, notes),
            caller,
        )

    def place_order(
        self,
        caller: Caller,
        lines: list[OrderLineRequest],
        coupon_code: str | None = None,
        delivery: DeliveryDetails | None = None,
        notes: str | None = None,
    ) -> OrderInfo:
        return self._run(
            "place_order",
            lambda s: self._orders(s).place_order(caller, lines, coupon_code, delivery, notes),
            caller,
        )

    def checkout_cart(
        self,
        caller: Caller,
        lines: list[OrderLineRequest],
        coupon_code: str | None = None,
        delivery: DeliveryDetails | None = None,
    ) -> list[OrderInfo]:
        return self._run(
            "checkout_cart",
            lambda s: self._orders(s).checkout_cart(caller, lines, coupon_code, delivery),
            caller,
        )

    def submit_quotation(self, caller: Caller, order_id: UUID) -> OrderInfo:
        return self._run(
            "submit_quotation",
            lambda s: self._orders(s).submit_quotation(caller, order_id),
            caller,
        )

    def confirm(self, caller: Caller, order_id: UUID) -> OrderInfo:
        return self._run(
            "confirm",
            lambda s: self._orders(s).confirm(caller, order_id),
            caller,
        )

    def record_pickup(
        self,
        caller: Caller,
        order_id: UUID,
        notes: str | None = None,
    ) -> PickupInfo:
        def work(session: Session) -> tuple[OrderInfo, PickupInfo]:
            orders = self._orders(session)
            pickup = orders.record_pickup(caller, order_id, notes)
            return orders.get_order(caller, order_id), pickup

        order, pickup = self._run("record_pickup", work, caller)
        self._notify(
            "pickup_confirmation",
            self.notifier.send_pickup_confirmation,
            order,
            pickup,
        )
        return pickup

    def record_return(
        self,
        caller: Caller,
        order_id: UUID,
        damage_fee: Money | None = None,
        late_fee_override: Money | None = None,
        notes: str | None = None,
    ) -> ReturnResult:
        result = self._run(
            "record_return",
            lambda s: self._orders(s).record_return(
                caller, order_id, damage_fee, late_fee_override, notes
            ),
            caller,
        )
        record = result.return_record
        if record.late_fee.is_positive:
            self._notify(
                "late_return_alert",
                self.notifier.send_late_return_alert,
                result.order,
                record.delay_days,
                record.late_fee,
            )
        return result

    def cancel(self, caller: Caller, order_id: UUID, reason: str | None = None) -> OrderInfo:
        return self._run(
            "cancel",
            lambda s: self._orders(s).cancel(caller, order_id, reason),
            caller,
        )

    def get_order(self, caller: Caller, order_id: UUID) -> OrderInfo:
        return self._run(
            "get_order",
            lambda s: self._orders(s).get_order(caller, order_id),
            caller,
        )

    def list_orders(
        self,
        caller: Caller,
        status: OrderStatus | None = None,
        limit: int = 100,
    ) -> list[OrderInfo]:
        return self._run(
            "list_orders",
            lambda s: OrderSelector(s).list_orders(caller, status, limit),
            caller,
        )

    def list_reservations(self, caller: Caller, order_id: UUID) -> list[ReservationInfo]:
        return self._run(
            "list_reservations",
            lambda s: self._orders(s).list_reservations(caller, order_id),
            caller,
        )

    # ------------------------------------------------------------------
    # Invoices and payments
    # ------------------------------------------------------------------

    def create_invoice(self, caller: Caller, order_id: UUID) -> InvoiceInfo:
        return self._run(
            "create_invoice",
            lambda s: self._invoices(s).create_invoice(caller, order_id),
            caller,
        )

    def post_invoice(self, caller: Caller, invoice_id: UUID) -> InvoiceInfo:
        return self._run(
            "post_invoice",
            lambda s: self._invoices(s).post_invoice(caller, invoice_id),
            caller,
        )

    def record_payment(
        self,
        caller: Caller,
        invoice_id: UUID,
        amount: Money,
        method: str = "MANUAL",
    ) -> PaymentResult:
        return self._run(
            "record_payment",
            lambda s: self._invoices(s).record_payment(caller, invoice_id, amount, method),
            caller,
        )

    def confirm_gateway_payment(
        self,
        caller: Caller,
        invoice_id: UUID,
        confirmation: GatewayConfirmation,
    ) -> PaymentResult:
        """Verify a signed gateway confirmation and record it exactly once."""
        return self._run(
            "confirm_gateway_payment",
            lambda s: self._invoices(s).confirm_gateway_payment(
                caller, invoice_id, confirmation, self.config.payment_gateway_secret
            ),
            caller,
        )

    def create_payment_intent(
        self,
        caller: Caller,
        invoice_id: UUID,
        amount: Money | None = None,
    ) -> PaymentIntent:
        """
        Ask the gateway for a payment intent on an invoice.

        ``amount`` defaults to the outstanding balance.  The gateway is
        called after the authorization transaction has finished.
        """
        if self.gateway is None:
            raise RuntimeError("No payment gateway configured")

        def work(session: Session) -> InvoiceInfo:
            invoice = self._invoices(session).get_invoice(caller, invoice_id)
            authorize(caller, Action.PAY_INVOICE, invoice)
            if invoice.status not in PAYABLE_INVOICE_STATUSES:
                raise StateConflictError(
                    "Invoice",
                    str(invoice_id),
                    invoice.status.value,
                    "invoice must be posted before it can be paid",
                )
            return invoice

        invoice = self._run("create_payment_intent", work, caller)
        charge = amount if amount is not None else invoice.outstanding
        if not isinstance(charge, Money) or not charge.is_positive:
            raise InvalidAmountError(charge, "payment amount must be a positive Money value")

        intent = self.gateway.create_payment_intent(invoice, charge)
        with LogContext.bind(invoice_id=invoice.id):
            logger.info(
                "payment_intent_created",
                extra={
                    "gateway_order_id": intent.gateway_order_id,
                    "amount_minor": intent.amount_minor,
                },
            )
        return intent

    def get_invoice(self, caller: Caller, invoice_id: UUID) -> InvoiceInfo:
        return self._run(
            "get_invoice",
            lambda s: self._invoices(s).get_invoice(caller, invoice_id),
            caller,
        )

    def list_payments(self, caller: Caller, invoice_id: UUID) -> list[PaymentInfo]:
        return self._run(
            "list_payments",
            lambda s: self._invoices(s).list_payments(caller, invoice_id),
            caller,
        )

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def initialize_settings(self) -> int:
        return self._run(
            "initialize_settings",
            lambda s: SettingsService(s, self.clock).initialize_defaults(),
        )

    def update_setting(
        self,
        caller: Caller,
        key: str,
        value: Any,
        value_type: str = "string",
        category: str = "system",
    ) -> None:
        def work(session: Session) -> None:
            authorize(caller, Action.MANAGE_SETTINGS)
            SettingsService(session, self.clock).set(
                key, value, value_type, category, actor_id=caller.user_id
            )

        self._run("update_setting", work, caller)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def orders_report_rows(
        self,
        caller: Caller,
        start: datetime | None = None,
        end: datetime | None = None,
        vendor_id: UUID | None = None,
        status: OrderStatus | None = None,
    ) -> list[dict[str, Any]]:
        return self._run(
            "orders_report_rows",
            lambda s: ReportSelector(s).orders_report_rows(caller, start, end, vendor_id, status),
            caller,
        )

    def revenue_report_rows(
        self,
        caller: Caller,
        start: datetime | None = None,
        end: datetime | None = None,
        vendor_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        return self._run(
            "revenue_report_rows",
            lambda s: ReportSelector(s).revenue_report_rows(caller, start, end, vendor_id),
            caller,
        )

    def products_report_rows(
        self,
        caller: Caller,
        vendor_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        return self._run(
            "products_report_rows",
            lambda s: ReportSelector(s).products_report_rows(caller, vendor_id),
            caller,
        )

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def scan_reminders(self, now: datetime | None = None) -> ScanResult:
        return self.scanner.scan_reminders(now)

    def scan_overdue(self, now: datetime | None = None) -> ScanResult:
        return self.scanner.scan_overdue(now)
