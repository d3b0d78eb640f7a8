"""
InvoiceService -- invoices derived from orders, reconciled against payments.

Responsibility:
    Creates the single invoice of an order, posts it, records manual and
    gateway-confirmed payments, and folds return fees into an existing
    invoice.  After every change the invoice status is re-derived from the
    paid/total relationship.

Architecture position:
    Kernel > Services.  Called by the RentalEngine facade and by
    OrderService (return fees).

Invariants enforced:
    - One invoice per order: checked up front, backed by uq_invoice_order.
    - amount_paid equals the sum of recorded payments.  Every write to an
      invoice row is a compare-and-swap on ``version`` after a row lock, so
      concurrent payments on one invoice serialize without lost updates.
    - status == derive_invoice_status(amount_paid, total) after every write.
    - A gateway confirmation is recorded only after its HMAC signature
      verifies, and at most once per gateway payment id.
    - Payments are append-only.

Failure modes:
    - DuplicateInvoiceError, DuplicatePaymentError.
    - PaymentVerificationFailedError (nothing is written).
    - IllegalTransitionError when posting a non-DRAFT invoice.
    - StateConflictError when invoicing an ineligible order or paying an
      unposted invoice.
    - InvalidAmountError for non-positive payments or negative fees.
    - ConcurrencyConflictError when the version moved under us (retryable).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from rental_kernel.domain.authorization import Action, Caller, authorize
from rental_kernel.domain.dtos import (
    GatewayConfirmation,
    InvoiceInfo,
    PaymentInfo,
    PaymentResult,
)
from rental_kernel.domain.lifecycle import (
    INVOICEABLE_ORDER_STATUSES,
    PAYABLE_INVOICE_STATUSES,
    InvoiceStatus,
    OrderStatus,
    derive_invoice_status,
)
from rental_kernel.domain.signatures import verify_confirmation
from rental_kernel.domain.values import Money
from rental_kernel.exceptions import (
    ConcurrencyConflictError,
    DuplicateInvoiceError,
    DuplicatePaymentError,
    IllegalTransitionError,
    InvalidAmountError,
    InvoiceNotFoundError,
    OrderNotFoundError,
    PaymentVerificationFailedError,
    StateConflictError,
)
from rental_kernel.logging_config import LogContext, get_logger
from rental_kernel.models.fulfillment import Return
from rental_kernel.models.invoice import PAYMENT_STATUS_COMPLETED, Invoice, Payment
from rental_kernel.models.order import RentalOrder
from rental_kernel.services.base import BaseService
from rental_kernel.utils.generators import generate_invoice_number

logger = get_logger("services.invoice")

MANUAL_PAYMENT_METHOD = "MANUAL"


class InvoiceService(BaseService):
    """
    Invoice/payment reconciler.

    Contract:
        All public methods return InvoiceInfo/PaymentResult DTOs.  The caller
        owns the transaction; gateway calls never happen in here.
    """

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _get_invoice(self, invoice_id: UUID, lock: bool = False) -> Invoice:
        stmt = select(Invoice).where(Invoice.id == invoice_id)
        if lock:
            stmt = stmt.with_for_update()
        invoice = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def find_for_order(self, order_id: UUID) -> Invoice | None:
        return self.session.execute(
            select(Invoice).where(Invoice.order_id == order_id)
        ).scalar_one_or_none()

    def get_invoice(self, caller: Caller, invoice_id: UUID) -> InvoiceInfo:
        invoice = self._get_invoice(invoice_id)
        authorize(caller, Action.VIEW_ORDER, invoice)
        return InvoiceInfo.from_model(invoice)

    def list_payments(self, caller: Caller, invoice_id: UUID) -> list[PaymentInfo]:
        invoice = self._get_invoice(invoice_id)
        authorize(caller, Action.VIEW_ORDER, invoice)
        rows = self.session.execute(
            select(Payment)
            .where(Payment.invoice_id == invoice_id)
            .order_by(Payment.paid_at)
        ).scalars()
        return [PaymentInfo.from_model(p) for p in rows]

    # ------------------------------------------------------------------
    # Compare-and-swap on the invoice row
    # ------------------------------------------------------------------

    def _swap(self, invoice: Invoice, actor_id: UUID, **values) -> None:
        observed = invoice.version
        result = self.session.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.version == observed)
            .values(version=observed + 1, updated_by_id=actor_id, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "invoice_version_conflict",
                extra={"invoice_id": str(invoice.id), "observed_version": observed},
            )
            raise ConcurrencyConflictError("Invoice", str(invoice.id))
        self.session.refresh(invoice)

    # ------------------------------------------------------------------
    # Creation and posting
    # ------------------------------------------------------------------

    def create_invoice(self, caller: Caller, order_id: UUID) -> InvoiceInfo:
        """
        Derive the order's invoice in DRAFT.

        Copies subtotal/tax/discount/deposit from the order and adds any late
        and damage fee already recorded on its Return.
        """
        order = self.session.get(RentalOrder, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        authorize(caller, Action.CREATE_INVOICE, order)

        if OrderStatus(order.status) not in INVOICEABLE_ORDER_STATUSES:
            raise StateConflictError(
                "RentalOrder",
                str(order_id),
                order.status,
                "order cannot be invoiced in this status",
            )

        existing = self.find_for_order(order_id)
        if existing is not None:
            raise DuplicateInvoiceError(str(order_id), str(existing.id))

        return_record = self.session.execute(
            select(Return).where(Return.order_id == order_id)
        ).scalar_one_or_none()
        late_fee = Money(return_record.late_fee) if return_record else Money.zero()
        damage_fee = Money(return_record.damage_fee) if return_record else Money.zero()

        total = (
            Money(order.subtotal)
            + Money(order.tax)
            - Money(order.discount)
            + Money(order.deposit)
            + late_fee
            + damage_fee
        )

        now = self._now()
        invoice = Invoice(
            invoice_number=generate_invoice_number(now),
            order_id=order.id,
            vendor_id=order.vendor_id,
            customer_id=order.customer_id,
            status=InvoiceStatus.DRAFT.value,
            subtotal=order.subtotal,
            tax=order.tax,
            discount=order.discount,
            deposit=order.deposit,
            late_fee=late_fee.amount,
            damage_fee=damage_fee.amount,
            total=total.amount,
            amount_paid=Money.zero().amount,
            version=0,
            created_at=now,
            created_by_id=caller.user_id,
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(invoice)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.info("invoice_create_race_lost", extra={"order_id": str(order_id)})
            raise DuplicateInvoiceError(str(order_id))

        with LogContext.bind(invoice_id=invoice.id, order_id=order.id):
            logger.info(
                "invoice_created",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "total": str(total),
                },
            )
        return InvoiceInfo.from_model(invoice)

    def post_invoice(self, caller: Caller, invoice_id: UUID) -> InvoiceInfo:
        """DRAFT -> POSTED.  Irreversible."""
        invoice = self._get_invoice(invoice_id, lock=True)
        authorize(caller, Action.POST_INVOICE, invoice)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise IllegalTransitionError(
                "Invoice", str(invoice_id), invoice.status, InvoiceStatus.POSTED.value
            )

        self._swap(
            invoice,
            caller.user_id,
            status=InvoiceStatus.POSTED.value,
            posted_at=self._now(),
        )
        with LogContext.bind(invoice_id=invoice.id):
            logger.info("invoice_posted", extra={"status": invoice.status})
        return InvoiceInfo.from_model(invoice)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def _external_txn_recorded(self, external_txn_id: str) -> bool:
        return self.session.execute(
            select(Payment.id).where(Payment.external_txn_id == external_txn_id)
        ).first() is not None

    def _require_payable(self, invoice: Invoice) -> None:
        if InvoiceStatus(invoice.status) not in PAYABLE_INVOICE_STATUSES:
            raise StateConflictError(
                "Invoice",
                str(invoice.id),
                invoice.status,
                "invoice must be posted before payments are registered",
            )

    def _apply_payment(
        self,
        invoice: Invoice,
        amount: Money,
        method: str,
        actor_id: UUID,
        external_txn_id: str | None = None,
        gateway_order_id: str | None = None,
    ) -> PaymentResult:
        paid_at = self._now()
        payment = Payment(
            invoice_id=invoice.id,
            amount=amount.amount,
            method=method,
            external_txn_id=external_txn_id,
            gateway_order_id=gateway_order_id,
            status=PAYMENT_STATUS_COMPLETED,
            paid_at=paid_at,
            created_by_id=actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(payment)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicatePaymentError(str(external_txn_id))

        new_paid = Money(invoice.amount_paid) + amount
        status = derive_invoice_status(
            InvoiceStatus(invoice.status), new_paid.amount, invoice.total
        )
        self._swap(invoice, actor_id, amount_paid=new_paid.amount, status=status.value)

        with LogContext.bind(invoice_id=invoice.id):
            logger.info(
                "payment_recorded",
                extra={
                    "amount": str(amount),
                    "method": method,
                    "amount_paid": str(new_paid),
                    "status": status.value,
                    "external_txn_id": external_txn_id,
                },
            )
        return PaymentResult(
            payment=PaymentInfo.from_model(payment),
            invoice=InvoiceInfo.from_model(invoice),
        )

    def record_payment(
        self,
        caller: Caller,
        invoice_id: UUID,
        amount: Money,
        method: str = MANUAL_PAYMENT_METHOD,
    ) -> PaymentResult:
        """
        Register a manual payment on a posted invoice.

        Overpayment is accepted: amount_paid may exceed total, and the
        invoice is then PAID with a negative outstanding balance.
        """
        if not isinstance(amount, Money) or not amount.is_positive:
            raise InvalidAmountError(amount, "payment amount must be a positive Money value")

        invoice = self._get_invoice(invoice_id, lock=True)
        authorize(caller, Action.RECORD_PAYMENT, invoice)
        self._require_payable(invoice)
        return self._apply_payment(invoice, amount, method, caller.user_id)

    def confirm_gateway_payment(
        self,
        caller: Caller,
        invoice_id: UUID,
        confirmation: GatewayConfirmation,
        secret: str,
    ) -> PaymentResult:
        """
        Record a gateway-confirmed payment after verifying its signature.

        Raises:
            PaymentVerificationFailedError: signature mismatch; no Payment row
                is written.
            DuplicatePaymentError: this gateway payment id is already recorded.
            StateConflictError: the invoice is still a DRAFT.
        """
        invoice = self._get_invoice(invoice_id, lock=True)
        authorize(caller, Action.PAY_INVOICE, invoice)
        self._require_payable(invoice)

        if not verify_confirmation(
            secret,
            confirmation.gateway_order_id,
            confirmation.gateway_payment_id,
            confirmation.signature,
        ):
            logger.warning(
                "payment_verification_failed",
                extra={
                    "invoice_id": str(invoice_id),
                    "gateway_order_id": confirmation.gateway_order_id,
                },
            )
            raise PaymentVerificationFailedError(
                confirmation.gateway_order_id, confirmation.gateway_payment_id
            )

        amount = Money.from_minor_units(confirmation.amount_minor)
        if not amount.is_positive:
            raise InvalidAmountError(amount, "payment amount must be positive")

        if self._external_txn_recorded(confirmation.gateway_payment_id):
            raise DuplicatePaymentError(confirmation.gateway_payment_id)

        return self._apply_payment(
            invoice,
            amount,
            confirmation.method,
            caller.user_id,
            external_txn_id=confirmation.gateway_payment_id,
            gateway_order_id=confirmation.gateway_order_id,
        )

    # ------------------------------------------------------------------
    # Return fees
    # ------------------------------------------------------------------

    def apply_return_fees(
        self,
        order_id: UUID,
        late_fee: Money,
        damage_fee: Money,
        actor_id: UUID,
    ) -> InvoiceInfo | None:
        """
        Add return fees to the order's invoice, if one exists.

        Returns:
            The updated invoice, or None when the order has no invoice yet
            (create_invoice will pick the fees up from the Return record).
        """
        for fee in (late_fee, damage_fee):
            if fee.is_negative:
                raise InvalidAmountError(fee, "fees must not be negative")
        existing = self.find_for_order(order_id)
        if existing is None:
            return None

        invoice = self._get_invoice(existing.id, lock=True)
        added = late_fee + damage_fee
        if added.is_zero:
            return InvoiceInfo.from_model(invoice)

        new_total = Money(invoice.total) + added
        status = derive_invoice_status(
            InvoiceStatus(invoice.status), invoice.amount_paid, new_total.amount
        )
        self._swap(
            invoice,
            actor_id,
            late_fee=(Money(invoice.late_fee) + late_fee).amount,
            damage_fee=(Money(invoice.damage_fee) + damage_fee).amount,
            total=new_total.amount,
            status=status.value,
        )
        with LogContext.bind(invoice_id=invoice.id, order_id=order_id):
            logger.info(
                "invoice_return_fees_applied",
                extra={
                    "late_fee": str(late_fee),
                    "damage_fee": str(damage_fee),
                    "total": str(new_total),
                    "status": status.value,
                },
            )
        return InvoiceInfo.from_model(invoice)
