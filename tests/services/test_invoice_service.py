"""
Tests for invoice derivation and payment reconciliation.

Verifies:
- One invoice per order, only from invoiceable statuses
- DRAFT -> POSTED is one-way
- amount_paid / status follow every payment
- Gateway confirmations verify their signature and record at most once
"""

import pytest
from sqlalchemy import func, select

from rental_kernel.domain.dtos import GatewayConfirmation
from rental_kernel.domain.lifecycle import InvoiceStatus
from rental_kernel.domain.signatures import sign_confirmation
from rental_kernel.domain.values import Money
from rental_kernel.exceptions import (
    DuplicateInvoiceError,
    DuplicatePaymentError,
    ForbiddenError,
    IllegalTransitionError,
    InvalidAmountError,
    InvoiceNotFoundError,
    PaymentVerificationFailedError,
    StateConflictError,
)
from rental_kernel.models.invoice import Payment
from rental_kernel.services.invoice_service import InvoiceService
from rental_kernel.services.order_service import OrderService
from tests.conftest import GATEWAY_SECRET


@pytest.fixture
def orders(session, clock):
    return OrderService(session, clock)


@pytest.fixture
def invoices(session, clock):
    return InvoiceService(session, clock)


@pytest.fixture
def order(orders, customer, seed, line):
    """Camera order for 5 days: total 3950.00."""
    return orders.place_order(customer, [line(seed.camera)])


@pytest.fixture
def posted(invoices, vendor, order):
    invoice = invoices.create_invoice(vendor, order.id)
    return invoices.post_invoice(vendor, invoice.id)


def _confirmation(payment_id="pay_1", order_id="gw_1", amount_minor=100000, secret=GATEWAY_SECRET):
    return GatewayConfirmation(
        gateway_order_id=order_id,
        gateway_payment_id=payment_id,
        signature=sign_confirmation(secret, order_id, payment_id),
        amount_minor=amount_minor,
    )


class TestCreateInvoice:
    def test_copies_order_amounts(self, invoices, customer, order):
        invoice = invoices.create_invoice(customer, order.id)

        assert invoice.status is InvoiceStatus.DRAFT
        assert invoice.invoice_number.startswith("INV-")
        assert invoice.subtotal == order.subtotal
        assert invoice.tax == order.tax
        assert invoice.deposit == order.deposit
        assert invoice.total == Money("3950")
        assert invoice.amount_paid.is_zero
        assert invoice.outstanding == Money("3950")

    def test_second_invoice_rejected(self, invoices, vendor, order):
        invoices.create_invoice(vendor, order.id)
        with pytest.raises(DuplicateInvoiceError):
            invoices.create_invoice(vendor, order.id)

    def test_quotation_cannot_be_invoiced(self, orders, invoices, vendor, seed, line):
        quote = orders.create_quotation(vendor, seed.customer_id, [line(seed.camera)])
        with pytest.raises(StateConflictError):
            invoices.create_invoice(vendor, quote.id)

    def test_cancelled_order_cannot_be_invoiced(self, orders, invoices, customer, order):
        orders.cancel(customer, order.id)
        with pytest.raises(StateConflictError):
            invoices.create_invoice(customer, order.id)

    def test_other_customer_forbidden(self, invoices, other_customer, order):
        with pytest.raises(ForbiddenError):
            invoices.create_invoice(other_customer, order.id)

    def test_unknown_invoice(self, invoices, admin):
        from uuid import uuid4

        with pytest.raises(InvoiceNotFoundError):
            invoices.get_invoice(admin, uuid4())


class TestPostInvoice:
    def test_post(self, posted):
        assert posted.status is InvoiceStatus.POSTED
        assert posted.posted_at is not None

    def test_post_is_one_way(self, invoices, vendor, posted):
        with pytest.raises(IllegalTransitionError):
            invoices.post_invoice(vendor, posted.id)

    def test_customer_cannot_post(self, invoices, customer, order):
        invoice = invoices.create_invoice(customer, order.id)
        with pytest.raises(ForbiddenError):
            invoices.post_invoice(customer, invoice.id)


class TestManualPayments:
    def test_partial_then_full(self, invoices, vendor, posted):
        first = invoices.record_payment(vendor, posted.id, Money("1000"))
        assert first.invoice.status is InvoiceStatus.PARTIALLY_PAID
        assert first.invoice.amount_paid == Money("1000")
        assert first.payment.method == "MANUAL"

        second = invoices.record_payment(vendor, posted.id, Money("2950"))
        assert second.invoice.status is InvoiceStatus.PAID
        assert second.invoice.outstanding.is_zero
        assert second.invoice.version == posted.version + 2

    def test_overpayment_accepted(self, invoices, vendor, posted):
        result = invoices.record_payment(vendor, posted.id, Money("5000"))
        assert result.invoice.status is InvoiceStatus.PAID
        assert result.invoice.outstanding == Money("-1050")

    def test_amount_paid_equals_sum_of_payments(self, invoices, vendor, posted):
        for amount in ("100.10", "200.20", "0.70"):
            invoices.record_payment(vendor, posted.id, Money(amount))

        payments = invoices.list_payments(vendor, posted.id)
        invoice = invoices.get_invoice(vendor, posted.id)
        assert Money.total(p.amount for p in payments) == invoice.amount_paid == Money("301.00")

    def test_draft_invoice_rejects_manual_payment(self, invoices, vendor, order):
        invoice = invoices.create_invoice(vendor, order.id)
        with pytest.raises(StateConflictError):
            invoices.record_payment(vendor, invoice.id, Money("100"))

    @pytest.mark.parametrize("amount", [Money("0"), Money("-5")])
    def test_non_positive_amount_rejected(self, invoices, vendor, posted, amount):
        with pytest.raises(InvalidAmountError):
            invoices.record_payment(vendor, posted.id, amount)

    def test_customer_cannot_register_manual_payment(self, invoices, customer, posted):
        with pytest.raises(ForbiddenError):
            invoices.record_payment(customer, posted.id, Money("100"))


class TestGatewayPayments:
    def test_valid_confirmation_recorded(self, invoices, customer, posted):
        result = invoices.confirm_gateway_payment(customer, posted.id, _confirmation(), GATEWAY_SECRET)

        assert result.payment.amount == Money("1000")
        assert result.payment.external_txn_id == "pay_1"
        assert result.payment.gateway_order_id == "gw_1"
        assert result.invoice.status is InvoiceStatus.PARTIALLY_PAID

    def test_bad_signature_writes_nothing(self, invoices, session, customer, posted):
        forged = _confirmation(secret="not-the-secret")
        with pytest.raises(PaymentVerificationFailedError):
            invoices.confirm_gateway_payment(customer, posted.id, forged, GATEWAY_SECRET)

        count = session.execute(select(func.count()).select_from(Payment)).scalar_one()
        assert count == 0
        assert invoices.get_invoice(customer, posted.id).amount_paid.is_zero

    def test_duplicate_confirmation_rejected(self, invoices, customer, posted):
        invoices.confirm_gateway_payment(customer, posted.id, _confirmation(), GATEWAY_SECRET)
        with pytest.raises(DuplicatePaymentError):
            invoices.confirm_gateway_payment(customer, posted.id, _confirmation(), GATEWAY_SECRET)
        assert len(invoices.list_payments(customer, posted.id)) == 1

    def test_confirmation_on_draft_rejected(self, invoices, session, customer, order):
        draft = invoices.create_invoice(customer, order.id)
        with pytest.raises(StateConflictError):
            invoices.confirm_gateway_payment(
                customer, draft.id, _confirmation(amount_minor=395000), GATEWAY_SECRET
            )

        count = session.execute(select(func.count()).select_from(Payment)).scalar_one()
        assert count == 0
        invoice = invoices.get_invoice(customer, draft.id)
        assert invoice.status is InvoiceStatus.DRAFT
        assert invoice.amount_paid.is_zero

    def test_full_confirmation_after_posting_is_paid(self, invoices, customer, vendor, order):
        draft = invoices.create_invoice(customer, order.id)
        invoices.post_invoice(vendor, draft.id)

        result = invoices.confirm_gateway_payment(
            customer, draft.id, _confirmation(amount_minor=395000), GATEWAY_SECRET
        )
        assert result.invoice.amount_paid == result.invoice.total == Money("3950.00")
        assert result.invoice.status is InvoiceStatus.PAID

    def test_empty_secret_never_verifies(self, invoices, customer, posted):
        with pytest.raises(PaymentVerificationFailedError):
            invoices.confirm_gateway_payment(customer, posted.id, _confirmation(secret=""), "")


class TestReturnFees:
    def test_fees_added_and_status_rederived(self, invoices, vendor, order, posted):
        invoices.record_payment(vendor, posted.id, Money("3950"))

        updated = invoices.apply_return_fees(order.id, Money("200"), Money("50"), vendor.user_id)

        assert updated.total == Money("4200")
        assert updated.late_fee == Money("200")
        assert updated.damage_fee == Money("50")
        assert updated.status is InvoiceStatus.PARTIALLY_PAID

    def test_no_invoice_yet(self, invoices, vendor, order):
        assert invoices.apply_return_fees(order.id, Money("100"), Money("0"), vendor.user_id) is None

    def test_zero_fees_leave_invoice_untouched(self, invoices, vendor, order, posted):
        unchanged = invoices.apply_return_fees(order.id, Money("0"), Money("0"), vendor.user_id)
        assert unchanged.version == posted.version

    def test_negative_fee_rejected(self, invoices, vendor, order, posted):
        with pytest.raises(InvalidAmountError):
            invoices.apply_return_fees(order.id, Money("-1"), Money("0"), vendor.user_id)
