"""
Invoice and payment flow through the journal.

Covers:
- Invoice totals, sending and the sales entry
- Partial and full payment, overpayment refusal
- Cancellation reversing the sales entry
- Payment lifecycle, fees, refunds and bank reconciliation
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from hotel_kernel.exceptions import (
    InvalidAmountError,
    InvalidStatusTransitionError,
    RuleViolationError,
    ValidationError,
)
from hotel_modules.billing.models import (
    Customer,
    DiscountInput,
    FeeBreakdown,
    InvoiceLineInput,
    InvoiceStatus,
    PaymentStatus,
    PaymentType,
    compute_invoice_totals,
)
from tests.conftest import CURRENCY, HOTEL_ID, TEST_ACTOR_ID


@pytest.fixture
def room_invoice(invoice_service, seeded_accounts):
    """Two nights at 5000 with 12% tax: total 11200."""
    return invoice_service.create(
        hotel_id=HOTEL_ID,
        customer=Customer("guest", "Asha Rao", customer_id="G-1"),
        lines=[
            InvoiceLineInput("Deluxe room", seeded_accounts["4000"].id, Decimal("2"), Decimal("5000"), Decimal("12")),
        ],
        actor_id=TEST_ACTOR_ID,
        currency=CURRENCY,
    )


class TestInvoiceTotals:
    """compute_invoice_totals."""

    def test_percent_and_flat_discounts(self, seeded_accounts):
        lines = [
            InvoiceLineInput("Room", seeded_accounts["4000"].id, 1, 1000, 10),
            InvoiceLineInput("Dinner", seeded_accounts["4100"].id, 2, 250, 5),
        ]
        totals = compute_invoice_totals(
            lines, [DiscountInput("percent", 10), DiscountInput("flat", 50)]
        )
        assert totals.subtotal == Decimal("1500")
        assert totals.total_tax == Decimal("125")
        assert totals.total_discount == Decimal("200")
        assert totals.total_amount == Decimal("1425")

    def test_line_validation(self, seeded_accounts):
        with pytest.raises(InvalidAmountError):
            InvoiceLineInput("Room", seeded_accounts["4000"].id, 0, 1000)
        with pytest.raises(InvalidAmountError):
            InvoiceLineInput("Room", seeded_accounts["4000"].id, 1, 1000, 120)

    def test_customer_name_required(self):
        with pytest.raises(ValidationError):
            Customer("guest", "  ")


class TestInvoiceLifecycle:
    """Draft, send, pay, cancel."""

    def test_create_draft(self, room_invoice, today):
        assert room_invoice.status == InvoiceStatus.DRAFT.value
        assert room_invoice.number == "INV-2024-000001"
        assert room_invoice.total_amount == Decimal("11200")
        assert room_invoice.due_date == today + timedelta(days=30)
        assert room_invoice.journal_entry_id is None

    def test_non_revenue_line_rejected(self, invoice_service, seeded_accounts):
        with pytest.raises(ValidationError):
            invoice_service.create(
                hotel_id=HOTEL_ID,
                customer=Customer("guest", "Asha Rao"),
                lines=[InvoiceLineInput("Oops", seeded_accounts["1001"].id, 1, 100)],
                actor_id=TEST_ACTOR_ID,
                currency=CURRENCY,
            )

    def test_send_posts_sales_entry(self, invoice_service, room_invoice, seeded_accounts):
        invoice = invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        assert invoice.status == InvoiceStatus.SENT.value
        assert invoice.journal_entry_id is not None
        assert seeded_accounts["1100"].current_balance == Decimal("11200")
        assert seeded_accounts["4000"].current_balance == Decimal("10000")
        assert seeded_accounts["2100"].current_balance == Decimal("1200")

    def test_send_twice_rejected(self, invoice_service, room_invoice):
        invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        with pytest.raises(InvalidStatusTransitionError):
            invoice_service.send(room_invoice.id, TEST_ACTOR_ID)

    def test_partial_then_full_payment(self, invoice_service, room_invoice, seeded_accounts):
        invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        invoice, payment = invoice_service.record_payment(
            room_invoice.id, "5000", "card", TEST_ACTOR_ID, reference="TXN-1"
        )
        assert invoice.status == InvoiceStatus.PARTIALLY_PAID.value
        assert invoice.balance_amount == Decimal("6200")
        assert payment.status == PaymentStatus.COMPLETED.value
        assert seeded_accounts["1010"].current_balance == Decimal("5000")

        invoice, _ = invoice_service.record_payment(
            room_invoice.id, "6200", "cash", TEST_ACTOR_ID
        )
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.balance_amount == Decimal("0")
        assert seeded_accounts["1100"].current_balance == Decimal("0")
        assert seeded_accounts["1001"].current_balance == Decimal("6200")
        assert len(invoice_service.payments.list_for_invoice(room_invoice.id)) == 2

    def test_overpayment_refused(self, invoice_service, room_invoice):
        invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        with pytest.raises(InvalidAmountError):
            invoice_service.record_payment(room_invoice.id, "20000", "card", TEST_ACTOR_ID)

    def test_draft_cannot_be_paid(self, invoice_service, room_invoice):
        with pytest.raises(InvalidStatusTransitionError):
            invoice_service.record_payment(room_invoice.id, "100", "card", TEST_ACTOR_ID)

    def test_cancel_reverses_sales_entry(self, invoice_service, room_invoice, seeded_accounts):
        invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        invoice = invoice_service.cancel(room_invoice.id, "Booking moved", TEST_ACTOR_ID)
        assert invoice.status == InvoiceStatus.CANCELLED.value
        assert seeded_accounts["1100"].current_balance == Decimal("0")
        assert seeded_accounts["4000"].current_balance == Decimal("0")

    def test_paid_invoice_cannot_be_cancelled(self, invoice_service, room_invoice):
        invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        invoice_service.record_payment(room_invoice.id, "1000", "card", TEST_ACTOR_ID, reference="T")
        with pytest.raises(InvalidStatusTransitionError):
            invoice_service.cancel(room_invoice.id, "Changed mind", TEST_ACTOR_ID)

    def test_refresh_overdue(self, invoice_service, room_invoice, deterministic_clock):
        invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        assert invoice_service.refresh_overdue(HOTEL_ID) == []
        deterministic_clock.advance_days(31)
        changed = invoice_service.refresh_overdue(HOTEL_ID)
        assert [i.id for i in changed] == [room_invoice.id]
        assert changed[0].status == InvoiceStatus.OVERDUE.value
        assert invoice_service.open_invoices(HOTEL_ID)[0].id == room_invoice.id


class TestPaymentLifecycle:
    """Standalone payments, refunds and reconciliation."""

    def _receipt(self, payment_service, amount="1000", **kwargs):
        params = dict(
            hotel_id=HOTEL_ID,
            amount=amount,
            method="card",
            actor_id=TEST_ACTOR_ID,
            currency=CURRENCY,
            reference="TXN-9",
        )
        params.update(kwargs)
        return payment_service.process(**params)

    def test_fees_posted_to_expense(self, payment_service, seeded_accounts):
        payment = self._receipt(payment_service, fees=FeeBreakdown(processing="30", gateway="20"))
        assert payment.net_amount == Decimal("950")
        assert seeded_accounts["1010"].current_balance == Decimal("950")
        assert seeded_accounts["6500"].current_balance == Decimal("50")
        assert seeded_accounts["1100"].current_balance == Decimal("-1000")

    def test_fees_cannot_exceed_amount(self, payment_service):
        with pytest.raises(InvalidAmountError):
            self._receipt(payment_service, amount="10", fees=FeeBreakdown(bank="11"))

    def test_rules_reject_bank_transfer_without_reference(self, payment_service):
        with pytest.raises(RuleViolationError) as exc:
            self._receipt(payment_service, method="bank_transfer", reference=None)
        assert "Bank transfer requires transaction reference" in exc.value.violations

    def test_pending_to_completed(self, payment_service):
        payment = self._receipt(payment_service, complete=False)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.journal_entry_id is None
        payment_service.mark_processing(payment.id, TEST_ACTOR_ID)
        payment = payment_service.complete(payment.id, TEST_ACTOR_ID)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.journal_entry_id is not None

    def test_completed_payment_cannot_fail(self, payment_service):
        payment = self._receipt(payment_service)
        with pytest.raises(InvalidStatusTransitionError):
            payment_service.fail(payment.id, "Gateway timeout", TEST_ACTOR_ID)

    def test_partial_then_full_refund(self, payment_service, seeded_accounts):
        payment = self._receipt(payment_service)
        refund = payment_service.refund(payment.id, "400", "Early checkout", TEST_ACTOR_ID)
        assert refund.type == PaymentType.REFUND.value
        assert refund.original_payment_id == payment.id
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.refunded_amount == Decimal("400")

        payment_service.refund(payment.id, "600", "Stay cancelled", TEST_ACTOR_ID)
        assert payment.status == PaymentStatus.REFUNDED.value
        assert seeded_accounts["1010"].current_balance == Decimal("0")

    def test_refund_beyond_remaining_rejected(self, payment_service):
        payment = self._receipt(payment_service)
        payment_service.refund(payment.id, "400", "Early checkout", TEST_ACTOR_ID)
        with pytest.raises(RuleViolationError) as exc:
            payment_service.refund(payment.id, "700", "Too much", TEST_ACTOR_ID)
        assert "Refund amount exceeds refundable amount (600.00)" in exc.value.violations

    def test_refund_requires_reason(self, payment_service):
        payment = self._receipt(payment_service)
        with pytest.raises(ValidationError):
            payment_service.refund(payment.id, "100", " ", TEST_ACTOR_ID)

    def test_invoice_fully_refunded(self, invoice_service, room_invoice):
        invoice_service.send(room_invoice.id, TEST_ACTOR_ID)
        invoice, payment = invoice_service.record_payment(
            room_invoice.id, "11200", "card", TEST_ACTOR_ID, reference="TXN-2"
        )
        assert invoice.status == InvoiceStatus.PAID.value
        invoice_service.payments.refund(payment.id, "11200", "Overbooked", TEST_ACTOR_ID)
        assert invoice.status == InvoiceStatus.REFUNDED.value
        assert invoice.paid_amount == Decimal("0")

    def test_reconcile(self, payment_service):
        payment = self._receipt(payment_service)
        assert [p.id for p in payment_service.list_unreconciled(HOTEL_ID)] == [payment.id]
        payment_service.reconcile(payment.id, "STMT-0042", TEST_ACTOR_ID)
        assert payment.reconciled
        assert payment.statement_reference == "STMT-0042"
        assert payment_service.list_unreconciled(HOTEL_ID) == []

    def test_pending_payment_cannot_be_reconciled(self, payment_service):
        payment = self._receipt(payment_service, complete=False)
        with pytest.raises(InvalidStatusTransitionError):
            payment_service.reconcile(payment.id, "STMT-1", TEST_ACTOR_ID)
