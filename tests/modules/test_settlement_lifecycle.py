"""
Settlement lifecycle tests.

Covers:
- Creation rules and the opening Receivable / Room revenue entry
- Partial, full and over-payment with the refund that settles it
- Overdue derivation, late fees and the escalation ladder
- Adjustments, disputes, cancellation write-off
- Analytics and validation statistics
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from hotel_engines.rules import BookingView
from hotel_engines.settlement_calc import escalation_action
from hotel_kernel.exceptions import (
    EscalationLimitError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    RoleNotPermittedError,
    RuleViolationError,
    SettlementClosedError,
    ValidationError,
)
from hotel_modules.settlement.models import (
    AdjustmentCategory,
    AdjustmentInput,
    AdjustmentType,
    AuditEntryType,
    CommunicationInput,
    DisputeInput,
    DisputeStatus,
    GuestDetails,
    SettlementPaymentInput,
    SettlementStatus,
    SettlementTerms,
)
from tests.conftest import CURRENCY, HOTEL_ID


@pytest.fixture
def open_settlement(settlement_service, staff):
    """Factory: a pending settlement for booking BK-1, 10000 by default."""

    def _open(amount="10000", booking_id="BK-1", terms=None, guest_id="G-1"):
        return settlement_service.create(
            hotel_id=HOTEL_ID,
            booking_id=booking_id,
            original_amount=amount,
            currency=CURRENCY,
            guest=GuestDetails("Asha Rao", guest_id=guest_id, email=" Asha@Example.COM "),
            booking=BookingView(total_amount=Decimal(amount), guest_id="G-1"),
            user=staff,
            terms=terms,
        )

    return _open


def pay(settlement_service, settlement, amount, user, method="card", **kwargs):
    kwargs.setdefault("reference", "TXN-1" if method != "cash" else None)
    return settlement_service.add_payment(
        settlement.id, SettlementPaymentInput(Decimal(amount), method, **kwargs), user
    )


class TestCreation:
    """Opening a settlement."""

    def test_create_posts_opening_entry(self, open_settlement, seeded_accounts, today):
        settlement = open_settlement()
        assert settlement.number == "SET202401010001"
        assert settlement.status == SettlementStatus.PENDING.value
        assert settlement.due_date == today + timedelta(days=7)
        assert settlement.outstanding_balance == Decimal("10000")
        assert settlement.guest_email == "asha@example.com"
        assert settlement.journal_entry_id is not None
        assert settlement.validation_metadata["is_valid"] is True
        assert seeded_accounts["1100"].current_balance == Decimal("10000")
        assert seeded_accounts["4000"].current_balance == Decimal("10000")

    def test_daily_numbering(self, open_settlement):
        open_settlement(booking_id="BK-1")
        second = open_settlement(booking_id="BK-2")
        assert second.number == "SET202401010002"

    def test_missing_booking_rejected(self, settlement_service, staff):
        with pytest.raises(RuleViolationError) as exc:
            settlement_service.create(
                hotel_id=HOTEL_ID,
                booking_id="BK-404",
                original_amount="1000",
                currency=CURRENCY,
                guest=GuestDetails("Asha Rao"),
                booking=None,
                user=staff,
            )
        assert "Associated booking not found" in exc.value.violations
        assert settlement_service.list_settlements(HOTEL_ID) == []

    def test_guest_mismatch_rejected(self, open_settlement):
        with pytest.raises(RuleViolationError) as exc:
            open_settlement(guest_id="G-2")
        assert "Guest ID mismatch between settlement and booking" in exc.value.violations

    def test_unsupported_currency_rejected(self, settlement_service, staff):
        with pytest.raises(RuleViolationError):
            settlement_service.create(
                hotel_id=HOTEL_ID,
                booking_id="BK-1",
                original_amount="1000",
                currency="CHF",
                guest=GuestDetails("Asha Rao"),
                booking=BookingView(total_amount=Decimal("1000")),
                user=staff,
            )

    def test_high_value_flag(self, open_settlement):
        assert open_settlement("60000").is_high_value
        assert not open_settlement("1000", booking_id="BK-2").is_high_value

    def test_find_by_booking(self, open_settlement, settlement_service):
        settlement = open_settlement(booking_id="BK-7")
        assert [s.id for s in settlement_service.find_by_booking(HOTEL_ID, "BK-7")] == [settlement.id]


class TestPayments:
    """Receipts, overpayment and refunds."""

    def test_partial_then_completed(self, open_settlement, settlement_service, staff, seeded_accounts):
        settlement = open_settlement()
        pay(settlement_service, settlement, "4000", staff)
        assert settlement.status == SettlementStatus.PARTIAL.value
        assert settlement.total_paid == Decimal("4000")
        assert settlement.outstanding_balance == Decimal("6000")
        assert settlement.communications[0].subject == "Payment Received"
        assert settlement.audit_log[-1].type == AuditEntryType.PAYMENT_ADDITION.value

        pay(settlement_service, settlement, "6000", staff, method="cash")
        assert settlement.status == SettlementStatus.COMPLETED.value
        assert settlement.completed_date is not None
        assert seeded_accounts["1010"].current_balance == Decimal("4000")
        assert seeded_accounts["1001"].current_balance == Decimal("6000")
        assert seeded_accounts["1100"].current_balance == Decimal("0")

        with pytest.raises(SettlementClosedError):
            pay(settlement_service, settlement, "1", staff)

    def test_overpayment_needs_permission(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        with pytest.raises(RuleViolationError) as exc:
            pay(settlement_service, settlement, "12000", staff)
        assert "Payment would result in overpayment" in exc.value.violations
        assert settlement.payments == []

    def test_overpayment_refunded_to_source(self, open_settlement, settlement_service, staff, seeded_accounts):
        settlement = open_settlement()
        pay(settlement_service, settlement, "12000", staff, allow_overpayment=True)
        assert settlement.status == SettlementStatus.REFUNDED.value
        assert settlement.refund_amount == Decimal("2000")

        with pytest.raises(SettlementClosedError):
            pay(settlement_service, settlement, "10", staff)

        settlement_service.issue_refund(settlement.id, staff, reason="Overpaid at checkout")
        assert settlement.status == SettlementStatus.COMPLETED.value
        assert settlement.refund_amount == Decimal("0")
        assert settlement.total_paid == Decimal("10000")
        assert settlement.audit_log[-1].type == AuditEntryType.REFUND_ISSUED.value
        assert seeded_accounts["1010"].current_balance == Decimal("10000")

    def test_refund_without_overpayment_rejected(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        with pytest.raises(InvalidAmountError):
            settlement_service.issue_refund(settlement.id, staff)

    def test_large_cash_sets_approval_flag(self, open_settlement, settlement_service, staff):
        settlement = open_settlement("200000")
        assert not settlement.requires_manager_approval
        pay(settlement_service, settlement, "170000", staff, method="cash")
        assert settlement.requires_manager_approval

    def test_non_positive_payment_rejected(self):
        with pytest.raises(InvalidAmountError):
            SettlementPaymentInput(Decimal("0"), "card")


class TestOverdueAndLateFees:
    """Status follows the clock; late fees accrue past grace."""

    def test_revalidate_marks_overdue(self, open_settlement, settlement_service, deterministic_clock):
        settlement = open_settlement()
        deterministic_clock.advance_days(8)
        settlement_service.revalidate(settlement.id, "system")
        assert settlement.status == SettlementStatus.OVERDUE.value
        assert settlement_service.days_overdue(settlement) == 1
        assert [s.id for s in settlement_service.find_overdue(HOTEL_ID)] == [settlement.id]
        assert settlement_service.find_overdue(HOTEL_ID, grace_days=5) == []

    def test_refresh_overdue_reports_changes(self, open_settlement, settlement_service, deterministic_clock):
        settlement = open_settlement()
        assert settlement_service.refresh_overdue(HOTEL_ID) == []
        deterministic_clock.advance_days(8)
        changed = settlement_service.refresh_overdue(HOTEL_ID)
        assert [s.id for s in changed] == [settlement.id]

    def test_revalidate_is_idempotent(self, open_settlement, settlement_service):
        settlement = open_settlement()
        entries = len(settlement.audit_log)
        settlement_service.revalidate(settlement.id, "system")
        settlement_service.revalidate(settlement.id, "system")
        assert len(settlement.audit_log) == entries
        assert settlement.status == SettlementStatus.PENDING.value
        assert settlement_service.find_with_calculation_errors(HOTEL_ID) == []

    def test_late_fee_applied_as_penalty(
        self, open_settlement, settlement_service, staff, deterministic_clock, seeded_accounts
    ):
        terms = SettlementTerms(late_fee_rate_pct_annual=Decimal("12"), grace_period_days=0)
        settlement = open_settlement(terms=terms)
        deterministic_clock.advance_days(10)

        assessment = settlement_service.calculate_late_fee(settlement.id)
        assert assessment.days_late == 3
        # 10000 * 0.12 * 3 / 365 = 9.863...
        assert assessment.fee.amount == Decimal("9.86")

        settlement_service.apply_late_fee(settlement.id, staff)
        penalty = settlement.adjustments[-1]
        assert penalty.type == AdjustmentType.PENALTY.value
        assert penalty.category == AdjustmentCategory.PENALTIES.value
        assert settlement.final_amount == Decimal("10009.86")
        assert settlement.status == SettlementStatus.OVERDUE.value
        assert seeded_accounts["4200"].current_balance == Decimal("9.86")

    def test_no_late_fee_before_due(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        settlement_service.apply_late_fee(settlement.id, staff)
        assert settlement.adjustments == []


class TestEscalation:
    """Collections ladder."""

    def test_escalate_to_cap(self, open_settlement, settlement_service, staff, deterministic_clock):
        settlement = open_settlement(terms=SettlementTerms(max_escalation_level=2))
        settlement_service.escalate(settlement.id, "No response to invoice", staff)
        settlement_service.escalate(settlement.id, "Still no response", staff)
        assert settlement.escalation_level == 2
        assert settlement.escalations[-1].action == escalation_action(2)
        assert settlement.next_reminder_due == deterministic_clock.now() + timedelta(days=4)

        with pytest.raises(EscalationLimitError):
            settlement_service.escalate(settlement.id, "Again", staff)

    def test_reason_required(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        with pytest.raises(ValidationError):
            settlement_service.escalate(settlement.id, "", staff)

    def test_completed_cannot_escalate(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        pay(settlement_service, settlement, "10000", staff)
        with pytest.raises(SettlementClosedError):
            settlement_service.escalate(settlement.id, "Late", staff)

    def test_outbound_communication_sets_reminder(self, open_settlement, settlement_service, staff, deterministic_clock):
        settlement = open_settlement()
        settlement_service.add_communication(
            settlement.id,
            CommunicationInput("email", "Payment reminder", "Your balance is due."),
            staff,
        )
        assert settlement.last_reminder_sent == deterministic_clock.now()
        assert settlement.communications[-1].direction == "outbound"


class TestAdjustments:
    """Signed adjustments and their postings."""

    def test_charge_with_tax(self, open_settlement, settlement_service, staff, seeded_accounts):
        settlement = open_settlement()
        settlement_service.add_adjustment(
            settlement.id,
            AdjustmentInput(
                "minibar_charge", Decimal("500"), "Minibar", category="food_beverage", tax_amount=Decimal("90")
            ),
            staff,
        )
        assert settlement.final_amount == Decimal("10590")
        assert settlement.audit_log[-1].type == AuditEntryType.MANUAL_ADJUSTMENT.value
        assert seeded_accounts["1100"].current_balance == Decimal("10590")
        assert seeded_accounts["4100"].current_balance == Decimal("500")
        assert seeded_accounts["2100"].current_balance == Decimal("90")

    def test_discount_posts_to_discounts(self, open_settlement, settlement_service, staff, seeded_accounts):
        settlement = open_settlement()
        settlement_service.add_adjustment(
            settlement.id, AdjustmentInput("discount", Decimal("-1000"), "Loyalty", taxable=False), staff
        )
        assert settlement.final_amount == Decimal("9000")
        assert seeded_accounts["6400"].current_balance == Decimal("1000")
        assert seeded_accounts["1100"].current_balance == Decimal("9000")

    def test_large_discount_needs_approver(self, open_settlement, settlement_service, staff, manager):
        settlement = open_settlement("100000")
        discount = AdjustmentInput("discount", Decimal("-60000"), "Group rate", taxable=False)
        with pytest.raises(RoleNotPermittedError):
            settlement_service.add_adjustment(settlement.id, discount, staff)

        settlement_service.add_adjustment(settlement.id, discount, manager)
        assert settlement.final_amount == Decimal("40000")
        assert settlement.requires_manager_approval

    def test_negative_final_rejected(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        with pytest.raises(RuleViolationError) as exc:
            settlement_service.add_adjustment(
                settlement.id, AdjustmentInput("discount", Decimal("-20000"), "Too generous"), staff
            )
        assert "Adjustment would result in negative final amount" in exc.value.violations
        assert settlement.adjustments == []

    def test_adjustment_tax_counts_toward_final(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        credit = AdjustmentInput(
            "discount", Decimal("-9500"), "Service failure", tax_amount=Decimal("-600")
        )
        with pytest.raises(RuleViolationError) as exc:
            settlement_service.add_adjustment(settlement.id, credit, staff)
        assert "Adjustment would result in negative final amount" in exc.value.violations
        assert settlement.final_amount == Decimal("10000")

    def test_completed_settlement_reopens_on_charge(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        pay(settlement_service, settlement, "10000", staff)
        settlement_service.add_adjustment(
            settlement.id, AdjustmentInput("damage_charge", Decimal("200"), "Broken lamp", taxable=False), staff
        )
        assert settlement.status == SettlementStatus.PARTIAL.value
        assert settlement.outstanding_balance == Decimal("200")

    def test_description_required(self):
        with pytest.raises(ValidationError):
            AdjustmentInput("other", Decimal("10"), " ")


class TestDisputes:
    """Dispute workflow."""

    def test_resolve_with_adjustment(self, open_settlement, settlement_service, staff, manager):
        settlement = open_settlement()
        dispute = settlement_service.raise_dispute(
            settlement.id, DisputeInput("charge_dispute", "Charged for an extra night", amount="500"), staff
        )
        assert dispute.status == DisputeStatus.OPEN.value
        assert settlement.final_amount == Decimal("10000")

        settlement_service.update_dispute_status(settlement.id, dispute.id, "investigating", staff)
        assert dispute.status == DisputeStatus.INVESTIGATING.value

        settlement_service.resolve_dispute(
            settlement.id,
            dispute.id,
            "Credit one night",
            manager,
            adjustment=AdjustmentInput("discount", Decimal("-500"), "Dispute credit", taxable=False),
        )
        assert dispute.status == DisputeStatus.RESOLVED.value
        assert dispute.resolved_by_id == manager.user_id
        assert settlement.final_amount == Decimal("9500")

        with pytest.raises(InvalidStatusTransitionError):
            settlement_service.update_dispute_status(settlement.id, dispute.id, "escalated", staff)

    def test_resolved_only_through_resolve(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        dispute = settlement_service.raise_dispute(
            settlement.id, DisputeInput("billing_error", "Wrong room rate"), staff
        )
        with pytest.raises(ValidationError):
            settlement_service.update_dispute_status(settlement.id, dispute.id, "resolved", staff)


class TestCancellation:
    """Cancelling writes off what is still owed."""

    def test_cancel_writes_off_outstanding(self, open_settlement, settlement_service, staff, seeded_accounts):
        settlement = open_settlement()
        pay(settlement_service, settlement, "4000", staff)
        settlement_service.cancel(settlement.id, "Guest left without paying", staff)
        assert settlement.status == SettlementStatus.CANCELLED.value
        assert settlement.audit_log[-1].type == AuditEntryType.CANCELLATION.value
        assert seeded_accounts["1100"].current_balance == Decimal("0")
        assert seeded_accounts["6400"].current_balance == Decimal("6000")

        with pytest.raises(SettlementClosedError):
            settlement_service.cancel(settlement.id, "Again", staff)
        with pytest.raises(SettlementClosedError):
            pay(settlement_service, settlement, "100", staff)
        with pytest.raises(SettlementClosedError):
            settlement_service.add_adjustment(
                settlement.id, AdjustmentInput("other", Decimal("5"), "Late charge"), staff
            )

    def test_completed_cannot_be_cancelled(self, open_settlement, settlement_service, staff):
        settlement = open_settlement()
        pay(settlement_service, settlement, "10000", staff)
        with pytest.raises(InvalidStatusTransitionError):
            settlement_service.cancel(settlement.id, "Too late", staff)


class TestAnalytics:
    """Per-status counts and totals."""

    def test_analytics_by_status(self, open_settlement, settlement_service, staff):
        paid = open_settlement(booking_id="BK-1")
        pay(settlement_service, paid, "10000", staff)
        open_settlement("5000", booking_id="BK-2")

        report = settlement_service.analytics(HOTEL_ID)
        assert [row["status"] for row in report["by_status"]] == ["completed", "pending"]
        assert report["total_settlements"] == 2
        assert report["total_value"] == Decimal("15000")
        assert report["total_outstanding"] == Decimal("5000")

    def test_validation_statistics(self, open_settlement, settlement_service):
        open_settlement()
        stats = settlement_service.validation_statistics(HOTEL_ID)
        assert stats["total_settlements"] == 1
        assert stats["valid_settlements"] == 1
        assert stats["validation_rate"] == Decimal("1")

    def test_empty_statistics(self, settlement_service):
        assert settlement_service.validation_statistics(HOTEL_ID)["total_settlements"] == 0
