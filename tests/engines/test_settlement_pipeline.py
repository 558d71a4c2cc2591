"""
Tests for the pure settlement calculations.

Covers:
- Figure recomputation from adjustments and payments
- Status derivation
- The validation pipeline (corrections, audit entry, metadata)
- Late fee assessment and the escalation ladder
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hotel_engines.settlement_calc import (
    AdjustmentFigure,
    LateFeeTerms,
    PaymentFigure,
    SettlementState,
    SettlementStatus,
    calculate_late_fee,
    days_overdue,
    derive_status,
    escalation_action,
    escalation_cap,
    next_reminder_due,
    recompute_figures,
    run_validation_pipeline,
)
from hotel_kernel.domain.values import Money

NOW = datetime(2024, 1, 10, 12, tzinfo=timezone.utc)
TODAY = NOW.date()
ZERO = Decimal("0")


def state(**overrides) -> SettlementState:
    values = dict(
        status=SettlementStatus.PENDING,
        currency="INR",
        due_date=TODAY + timedelta(days=7),
        original_amount=Decimal("1000"),
        final_amount=Decimal("1000"),
        total_paid=ZERO,
        outstanding_balance=Decimal("1000"),
        refund_amount=ZERO,
    )
    values.update(overrides)
    return SettlementState(**values)


class TestRecomputeFigures:
    """Figures are always derived from the child records."""

    def test_adjustments_include_tax(self):
        figures = recompute_figures(
            Decimal("1000"),
            [
                AdjustmentFigure("minibar_charge", Decimal("200"), Decimal("36")),
                AdjustmentFigure("discount", Decimal("-100")),
            ],
            [],
        )
        assert figures.final_amount == Decimal("1136")
        assert figures.outstanding_balance == Decimal("1136")

    def test_refunds_reduce_total_paid(self):
        figures = recompute_figures(
            Decimal("1000"),
            [],
            [
                PaymentFigure(Decimal("1200"), "card"),
                PaymentFigure(Decimal("150"), "refund_to_source", kind="refund"),
            ],
        )
        assert figures.total_paid == Decimal("1050")
        assert figures.outstanding_balance == ZERO
        assert figures.refund_amount == Decimal("50")

    def test_non_completed_payments_ignored(self):
        figures = recompute_figures(
            Decimal("1000"),
            [],
            [PaymentFigure(Decimal("400"), "card", status="failed")],
        )
        assert figures.total_paid == ZERO

    def test_as_strings(self):
        figures = recompute_figures(Decimal("10"), [], [])
        assert figures.as_strings()["final_amount"] == "10.0000"


class TestDeriveStatus:
    """Status is a function of the figures, the due date and today."""

    def _figures(self, final, paid):
        return recompute_figures(Decimal(final), [], [PaymentFigure(Decimal(paid), "card")] if paid else [])

    def test_pending(self):
        assert derive_status(SettlementStatus.PENDING, self._figures("100", None), TODAY, TODAY) == SettlementStatus.PENDING

    def test_partial(self):
        assert derive_status(SettlementStatus.PENDING, self._figures("100", "40"), TODAY, TODAY) == SettlementStatus.PARTIAL

    def test_completed(self):
        assert derive_status(SettlementStatus.PARTIAL, self._figures("100", "100"), TODAY, TODAY) == SettlementStatus.COMPLETED

    def test_refunded_when_overpaid(self):
        assert derive_status(SettlementStatus.PARTIAL, self._figures("100", "120"), TODAY, TODAY) == SettlementStatus.REFUNDED

    def test_overdue_after_due_date(self):
        due = TODAY - timedelta(days=1)
        assert derive_status(SettlementStatus.PARTIAL, self._figures("100", "40"), due, TODAY) == SettlementStatus.OVERDUE

    def test_due_today_is_not_overdue(self):
        assert derive_status(SettlementStatus.PENDING, self._figures("100", None), TODAY, TODAY) != SettlementStatus.OVERDUE

    def test_cancelled_is_terminal(self):
        assert derive_status(SettlementStatus.CANCELLED, self._figures("100", "100"), TODAY, TODAY) == SettlementStatus.CANCELLED


class TestValidationPipeline:
    """run_validation_pipeline."""

    def test_consistent_state_has_no_corrections(self):
        result = run_validation_pipeline(state=state(), as_of=NOW)
        assert result.is_valid
        assert not result.has_corrections
        assert result.audit_entry is None
        assert result.status == SettlementStatus.PENDING
        assert result.metadata["is_valid"] is True

    def test_stale_figures_corrected_and_audited(self):
        stale = state(
            payments=(PaymentFigure(Decimal("400"), "card"),),
            total_paid=ZERO,
            outstanding_balance=Decimal("1000"),
        )
        result = run_validation_pipeline(state=stale, as_of=NOW)
        assert result.corrections == {"total_paid": "400.0000", "outstanding_balance": "600.0000"}
        assert result.audit_entry["type"] == "auto_correction"
        assert result.audit_entry["original_values"]["total_paid"] == "0"
        assert result.status == SettlementStatus.PARTIAL

    def test_pipeline_is_idempotent(self):
        first = run_validation_pipeline(
            state=state(payments=(PaymentFigure(Decimal("400"), "card"),)), as_of=NOW
        )
        settled = state(
            status=first.status,
            payments=(PaymentFigure(Decimal("400"), "card"),),
            **{k: v for k, v in vars(first.figures).items() if k != "original_amount"},
        )
        second = run_validation_pipeline(state=settled, as_of=NOW)
        assert not second.has_corrections
        assert second.figures == first.figures

    def test_completion_date_set_once(self):
        paid = state(payments=(PaymentFigure(Decimal("1000"), "card"),))
        result = run_validation_pipeline(state=paid, as_of=NOW)
        assert result.status == SettlementStatus.COMPLETED
        assert result.completed_date == NOW

        earlier = NOW - timedelta(days=2)
        again = run_validation_pipeline(state=state(payments=paid.payments, completed_date=earlier), as_of=NOW)
        assert again.completed_date == earlier

    def test_negative_final_amount_is_an_error(self):
        broken = state(adjustments=(AdjustmentFigure("discount", Decimal("-1500")),))
        result = run_validation_pipeline(state=broken, as_of=NOW)
        assert not result.is_valid
        assert "Final amount cannot be negative" in result.errors

    def test_warnings_collected(self):
        odd = state(
            adjustments=(
                AdjustmentFigure("other", ZERO),
                AdjustmentFigure("minibar_charge", Decimal("10"), ZERO, taxable=True),
                AdjustmentFigure("discount", Decimal("5")),
            ),
            payments=(PaymentFigure(Decimal("250000"), "cash"),),
        )
        result = run_validation_pipeline(state=odd, as_of=NOW)
        assert "Adjustment 1 has zero amount" in result.warnings
        assert "Adjustment 2 is marked taxable but has zero tax amount" in result.warnings
        assert "Adjustment 3 of type 'discount' should be negative" in result.warnings
        assert "Large cash payment detected - may require compliance review" in result.warnings
        assert result.metadata["warning_count"] == len(result.warnings)


class TestLateFee:
    """calculate_late_fee."""

    def _fee(self, outstanding="10000", due_days_ago=10, grace=3, rate="2", status=SettlementStatus.OVERDUE):
        return calculate_late_fee(
            status=status,
            outstanding=Money.of(outstanding, "INR"),
            due_date=TODAY - timedelta(days=due_days_ago),
            terms=LateFeeTerms(late_fee_rate_pct_annual=Decimal(rate), grace_period_days=grace),
            as_of=TODAY,
        )

    def test_zero_within_grace(self):
        assessment = self._fee(due_days_ago=3, grace=3)
        assert not assessment.applicable
        assert assessment.fee.is_zero

    def test_simple_daily_interest(self):
        assessment = self._fee(outstanding="10000", due_days_ago=2, grace=0, rate="12")
        assert assessment.applicable
        assert assessment.days_late == 2
        # 10000 * 0.12 * 2 / 365 = 6.5753...
        assert assessment.fee.amount == Decimal("6.58")

    def test_grace_days_subtracted(self):
        assessment = self._fee(outstanding="36500", due_days_ago=13, grace=3, rate="10")
        assert assessment.days_late == 10
        assert assessment.fee.amount == Decimal("100.00")

    @pytest.mark.parametrize(
        "status",
        [SettlementStatus.COMPLETED, SettlementStatus.CANCELLED, SettlementStatus.REFUNDED],
    )
    def test_closed_statuses_never_charged(self, status):
        assert not self._fee(status=status).applicable

    def test_nothing_outstanding(self):
        assert not self._fee(outstanding="0").applicable

    def test_no_due_date(self):
        assessment = calculate_late_fee(
            status=SettlementStatus.PENDING,
            outstanding=Money.of("100", "INR"),
            due_date=None,
            terms=LateFeeTerms(),
            as_of=TODAY,
        )
        assert not assessment.applicable

    def test_negative_terms_rejected(self):
        with pytest.raises(ValueError):
            LateFeeTerms(grace_period_days=-1)

    def test_days_overdue(self):
        assert days_overdue(TODAY - timedelta(days=4), TODAY) == 4
        assert days_overdue(TODAY + timedelta(days=4), TODAY) == 0
        assert days_overdue(None, TODAY) == 0


class TestEscalationLadder:
    """Escalation helpers."""

    def test_cap_bounded_by_ladder(self):
        assert escalation_cap(3) == 3
        assert escalation_cap(9) == 5
        assert escalation_cap(-1) == 0

    def test_actions(self):
        assert escalation_action(1) == "first reminder"
        assert escalation_action(5) == "collections referral"
        with pytest.raises(ValueError):
            escalation_action(6)

    def test_reminder_backoff(self):
        assert next_reminder_due(NOW, 0) == NOW + timedelta(days=1)
        assert next_reminder_due(NOW, 3) == NOW + timedelta(days=8)
        assert next_reminder_due(NOW, 9) == NOW + timedelta(days=32)
