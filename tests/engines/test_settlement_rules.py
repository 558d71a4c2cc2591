"""
Tests for the settlement rules engine.

Covers:
- Creation rules (limits, currency, booking cross-checks)
- Payment rules (cash ceiling, references, overpayment, approval)
- Adjustment rules (authorization, descriptions, negative totals)
- Refund rules (refundable amount, method requirements)
- Runtime configuration updates
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from hotel_engines.rules import (
    AdjustmentRequest,
    BookingView,
    PaymentRequest,
    PaymentView,
    RefundRequest,
    RulesConfig,
    RulesEngine,
    SettlementRequest,
    SettlementSnapshot,
)

AS_OF = date(2024, 1, 1)
NOW = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def snapshot(
    final="100000",
    paid="0",
    status="pending",
    payments=(),
    requires_manager_approval=False,
):
    final = Decimal(final)
    paid = Decimal(paid)
    return SettlementSnapshot(
        status=status,
        currency="INR",
        original_amount=final,
        final_amount=final,
        total_paid=paid,
        outstanding_balance=max(Decimal("0"), final - paid),
        refund_amount=max(Decimal("0"), paid - final),
        payments=tuple(payments),
        created_at=NOW,
        requires_manager_approval=requires_manager_approval,
    )


@pytest.fixture
def engine():
    return RulesEngine(RulesConfig.with_defaults())


class TestCreationRules:
    """validate_settlement_creation."""

    def test_valid_request(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(
                final_amount=Decimal("13216"), currency="INR", due_date=AS_OF + timedelta(days=7)
            ),
            booking=BookingView(total_amount=Decimal("13216")),
            as_of=AS_OF,
        )
        assert result.is_valid
        assert result.violations == ()
        assert result.applied_rules["max_cash_payment"] == "200000"

    def test_missing_booking(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(final_amount=Decimal("100"), currency="INR"),
            booking=None,
            as_of=AS_OF,
        )
        assert not result.is_valid
        assert "Associated booking not found" in result.violations

    def test_amount_over_maximum(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(final_amount=Decimal("50000001"), currency="INR"),
            booking=BookingView(total_amount=Decimal("50000001")),
            as_of=AS_OF,
        )
        assert any("exceeds maximum limit" in v for v in result.violations)

    def test_unsupported_currency(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(final_amount=Decimal("100"), currency="AUD"),
            booking=BookingView(total_amount=Decimal("100")),
            as_of=AS_OF,
        )
        assert "Unsupported currency: AUD" in result.violations

    def test_guest_mismatch(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(final_amount=Decimal("100"), currency="INR", guest_id="G1"),
            booking=BookingView(total_amount=Decimal("100"), guest_id="G2"),
            as_of=AS_OF,
        )
        assert "Guest ID mismatch between settlement and booking" in result.violations

    def test_corporate_discount_cap(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(final_amount=Decimal("70"), currency="INR"),
            booking=BookingView(total_amount=Decimal("100"), guest_type="corporate"),
            as_of=AS_OF,
        )
        assert any(v.startswith("Corporate discount exceeds") for v in result.violations)

    def test_warnings_do_not_block(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(
                final_amount=Decimal("40"),
                currency="INR",
                due_date=AS_OF - timedelta(days=1),
                is_vip=True,
            ),
            booking=BookingView(total_amount=Decimal("100"), status="cancelled"),
            as_of=AS_OF,
        )
        assert result.is_valid
        assert "Due date is in the past" in result.warnings
        assert "Creating settlement for cancelled booking" in result.warnings
        assert "Settlement amount is significantly lower than booking amount" in result.warnings

    def test_late_fee_and_grace_limits(self, engine):
        result = engine.validate_settlement_creation(
            request=SettlementRequest(
                final_amount=Decimal("100"),
                currency="INR",
                late_fee_rate_pct_annual=Decimal("30"),
                grace_period_days=45,
            ),
            booking=BookingView(total_amount=Decimal("100")),
            as_of=AS_OF,
        )
        assert len(result.violations) == 2


class TestPaymentRules:
    """validate_payment_processing."""

    def test_cash_over_ceiling_rejected(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("250000"), method="cash"),
            settlement=snapshot(final="300000"),
        )
        assert not result.is_valid
        assert "Cash payment exceeds limit (200000.00)" in result.violations

    def test_cash_near_ceiling_requires_approval(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("160000.50"), method="cash"),
            settlement=snapshot(final="300000"),
        )
        assert result.is_valid
        assert result.requires_approval
        assert "Large cash payment - ensure compliance documentation" in result.warnings

    def test_cash_at_approval_ratio_does_not_require_approval(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("160000"), method="cash"),
            settlement=snapshot(final="300000"),
        )
        assert not result.requires_approval

    def test_overpayment_rejected_unless_allowed(self, engine):
        request = PaymentRequest(amount=Decimal("150"), method="card", reference="T1")
        result = engine.validate_payment_processing(request=request, settlement=snapshot(final="100"))
        assert "Payment would result in overpayment" in result.violations

        allowed = PaymentRequest(
            amount=Decimal("150"), method="card", reference="T1", allow_overpayment=True
        )
        result = engine.validate_payment_processing(request=allowed, settlement=snapshot(final="100"))
        assert result.is_valid

    @pytest.mark.parametrize("method", ["bank_transfer", "upi"])
    def test_reference_required(self, engine, method):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("50.25"), method=method),
            settlement=snapshot(final="100"),
        )
        assert not result.is_valid

    def test_card_without_reference_only_warns(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("50.25"), method="card"),
            settlement=snapshot(final="100"),
        )
        assert result.is_valid
        assert "Card payment missing transaction reference" in result.warnings

    def test_completed_settlement_rejects_payment(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("10"), method="card", reference="x"),
            settlement=snapshot(final="100", paid="100", status="completed"),
        )
        assert "Cannot add payment to completed settlement" in result.violations

    def test_refunded_settlement_rejects_payment(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(
                amount=Decimal("100"), method="card", reference="x", allow_overpayment=True
            ),
            settlement=snapshot(final="100", paid="120", status="refunded"),
        )
        assert not result.is_valid
        assert "Cannot add payment to refunded settlement" in result.violations

    def test_prior_cash_counts_toward_threshold(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("60000"), method="cash"),
            settlement=snapshot(
                final="500000",
                paid="150000",
                payments=[PaymentView(amount=Decimal("150000"), method="cash")],
            ),
        )
        assert "Multiple cash payments approaching compliance threshold" in result.warnings

    def test_structuring_amount_flagged(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("49999"), method="card", reference="x"),
            settlement=snapshot(final="100000"),
        )
        assert "Payment amount matches common structuring pattern" in result.warnings

    def test_sticky_approval_flag_carried(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("10.50"), method="card", reference="x"),
            settlement=snapshot(final="100", requires_manager_approval=True),
        )
        assert result.requires_approval


class TestAdjustmentRules:
    """validate_adjustment_rules."""

    def test_high_value_needs_approver(self, engine):
        request = AdjustmentRequest(
            type="damage_charge",
            amount=Decimal("150000"),
            description="Broken TV",
            attachments=("photo.jpg",),
            applied_by_role="staff",
        )
        result = engine.validate_adjustment_rules(request=request, settlement=snapshot())
        assert "High-value adjustment requires admin/manager authorization" in result.violations

        as_manager = AdjustmentRequest(
            type="damage_charge",
            amount=Decimal("150000"),
            description="Broken TV",
            attachments=("photo.jpg",),
            applied_by_role="manager",
        )
        result = engine.validate_adjustment_rules(request=as_manager, settlement=snapshot())
        assert result.is_valid
        assert result.requires_approval

    def test_service_charge_needs_description(self, engine):
        result = engine.validate_adjustment_rules(
            request=AdjustmentRequest(type="service_charge", amount=Decimal("100"), description=" "),
            settlement=snapshot(),
        )
        assert "Service charge requires detailed description" in result.violations

    def test_negative_final_amount_rejected(self, engine):
        result = engine.validate_adjustment_rules(
            request=AdjustmentRequest(type="discount", amount=Decimal("-600"), description="Too much"),
            settlement=snapshot(final="500"),
        )
        assert "Adjustment would result in negative final amount" in result.violations

    def test_tax_counts_toward_negative_final_amount(self, engine):
        without_tax = engine.validate_adjustment_rules(
            request=AdjustmentRequest(type="discount", amount=Decimal("-450"), description="Goodwill"),
            settlement=snapshot(final="500"),
        )
        assert "Adjustment would result in negative final amount" not in without_tax.violations

        with_tax = engine.validate_adjustment_rules(
            request=AdjustmentRequest(
                type="discount",
                amount=Decimal("-450"),
                tax_amount=Decimal("-60"),
                description="Goodwill",
            ),
            settlement=snapshot(final="500"),
        )
        assert "Adjustment would result in negative final amount" in with_tax.violations

    def test_sign_warnings(self, engine):
        result = engine.validate_adjustment_rules(
            request=AdjustmentRequest(type="discount", amount=Decimal("100"), description="Oops"),
            settlement=snapshot(),
        )
        assert "discount should typically be negative" in result.warnings

    def test_large_discount_requires_approval(self, engine):
        result = engine.validate_adjustment_rules(
            request=AdjustmentRequest(
                type="discount", amount=Decimal("-60000"), description="Group", applied_by_role="manager"
            ),
            settlement=snapshot(final="200000"),
        )
        assert result.is_valid
        assert result.requires_approval

    def test_unknown_type(self, engine):
        result = engine.validate_adjustment_rules(
            request=AdjustmentRequest(type="tip", amount=Decimal("10"), description="x"),
            settlement=snapshot(),
        )
        assert "Invalid adjustment type: tip" in result.violations


class TestRefundRules:
    """validate_refund."""

    def _card_paid(self, final, paid):
        return snapshot(
            final=final,
            paid=paid,
            status="refunded",
            payments=[PaymentView(amount=Decimal(paid), method="card")],
        )

    def test_refund_within_overpayment(self, engine):
        result = engine.validate_refund(
            request=RefundRequest(amount=Decimal("200"), method="refund_to_source"),
            settlement=self._card_paid("1000", "1200"),
            as_of=NOW,
        )
        assert result.is_valid

    def test_refund_over_refundable_rejected(self, engine):
        result = engine.validate_refund(
            request=RefundRequest(amount=Decimal("300"), method="refund_to_source"),
            settlement=self._card_paid("1000", "1200"),
            as_of=NOW,
        )
        assert "Refund amount exceeds refundable amount (200.00)" in result.violations

    def test_refund_to_source_needs_card_receipt(self, engine):
        settlement = snapshot(
            final="1000",
            paid="1200",
            payments=[PaymentView(amount=Decimal("1200"), method="bank_transfer")],
        )
        result = engine.validate_refund(
            request=RefundRequest(amount=Decimal("200"), method="refund_to_source"),
            settlement=settlement,
            as_of=NOW,
        )
        assert "No card payment found for refund to source" in result.violations

    def test_cash_refund_needs_reason(self, engine):
        settlement = self._card_paid("1000", "1200")
        result = engine.validate_refund(
            request=RefundRequest(amount=Decimal("200"), method="cash"),
            settlement=settlement,
            as_of=NOW,
        )
        assert "Cash refund requires detailed reason" in result.violations

        result = engine.validate_refund(
            request=RefundRequest(amount=Decimal("200"), method="cash", reason="Guest left early"),
            settlement=settlement,
            as_of=NOW,
        )
        assert result.is_valid
        assert result.requires_approval

    def test_nothing_paid(self, engine):
        result = engine.validate_refund(
            request=RefundRequest(amount=Decimal("1"), method="cash", reason="x"),
            settlement=snapshot(final="100"),
            as_of=NOW,
        )
        assert "No payments to refund" in result.violations

    def test_old_settlement_warns(self, engine):
        result = engine.validate_refund(
            request=RefundRequest(amount=Decimal("200"), method="refund_to_source"),
            settlement=self._card_paid("1000", "1200"),
            as_of=NOW + timedelta(days=400),
        )
        assert "Refund request for settlement older than 1 year" in result.warnings


class TestRulesConfiguration:
    """Runtime configuration."""

    def test_update_rules_changes_thresholds(self, engine):
        engine.update_rules({"max_cash_payment": "100000"})
        assert engine.config.max_cash_payment == Decimal("100000")
        assert engine.get_rules()["max_cash_payment"] == "100000"

        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("150000"), method="cash"),
            settlement=snapshot(final="300000"),
        )
        assert "Cash payment exceeds limit (100000.00)" in result.violations

    def test_unknown_key_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.update_rules({"max_cash": "1"})
        assert engine.config.max_cash_payment == Decimal("200000")

    def test_from_json(self):
        config = RulesConfig.from_json('{"max_grace_period_days": 10}')
        assert config.max_grace_period_days == 10
        assert RulesConfig.from_json("") == RulesConfig.with_defaults()

    def test_invalid_grace_window(self):
        with pytest.raises(ValueError):
            RulesConfig(min_grace_period_days=10, max_grace_period_days=5)

    def test_result_to_dict(self, engine):
        result = engine.validate_payment_processing(
            request=PaymentRequest(amount=Decimal("250000"), method="cash"),
            settlement=snapshot(final="300000"),
        )
        data = result.to_dict()
        assert data["is_valid"] is False
        assert isinstance(data["violations"], list)
