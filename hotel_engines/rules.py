"""
Module: hotel_engines.rules
Responsibility:
    Table-driven financial rules for settlements: creation limits, payment
    limits and AML checks, adjustment policy, refund eligibility. Every
    validator returns a RuleResult (violations, warnings, approval flag,
    applied-rules snapshot); none of them raise on a rule failure.
Architecture position:
    Engines -- pure calculation layer, zero I/O.
Invariants enforced:
    - Validators are pure functions of (request, snapshot, config, as_of).
    - The active RulesConfig is immutable; RulesEngine.update_rules swaps in
      a new instance atomically, so a validation in flight always sees one
      consistent configuration.
Failure modes:
    - ValueError from RulesConfig.from_dict / with_overrides on unknown keys.
Audit relevance:
    RuleResult.applied_rules records the thresholds in force so a decision
    can be replayed later.
"""

from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Self, Sequence

from hotel_engines.tracer import traced_engine
from hotel_kernel.logging_config import get_logger

logger = get_logger("engines.rules")


ADJUSTMENT_TYPES: tuple[str, ...] = (
    "extra_person_charge",
    "damage_charge",
    "minibar_charge",
    "service_charge",
    "discount",
    "refund",
    "penalty",
    "cancellation_fee",
    "other",
)

NEGATIVE_ADJUSTMENT_TYPES = frozenset({"discount", "refund"})
POSITIVE_ADJUSTMENT_TYPES = frozenset(
    {"extra_person_charge", "damage_charge", "service_charge", "penalty"}
)
APPROVER_ROLES = frozenset({"admin", "manager"})
STRUCTURING_AMOUNTS = frozenset(
    Decimal(v) for v in ("49999", "99999", "199999", "499999")
)

_D = Decimal


# =========================================================================
# Configuration
# =========================================================================


@dataclass(frozen=True)
class RulesConfig:
    """
    Thresholds for the settlement rules (INR defaults).

    Override per deployment:

        config = RulesConfig.with_defaults().with_overrides(
            {"max_cash_payment": "150000"}
        )
    """

    max_cash_payment: Decimal = _D("200000")
    max_single_payment: Decimal = _D("10000000")
    min_payment_amount: Decimal = _D("1")
    max_settlement_amount: Decimal = _D("50000000")
    max_outstanding_days: int = 365
    max_late_fee_rate_pct_annual: Decimal = _D("25")
    min_grace_period_days: int = 0
    max_grace_period_days: int = 30
    supported_currencies: tuple[str, ...] = ("INR", "USD", "EUR", "GBP", "JPY")
    default_currency: str = "INR"
    large_transaction_threshold: Decimal = _D("1000000")
    suspicious_refund_threshold: Decimal = _D("500000")
    high_value_guest_threshold: Decimal = _D("2000000")
    corporate_max_discount_pct: Decimal = _D("20")
    large_cash_warning: Decimal = _D("50000")
    high_value_adjustment: Decimal = _D("100000")
    discount_approval_threshold: Decimal = _D("50000")
    cash_approval_ratio: Decimal = _D("0.8")
    refund_age_warning_days: int = 365

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type == "Decimal" and not isinstance(value, Decimal):
                object.__setattr__(self, f.name, Decimal(str(value)))
            elif f.type == "int" and not isinstance(value, int):
                object.__setattr__(self, f.name, int(value))
        if isinstance(self.supported_currencies, (list, set, frozenset)):
            object.__setattr__(
                self, "supported_currencies", tuple(self.supported_currencies)
            )
        if self.min_grace_period_days > self.max_grace_period_days:
            raise ValueError("min_grace_period_days cannot exceed max_grace_period_days")
        if self.min_payment_amount < 0:
            raise ValueError("min_payment_amount cannot be negative")

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls.with_defaults().with_overrides(data)

    @classmethod
    def from_json(cls, text: str) -> Self:
        data = json.loads(text) if text and text.strip() else {}
        if not isinstance(data, dict):
            raise ValueError("Rules overrides must be a JSON object")
        return cls.from_dict(data)

    def with_overrides(self, overrides: Mapping[str, Any]) -> Self:
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown rules settings: {', '.join(unknown)}")
        if not overrides:
            return self
        logger.info(
            "rules_config_overridden",
            extra={"keys": sorted(overrides.keys())},
        )
        return replace(self, **dict(overrides))

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe view used in RuleResult.applied_rules."""
        out: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if isinstance(value, Decimal):
                out[key] = str(value)
            elif isinstance(value, tuple):
                out[key] = list(value)
            else:
                out[key] = value
        return out


# =========================================================================
# Inputs
# =========================================================================


@dataclass(frozen=True)
class PaymentView:
    """A recorded settlement payment as seen by the rules."""

    amount: Decimal
    method: str
    status: str = "completed"
    kind: str = "receipt"


@dataclass(frozen=True)
class SettlementSnapshot:
    """Read-only view of a settlement's money state."""

    status: str
    currency: str
    original_amount: Decimal
    final_amount: Decimal
    total_paid: Decimal
    outstanding_balance: Decimal
    refund_amount: Decimal = _D("0")
    payments: tuple[PaymentView, ...] = ()
    created_at: datetime | None = None
    requires_manager_approval: bool = False


@dataclass(frozen=True)
class BookingView:
    """Booking facts the creation rules check against."""

    total_amount: Decimal
    guest_id: str | None = None
    status: str = "confirmed"
    guest_type: str = "individual"
    is_vip: bool = False


@dataclass(frozen=True)
class SettlementRequest:
    final_amount: Decimal
    currency: str
    due_date: date | None = None
    guest_id: str | None = None
    is_vip: bool = False
    late_fee_rate_pct_annual: Decimal | None = None
    grace_period_days: int | None = None
    adjustment_currencies: tuple[str, ...] = ()


@dataclass(frozen=True)
class PaymentRequest:
    amount: Decimal
    method: str
    reference: str | None = None
    allow_overpayment: bool = False


@dataclass(frozen=True)
class AdjustmentRequest:
    type: str
    amount: Decimal
    tax_amount: Decimal = _D("0")
    description: str | None = None
    attachments: tuple[str, ...] = ()
    applied_by_role: str | None = None


@dataclass(frozen=True)
class RefundRequest:
    amount: Decimal
    method: str
    reason: str | None = None


@dataclass(frozen=True)
class RuleResult:
    is_valid: bool
    violations: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    requires_approval: bool = False
    applied_rules: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
            "requires_approval": self.requires_approval,
            "applied_rules": dict(self.applied_rules),
        }


def _result(
    config: RulesConfig,
    violations: Sequence[str],
    warnings: Sequence[str],
    requires_approval: bool = False,
) -> RuleResult:
    return RuleResult(
        is_valid=not violations,
        violations=tuple(violations),
        warnings=tuple(warnings),
        requires_approval=requires_approval,
        applied_rules=config.snapshot(),
    )


# =========================================================================
# Engine
# =========================================================================


class RulesEngine:
    """
    Holder of the active RulesConfig plus the four validators.

    The validators are pure; the only state is the config reference, which
    is replaced (never mutated) by update_rules.
    """

    def __init__(self, config: RulesConfig | None = None):
        self._config = config or RulesConfig.with_defaults()
        self._lock = threading.Lock()

    @property
    def config(self) -> RulesConfig:
        return self._config

    def get_rules(self) -> dict[str, Any]:
        return self._config.snapshot()

    def update_rules(self, overrides: Mapping[str, Any]) -> RulesConfig:
        with self._lock:
            new_config = self._config.with_overrides(overrides)
            self._config = new_config
        logger.info("rules_updated", extra={"keys": sorted(overrides.keys())})
        return new_config

    # ------------------------------------------------------------------
    # Settlement creation
    # ------------------------------------------------------------------

    @traced_engine("rules.settlement_creation", "1.0", fingerprint_fields=("request", "booking"))
    def validate_settlement_creation(
        self,
        *,
        request: SettlementRequest,
        booking: BookingView | None,
        as_of: date,
    ) -> RuleResult:
        config = self._config
        violations: list[str] = []
        warnings: list[str] = []
        amount = request.final_amount

        if amount > config.max_settlement_amount:
            violations.append(
                f"Settlement amount exceeds maximum limit of {config.max_settlement_amount:.2f}"
            )
        if amount < 0:
            violations.append("Settlement amount cannot be negative")
        if request.currency not in config.supported_currencies:
            violations.append(f"Unsupported currency: {request.currency}")
        for index, currency in enumerate(request.adjustment_currencies, start=1):
            if currency and currency != request.currency:
                violations.append(f"Adjustment {index} currency mismatch")

        if request.due_date is not None:
            if (request.due_date - as_of).days > config.max_outstanding_days:
                warnings.append(
                    f"Due date is very far in the future ({config.max_outstanding_days} days)"
                )
            if request.due_date < as_of:
                warnings.append("Due date is in the past")

        if booking is None:
            violations.append("Associated booking not found")
        else:
            if amount < booking.total_amount * _D("0.5"):
                warnings.append("Settlement amount is significantly lower than booking amount")
            if amount > booking.total_amount * 2:
                warnings.append("Settlement amount is significantly higher than booking amount")
            if request.guest_id and booking.guest_id and request.guest_id != booking.guest_id:
                violations.append("Guest ID mismatch between settlement and booking")
            if booking.status == "cancelled":
                warnings.append("Creating settlement for cancelled booking")

        if amount > config.high_value_guest_threshold:
            warnings.append("High-value guest settlement requires enhanced documentation")
        if booking is not None and booking.guest_type == "corporate" and booking.total_amount > 0:
            discount_pct = (booking.total_amount - amount) / booking.total_amount * 100
            if discount_pct > config.corporate_max_discount_pct:
                violations.append(
                    "Corporate discount exceeds maximum allowed "
                    f"({config.corporate_max_discount_pct:.0f}%)"
                )
        if request.is_vip or (booking is not None and booking.is_vip):
            warnings.append("VIP guest settlement - ensure premium service standards")

        if request.late_fee_rate_pct_annual is not None:
            rate = request.late_fee_rate_pct_annual
            if rate > config.max_late_fee_rate_pct_annual:
                violations.append(
                    f"Late fee rate exceeds maximum ({config.max_late_fee_rate_pct_annual:.0f}%)"
                )
            if rate < 0:
                violations.append("Late fee rate cannot be negative")
        if request.grace_period_days is not None and not (
            config.min_grace_period_days
            <= request.grace_period_days
            <= config.max_grace_period_days
        ):
            violations.append(
                f"Grace period must be between {config.min_grace_period_days} "
                f"and {config.max_grace_period_days} days"
            )

        return _result(config, violations, warnings)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @traced_engine("rules.payment", "1.0", fingerprint_fields=("request", "settlement"))
    def validate_payment_processing(
        self,
        *,
        request: PaymentRequest,
        settlement: SettlementSnapshot,
    ) -> RuleResult:
        config = self._config
        violations: list[str] = []
        warnings: list[str] = []
        amount = request.amount
        outstanding = settlement.outstanding_balance

        if amount < config.min_payment_amount:
            violations.append(f"Payment amount below minimum ({config.min_payment_amount:.2f})")
        if amount > config.max_single_payment:
            violations.append(
                "Payment amount exceeds maximum single payment limit "
                f"({config.max_single_payment:.2f})"
            )
        if amount > outstanding * _D("1.5"):
            warnings.append("Payment amount significantly exceeds outstanding balance")
        if amount == amount.to_integral_value():
            warnings.append("Round amount payment detected - may need verification")

        if request.method == "cash":
            if amount > config.max_cash_payment:
                violations.append(f"Cash payment exceeds limit ({config.max_cash_payment:.2f})")
            if amount > config.large_cash_warning:
                warnings.append("Large cash payment - ensure compliance documentation")
        elif request.method == "card":
            if not request.reference:
                warnings.append("Card payment missing transaction reference")
        elif request.method == "bank_transfer":
            if not request.reference:
                violations.append("Bank transfer requires transaction reference")
        elif request.method == "upi":
            if not request.reference:
                violations.append("UPI payment requires transaction ID")

        if amount > config.large_transaction_threshold:
            warnings.append("Large transaction - AML reporting may be required")
        if request.method == "cash":
            prior_cash = sum(
                (
                    p.amount
                    for p in settlement.payments
                    if p.method == "cash" and p.status == "completed" and p.kind == "receipt"
                ),
                _D("0"),
            )
            if prior_cash + amount > config.max_cash_payment:
                warnings.append("Multiple cash payments approaching compliance threshold")
        if amount in STRUCTURING_AMOUNTS:
            warnings.append("Payment amount matches common structuring pattern")

        if settlement.status == "completed":
            violations.append("Cannot add payment to completed settlement")
        if settlement.status == "cancelled":
            violations.append("Cannot add payment to cancelled settlement")
        if settlement.status == "refunded":
            violations.append("Cannot add payment to refunded settlement")
        if amount > outstanding and not request.allow_overpayment:
            violations.append("Payment would result in overpayment")
        if amount < outstanding * _D("0.1"):
            warnings.append("Very small partial payment - consider minimum payment policies")

        requires_approval = (
            amount > config.large_transaction_threshold
            or (
                request.method == "cash"
                and amount > config.max_cash_payment * config.cash_approval_ratio
            )
            or settlement.requires_manager_approval
        )
        return _result(config, violations, warnings, requires_approval)

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    @traced_engine("rules.adjustment", "1.0", fingerprint_fields=("request", "settlement"))
    def validate_adjustment_rules(
        self,
        *,
        request: AdjustmentRequest,
        settlement: SettlementSnapshot,
    ) -> RuleResult:
        config = self._config
        violations: list[str] = []
        warnings: list[str] = []
        amount = request.amount
        magnitude = abs(amount)

        if request.type not in ADJUSTMENT_TYPES:
            violations.append(f"Invalid adjustment type: {request.type}")
        if request.type in NEGATIVE_ADJUSTMENT_TYPES and amount > 0:
            warnings.append(f"{request.type} should typically be negative")
        if request.type in POSITIVE_ADJUSTMENT_TYPES and amount < 0:
            warnings.append(f"{request.type} should typically be positive")

        if magnitude > config.high_value_adjustment and request.applied_by_role not in APPROVER_ROLES:
            violations.append("High-value adjustment requires admin/manager authorization")
        if request.type == "damage_charge" and not request.attachments:
            warnings.append("Damage charge should include supporting documentation")
        if request.type == "service_charge" and not (request.description or "").strip():
            violations.append("Service charge requires detailed description")

        if settlement.final_amount + amount + request.tax_amount < 0:
            violations.append("Adjustment would result in negative final amount")
        if settlement.original_amount > 0 and magnitude > settlement.original_amount:
            warnings.append("Adjustment exceeds 100% of original amount")

        requires_approval = (
            magnitude > config.high_value_adjustment
            or (request.type == "discount" and magnitude > config.discount_approval_threshold)
            or settlement.requires_manager_approval
        )
        return _result(config, violations, warnings, requires_approval)

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    @traced_engine("rules.refund", "1.0", fingerprint_fields=("request", "settlement"))
    def validate_refund(
        self,
        *,
        request: RefundRequest,
        settlement: SettlementSnapshot,
        as_of: datetime,
    ) -> RuleResult:
        config = self._config
        violations: list[str] = []
        warnings: list[str] = []

        if settlement.status == "cancelled":
            violations.append("Cannot process refund for cancelled settlement")
        if settlement.total_paid <= 0:
            violations.append("No payments to refund")
        if settlement.created_at is not None:
            age_days = (as_of - settlement.created_at).days
            if age_days > config.refund_age_warning_days:
                warnings.append("Refund request for settlement older than 1 year")

        max_refundable = settlement.total_paid - settlement.final_amount
        if request.amount > max_refundable:
            violations.append(f"Refund amount exceeds refundable amount ({max_refundable:.2f})")
        if request.amount > config.suspicious_refund_threshold:
            warnings.append("Large refund amount - enhanced verification recommended")

        if request.method == "cash" and not (request.reason or "").strip():
            violations.append("Cash refund requires detailed reason")
        if request.method == "refund_to_source" and not any(
            p.method == "card" and p.kind == "receipt" for p in settlement.payments
        ):
            violations.append("No card payment found for refund to source")

        requires_approval = (
            request.amount > config.suspicious_refund_threshold
            or request.method == "cash"
            or settlement.requires_manager_approval
        )
        return _result(config, violations, warnings, requires_approval)
