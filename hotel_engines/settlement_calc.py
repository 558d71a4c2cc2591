"""
Module: hotel_engines.settlement_calc
Responsibility:
    The settlement validation pipeline and its helpers: recompute the money
    figures from adjustments and payments, detect drift from the stored
    values, derive the canonical status, and build the audit entry and
    validation metadata. Also late-fee assessment and the escalation ladder.
Architecture position:
    Engines -- pure calculation layer, zero I/O. The settlement service
    feeds it a SettlementState and writes the PipelineResult back.
Invariants enforced:
    - final_amount = original_amount + sum(adjustment.amount + adjustment.tax_amount)
    - total_paid = completed receipts - completed refunds
    - outstanding_balance = max(0, final_amount - total_paid)
    - refund_amount = max(0, total_paid - final_amount)
    - Status is a function of (figures, due_date, as_of, explicit cancel) only.
    - Running the pipeline on its own output yields no corrections.
Failure modes:
    - Unrecoverable inconsistencies (negative original or final amount) are
      returned in PipelineResult.errors; the caller refuses the save.
Audit relevance:
    Every drift between stored and recomputed values produces one
    ``auto_correction`` audit entry carrying both sets of values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any

from hotel_engines.tracer import traced_engine
from hotel_kernel.domain.values import TOLERANCE, Money, quantize_amount
from hotel_kernel.logging_config import get_logger

logger = get_logger("engines.settlement_calc")

ZERO = Decimal("0")
MAX_ESCALATION_LEVEL = 5
LARGE_CASH_TOTAL = Decimal("200000")
UNUSUAL_FINAL_AMOUNT = Decimal("999999999.99")
CREDIT_ADJUSTMENT_TYPES = frozenset({"discount", "refund"})

ESCALATION_ACTIONS: dict[int, str] = {
    1: "first reminder",
    2: "second reminder",
    3: "manager review",
    4: "legal notice",
    5: "collections referral",
}

FIGURE_FIELDS = (
    "final_amount",
    "total_paid",
    "outstanding_balance",
    "refund_amount",
)


class SettlementStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


CLOSED_FOR_LATE_FEES = frozenset(
    {SettlementStatus.COMPLETED, SettlementStatus.CANCELLED, SettlementStatus.REFUNDED}
)


@dataclass(frozen=True)
class AdjustmentFigure:
    type: str
    amount: Decimal
    tax_amount: Decimal = ZERO
    taxable: bool = False


@dataclass(frozen=True)
class PaymentFigure:
    amount: Decimal
    method: str
    kind: str = "receipt"
    status: str = "completed"

    @property
    def counts(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True)
class SettlementFigures:
    original_amount: Decimal
    final_amount: Decimal
    total_paid: Decimal
    outstanding_balance: Decimal
    refund_amount: Decimal

    def as_strings(self) -> dict[str, str]:
        return {
            name: format(getattr(self, name), "f")
            for name in ("original_amount",) + FIGURE_FIELDS
        }


@dataclass(frozen=True)
class SettlementState:
    """Stored settlement values handed to the pipeline."""

    status: SettlementStatus
    currency: str
    due_date: date | None
    original_amount: Decimal
    final_amount: Decimal
    total_paid: Decimal
    outstanding_balance: Decimal
    refund_amount: Decimal
    completed_date: datetime | None = None
    adjustments: tuple[AdjustmentFigure, ...] = ()
    payments: tuple[PaymentFigure, ...] = ()


@dataclass(frozen=True)
class PipelineResult:
    figures: SettlementFigures
    status: SettlementStatus
    completed_date: datetime | None
    corrections: dict[str, str] = field(default_factory=dict)
    audit_entry: dict[str, Any] | None = None
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_corrections(self) -> bool:
        return bool(self.corrections)


def recompute_figures(
    original_amount: Decimal,
    adjustments: tuple[AdjustmentFigure, ...] | list[AdjustmentFigure],
    payments: tuple[PaymentFigure, ...] | list[PaymentFigure],
) -> SettlementFigures:
    final = original_amount + sum((a.amount + a.tax_amount for a in adjustments), ZERO)
    receipts = sum((p.amount for p in payments if p.counts and p.kind == "receipt"), ZERO)
    refunds = sum((p.amount for p in payments if p.counts and p.kind == "refund"), ZERO)
    paid = receipts - refunds
    return SettlementFigures(
        original_amount=quantize_amount(original_amount),
        final_amount=quantize_amount(final),
        total_paid=quantize_amount(paid),
        outstanding_balance=quantize_amount(max(ZERO, final - paid)),
        refund_amount=quantize_amount(max(ZERO, paid - final)),
    )


def derive_status(
    current: SettlementStatus,
    figures: SettlementFigures,
    due_date: date | None,
    as_of: date,
) -> SettlementStatus:
    """The one place a settlement status is decided."""
    if current == SettlementStatus.CANCELLED:
        return SettlementStatus.CANCELLED
    outstanding_zero = abs(figures.outstanding_balance) <= TOLERANCE
    refund_zero = abs(figures.refund_amount) <= TOLERANCE
    if outstanding_zero and refund_zero:
        return SettlementStatus.COMPLETED
    if not refund_zero:
        return SettlementStatus.REFUNDED
    if due_date is not None and as_of > due_date:
        return SettlementStatus.OVERDUE
    if figures.total_paid > TOLERANCE:
        return SettlementStatus.PARTIAL
    return SettlementStatus.PENDING


def _check(state: SettlementState, figures: SettlementFigures) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []
    if figures.original_amount < 0:
        errors.append("Original amount cannot be negative")
    if figures.final_amount < 0:
        errors.append("Final amount cannot be negative")
    if figures.final_amount > UNUSUAL_FINAL_AMOUNT:
        warnings.append("Final amount is unusually large and may need review")
    if figures.final_amount == 0 and figures.original_amount > 0:
        warnings.append(
            "Final amount is zero but original amount is positive - verify adjustments"
        )
    for index, adjustment in enumerate(state.adjustments, start=1):
        if adjustment.amount == 0:
            warnings.append(f"Adjustment {index} has zero amount")
        if adjustment.taxable and adjustment.tax_amount == 0 and adjustment.amount != 0:
            warnings.append(f"Adjustment {index} is marked taxable but has zero tax amount")
        if adjustment.type in CREDIT_ADJUSTMENT_TYPES and adjustment.amount > 0:
            warnings.append(
                f"Adjustment {index} of type '{adjustment.type}' should be negative"
            )
    cash_total = sum(
        (p.amount for p in state.payments if p.method == "cash" and p.kind == "receipt"),
        ZERO,
    )
    if cash_total > LARGE_CASH_TOTAL:
        warnings.append("Large cash payment detected - may require compliance review")
    return errors, warnings


@traced_engine("settlement_pipeline", "1.0", fingerprint_fields=("state", "as_of"))
def run_validation_pipeline(*, state: SettlementState, as_of: datetime) -> PipelineResult:
    """
    Recompute, correct, derive status, and describe the outcome.

    The result carries the values to store; nothing is mutated here.
    """
    figures = recompute_figures(state.original_amount, state.adjustments, state.payments)

    stored = {name: getattr(state, name) for name in FIGURE_FIELDS}
    corrections: dict[str, str] = {}
    original_values: dict[str, str] = {}
    for name in FIGURE_FIELDS:
        new_value = getattr(figures, name)
        if abs(stored[name] - new_value) > TOLERANCE:
            corrections[name] = format(new_value, "f")
            original_values[name] = format(stored[name], "f")

    audit_entry = None
    if corrections:
        audit_entry = {
            "timestamp": as_of.isoformat(),
            "type": "auto_correction",
            "original_values": original_values,
            "corrections": corrections,
            "reason": "Recomputed from adjustments and payments",
        }

    status = derive_status(state.status, figures, state.due_date, as_of.date())
    completed_date = state.completed_date
    if status == SettlementStatus.COMPLETED and completed_date is None:
        completed_date = as_of

    errors, warnings = _check(state, figures)
    metadata = {
        "last_validated": as_of.isoformat(),
        "is_valid": not errors,
        "error_count": len(errors),
        "warning_count": len(warnings),
        "has_corrections": bool(corrections),
    }
    if errors:
        logger.warning(
            "settlement_pipeline_errors",
            extra={"errors": errors, "status": status.value},
        )
    return PipelineResult(
        figures=figures,
        status=status,
        completed_date=completed_date,
        corrections=corrections,
        audit_entry=audit_entry,
        errors=tuple(errors),
        warnings=tuple(warnings),
        metadata=metadata,
    )


# =========================================================================
# Late fees
# =========================================================================


@dataclass(frozen=True)
class LateFeeTerms:
    late_fee_rate_pct_annual: Decimal = Decimal("2")
    grace_period_days: int = 3
    max_escalation_level: int = MAX_ESCALATION_LEVEL

    def __post_init__(self) -> None:
        if self.grace_period_days < 0:
            raise ValueError("grace_period_days cannot be negative")
        if self.late_fee_rate_pct_annual < 0:
            raise ValueError("late_fee_rate_pct_annual cannot be negative")


@dataclass(frozen=True)
class LateFeeAssessment:
    fee: Money
    days_late: int
    applicable: bool


def days_overdue(due_date: date | None, as_of: date) -> int:
    if due_date is None:
        return 0
    return max(0, (as_of - due_date).days)


@traced_engine("late_fee", "1.0", fingerprint_fields=("status", "outstanding", "due_date", "as_of"))
def calculate_late_fee(
    *,
    status: SettlementStatus,
    outstanding: Money,
    due_date: date | None,
    terms: LateFeeTerms,
    as_of: date,
) -> LateFeeAssessment:
    """
    Simple annual-rate interest on the outstanding balance for each whole
    day past the grace period, banker's-rounded to 2 digits.
    """
    zero = LateFeeAssessment(Money.zero(outstanding.currency), 0, False)
    if status in CLOSED_FOR_LATE_FEES or due_date is None:
        return zero
    days_late = (as_of - due_date).days - terms.grace_period_days
    if days_late <= 0 or not outstanding.is_positive:
        return zero
    fee = (
        outstanding.amount
        * terms.late_fee_rate_pct_annual
        / Decimal("100")
        * Decimal(days_late)
        / Decimal("365")
    )
    return LateFeeAssessment(
        fee=Money.of(fee, outstanding.currency).round(2),
        days_late=days_late,
        applicable=True,
    )


# =========================================================================
# Escalation
# =========================================================================


def escalation_cap(max_escalation_level: int) -> int:
    return max(0, min(max_escalation_level, MAX_ESCALATION_LEVEL))


def escalation_action(level: int) -> str:
    try:
        return ESCALATION_ACTIONS[level]
    except KeyError:
        raise ValueError(f"No escalation action for level {level}") from None


def next_reminder_due(now: datetime, level: int) -> datetime:
    """Exponential backoff: 2**level days, level capped at the ladder top."""
    capped = min(max(level, 0), MAX_ESCALATION_LEVEL)
    return now + timedelta(days=2**capped)
