"""
Settlement Domain Models (``hotel_modules.settlement.models``).

Responsibility
--------------
Enums and frozen value objects for the per-booking settlement record:
adjustment and payment inputs, guest and booking details, terms,
communications, disputes, and the read DTOs returned by ``to_dto()``.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O. The money
calculations themselves live in ``hotel_engines.settlement_calc``.

Invariants enforced
-------------------
* Input amounts are Decimal; floats are rejected by ``to_decimal``.
* Payment amounts are positive; adjustment amounts are signed.
* Terms respect the grace-period range [0, 30] and a non-negative rate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from hotel_engines.settlement_calc import (
    MAX_ESCALATION_LEVEL,
    AdjustmentFigure,
    LateFeeTerms,
    SettlementStatus,
)
from hotel_kernel.domain.values import to_decimal
from hotel_kernel.exceptions import InvalidAmountError, ValidationError

ZERO = Decimal("0")


class AdjustmentType(str, Enum):
    EXTRA_PERSON_CHARGE = "extra_person_charge"
    DAMAGE_CHARGE = "damage_charge"
    MINIBAR_CHARGE = "minibar_charge"
    SERVICE_CHARGE = "service_charge"
    DISCOUNT = "discount"
    REFUND = "refund"
    PENALTY = "penalty"
    CANCELLATION_FEE = "cancellation_fee"
    OTHER = "other"


# Adjustments of these types above the threshold need an approver role.
AUTHORIZED_ADJUSTMENT_TYPES = frozenset({AdjustmentType.DISCOUNT, AdjustmentType.REFUND})


class AdjustmentCategory(str, Enum):
    ROOM_CHARGE = "room_charge"
    FOOD_BEVERAGE = "food_beverage"
    AMENITIES = "amenities"
    SERVICES = "services"
    DAMAGES = "damages"
    PENALTIES = "penalties"
    CREDITS = "credits"


class SettlementPaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    ONLINE_PORTAL = "online_portal"
    REFUND_TO_SOURCE = "refund_to_source"


class SettlementPaymentKind(str, Enum):
    RECEIPT = "receipt"
    REFUND = "refund"


class SettlementPaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CommunicationType(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PHONE_CALL = "phone_call"
    LETTER = "letter"
    IN_PERSON = "in_person"


class CommunicationDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class CommunicationStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    RESPONDED = "responded"
    FAILED = "failed"


class DisputeType(str, Enum):
    CHARGE_DISPUTE = "charge_dispute"
    SERVICE_COMPLAINT = "service_complaint"
    BILLING_ERROR = "billing_error"
    DAMAGE_CLAIM = "damage_claim"
    OTHER = "other"


class DisputeStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


CLOSED_DISPUTE_STATUSES = frozenset({DisputeStatus.RESOLVED, DisputeStatus.REJECTED})


class DisputeRaisedBy(str, Enum):
    GUEST = "guest"
    HOTEL = "hotel"


class AuditEntryType(str, Enum):
    AUTO_CORRECTION = "auto_correction"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    PAYMENT_ADDITION = "payment_addition"
    REFUND_ISSUED = "refund_issued"
    CANCELLATION = "cancellation"
    VALIDATION_OVERRIDE = "validation_override"


# =========================================================================
# Inputs
# =========================================================================


@dataclass(frozen=True)
class GuestDetails:
    name: str
    guest_id: str | None = None
    email: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Guest name is required", field="guest.name")
        object.__setattr__(self, "name", self.name.strip())
        if self.email:
            object.__setattr__(self, "email", self.email.strip().lower())


@dataclass(frozen=True)
class BookingDetails:
    booking_number: str | None = None
    check_in_date: date | None = None
    check_out_date: date | None = None
    room_numbers: tuple[str, ...] = ()
    nights: int | None = None
    adults: int = 1
    children: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "booking_number": self.booking_number,
            "check_in_date": self.check_in_date.isoformat() if self.check_in_date else None,
            "check_out_date": self.check_out_date.isoformat() if self.check_out_date else None,
            "room_numbers": list(self.room_numbers),
            "nights": self.nights,
            "adults": self.adults,
            "children": self.children,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BookingDetails | None:
        if not data:
            return None
        return cls(
            booking_number=data.get("booking_number"),
            check_in_date=date.fromisoformat(data["check_in_date"]) if data.get("check_in_date") else None,
            check_out_date=date.fromisoformat(data["check_out_date"]) if data.get("check_out_date") else None,
            room_numbers=tuple(data.get("room_numbers") or ()),
            nights=data.get("nights"),
            adults=data.get("adults", 1),
            children=data.get("children", 0),
        )


@dataclass(frozen=True)
class SettlementTerms:
    payment_terms: str = "Payment due within 7 days of checkout"
    late_fee_rate_pct_annual: Decimal = Decimal("2")
    grace_period_days: int = 3
    max_escalation_level: int = MAX_ESCALATION_LEVEL

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "late_fee_rate_pct_annual",
            to_decimal(self.late_fee_rate_pct_annual, field="terms.late_fee_rate_pct_annual"),
        )
        if self.late_fee_rate_pct_annual < 0:
            raise InvalidAmountError("Late fee rate cannot be negative", field="terms.late_fee_rate_pct_annual")
        if not 0 <= self.grace_period_days <= 30:
            raise ValidationError("Grace period must be between 0 and 30 days", field="terms.grace_period_days")
        if not 0 <= self.max_escalation_level <= MAX_ESCALATION_LEVEL:
            raise ValidationError(
                f"Max escalation level must be between 0 and {MAX_ESCALATION_LEVEL}",
                field="terms.max_escalation_level",
            )

    def late_fee_terms(self) -> LateFeeTerms:
        return LateFeeTerms(
            late_fee_rate_pct_annual=self.late_fee_rate_pct_annual,
            grace_period_days=self.grace_period_days,
            max_escalation_level=self.max_escalation_level,
        )


@dataclass(frozen=True)
class AdjustmentInput:
    """A signed change to the settlement total; credits are negative."""

    type: AdjustmentType
    amount: Decimal
    description: str
    category: AdjustmentCategory = AdjustmentCategory.SERVICES
    tax_amount: Decimal = ZERO
    taxable: bool = True
    attachments: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", AdjustmentType(self.type))
        object.__setattr__(self, "category", AdjustmentCategory(self.category))
        object.__setattr__(self, "amount", to_decimal(self.amount, field="adjustment.amount"))
        object.__setattr__(self, "tax_amount", to_decimal(self.tax_amount, field="adjustment.tax_amount"))
        object.__setattr__(self, "attachments", tuple(self.attachments))
        if not self.description or not self.description.strip():
            raise ValidationError("Adjustment description is required", field="adjustment.description")

    @property
    def effect(self) -> Decimal:
        return self.amount + self.tax_amount

    def figure(self) -> AdjustmentFigure:
        return AdjustmentFigure(self.type.value, self.amount, self.tax_amount, self.taxable)


@dataclass(frozen=True)
class SettlementPaymentInput:
    amount: Decimal
    method: SettlementPaymentMethod
    reference: str | None = None
    notes: str | None = None
    allow_overpayment: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", SettlementPaymentMethod(self.method))
        object.__setattr__(self, "amount", to_decimal(self.amount, field="payment.amount"))
        if self.amount <= 0:
            raise InvalidAmountError("Payment amount must be positive", field="payment.amount")


@dataclass(frozen=True)
class CommunicationInput:
    type: CommunicationType
    subject: str
    message: str
    direction: CommunicationDirection = CommunicationDirection.OUTBOUND
    status: CommunicationStatus = CommunicationStatus.SENT
    template: str | None = None
    attachments: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", CommunicationType(self.type))
        object.__setattr__(self, "direction", CommunicationDirection(self.direction))
        object.__setattr__(self, "status", CommunicationStatus(self.status))


@dataclass(frozen=True)
class DisputeInput:
    type: DisputeType
    description: str
    raised_by: DisputeRaisedBy = DisputeRaisedBy.GUEST
    amount: Decimal | None = None
    evidence: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", DisputeType(self.type))
        object.__setattr__(self, "raised_by", DisputeRaisedBy(self.raised_by))
        if self.amount is not None:
            object.__setattr__(self, "amount", to_decimal(self.amount, field="dispute.amount"))
        if not self.description or not self.description.strip():
            raise ValidationError("Dispute description is required", field="dispute.description")


# =========================================================================
# Read models
# =========================================================================


@dataclass(frozen=True)
class SettlementAdjustment:
    id: UUID
    type: AdjustmentType
    category: AdjustmentCategory
    amount: Decimal
    tax_amount: Decimal
    taxable: bool
    description: str
    applied_at: datetime
    applied_by_id: str
    applied_by_role: str
    journal_entry_id: UUID | None = None


@dataclass(frozen=True)
class SettlementPayment:
    id: UUID
    kind: SettlementPaymentKind
    amount: Decimal
    method: SettlementPaymentMethod
    status: SettlementPaymentStatus
    processed_at: datetime
    processed_by_id: str
    reference: str | None = None
    notes: str | None = None
    journal_entry_id: UUID | None = None


@dataclass(frozen=True)
class Escalation:
    level: int
    escalated_at: datetime
    escalated_by_id: str
    reason: str
    action: str


@dataclass(frozen=True)
class Communication:
    id: UUID
    type: CommunicationType
    direction: CommunicationDirection
    subject: str
    message: str
    status: CommunicationStatus
    sent_at: datetime
    sent_by_id: str


@dataclass(frozen=True)
class Dispute:
    id: UUID
    type: DisputeType
    description: str
    raised_by: DisputeRaisedBy
    status: DisputeStatus
    raised_at: datetime
    amount: Decimal | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None
    resolved_by_id: str | None = None
    evidence: tuple[str, ...] = ()


@dataclass(frozen=True)
class AuditEntry:
    timestamp: datetime
    type: AuditEntryType
    original_values: dict[str, Any]
    corrections: dict[str, Any]
    reason: str
    performed_by_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Settlement:
    id: UUID
    number: str
    hotel_id: str
    booking_id: str
    status: SettlementStatus
    currency: str
    original_amount: Decimal
    final_amount: Decimal
    total_paid: Decimal
    outstanding_balance: Decimal
    refund_amount: Decimal
    due_date: date | None
    completed_date: datetime | None
    escalation_level: int
    next_reminder_due: datetime | None
    guest: GuestDetails
    booking: BookingDetails | None
    terms: SettlementTerms
    is_vip: bool
    is_corporate: bool
    requires_manager_approval: bool
    is_high_value: bool
    validation_metadata: dict[str, Any]
    adjustments: tuple[SettlementAdjustment, ...] = ()
    payments: tuple[SettlementPayment, ...] = ()
    escalations: tuple[Escalation, ...] = ()
    communications: tuple[Communication, ...] = ()
    disputes: tuple[Dispute, ...] = ()
    audit_log: tuple[AuditEntry, ...] = ()
    journal_entry_id: UUID | None = None
    notes: str | None = None
