"""
Settlement ORM Models (``hotel_modules.settlement.orm``).

Responsibility
--------------
SQLAlchemy persistence for settlements and their child records:
adjustments, payments and refunds, escalation history, communications,
disputes, and the calculation audit log.

Architecture position
---------------------
**Modules layer** -- persistence. Imports from ``hotel_kernel.db.base``
and sibling ``models.py``. MUST NOT be imported by ``hotel_kernel``.

Invariants enforced
-------------------
* number is unique within a hotel (uq_settlements_hotel_number).
* Child records are append-only from the service's point of view; only
  dispute status fields change after insert.
* The stored figures are whatever the validation pipeline last wrote.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotel_kernel.db.base import Base, TrackedBase
from hotel_kernel.db.types import DecimalString, RATE_DECIMAL_PLACES


# ---------------------------------------------------------------------------
# 1. SettlementModel
# ---------------------------------------------------------------------------


class SettlementModel(TrackedBase):
    """
    One booking's money lifecycle.

    Guarantees:
        - status is only ever written from the validation pipeline result
          or by an explicit cancel.
        - completed_date is set once, on first entry into COMPLETED.
        - journal_entry_id is the A/R entry posted at creation.
    """

    __tablename__ = "settlements"

    __table_args__ = (
        UniqueConstraint("hotel_id", "number", name="uq_settlements_hotel_number"),
        Index("idx_settlements_hotel_status_due", "hotel_id", "status", "due_date"),
        Index("idx_settlements_hotel_escalation", "hotel_id", "escalation_level", "status"),
        Index("idx_settlements_guest_status", "guest_id", "status"),
        Index("idx_settlements_booking", "booking_id"),
    )

    hotel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    booking_id: Mapped[str] = mapped_column(String(64), nullable=False)
    number: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    original_amount: Mapped[Decimal] = mapped_column(nullable=False)
    final_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_paid: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    outstanding_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    refund_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    opened_at: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    completed_date: Mapped[datetime | None] = mapped_column(nullable=True)
    last_reminder_sent: Mapped[datetime | None] = mapped_column(nullable=True)
    next_reminder_due: Mapped[datetime | None] = mapped_column(nullable=True)
    escalation_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    guest_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guest_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    booking_details: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    payment_terms: Mapped[str] = mapped_column(String(500), nullable=False)
    late_fee_rate_pct_annual: Mapped[Decimal] = mapped_column(
        DecimalString(RATE_DECIMAL_PLACES), nullable=False
    )
    grace_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    max_escalation_level: Mapped[int] = mapped_column(Integer, nullable=False)

    is_vip: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_corporate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_manager_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_high_value: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    validation_metadata: Mapped[dict[str, Any]] = mapped_column(default=dict)
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    adjustments: Mapped[list["SettlementAdjustmentModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementAdjustmentModel.sequence",
    )
    payments: Mapped[list["SettlementPaymentModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementPaymentModel.sequence",
    )
    escalations: Mapped[list["SettlementEscalationModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementEscalationModel.level",
    )
    communications: Mapped[list["SettlementCommunicationModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementCommunicationModel.sequence",
    )
    disputes: Mapped[list["SettlementDisputeModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementDisputeModel.raised_at",
    )
    audit_log: Mapped[list["SettlementAuditLogModel"]] = relationship(
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementAuditLogModel.sequence",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from hotel_modules.settlement.models import (
            BookingDetails,
            GuestDetails,
            Settlement,
            SettlementStatus,
            SettlementTerms,
        )

        return Settlement(
            id=self.id,
            number=self.number,
            hotel_id=self.hotel_id,
            booking_id=self.booking_id,
            status=SettlementStatus(self.status),
            currency=self.currency,
            original_amount=self.original_amount,
            final_amount=self.final_amount,
            total_paid=self.total_paid,
            outstanding_balance=self.outstanding_balance,
            refund_amount=self.refund_amount,
            due_date=self.due_date,
            completed_date=self.completed_date,
            escalation_level=self.escalation_level,
            next_reminder_due=self.next_reminder_due,
            guest=GuestDetails(
                name=self.guest_name,
                guest_id=self.guest_id,
                email=self.guest_email,
                phone=self.guest_phone,
            ),
            booking=BookingDetails.from_dict(self.booking_details),
            terms=SettlementTerms(
                payment_terms=self.payment_terms,
                late_fee_rate_pct_annual=self.late_fee_rate_pct_annual,
                grace_period_days=self.grace_period_days,
                max_escalation_level=self.max_escalation_level,
            ),
            is_vip=self.is_vip,
            is_corporate=self.is_corporate,
            requires_manager_approval=self.requires_manager_approval,
            is_high_value=self.is_high_value,
            validation_metadata=dict(self.validation_metadata or {}),
            adjustments=tuple(a.to_dto() for a in self.adjustments),
            payments=tuple(p.to_dto() for p in self.payments),
            escalations=tuple(e.to_dto() for e in self.escalations),
            communications=tuple(c.to_dto() for c in self.communications),
            disputes=tuple(d.to_dto() for d in self.disputes),
            audit_log=tuple(a.to_dto() for a in self.audit_log),
            journal_entry_id=self.journal_entry_id,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return f"<SettlementModel {self.number} [{self.status}] {self.outstanding_balance}>"


# ---------------------------------------------------------------------------
# 2. Child records
# ---------------------------------------------------------------------------


class SettlementAdjustmentModel(Base):
    __tablename__ = "settlement_adjustments"

    __table_args__ = (
        UniqueConstraint("settlement_id", "sequence", name="uq_settlement_adjustments_seq"),
    )

    settlement_id: Mapped[UUID] = mapped_column(ForeignKey("settlements.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    attachments: Mapped[list[Any]] = mapped_column(default=list)
    applied_at: Mapped[datetime] = mapped_column(nullable=False)
    applied_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    applied_by_role: Mapped[str] = mapped_column(String(20), nullable=False)
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )

    settlement: Mapped[SettlementModel] = relationship(back_populates="adjustments")

    def to_dto(self):
        from hotel_modules.settlement.models import (
            AdjustmentCategory,
            AdjustmentType,
            SettlementAdjustment,
        )

        return SettlementAdjustment(
            id=self.id,
            type=AdjustmentType(self.type),
            category=AdjustmentCategory(self.category),
            amount=self.amount,
            tax_amount=self.tax_amount,
            taxable=self.taxable,
            description=self.description,
            applied_at=self.applied_at,
            applied_by_id=self.applied_by_id,
            applied_by_role=self.applied_by_role,
            journal_entry_id=self.journal_entry_id,
        )


class SettlementPaymentModel(Base):
    """A receipt or refund against the settlement; kind says which."""

    __tablename__ = "settlement_payments"

    __table_args__ = (
        UniqueConstraint("settlement_id", "sequence", name="uq_settlement_payments_seq"),
    )

    settlement_id: Mapped[UUID] = mapped_column(ForeignKey("settlements.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False, default="receipt")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    processed_at: Mapped[datetime] = mapped_column(nullable=False)
    processed_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    processed_by_role: Mapped[str] = mapped_column(String(20), nullable=False)
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )

    settlement: Mapped[SettlementModel] = relationship(back_populates="payments")

    def to_dto(self):
        from hotel_modules.settlement.models import (
            SettlementPayment,
            SettlementPaymentKind,
            SettlementPaymentMethod,
            SettlementPaymentStatus,
        )

        return SettlementPayment(
            id=self.id,
            kind=SettlementPaymentKind(self.kind),
            amount=self.amount,
            method=SettlementPaymentMethod(self.method),
            status=SettlementPaymentStatus(self.status),
            processed_at=self.processed_at,
            processed_by_id=self.processed_by_id,
            reference=self.reference,
            notes=self.notes,
            journal_entry_id=self.journal_entry_id,
        )


class SettlementEscalationModel(Base):
    __tablename__ = "settlement_escalations"

    __table_args__ = (
        UniqueConstraint("settlement_id", "level", name="uq_settlement_escalations_level"),
    )

    settlement_id: Mapped[UUID] = mapped_column(ForeignKey("settlements.id"), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalated_at: Mapped[datetime] = mapped_column(nullable=False)
    escalated_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)

    settlement: Mapped[SettlementModel] = relationship(back_populates="escalations")

    def to_dto(self):
        from hotel_modules.settlement.models import Escalation

        return Escalation(
            level=self.level,
            escalated_at=self.escalated_at,
            escalated_by_id=self.escalated_by_id,
            reason=self.reason,
            action=self.action,
        )


class SettlementCommunicationModel(Base):
    __tablename__ = "settlement_communications"

    settlement_id: Mapped[UUID] = mapped_column(ForeignKey("settlements.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(String(4000), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    template: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attachments: Mapped[list[Any]] = mapped_column(default=list)
    sent_at: Mapped[datetime] = mapped_column(nullable=False)
    sent_by_id: Mapped[str] = mapped_column(String(64), nullable=False)

    settlement: Mapped[SettlementModel] = relationship(back_populates="communications")

    def to_dto(self):
        from hotel_modules.settlement.models import (
            Communication,
            CommunicationDirection,
            CommunicationStatus,
            CommunicationType,
        )

        return Communication(
            id=self.id,
            type=CommunicationType(self.type),
            direction=CommunicationDirection(self.direction),
            subject=self.subject,
            message=self.message,
            status=CommunicationStatus(self.status),
            sent_at=self.sent_at,
            sent_by_id=self.sent_by_id,
        )


class SettlementDisputeModel(Base):
    __tablename__ = "settlement_disputes"

    __table_args__ = (
        Index("idx_settlement_disputes_status", "settlement_id", "status"),
    )

    settlement_id: Mapped[UUID] = mapped_column(ForeignKey("settlements.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(String(2000), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    raised_by: Mapped[str] = mapped_column(String(10), nullable=False)
    raised_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    resolution: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    evidence: Mapped[list[Any]] = mapped_column(default=list)

    settlement: Mapped[SettlementModel] = relationship(back_populates="disputes")

    def to_dto(self):
        from hotel_modules.settlement.models import (
            Dispute,
            DisputeRaisedBy,
            DisputeStatus,
            DisputeType,
        )

        return Dispute(
            id=self.id,
            type=DisputeType(self.type),
            description=self.description,
            raised_by=DisputeRaisedBy(self.raised_by),
            status=DisputeStatus(self.status),
            raised_at=self.raised_at,
            amount=self.amount,
            resolution=self.resolution,
            resolved_at=self.resolved_at,
            resolved_by_id=self.resolved_by_id,
            evidence=tuple(self.evidence or ()),
        )


class SettlementAuditLogModel(Base):
    """Append-only calculation audit trail."""

    __tablename__ = "settlement_audit_log"

    __table_args__ = (
        UniqueConstraint("settlement_id", "sequence", name="uq_settlement_audit_log_seq"),
    )

    settlement_id: Mapped[UUID] = mapped_column(ForeignKey("settlements.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    original_values: Mapped[dict[str, Any]] = mapped_column(default=dict)
    corrections: Mapped[dict[str, Any]] = mapped_column(default=dict)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    performed_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(default=dict)

    settlement: Mapped[SettlementModel] = relationship(back_populates="audit_log")

    def to_dto(self):
        from hotel_modules.settlement.models import AuditEntry, AuditEntryType

        return AuditEntry(
            timestamp=self.timestamp,
            type=AuditEntryType(self.type),
            original_values=dict(self.original_values or {}),
            corrections=dict(self.corrections or {}),
            reason=self.reason,
            performed_by_id=self.performed_by_id,
            metadata=dict(self.details or {}),
        )
