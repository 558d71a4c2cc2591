"""
Settlement Module Service -- the per-booking money state machine.

Thin glue layer that:
1. Calls RulesEngine before every money mutation (creation, adjustment,
   payment, refund)
2. Appends the child record and re-runs the validation pipeline from
   ``hotel_engines.settlement_calc`` (the "save")
3. Posts the matching ledger entry through ModulePoster

Every mutation locks the settlement row and runs inside a SAVEPOINT, so a
rules rejection, a pipeline error or a posting failure leaves neither the
settlement nor the ledger partially written. The service flushes; the
caller owns commit.

Usage:
    service = SettlementService(session, clock, RulesEngine())
    settlement = service.create(hotel_id="H1", booking_id="B1",
                                original_amount=Decimal("13216"), currency="INR",
                                guest=GuestDetails("A. Guest"),
                                booking=BookingView(Decimal("13216")), user=ctx)
    service.add_payment(settlement.id, SettlementPaymentInput(Decimal("5000"), "card"), ctx)
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from hotel_engines.rules import (
    AdjustmentRequest,
    BookingView,
    PaymentRequest,
    PaymentView,
    RefundRequest,
    RuleResult,
    RulesEngine,
    SettlementRequest,
    SettlementSnapshot,
)
from hotel_engines.settlement_calc import (
    CLOSED_FOR_LATE_FEES,
    FIGURE_FIELDS,
    AdjustmentFigure,
    LateFeeAssessment,
    PaymentFigure,
    PipelineResult,
    SettlementState,
    SettlementStatus,
    calculate_late_fee,
    days_overdue,
    escalation_action,
    escalation_cap,
    next_reminder_due,
    recompute_figures,
    run_validation_pipeline,
)
from hotel_kernel.db.types import validate_currency
from hotel_kernel.domain.clock import Clock, SystemClock
from hotel_kernel.domain.user_context import UserContext
from hotel_kernel.domain.values import TOLERANCE, Money, quantize_amount, to_decimal
from hotel_kernel.exceptions import (
    DisputeNotFoundError,
    EscalationLimitError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    RoleNotPermittedError,
    RuleViolationError,
    SettlementClosedError,
    SettlementNotFoundError,
    ValidationError,
)
from hotel_kernel.logging_config import LogContext, get_logger
from hotel_kernel.services.sequence_service import (
    SequenceService,
    document_sequence_name,
)
from hotel_modules.posting import ModulePoster, RoleLine
from hotel_modules.profiles import (
    AccountRole,
    cash_role_for_method,
    revenue_role_for_category,
)
from hotel_modules.settlement.config import SettlementConfig
from hotel_modules.settlement.models import (
    AUTHORIZED_ADJUSTMENT_TYPES,
    CLOSED_DISPUTE_STATUSES,
    AdjustmentCategory,
    AdjustmentInput,
    AdjustmentType,
    AuditEntryType,
    BookingDetails,
    CommunicationDirection,
    CommunicationInput,
    CommunicationStatus,
    CommunicationType,
    DisputeInput,
    DisputeStatus,
    GuestDetails,
    SettlementPaymentInput,
    SettlementPaymentKind,
    SettlementPaymentMethod,
    SettlementPaymentStatus,
    SettlementTerms,
)
from hotel_modules.settlement.orm import (
    SettlementAdjustmentModel,
    SettlementAuditLogModel,
    SettlementCommunicationModel,
    SettlementDisputeModel,
    SettlementEscalationModel,
    SettlementModel,
    SettlementPaymentModel,
)

logger = get_logger("modules.settlement.service")

ZERO = Decimal("0")

# A settlement in one of these states accepts no further payments.
PAYMENT_CLOSED_STATUSES = frozenset(
    {SettlementStatus.COMPLETED, SettlementStatus.CANCELLED, SettlementStatus.REFUNDED}
)
ADJUSTMENT_CLOSED_STATUSES = frozenset({SettlementStatus.CANCELLED, SettlementStatus.REFUNDED})
OPEN_STATUSES = frozenset(
    {SettlementStatus.PENDING, SettlementStatus.PARTIAL, SettlementStatus.OVERDUE}
)


def _utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _figure_values(settlement: SettlementModel) -> dict[str, str]:
    return {name: format(getattr(settlement, name), "f") for name in FIGURE_FIELDS}


class SettlementService:
    """
    Orchestrates settlement mutations.

    Contract:
        Every public mutation returns the SettlementModel after the
        validation pipeline has written its figures, status and metadata.
    Guarantees:
        - stored figures always equal the pipeline's recomputation.
        - each money mutation posts exactly one balanced journal entry
          (none when the amounts net to zero).
    Non-goals:
        - Booking lifecycle; callers supply a BookingView.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        rules_engine: RulesEngine | None = None,
        config: SettlementConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._rules = rules_engine or RulesEngine()
        self._config = config or SettlementConfig.with_defaults()
        self._poster = ModulePoster(session, self._clock, self._config.account_mappings)
        self._sequences = SequenceService(session)

    @property
    def rules(self) -> RulesEngine:
        return self._rules

    # =====================================================================
    # Reads
    # =====================================================================

    def get(self, settlement_id: UUID) -> SettlementModel:
        settlement = self._session.get(SettlementModel, settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(str(settlement_id))
        return settlement

    def _lock(self, settlement_id: UUID) -> SettlementModel:
        settlement = self._session.execute(
            select(SettlementModel).where(SettlementModel.id == settlement_id).with_for_update()
        ).scalar_one_or_none()
        if settlement is None:
            raise SettlementNotFoundError(str(settlement_id))
        return settlement

    def list_settlements(
        self,
        hotel_id: str,
        status: SettlementStatus | str | None = None,
    ) -> list[SettlementModel]:
        query = select(SettlementModel).where(SettlementModel.hotel_id == hotel_id)
        if status is not None:
            query = query.where(SettlementModel.status == SettlementStatus(status).value)
        return list(self._session.execute(query.order_by(SettlementModel.number)).scalars())

    def find_by_booking(self, hotel_id: str, booking_id: str) -> list[SettlementModel]:
        return list(
            self._session.execute(
                select(SettlementModel)
                .where(SettlementModel.hotel_id == hotel_id, SettlementModel.booking_id == booking_id)
                .order_by(SettlementModel.number)
            ).scalars()
        )

    def find_overdue(self, hotel_id: str, grace_days: int = 0) -> list[SettlementModel]:
        """Open settlements whose due date is more than ``grace_days`` behind today."""
        cutoff = self._clock.today() - timedelta(days=grace_days)
        candidates = self._session.execute(
            select(SettlementModel)
            .where(
                SettlementModel.hotel_id == hotel_id,
                SettlementModel.status.in_([s.value for s in OPEN_STATUSES]),
                SettlementModel.due_date < cutoff,
            )
            .order_by(SettlementModel.due_date, SettlementModel.number)
        ).scalars()
        return [s for s in candidates if s.outstanding_balance > TOLERANCE]

    def find_with_calculation_errors(self, hotel_id: str) -> list[SettlementModel]:
        return [
            s
            for s in self.list_settlements(hotel_id)
            if not (s.validation_metadata or {}).get("is_valid", False)
        ]

    def days_overdue(self, settlement: SettlementModel, as_of: date | None = None) -> int:
        if SettlementStatus(settlement.status) == SettlementStatus.COMPLETED:
            return 0
        return days_overdue(settlement.due_date, as_of or self._clock.today())

    # =====================================================================
    # Pipeline plumbing
    # =====================================================================

    def _state(self, settlement: SettlementModel) -> SettlementState:
        return SettlementState(
            status=SettlementStatus(settlement.status),
            currency=settlement.currency,
            due_date=settlement.due_date,
            original_amount=settlement.original_amount,
            final_amount=settlement.final_amount,
            total_paid=settlement.total_paid,
            outstanding_balance=settlement.outstanding_balance,
            refund_amount=settlement.refund_amount,
            completed_date=_utc(settlement.completed_date),
            adjustments=tuple(
                AdjustmentFigure(a.type, a.amount, a.tax_amount, a.taxable)
                for a in settlement.adjustments
            ),
            payments=tuple(
                PaymentFigure(p.amount, p.method, p.kind, p.status) for p in settlement.payments
            ),
        )

    def _snapshot(self, settlement: SettlementModel) -> SettlementSnapshot:
        return SettlementSnapshot(
            status=settlement.status,
            currency=settlement.currency,
            original_amount=settlement.original_amount,
            final_amount=settlement.final_amount,
            total_paid=settlement.total_paid,
            outstanding_balance=settlement.outstanding_balance,
            refund_amount=settlement.refund_amount,
            payments=tuple(
                PaymentView(p.amount, p.method, p.status, p.kind) for p in settlement.payments
            ),
            created_at=_utc(settlement.opened_at),
            requires_manager_approval=settlement.requires_manager_approval,
        )

    def _apply_figures(self, settlement: SettlementModel) -> None:
        """Write the recomputed figures for an explicit, audited mutation."""
        state = self._state(settlement)
        figures = recompute_figures(state.original_amount, state.adjustments, state.payments)
        for name in FIGURE_FIELDS:
            setattr(settlement, name, getattr(figures, name))

    def _audit(
        self,
        settlement: SettlementModel,
        entry_type: AuditEntryType,
        original_values: dict[str, Any],
        corrections: dict[str, Any],
        reason: str,
        performed_by_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        settlement.audit_log.append(
            SettlementAuditLogModel(
                sequence=len(settlement.audit_log) + 1,
                timestamp=self._clock.now(),
                type=entry_type.value,
                original_values=original_values,
                corrections=corrections,
                reason=reason,
                performed_by_id=performed_by_id,
                details=details or {},
            )
        )

    def _save(self, settlement: SettlementModel, actor_id: str) -> PipelineResult:
        """
        Run the validation pipeline and write its result back.

        Idempotent: saving an unchanged settlement twice writes nothing new.
        """
        now = self._clock.now()
        result = run_validation_pipeline(state=self._state(settlement), as_of=now)
        if not result.is_valid:
            raise ValidationError(
                f"Settlement validation failed: {', '.join(result.errors)}",
                field="settlement",
            )

        if result.audit_entry is not None:
            self._audit(
                settlement,
                AuditEntryType.AUTO_CORRECTION,
                result.audit_entry["original_values"],
                result.audit_entry["corrections"],
                result.audit_entry["reason"],
            )
            logger.warning(
                "settlement_figures_corrected",
                extra={
                    "settlement_id": str(settlement.id),
                    "corrections": result.corrections,
                },
            )
        for name in FIGURE_FIELDS:
            setattr(settlement, name, getattr(result.figures, name))

        previous = settlement.status
        settlement.status = result.status.value
        settlement.completed_date = result.completed_date
        settlement.is_high_value = result.figures.final_amount > self._config.high_value_threshold
        settlement.validation_metadata = result.metadata
        if result.status in OPEN_STATUSES:
            due = _utc(settlement.next_reminder_due)
            if due is None or due < now:
                settlement.next_reminder_due = next_reminder_due(now, settlement.escalation_level)
        settlement.updated_by_id = actor_id
        self._session.flush()

        if previous != settlement.status:
            logger.info(
                "settlement_status_changed",
                extra={
                    "settlement_id": str(settlement.id),
                    "from_status": previous,
                    "to_status": settlement.status,
                },
            )
        if result.warnings:
            logger.warning(
                "settlement_validation_warnings",
                extra={"settlement_id": str(settlement.id), "warnings": list(result.warnings)},
            )
        return result

    def _enforce(self, operation: str, result: RuleResult, settlement: SettlementModel | None = None) -> None:
        if not result.is_valid:
            logger.warning(
                "settlement_rules_rejected",
                extra={"operation": operation, "violations": list(result.violations)},
            )
            raise RuleViolationError(
                operation, result.violations, result.warnings, result.requires_approval
            )
        if settlement is not None and result.requires_approval:
            settlement.requires_manager_approval = True

    def _post(
        self,
        settlement: SettlementModel,
        description: str,
        lines: list[RoleLine],
        actor_id: str,
    ):
        return self._poster.post(
            hotel_id=settlement.hotel_id,
            entry_date=self._clock.today(),
            description=f"{description} ({settlement.number})",
            lines=lines,
            actor_id=actor_id,
            currency=settlement.currency,
            ref_kind="settlement",
            ref_id=str(settlement.id),
        )

    # =====================================================================
    # Creation
    # =====================================================================

    def _next_number(self, hotel_id: str, on: date) -> str:
        day = on.strftime("%Y%m%d")
        seq = self._sequences.next_value(document_sequence_name("settlement", hotel_id, day))
        return f"{self._config.number_prefix}{day}{seq:04d}"

    def create(
        self,
        *,
        hotel_id: str,
        booking_id: str,
        original_amount: Decimal | str | int,
        currency: str,
        guest: GuestDetails,
        booking: BookingView | None,
        user: UserContext,
        due_date: date | None = None,
        booking_details: BookingDetails | None = None,
        terms: SettlementTerms | None = None,
        is_vip: bool = False,
        is_corporate: bool = False,
        notes: str | None = None,
    ) -> SettlementModel:
        """
        Open a settlement for a booking and post Dr Receivable / Cr Room revenue.

        Raises:
            RuleViolationError: creation rules rejected the request.
            ValidationError: malformed input.
        """
        original = to_decimal(original_amount, field="original_amount")
        currency = validate_currency(currency)
        terms = terms or self._config.default_terms
        today = self._clock.today()
        due = due_date or today + timedelta(days=self._config.default_due_days)

        result = self._rules.validate_settlement_creation(
            request=SettlementRequest(
                final_amount=original,
                currency=currency,
                due_date=due,
                guest_id=guest.guest_id,
                is_vip=is_vip,
                late_fee_rate_pct_annual=terms.late_fee_rate_pct_annual,
                grace_period_days=terms.grace_period_days,
            ),
            booking=booking,
            as_of=today,
        )
        self._enforce("settlement.create", result)

        with self._session.begin_nested():
            settlement = SettlementModel(
                hotel_id=hotel_id,
                booking_id=booking_id,
                number=self._next_number(hotel_id, today),
                status=SettlementStatus.PENDING.value,
                currency=currency,
                original_amount=quantize_amount(original),
                final_amount=quantize_amount(original),
                total_paid=ZERO,
                outstanding_balance=quantize_amount(original),
                refund_amount=ZERO,
                opened_at=self._clock.now(),
                due_date=due,
                escalation_level=0,
                guest_id=guest.guest_id,
                guest_name=guest.name,
                guest_email=guest.email,
                guest_phone=guest.phone,
                booking_details=booking_details.to_dict() if booking_details else None,
                payment_terms=terms.payment_terms,
                late_fee_rate_pct_annual=terms.late_fee_rate_pct_annual,
                grace_period_days=terms.grace_period_days,
                max_escalation_level=terms.max_escalation_level,
                is_vip=is_vip or (booking is not None and booking.is_vip),
                is_corporate=is_corporate or (booking is not None and booking.guest_type == "corporate"),
                requires_manager_approval=result.requires_approval,
                validation_metadata={},
                notes=notes,
                created_by_id=user.user_id,
            )
            self._session.add(settlement)
            self._session.flush()

            with LogContext.bind(settlement_id=str(settlement.id)):
                entry = self._post(
                    settlement,
                    f"Settlement opened for booking {booking_id}",
                    [
                        RoleLine.dr(AccountRole.RECEIVABLE, settlement.original_amount),
                        RoleLine.cr(AccountRole.ROOM_REVENUE, settlement.original_amount),
                    ],
                    user.user_id,
                )
                settlement.journal_entry_id = entry.id if entry is not None else None
                self._save(settlement, user.user_id)

        logger.info(
            "settlement_created",
            extra={
                "settlement_id": str(settlement.id),
                "settlement_number": settlement.number,
                "booking_id": booking_id,
                "original_amount": settlement.original_amount,
                "warnings": list(result.warnings),
            },
        )
        return settlement

    # =====================================================================
    # Adjustments
    # =====================================================================

    def _adjustment_lines(self, adjustment: AdjustmentInput) -> list[RoleLine]:
        # Credits land on the discounts account; charges on revenue by category.
        target = (
            AccountRole.DISCOUNTS
            if adjustment.amount < 0
            else revenue_role_for_category(adjustment.category.value)
        )
        return [
            RoleLine.dr(AccountRole.RECEIVABLE, adjustment.effect),
            RoleLine.cr(target, adjustment.amount, adjustment.description),
            RoleLine.cr(AccountRole.TAX_PAYABLE, adjustment.tax_amount, "Tax on adjustment"),
        ]

    def _add_adjustment(
        self,
        settlement: SettlementModel,
        adjustment: AdjustmentInput,
        user: UserContext,
    ) -> SettlementAdjustmentModel:
        status = SettlementStatus(settlement.status)
        if status in ADJUSTMENT_CLOSED_STATUSES:
            raise SettlementClosedError(str(settlement.id), status.value, "add_adjustment")
        if (
            adjustment.type in AUTHORIZED_ADJUSTMENT_TYPES
            and abs(adjustment.amount) > self._config.authorization_threshold
            and not user.is_approver
        ):
            raise RoleNotPermittedError(
                user.role.value,
                f"apply a {adjustment.type.value} above {self._config.authorization_threshold:.2f}",
            )

        result = self._rules.validate_adjustment_rules(
            request=AdjustmentRequest(
                type=adjustment.type.value,
                amount=adjustment.amount,
                tax_amount=adjustment.tax_amount,
                description=adjustment.description,
                attachments=adjustment.attachments,
                applied_by_role=user.role.value,
            ),
            settlement=self._snapshot(settlement),
        )
        self._enforce("settlement.add_adjustment", result, settlement)
        if adjustment.type == AdjustmentType.DAMAGE_CHARGE and not adjustment.attachments:
            logger.warning(
                "damage_charge_without_attachments",
                extra={"settlement_id": str(settlement.id)},
            )

        original_values = {
            "final_amount": format(settlement.final_amount, "f"),
            "outstanding_balance": format(settlement.outstanding_balance, "f"),
            "adjustments_count": len(settlement.adjustments),
        }
        record = SettlementAdjustmentModel(
            sequence=len(settlement.adjustments) + 1,
            type=adjustment.type.value,
            category=adjustment.category.value,
            amount=quantize_amount(adjustment.amount),
            tax_amount=quantize_amount(adjustment.tax_amount),
            taxable=adjustment.taxable,
            description=adjustment.description,
            attachments=list(adjustment.attachments),
            applied_at=self._clock.now(),
            applied_by_id=user.user_id,
            applied_by_role=user.role.value,
        )
        settlement.adjustments.append(record)
        self._apply_figures(settlement)
        self._audit(
            settlement,
            AuditEntryType.MANUAL_ADJUSTMENT,
            original_values,
            {
                "adjustment_type": adjustment.type.value,
                "adjustment_amount": format(adjustment.amount, "f"),
                "new_final_amount": format(settlement.final_amount, "f"),
            },
            adjustment.description,
            user.user_id,
            {"warnings": list(result.warnings), "requires_approval": result.requires_approval},
        )
        self._session.flush()
        entry = self._post(
            settlement,
            f"Settlement adjustment: {adjustment.type.value}",
            self._adjustment_lines(adjustment),
            user.user_id,
        )
        record.journal_entry_id = entry.id if entry is not None else None
        self._save(settlement, user.user_id)
        logger.info(
            "settlement_adjustment_added",
            extra={
                "settlement_id": str(settlement.id),
                "adjustment_type": adjustment.type.value,
                "amount": adjustment.amount,
                "final_amount": settlement.final_amount,
            },
        )
        return record

    def add_adjustment(
        self,
        settlement_id: UUID,
        adjustment: AdjustmentInput,
        user: UserContext,
    ) -> SettlementModel:
        """
        Append a signed adjustment and re-run the pipeline.

        A COMPLETED settlement accepts late charges, which reopen its balance.

        Raises:
            SettlementClosedError: settlement is CANCELLED or REFUNDED.
            RoleNotPermittedError: large discount or refund without an approver.
            RuleViolationError: adjustment rules rejected the change.
        """
        with LogContext.bind(settlement_id=str(settlement_id)):
            with self._session.begin_nested():
                settlement = self._lock(settlement_id)
                self._add_adjustment(settlement, adjustment, user)
        return settlement

    # =====================================================================
    # Payments and refunds
    # =====================================================================

    def _append_payment(
        self,
        settlement: SettlementModel,
        kind: SettlementPaymentKind,
        amount: Decimal,
        method: SettlementPaymentMethod,
        user: UserContext,
        reference: str | None = None,
        notes: str | None = None,
    ) -> SettlementPaymentModel:
        record = SettlementPaymentModel(
            sequence=len(settlement.payments) + 1,
            kind=kind.value,
            amount=quantize_amount(amount),
            method=method.value,
            status=SettlementPaymentStatus.COMPLETED.value,
            reference=reference,
            notes=notes,
            processed_at=self._clock.now(),
            processed_by_id=user.user_id,
            processed_by_role=user.role.value,
        )
        settlement.payments.append(record)
        return record

    def _record_communication(
        self,
        settlement: SettlementModel,
        communication: CommunicationInput,
        user: UserContext,
    ) -> SettlementCommunicationModel:
        record = SettlementCommunicationModel(
            sequence=len(settlement.communications) + 1,
            type=communication.type.value,
            direction=communication.direction.value,
            subject=communication.subject,
            message=communication.message,
            status=communication.status.value,
            template=communication.template,
            attachments=list(communication.attachments),
            sent_at=self._clock.now(),
            sent_by_id=user.user_id,
        )
        settlement.communications.append(record)
        return record

    def add_payment(
        self,
        settlement_id: UUID,
        payment: SettlementPaymentInput,
        user: UserContext,
    ) -> SettlementModel:
        """
        Record a completed receipt and post Dr Cash|Bank / Cr Receivable.

        Raises:
            SettlementClosedError: settlement is COMPLETED, CANCELLED or REFUNDED.
            RuleViolationError: payment rules rejected the receipt (limits,
                missing reference, overpayment without allow_overpayment).
        """
        with LogContext.bind(settlement_id=str(settlement_id)):
            with self._session.begin_nested():
                settlement = self._lock(settlement_id)
                status = SettlementStatus(settlement.status)
                if status in PAYMENT_CLOSED_STATUSES:
                    raise SettlementClosedError(str(settlement.id), status.value, "add_payment")

                result = self._rules.validate_payment_processing(
                    request=PaymentRequest(
                        amount=payment.amount,
                        method=payment.method.value,
                        reference=payment.reference,
                        allow_overpayment=payment.allow_overpayment,
                    ),
                    settlement=self._snapshot(settlement),
                )
                self._enforce("settlement.add_payment", result, settlement)

                original_values = {
                    "total_paid": format(settlement.total_paid, "f"),
                    "outstanding_balance": format(settlement.outstanding_balance, "f"),
                    "refund_amount": format(settlement.refund_amount, "f"),
                    "status": settlement.status,
                }
                record = self._append_payment(
                    settlement,
                    SettlementPaymentKind.RECEIPT,
                    payment.amount,
                    payment.method,
                    user,
                    payment.reference,
                    payment.notes,
                )
                self._apply_figures(settlement)
                self._audit(
                    settlement,
                    AuditEntryType.PAYMENT_ADDITION,
                    original_values,
                    {
                        "payment_added": format(payment.amount, "f"),
                        "payment_method": payment.method.value,
                    },
                    f"Payment of {payment.amount:.2f} {settlement.currency} added via {payment.method.value}",
                    user.user_id,
                    {"warnings": list(result.warnings), "requires_approval": result.requires_approval},
                )
                if self._config.log_payment_communications:
                    self._record_communication(
                        settlement,
                        CommunicationInput(
                            type=CommunicationType.IN_PERSON,
                            subject="Payment Received",
                            message=(
                                f"Payment of {payment.amount:.2f} {settlement.currency} "
                                f"received via {payment.method.value}"
                            ),
                            direction=CommunicationDirection.INBOUND,
                            status=CommunicationStatus.DELIVERED,
                        ),
                        user,
                    )
                self._session.flush()

                cash = cash_role_for_method(payment.method.value)
                entry = self._post(
                    settlement,
                    f"Settlement payment via {payment.method.value}",
                    [
                        RoleLine.dr(cash, record.amount),
                        RoleLine.cr(AccountRole.RECEIVABLE, record.amount),
                    ],
                    user.user_id,
                )
                record.journal_entry_id = entry.id if entry is not None else None
                self._save(settlement, user.user_id)

        logger.info(
            "settlement_payment_added",
            extra={
                "settlement_id": str(settlement.id),
                "amount": payment.amount,
                "method": payment.method.value,
                "status": settlement.status,
                "outstanding_balance": settlement.outstanding_balance,
            },
        )
        return settlement

    def issue_refund(
        self,
        settlement_id: UUID,
        user: UserContext,
        method: SettlementPaymentMethod | str = SettlementPaymentMethod.REFUND_TO_SOURCE,
        reason: str | None = None,
        amount: Decimal | str | int | None = None,
    ) -> SettlementModel:
        """
        Pay back an overpayment; a full refund settles REFUNDED -> COMPLETED.

        ``amount`` defaults to the whole refund_amount.
        """
        method = SettlementPaymentMethod(method)
        with LogContext.bind(settlement_id=str(settlement_id)):
            with self._session.begin_nested():
                settlement = self._lock(settlement_id)
                status = SettlementStatus(settlement.status)
                if status == SettlementStatus.CANCELLED:
                    raise SettlementClosedError(str(settlement.id), status.value, "issue_refund")
                refund = (
                    to_decimal(amount, field="amount") if amount is not None else settlement.refund_amount
                )
                if refund <= 0:
                    raise InvalidAmountError("Refund amount must be positive", field="amount")

                result = self._rules.validate_refund(
                    request=RefundRequest(amount=refund, method=method.value, reason=reason),
                    settlement=self._snapshot(settlement),
                    as_of=self._clock.now(),
                )
                self._enforce("settlement.issue_refund", result, settlement)

                original_values = {
                    "total_paid": format(settlement.total_paid, "f"),
                    "refund_amount": format(settlement.refund_amount, "f"),
                    "status": settlement.status,
                }
                record = self._append_payment(
                    settlement,
                    SettlementPaymentKind.REFUND,
                    refund,
                    method,
                    user,
                    notes=reason,
                )
                self._apply_figures(settlement)
                self._audit(
                    settlement,
                    AuditEntryType.REFUND_ISSUED,
                    original_values,
                    {"refund_issued": format(refund, "f"), "refund_method": method.value},
                    reason or "Overpayment refund",
                    user.user_id,
                    {"warnings": list(result.warnings), "requires_approval": result.requires_approval},
                )
                self._session.flush()

                cash = cash_role_for_method(method.value)
                entry = self._post(
                    settlement,
                    f"Settlement refund via {method.value}",
                    [
                        RoleLine.dr(AccountRole.RECEIVABLE, record.amount),
                        RoleLine.cr(cash, record.amount),
                    ],
                    user.user_id,
                )
                record.journal_entry_id = entry.id if entry is not None else None
                self._save(settlement, user.user_id)

        logger.info(
            "settlement_refund_issued",
            extra={
                "settlement_id": str(settlement.id),
                "amount": refund,
                "method": method.value,
                "status": settlement.status,
            },
        )
        return settlement

    # =====================================================================
    # Late fees
    # =====================================================================

    def calculate_late_fee(self, settlement_id: UUID, as_of: date | None = None) -> LateFeeAssessment:
        settlement = self.get(settlement_id)
        terms = SettlementTerms(
            payment_terms=settlement.payment_terms,
            late_fee_rate_pct_annual=settlement.late_fee_rate_pct_annual,
            grace_period_days=settlement.grace_period_days,
            max_escalation_level=settlement.max_escalation_level,
        )
        return calculate_late_fee(
            status=SettlementStatus(settlement.status),
            outstanding=Money.of(settlement.outstanding_balance, settlement.currency),
            due_date=settlement.due_date,
            terms=terms.late_fee_terms(),
            as_of=as_of or self._clock.today(),
        )

    def apply_late_fee(
        self,
        settlement_id: UUID,
        user: UserContext,
        as_of: date | None = None,
    ) -> SettlementModel:
        """Charge the current late fee as a ``penalty`` adjustment, if any is due."""
        assessment = self.calculate_late_fee(settlement_id, as_of)
        if not assessment.applicable or not assessment.fee.is_positive:
            logger.debug(
                "late_fee_not_applicable",
                extra={"settlement_id": str(settlement_id), "days_late": assessment.days_late},
            )
            return self.get(settlement_id)
        return self.add_adjustment(
            settlement_id,
            AdjustmentInput(
                type=AdjustmentType.PENALTY,
                amount=assessment.fee.amount,
                description=f"Late fee for {assessment.days_late} days past grace period",
                category=AdjustmentCategory.PENALTIES,
                taxable=False,
            ),
            user,
        )

    # =====================================================================
    # Escalation and communications
    # =====================================================================

    def escalate(self, settlement_id: UUID, reason: str, user: UserContext) -> SettlementModel:
        """
        Move one step up the collections ladder.

        Raises:
            SettlementClosedError: nothing is owed (COMPLETED, CANCELLED, REFUNDED).
            EscalationLimitError: already at min(max_escalation_level, 5).
        """
        if not reason or not reason.strip():
            raise ValidationError("Escalation reason is required", field="reason")
        with LogContext.bind(settlement_id=str(settlement_id)):
            with self._session.begin_nested():
                settlement = self._lock(settlement_id)
                status = SettlementStatus(settlement.status)
                if status in CLOSED_FOR_LATE_FEES:
                    raise SettlementClosedError(str(settlement.id), status.value, "escalate")
                cap = escalation_cap(settlement.max_escalation_level)
                if settlement.escalation_level >= cap:
                    raise EscalationLimitError(str(settlement.id), settlement.escalation_level, cap)

                previous = settlement.escalation_level
                level = previous + 1
                now = self._clock.now()
                settlement.escalations.append(
                    SettlementEscalationModel(
                        level=level,
                        escalated_at=now,
                        escalated_by_id=user.user_id,
                        reason=reason,
                        action=escalation_action(level),
                    )
                )
                settlement.escalation_level = level
                settlement.next_reminder_due = next_reminder_due(now, level)
                self._save(settlement, user.user_id)

        logger.info(
            "settlement_escalated",
            extra={
                "settlement_id": str(settlement.id),
                "from_level": previous,
                "to_level": level,
                "action": escalation_action(level),
            },
        )
        return settlement

    def add_communication(
        self,
        settlement_id: UUID,
        communication: CommunicationInput,
        user: UserContext,
    ) -> SettlementModel:
        with self._session.begin_nested():
            settlement = self._lock(settlement_id)
            self._record_communication(settlement, communication, user)
            if communication.direction == CommunicationDirection.OUTBOUND:
                settlement.last_reminder_sent = self._clock.now()
            settlement.updated_by_id = user.user_id
            self._session.flush()
        logger.info(
            "settlement_communication_added",
            extra={
                "settlement_id": str(settlement.id),
                "type": communication.type.value,
                "direction": communication.direction.value,
            },
        )
        return settlement

    # =====================================================================
    # Disputes
    # =====================================================================

    def _dispute(self, settlement: SettlementModel, dispute_id: UUID) -> SettlementDisputeModel:
        for dispute in settlement.disputes:
            if dispute.id == dispute_id:
                return dispute
        raise DisputeNotFoundError(str(settlement.id), str(dispute_id))

    def raise_dispute(
        self,
        settlement_id: UUID,
        dispute: DisputeInput,
        user: UserContext,
    ) -> SettlementDisputeModel:
        """Open a dispute. Balances are untouched until it is resolved."""
        with self._session.begin_nested():
            settlement = self._lock(settlement_id)
            record = SettlementDisputeModel(
                type=dispute.type.value,
                description=dispute.description,
                amount=quantize_amount(dispute.amount) if dispute.amount is not None else None,
                raised_by=dispute.raised_by.value,
                raised_at=self._clock.now(),
                status=DisputeStatus.OPEN.value,
                evidence=list(dispute.evidence),
            )
            settlement.disputes.append(record)
            settlement.updated_by_id = user.user_id
            self._session.flush()
        logger.info(
            "settlement_dispute_raised",
            extra={
                "settlement_id": str(settlement.id),
                "dispute_id": str(record.id),
                "type": record.type,
            },
        )
        return record

    def update_dispute_status(
        self,
        settlement_id: UUID,
        dispute_id: UUID,
        status: DisputeStatus | str,
        user: UserContext,
        resolution: str | None = None,
    ) -> SettlementDisputeModel:
        """Move an open dispute to investigating, escalated or rejected."""
        target = DisputeStatus(status)
        if target == DisputeStatus.RESOLVED:
            raise ValidationError("Use resolve_dispute to resolve a dispute", field="status")
        with self._session.begin_nested():
            settlement = self._lock(settlement_id)
            dispute = self._dispute(settlement, dispute_id)
            if DisputeStatus(dispute.status) in CLOSED_DISPUTE_STATUSES:
                raise InvalidStatusTransitionError("dispute", str(dispute.id), dispute.status, target.value)
            dispute.status = target.value
            if target == DisputeStatus.REJECTED:
                dispute.resolution = resolution
                dispute.resolved_at = self._clock.now()
                dispute.resolved_by_id = user.user_id
            settlement.updated_by_id = user.user_id
            self._session.flush()
        logger.info(
            "settlement_dispute_status_changed",
            extra={"dispute_id": str(dispute_id), "status": target.value},
        )
        return dispute

    def resolve_dispute(
        self,
        settlement_id: UUID,
        dispute_id: UUID,
        resolution: str,
        user: UserContext,
        adjustment: AdjustmentInput | None = None,
    ) -> SettlementModel:
        """
        Resolve a dispute, optionally applying a balancing adjustment in the
        same unit of work.

        Raises:
            DisputeNotFoundError: no such dispute on this settlement.
            InvalidStatusTransitionError: dispute already resolved or rejected.
        """
        if not resolution or not resolution.strip():
            raise ValidationError("Resolution is required", field="resolution")
        with LogContext.bind(settlement_id=str(settlement_id)):
            with self._session.begin_nested():
                settlement = self._lock(settlement_id)
                dispute = self._dispute(settlement, dispute_id)
                if DisputeStatus(dispute.status) in CLOSED_DISPUTE_STATUSES:
                    raise InvalidStatusTransitionError(
                        "dispute", str(dispute.id), dispute.status, DisputeStatus.RESOLVED.value
                    )
                if adjustment is not None:
                    self._add_adjustment(settlement, adjustment, user)
                dispute.status = DisputeStatus.RESOLVED.value
                dispute.resolution = resolution
                dispute.resolved_at = self._clock.now()
                dispute.resolved_by_id = user.user_id
                settlement.updated_by_id = user.user_id
                self._session.flush()
        logger.info(
            "settlement_dispute_resolved",
            extra={
                "settlement_id": str(settlement.id),
                "dispute_id": str(dispute_id),
                "with_adjustment": adjustment is not None,
            },
        )
        return settlement

    # =====================================================================
    # Cancellation and maintenance
    # =====================================================================

    def cancel(self, settlement_id: UUID, reason: str, user: UserContext) -> SettlementModel:
        """
        Void the settlement and write off any outstanding balance
        (Dr Discounts / Cr Receivable).
        """
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required", field="reason")
        with LogContext.bind(settlement_id=str(settlement_id)):
            with self._session.begin_nested():
                settlement = self._lock(settlement_id)
                status = SettlementStatus(settlement.status)
                if status == SettlementStatus.CANCELLED:
                    raise SettlementClosedError(str(settlement.id), status.value, "cancel")
                if status in (SettlementStatus.COMPLETED, SettlementStatus.REFUNDED):
                    raise InvalidStatusTransitionError(
                        "settlement", str(settlement.id), status.value, SettlementStatus.CANCELLED.value
                    )
                write_off = settlement.outstanding_balance
                self._post(
                    settlement,
                    "Settlement cancelled, balance written off",
                    [
                        RoleLine.dr(AccountRole.DISCOUNTS, write_off, reason),
                        RoleLine.cr(AccountRole.RECEIVABLE, write_off),
                    ],
                    user.user_id,
                )
                self._audit(
                    settlement,
                    AuditEntryType.CANCELLATION,
                    {"status": status.value, "outstanding_balance": format(write_off, "f")},
                    {"status": SettlementStatus.CANCELLED.value, "written_off": format(write_off, "f")},
                    reason,
                    user.user_id,
                )
                settlement.status = SettlementStatus.CANCELLED.value
                settlement.cancelled_at = self._clock.now()
                settlement.cancellation_reason = reason
                self._save(settlement, user.user_id)
        logger.info(
            "settlement_cancelled",
            extra={"settlement_id": str(settlement.id), "written_off": write_off},
        )
        return settlement

    def revalidate(self, settlement_id: UUID, actor_id: str) -> SettlementModel:
        """Re-run the validation pipeline (the explicit "save")."""
        with self._session.begin_nested():
            settlement = self._lock(settlement_id)
            self._save(settlement, actor_id)
        return settlement

    def refresh_overdue(self, hotel_id: str, actor_id: str = "system") -> list[SettlementModel]:
        """Re-save every open settlement; returns those whose status changed."""
        changed: list[SettlementModel] = []
        for settlement in self.list_settlements(hotel_id):
            if SettlementStatus(settlement.status) not in OPEN_STATUSES:
                continue
            before = settlement.status
            self.revalidate(settlement.id, actor_id)
            if settlement.status != before:
                changed.append(settlement)
        logger.info(
            "settlement_overdue_refresh_completed",
            extra={"hotel_id": hotel_id, "changed": len(changed)},
        )
        return changed

    # =====================================================================
    # Analytics
    # =====================================================================

    def _in_range(
        self,
        hotel_id: str,
        start: datetime | None,
        end: datetime | None,
    ) -> list[SettlementModel]:
        settlements = self.list_settlements(hotel_id)
        return [
            s
            for s in settlements
            if (start is None or _utc(s.opened_at) >= start)
            and (end is None or _utc(s.opened_at) <= end)
        ]

    def analytics(
        self,
        hotel_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        """Counts and amounts per status, plus hotel totals."""
        # Amounts are stored as decimal strings, so aggregate in Python.
        groups: dict[str, list[SettlementModel]] = defaultdict(list)
        for settlement in self._in_range(hotel_id, start, end):
            groups[settlement.status].append(settlement)

        by_status = []
        for status, members in sorted(groups.items()):
            total = sum((s.final_amount for s in members), ZERO)
            by_status.append(
                {
                    "status": status,
                    "count": len(members),
                    "total_amount": quantize_amount(total),
                    "avg_amount": quantize_amount(total / len(members)),
                    "total_outstanding": quantize_amount(
                        sum((s.outstanding_balance for s in members), ZERO)
                    ),
                }
            )
        return {
            "by_status": by_status,
            "total_settlements": sum(row["count"] for row in by_status),
            "total_value": sum((row["total_amount"] for row in by_status), ZERO),
            "total_outstanding": sum((row["total_outstanding"] for row in by_status), ZERO),
        }

    def validation_statistics(
        self,
        hotel_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, Any]:
        settlements = self._in_range(hotel_id, start, end)
        total = len(settlements)
        metadata = [s.validation_metadata or {} for s in settlements]
        valid = sum(1 for m in metadata if m.get("is_valid") is True)
        with_errors = sum(1 for m in metadata if m.get("is_valid") is False)
        with_corrections = sum(1 for m in metadata if m.get("has_corrections") is True)
        if total == 0:
            return {
                "total_settlements": 0,
                "valid_settlements": 0,
                "settlements_with_errors": 0,
                "settlements_with_corrections": 0,
                "validation_rate": Decimal("0"),
                "avg_error_count": Decimal("0"),
                "avg_warning_count": Decimal("0"),
            }
        errors = sum(m.get("error_count", 0) for m in metadata)
        warnings = sum(m.get("warning_count", 0) for m in metadata)
        return {
            "total_settlements": total,
            "valid_settlements": valid,
            "settlements_with_errors": with_errors,
            "settlements_with_corrections": with_corrections,
            "validation_rate": quantize_amount(Decimal(valid) / Decimal(total)),
            "avg_error_count": quantize_amount(Decimal(errors) / Decimal(total), 2),
            "avg_warning_count": quantize_amount(Decimal(warnings) / Decimal(total), 2),
        }
