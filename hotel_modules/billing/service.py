"""
Billing Module Service -- invoices and payments through the kernel journal.

Thin glue layer that:
1. Computes invoice totals and status with the pure functions in models.py
2. Calls RulesEngine for payment and refund limits
3. Calls ModulePoster (kernel JournalService) for every ledger effect

Each document keeps the journal_entry_id it produced, so every posted
amount traces back to exactly one invoice or payment. Services flush and
never commit; the caller owns the transaction. Every multi-step mutation
runs inside a SAVEPOINT so a failure leaves no partial document behind.

Usage:
    invoices = InvoiceService(session, clock)
    invoice = invoices.create(hotel_id="H1", customer=Customer("guest", "A. Guest"),
                              lines=[...], actor_id="u1", currency="INR")
    invoices.send(invoice.id, actor_id="u1")
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from hotel_engines.rules import (
    PaymentRequest,
    PaymentView,
    RefundRequest,
    RulesEngine,
    SettlementSnapshot,
)
from hotel_kernel.db.types import validate_currency
from hotel_kernel.domain.clock import Clock, SystemClock
from hotel_kernel.domain.values import TOLERANCE, quantize_amount, to_decimal
from hotel_kernel.exceptions import (
    InvalidAmountError,
    InvalidStatusTransitionError,
    InvoiceNotFoundError,
    PaymentNotFoundError,
    RuleViolationError,
    ValidationError,
)
from hotel_kernel.logging_config import get_logger
from hotel_kernel.models.account import Account, AccountKind
from hotel_kernel.services.sequence_service import (
    SequenceService,
    document_sequence_name,
)
from hotel_modules.billing.config import BillingConfig
from hotel_modules.billing.models import (
    OPEN_PAYMENT_STATUSES,
    PAYABLE_INVOICE_STATUSES,
    TERMINAL_INVOICE_STATUSES,
    Customer,
    DiscountInput,
    FeeBreakdown,
    InvoiceLineInput,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
    compute_invoice_totals,
    derive_invoice_status,
)
from hotel_modules.billing.orm import InvoiceLineModel, InvoiceModel, PaymentModel
from hotel_modules.posting import ModulePoster, RoleLine
from hotel_modules.profiles import AccountRole, cash_role_for_method

logger = get_logger("modules.billing.service")

ZERO = Decimal("0")


def _apply_paid_delta(invoice: InvoiceModel, delta: Decimal, today: date) -> None:
    """Move paid_amount by ``delta`` and re-derive balance and status."""
    invoice.paid_amount = quantize_amount(invoice.paid_amount + delta)
    invoice.balance_amount = quantize_amount(invoice.total_amount - invoice.paid_amount)
    invoice.status = derive_invoice_status(
        InvoiceStatus(invoice.status),
        invoice.paid_amount,
        invoice.balance_amount,
        invoice.due_date,
        today,
    ).value


class PaymentService:
    """
    Payment lifecycle: PENDING -> PROCESSING -> COMPLETED | FAILED | CANCELLED,
    COMPLETED -> REFUNDED once fully refunded.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        rules_engine: RulesEngine | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or BillingConfig.with_defaults()
        self._rules = rules_engine
        self._poster = ModulePoster(session, self._clock, self._config.account_mappings)
        self._sequences = SequenceService(session)

    # -- reads -------------------------------------------------------------

    def get(self, payment_id: UUID) -> PaymentModel:
        payment = self._session.get(PaymentModel, payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def _lock(self, payment_id: UUID) -> PaymentModel:
        payment = self._session.execute(
            select(PaymentModel).where(PaymentModel.id == payment_id).with_for_update()
        ).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def list_for_invoice(self, invoice_id: UUID) -> list[PaymentModel]:
        return list(
            self._session.execute(
                select(PaymentModel)
                .where(PaymentModel.invoice_id == invoice_id)
                .order_by(PaymentModel.number)
            ).scalars()
        )

    def list_unreconciled(self, hotel_id: str) -> list[PaymentModel]:
        return list(
            self._session.execute(
                select(PaymentModel)
                .where(
                    PaymentModel.hotel_id == hotel_id,
                    PaymentModel.status.in_(
                        [PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value]
                    ),
                    PaymentModel.reconciled.is_(False),
                )
                .order_by(PaymentModel.number)
            ).scalars()
        )

    # -- creation ----------------------------------------------------------

    def _next_number(self, hotel_id: str, on: date) -> str:
        seq = self._sequences.next_value(document_sequence_name("payment", hotel_id, on.year))
        return f"{self._config.payment_prefix}-{on.year}-{seq:06d}"

    def _check_rules(self, request: PaymentRequest, outstanding: Decimal | None, currency: str) -> None:
        if self._rules is None or not self._config.apply_payment_rules:
            return
        balance = outstanding if outstanding is not None else request.amount
        snapshot = SettlementSnapshot(
            status="pending",
            currency=currency,
            original_amount=balance,
            final_amount=balance,
            total_paid=ZERO,
            outstanding_balance=balance,
        )
        result = self._rules.validate_payment_processing(request=request, settlement=snapshot)
        if not result.is_valid:
            logger.warning(
                "payment_rejected_by_rules",
                extra={"violations": list(result.violations), "method": request.method},
            )
            raise RuleViolationError(
                "payment.process", result.violations, result.warnings, result.requires_approval
            )

    def process(
        self,
        *,
        hotel_id: str,
        amount: Decimal | str | int,
        method: PaymentMethod | str,
        actor_id: str,
        currency: str,
        type: PaymentType | str = PaymentType.RECEIPT,
        customer_ref: str | None = None,
        invoice_id: UUID | None = None,
        booking_id: str | None = None,
        fees: FeeBreakdown | None = None,
        reference: str | None = None,
        payment_date: date | None = None,
        notes: str | None = None,
        complete: bool = True,
        outstanding: Decimal | None = None,
    ) -> PaymentModel:
        """
        Record a payment and, unless ``complete=False``, complete it.

        Refunds go through ``refund()`` so they stay linked to their
        original payment.
        """
        amount = to_decimal(amount, field="amount")
        if amount <= 0:
            raise InvalidAmountError("Payment amount must be positive", field="amount")
        method = PaymentMethod(method)
        payment_type = PaymentType(type)
        if payment_type == PaymentType.REFUND:
            raise ValidationError("Use refund() to return a payment", field="type")
        currency = validate_currency(currency)
        fees = fees or FeeBreakdown()
        net = amount - fees.total
        if net < 0:
            raise InvalidAmountError("Fees exceed payment amount", field="fees")

        if payment_type == PaymentType.RECEIPT:
            self._check_rules(
                PaymentRequest(
                    amount=amount,
                    method=method.value,
                    reference=reference,
                    allow_overpayment=outstanding is None or self._config.allow_invoice_overpayment,
                ),
                outstanding,
                currency,
            )

        on = payment_date or self._clock.today()
        with self._session.begin_nested():
            payment = PaymentModel(
                hotel_id=hotel_id,
                number=self._next_number(hotel_id, on),
                type=payment_type.value,
                method=method.value,
                amount=quantize_amount(amount),
                currency=currency,
                customer_ref=customer_ref,
                invoice_id=invoice_id,
                booking_id=booking_id,
                processing_fee=fees.processing,
                gateway_fee=fees.gateway,
                bank_fee=fees.bank,
                net_amount=quantize_amount(net),
                status=PaymentStatus.PENDING.value,
                payment_date=on,
                reference=reference,
                notes=notes,
                created_by_id=actor_id,
            )
            self._session.add(payment)
            self._session.flush()
            logger.info(
                "payment_recorded",
                extra={
                    "payment_id": str(payment.id),
                    "payment_number": payment.number,
                    "type": payment.type,
                    "method": payment.method,
                    "amount": payment.amount,
                },
            )
            if complete:
                self._complete(payment, actor_id)
        return payment

    # -- transitions -------------------------------------------------------

    def _posting_lines(self, payment: PaymentModel) -> list[RoleLine]:
        amount = payment.amount
        cash = cash_role_for_method(payment.method)
        payment_type = PaymentType(payment.type)
        if payment_type == PaymentType.RECEIPT:
            lines = [RoleLine.dr(cash, amount), RoleLine.cr(AccountRole.RECEIVABLE, amount)]
        elif payment_type == PaymentType.REFUND:
            lines = [RoleLine.dr(AccountRole.RECEIVABLE, amount), RoleLine.cr(cash, amount)]
        elif payment_type == PaymentType.PAYMENT:
            lines = [RoleLine.dr(AccountRole.PAYABLE, amount), RoleLine.cr(cash, amount)]
        else:
            lines = [
                RoleLine.dr(AccountRole.DISCOUNTS, amount),
                RoleLine.cr(AccountRole.RECEIVABLE, amount),
            ]
        if payment.fee_total > TOLERANCE:
            lines += [
                RoleLine.dr(AccountRole.PAYMENT_FEES, payment.fee_total, "Payment fees"),
                RoleLine.cr(cash, payment.fee_total, "Payment fees"),
            ]
        return lines

    def _complete(self, payment: PaymentModel, actor_id: str) -> None:
        entry = self._poster.post(
            hotel_id=payment.hotel_id,
            entry_date=payment.payment_date,
            description=f"Payment {payment.number} ({payment.type}, {payment.method})",
            lines=self._posting_lines(payment),
            actor_id=actor_id,
            currency=payment.currency,
            ref_kind="payment",
            ref_id=str(payment.id),
        )
        payment.journal_entry_id = entry.id if entry is not None else None
        payment.status = PaymentStatus.COMPLETED.value
        payment.completed_at = self._clock.now()
        payment.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "payment_completed",
            extra={
                "payment_id": str(payment.id),
                "payment_number": payment.number,
                "entry_id": str(payment.journal_entry_id),
            },
        )

    def _require_open(self, payment: PaymentModel, target: PaymentStatus) -> None:
        if PaymentStatus(payment.status) not in OPEN_PAYMENT_STATUSES:
            raise InvalidStatusTransitionError("payment", str(payment.id), payment.status, target.value)

    def complete(self, payment_id: UUID, actor_id: str) -> PaymentModel:
        payment = self._lock(payment_id)
        self._require_open(payment, PaymentStatus.COMPLETED)
        with self._session.begin_nested():
            self._complete(payment, actor_id)
        if payment.invoice_id is not None and PaymentType(payment.type) == PaymentType.RECEIPT:
            invoice = self._session.get(InvoiceModel, payment.invoice_id)
            _apply_paid_delta(invoice, payment.amount, self._clock.today())
            self._session.flush()
        return payment

    def mark_processing(self, payment_id: UUID, actor_id: str) -> PaymentModel:
        payment = self._lock(payment_id)
        if PaymentStatus(payment.status) != PaymentStatus.PENDING:
            raise InvalidStatusTransitionError(
                "payment", str(payment.id), payment.status, PaymentStatus.PROCESSING.value
            )
        payment.status = PaymentStatus.PROCESSING.value
        payment.updated_by_id = actor_id
        self._session.flush()
        return payment

    def fail(self, payment_id: UUID, reason: str, actor_id: str) -> PaymentModel:
        payment = self._lock(payment_id)
        self._require_open(payment, PaymentStatus.FAILED)
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = reason
        payment.updated_by_id = actor_id
        self._session.flush()
        logger.warning(
            "payment_failed",
            extra={"payment_id": str(payment.id), "reason": reason},
        )
        return payment

    def cancel(self, payment_id: UUID, reason: str, actor_id: str) -> PaymentModel:
        payment = self._lock(payment_id)
        self._require_open(payment, PaymentStatus.CANCELLED)
        payment.status = PaymentStatus.CANCELLED.value
        payment.failure_reason = reason
        payment.updated_by_id = actor_id
        self._session.flush()
        logger.info("payment_cancelled", extra={"payment_id": str(payment.id)})
        return payment

    def refund(
        self,
        payment_id: UUID,
        amount: Decimal | str | int,
        reason: str,
        actor_id: str,
        method: PaymentMethod | str | None = None,
    ) -> PaymentModel:
        """
        Return part or all of a completed receipt.

        The refund is its own completed payment (Dr Receivable / Cr Cash|Bank)
        linked through original_payment_id. The original becomes REFUNDED
        once nothing refundable remains.
        """
        amount = to_decimal(amount, field="amount")
        if amount <= 0:
            raise InvalidAmountError("Refund amount must be positive", field="amount")
        if not reason or not reason.strip():
            raise ValidationError("Refund reason is required", field="reason")
        original = self._lock(payment_id)
        if (
            PaymentStatus(original.status) != PaymentStatus.COMPLETED
            or PaymentType(original.type) != PaymentType.RECEIPT
        ):
            raise InvalidStatusTransitionError(
                "payment", str(original.id), original.status, PaymentStatus.REFUNDED.value
            )
        refund_method = PaymentMethod(method or original.method)
        remaining = original.amount - original.refunded_amount

        if self._rules is not None and self._config.apply_payment_rules:
            snapshot = SettlementSnapshot(
                status="completed",
                currency=original.currency,
                original_amount=original.amount,
                final_amount=ZERO,
                total_paid=remaining,
                outstanding_balance=ZERO,
                payments=(PaymentView(original.amount, original.method),),
            )
            result = self._rules.validate_refund(
                request=RefundRequest(amount=amount, method=refund_method.value, reason=reason),
                settlement=snapshot,
                as_of=self._clock.now(),
            )
            if not result.is_valid:
                raise RuleViolationError(
                    "payment.refund", result.violations, result.warnings, result.requires_approval
                )
        if amount > remaining + TOLERANCE:
            raise InvalidAmountError(
                f"Refund amount exceeds refundable amount ({remaining:.2f})", field="amount"
            )

        today = self._clock.today()
        with self._session.begin_nested():
            refund = PaymentModel(
                hotel_id=original.hotel_id,
                number=self._next_number(original.hotel_id, today),
                type=PaymentType.REFUND.value,
                method=refund_method.value,
                amount=quantize_amount(amount),
                currency=original.currency,
                customer_ref=original.customer_ref,
                invoice_id=original.invoice_id,
                booking_id=original.booking_id,
                net_amount=quantize_amount(amount),
                status=PaymentStatus.PENDING.value,
                payment_date=today,
                original_payment_id=original.id,
                refund_reason=reason,
                created_by_id=actor_id,
            )
            self._session.add(refund)
            self._session.flush()
            self._complete(refund, actor_id)

            original.refunded_amount = quantize_amount(original.refunded_amount + amount)
            if original.amount - original.refunded_amount <= TOLERANCE:
                original.status = PaymentStatus.REFUNDED.value
            original.updated_by_id = actor_id

            if original.invoice_id is not None:
                invoice = self._session.get(InvoiceModel, original.invoice_id)
                _apply_paid_delta(invoice, -amount, today)
                if invoice.paid_amount <= TOLERANCE and InvoiceStatus(invoice.status) not in (
                    TERMINAL_INVOICE_STATUSES
                ):
                    invoice.status = InvoiceStatus.REFUNDED.value
            self._session.flush()

        logger.info(
            "payment_refunded",
            extra={
                "payment_id": str(original.id),
                "refund_id": str(refund.id),
                "amount": amount,
                "fully_refunded": original.status == PaymentStatus.REFUNDED.value,
            },
        )
        return refund

    def reconcile(
        self,
        payment_id: UUID,
        statement_reference: str,
        actor_id: str,
    ) -> PaymentModel:
        """Flag a payment as matched to a bank statement line. Posts nothing."""
        payment = self._lock(payment_id)
        if PaymentStatus(payment.status) not in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            raise InvalidStatusTransitionError(
                "payment", str(payment.id), payment.status, "reconciled"
            )
        if payment.reconciled:
            return payment
        payment.reconciled = True
        payment.reconciled_at = self._clock.now()
        payment.statement_reference = statement_reference
        payment.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "payment_reconciled",
            extra={"payment_id": str(payment.id), "statement_reference": statement_reference},
        )
        return payment


class InvoiceService:
    """
    Invoice lifecycle: DRAFT -> SENT -> PARTIALLY_PAID / OVERDUE -> PAID,
    with CANCELLED and REFUNDED as explicit terminal states.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: BillingConfig | None = None,
        rules_engine: RulesEngine | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or BillingConfig.with_defaults()
        self._poster = ModulePoster(session, self._clock, self._config.account_mappings)
        self._payments = PaymentService(session, self._clock, self._config, rules_engine)
        self._sequences = SequenceService(session)

    @property
    def payments(self) -> PaymentService:
        return self._payments

    # -- reads -------------------------------------------------------------

    def get(self, invoice_id: UUID) -> InvoiceModel:
        invoice = self._session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def _lock(self, invoice_id: UUID) -> InvoiceModel:
        invoice = self._session.execute(
            select(InvoiceModel).where(InvoiceModel.id == invoice_id).with_for_update()
        ).scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def list_invoices(self, hotel_id: str, status: InvoiceStatus | str | None = None) -> list[InvoiceModel]:
        query = select(InvoiceModel).where(InvoiceModel.hotel_id == hotel_id)
        if status is not None:
            query = query.where(InvoiceModel.status == InvoiceStatus(status).value)
        return list(self._session.execute(query.order_by(InvoiceModel.number)).scalars())

    def open_invoices(self, hotel_id: str) -> list[InvoiceModel]:
        """Sent invoices with a balance still due."""
        candidates = self._session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.hotel_id == hotel_id,
                InvoiceModel.status.in_([s.value for s in PAYABLE_INVOICE_STATUSES]),
            )
            .order_by(InvoiceModel.due_date, InvoiceModel.number)
        ).scalars()
        return [inv for inv in candidates if inv.balance_amount > TOLERANCE]

    # -- creation ----------------------------------------------------------

    def _check_revenue_account(self, hotel_id: str, account_id: UUID) -> None:
        account = self._session.get(Account, account_id)
        if account is None or account.hotel_id != hotel_id:
            raise ValidationError(f"Unknown revenue account {account_id}", field="lines.account_id")
        if account.kind != AccountKind.REVENUE.value:
            raise ValidationError(
                f"Account {account.code} is not a revenue account", field="lines.account_id"
            )
        if not account.is_active:
            raise ValidationError(f"Account {account.code} is inactive", field="lines.account_id")

    def create(
        self,
        *,
        hotel_id: str,
        customer: Customer,
        lines: Sequence[InvoiceLineInput],
        actor_id: str,
        currency: str,
        issue_date: date | None = None,
        due_date: date | None = None,
        discounts: Sequence[DiscountInput] = (),
        booking_id: str | None = None,
        notes: str | None = None,
    ) -> InvoiceModel:
        if not lines:
            raise ValidationError("An invoice needs at least one line", field="lines")
        currency = validate_currency(currency)
        issue = issue_date or self._clock.today()
        due = due_date or issue + timedelta(days=self._config.default_payment_terms_days)
        if due < issue:
            raise ValidationError("Due date cannot precede issue date", field="due_date")
        for line in lines:
            self._check_revenue_account(hotel_id, line.account_id)
        totals = compute_invoice_totals(lines, discounts)
        if totals.total_amount < 0:
            raise InvalidAmountError("Discounts exceed the invoice total", field="discounts")

        seq = self._sequences.next_value(document_sequence_name("invoice", hotel_id, issue.year))
        invoice = InvoiceModel(
            hotel_id=hotel_id,
            number=f"{self._config.invoice_prefix}-{issue.year}-{seq:06d}",
            customer_type=customer.type.value,
            customer_id=customer.customer_id,
            customer_name=customer.name.strip(),
            customer_email=customer.email,
            customer_phone=customer.phone,
            booking_id=booking_id,
            issue_date=issue,
            due_date=due,
            currency=currency,
            discounts=[d.to_dict() for d in discounts],
            subtotal=totals.subtotal,
            total_tax=totals.total_tax,
            total_discount=totals.total_discount,
            total_amount=totals.total_amount,
            paid_amount=ZERO,
            balance_amount=totals.total_amount,
            status=InvoiceStatus.DRAFT.value,
            notes=notes,
            created_by_id=actor_id,
        )
        for index, line in enumerate(lines):
            invoice.lines.append(
                InvoiceLineModel(
                    line_index=index,
                    description=line.description,
                    account_id=line.account_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    amount=line.amount,
                    tax_amount=line.tax_amount,
                )
            )
        self._session.add(invoice)
        self._session.flush()
        logger.info(
            "invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.number,
                "total_amount": invoice.total_amount,
            },
        )
        return invoice

    # -- transitions -------------------------------------------------------

    def send(self, invoice_id: UUID, actor_id: str) -> InvoiceModel:
        """DRAFT -> SENT; posts Dr Receivable (+ Dr Discounts) / Cr Revenue + Cr Tax."""
        invoice = self._lock(invoice_id)
        if InvoiceStatus(invoice.status) != InvoiceStatus.DRAFT:
            raise InvalidStatusTransitionError(
                "invoice", str(invoice.id), invoice.status, InvoiceStatus.SENT.value
            )
        lines = [
            RoleLine.dr(AccountRole.RECEIVABLE, invoice.total_amount, invoice.number),
            RoleLine.dr(AccountRole.DISCOUNTS, invoice.total_discount, "Invoice discounts"),
        ]
        lines += [RoleLine.cr_account(l.account_id, l.amount, l.description) for l in invoice.lines]
        lines.append(RoleLine.cr(AccountRole.TAX_PAYABLE, invoice.total_tax, "Sales tax"))

        with self._session.begin_nested():
            entry = self._poster.post(
                hotel_id=invoice.hotel_id,
                entry_date=invoice.issue_date,
                description=f"Invoice {invoice.number} to {invoice.customer_name}",
                lines=lines,
                actor_id=actor_id,
                currency=invoice.currency,
                ref_kind="invoice",
                ref_id=str(invoice.id),
            )
            invoice.journal_entry_id = entry.id if entry is not None else None
            invoice.status = InvoiceStatus.SENT.value
            invoice.sent_at = self._clock.now()
            invoice.updated_by_id = actor_id
            _apply_paid_delta(invoice, ZERO, self._clock.today())
            self._session.flush()
        logger.info(
            "invoice_sent",
            extra={"invoice_id": str(invoice.id), "invoice_number": invoice.number},
        )
        return invoice

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Decimal | str | int,
        method: PaymentMethod | str,
        actor_id: str,
        reference: str | None = None,
        fees: FeeBreakdown | None = None,
        payment_date: date | None = None,
        notes: str | None = None,
    ) -> tuple[InvoiceModel, PaymentModel]:
        amount = to_decimal(amount, field="amount")
        invoice = self._lock(invoice_id)
        if InvoiceStatus(invoice.status) not in PAYABLE_INVOICE_STATUSES:
            raise InvalidStatusTransitionError(
                "invoice", str(invoice.id), invoice.status, InvoiceStatus.PAID.value
            )
        if amount > invoice.balance_amount + TOLERANCE and not self._config.allow_invoice_overpayment:
            raise InvalidAmountError(
                f"Payment exceeds invoice balance ({invoice.balance_amount:.2f})", field="amount"
            )
        with self._session.begin_nested():
            payment = self._payments.process(
                hotel_id=invoice.hotel_id,
                amount=amount,
                method=method,
                actor_id=actor_id,
                currency=invoice.currency,
                customer_ref=invoice.customer_id or invoice.customer_name,
                invoice_id=invoice.id,
                booking_id=invoice.booking_id,
                fees=fees,
                reference=reference,
                payment_date=payment_date,
                notes=notes,
                outstanding=invoice.balance_amount,
            )
            _apply_paid_delta(invoice, payment.amount, self._clock.today())
            invoice.updated_by_id = actor_id
            self._session.flush()
        logger.info(
            "invoice_payment_recorded",
            extra={
                "invoice_id": str(invoice.id),
                "payment_id": str(payment.id),
                "status": invoice.status,
                "balance_amount": invoice.balance_amount,
            },
        )
        return invoice, payment

    def cancel(self, invoice_id: UUID, reason: str, actor_id: str) -> InvoiceModel:
        """Cancel an unpaid invoice, reversing its sales entry if one was posted."""
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required", field="reason")
        invoice = self._lock(invoice_id)
        if InvoiceStatus(invoice.status) in TERMINAL_INVOICE_STATUSES or invoice.paid_amount > TOLERANCE:
            raise InvalidStatusTransitionError(
                "invoice", str(invoice.id), invoice.status, InvoiceStatus.CANCELLED.value
            )
        with self._session.begin_nested():
            if invoice.journal_entry_id is not None:
                self._poster.reverse(invoice.journal_entry_id, f"Invoice cancelled: {reason}", actor_id)
            invoice.status = InvoiceStatus.CANCELLED.value
            invoice.cancelled_at = self._clock.now()
            invoice.cancellation_reason = reason
            invoice.updated_by_id = actor_id
            self._session.flush()
        logger.info(
            "invoice_cancelled",
            extra={"invoice_id": str(invoice.id), "invoice_number": invoice.number},
        )
        return invoice

    def refresh_status(self, invoice_id: UUID) -> InvoiceModel:
        invoice = self._lock(invoice_id)
        _apply_paid_delta(invoice, ZERO, self._clock.today())
        self._session.flush()
        return invoice

    def refresh_overdue(self, hotel_id: str) -> list[InvoiceModel]:
        """Re-derive every open invoice; returns those whose status changed."""
        changed: list[InvoiceModel] = []
        today = self._clock.today()
        for invoice in self.open_invoices(hotel_id):
            before = invoice.status
            _apply_paid_delta(invoice, ZERO, today)
            if invoice.status != before:
                changed.append(invoice)
        self._session.flush()
        if changed:
            logger.info(
                "invoice_statuses_refreshed",
                extra={"hotel_id": hotel_id, "changed": len(changed)},
            )
        return changed
