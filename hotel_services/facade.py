"""
hotel_services.facade -- the service surface of the accounting core.

Responsibility:
    One method per public operation. Each call:
    1. binds a correlation id, the hotel and the actor into LogContext,
    2. resolves the target hotel (from the request or the stored record),
    3. authorizes the caller for the operation and hotel,
    4. runs the work inside a SAVEPOINT, so a failed operation leaves no
       partial writes behind,
    5. returns a ``ServiceResult`` envelope instead of raising.

Architecture position:
    Services layer -- the outermost seam. The only place role checks live
    and the only place exceptions become result values. Commit belongs to
    whoever owns the session (``session_scope()`` or the test harness).

Failure modes:
    Typed errors map to ``{code, kind, message, details}``. Untyped errors
    are logged with traceback and reported as ``INTERNAL_ERROR``.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Mapping, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from hotel_config.loader import load_chart_of_accounts
from hotel_config.settings import AppSettings
from hotel_engines.rules import BookingView, RulesEngine
from hotel_kernel.domain.cancellation import CancellationToken
from hotel_kernel.domain.clock import Clock, SystemClock
from hotel_kernel.domain.user_context import UserContext
from hotel_kernel.exceptions import HotelFinanceError, ValidationError
from hotel_kernel.logging_config import LogContext, get_logger
from hotel_kernel.models.account import AccountKind
from hotel_kernel.services.account_service import AccountService
from hotel_kernel.services.exchange_rate_service import ExchangeRateService
from hotel_kernel.services.journal_service import JournalLineInput, JournalService
from hotel_modules.billing.config import BillingConfig
from hotel_modules.billing.models import (
    Customer,
    DiscountInput,
    FeeBreakdown,
    InvoiceLineInput,
    PaymentMethod,
    PaymentType,
)
from hotel_modules.billing.service import InvoiceService, PaymentService
from hotel_modules.reporting.config import ReportingConfig
from hotel_modules.reporting.service import BudgetService, ReportingService
from hotel_modules.settlement.config import SettlementConfig
from hotel_modules.settlement.models import (
    AdjustmentInput,
    BookingDetails,
    CommunicationInput,
    DisputeInput,
    GuestDetails,
    SettlementPaymentInput,
    SettlementPaymentMethod,
    SettlementTerms,
)
from hotel_modules.settlement.service import SettlementService
from hotel_services.authorization import authorize
from hotel_services.results import ServiceResult, account_view, journal_entry_view

logger = get_logger("services.facade")

HotelRef = str | Callable[[], str] | None


class HotelFinanceFacade:
    """
    Transport-agnostic entry point for every accounting operation.

    Contract:
        Every public method takes the caller's ``UserContext`` first and
        returns a ``ServiceResult``; none raises for domain failures.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: AppSettings | None = None,
        rules_engine: RulesEngine | None = None,
        billing_config: BillingConfig | None = None,
        settlement_config: SettlementConfig | None = None,
        reporting_config: ReportingConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or AppSettings()
        self._rules = rules_engine or RulesEngine(self._settings.rules_config())
        self._accounts = AccountService(session, self._clock)
        self._journal = JournalService(session, self._clock)
        self._rates = ExchangeRateService(session, self._clock)
        self._invoices = InvoiceService(session, self._clock, billing_config, self._rules)
        self._payments = self._invoices.payments
        self._settlements = SettlementService(
            session, self._clock, self._rules, settlement_config,
        )
        self._reports = ReportingService(session, self._clock, reporting_config)
        self._budgets = BudgetService(session, self._clock)

    @property
    def rules(self) -> RulesEngine:
        return self._rules

    # =====================================================================
    # Plumbing
    # =====================================================================

    def _currency(self, currency: str | None) -> str:
        return currency or self._settings.default_currency

    def _token(self, timeout_seconds: float | None) -> CancellationToken | None:
        if timeout_seconds is None:
            return None
        return CancellationToken.with_timeout(self._clock, timeout_seconds)

    def _run(
        self,
        operation: str,
        user: UserContext,
        hotel: HotelRef,
        work: Callable[[], Any],
        settlement_id: UUID | None = None,
        entry_id: UUID | None = None,
    ) -> ServiceResult:
        correlation_id = uuid4().hex
        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=user.user_id,
            hotel_id=hotel if isinstance(hotel, str) else None,
            settlement_id=str(settlement_id) if settlement_id else None,
            entry_id=str(entry_id) if entry_id else None,
        ):
            try:
                hotel_id = hotel() if callable(hotel) else hotel
                with LogContext.bind(hotel_id=hotel_id):
                    authorize(user, operation, hotel_id)
                    with self._session.begin_nested():
                        data = work()
            except HotelFinanceError as exc:
                logger.warning(
                    "operation_failed",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "error_kind": exc.kind,
                        "error_message": str(exc),
                    },
                )
                return ServiceResult.failure(exc)
            except Exception as exc:
                logger.exception(
                    "operation_internal_error",
                    extra={"operation": operation, "exc_type": type(exc).__name__},
                )
                return ServiceResult.failure(exc)
            logger.info("operation_completed", extra={"operation": operation})
            return ServiceResult.success(data)

    def _hotel_of_account(self, account_id: UUID) -> Callable[[], str]:
        return lambda: self._accounts.get(account_id).hotel_id

    def _hotel_of_entry(self, entry_id: UUID) -> Callable[[], str]:
        return lambda: self._journal.get(entry_id).hotel_id

    def _hotel_of_invoice(self, invoice_id: UUID) -> Callable[[], str]:
        return lambda: self._invoices.get(invoice_id).hotel_id

    def _hotel_of_payment(self, payment_id: UUID) -> Callable[[], str]:
        return lambda: self._payments.get(payment_id).hotel_id

    def _hotel_of_settlement(self, settlement_id: UUID) -> Callable[[], str]:
        return lambda: self._settlements.get(settlement_id).hotel_id

    def _hotel_of_budget(self, budget_id: UUID) -> Callable[[], str]:
        return lambda: self._budgets.get(budget_id).hotel_id

    # =====================================================================
    # Chart of accounts
    # =====================================================================

    def create_account(
        self,
        user: UserContext,
        hotel_id: str,
        code: str,
        name: str,
        kind: AccountKind | str,
        currency: str | None = None,
        sub_type: str | None = None,
        parent_id: UUID | None = None,
        description: str | None = None,
    ) -> ServiceResult:
        def work():
            return account_view(
                self._accounts.create(
                    hotel_id=hotel_id,
                    code=code,
                    name=name,
                    kind=kind,
                    actor_id=user.user_id,
                    currency=self._currency(currency),
                    sub_type=sub_type,
                    parent_id=parent_id,
                    description=description,
                )
            )

        return self._run("accounts.create", user, hotel_id, work)

    def update_account(
        self,
        user: UserContext,
        account_id: UUID,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> ServiceResult:
        def work():
            return account_view(
                self._accounts.update(
                    account_id,
                    actor_id=user.user_id,
                    name=name,
                    description=description,
                    is_active=is_active,
                )
            )

        return self._run("accounts.update", user, self._hotel_of_account(account_id), work)

    def deactivate_account(self, user: UserContext, account_id: UUID) -> ServiceResult:
        def work():
            return account_view(self._accounts.deactivate(account_id, actor_id=user.user_id))

        return self._run("accounts.deactivate", user, self._hotel_of_account(account_id), work)

    def seed_chart_of_accounts(
        self,
        user: UserContext,
        hotel_id: str,
        currency: str | None = None,
        chart: Sequence[dict[str, Any]] | None = None,
    ) -> ServiceResult:
        """Install the default (or a given) chart; existing codes are kept."""

        def work():
            installed = self._accounts.seed_defaults(
                hotel_id,
                actor_id=user.user_id,
                currency=self._currency(currency),
                chart=chart if chart is not None else load_chart_of_accounts(),
            )
            return [account_view(a) for a in installed]

        return self._run("accounts.seed", user, hotel_id, work)

    def reconcile_balances(
        self, user: UserContext, hotel_id: str, repair: bool = False
    ) -> ServiceResult:
        def work():
            return self._accounts.reconcile_balances(
                hotel_id, repair=repair, actor_id=user.user_id,
            )

        return self._run("accounts.reconcile", user, hotel_id, work)

    # =====================================================================
    # Journal
    # =====================================================================

    def create_journal_draft(
        self,
        user: UserContext,
        hotel_id: str,
        entry_date: date,
        description: str,
        lines: Sequence[JournalLineInput],
        currency: str | None = None,
        require_balanced: bool = True,
    ) -> ServiceResult:
        def work():
            entry = self._journal.create_draft(
                hotel_id=hotel_id,
                entry_date=entry_date,
                description=description,
                lines=lines,
                actor_id=user.user_id,
                currency=self._currency(currency),
                require_balanced=require_balanced,
            )
            return journal_entry_view(entry)

        return self._run("journal.create_draft", user, hotel_id, work)

    def post_journal_entry(self, user: UserContext, entry_id: UUID) -> ServiceResult:
        def work():
            result = self._journal.post(entry_id, actor_id=user.user_id)
            return journal_entry_view(result.entry, result.ledger_record_count)

        return self._run(
            "journal.post", user, self._hotel_of_entry(entry_id), work, entry_id=entry_id,
        )

    def reverse_journal_entry(
        self,
        user: UserContext,
        entry_id: UUID,
        reason: str,
        reversal_date: date | None = None,
    ) -> ServiceResult:
        def work():
            return journal_entry_view(
                self._journal.reverse(
                    entry_id, reason=reason, actor_id=user.user_id, reversal_date=reversal_date,
                )
            )

        return self._run(
            "journal.reverse", user, self._hotel_of_entry(entry_id), work, entry_id=entry_id,
        )

    # =====================================================================
    # Exchange rates
    # =====================================================================

    def upsert_exchange_rates(
        self,
        user: UserContext,
        base_currency: str,
        rates: Mapping[str, Decimal | str],
        effective_date: date,
        source: str | None = None,
    ) -> ServiceResult:
        def work():
            stored = self._rates.upsert_rates(
                base_currency, rates, effective_date, actor_id=user.user_id, source=source,
            )
            return {r.to_currency: r.rate for r in stored}

        return self._run("exchange_rates.upsert", user, None, work)

    # =====================================================================
    # Invoices and payments
    # =====================================================================

    def create_invoice(
        self,
        user: UserContext,
        hotel_id: str,
        customer: Customer,
        lines: Sequence[InvoiceLineInput],
        currency: str | None = None,
        issue_date: date | None = None,
        due_date: date | None = None,
        discounts: Sequence[DiscountInput] = (),
        booking_id: str | None = None,
        notes: str | None = None,
    ) -> ServiceResult:
        def work():
            return self._invoices.create(
                hotel_id=hotel_id,
                customer=customer,
                lines=lines,
                actor_id=user.user_id,
                currency=self._currency(currency),
                issue_date=issue_date,
                due_date=due_date,
                discounts=discounts,
                booking_id=booking_id,
                notes=notes,
            ).to_dto()

        return self._run("invoice.create", user, hotel_id, work)

    def send_invoice(self, user: UserContext, invoice_id: UUID) -> ServiceResult:
        def work():
            return self._invoices.send(invoice_id, actor_id=user.user_id).to_dto()

        return self._run("invoice.send", user, self._hotel_of_invoice(invoice_id), work)

    def record_invoice_payment(
        self,
        user: UserContext,
        invoice_id: UUID,
        amount: Decimal | str | int,
        method: PaymentMethod | str,
        reference: str | None = None,
        fees: FeeBreakdown | None = None,
        payment_date: date | None = None,
        notes: str | None = None,
    ) -> ServiceResult:
        def work():
            invoice, payment = self._invoices.record_payment(
                invoice_id,
                amount,
                method,
                actor_id=user.user_id,
                reference=reference,
                fees=fees,
                payment_date=payment_date,
                notes=notes,
            )
            return {"invoice": invoice.to_dto(), "payment": payment.to_dto()}

        return self._run(
            "invoice.record_payment", user, self._hotel_of_invoice(invoice_id), work,
        )

    def cancel_invoice(self, user: UserContext, invoice_id: UUID, reason: str) -> ServiceResult:
        def work():
            return self._invoices.cancel(invoice_id, reason, actor_id=user.user_id).to_dto()

        return self._run("invoice.cancel", user, self._hotel_of_invoice(invoice_id), work)

    def process_payment(
        self,
        user: UserContext,
        hotel_id: str,
        amount: Decimal | str | int,
        method: PaymentMethod | str,
        currency: str | None = None,
        type: PaymentType | str = PaymentType.RECEIPT,
        customer_ref: str | None = None,
        booking_id: str | None = None,
        fees: FeeBreakdown | None = None,
        reference: str | None = None,
        notes: str | None = None,
    ) -> ServiceResult:
        def work():
            return self._payments.process(
                hotel_id=hotel_id,
                amount=amount,
                method=method,
                actor_id=user.user_id,
                currency=self._currency(currency),
                type=type,
                customer_ref=customer_ref,
                booking_id=booking_id,
                fees=fees,
                reference=reference,
                notes=notes,
            ).to_dto()

        return self._run("payment.process", user, hotel_id, work)

    def refund_payment(
        self,
        user: UserContext,
        payment_id: UUID,
        amount: Decimal | str | int,
        reason: str,
        method: PaymentMethod | str | None = None,
    ) -> ServiceResult:
        def work():
            return self._payments.refund(
                payment_id, amount, reason, actor_id=user.user_id, method=method,
            ).to_dto()

        return self._run("payment.refund", user, self._hotel_of_payment(payment_id), work)

    def reconcile_payment(
        self, user: UserContext, payment_id: UUID, statement_reference: str
    ) -> ServiceResult:
        def work():
            return self._payments.reconcile(
                payment_id, statement_reference, actor_id=user.user_id,
            ).to_dto()

        return self._run("payment.reconcile", user, self._hotel_of_payment(payment_id), work)

    # =====================================================================
    # Settlements
    # =====================================================================

    def create_settlement(
        self,
        user: UserContext,
        hotel_id: str,
        booking_id: str,
        original_amount: Decimal | str | int,
        guest: GuestDetails,
        booking: BookingView | None,
        currency: str | None = None,
        due_date: date | None = None,
        booking_details: BookingDetails | None = None,
        terms: SettlementTerms | None = None,
        is_vip: bool = False,
        is_corporate: bool = False,
        notes: str | None = None,
    ) -> ServiceResult:
        def work():
            return self._settlements.create(
                hotel_id=hotel_id,
                booking_id=booking_id,
                original_amount=original_amount,
                currency=self._currency(currency),
                guest=guest,
                booking=booking,
                user=user,
                due_date=due_date,
                booking_details=booking_details,
                terms=terms,
                is_vip=is_vip,
                is_corporate=is_corporate,
                notes=notes,
            ).to_dto()

        return self._run("settlement.create", user, hotel_id, work)

    def get_settlement(self, user: UserContext, settlement_id: UUID) -> ServiceResult:
        return self._run(
            "settlement.get",
            user,
            self._hotel_of_settlement(settlement_id),
            lambda: self._settlements.get(settlement_id).to_dto(),
            settlement_id=settlement_id,
        )

    def calculate_late_fee(
        self, user: UserContext, settlement_id: UUID, as_of: date | None = None
    ) -> ServiceResult:
        return self._run(
            "settlement.get",
            user,
            self._hotel_of_settlement(settlement_id),
            lambda: self._settlements.calculate_late_fee(settlement_id, as_of),
            settlement_id=settlement_id,
        )

    def _settlement_op(
        self,
        operation: str,
        user: UserContext,
        settlement_id: UUID,
        mutate: Callable[[], Any],
    ) -> ServiceResult:
        def work():
            result = mutate()
            return result.to_dto() if hasattr(result, "to_dto") else result

        return self._run(
            operation,
            user,
            self._hotel_of_settlement(settlement_id),
            work,
            settlement_id=settlement_id,
        )

    def add_adjustment(
        self, user: UserContext, settlement_id: UUID, adjustment: AdjustmentInput
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.add_adjustment",
            user,
            settlement_id,
            lambda: self._settlements.add_adjustment(settlement_id, adjustment, user),
        )

    def add_settlement_payment(
        self, user: UserContext, settlement_id: UUID, payment: SettlementPaymentInput
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.add_payment",
            user,
            settlement_id,
            lambda: self._settlements.add_payment(settlement_id, payment, user),
        )

    def issue_settlement_refund(
        self,
        user: UserContext,
        settlement_id: UUID,
        method: SettlementPaymentMethod | str = SettlementPaymentMethod.REFUND_TO_SOURCE,
        reason: str | None = None,
        amount: Decimal | str | int | None = None,
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.issue_refund",
            user,
            settlement_id,
            lambda: self._settlements.issue_refund(
                settlement_id, user, method=method, reason=reason, amount=amount,
            ),
        )

    def apply_late_fee(
        self, user: UserContext, settlement_id: UUID, as_of: date | None = None
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.apply_late_fee",
            user,
            settlement_id,
            lambda: self._settlements.apply_late_fee(settlement_id, user, as_of),
        )

    def escalate_settlement(
        self, user: UserContext, settlement_id: UUID, reason: str
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.escalate",
            user,
            settlement_id,
            lambda: self._settlements.escalate(settlement_id, reason, user),
        )

    def add_communication(
        self, user: UserContext, settlement_id: UUID, communication: CommunicationInput
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.add_communication",
            user,
            settlement_id,
            lambda: self._settlements.add_communication(settlement_id, communication, user),
        )

    def raise_dispute(
        self, user: UserContext, settlement_id: UUID, dispute: DisputeInput
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.raise_dispute",
            user,
            settlement_id,
            lambda: self._settlements.raise_dispute(settlement_id, dispute, user),
        )

    def resolve_dispute(
        self,
        user: UserContext,
        settlement_id: UUID,
        dispute_id: UUID,
        resolution: str,
        adjustment: AdjustmentInput | None = None,
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.resolve_dispute",
            user,
            settlement_id,
            lambda: self._settlements.resolve_dispute(
                settlement_id, dispute_id, resolution, user, adjustment=adjustment,
            ),
        )

    def cancel_settlement(
        self, user: UserContext, settlement_id: UUID, reason: str
    ) -> ServiceResult:
        return self._settlement_op(
            "settlement.cancel",
            user,
            settlement_id,
            lambda: self._settlements.cancel(settlement_id, reason, user),
        )

    def refresh_overdue(self, user: UserContext, hotel_id: str) -> ServiceResult:
        """Promote due settlements and invoices to overdue."""

        def work():
            settlements = self._settlements.refresh_overdue(hotel_id, actor_id=user.user_id)
            invoices = self._invoices.refresh_overdue(hotel_id)
            return {
                "settlements": [s.to_dto() for s in settlements],
                "invoices": [i.to_dto() for i in invoices],
            }

        return self._run("settlement.refresh_overdue", user, hotel_id, work)

    def settlement_analytics(
        self,
        user: UserContext,
        hotel_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ServiceResult:
        def work():
            return {
                "analytics": self._settlements.analytics(hotel_id, start, end),
                "validation": self._settlements.validation_statistics(hotel_id, start, end),
            }

        return self._run("settlement.analytics", user, hotel_id, work)

    # =====================================================================
    # Reports and budgets
    # =====================================================================

    def trial_balance(
        self,
        user: UserContext,
        hotel_id: str,
        as_of: date | None = None,
        timeout_seconds: float | None = None,
    ) -> ServiceResult:
        token = self._token(timeout_seconds)
        return self._run(
            "reports.read", user, hotel_id,
            lambda: self._reports.trial_balance(hotel_id, as_of, token=token),
        )

    def income_statement(
        self,
        user: UserContext,
        hotel_id: str,
        start: date,
        end: date,
        timeout_seconds: float | None = None,
    ) -> ServiceResult:
        token = self._token(timeout_seconds)
        return self._run(
            "reports.read", user, hotel_id,
            lambda: self._reports.income_statement(hotel_id, start, end, token=token),
        )

    def balance_sheet(
        self,
        user: UserContext,
        hotel_id: str,
        as_of: date | None = None,
        timeout_seconds: float | None = None,
    ) -> ServiceResult:
        token = self._token(timeout_seconds)
        return self._run(
            "reports.read", user, hotel_id,
            lambda: self._reports.balance_sheet(hotel_id, as_of, token=token),
        )

    def cash_flow(
        self,
        user: UserContext,
        hotel_id: str,
        start: date,
        end: date,
        timeout_seconds: float | None = None,
    ) -> ServiceResult:
        token = self._token(timeout_seconds)
        return self._run(
            "reports.read", user, hotel_id,
            lambda: self._reports.cash_flow(hotel_id, start, end, token=token),
        )

    def tax_summary(
        self,
        user: UserContext,
        hotel_id: str,
        start: date,
        end: date,
        timeout_seconds: float | None = None,
    ) -> ServiceResult:
        token = self._token(timeout_seconds)
        return self._run(
            "reports.read", user, hotel_id,
            lambda: self._reports.tax_summary(hotel_id, start, end, token=token),
        )

    def aged_receivables(
        self,
        user: UserContext,
        hotel_id: str,
        as_of: date | None = None,
        currency: str | None = None,
        timeout_seconds: float | None = None,
    ) -> ServiceResult:
        token = self._token(timeout_seconds)
        return self._run(
            "reports.read", user, hotel_id,
            lambda: self._reports.aged_receivables(
                hotel_id, as_of, currency=self._currency(currency), token=token,
            ),
        )

    def budget_variance(
        self, user: UserContext, budget_id: UUID, timeout_seconds: float | None = None
    ) -> ServiceResult:
        token = self._token(timeout_seconds)
        return self._run(
            "reports.read", user, self._hotel_of_budget(budget_id),
            lambda: self._reports.budget_variance(budget_id, token=token),
        )

    def create_budget(
        self,
        user: UserContext,
        hotel_id: str,
        name: str,
        fiscal_year: int,
        period_start: date,
        period_end: date,
        items: Sequence[tuple[UUID, Decimal | str | int]] = (),
        currency: str | None = None,
    ) -> ServiceResult:
        """Create a budget and, optionally, one whole-period item per account."""

        def work():
            budget = self._budgets.create_budget(
                hotel_id=hotel_id,
                name=name,
                fiscal_year=fiscal_year,
                period_start=period_start,
                period_end=period_end,
                actor_id=user.user_id,
                currency=self._currency(currency),
            )
            for account_id, amount in items:
                self._budgets.add_item(budget.id, account_id, amount, actor_id=user.user_id)
            return budget.to_dto()

        return self._run("budgets.manage", user, hotel_id, work)

    def refresh_budget(self, user: UserContext, budget_id: UUID) -> ServiceResult:
        return self._run(
            "budgets.manage", user, self._hotel_of_budget(budget_id),
            lambda: self._budgets.refresh_actuals(budget_id, actor_id=user.user_id).to_dto(),
        )

    # =====================================================================
    # Rules engine
    # =====================================================================

    def get_rules(self, user: UserContext) -> ServiceResult:
        return self._run("rules.read", user, None, self._rules.get_rules)

    def update_rules(self, user: UserContext, overrides: Mapping[str, Any]) -> ServiceResult:
        """Replace the rules configuration atomically."""

        def work():
            try:
                return self._rules.update_rules(overrides).snapshot()
            except ValueError as exc:
                raise ValidationError(str(exc), field="overrides") from exc

        return self._run("rules.update", user, None, work)
