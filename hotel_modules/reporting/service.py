"""
Reporting Module Service (``hotel_modules.reporting.service``).

Responsibility
--------------
Generates the hotel's financial reports (trial balance, income statement,
balance sheet, cash flow, tax summary, aged receivables, budget variance)
by bridging ``LedgerSelector`` and the document tables to the pure
builders in ``statements.py``. ``BudgetService`` maintains budgets and
refreshes their actuals from the ledger.

Architecture position
---------------------
**Modules layer** -- thin glue. ``ReportingService`` is read-only; it posts
nothing. Constructor: ``session`` + ``clock`` + ``config``.

Invariants enforced
-------------------
* Every figure is derived from posted ledger records, never from
  ``Account.current_balance``.
* All monetary amounts use ``Decimal`` -- NEVER ``float``.
* Long reads honour an optional ``CancellationToken`` at each page.

Failure modes
-------------
* ``start > end``  -> ``ValidationError`` before any query runs.
* Deadline passed  -> ``OperationCancelledError`` from the selector.
* Unknown budget   -> ``BudgetNotFoundError``.

Audit relevance
---------------
A structured log event is emitted for every report generated, carrying
report type, hotel and period.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from hotel_engines.aging import AgedItem, AgingCalculator
from hotel_kernel.db.types import validate_currency
from hotel_kernel.domain.cancellation import CancellationToken
from hotel_kernel.domain.clock import Clock, SystemClock
from hotel_kernel.domain.values import Money, to_decimal
from hotel_kernel.exceptions import (
    AccountNotFoundError,
    BudgetNotFoundError,
    InvalidAmountError,
    ValidationError,
)
from hotel_kernel.logging_config import get_logger
from hotel_kernel.models.account import Account
from hotel_kernel.selectors.ledger_selector import AccountTotals, LedgerSelector
from hotel_modules.billing.service import InvoiceService
from hotel_modules.reporting.config import ReportingConfig
from hotel_modules.reporting.models import (
    AgedReceivablesReport,
    BalanceSheet,
    BudgetItem,
    BudgetStatus,
    BudgetVarianceReport,
    CashFlowReport,
    IncomeStatement,
    ReportMetadata,
    ReportType,
    TaxSummaryReport,
    TrialBalanceReport,
)
from hotel_modules.reporting.orm import BudgetItemModel, BudgetModel
from hotel_modules.reporting.statements import (
    AccountInfo,
    actual_for,
    build_balance_sheet,
    build_cash_flow,
    build_income_statement,
    build_tax_summary,
    build_trial_balance,
    build_variance_lines,
    variance_pct,
)
from hotel_modules.settlement.orm import SettlementModel
from hotel_modules.settlement.service import OPEN_STATUSES

logger = get_logger("modules.reporting.service")

_ZERO = Decimal("0")


def _check_range(start: date, end: date) -> None:
    if start > end:
        raise ValidationError(
            f"Report period start {start} is after end {end}", field="start",
        )


def load_accounts(session: Session, hotel_id: str) -> dict[UUID, AccountInfo]:
    """Chart of accounts of a hotel as ``AccountInfo`` bridge objects."""
    accounts = session.execute(
        select(Account).where(Account.hotel_id == hotel_id)
    ).scalars().all()
    return {
        a.id: AccountInfo(
            account_id=a.id,
            code=a.code,
            name=a.name,
            kind=str(getattr(a.kind, "value", a.kind)),
            normal_side=str(getattr(a.normal_side, "value", a.normal_side)),
            sub_type=a.sub_type,
            currency=a.currency,
        )
        for a in accounts
    }


class ReportingService:
    """
    Financial report generation.

    Contract:
        Every public method returns a frozen report DTO and performs no
        writes.
    Non-goals:
        - No period closing or retained-earnings transfer.
        - No currency translation; figures are in account currency.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ReportingConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or ReportingConfig.with_defaults()
        self._ledger = LedgerSelector(session)
        self._aging = AgingCalculator()

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _metadata(
        self,
        report_type: ReportType,
        hotel_id: str,
        as_of: date,
        currency: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> ReportMetadata:
        return ReportMetadata(
            report_type=report_type,
            hotel_id=hotel_id,
            currency=validate_currency(currency or self._config.default_currency),
            as_of_date=as_of,
            generated_at=self._clock.now().isoformat(),
            period_start=start,
            period_end=end,
        )

    def _log(self, metadata: ReportMetadata, **extra) -> None:
        logger.info(
            "report_generated",
            extra={
                "report_type": metadata.report_type.value,
                "hotel_id": metadata.hotel_id,
                "as_of": metadata.as_of_date.isoformat(),
                "period_start": metadata.period_start.isoformat() if metadata.period_start else None,
                "period_end": metadata.period_end.isoformat() if metadata.period_end else None,
                **extra,
            },
        )

    def _cash_balance(
        self,
        hotel_id: str,
        accounts: dict[UUID, AccountInfo],
        as_of: date,
        token: CancellationToken | None,
    ) -> Decimal:
        totals = self._ledger.account_totals(hotel_id, end=as_of, token=token)
        return sum(
            (
                t.net
                for account_id, t in totals.items()
                if account_id in accounts
                and self._config.classification.is_cash(accounts[account_id].sub_type)
            ),
            _ZERO,
        )

    # =========================================================================
    # Reports
    # =========================================================================

    def trial_balance(
        self,
        hotel_id: str,
        as_of: date | None = None,
        currency: str | None = None,
        token: CancellationToken | None = None,
    ) -> TrialBalanceReport:
        """All accounts with postings on or before ``as_of``."""
        as_of = as_of or self._clock.today()
        metadata = self._metadata(ReportType.TRIAL_BALANCE, hotel_id, as_of, currency)
        rows = self._ledger.trial_balance(hotel_id, as_of=as_of, token=token)
        report = build_trial_balance(rows, self._config, metadata)
        if not report.is_balanced:
            logger.error(
                "trial_balance_out_of_balance",
                extra={
                    "hotel_id": hotel_id,
                    "total_debits": str(report.total_debits),
                    "total_credits": str(report.total_credits),
                },
            )
        self._log(metadata, line_count=len(report.lines), is_balanced=report.is_balanced)
        return report

    def income_statement(
        self,
        hotel_id: str,
        start: date,
        end: date,
        currency: str | None = None,
        token: CancellationToken | None = None,
    ) -> IncomeStatement:
        """Revenue and expenses posted in ``[start, end]``."""
        _check_range(start, end)
        metadata = self._metadata(
            ReportType.INCOME_STATEMENT, hotel_id, end, currency, start, end,
        )
        accounts = load_accounts(self._session, hotel_id)
        totals = self._ledger.account_totals(hotel_id, start=start, end=end, token=token)
        report = build_income_statement(totals, accounts, self._config, metadata)
        self._log(metadata, net_income=str(report.net_income))
        return report

    def balance_sheet(
        self,
        hotel_id: str,
        as_of: date | None = None,
        currency: str | None = None,
        token: CancellationToken | None = None,
    ) -> BalanceSheet:
        """Assets, liabilities and equity as of ``as_of``."""
        as_of = as_of or self._clock.today()
        metadata = self._metadata(ReportType.BALANCE_SHEET, hotel_id, as_of, currency)
        accounts = load_accounts(self._session, hotel_id)
        totals = self._ledger.account_totals(hotel_id, end=as_of, token=token)
        report = build_balance_sheet(totals, accounts, self._config, metadata)
        if not report.is_balanced:
            logger.error(
                "balance_sheet_out_of_balance",
                extra={
                    "hotel_id": hotel_id,
                    "total_assets": str(report.total_assets),
                    "total_liabilities_and_equity": str(report.total_liabilities_and_equity),
                },
            )
        self._log(metadata, is_balanced=report.is_balanced)
        return report

    def cash_flow(
        self,
        hotel_id: str,
        start: date,
        end: date,
        currency: str | None = None,
        token: CancellationToken | None = None,
    ) -> CashFlowReport:
        """Cash movements in ``[start, end]`` classified by activity."""
        _check_range(start, end)
        metadata = self._metadata(ReportType.CASH_FLOW, hotel_id, end, currency, start, end)
        accounts = load_accounts(self._session, hotel_id)
        beginning = self._cash_balance(hotel_id, accounts, start - timedelta(days=1), token)
        ending = self._cash_balance(hotel_id, accounts, end, token)
        records = self._ledger.records(hotel_id=hotel_id, start=start, end=end, token=token)
        report = build_cash_flow(records, accounts, beginning, ending, self._config, metadata)
        if not report.reconciles:
            logger.warning(
                "cash_flow_does_not_reconcile",
                extra={
                    "hotel_id": hotel_id,
                    "beginning_cash": str(report.beginning_cash),
                    "net_change": str(report.net_change),
                    "ending_cash": str(report.ending_cash),
                },
            )
        self._log(metadata, net_change=str(report.net_change))
        return report

    def tax_summary(
        self,
        hotel_id: str,
        start: date,
        end: date,
        currency: str | None = None,
        token: CancellationToken | None = None,
    ) -> TaxSummaryReport:
        """Tax collected and paid per tax-payable account in ``[start, end]``."""
        _check_range(start, end)
        metadata = self._metadata(ReportType.TAX_SUMMARY, hotel_id, end, currency, start, end)
        accounts = load_accounts(self._session, hotel_id)
        totals = self._ledger.account_totals(hotel_id, start=start, end=end, token=token)
        report = build_tax_summary(totals, accounts, self._config, metadata)
        self._log(metadata, net_liability=str(report.net_liability))
        return report

    def aged_receivables(
        self,
        hotel_id: str,
        as_of: date | None = None,
        currency: str | None = None,
        include_settlements: bool = True,
        token: CancellationToken | None = None,
    ) -> AgedReceivablesReport:
        """
        Open invoice (and settlement) balances bucketed by days past due.

        Documents in another currency are left out of the report. Open
        settlements without a due date age from the day they were opened.
        """
        as_of = as_of or self._clock.today()
        metadata = self._metadata(ReportType.AGED_RECEIVABLES, hotel_id, as_of, currency)
        cur = metadata.currency
        items: list[AgedItem] = []
        skipped = 0

        if token is not None:
            token.raise_if_cancelled("aged_receivables")
        for invoice in InvoiceService(self._session, self._clock).open_invoices(hotel_id):
            if invoice.currency != cur:
                skipped += 1
                continue
            items.append(
                self._aging.age_item(
                    document_id=invoice.id,
                    document_type="invoice",
                    document_number=invoice.number,
                    due_date=invoice.due_date,
                    amount=Money.of(invoice.balance_amount, cur),
                    as_of=as_of,
                    counterparty_name=invoice.customer_name,
                )
            )

        if include_settlements:
            if token is not None:
                token.raise_if_cancelled("aged_receivables")
            settlements = self._session.execute(
                select(SettlementModel).where(
                    SettlementModel.hotel_id == hotel_id,
                    SettlementModel.status.in_([s.value for s in OPEN_STATUSES]),
                )
            ).scalars()
            for settlement in settlements:
                if settlement.outstanding_balance <= _ZERO:
                    continue
                if settlement.currency != cur:
                    skipped += 1
                    continue
                items.append(
                    self._aging.age_item(
                        document_id=settlement.id,
                        document_type="settlement",
                        document_number=settlement.number,
                        due_date=settlement.due_date or settlement.opened_at.date(),
                        amount=Money.of(settlement.outstanding_balance, cur),
                        as_of=as_of,
                        counterparty_name=settlement.guest_name,
                    )
                )

        aging = self._aging.generate_report(items=items, as_of=as_of, currency=cur)
        report = AgedReceivablesReport(
            metadata=metadata,
            aging=aging,
            bucket_totals={k: v.amount for k, v in aging.total_by_bucket().items()},
            total_outstanding=aging.total_amount().amount,
            total_overdue=aging.overdue_amount().amount,
        )
        self._log(metadata, item_count=aging.item_count, skipped_other_currency=skipped)
        return report

    def budget_variance(
        self,
        budget_id: UUID,
        token: CancellationToken | None = None,
    ) -> BudgetVarianceReport:
        """
        Budget against ledger actuals, item by item.

        Actuals are read live; stored item actuals are left untouched (see
        ``BudgetService.refresh_actuals``).
        """
        budget = self._session.get(BudgetModel, budget_id)
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        metadata = self._metadata(
            ReportType.BUDGET_VARIANCE,
            budget.hotel_id,
            budget.period_end,
            budget.currency,
            budget.period_start,
            budget.period_end,
        )
        accounts = load_accounts(self._session, budget.hotel_id)
        actuals = _item_actuals(self._ledger, budget, accounts, token)
        items = [
            _with_actual(item.to_dto(), actuals[item.id]) for item in budget.items
        ]
        lines = build_variance_lines(items, accounts)
        total_budgeted = sum((line.budgeted for line in lines), _ZERO)
        total_actual = sum((line.actual for line in lines), _ZERO)
        report = BudgetVarianceReport(
            metadata=metadata,
            budget_id=budget.id,
            budget_name=budget.name,
            lines=lines,
            total_budgeted=total_budgeted,
            total_actual=total_actual,
            total_variance=total_actual - total_budgeted,
        )
        self._log(metadata, total_variance=str(report.total_variance))
        return report


def _item_actuals(
    ledger: LedgerSelector,
    budget: BudgetModel,
    accounts: dict[UUID, AccountInfo],
    token: CancellationToken | None,
) -> dict[UUID, Decimal]:
    """Actual per budget item, reading ledger totals once per distinct period."""
    by_period: dict[tuple[date, date], dict[UUID, AccountTotals]] = {}
    result: dict[UUID, Decimal] = {}
    for item in budget.items:
        key = (item.period_start, item.period_end)
        if key not in by_period:
            by_period[key] = ledger.account_totals(
                budget.hotel_id, start=item.period_start, end=item.period_end, token=token,
            )
        result[item.id] = actual_for(by_period[key].get(item.account_id), accounts[item.account_id])
    return result


def _with_actual(item: BudgetItem, actual: Decimal) -> BudgetItem:
    variance = actual - item.budgeted_amount
    return replace(
        item,
        actual_amount=actual,
        variance=variance,
        variance_pct=variance_pct(variance, item.budgeted_amount),
    )


class BudgetService:
    """
    Budget maintenance.

    Contract:
        Mutations flush only; the caller owns commit.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._ledger = LedgerSelector(session)

    def get(self, budget_id: UUID) -> BudgetModel:
        budget = self._session.get(BudgetModel, budget_id)
        if budget is None:
            raise BudgetNotFoundError(str(budget_id))
        return budget

    def list_budgets(self, hotel_id: str, fiscal_year: int | None = None) -> list[BudgetModel]:
        query = select(BudgetModel).where(BudgetModel.hotel_id == hotel_id)
        if fiscal_year is not None:
            query = query.where(BudgetModel.fiscal_year == fiscal_year)
        return list(self._session.execute(query.order_by(BudgetModel.name)).scalars())

    def create_budget(
        self,
        *,
        hotel_id: str,
        name: str,
        fiscal_year: int,
        period_start: date,
        period_end: date,
        actor_id: str,
        currency: str = "INR",
        notes: str | None = None,
    ) -> BudgetModel:
        _check_range(period_start, period_end)
        if not name or not name.strip():
            raise ValidationError("Budget name is required", field="name")
        budget = BudgetModel(
            hotel_id=hotel_id,
            name=name.strip(),
            fiscal_year=fiscal_year,
            period_start=period_start,
            period_end=period_end,
            currency=validate_currency(currency),
            status=BudgetStatus.DRAFT.value,
            notes=notes,
            created_by_id=actor_id,
        )
        self._session.add(budget)
        self._session.flush()
        logger.info(
            "budget_created",
            extra={
                "budget_id": str(budget.id),
                "hotel_id": hotel_id,
                "fiscal_year": fiscal_year,
            },
        )
        return budget

    def add_item(
        self,
        budget_id: UUID,
        account_id: UUID,
        budgeted_amount,
        actor_id: str,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> BudgetItemModel:
        """Budget an account for a sub-period (defaults to the whole budget)."""
        budget = self.get(budget_id)
        if budget.status == BudgetStatus.CLOSED.value:
            raise ValidationError(f"Budget {budget.name} is closed", field="budget_id")
        account = self._session.get(Account, account_id)
        if account is None or account.hotel_id != budget.hotel_id:
            raise AccountNotFoundError(str(account_id))
        amount = to_decimal(budgeted_amount, field="budgeted_amount")
        if amount < 0:
            raise InvalidAmountError("Budgeted amount cannot be negative", field="budgeted_amount")
        start = period_start or budget.period_start
        end = period_end or budget.period_end
        _check_range(start, end)
        if start < budget.period_start or end > budget.period_end:
            raise ValidationError(
                "Item period must lie within the budget period", field="period_start",
            )
        item = BudgetItemModel(
            account_id=account_id,
            period_start=start,
            period_end=end,
            budgeted_amount=amount,
            created_by_id=actor_id,
        )
        budget.items.append(item)
        self._session.flush()
        logger.info(
            "budget_item_added",
            extra={
                "budget_id": str(budget.id),
                "account_code": account.code,
                "budgeted_amount": str(amount),
            },
        )
        return item

    def approve(self, budget_id: UUID, actor_id: str) -> BudgetModel:
        budget = self.get(budget_id)
        if budget.status != BudgetStatus.DRAFT.value:
            raise ValidationError(
                f"Only draft budgets can be approved (status {budget.status})",
                field="status",
            )
        budget.status = BudgetStatus.APPROVED.value
        budget.updated_by_id = actor_id
        self._session.flush()
        logger.info("budget_approved", extra={"budget_id": str(budget.id)})
        return budget

    def refresh_actuals(
        self,
        budget_id: UUID,
        actor_id: str,
        token: CancellationToken | None = None,
    ) -> BudgetModel:
        """Recompute actual, variance and variance percent of every item."""
        budget = self.get(budget_id)
        accounts = load_accounts(self._session, budget.hotel_id)
        actuals = _item_actuals(self._ledger, budget, accounts, token)
        now = self._clock.now()
        for item in budget.items:
            actual = actuals[item.id]
            item.actual_amount = actual
            item.variance = actual - item.budgeted_amount
            item.variance_pct = variance_pct(item.variance, item.budgeted_amount)
            item.last_refreshed_at = now
            item.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "budget_actuals_refreshed",
            extra={"budget_id": str(budget.id), "item_count": len(budget.items)},
        )
        return budget
