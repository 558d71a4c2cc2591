"""
Financial Reporting Domain Models (``hotel_modules.reporting.models``).

Responsibility
--------------
Frozen dataclass value objects for report outputs: trial balance, income
statement, balance sheet, cash flow, tax summary, aged receivables and
budget variance, plus the budget DTOs.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O. Built by
``statements.py`` and returned by ``ReportingService`` / ``BudgetService``.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal`` -- NEVER ``float``.

Audit relevance
---------------
* ``ReportMetadata`` carries the generation timestamp (from the injected
  clock) and the parameters, so a report can be reproduced.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from hotel_engines.aging import AgingReport


class ReportType(str, Enum):
    """Types of financial reports."""

    TRIAL_BALANCE = "trial_balance"
    INCOME_STATEMENT = "income_statement"
    BALANCE_SHEET = "balance_sheet"
    CASH_FLOW = "cash_flow"
    TAX_SUMMARY = "tax_summary"
    AGED_RECEIVABLES = "aged_receivables"
    BUDGET_VARIANCE = "budget_variance"


class BudgetStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    CLOSED = "closed"


@dataclass(frozen=True)
class ReportMetadata:
    """Metadata attached to every report."""

    report_type: ReportType
    hotel_id: str
    currency: str
    as_of_date: date
    generated_at: str  # ISO timestamp from the injected clock
    period_start: date | None = None
    period_end: date | None = None


# =========================================================================
# Trial Balance
# =========================================================================


@dataclass(frozen=True)
class TrialBalanceLine:
    """
    One account in the trial balance.

    ``debit_balance`` / ``credit_balance`` hold the net balance on the side
    it falls; the other side is zero.
    """

    account_id: UUID
    account_code: str
    account_name: str
    account_kind: str
    debit_balance: Decimal
    credit_balance: Decimal
    net_balance: Decimal  # normal-side adjusted


@dataclass(frozen=True)
class TrialBalanceReport:
    metadata: ReportMetadata
    lines: tuple[TrialBalanceLine, ...]
    total_debits: Decimal
    total_credits: Decimal
    is_balanced: bool


# =========================================================================
# Income Statement
# =========================================================================


@dataclass(frozen=True)
class StatementLine:
    """An account's contribution to a statement section."""

    account_id: UUID
    account_code: str
    account_name: str
    sub_type: str | None
    amount: Decimal


@dataclass(frozen=True)
class StatementSection:
    """A group of statement lines with a total."""

    name: str
    lines: tuple[StatementLine, ...]
    total: Decimal


@dataclass(frozen=True)
class IncomeStatement:
    """
    Profit and loss for a period.

    Revenue amounts are credits - debits; expense and COGS amounts are
    debits - credits. ``revenue_by_sub_type`` / ``expenses_by_sub_type`` are
    the roll-ups (room, food_beverage, ... / operating, staff, ...).
    """

    metadata: ReportMetadata
    revenue: StatementSection
    cost_of_goods_sold: StatementSection
    expenses: StatementSection
    revenue_by_sub_type: dict[str, Decimal]
    expenses_by_sub_type: dict[str, Decimal]
    total_revenue: Decimal
    total_expenses: Decimal  # COGS + operating expenses
    gross_profit: Decimal
    net_income: Decimal


# =========================================================================
# Balance Sheet
# =========================================================================


@dataclass(frozen=True)
class BalanceSheet:
    """
    Classified balance sheet at ``as_of``.

    ``current_earnings`` is the net income of all revenue and expense
    accounts not yet closed to retained earnings; it is included in
    ``total_equity`` so the equation holds without a closing entry.
    """

    metadata: ReportMetadata
    current_assets: StatementSection
    non_current_assets: StatementSection
    current_liabilities: StatementSection
    non_current_liabilities: StatementSection
    equity: StatementSection
    current_earnings: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal
    total_liabilities_and_equity: Decimal
    is_balanced: bool


# =========================================================================
# Cash Flow
# =========================================================================


class CashFlowActivity(str, Enum):
    OPERATING = "operating"
    INVESTING = "investing"
    FINANCING = "financing"


@dataclass(frozen=True)
class CashFlowLine:
    """Cash movement attributed to one counter-account."""

    activity: CashFlowActivity
    account_id: UUID
    account_code: str
    account_name: str
    amount: Decimal  # positive = inflow


@dataclass(frozen=True)
class CashFlowReport:
    metadata: ReportMetadata
    beginning_cash: Decimal
    operating: tuple[CashFlowLine, ...]
    investing: tuple[CashFlowLine, ...]
    financing: tuple[CashFlowLine, ...]
    net_operating: Decimal
    net_investing: Decimal
    net_financing: Decimal
    net_change: Decimal
    ending_cash: Decimal

    @property
    def reconciles(self) -> bool:
        return self.beginning_cash + self.net_change == self.ending_cash


# =========================================================================
# Tax Summary
# =========================================================================


@dataclass(frozen=True)
class TaxAccountSummary:
    account_id: UUID
    account_code: str
    account_name: str
    collected: Decimal  # credits in the period
    paid: Decimal  # debits in the period
    balance: Decimal  # collected - paid


@dataclass(frozen=True)
class TaxSummaryReport:
    metadata: ReportMetadata
    accounts: tuple[TaxAccountSummary, ...]
    total_collected: Decimal
    total_paid: Decimal
    net_liability: Decimal


# =========================================================================
# Aged Receivables
# =========================================================================


@dataclass(frozen=True)
class AgedReceivablesReport:
    """
    Open receivables bucketed by days past due.

    ``aging`` is the engine report; ``bucket_totals`` maps bucket name to
    the summed outstanding amount.
    """

    metadata: ReportMetadata
    aging: AgingReport
    bucket_totals: dict[str, Decimal]
    total_outstanding: Decimal
    total_overdue: Decimal


# =========================================================================
# Budgets
# =========================================================================


@dataclass(frozen=True)
class BudgetItem:
    id: UUID
    account_id: UUID
    period_start: date
    period_end: date
    budgeted_amount: Decimal
    actual_amount: Decimal
    variance: Decimal
    variance_pct: Decimal | None


@dataclass(frozen=True)
class Budget:
    id: UUID
    hotel_id: str
    name: str
    fiscal_year: int
    period_start: date
    period_end: date
    currency: str
    status: BudgetStatus
    items: tuple[BudgetItem, ...] = ()

    @property
    def total_budgeted(self) -> Decimal:
        return sum((i.budgeted_amount for i in self.items), Decimal("0"))

    @property
    def total_actual(self) -> Decimal:
        return sum((i.actual_amount for i in self.items), Decimal("0"))


@dataclass(frozen=True)
class BudgetVarianceLine:
    """actual - budget per account; ``variance_pct`` is None when budget is 0."""

    account_id: UUID
    account_code: str
    account_name: str
    budgeted: Decimal
    actual: Decimal
    variance: Decimal
    variance_pct: Decimal | None
    is_favorable: bool


@dataclass(frozen=True)
class BudgetVarianceReport:
    metadata: ReportMetadata
    budget_id: UUID
    budget_name: str
    lines: tuple[BudgetVarianceLine, ...]
    total_budgeted: Decimal
    total_actual: Decimal
    total_variance: Decimal
