"""
Pure financial statement transformation functions.

These functions turn ledger totals and account metadata into structured
reports. ZERO I/O. ZERO side effects.

- No database access
- No clock access
- Deterministic: same inputs always produce same outputs

All monetary values are Decimal. All inputs/outputs are frozen dataclasses.
"""

from __future__ import annotations

import dataclasses
from collections import defaultdict
from decimal import Decimal
from typing import Iterable, Mapping, Sequence
from uuid import UUID

from hotel_kernel.models.account import AccountKind, NormalSide
from hotel_kernel.selectors.ledger_selector import (
    AccountTotals,
    LedgerLine,
    TrialBalanceRow,
)
from hotel_modules.reporting.config import ReportingConfig
from hotel_modules.reporting.models import (
    BalanceSheet,
    BudgetItem,
    BudgetVarianceLine,
    CashFlowActivity,
    CashFlowLine,
    CashFlowReport,
    IncomeStatement,
    ReportMetadata,
    StatementLine,
    StatementSection,
    TaxAccountSummary,
    TaxSummaryReport,
    TrialBalanceLine,
    TrialBalanceReport,
)

_ZERO = Decimal("0")
_PCT_PLACES = Decimal("0.0001")

_EXPENSE_KINDS = frozenset({AccountKind.EXPENSE.value, AccountKind.COST_OF_GOODS_SOLD.value})


# =========================================================================
# Bridge type: account metadata for pure functions
# =========================================================================


@dataclasses.dataclass(frozen=True)
class AccountInfo:
    """
    Snapshot of account metadata needed for classification.

    The bridge between the ORM ``Account`` and the pure functions here: the
    service converts accounts to AccountInfo before calling any builder.
    """

    account_id: UUID
    code: str
    name: str
    kind: str
    normal_side: str
    sub_type: str | None = None
    currency: str = "INR"


# =========================================================================
# Helpers
# =========================================================================


def natural_balance(debit_total: Decimal, credit_total: Decimal, normal_side: str) -> Decimal:
    """
    Balance adjusted for the normal side.

    Debit-normal: debits - credits. Credit-normal: credits - debits.
    Positive when the account carries its expected direction.
    """
    if normal_side == NormalSide.DEBIT.value:
        return debit_total - credit_total
    return credit_total - debit_total


def _kind_amount(totals: AccountTotals, acct: AccountInfo) -> Decimal:
    """Revenue: credits - debits. Expense/COGS: debits - credits."""
    if acct.kind == AccountKind.REVENUE.value:
        return totals.credit_total - totals.debit_total
    if acct.kind in _EXPENSE_KINDS:
        return totals.debit_total - totals.credit_total
    return natural_balance(totals.debit_total, totals.credit_total, acct.normal_side)


def _line(acct: AccountInfo, amount: Decimal) -> StatementLine:
    return StatementLine(
        account_id=acct.account_id,
        account_code=acct.code,
        account_name=acct.name,
        sub_type=acct.sub_type,
        amount=amount,
    )


def _section(name: str, lines: list[StatementLine]) -> StatementSection:
    ordered = tuple(sorted(lines, key=lambda x: x.account_code))
    return StatementSection(
        name=name,
        lines=ordered,
        total=sum((line.amount for line in ordered), _ZERO),
    )


def _keep(amount: Decimal, config: ReportingConfig) -> bool:
    return config.include_zero_balances or amount != _ZERO


def compute_net_income(
    totals: Mapping[UUID, AccountTotals],
    accounts: Mapping[UUID, AccountInfo],
) -> Decimal:
    """Sum of revenue amounts minus sum of expense and COGS amounts."""
    revenue = _ZERO
    expense = _ZERO
    for account_id, t in totals.items():
        acct = accounts.get(account_id)
        if acct is None:
            continue
        if acct.kind == AccountKind.REVENUE.value:
            revenue += _kind_amount(t, acct)
        elif acct.kind in _EXPENSE_KINDS:
            expense += _kind_amount(t, acct)
    return revenue - expense


# =========================================================================
# 1. TRIAL BALANCE
# =========================================================================


def build_trial_balance(
    rows: Sequence[TrialBalanceRow],
    config: ReportingConfig,
    metadata: ReportMetadata,
) -> TrialBalanceReport:
    """
    Net each account to one side and total both columns.

    A balanced ledger nets to zero across accounts, so the debit column
    equals the credit column.
    """
    lines: list[TrialBalanceLine] = []
    for row in rows:
        net = row.debit_total - row.credit_total
        if not _keep(net, config):
            continue
        lines.append(
            TrialBalanceLine(
                account_id=row.account_id,
                account_code=row.account_code,
                account_name=row.account_name,
                account_kind=row.kind,
                debit_balance=net if net > 0 else _ZERO,
                credit_balance=-net if net < 0 else _ZERO,
                net_balance=natural_balance(
                    row.debit_total, row.credit_total, row.normal_side,
                ),
            )
        )
    ordered = tuple(sorted(lines, key=lambda x: x.account_code))
    total_debits = sum((line.debit_balance for line in ordered), _ZERO)
    total_credits = sum((line.credit_balance for line in ordered), _ZERO)
    return TrialBalanceReport(
        metadata=metadata,
        lines=ordered,
        total_debits=total_debits,
        total_credits=total_credits,
        is_balanced=abs(total_debits - total_credits) <= config.balance_tolerance,
    )


# =========================================================================
# 2. INCOME STATEMENT
# =========================================================================


def build_income_statement(
    totals: Mapping[UUID, AccountTotals],
    accounts: Mapping[UUID, AccountInfo],
    config: ReportingConfig,
    metadata: ReportMetadata,
) -> IncomeStatement:
    """
    Profit and loss over the period the totals were read for.

    Roll-ups are keyed by sub-type in the configured order; accounts with
    no sub-type roll up under ``"unclassified"``.
    """
    clf = config.classification
    revenue: list[StatementLine] = []
    cogs: list[StatementLine] = []
    expenses: list[StatementLine] = []

    for account_id, t in totals.items():
        acct = accounts.get(account_id)
        if acct is None:
            continue
        amount = _kind_amount(t, acct)
        if not _keep(amount, config):
            continue
        if acct.kind == AccountKind.REVENUE.value:
            revenue.append(_line(acct, amount))
        elif acct.kind == AccountKind.COST_OF_GOODS_SOLD.value:
            cogs.append(_line(acct, amount))
        elif acct.kind == AccountKind.EXPENSE.value:
            expenses.append(_line(acct, amount))

    revenue_section = _section("Revenue", revenue)
    cogs_section = _section("Cost of Goods Sold", cogs)
    expense_section = _section("Expenses", expenses)

    revenue_by_sub_type = _roll_up(revenue, clf.revenue_sub_types)
    expenses_by_sub_type = _roll_up(cogs + expenses, clf.expense_sub_types)

    total_revenue = revenue_section.total
    total_expenses = cogs_section.total + expense_section.total
    return IncomeStatement(
        metadata=metadata,
        revenue=revenue_section,
        cost_of_goods_sold=cogs_section,
        expenses=expense_section,
        revenue_by_sub_type=revenue_by_sub_type,
        expenses_by_sub_type=expenses_by_sub_type,
        total_revenue=total_revenue,
        total_expenses=total_expenses,
        gross_profit=total_revenue - cogs_section.total,
        net_income=total_revenue - total_expenses,
    )


def _roll_up(lines: list[StatementLine], order: Sequence[str]) -> dict[str, Decimal]:
    sums: dict[str, Decimal] = {key: _ZERO for key in order}
    for line in lines:
        key = line.sub_type or "unclassified"
        sums[key] = sums.get(key, _ZERO) + line.amount
    return sums


# =========================================================================
# 3. BALANCE SHEET
# =========================================================================


def build_balance_sheet(
    totals: Mapping[UUID, AccountTotals],
    accounts: Mapping[UUID, AccountInfo],
    config: ReportingConfig,
    metadata: ReportMetadata,
) -> BalanceSheet:
    """
    Classified balance sheet from cumulative totals up to ``as_of``.

    Classification:
    1. Kind selects asset, liability or equity; income accounts feed
       ``current_earnings`` instead.
    2. Sub-type splits current from non-current.
    3. Equity includes current earnings, so A = L + E holds before closing.
    """
    clf = config.classification
    buckets: dict[str, list[StatementLine]] = defaultdict(list)

    for account_id, t in totals.items():
        acct = accounts.get(account_id)
        if acct is None:
            continue
        amount = natural_balance(t.debit_total, t.credit_total, acct.normal_side)
        if acct.kind == AccountKind.ASSET.value:
            key = "non_current_assets" if acct.sub_type in clf.non_current_asset_sub_types else "current_assets"
        elif acct.kind == AccountKind.LIABILITY.value:
            key = (
                "non_current_liabilities"
                if acct.sub_type in clf.non_current_liability_sub_types
                else "current_liabilities"
            )
        elif acct.kind == AccountKind.EQUITY.value:
            key = "equity"
        else:
            continue
        if _keep(amount, config):
            buckets[key].append(_line(acct, amount))

    current_assets = _section("Current Assets", buckets["current_assets"])
    non_current_assets = _section("Non-Current Assets", buckets["non_current_assets"])
    current_liabilities = _section("Current Liabilities", buckets["current_liabilities"])
    non_current_liabilities = _section(
        "Non-Current Liabilities", buckets["non_current_liabilities"],
    )
    equity = _section("Equity", buckets["equity"])
    current_earnings = compute_net_income(totals, accounts)

    total_assets = current_assets.total + non_current_assets.total
    total_liabilities = current_liabilities.total + non_current_liabilities.total
    total_equity = equity.total + current_earnings
    total_l_and_e = total_liabilities + total_equity

    return BalanceSheet(
        metadata=metadata,
        current_assets=current_assets,
        non_current_assets=non_current_assets,
        current_liabilities=current_liabilities,
        non_current_liabilities=non_current_liabilities,
        equity=equity,
        current_earnings=current_earnings,
        total_assets=total_assets,
        total_liabilities=total_liabilities,
        total_equity=total_equity,
        total_liabilities_and_equity=total_l_and_e,
        is_balanced=abs(total_assets - total_l_and_e) <= config.balance_tolerance,
    )


# =========================================================================
# 4. CASH FLOW
# =========================================================================


def classify_activity(acct: AccountInfo, config: ReportingConfig) -> CashFlowActivity:
    """
    Activity of a cash movement, judged by its counter-account.

    Fixed assets are investing; long-term debt and equity are financing;
    everything else (income, expense, working capital) is operating.
    """
    clf = config.classification
    if acct.sub_type in clf.investing_sub_types:
        return CashFlowActivity.INVESTING
    if acct.sub_type in clf.financing_sub_types or acct.kind == AccountKind.EQUITY.value:
        return CashFlowActivity.FINANCING
    return CashFlowActivity.OPERATING


def build_cash_flow(
    records: Iterable[LedgerLine],
    accounts: Mapping[UUID, AccountInfo],
    beginning_cash: Decimal,
    ending_cash: Decimal,
    config: ReportingConfig,
    metadata: ReportMetadata,
) -> CashFlowReport:
    """
    Direct-method cash flow from the period's ledger records.

    For each journal entry touching a cash account, every non-cash line
    contributes the negation of its signed amount (a credit to revenue is
    a cash inflow). Transfers between cash accounts net to nothing.
    ``ending_cash`` comes from the ledger, so ``reconciles`` is a real check.
    """
    by_entry: dict[UUID, list[LedgerLine]] = defaultdict(list)
    for record in records:
        by_entry[record.journal_entry_id].append(record)

    movements: dict[tuple[CashFlowActivity, UUID], Decimal] = defaultdict(lambda: _ZERO)
    for lines in by_entry.values():
        infos = [(line, accounts.get(line.account_id)) for line in lines]
        if not any(a is not None and config.classification.is_cash(a.sub_type) for _, a in infos):
            continue
        for line, acct in infos:
            if acct is None or config.classification.is_cash(acct.sub_type):
                continue
            activity = classify_activity(acct, config)
            movements[(activity, acct.account_id)] += -line.base_currency_amount

    sections: dict[CashFlowActivity, list[CashFlowLine]] = defaultdict(list)
    for (activity, account_id), amount in movements.items():
        if amount == _ZERO and not config.include_zero_balances:
            continue
        acct = accounts[account_id]
        sections[activity].append(
            CashFlowLine(
                activity=activity,
                account_id=account_id,
                account_code=acct.code,
                account_name=acct.name,
                amount=amount,
            )
        )

    def _ordered(activity: CashFlowActivity) -> tuple[CashFlowLine, ...]:
        return tuple(sorted(sections[activity], key=lambda x: x.account_code))

    operating = _ordered(CashFlowActivity.OPERATING)
    investing = _ordered(CashFlowActivity.INVESTING)
    financing = _ordered(CashFlowActivity.FINANCING)
    net_operating = sum((x.amount for x in operating), _ZERO)
    net_investing = sum((x.amount for x in investing), _ZERO)
    net_financing = sum((x.amount for x in financing), _ZERO)

    return CashFlowReport(
        metadata=metadata,
        beginning_cash=beginning_cash,
        operating=operating,
        investing=investing,
        financing=financing,
        net_operating=net_operating,
        net_investing=net_investing,
        net_financing=net_financing,
        net_change=net_operating + net_investing + net_financing,
        ending_cash=ending_cash,
    )


# =========================================================================
# 5. TAX SUMMARY
# =========================================================================


def build_tax_summary(
    totals: Mapping[UUID, AccountTotals],
    accounts: Mapping[UUID, AccountInfo],
    config: ReportingConfig,
    metadata: ReportMetadata,
) -> TaxSummaryReport:
    """Collected (credits) and paid (debits) per tax-payable account."""
    rows: list[TaxAccountSummary] = []
    for acct in accounts.values():
        if acct.sub_type not in config.classification.tax_sub_types:
            continue
        t = totals.get(acct.account_id)
        collected = t.credit_total if t else _ZERO
        paid = t.debit_total if t else _ZERO
        if not (config.include_zero_balances or collected or paid):
            continue
        rows.append(
            TaxAccountSummary(
                account_id=acct.account_id,
                account_code=acct.code,
                account_name=acct.name,
                collected=collected,
                paid=paid,
                balance=collected - paid,
            )
        )
    ordered = tuple(sorted(rows, key=lambda x: x.account_code))
    total_collected = sum((r.collected for r in ordered), _ZERO)
    total_paid = sum((r.paid for r in ordered), _ZERO)
    return TaxSummaryReport(
        metadata=metadata,
        accounts=ordered,
        total_collected=total_collected,
        total_paid=total_paid,
        net_liability=total_collected - total_paid,
    )


# =========================================================================
# 6. BUDGET VARIANCE
# =========================================================================


def actual_for(totals: AccountTotals | None, acct: AccountInfo) -> Decimal:
    """Actual activity of an account in its own direction."""
    if totals is None:
        return _ZERO
    return _kind_amount(totals, acct)


def variance_pct(variance: Decimal, budgeted: Decimal) -> Decimal | None:
    """variance / budget to four places; None when nothing was budgeted."""
    if budgeted == _ZERO:
        return None
    return (variance / budgeted).quantize(_PCT_PLACES)


def build_variance_lines(
    items: Sequence[BudgetItem],
    accounts: Mapping[UUID, AccountInfo],
) -> tuple[BudgetVarianceLine, ...]:
    """
    One line per budget item; ``variance = actual - budget``.

    Over-budget revenue is favorable; over-budget expense is not.
    """
    lines = []
    for item in items:
        acct = accounts[item.account_id]
        variance = item.actual_amount - item.budgeted_amount
        favorable = variance >= 0 if acct.kind == AccountKind.REVENUE.value else variance <= 0
        lines.append(
            BudgetVarianceLine(
                account_id=item.account_id,
                account_code=acct.code,
                account_name=acct.name,
                budgeted=item.budgeted_amount,
                actual=item.actual_amount,
                variance=variance,
                variance_pct=variance_pct(variance, item.budgeted_amount),
                is_favorable=favorable,
            )
        )
    return tuple(sorted(lines, key=lambda x: x.account_code))
