"""
Reporting module: financial statements, aged receivables and budgets.

Read-only over the ledger; budgets are the only state it owns.
"""

from hotel_modules.reporting.config import AccountClassification, ReportingConfig
from hotel_modules.reporting.models import (
    AgedReceivablesReport,
    BalanceSheet,
    Budget,
    BudgetItem,
    BudgetStatus,
    BudgetVarianceReport,
    CashFlowActivity,
    CashFlowReport,
    IncomeStatement,
    ReportMetadata,
    ReportType,
    TaxSummaryReport,
    TrialBalanceReport,
)
from hotel_modules.reporting.service import BudgetService, ReportingService

__all__ = [
    "AccountClassification",
    "AgedReceivablesReport",
    "BalanceSheet",
    "Budget",
    "BudgetItem",
    "BudgetService",
    "BudgetStatus",
    "BudgetVarianceReport",
    "CashFlowActivity",
    "CashFlowReport",
    "IncomeStatement",
    "ReportMetadata",
    "ReportType",
    "ReportingConfig",
    "ReportingService",
    "TaxSummaryReport",
    "TrialBalanceReport",
]
