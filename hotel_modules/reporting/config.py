"""
Reporting Configuration Schema.

Defines classification rules and report options. Accounts are classified
by their ``sub_type`` from the chart of accounts (cash, receivable,
fixed_asset, room, staff, ...) rather than by code prefix, so a hotel can
renumber its chart without touching the reports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Self

from hotel_kernel.logging_config import get_logger

logger = get_logger("modules.reporting.config")


@dataclass
class AccountClassification:
    """
    Rules for placing accounts into statement sections.

    An account matches a section when its sub_type is in the section's set.
    Accounts without a sub_type fall back to the default section for their
    kind (current for assets and liabilities, operating for expenses).
    """

    # Balance sheet
    non_current_asset_sub_types: tuple[str, ...] = ("fixed_asset",)
    non_current_liability_sub_types: tuple[str, ...] = ("long_term_liability",)

    # Cash flow
    cash_sub_types: tuple[str, ...] = ("cash",)
    investing_sub_types: tuple[str, ...] = ("fixed_asset",)
    financing_sub_types: tuple[str, ...] = ("long_term_liability",)

    # Tax summary
    tax_sub_types: tuple[str, ...] = ("tax_payable",)

    # Income statement roll-up order
    revenue_sub_types: tuple[str, ...] = ("room", "food_beverage", "other_revenue")
    expense_sub_types: tuple[str, ...] = ("cogs", "operating", "staff", "marketing", "admin")

    def is_cash(self, sub_type: str | None) -> bool:
        return sub_type in self.cash_sub_types


@dataclass
class ReportingConfig:
    """
    Configuration schema for financial reports.

        config = ReportingConfig(include_zero_balances=True)
    """

    classification: AccountClassification = field(
        default_factory=AccountClassification,
    )

    # Drop accounts whose balance nets to zero from statements
    include_zero_balances: bool = False

    # Totals compared within this tolerance for the balance checks
    balance_tolerance: Decimal = Decimal("0.0001")

    # Fallback when a report is requested without a currency
    default_currency: str = "INR"

    def __post_init__(self):
        if self.balance_tolerance < 0:
            raise ValueError("balance_tolerance cannot be negative")
        if isinstance(self.classification, dict):
            self.classification = AccountClassification(
                **{k: tuple(v) for k, v in self.classification.items()}
            )
        logger.debug(
            "reporting_config_initialized",
            extra={
                "include_zero_balances": self.include_zero_balances,
                "default_currency": self.default_currency,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "reporting_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
