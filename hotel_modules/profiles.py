"""
Account roles (``hotel_modules.profiles``).

Responsibility
--------------
Business documents post against account ROLES, not chart codes. This module
declares the roles, the default role -> code mapping for the seeded hotel
chart, and the small routing tables (payment method -> cash role, charge
category -> revenue role) that decide which role a line hits.

Posting patterns:
    Invoice sent          -- Dr Receivable + Dr Discounts / Cr Revenue + Cr Tax
    Receipt completed     -- Dr Cash|Bank / Cr Receivable  (+ Dr Fees / Cr Cash|Bank)
    Refund completed      -- Dr Receivable / Cr Cash|Bank
    Settlement created    -- Dr Receivable / Cr Room revenue
    Charge adjustment     -- Dr Receivable / Cr Revenue (by category) + Cr Tax
    Credit adjustment     -- Dr Discounts / Cr Receivable
    Settlement write-off  -- Dr Discounts / Cr Receivable
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping


class AccountRole(str, Enum):
    CASH = "cash"
    BANK = "bank"
    RECEIVABLE = "receivable"
    PAYABLE = "payable"
    ROOM_REVENUE = "room_revenue"
    FOOD_BEVERAGE_REVENUE = "food_beverage_revenue"
    OTHER_REVENUE = "other_revenue"
    TAX_PAYABLE = "tax_payable"
    DISCOUNTS = "discounts"
    PAYMENT_FEES = "payment_fees"


DEFAULT_ACCOUNT_MAPPINGS: Mapping[AccountRole, str] = {
    AccountRole.CASH: "1001",
    AccountRole.BANK: "1010",
    AccountRole.RECEIVABLE: "1100",
    AccountRole.PAYABLE: "2000",
    AccountRole.TAX_PAYABLE: "2100",
    AccountRole.ROOM_REVENUE: "4000",
    AccountRole.FOOD_BEVERAGE_REVENUE: "4100",
    AccountRole.OTHER_REVENUE: "4200",
    AccountRole.DISCOUNTS: "6400",
    AccountRole.PAYMENT_FEES: "6500",
}

CASH_METHODS = frozenset({"cash"})

_REVENUE_ROLE_BY_CATEGORY: Mapping[str, AccountRole] = {
    "room_charge": AccountRole.ROOM_REVENUE,
    "food_beverage": AccountRole.FOOD_BEVERAGE_REVENUE,
}


def cash_role_for_method(method: str) -> AccountRole:
    """Cash takes the till; every other method settles through the bank."""
    return AccountRole.CASH if method in CASH_METHODS else AccountRole.BANK


def revenue_role_for_category(category: str | None) -> AccountRole:
    return _REVENUE_ROLE_BY_CATEGORY.get(category or "", AccountRole.OTHER_REVENUE)


def merge_mappings(
    overrides: Mapping[AccountRole | str, str] | None,
) -> dict[AccountRole, str]:
    merged = dict(DEFAULT_ACCOUNT_MAPPINGS)
    for role, code in (overrides or {}).items():
        merged[AccountRole(role)] = str(code)
    return merged
