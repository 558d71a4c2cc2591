"""
Module: hotel_kernel.models.account
Responsibility: ORM persistence for the chart of accounts -- the target of
    every journal line and ledger record.
Architecture position: Kernel > Models. May import from db/ only.

Invariants enforced:
    - (hotel_id, code) is unique.
    - normal_side is determined by kind (normal_side_for()).
    - current_balance is a cached projection of the ledger, expressed in the
      account currency with the account's normal-side sign. It is written
      only by the posting path and by reconciliation repair.

Failure modes:
    - AccountNotFoundError / AccountInactiveError are raised by services, not
      by this model.

Audit relevance:
    Accounts are deactivated, never deleted. Changing kind after postings
    would alter the meaning of history, so AccountService refuses it.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hotel_kernel.db.base import TrackedBase, UUIDString
from hotel_kernel.db.types import DecimalString


class AccountKind(str, Enum):
    """Financial statement class of an account."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"
    COST_OF_GOODS_SOLD = "cost_of_goods_sold"


class NormalSide(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class AccountSubType(str, Enum):
    """Roll-up buckets used by the income statement and cash flow."""

    CURRENT_ASSET = "current_asset"
    CASH = "cash"
    RECEIVABLE = "receivable"
    FIXED_ASSET = "fixed_asset"
    CURRENT_LIABILITY = "current_liability"
    TAX_PAYABLE = "tax_payable"
    LONG_TERM_LIABILITY = "long_term_liability"
    EQUITY = "equity"
    ROOM = "room"
    FOOD_BEVERAGE = "food_beverage"
    OTHER_REVENUE = "other_revenue"
    COGS = "cogs"
    OPERATING = "operating"
    STAFF = "staff"
    MARKETING = "marketing"
    ADMIN = "admin"


_NORMAL_SIDE_BY_KIND = {
    AccountKind.ASSET: NormalSide.DEBIT,
    AccountKind.EXPENSE: NormalSide.DEBIT,
    AccountKind.COST_OF_GOODS_SOLD: NormalSide.DEBIT,
    AccountKind.LIABILITY: NormalSide.CREDIT,
    AccountKind.EQUITY: NormalSide.CREDIT,
    AccountKind.REVENUE: NormalSide.CREDIT,
}


def normal_side_for(kind: AccountKind | str) -> NormalSide:
    return _NORMAL_SIDE_BY_KIND[AccountKind(kind)]


def balance_sign(normal_side: NormalSide | str) -> int:
    """+1 for debit-normal accounts, -1 for credit-normal accounts."""
    return 1 if NormalSide(normal_side) == NormalSide.DEBIT else -1


class Account(TrackedBase):
    """
    Chart of accounts entry for one hotel.

    Guarantees:
        - code is unique within the hotel.
        - kind and normal_side are consistent.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("hotel_id", "code", name="uq_accounts_hotel_code"),
        Index("idx_accounts_hotel_kind", "hotel_id", "kind"),
        Index("idx_accounts_hotel_active", "hotel_id", "is_active"),
    )

    hotel_id: Mapped[str] = mapped_column(String(64), nullable=False)

    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    kind: Mapped[AccountKind] = mapped_column(String(30), nullable=False)

    normal_side: Mapped[NormalSide] = mapped_column(String(10), nullable=False)

    sub_type: Mapped[str | None] = mapped_column(String(30), nullable=True)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Seeded accounts carry is_system=True; they back automatic postings.
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    current_balance: Mapped[Decimal] = mapped_column(
        DecimalString(),
        default=Decimal("0"),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Account {self.hotel_id}/{self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return NormalSide(self.normal_side) == NormalSide.DEBIT

    @property
    def sign(self) -> int:
        return balance_sign(self.normal_side)
