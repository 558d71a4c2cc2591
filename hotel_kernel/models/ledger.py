"""
Module: hotel_kernel.models.ledger
Responsibility: Append-only ledger records, one per posted journal line.
Architecture position: Kernel > Models.

Invariants enforced:
    - Records are never deleted and never updated, except running_balance,
      which the posting path re-projects when a back-dated entry lands in
      front of existing records (db/immutability.py).
    - For one account, records are totally ordered by (entry_date, sequence);
      running_balance[n] = running_balance[n-1] + sign * base_currency_amount.
    - sequence comes from the global "ledger_record" counter, so insertion
      order is stable across accounts.

Audit relevance:
    The ledger is the authoritative source for every balance and report.
    Account.current_balance is only a cache of it.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from hotel_kernel.db.base import Base, UUIDString
from hotel_kernel.db.types import RATE_DECIMAL_PLACES, DecimalString

LEDGER_STATUS_POSTED = "posted"


class LedgerRecord(Base):
    """
    A single immutable debit or credit on one account.

    ``base_currency_amount`` is the signed (debit - credit) movement expressed
    in the account currency at ``exchange_rate``; ``running_balance`` is the
    account's normal-side balance after this record.
    """

    __tablename__ = "ledger_records"
    __table_args__ = (
        Index("idx_ledger_records_account_date_seq", "account_id", "entry_date", "sequence"),
        Index("idx_ledger_records_hotel_period", "hotel_id", "fiscal_year", "fiscal_period"),
        UniqueConstraint("journal_entry_id", "line_index", name="uq_ledger_records_entry_line"),
        UniqueConstraint("sequence", name="uq_ledger_records_sequence"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    line_index: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    hotel_id: Mapped[str] = mapped_column(String(64), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    debit: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    credit: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    fiscal_period: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(
        String(10),
        default=LEDGER_STATUS_POSTED,
        nullable=False,
    )

    exchange_rate: Mapped[Decimal] = mapped_column(
        DecimalString(RATE_DECIMAL_PLACES),
        default=Decimal("1"),
        nullable=False,
    )

    base_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    base_currency_amount: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    running_balance: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerRecord #{self.sequence} {self.entry_date} "
            f"Dr {self.debit} Cr {self.credit} bal {self.running_balance}>"
        )

    @property
    def net(self) -> Decimal:
        """debit - credit in the line currency."""
        return self.debit - self.credit
