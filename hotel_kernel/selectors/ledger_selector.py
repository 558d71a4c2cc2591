"""
Module: hotel_kernel.selectors.ledger_selector
Responsibility: Authoritative balance computation over posted ledger records.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every total is computed from LedgerRecord rows, never from
      Account.current_balance.
    - Amounts are stored as decimal strings, so aggregation happens in
      Python on Decimal values; rows are read in pages of PAGE_SIZE and an
      optional CancellationToken is checked at every page boundary.
    - Debit/credit totals are expressed in the account currency
      (base_currency_amount), so the trial balance is consistent even when
      a line was booked in a foreign currency.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterator
from uuid import UUID

from sqlalchemy import and_, or_, select

from hotel_kernel.domain.cancellation import CancellationToken
from hotel_kernel.models.account import Account, balance_sign
from hotel_kernel.models.ledger import LedgerRecord
from hotel_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerLine:
    """A single posted record, as seen by readers."""

    record_id: UUID
    journal_entry_id: UUID
    line_index: int
    account_id: UUID
    entry_date: date
    sequence: int
    debit: Decimal
    credit: Decimal
    currency: str
    base_currency_amount: Decimal
    running_balance: Decimal


@dataclass(frozen=True)
class AccountTotals:
    """Debit and credit totals for one account, in its own currency."""

    account_id: UUID
    debit_total: Decimal
    credit_total: Decimal
    record_count: int

    @property
    def net(self) -> Decimal:
        """debits - credits."""
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: UUID
    account_code: str
    account_name: str
    kind: str
    normal_side: str
    currency: str
    debit_total: Decimal
    credit_total: Decimal

    @property
    def net(self) -> Decimal:
        return self.debit_total - self.credit_total


class LedgerSelector(BaseSelector[LedgerRecord]):
    """
    Selector for ledger queries.

    Non-goals:
        - No currency conversion beyond what was fixed at posting time.
    """

    def _iter_records(
        self,
        hotel_id: str | None = None,
        account_id: UUID | None = None,
        start: date | None = None,
        end: date | None = None,
        token: CancellationToken | None = None,
    ) -> Iterator[LedgerRecord]:
        query = select(LedgerRecord)
        if hotel_id is not None:
            query = query.where(LedgerRecord.hotel_id == hotel_id)
        if account_id is not None:
            query = query.where(LedgerRecord.account_id == account_id)
        if start is not None:
            query = query.where(LedgerRecord.entry_date >= start)
        if end is not None:
            query = query.where(LedgerRecord.entry_date <= end)
        query = query.order_by(LedgerRecord.entry_date, LedgerRecord.sequence)

        offset = 0
        while True:
            if token is not None:
                token.raise_if_cancelled("ledger_read")
            page = self.session.execute(
                query.limit(self.PAGE_SIZE).offset(offset)
            ).scalars().all()
            yield from page
            if len(page) < self.PAGE_SIZE:
                return
            offset += self.PAGE_SIZE

    def records(
        self,
        hotel_id: str | None = None,
        account_id: UUID | None = None,
        start: date | None = None,
        end: date | None = None,
        token: CancellationToken | None = None,
    ) -> list[LedgerLine]:
        """Posted records ordered by (entry_date, sequence)."""
        return [
            LedgerLine(
                record_id=r.id,
                journal_entry_id=r.journal_entry_id,
                line_index=r.line_index,
                account_id=r.account_id,
                entry_date=r.entry_date,
                sequence=r.sequence,
                debit=r.debit,
                credit=r.credit,
                currency=r.currency,
                base_currency_amount=r.base_currency_amount,
                running_balance=r.running_balance,
            )
            for r in self._iter_records(hotel_id, account_id, start, end, token)
        ]

    def records_for_entry(self, journal_entry_id: UUID) -> list[LedgerRecord]:
        return list(
            self.session.execute(
                select(LedgerRecord)
                .where(LedgerRecord.journal_entry_id == journal_entry_id)
                .order_by(LedgerRecord.line_index)
            ).scalars()
        )

    def count_for_entry(self, journal_entry_id: UUID) -> int:
        return len(self.records_for_entry(journal_entry_id))

    def previous_record(
        self, account_id: UUID, entry_date: date, sequence: int
    ) -> LedgerRecord | None:
        """Last record of the account strictly before (entry_date, sequence)."""
        return self.session.execute(
            select(LedgerRecord)
            .where(
                LedgerRecord.account_id == account_id,
                or_(
                    LedgerRecord.entry_date < entry_date,
                    and_(
                        LedgerRecord.entry_date == entry_date,
                        LedgerRecord.sequence < sequence,
                    ),
                ),
            )
            .order_by(LedgerRecord.entry_date.desc(), LedgerRecord.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()

    def tail_after(
        self, account_id: UUID, entry_date: date, sequence: int
    ) -> list[LedgerRecord]:
        """Records of the account ordered after (entry_date, sequence)."""
        return list(
            self.session.execute(
                select(LedgerRecord)
                .where(
                    LedgerRecord.account_id == account_id,
                    or_(
                        LedgerRecord.entry_date > entry_date,
                        and_(
                            LedgerRecord.entry_date == entry_date,
                            LedgerRecord.sequence > sequence,
                        ),
                    ),
                )
                .order_by(LedgerRecord.entry_date, LedgerRecord.sequence)
            ).scalars()
        )

    def account_totals(
        self,
        hotel_id: str,
        start: date | None = None,
        end: date | None = None,
        token: CancellationToken | None = None,
    ) -> dict[UUID, AccountTotals]:
        """Debit/credit totals per account over [start, end]."""
        debits: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
        credits: dict[UUID, Decimal] = defaultdict(lambda: _ZERO)
        counts: dict[UUID, int] = defaultdict(int)
        for r in self._iter_records(hotel_id=hotel_id, start=start, end=end, token=token):
            amount = r.base_currency_amount
            if amount >= 0:
                debits[r.account_id] += amount
            else:
                credits[r.account_id] += -amount
            counts[r.account_id] += 1
        return {
            account_id: AccountTotals(
                account_id=account_id,
                debit_total=debits[account_id],
                credit_total=credits[account_id],
                record_count=counts[account_id],
            )
            for account_id in counts
        }

    def trial_balance(
        self,
        hotel_id: str,
        as_of: date | None = None,
        token: CancellationToken | None = None,
    ) -> list[TrialBalanceRow]:
        """
        One row per account with postings on or before ``as_of``.

        Postconditions:
            sum(debit_total) == sum(credit_total) for a balanced ledger.
        """
        totals = self.account_totals(hotel_id, end=as_of, token=token)
        if not totals:
            return []
        accounts = self.session.execute(
            select(Account).where(Account.id.in_(list(totals)))
        ).scalars().all()
        rows = [
            TrialBalanceRow(
                account_id=a.id,
                account_code=a.code,
                account_name=a.name,
                kind=str(getattr(a.kind, "value", a.kind)),
                normal_side=str(getattr(a.normal_side, "value", a.normal_side)),
                currency=a.currency,
                debit_total=totals[a.id].debit_total,
                credit_total=totals[a.id].credit_total,
            )
            for a in accounts
        ]
        return sorted(rows, key=lambda row: row.account_code)

    def computed_balance(self, account: Account, as_of: date | None = None) -> Decimal:
        """Normal-side balance of one account from its records."""
        sign = balance_sign(account.normal_side)
        total = _ZERO
        for r in self._iter_records(account_id=account.id, end=as_of):
            total += r.base_currency_amount
        return sign * total

    def computed_balances(self, hotel_id: str) -> dict[UUID, Decimal]:
        """debit - credit per account (unsigned by normal side)."""
        return {
            account_id: t.net
            for account_id, t in self.account_totals(hotel_id).items()
        }
