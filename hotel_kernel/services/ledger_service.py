"""
LedgerService -- append-only ledger writer.

Responsibility:
    Turn the lines of a journal entry that is being posted into ledger
    records, maintain per-account running balances, and update the cached
    account balances.

Architecture position:
    Kernel > Services. Called only by JournalService.post(); never
    directly by modules.

Invariants enforced:
    - One record per line; sequence from the global "ledger_record" counter.
    - running_balance[n] = running_balance[n-1] + sign(account) * amount,
      ordered by (entry_date, sequence).
    - A back-dated record re-projects the running balance of every later
      record of the same account within the same transaction; this is the
      only path that updates an existing ledger row.
    - Callers hold row locks on every affected account before calling.

Audit relevance:
    Records are immutable (db/immutability.py). The cache update here is the
    only routine write to Account.current_balance.
"""

from decimal import ROUND_HALF_EVEN, Decimal
from uuid import UUID

from hotel_kernel.db.types import MONEY_DECIMAL_PLACES
from hotel_kernel.logging_config import get_logger
from hotel_kernel.models.account import Account
from hotel_kernel.models.journal import JournalEntry
from hotel_kernel.models.ledger import LEDGER_STATUS_POSTED, LedgerRecord
from hotel_kernel.selectors.ledger_selector import LedgerSelector
from hotel_kernel.services.base import BaseService
from hotel_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")

_MONEY_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


class LedgerService(BaseService[LedgerRecord]):

    def __init__(self, session, clock=None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)
        self._selector = LedgerSelector(session)

    def append_entry(
        self,
        entry: JournalEntry,
        accounts: dict[UUID, Account],
        rates: dict[str, Decimal],
    ) -> list[LedgerRecord]:
        """
        Append one record per line of ``entry``.

        Args:
            entry: Entry being posted (status still DRAFT).
            accounts: Locked accounts keyed by id.
            rates: Entry-currency -> account-currency rates keyed by the
                account currency (1 when they match).
        """
        records: list[LedgerRecord] = []
        for line in entry.lines:
            account = accounts[line.account_id]
            rate = rates.get(account.currency, Decimal("1"))
            base_amount = ((line.debit - line.credit) * rate).quantize(
                _MONEY_QUANTUM, rounding=ROUND_HALF_EVEN
            )
            sequence = self._sequences.next_value(SequenceService.LEDGER_RECORD)

            previous = self._selector.previous_record(account.id, entry.entry_date, sequence)
            opening = previous.running_balance if previous is not None else Decimal("0")
            running = opening + account.sign * base_amount

            record = LedgerRecord(
                journal_entry_id=entry.id,
                line_index=line.line_index,
                account_id=account.id,
                hotel_id=entry.hotel_id,
                entry_date=entry.entry_date,
                sequence=sequence,
                debit=line.debit,
                credit=line.credit,
                currency=entry.currency,
                fiscal_year=entry.fiscal_year,
                fiscal_period=entry.fiscal_period,
                status=LEDGER_STATUS_POSTED,
                exchange_rate=rate,
                base_currency=account.currency,
                base_currency_amount=base_amount,
                running_balance=running,
            )
            self.session.add(record)
            self.session.flush()

            self._reproject_tail(account, record)

            account.current_balance = account.current_balance + account.sign * base_amount
            records.append(record)

        self.session.flush()
        return records

    def _reproject_tail(self, account: Account, record: LedgerRecord) -> None:
        """Recompute running balances of records ordered after ``record``."""
        tail = self._selector.tail_after(account.id, record.entry_date, record.sequence)
        if not tail:
            return
        running = record.running_balance
        for later in tail:
            running = running + account.sign * later.base_currency_amount
            later.running_balance = running
        logger.info(
            "ledger_tail_reprojected",
            extra={
                "account_id": str(account.id),
                "entry_date": record.entry_date,
                "records_updated": len(tail),
            },
        )
