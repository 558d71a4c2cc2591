"""
JournalService -- draft, post, reverse and void journal entries.

Responsibility:
    Owns the journal entry lifecycle DRAFT -> POSTED -> REVERSED (and
    DRAFT -> VOIDED) and the posting protocol that writes the ledger.

Architecture position:
    Kernel > Services. The single entry point through which invoices,
    payments and settlements reach the ledger.

Invariants enforced:
    - At least two lines; exactly one non-zero, non-negative side per line;
      one currency per entry.
    - |sum(debits) - sum(credits)| <= 1e-4 at posting (and at draft
      creation unless require_balanced=False).
    - Posting is one unit of work: number assignment, ledger append, cache
      update and the status flip run inside a SAVEPOINT, so a failure leaves
      no partial state even if the caller continues the transaction.
    - Accounts touched by a posting are locked in ascending id order.
    - Entry numbers "JE-{year}-{seq:06d}" come from a per (hotel, year)
      counter; a unique-index collision is retried up to
      MAX_NUMBER_ATTEMPTS times, then RaceError.
    - An entry can be reversed once; the reversal is itself posted with
      kind=REVERSING and reversal_of_id set.

Failure modes:
    - InvalidJournalLinesError, UnbalancedEntryError (Validation/Precision).
    - AlreadyPostedError, EntryNotPostedError, EntryAlreadyReversedError
      (State).
    - RaceError when number allocation keeps colliding.

Audit relevance:
    Unbalanced posting attempts are logged at ERROR for manual
    reconciliation; every post and reversal is logged with its number.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from hotel_kernel.db.types import validate_currency
from hotel_kernel.domain.values import TOLERANCE, Money, to_decimal
from hotel_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AlreadyPostedError,
    CurrencyMismatchError,
    EntryAlreadyReversedError,
    EntryNotPostedError,
    InvalidJournalLinesError,
    InvalidStatusTransitionError,
    JournalEntryNotFoundError,
    RaceError,
    UnbalancedEntryError,
    ValidationError,
)
from hotel_kernel.logging_config import LogContext, get_logger
from hotel_kernel.models.account import Account
from hotel_kernel.models.journal import (
    JournalEntry,
    JournalEntryKind,
    JournalEntryStatus,
    JournalLine,
)
from hotel_kernel.services.base import BaseService
from hotel_kernel.services.exchange_rate_service import ExchangeRateService
from hotel_kernel.services.ledger_service import LedgerService
from hotel_kernel.services.sequence_service import (
    SequenceService,
    document_sequence_name,
)

logger = get_logger("services.journal")

MAX_NUMBER_ATTEMPTS = 3
_ZERO = Decimal("0")


@dataclass(frozen=True)
class JournalLineInput:
    """
    One requested journal line.

    debit/credit accept Money, Decimal, int or str; Money must be in the
    entry currency.
    """

    account_id: UUID
    debit: Any = _ZERO
    credit: Any = _ZERO
    description: str | None = None

    @classmethod
    def dr(cls, account_id: UUID, amount: Any, description: str | None = None) -> "JournalLineInput":
        return cls(account_id=account_id, debit=amount, description=description)

    @classmethod
    def cr(cls, account_id: UUID, amount: Any, description: str | None = None) -> "JournalLineInput":
        return cls(account_id=account_id, credit=amount, description=description)


@dataclass(frozen=True)
class PostingResult:
    entry: JournalEntry
    ledger_record_count: int


def entry_number(year: int, seq: int) -> str:
    return f"JE-{year}-{seq:06d}"


def _line_amount(value: Any, currency: str, field: str) -> Decimal:
    if isinstance(value, Money):
        if value.currency != currency:
            raise CurrencyMismatchError(currency, value.currency)
        return value.amount
    return to_decimal(value, field=field)


class JournalService(BaseService[JournalEntry]):

    def __init__(self, session, clock=None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)
        self._ledger = LedgerService(session, self.clock)
        self._rates = ExchangeRateService(session, self.clock)

    # -- reads -------------------------------------------------------------

    def get(self, entry_id: UUID) -> JournalEntry:
        entry = self.session.get(JournalEntry, entry_id)
        if entry is None:
            raise JournalEntryNotFoundError(str(entry_id))
        return entry

    def find_by_ref(self, ref_kind: str, ref_id: str) -> list[JournalEntry]:
        return list(
            self.session.execute(
                select(JournalEntry)
                .where(JournalEntry.ref_kind == ref_kind, JournalEntry.ref_id == str(ref_id))
                .order_by(JournalEntry.entry_date, JournalEntry.created_at)
            ).scalars()
        )

    def list_entries(
        self,
        hotel_id: str,
        status: JournalEntryStatus | str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> list[JournalEntry]:
        query = select(JournalEntry).where(JournalEntry.hotel_id == hotel_id)
        if status is not None:
            query = query.where(JournalEntry.status == JournalEntryStatus(status).value)
        if start is not None:
            query = query.where(JournalEntry.entry_date >= start)
        if end is not None:
            query = query.where(JournalEntry.entry_date <= end)
        return list(
            self.session.execute(query.order_by(JournalEntry.entry_date, JournalEntry.seq)).scalars()
        )

    # -- drafting ----------------------------------------------------------

    def create_draft(
        self,
        hotel_id: str,
        entry_date: date,
        description: str,
        lines: Sequence[JournalLineInput],
        actor_id: str,
        currency: str,
        kind: JournalEntryKind | str = JournalEntryKind.MANUAL,
        ref_kind: str | None = None,
        ref_id: str | None = None,
        require_balanced: bool = True,
        allow_inactive: bool = False,
    ) -> JournalEntry:
        """
        Validate and persist a DRAFT entry.

        With ``require_balanced=False`` an unbalanced draft may be stored for
        later correction; post() always re-checks balance. ``allow_inactive``
        admits deactivated accounts and is reserved for reversals.
        """
        if not hotel_id:
            raise ValidationError("hotel_id is required", field="hotel_id")
        if not description or not description.strip():
            raise ValidationError("Journal entry description is required", field="description")
        currency = validate_currency(currency)
        kind = JournalEntryKind(kind)

        if len(lines) < 2:
            raise InvalidJournalLinesError("a journal entry needs at least two lines")

        rows: list[JournalLine] = []
        total_debit = _ZERO
        total_credit = _ZERO
        for index, spec in enumerate(lines):
            debit = _line_amount(spec.debit, currency, "debit")
            credit = _line_amount(spec.credit, currency, "credit")
            if debit < 0 or credit < 0:
                raise InvalidJournalLinesError(f"line {index} has a negative amount")
            if (debit == 0) == (credit == 0):
                raise InvalidJournalLinesError(
                    f"line {index} must have exactly one of debit or credit non-zero"
                )
            account = self.session.get(Account, spec.account_id)
            if account is None or account.hotel_id != hotel_id:
                raise AccountNotFoundError(str(spec.account_id))
            if not account.is_active and not allow_inactive:
                raise AccountInactiveError(account.code)
            rows.append(
                JournalLine(
                    line_index=index,
                    account_id=account.id,
                    description=spec.description,
                    debit=debit,
                    credit=credit,
                )
            )
            total_debit += debit
            total_credit += credit

        if require_balanced and abs(total_debit - total_credit) > TOLERANCE:
            raise UnbalancedEntryError(total_debit, total_credit, currency)

        entry = JournalEntry(
            hotel_id=hotel_id,
            entry_date=entry_date,
            kind=kind.value,
            description=description.strip(),
            ref_kind=ref_kind,
            ref_id=str(ref_id) if ref_id is not None else None,
            status=JournalEntryStatus.DRAFT.value,
            currency=currency,
            total_debit=total_debit,
            total_credit=total_credit,
            fiscal_year=entry_date.year,
            fiscal_period=entry_date.month,
            created_by_id=actor_id,
            lines=rows,
        )
        self.session.add(entry)
        self.session.flush()
        logger.debug(
            "journal_entry_drafted",
            extra={
                "entry_id": str(entry.id),
                "hotel_id": hotel_id,
                "line_count": len(rows),
                "total_debit": total_debit,
                "total_credit": total_credit,
            },
        )
        return entry

    def void_draft(self, entry_id: UUID, actor_id: str) -> JournalEntry:
        entry = self._lock_entry(entry_id)
        if not entry.is_draft:
            raise InvalidStatusTransitionError(
                "JournalEntry", str(entry.id), entry.status, JournalEntryStatus.VOIDED.value
            )
        entry.status = JournalEntryStatus.VOIDED.value
        entry.updated_by_id = actor_id
        self.session.flush()
        logger.info("journal_entry_voided", extra={"entry_id": str(entry.id)})
        return entry

    # -- posting -----------------------------------------------------------

    def _lock_entry(self, entry_id: UUID) -> JournalEntry:
        entry = self.session.execute(
            select(JournalEntry)
            .where(JournalEntry.id == entry_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entry is None:
            raise JournalEntryNotFoundError(str(entry_id))
        return entry

    def _lock_accounts(self, account_ids: set[UUID]) -> dict[UUID, Account]:
        """Lock accounts in ascending id order so concurrent posts cannot deadlock."""
        ordered = sorted(account_ids, key=str)
        accounts = self.session.execute(
            select(Account)
            .where(Account.id.in_(ordered))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {a.id: a for a in accounts}

    def _assign_number(self, entry: JournalEntry) -> None:
        name = document_sequence_name("journal_entry", entry.hotel_id, entry.entry_date.year)
        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            seq = self._sequences.next_value(name)
            savepoint = self.session.begin_nested()
            try:
                entry.seq = seq
                entry.number = entry_number(entry.entry_date.year, seq)
                self.session.flush()
                savepoint.commit()
                return
            except IntegrityError:
                savepoint.rollback()
                logger.warning(
                    "journal_number_collision_retry",
                    extra={"entry_id": str(entry.id), "attempt": attempt, "seq": seq},
                )
        raise RaceError("journal.post", MAX_NUMBER_ATTEMPTS)

    def _rates_for(self, entry: JournalEntry, accounts: dict[UUID, Account]) -> dict[str, Decimal]:
        rates: dict[str, Decimal] = {}
        for account in accounts.values():
            if account.currency not in rates:
                rates[account.currency] = self._rates.get_rate(
                    entry.currency, account.currency, entry.entry_date
                )
        return rates

    def post(self, entry_id: UUID, actor_id: str, allow_inactive: bool = False) -> PostingResult:
        """
        Promote a DRAFT entry to POSTED and write its ledger records.

        Postconditions:
            entry.status == POSTED, entry.number assigned, one ledger record
            per line, account caches updated. Nothing is written when an
            exception propagates.
        """
        entry = self._lock_entry(entry_id)
        with LogContext.bind(entry_id=str(entry.id), hotel_id=entry.hotel_id):
            if not entry.is_draft:
                raise AlreadyPostedError(str(entry.id), entry.status)
            lines = list(entry.lines)
            if len(lines) < 2:
                raise InvalidJournalLinesError("a journal entry needs at least two lines")

            total_debit = sum((line.debit for line in lines), _ZERO)
            total_credit = sum((line.credit for line in lines), _ZERO)
            if abs(total_debit - total_credit) > TOLERANCE:
                logger.error(
                    "journal_entry_unbalanced",
                    extra={
                        "total_debit": total_debit,
                        "total_credit": total_credit,
                        "currency": entry.currency,
                    },
                )
                raise UnbalancedEntryError(total_debit, total_credit, entry.currency)

            with self.session.begin_nested():
                accounts = self._lock_accounts({line.account_id for line in lines})
                for line in lines:
                    account = accounts.get(line.account_id)
                    if account is None:
                        raise AccountNotFoundError(str(line.account_id))
                    if not account.is_active and not allow_inactive:
                        raise AccountInactiveError(account.code)
                rates = self._rates_for(entry, accounts)

                self._assign_number(entry)
                records = self._ledger.append_entry(entry, accounts, rates)

                entry.status = JournalEntryStatus.POSTED.value
                entry.posted_at = self.clock.now()
                entry.posted_by_id = actor_id
                entry.total_debit = total_debit
                entry.total_credit = total_credit
                self.session.flush()

            logger.info(
                "journal_entry_posted",
                extra={
                    "entry_number": entry.number,
                    "ledger_record_count": len(records),
                    "total_debit": total_debit,
                    "kind": entry.kind,
                    "ref_kind": entry.ref_kind,
                    "ref_id": entry.ref_id,
                },
            )
            return PostingResult(entry=entry, ledger_record_count=len(records))

    def create_and_post(
        self,
        hotel_id: str,
        entry_date: date,
        description: str,
        lines: Sequence[JournalLineInput],
        actor_id: str,
        currency: str,
        kind: JournalEntryKind | str = JournalEntryKind.AUTOMATIC,
        ref_kind: str | None = None,
        ref_id: str | None = None,
    ) -> JournalEntry:
        """Draft and post in one call; used by the business modules."""
        entry = self.create_draft(
            hotel_id=hotel_id,
            entry_date=entry_date,
            description=description,
            lines=lines,
            actor_id=actor_id,
            currency=currency,
            kind=kind,
            ref_kind=ref_kind,
            ref_id=ref_id,
        )
        return self.post(entry.id, actor_id).entry

    # -- reversal ----------------------------------------------------------

    def reverse(
        self,
        entry_id: UUID,
        reason: str,
        actor_id: str,
        reversal_date: date | None = None,
    ) -> JournalEntry:
        """
        Post a compensating entry and flag the original REVERSED.

        The reversal is dated ``reversal_date`` or, by default, the later of
        the original date and today.
        """
        if not reason or not reason.strip():
            raise ValidationError("A reversal reason is required", field="reason")

        original = self._lock_entry(entry_id)
        with LogContext.bind(entry_id=str(original.id), hotel_id=original.hotel_id):
            if original.status == JournalEntryStatus.REVERSED.value or original.reversed_by_id:
                raise EntryAlreadyReversedError(str(original.id), original.reversed_by_id)
            if not original.is_posted:
                raise EntryNotPostedError(str(original.id), original.status)

            when = reversal_date or max(original.entry_date, self.clock.today())
            swapped = [
                JournalLineInput(
                    account_id=line.account_id,
                    debit=line.credit,
                    credit=line.debit,
                    description=line.description,
                )
                for line in original.lines
            ]

            with self.session.begin_nested():
                reversal = self.create_draft(
                    hotel_id=original.hotel_id,
                    entry_date=when,
                    description=f"Reversal of {original.number}: {reason.strip()}",
                    lines=swapped,
                    actor_id=actor_id,
                    currency=original.currency,
                    kind=JournalEntryKind.REVERSING,
                    ref_kind=original.ref_kind,
                    ref_id=original.ref_id,
                    allow_inactive=True,
                )
                reversal.reversal_of_id = original.id
                reversal.reversal_reason = reason.strip()
                self.session.flush()
                self.post(reversal.id, actor_id, allow_inactive=True)

                original.status = JournalEntryStatus.REVERSED.value
                original.reversed_by_id = reversal.id
                original.updated_by_id = actor_id
                self.session.flush()

            logger.info(
                "journal_entry_reversed",
                extra={
                    "entry_number": original.number,
                    "reversal_id": str(reversal.id),
                    "reversal_number": reversal.number,
                    "reason": reason.strip(),
                },
            )
            return reversal
