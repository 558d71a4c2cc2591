"""
ModulePoster (``hotel_modules.posting``).

Responsibility
--------------
Turn role-based posting lines from a business document into a posted
journal entry: resolve each role to the hotel's account, drop zero lines,
merge lines that hit the same account on the same side, and hand the
result to ``JournalService.create_and_post``.

Architecture position
---------------------
**Modules layer** -- shared by billing and settlement. Runs inside the
caller's transaction; never commits.

Failure modes
-------------
* ``AccountNotFoundError`` when a role maps to a code the hotel lacks.
* Kernel posting errors propagate unchanged.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from hotel_kernel.domain.clock import Clock
from hotel_kernel.domain.values import TOLERANCE
from hotel_kernel.logging_config import get_logger
from hotel_kernel.models.journal import JournalEntry
from hotel_kernel.services.account_service import AccountService
from hotel_kernel.services.journal_service import JournalLineInput, JournalService
from hotel_modules.profiles import AccountRole, merge_mappings

logger = get_logger("modules.posting")


@dataclass(frozen=True)
class RoleLine:
    """A debit (positive side) or credit against an account role or id."""

    role: AccountRole | None
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    description: str | None = None
    account_id: UUID | None = None

    @classmethod
    def dr(cls, role: AccountRole, amount: Decimal, description: str | None = None) -> RoleLine:
        return cls(role=role, debit=amount, description=description)

    @classmethod
    def cr(cls, role: AccountRole, amount: Decimal, description: str | None = None) -> RoleLine:
        return cls(role=role, credit=amount, description=description)

    @classmethod
    def cr_account(cls, account_id: UUID, amount: Decimal, description: str | None = None) -> RoleLine:
        return cls(role=None, credit=amount, description=description, account_id=account_id)


class ModulePoster:

    def __init__(
        self,
        session: Session,
        clock: Clock,
        account_mappings: Mapping[AccountRole | str, str] | None = None,
    ):
        self._accounts = AccountService(session, clock)
        self._journal = JournalService(session, clock)
        self._mappings = merge_mappings(account_mappings)

    @property
    def journal(self) -> JournalService:
        return self._journal

    def account_id_for(self, hotel_id: str, role: AccountRole) -> UUID:
        return self._accounts.get_by_code(hotel_id, self._mappings[role]).id

    def _resolve(self, hotel_id: str, lines: Sequence[RoleLine]) -> list[JournalLineInput]:
        merged: OrderedDict[tuple[UUID, str], tuple[Decimal, str | None]] = OrderedDict()
        for line in lines:
            account_id = line.account_id or self.account_id_for(hotel_id, line.role)
            for side, amount in (("debit", line.debit), ("credit", line.credit)):
                if amount is None or abs(amount) <= TOLERANCE:
                    continue
                if amount < 0:
                    # A negative amount is the same movement on the other side.
                    side = "credit" if side == "debit" else "debit"
                    amount = -amount
                key = (account_id, side)
                prior, description = merged.get(key, (Decimal("0"), line.description))
                merged[key] = (prior + amount, description)
        return [
            JournalLineInput.dr(account_id, amount, description)
            if side == "debit"
            else JournalLineInput.cr(account_id, amount, description)
            for (account_id, side), (amount, description) in merged.items()
        ]

    def post(
        self,
        *,
        hotel_id: str,
        entry_date: date,
        description: str,
        lines: Sequence[RoleLine],
        actor_id: str,
        currency: str,
        ref_kind: str,
        ref_id: str,
    ) -> JournalEntry | None:
        """Post the lines; None when every line nets to zero."""
        inputs = self._resolve(hotel_id, lines)
        if not inputs:
            logger.debug(
                "module_posting_skipped_zero",
                extra={"ref_kind": ref_kind, "ref_id": ref_id},
            )
            return None
        entry = self._journal.create_and_post(
            hotel_id=hotel_id,
            entry_date=entry_date,
            description=description,
            lines=inputs,
            actor_id=actor_id,
            currency=currency,
            ref_kind=ref_kind,
            ref_id=ref_id,
        )
        logger.info(
            "module_entry_posted",
            extra={
                "ref_kind": ref_kind,
                "ref_id": ref_id,
                "entry_id": str(entry.id),
                "entry_number": entry.number,
            },
        )
        return entry

    def reverse(self, entry_id: UUID, reason: str, actor_id: str) -> JournalEntry:
        return self._journal.reverse(entry_id, reason, actor_id)
