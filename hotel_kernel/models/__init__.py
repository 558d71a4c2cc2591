"""Kernel ORM models."""

from hotel_kernel.models.account import (
    Account,
    AccountKind,
    AccountSubType,
    NormalSide,
    balance_sign,
    normal_side_for,
)
from hotel_kernel.models.exchange_rate import ExchangeRate
from hotel_kernel.models.journal import (
    JournalEntry,
    JournalEntryKind,
    JournalEntryStatus,
    JournalLine,
)
from hotel_kernel.models.ledger import LedgerRecord
from hotel_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "Account",
    "AccountKind",
    "AccountSubType",
    "NormalSide",
    "balance_sign",
    "normal_side_for",
    "ExchangeRate",
    "JournalEntry",
    "JournalEntryKind",
    "JournalEntryStatus",
    "JournalLine",
    "LedgerRecord",
    "SequenceCounter",
]
