"""
Module: hotel_kernel.models.journal
Responsibility: ORM persistence for journal entries and their lines -- the
    unit of posting.
Architecture position: Kernel > Models. May import from db/ and
    models/account.py.

Invariants enforced:
    - (hotel_id, number) is unique; number is assigned at posting.
    - reversal_of_id is unique: an entry can be reversed at most once.
    - Once POSTED, header amounts and lines are immutable. The only
      permitted change is POSTED -> REVERSED together with reversed_by_id
      (db/immutability.py).
    - (journal_entry_id, line_index) is unique.

Failure modes:
    - IntegrityError on a duplicate number or a second reversal; the posting
      path converts these into retries or StateError.

Audit relevance:
    Every business document (invoice, payment, settlement mutation) stores
    the id of the entry it produced. Posted entries are never edited, only
    reversed.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotel_kernel.db.base import Base, TrackedBase, UUIDString
from hotel_kernel.db.types import DecimalString


class JournalEntryKind(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    ADJUSTING = "adjusting"
    CLOSING = "closing"
    REVERSING = "reversing"
    OPENING = "opening"


class JournalEntryStatus(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"
    VOIDED = "voided"


class JournalEntry(TrackedBase):
    """
    Balanced, multi-line journal entry.

    Lifecycle: DRAFT -> POSTED -> REVERSED; DRAFT -> VOIDED.
    """

    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint("hotel_id", "number", name="uq_journal_entries_hotel_number"),
        UniqueConstraint("reversal_of_id", name="uq_journal_entries_reversal_of"),
        Index("idx_journal_entries_hotel_status", "hotel_id", "status"),
        Index("idx_journal_entries_ref", "ref_kind", "ref_id"),
        Index("idx_journal_entries_hotel_date", "hotel_id", "entry_date"),
    )

    hotel_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # "JE-{year}-{seq:06d}", assigned at posting
    number: Mapped[str | None] = mapped_column(String(40), nullable=True)

    seq: Mapped[int | None] = mapped_column(Integer, nullable=True)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    kind: Mapped[JournalEntryKind] = mapped_column(String(20), nullable=False)

    description: Mapped[str] = mapped_column(String(1000), nullable=False)

    ref_kind: Mapped[str | None] = mapped_column(String(50), nullable=True)

    ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(20),
        default=JournalEntryStatus.DRAFT.value,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    total_debit: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    total_credit: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    fiscal_period: Mapped[int] = mapped_column(Integer, nullable=False)

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    posted_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reversal_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalLine.line_index",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.number or self.id} {self.status}>"

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED.value

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT.value


class JournalLine(Base):
    """One side of a journal entry: exactly one of debit/credit is non-zero."""

    __tablename__ = "journal_lines"
    __table_args__ = (
        UniqueConstraint("journal_entry_id", "line_index", name="uq_journal_lines_entry_index"),
        Index("idx_journal_lines_account", "account_id"),
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

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    debit: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    credit: Mapped[Decimal] = mapped_column(DecimalString(), nullable=False)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return f"<JournalLine #{self.line_index} Dr {self.debit} Cr {self.credit}>"
