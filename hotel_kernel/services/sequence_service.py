"""
SequenceService -- monotonic, transactional counters.

Responsibility:
    Hands out strictly increasing integers per named counter. Document
    numbers (journal entries, invoices, payments, settlements) use one
    counter per (document type, hotel, year); ledger records use a global
    counter for insertion order.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - Monotonic via a locked counter row (SELECT ... FOR UPDATE). Never
      computes max()+1 over the document table.
    - The increment is part of the caller's transaction: on rollback the
      value is returned to the pool.

Failure modes:
    - Concurrent first use of a counter: the losing INSERT hits the unique
      constraint inside a SAVEPOINT, which is rolled back before re-reading
      the winner's row.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from hotel_kernel.db.base import Base
from hotel_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One row per named sequence."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def document_sequence_name(document_type: str, hotel_id: str, period: int | str) -> str:
    """Counter key for per-hotel document numbering within a period (year or day)."""
    return f"{document_type}:{hotel_id}:{period}"


class SequenceService:
    """
    Transactional sequence allocation.

    Usage:
        seq = SequenceService(session).next_value(
            document_sequence_name("journal_entry", hotel_id, 2024)
        )
    """

    LEDGER_RECORD = "ledger_record"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment, and return the new value.

        Postconditions:
            Returns an integer > 0, strictly greater than every value
            previously returned for ``sequence_name`` in committed work.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """Set a counter to ``value``. Tests and data migrations only."""
        counter = self._locked_counter(sequence_name)
        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()
