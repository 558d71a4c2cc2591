"""
BaseService -- abstract base for all kernel and module services.

Responsibility:
    Common constructor and session-handling contract. Every service receives
    a SQLAlchemy ``Session`` and uses ``session.flush()``, never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries belong to the caller (session_scope(), the
    service facade, or the test harness). A journal post, or a settlement
    mutation together with the journal entry it emits, is therefore one
    atomic unit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from hotel_kernel.db.base import Base
from hotel_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for services.

    Guarantees:
        - Never calls ``session.commit()`` or ``session.rollback()``.
        - ``self.clock`` is the only time source.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
