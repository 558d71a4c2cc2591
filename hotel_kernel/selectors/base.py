"""
Module: hotel_kernel.selectors.base
Responsibility: Abstract base for read-only query selectors.
Architecture position: Kernel > Selectors. May import from db/ and models/.

Invariants enforced:
    - Read-only: selectors never add, delete, flush or commit.
    - Selectors return frozen dataclasses or plain values, not ORM rows.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from hotel_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Selectors accept the caller's Session and only read from it."""

    PAGE_SIZE = 500

    def __init__(self, session: Session):
        self.session = session
