"""
Module: hotel_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the UUID primary key convention, the type annotation map, and
    the TrackedBase mixin for audit metadata.
Architecture position: Kernel > DB. Lowest-level import target in the
    kernel; MUST NOT import from models/, services/ or outer layers.

Invariants enforced:
    - UUID primary keys (uuid4) on every model.
    - Decimal annotations map to DecimalString(4): money never touches a
      float or a backend-specific NUMERIC rounding rule.
    - datetime annotations are always timezone-aware.

Audit relevance:
    TrackedBase.created_at/created_by_id/updated_at/updated_by_id are audit
    metadata, not financial data, and may change on otherwise immutable
    records (see db/immutability.py).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import JSON, BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from hotel_kernel.db.types import DecimalString


class UUIDString(TypeDecorator):
    """UUID stored as String(36) for cross-database portability."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all models.

    Guarantees:
        - id is a uuid4 stored as String(36).
        - Decimal -> DecimalString(4), datetime -> DateTime(timezone=True),
          date -> Date, int -> BigInteger, dict/list -> JSON.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalString(),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
        dict[str, Any]: JSON,
        list[Any]: JSON,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base with audit timestamp and actor tracking.

    Guarantees:
        - created_at set by the server on INSERT.
        - updated_at refreshed on every UPDATE.
        - created_by_id is required: every record has a creator.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[str] = mapped_column(String(64), nullable=False)

    updated_by_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


UUID = PyUUID
