"""
Structured JSON logging for the hotel finance core.

Every logger lives under the ``hotel_kernel`` namespace and writes one JSON
object per line. Messages are event names; data travels in ``extra={...}``.
Request-scoped fields (correlation, hotel, actor, entry, settlement) are held
in ``LogContext`` and stamped onto every record emitted inside a ``bind``.

    logger = get_logger("journal")
    with LogContext.bind(hotel_id="H1", entry_id=str(entry.id)):
        logger.info("journal_entry_posted", extra={"line_count": 2})
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "hotel_kernel"

CONTEXT_FIELDS = ("correlation_id", "hotel_id", "actor_id", "entry_id", "settlement_id")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("hotel_log_context", default=_EMPTY)


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """
        Layer ``fields`` over the current context for the ``with`` block.

        None values are skipped; the previous context is restored on exit.
        """
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise ValueError(f"Unknown log context fields: {', '.join(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _context.set(MappingProxyType(merged))
        try:
            yield LogContext
        finally:
            _context.reset(token)


_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON line per record: base fields, context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        payload.update(
            (k, v) for k, v in vars(record).items() if k not in _STDLIB_KEYS and k not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))
        return json.dumps(payload, default=_json_default)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
            "traceback": self.formatException(record.exc_info),
        }
        # Typed hotel errors expose code, kind and details().
        if hasattr(exc, "code") and callable(getattr(exc, "details", None)):
            fields["exc_code"] = exc.code
            fields["exc_kind"] = exc.kind
            fields.update((f"exc_{k}", v) for k, v in exc.details().items())
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the hotel_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the hotel_kernel logger (first call wins)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    namespace = logging.getLogger(_LOGGER_PREFIX)
    namespace.setLevel(level)
    namespace.propagate = False
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    namespace.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging. Tests only."""
    global _configured
    with _lock:
        _configured = False
    namespace = logging.getLogger(_LOGGER_PREFIX)
    namespace.handlers.clear()
    namespace.setLevel(logging.WARNING)
