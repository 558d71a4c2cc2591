"""
hotel_services.results -- the structured result every façade call returns.

Each operation answers ``{status: "ok", data}`` or
``{status: "error", error: {code, kind, message, details}}``. Typed
``HotelFinanceError`` subclasses map straight onto ``code`` / ``kind`` /
``details()``; anything else is reported as ``INTERNAL_ERROR`` without
leaking internals.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from hotel_kernel.exceptions import HotelFinanceError, InternalError
from hotel_kernel.models.account import Account
from hotel_kernel.models.journal import JournalEntry


class ResultStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    kind: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        if isinstance(exc, HotelFinanceError):
            return cls(
                code=exc.code,
                kind=exc.kind,
                message=str(exc),
                details=exc.details(),
            )
        return cls(
            code=InternalError.code,
            kind=InternalError.kind,
            message="Internal error",
            details={"exc_type": type(exc).__name__},
        )


@dataclass(frozen=True)
class ServiceResult:
    status: ResultStatus
    data: Any = None
    error: ErrorInfo | None = None

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK

    @classmethod
    def success(cls, data: Any = None) -> ServiceResult:
        return cls(status=ResultStatus.OK, data=data)

    @classmethod
    def failure(cls, exc: BaseException) -> ServiceResult:
        return cls(status=ResultStatus.ERROR, error=ErrorInfo.from_exception(exc))

    def unwrap(self) -> Any:
        """The data of a successful result; raises InternalError otherwise."""
        if not self.ok:
            raise InternalError(f"{self.error.code}: {self.error.message}")
        return self.data

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready envelope."""
        out: dict[str, Any] = {"status": self.status.value}
        if self.ok:
            out["data"] = render_to_dict(self.data)
        else:
            out["error"] = render_to_dict(self.error)
        return out


def render_to_dict(obj: object) -> Any:
    """
    Convert DTOs, reports and plain containers to JSON-ready values.

    Handles:
    - Decimal -> str (preserving precision)
    - UUID -> str
    - date / datetime -> ISO format string
    - Enum -> .value
    - Nested frozen dataclasses -> nested dicts
    - Tuples -> lists
    """
    if obj is None:
        return None
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (date, datetime)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (list, tuple)):
        return [render_to_dict(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): render_to_dict(v) for k, v in obj.items()}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: render_to_dict(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)


# -- views of kernel rows -------------------------------------------------


def account_view(account: Account) -> dict[str, Any]:
    return {
        "id": account.id,
        "hotel_id": account.hotel_id,
        "code": account.code,
        "name": account.name,
        "kind": getattr(account.kind, "value", account.kind),
        "normal_side": getattr(account.normal_side, "value", account.normal_side),
        "sub_type": account.sub_type,
        "parent_id": account.parent_id,
        "currency": account.currency,
        "is_active": account.is_active,
        "current_balance": account.current_balance,
    }


def journal_entry_view(
    entry: JournalEntry, ledger_record_count: int | None = None
) -> dict[str, Any]:
    view = {
        "id": entry.id,
        "hotel_id": entry.hotel_id,
        "number": entry.number,
        "entry_date": entry.entry_date,
        "status": getattr(entry.status, "value", entry.status),
        "description": entry.description,
        "currency": entry.currency,
        "total_debit": entry.total_debit,
        "total_credit": entry.total_credit,
        "reversal_of_id": entry.reversal_of_id,
        "lines": [
            {
                "line_index": line.line_index,
                "account_id": line.account_id,
                "debit": line.debit,
                "credit": line.credit,
                "description": line.description,
            }
            for line in entry.lines
        ],
    }
    if ledger_record_count is not None:
        view["ledger_record_count"] = ledger_record_count
    return view
