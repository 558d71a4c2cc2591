"""
ORM-Level Immutability Enforcement.

===============================================================================
WHAT IS PROTECTED
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements are sent.
The listeners below reject any change that would alter posted history:

Entity        | When immutable                 | Permitted changes
--------------|--------------------------------|----------------------------------
JournalEntry  | status POSTED or REVERSED      | POSTED -> REVERSED + reversed_by_id
JournalLine   | parent entry POSTED/REVERSED   | none
LedgerRecord  | always                         | running_balance (tail re-projection)

Deletes of posted/reversed entries, their lines, and of any ledger record
are always rejected.

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to the database (only if checks pass)

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at / updated_by_id may change: they are audit metadata.
2. The check asks whether the entry WAS posted before this flush, so the
   posting flush itself (DRAFT -> POSTED with number, seq, posted_at) passes.
3. running_balance is the single mutable ledger column; back-dated postings
   must re-project the tail of an account's records inside the same
   transaction.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from hotel_kernel.exceptions import ImmutabilityViolationError
from hotel_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_REVERSAL_FIELDS = frozenset({"status", "reversed_by_id"})
_LEDGER_MUTABLE_FIELDS = frozenset({"running_balance"})
_FROZEN_STATUSES = frozenset({"posted", "reversed"})


def _status_value(status) -> str:
    return getattr(status, "value", status)


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.history.has_changes()
    ]


def _check_journal_entry_immutability(mapper, connection, target):
    """
    Block edits to entries that were already posted or reversed.

    A POSTED entry may only flip to REVERSED together with reversed_by_id.
    """
    status_history = get_history(target, "status")

    if status_history.deleted:
        old_status = _status_value(status_history.deleted[0])
    elif not status_history.added:
        old_status = _status_value(target.status)
    else:
        old_status = None

    if old_status not in _FROZEN_STATUSES:
        return

    new_status = _status_value(target.status)
    allowed = set(_AUDIT_FIELDS)
    if old_status == "posted" and new_status == "reversed":
        allowed |= _REVERSAL_FIELDS

    for field in _changed_fields(target):
        if field in allowed or field == "lines":
            continue
        _block(
            "JournalEntry",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on {old_status} journal entry",
            field=field,
        )


def _check_journal_entry_delete(mapper, connection, target):
    if _status_value(target.status) in _FROZEN_STATUSES:
        _block(
            "JournalEntry",
            target.id,
            "DELETE",
            "Posted journal entries cannot be deleted",
        )


def _check_journal_line_immutability(mapper, connection, target):
    entry = target.entry
    if entry is not None:
        parent_status = get_history(entry, "status")
        before = parent_status.deleted[0] if parent_status.deleted else entry.status
        if _status_value(before) in _FROZEN_STATUSES:
            _block(
                "JournalLine",
                target.id,
                "UPDATE",
                "Journal lines cannot be modified after the entry is posted",
            )


def _check_journal_line_delete(mapper, connection, target):
    entry = target.entry
    if entry is not None and _status_value(entry.status) in _FROZEN_STATUSES:
        _block(
            "JournalLine",
            target.id,
            "DELETE",
            "Journal lines cannot be deleted after the entry is posted",
        )


def _check_ledger_record_immutability(mapper, connection, target):
    for field in _changed_fields(target):
        if field not in _LEDGER_MUTABLE_FIELDS:
            _block(
                "LedgerRecord",
                target.id,
                "UPDATE",
                f"Ledger records are append-only; cannot modify '{field}'",
                field=field,
            )


def _check_ledger_record_delete(mapper, connection, target):
    _block(
        "LedgerRecord",
        target.id,
        "DELETE",
        "Ledger records are append-only and cannot be deleted",
    )


_LISTENERS = (
    ("JournalEntry", "before_update", _check_journal_entry_immutability),
    ("JournalEntry", "before_delete", _check_journal_entry_delete),
    ("JournalLine", "before_update", _check_journal_line_immutability),
    ("JournalLine", "before_delete", _check_journal_line_delete),
    ("LedgerRecord", "before_update", _check_ledger_record_immutability),
    ("LedgerRecord", "before_delete", _check_ledger_record_delete),
)


def _targets() -> dict:
    from hotel_kernel.models.journal import JournalEntry, JournalLine
    from hotel_kernel.models.ledger import LedgerRecord

    return {
        "JournalEntry": JournalEntry,
        "JournalLine": JournalLine,
        "LedgerRecord": LedgerRecord,
    }


def register_immutability_listeners() -> None:
    """Install all immutability listeners. Safe to call more than once."""
    targets = _targets()
    for name, event_name, fn in _LISTENERS:
        if not event.contains(targets[name], event_name, fn):
            event.listen(targets[name], event_name, fn)
    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. Tests that need to corrupt data use this."""
    targets = _targets()
    for name, event_name, fn in _LISTENERS:
        _safe_remove_listener(targets[name], event_name, fn)
