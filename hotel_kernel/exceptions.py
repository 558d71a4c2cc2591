"""
Typed Exception Hierarchy for the Hotel Finance Core.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers must be able to react to an error without parsing its message.
Every error raised by the kernel, the engines, the business modules or the
service facade is an instance of a class below, and every class carries:

  1. a CODE class attribute (machine-readable, stable, API-safe)
  2. a KIND class attribute (the taxonomy bucket the facade reports)
  3. structured DATA as instance attributes (never only the message)

Example - WRONG:
    except Exception as e:
        if "already reversed" in str(e):
            ...

Example - RIGHT:
    except EntryAlreadyReversedError as e:
        respond(code=e.code, entry_id=e.entry_id)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    HotelFinanceError (base)
    |
    +-- ValidationError                         kind=validation
    |   +-- InvalidAmountError
    |   +-- InvalidJournalLinesError
    |   +-- InvalidCurrencyError
    |   +-- CurrencyMismatchError
    |   +-- AccountInactiveError
    |   +-- InvalidAccountKindError
    |   +-- PrecisionError                      kind=precision
    |       +-- UnbalancedEntryError
    |
    +-- NotFoundError                           kind=not_found
    |   +-- AccountNotFoundError
    |   +-- JournalEntryNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- SettlementNotFoundError
    |   +-- DisputeNotFoundError
    |   +-- BudgetNotFoundError
    |   +-- ExchangeRateNotFoundError
    |
    +-- ConflictError                           kind=conflict
    |   +-- DuplicateAccountCodeError
    |   +-- DuplicateDocumentNumberError
    |
    +-- StateError                              kind=state
    |   +-- AlreadyPostedError
    |   +-- EntryNotPostedError
    |   +-- EntryAlreadyReversedError
    |   +-- InvalidStatusTransitionError
    |   +-- SettlementClosedError
    |   +-- EscalationLimitError
    |   +-- ImmutabilityViolationError
    |
    +-- NotAuthorizedError                      kind=not_authorized
    |   +-- RoleNotPermittedError
    |   +-- HotelScopeViolationError
    |
    +-- RuleViolationError                      kind=rule_violation
    |
    +-- RaceError                               kind=race
    |
    +-- OperationCancelledError                 kind=state
    |
    +-- InternalError                           kind=internal

PrecisionError is a ValidationError: an unbalanced entry is bad input, and
callers that only distinguish validation failures still catch it.

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Catch the narrowest class that changes behaviour:

    try:
        journal.post(entry_id)
    except AlreadyPostedError:
        entry = journal.get(entry_id)

2. Rule violations carry both vectors so a caller can show remediation:

    except RuleViolationError as e:
        return {"violations": e.violations, "warnings": e.warnings}

3. Precision errors are fatal for the operation and must be logged for
   manual reconciliation; the posting path already rolls back before raising.

4. Race errors are raised only after the bounded retry inside the posting
   path is exhausted. Callers may retry the whole request.

===============================================================================
"""

from decimal import Decimal
from typing import Any, Sequence


class HotelFinanceError(Exception):
    """
    Base exception for all hotel finance errors.

    All subclasses carry a ``code`` and a ``kind`` class attribute.
    """

    code: str = "HOTEL_FINANCE_ERROR"
    kind: str = "internal"

    def details(self) -> dict[str, Any]:
        """Structured attributes of this error, for API responses."""
        return {
            k: v for k, v in vars(self).items() if not k.startswith("_")
        }


# Validation


class ValidationError(HotelFinanceError):
    """Bad input or missing fields."""

    code: str = "VALIDATION_ERROR"
    kind: str = "validation"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidAmountError(ValidationError):
    """An amount is malformed, negative where it must not be, or zero."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, field=field)


class InvalidJournalLinesError(ValidationError):
    """Journal lines violate structural rules (count, sides, currency)."""

    code: str = "INVALID_JOURNAL_LINES"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid journal lines: {reason}", field="lines")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a known ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid currency code: {currency}", field="currency")


class CurrencyMismatchError(ValidationError):
    """Operation mixed two different currencies."""

    code: str = "CURRENCY_MISMATCH"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Currency mismatch: expected {expected}, got {actual}",
            field="currency",
        )


class AccountInactiveError(ValidationError):
    """Posting attempted against a deactivated account."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account {account_code} is inactive", field="account_id")


class InvalidAccountKindError(ValidationError):
    """Account kind or sub-type is not recognised."""

    code: str = "INVALID_ACCOUNT_KIND"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid account kind: {value}", field="kind")


class PrecisionError(ValidationError):
    """Arithmetic precision invariant broken beyond tolerance."""

    code: str = "PRECISION_ERROR"
    kind: str = "precision"


class UnbalancedEntryError(PrecisionError):
    """Journal entry debits do not equal credits within tolerance."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal | str, credits: Decimal | str, currency: str):
        self.debits = str(debits)
        self.credits = str(credits)
        self.currency = currency
        super().__init__(
            f"Entry is unbalanced: debits {self.debits} != credits "
            f"{self.credits} {currency}",
            field="lines",
        )


# Not found


class NotFoundError(HotelFinanceError):
    """A referenced record does not exist."""

    code: str = "NOT_FOUND"
    kind: str = "not_found"


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = str(account_ref)
        super().__init__(f"Account not found: {account_ref}")


class JournalEntryNotFoundError(NotFoundError):
    code: str = "JOURNAL_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = str(entry_id)
        super().__init__(f"Journal entry not found: {entry_id}")


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_id: str):
        self.invoice_id = str(invoice_id)
        super().__init__(f"Invoice not found: {invoice_id}")


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = str(payment_id)
        super().__init__(f"Payment not found: {payment_id}")


class SettlementNotFoundError(NotFoundError):
    code: str = "SETTLEMENT_NOT_FOUND"

    def __init__(self, settlement_id: str):
        self.settlement_id = str(settlement_id)
        super().__init__(f"Settlement not found: {settlement_id}")


class DisputeNotFoundError(NotFoundError):
    code: str = "DISPUTE_NOT_FOUND"

    def __init__(self, settlement_id: str, dispute_id: str):
        self.settlement_id = str(settlement_id)
        self.dispute_id = str(dispute_id)
        super().__init__(
            f"Dispute {dispute_id} not found on settlement {settlement_id}"
        )


class BudgetNotFoundError(NotFoundError):
    code: str = "BUDGET_NOT_FOUND"

    def __init__(self, budget_id: str):
        self.budget_id = str(budget_id)
        super().__init__(f"Budget not found: {budget_id}")


class ExchangeRateNotFoundError(NotFoundError):
    code: str = "EXCHANGE_RATE_NOT_FOUND"

    def __init__(self, from_currency: str, to_currency: str, as_of: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        self.as_of = as_of
        super().__init__(
            f"No exchange rate {from_currency}->{to_currency} effective on {as_of}"
        )


# Conflict


class ConflictError(HotelFinanceError):
    """Uniqueness constraint would be broken."""

    code: str = "CONFLICT"
    kind: str = "conflict"


class DuplicateAccountCodeError(ConflictError):
    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, hotel_id: str, account_code: str):
        self.hotel_id = hotel_id
        self.account_code = account_code
        super().__init__(
            f"Account code {account_code} already exists for hotel {hotel_id}"
        )


class DuplicateDocumentNumberError(ConflictError):
    code: str = "DUPLICATE_DOCUMENT_NUMBER"

    def __init__(self, document_type: str, number: str):
        self.document_type = document_type
        self.number = number
        super().__init__(f"Duplicate {document_type} number: {number}")


# State


class StateError(HotelFinanceError):
    """Operation is illegal in the record's current state."""

    code: str = "STATE_ERROR"
    kind: str = "state"


class AlreadyPostedError(StateError):
    code: str = "ALREADY_POSTED"

    def __init__(self, entry_id: str, status: str):
        self.entry_id = str(entry_id)
        self.status = status
        super().__init__(
            f"Journal entry {entry_id} cannot be posted from status {status}"
        )


class EntryNotPostedError(StateError):
    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, status: str):
        self.entry_id = str(entry_id)
        self.status = status
        super().__init__(
            f"Journal entry {entry_id} is {status}; only posted entries can be reversed"
        )


class EntryAlreadyReversedError(StateError):
    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversed_by_id: str | None = None):
        self.entry_id = str(entry_id)
        self.reversed_by_id = str(reversed_by_id) if reversed_by_id else None
        super().__init__(f"Journal entry {entry_id} is already reversed")


class InvalidStatusTransitionError(StateError):
    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"{entity_type} {entity_id} cannot move from {from_status} to {to_status}"
        )


class SettlementClosedError(StateError):
    code: str = "SETTLEMENT_CLOSED"

    def __init__(self, settlement_id: str, status: str, operation: str):
        self.settlement_id = str(settlement_id)
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} on settlement {settlement_id} in status {status}"
        )


class EscalationLimitError(StateError):
    code: str = "ESCALATION_LIMIT_REACHED"

    def __init__(self, settlement_id: str, level: int, max_level: int):
        self.settlement_id = str(settlement_id)
        self.level = level
        self.max_level = max_level
        super().__init__(
            f"Settlement {settlement_id} is already at escalation level "
            f"{level} (max {max_level})"
        )


class ImmutabilityViolationError(StateError):
    """Attempt to modify or delete a record that is append-only once posted."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# Authorization


class NotAuthorizedError(HotelFinanceError):
    code: str = "NOT_AUTHORIZED"
    kind: str = "not_authorized"


class RoleNotPermittedError(NotAuthorizedError):
    code: str = "ROLE_NOT_PERMITTED"

    def __init__(self, role: str, operation: str):
        self.role = role
        self.operation = operation
        super().__init__(f"Role {role} is not permitted to {operation}")


class HotelScopeViolationError(NotAuthorizedError):
    code: str = "HOTEL_SCOPE_VIOLATION"

    def __init__(self, user_hotel_id: str | None, target_hotel_id: str):
        self.user_hotel_id = user_hotel_id
        self.target_hotel_id = target_hotel_id
        super().__init__(
            f"User scoped to hotel {user_hotel_id} cannot act on hotel {target_hotel_id}"
        )


# Rules engine


class RuleViolationError(HotelFinanceError):
    """Rules engine rejected the operation."""

    code: str = "RULE_VIOLATION"
    kind: str = "rule_violation"

    def __init__(
        self,
        operation: str,
        violations: Sequence[str],
        warnings: Sequence[str] = (),
        requires_approval: bool = False,
    ):
        self.operation = operation
        self.violations = list(violations)
        self.warnings = list(warnings)
        self.requires_approval = requires_approval
        super().__init__(
            f"{operation} rejected: {'; '.join(self.violations)}"
        )


# Concurrency


class RaceError(HotelFinanceError):
    """Optimistic-concurrency retry budget was exhausted."""

    code: str = "RETRIES_EXHAUSTED"
    kind: str = "race"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(f"{operation} failed after {attempts} attempts")


class InternalError(HotelFinanceError):
    code: str = "INTERNAL_ERROR"
    kind: str = "internal"


class OperationCancelledError(HotelFinanceError):
    """Request deadline passed or the caller cancelled a long-running read."""

    code: str = "OPERATION_CANCELLED"
    kind: str = "state"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} cancelled: {reason}")
