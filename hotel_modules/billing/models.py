"""
Billing Domain Models (``hotel_modules.billing.models``).

Responsibility
--------------
Enums, frozen value objects and the pure calculations for invoices and
payments: line amounts, invoice totals, invoice status derivation, and the
payment fee breakdown.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* total_amount = subtotal + total_tax - total_discount
* balance_amount = total_amount - paid_amount
* Invoice status is a function of (paid, balance, due date, today) except
  for the DRAFT, CANCELLED and REFUNDED states, which only change
  explicitly.
* net_amount = amount - (processing + gateway + bank fees)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Sequence
from uuid import UUID

from hotel_kernel.domain.values import TOLERANCE, quantize_amount, to_decimal
from hotel_kernel.exceptions import InvalidAmountError, ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TERMINAL_INVOICE_STATUSES = frozenset({InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED})
PAYABLE_INVOICE_STATUSES = frozenset(
    {InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE}
)


class CustomerType(str, Enum):
    GUEST = "guest"
    CORPORATE = "corporate"
    VENDOR = "vendor"


class DiscountKind(str, Enum):
    FLAT = "flat"
    PERCENT = "percent"


class PaymentType(str, Enum):
    RECEIPT = "receipt"
    PAYMENT = "payment"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    ONLINE = "online"
    CHECK = "check"
    MOBILE = "mobile"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


OPEN_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})


@dataclass(frozen=True)
class Customer:
    type: CustomerType
    name: str
    customer_id: str | None = None
    email: str | None = None
    phone: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", CustomerType(self.type))
        if not self.name or not self.name.strip():
            raise ValidationError("Customer name is required", field="customer.name")


@dataclass(frozen=True)
class InvoiceLineInput:
    description: str
    account_id: UUID
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = ZERO

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity, field="quantity"))
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price, field="unit_price"))
        object.__setattr__(self, "tax_rate", to_decimal(self.tax_rate, field="tax_rate"))
        if self.quantity <= 0:
            raise InvalidAmountError("Quantity must be positive", field="quantity")
        if self.unit_price < 0:
            raise InvalidAmountError("Unit price cannot be negative", field="unit_price")
        if not ZERO <= self.tax_rate <= HUNDRED:
            raise InvalidAmountError("Tax rate must be between 0 and 100", field="tax_rate")

    @property
    def amount(self) -> Decimal:
        return quantize_amount(self.quantity * self.unit_price)

    @property
    def tax_amount(self) -> Decimal:
        return quantize_amount(self.amount * self.tax_rate / HUNDRED)


@dataclass(frozen=True)
class DiscountInput:
    kind: DiscountKind
    value: Decimal
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", DiscountKind(self.kind))
        object.__setattr__(self, "value", to_decimal(self.value, field="discount"))
        if self.value < 0:
            raise InvalidAmountError("Discount cannot be negative", field="discount")
        if self.kind == DiscountKind.PERCENT and self.value > HUNDRED:
            raise InvalidAmountError("Percent discount cannot exceed 100", field="discount")

    def amount_for(self, subtotal: Decimal) -> Decimal:
        if self.kind == DiscountKind.FLAT:
            return self.value
        return quantize_amount(subtotal * self.value / HUNDRED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "value": format(self.value, "f"),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiscountInput:
        return cls(kind=data["kind"], value=Decimal(data["value"]), description=data.get("description"))


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: Decimal
    total_tax: Decimal
    total_discount: Decimal
    total_amount: Decimal


def compute_invoice_totals(
    lines: Sequence[InvoiceLineInput],
    discounts: Sequence[DiscountInput] = (),
) -> InvoiceTotals:
    subtotal = sum((line.amount for line in lines), ZERO)
    total_tax = sum((line.tax_amount for line in lines), ZERO)
    total_discount = sum((d.amount_for(subtotal) for d in discounts), ZERO)
    return InvoiceTotals(
        subtotal=quantize_amount(subtotal),
        total_tax=quantize_amount(total_tax),
        total_discount=quantize_amount(total_discount),
        total_amount=quantize_amount(subtotal + total_tax - total_discount),
    )


def derive_invoice_status(
    current: InvoiceStatus,
    paid_amount: Decimal,
    balance_amount: Decimal,
    due_date: date,
    today: date,
) -> InvoiceStatus:
    if current in TERMINAL_INVOICE_STATUSES or current == InvoiceStatus.DRAFT:
        return current
    if balance_amount <= TOLERANCE:
        return InvoiceStatus.PAID
    if today > due_date:
        return InvoiceStatus.OVERDUE
    if paid_amount > TOLERANCE:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.SENT


@dataclass(frozen=True)
class FeeBreakdown:
    processing: Decimal = ZERO
    gateway: Decimal = ZERO
    bank: Decimal = ZERO

    def __post_init__(self) -> None:
        for name in ("processing", "gateway", "bank"):
            value = to_decimal(getattr(self, name), field=f"fees.{name}")
            if value < 0:
                raise InvalidAmountError("Fees cannot be negative", field=f"fees.{name}")
            object.__setattr__(self, name, value)

    @property
    def total(self) -> Decimal:
        return self.processing + self.gateway + self.bank


# =========================================================================
# Read models (returned by the ORM ``to_dto`` methods)
# =========================================================================


@dataclass(frozen=True)
class InvoiceLine:
    line_index: int
    description: str
    account_id: UUID
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class Invoice:
    id: UUID
    hotel_id: str
    number: str
    customer: Customer
    issue_date: date
    due_date: date
    currency: str
    lines: tuple[InvoiceLine, ...]
    discounts: tuple[DiscountInput, ...]
    subtotal: Decimal
    total_tax: Decimal
    total_discount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: InvoiceStatus
    journal_entry_id: UUID | None = None
    booking_id: str | None = None


@dataclass(frozen=True)
class Payment:
    id: UUID
    hotel_id: str
    number: str
    type: PaymentType
    method: PaymentMethod
    amount: Decimal
    currency: str
    customer_ref: str | None
    fees: FeeBreakdown
    net_amount: Decimal
    status: PaymentStatus
    payment_date: date
    invoice_id: UUID | None = None
    booking_id: str | None = None
    reference: str | None = None
    journal_entry_id: UUID | None = None
    reconciled: bool = False
    original_payment_id: UUID | None = None
    refunded_amount: Decimal = ZERO
