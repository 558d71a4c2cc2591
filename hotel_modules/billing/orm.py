"""
Billing ORM Models (``hotel_modules.billing.orm``).

Responsibility
--------------
SQLAlchemy persistence for invoices, invoice lines and payments. Amounts
are canonical decimal strings (DecimalString via the Base type map).

Architecture position
---------------------
**Modules layer** -- persistence. Imports from ``hotel_kernel.db.base``
and sibling ``models.py``. MUST NOT be imported by ``hotel_kernel``.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hotel_kernel.db.base import Base, TrackedBase
from hotel_kernel.db.types import DecimalString, RATE_DECIMAL_PLACES


# ---------------------------------------------------------------------------
# 1. InvoiceModel
# ---------------------------------------------------------------------------


class InvoiceModel(TrackedBase):
    """
    ORM model for customer invoices.

    Guarantees:
        - number is unique within a hotel (uq_invoices_hotel_number).
        - totals are recomputed by the service on every change.
        - journal_entry_id is set once, when the invoice is sent.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("hotel_id", "number", name="uq_invoices_hotel_number"),
        Index("idx_invoices_hotel_status", "hotel_id", "status"),
        Index("idx_invoices_hotel_due_date", "hotel_id", "due_date"),
    )

    hotel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    number: Mapped[str] = mapped_column(String(40), nullable=False)
    customer_type: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    issue_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    discounts: Mapped[list[Any]] = mapped_column(default=list)
    subtotal: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_tax: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_discount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    balance_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    lines: Mapped[list["InvoiceLineModel"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineModel.line_index",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from hotel_modules.billing.models import (
            Customer,
            DiscountInput,
            Invoice,
            InvoiceStatus,
        )

        return Invoice(
            id=self.id,
            hotel_id=self.hotel_id,
            number=self.number,
            customer=Customer(
                type=self.customer_type,
                name=self.customer_name,
                customer_id=self.customer_id,
                email=self.customer_email,
                phone=self.customer_phone,
            ),
            issue_date=self.issue_date,
            due_date=self.due_date,
            currency=self.currency,
            lines=tuple(line.to_dto() for line in self.lines),
            discounts=tuple(DiscountInput.from_dict(d) for d in self.discounts or []),
            subtotal=self.subtotal,
            total_tax=self.total_tax,
            total_discount=self.total_discount,
            total_amount=self.total_amount,
            paid_amount=self.paid_amount,
            balance_amount=self.balance_amount,
            status=InvoiceStatus(self.status),
            journal_entry_id=self.journal_entry_id,
            booking_id=self.booking_id,
        )

    def __repr__(self) -> str:
        return f"<InvoiceModel {self.number} [{self.status}] {self.total_amount}>"


# ---------------------------------------------------------------------------
# 2. InvoiceLineModel
# ---------------------------------------------------------------------------


class InvoiceLineModel(Base):
    """One charge on an invoice; credited to ``account_id`` when sent."""

    __tablename__ = "invoice_lines"

    __table_args__ = (
        UniqueConstraint("invoice_id", "line_index", name="uq_invoice_lines_invoice_index"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    line_index: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    account_id: Mapped[UUID] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(DecimalString(RATE_DECIMAL_PLACES), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[InvoiceModel] = relationship(back_populates="lines")

    def to_dto(self):
        from hotel_modules.billing.models import InvoiceLine

        return InvoiceLine(
            line_index=self.line_index,
            description=self.description,
            account_id=self.account_id,
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_rate=self.tax_rate,
            amount=self.amount,
            tax_amount=self.tax_amount,
        )


# ---------------------------------------------------------------------------
# 3. PaymentModel
# ---------------------------------------------------------------------------


class PaymentModel(TrackedBase):
    """
    ORM model for payments, refunds and payment adjustments.

    Guarantees:
        - net_amount = amount - (processing_fee + gateway_fee + bank_fee).
        - status COMPLETED implies a posted journal_entry_id.
        - refunds point at the payment they return via original_payment_id.
    """

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint("hotel_id", "number", name="uq_payments_hotel_number"),
        Index("idx_payments_hotel_status", "hotel_id", "status"),
        Index("idx_payments_invoice", "invoice_id"),
        Index("idx_payments_original", "original_payment_id"),
    )

    hotel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    number: Mapped[str] = mapped_column(String(40), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    customer_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invoice_id: Mapped[UUID | None] = mapped_column(ForeignKey("invoices.id"), nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    processing_fee: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    gateway_fee: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    bank_fee: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_date: Mapped[date] = mapped_column(nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entries.id"), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reconciled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    statement_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    original_payment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payments.id"), nullable=True
    )
    refunded_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    refund_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    @property
    def fee_total(self) -> Decimal:
        return self.processing_fee + self.gateway_fee + self.bank_fee

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from hotel_modules.billing.models import (
            FeeBreakdown,
            Payment,
            PaymentMethod,
            PaymentStatus,
            PaymentType,
        )

        return Payment(
            id=self.id,
            hotel_id=self.hotel_id,
            number=self.number,
            type=PaymentType(self.type),
            method=PaymentMethod(self.method),
            amount=self.amount,
            currency=self.currency,
            customer_ref=self.customer_ref,
            fees=FeeBreakdown(self.processing_fee, self.gateway_fee, self.bank_fee),
            net_amount=self.net_amount,
            status=PaymentStatus(self.status),
            payment_date=self.payment_date,
            invoice_id=self.invoice_id,
            booking_id=self.booking_id,
            reference=self.reference,
            journal_entry_id=self.journal_entry_id,
            reconciled=self.reconciled,
            original_payment_id=self.original_payment_id,
            refunded_amount=self.refunded_amount,
        )

    def __repr__(self) -> str:
        return f"<PaymentModel {self.number} {self.type} {self.amount} [{self.status}]>"
