"""
Billing module: invoices, payments, refunds and bank reconciliation flags.

Every ledger effect goes through ``hotel_modules.posting.ModulePoster``.
"""

from hotel_modules.billing.config import BillingConfig
from hotel_modules.billing.models import (
    Customer,
    DiscountInput,
    FeeBreakdown,
    InvoiceLineInput,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
)
from hotel_modules.billing.service import InvoiceService, PaymentService

__all__ = [
    "BillingConfig",
    "Customer",
    "DiscountInput",
    "FeeBreakdown",
    "InvoiceLineInput",
    "InvoiceService",
    "InvoiceStatus",
    "PaymentMethod",
    "PaymentService",
    "PaymentStatus",
    "PaymentType",
]
