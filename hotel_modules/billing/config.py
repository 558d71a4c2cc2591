"""
Billing Configuration Schema.

Defines the structure and sensible defaults for invoice and payment
settings. Actual values are supplied by the deployment at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Self

from hotel_kernel.logging_config import get_logger
from hotel_modules.profiles import AccountRole

logger = get_logger("modules.billing.config")


@dataclass
class BillingConfig:
    """
    Configuration schema for invoices and payments.

        config = BillingConfig(default_payment_terms_days=15)
    """

    # Role -> account code overrides (defaults cover the seeded chart)
    account_mappings: dict[AccountRole, str] = field(default_factory=dict)

    # Numbering
    invoice_prefix: str = "INV"
    payment_prefix: str = "PAY"

    # Terms
    default_payment_terms_days: int = 30

    # Payments against invoices
    allow_invoice_overpayment: bool = False

    # Run the rules engine on payments and refunds
    apply_payment_rules: bool = True

    def __post_init__(self):
        if self.default_payment_terms_days < 0:
            raise ValueError("default_payment_terms_days cannot be negative")
        for prefix in (self.invoice_prefix, self.payment_prefix):
            if not prefix or not prefix.strip():
                raise ValueError("document prefixes cannot be empty")
        self.account_mappings = {AccountRole(k): str(v) for k, v in self.account_mappings.items()}
        logger.debug(
            "billing_config_initialized",
            extra={
                "default_payment_terms_days": self.default_payment_terms_days,
                "mapped_roles": sorted(r.value for r in self.account_mappings),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "billing_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
