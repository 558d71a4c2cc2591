"""
Settlement Configuration Schema.

Defines the structure and sensible defaults for settlement numbering,
default terms, and the authorization and high-value thresholds. Actual
values are supplied by the deployment at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Self

from hotel_kernel.domain.values import to_decimal
from hotel_kernel.logging_config import get_logger
from hotel_modules.profiles import AccountRole
from hotel_modules.settlement.models import SettlementTerms

logger = get_logger("modules.settlement.config")


@dataclass
class SettlementConfig:
    """
    Configuration schema for the settlement module.

        config = SettlementConfig(default_due_days=14)
    """

    # Role -> account code overrides (defaults cover the seeded chart)
    account_mappings: dict[AccountRole, str] = field(default_factory=dict)

    # Numbering: SET + YYYYMMDD + 4-digit daily counter
    number_prefix: str = "SET"

    default_terms: SettlementTerms = field(default_factory=SettlementTerms)
    default_due_days: int = 7

    # Discounts and refunds above this magnitude need an approver role
    authorization_threshold: Decimal = Decimal("50000")

    # is_high_value flag threshold on final_amount
    high_value_threshold: Decimal = Decimal("50000")

    # Record an inbound in-person communication for each payment
    log_payment_communications: bool = True

    def __post_init__(self):
        if self.default_due_days < 0:
            raise ValueError("default_due_days cannot be negative")
        if not self.number_prefix or not self.number_prefix.strip():
            raise ValueError("number_prefix cannot be empty")
        self.authorization_threshold = to_decimal(self.authorization_threshold, field="authorization_threshold")
        self.high_value_threshold = to_decimal(self.high_value_threshold, field="high_value_threshold")
        if isinstance(self.default_terms, dict):
            self.default_terms = SettlementTerms(**self.default_terms)
        self.account_mappings = {AccountRole(k): str(v) for k, v in self.account_mappings.items()}
        logger.debug(
            "settlement_config_initialized",
            extra={
                "default_due_days": self.default_due_days,
                "authorization_threshold": str(self.authorization_threshold),
                "high_value_threshold": str(self.high_value_threshold),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        logger.info(
            "settlement_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)
