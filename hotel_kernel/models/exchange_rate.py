"""
Module: hotel_kernel.models.exchange_rate
Responsibility: Dated exchange rates used to express foreign-currency lines
    in an account's currency.
Architecture position: Kernel > Models.

Invariants enforced:
    - (from_currency, to_currency, effective_date) is unique; a later upsert
      for the same day replaces the rate.
    - rate > 0 (validated by ExchangeRateService).
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hotel_kernel.db.base import TrackedBase
from hotel_kernel.db.types import RATE_DECIMAL_PLACES, DecimalString


class ExchangeRate(TrackedBase):
    """Rate to convert one unit of from_currency into to_currency."""

    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint(
            "from_currency", "to_currency", "effective_date",
            name="uq_exchange_rates_pair_date",
        ),
        Index("idx_exchange_rates_lookup", "from_currency", "to_currency", "effective_date"),
    )

    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)

    rate: Mapped[Decimal] = mapped_column(DecimalString(RATE_DECIMAL_PLACES), nullable=False)

    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    source: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<ExchangeRate {self.from_currency}->{self.to_currency} {self.rate} @ {self.effective_date}>"
