"""
ExchangeRateService -- dated currency conversion.

Responsibility:
    Store daily rates and resolve the rate effective on a transaction date.

Invariants enforced:
    - Resolution uses the latest rate with effective_date <= the
      transaction date; the posting date is never consulted.
    - A missing direct pair falls back to the inverse of the reverse pair.
    - rate > 0.

Failure modes:
    - ExchangeRateNotFoundError when neither direction has a rate on or
      before the date.
    - InvalidAmountError for a non-positive rate.
"""

from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Mapping

from sqlalchemy import select

from hotel_kernel.db.types import RATE_DECIMAL_PLACES, validate_currency
from hotel_kernel.domain.values import Money, to_decimal
from hotel_kernel.exceptions import ExchangeRateNotFoundError, InvalidAmountError
from hotel_kernel.logging_config import get_logger
from hotel_kernel.models.exchange_rate import ExchangeRate
from hotel_kernel.services.base import BaseService

logger = get_logger("services.exchange_rate")

_RATE_QUANTUM = Decimal(1).scaleb(-RATE_DECIMAL_PLACES)


class ExchangeRateService(BaseService[ExchangeRate]):

    def upsert_rate(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal | str,
        effective_date: date,
        actor_id: str,
        source: str | None = None,
    ) -> ExchangeRate:
        from_currency = validate_currency(from_currency)
        to_currency = validate_currency(to_currency)
        value = to_decimal(rate, field="rate")
        if value <= 0:
            raise InvalidAmountError(f"Exchange rate must be positive: {rate}", field="rate")

        existing = self.session.execute(
            select(ExchangeRate).where(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.effective_date == effective_date,
            )
        ).scalar_one_or_none()
        if existing is None:
            existing = ExchangeRate(
                from_currency=from_currency,
                to_currency=to_currency,
                rate=value,
                effective_date=effective_date,
                source=source,
                created_by_id=actor_id,
            )
            self.session.add(existing)
        else:
            existing.rate = value
            existing.source = source
            existing.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "exchange_rate_upserted",
            extra={
                "from_currency": from_currency,
                "to_currency": to_currency,
                "rate": value,
                "effective_date": effective_date,
            },
        )
        return existing

    def upsert_rates(
        self,
        base_currency: str,
        rates: Mapping[str, Decimal | str],
        effective_date: date,
        actor_id: str,
        source: str | None = None,
    ) -> list[ExchangeRate]:
        """Store base->target rates for one day."""
        return [
            self.upsert_rate(base_currency, target, rate, effective_date, actor_id, source)
            for target, rate in rates.items()
            if target.upper() != base_currency.upper()
        ]

    def _latest(self, from_currency: str, to_currency: str, as_of: date) -> ExchangeRate | None:
        return self.session.execute(
            select(ExchangeRate)
            .where(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.effective_date <= as_of,
            )
            .order_by(ExchangeRate.effective_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def get_rate(self, from_currency: str, to_currency: str, as_of: date) -> Decimal:
        from_currency = validate_currency(from_currency)
        to_currency = validate_currency(to_currency)
        if from_currency == to_currency:
            return Decimal("1")
        direct = self._latest(from_currency, to_currency, as_of)
        if direct is not None:
            return direct.rate
        reverse = self._latest(to_currency, from_currency, as_of)
        if reverse is not None:
            return (Decimal("1") / reverse.rate).quantize(_RATE_QUANTUM, rounding=ROUND_HALF_EVEN)
        raise ExchangeRateNotFoundError(from_currency, to_currency, as_of.isoformat())

    def convert(self, amount: Money, to_currency: str, as_of: date) -> Money:
        rate = self.get_rate(amount.currency, to_currency, as_of)
        return Money(amount.amount * rate, to_currency).quantized()
