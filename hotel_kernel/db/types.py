"""
Module: hotel_kernel.db.types
Responsibility: Column types for financial data. Monetary amounts and rates
    are persisted as canonical decimal strings so that every backend
    round-trips them exactly.
Architecture position: Kernel > DB. May be imported by models/ and services/.
    MUST NOT import from either.

Invariants enforced:
    - No floats: DecimalString refuses float binds.
    - Amounts are written with a fixed number of fractional digits
      (4 for money, 10 for exchange rates), banker's rounding.

Failure modes:
    - TypeError on a float bind parameter.
    - decimal.InvalidOperation on a corrupt stored string.
"""

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Annotated

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

from hotel_kernel.domain.currency import CurrencyRegistry
from hotel_kernel.exceptions import InvalidCurrencyError

MONEY_DECIMAL_PLACES = 4
RATE_DECIMAL_PLACES = 10


class DecimalString(TypeDecorator):
    """
    Decimal stored as its canonical fixed-point string.

    Contract:
        ``DecimalString(places)`` quantizes on bind and returns ``Decimal`` on
        load. ``None`` passes through.
    """

    impl = String(48)
    cache_ok = True

    def __init__(self, places: int = MONEY_DECIMAL_PLACES, *args, **kwargs):
        self.places = places
        super().__init__(*args, **kwargs)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("Refusing to persist a float amount; use Decimal")
        quantum = Decimal(1).scaleb(-self.places)
        return format(Decimal(value).quantize(quantum, rounding=ROUND_HALF_EVEN), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


# Annotated aliases used in model declarations
MoneyAmount = Annotated[Decimal, DecimalString(MONEY_DECIMAL_PLACES)]
Rate = Annotated[Decimal, DecimalString(RATE_DECIMAL_PLACES)]
CurrencyCode = Annotated[str, String(3)]
HotelId = Annotated[str, String(64)]
ShortCode = Annotated[str, String(50)]
LongText = Annotated[str, String(4000)]


def validate_currency(currency: str) -> str:
    """
    Normalise and validate a currency code.

    Returns the uppercase code; raises InvalidCurrencyError otherwise.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))
    normalized = currency.upper().strip()
    if not CurrencyRegistry.is_valid(normalized):
        raise InvalidCurrencyError(currency)
    return normalized
