"""
Values -- Immutable, self-validating money value object.

Responsibility:
    Money pairs a fixed-point Decimal amount with a 3-letter currency code.
    All totals in the ledger, invoices, payments and settlements are computed
    through it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other layer. No outward dependencies except
    hotel_kernel.domain.currency and hotel_kernel.exceptions.

Invariants enforced:
    - amount is always a Decimal. Float inputs are parsed through ``str()`` so
      binary floating-point noise never enters the arithmetic.
    - Arithmetic and comparison between two Money values require the same
      currency; a mismatch raises CurrencyMismatchError.
    - Equality and ordering absorb rounding noise with a tolerance of 1e-4.
    - Amounts persist with 4 fractional digits (``quantized()``); rounding to
      2 digits is banker's rounding and only happens at settlement/display
      boundaries (``round()``).

Failure modes:
    - InvalidAmountError on non-numeric, NaN or infinite amounts.
    - InvalidCurrencyError on unknown currency codes.
    - CurrencyMismatchError on heterogeneous operations.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Iterable

from hotel_kernel.domain.currency import CurrencyRegistry
from hotel_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidCurrencyError,
)

TOLERANCE = Decimal("0.0001")
STORAGE_PLACES = 4
DIVISION_PLACES = 6
DISPLAY_PLACES = 2

_STORAGE_QUANTUM = Decimal(1).scaleb(-STORAGE_PLACES)
_DIVISION_QUANTUM = Decimal(1).scaleb(-DIVISION_PLACES)


def to_decimal(value: Any, field: str | None = None) -> Decimal:
    """
    Convert an external numeric input to Decimal.

    Floats are routed through ``str()``; ``bool`` is rejected because it is
    an ``int`` subclass and never a meaningful amount.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(f"Invalid amount: {value!r}", field=field)
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise InvalidAmountError(f"Invalid amount: {value!r}", field=field) from exc
    if not result.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value!r}", field=field)
    return result


def quantize_amount(value: Decimal, places: int = STORAGE_PLACES) -> Decimal:
    """Banker's rounding of ``value`` to ``places`` fractional digits."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_EVEN)


@dataclass(frozen=True, slots=True, eq=False)
class Money:
    """
    Monetary amount value object.

    Contract:
        Constructed from (str | int | Decimal | float, currency). The amount and
        its currency are never separated.

    Guarantees:
        - Immutable.
        - ``a == b`` iff same currency and ``|a - b| <= 1e-4``.
        - Unhashable, since tolerant equality admits no consistent hash.
        - ``to_dict``/``from_dict`` preserve value and currency exactly.

    Non-goals:
        - No currency conversion (see ExchangeRateService.convert).
        - No implicit rounding; callers call ``round()`` or ``quantized()``.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount, field="amount"))
        code = self.currency.upper().strip() if isinstance(self.currency, str) else ""
        if not CurrencyRegistry.is_valid(code):
            raise InvalidCurrencyError(str(self.currency))
        object.__setattr__(self, "currency", code)

    # -- construction ------------------------------------------------------

    @classmethod
    def of(cls, amount: Any, currency: str) -> Money:
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(amount=Decimal("0"), currency=currency)

    @classmethod
    def total(cls, items: Iterable[Money], currency: str) -> Money:
        """Sum of ``items``; zero in ``currency`` when empty."""
        result = cls.zero(currency)
        for item in items:
            result = result.add(item)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> Money:
        return cls(amount=Decimal(data["amount"]), currency=data["currency"])

    def to_dict(self) -> dict[str, str]:
        return {"amount": str(self.amount), "currency": self.currency}

    # -- predicates --------------------------------------------------------

    @property
    def is_zero(self) -> bool:
        return abs(self.amount) <= TOLERANCE

    @property
    def is_positive(self) -> bool:
        return self.amount > TOLERANCE

    @property
    def is_negative(self) -> bool:
        return self.amount < -TOLERANCE

    # -- arithmetic --------------------------------------------------------

    def _check(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def add(self, other: Money) -> Money:
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def sub(self, other: Money) -> Money:
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def mul(self, factor: Any) -> Money:
        return Money(self.amount * to_decimal(factor, field="factor"), self.currency)

    def div(self, divisor: Any) -> Money:
        """Divide by a scalar, rounding the quotient to 6 fractional digits."""
        d = to_decimal(divisor, field="divisor")
        if d == 0:
            raise InvalidAmountError("Division by zero", field="divisor")
        return Money(
            (self.amount / d).quantize(_DIVISION_QUANTUM, rounding=ROUND_HALF_EVEN),
            self.currency,
        )

    def neg(self) -> Money:
        return Money(-self.amount, self.currency)

    def abs(self) -> Money:
        return Money(abs(self.amount), self.currency)

    def round(self, n: int = DISPLAY_PLACES) -> Money:
        """Banker's rounding to ``n`` fractional digits."""
        return Money(quantize_amount(self.amount, n), self.currency)

    def quantized(self) -> Money:
        """Storage form: 4 fractional digits."""
        return Money(
            self.amount.quantize(_STORAGE_QUANTUM, rounding=ROUND_HALF_EVEN),
            self.currency,
        )

    def non_negative(self) -> Money:
        """``max(0, self)``."""
        return self if self.amount > 0 else Money.zero(self.currency)

    # -- comparison --------------------------------------------------------

    def eq(self, other: Money) -> bool:
        self._check(other)
        return abs(self.amount - other.amount) <= TOLERANCE

    def lt(self, other: Money) -> bool:
        self._check(other)
        return self.amount < other.amount - TOLERANCE

    def le(self, other: Money) -> bool:
        self._check(other)
        return self.amount <= other.amount + TOLERANCE

    def gt(self, other: Money) -> bool:
        self._check(other)
        return self.amount > other.amount + TOLERANCE

    def ge(self, other: Money) -> bool:
        self._check(other)
        return self.amount >= other.amount - TOLERANCE

    # -- operator protocol -------------------------------------------------

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return self.sub(other)

    def __mul__(self, factor: Any) -> Money:
        if isinstance(factor, Money):
            return NotImplemented
        return self.mul(factor)

    __rmul__ = __mul__

    def __truediv__(self, divisor: Any) -> Money:
        if isinstance(divisor, Money):
            return NotImplemented
        return self.div(divisor)

    def __neg__(self) -> Money:
        return self.neg()

    def __abs__(self) -> Money:
        return self.abs()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return other.currency == self.currency and self.eq(other)

    # Tolerant equality is not transitive, so no hash can agree with it.
    __hash__ = None  # type: ignore[assignment]

    def __lt__(self, other: Money) -> bool:
        return self.lt(other)

    def __le__(self, other: Money) -> bool:
        return self.le(other)

    def __gt__(self, other: Money) -> bool:
        return self.gt(other)

    def __ge__(self, other: Money) -> bool:
        return self.ge(other)

    def __str__(self) -> str:
        return f"{self.round().amount} {self.currency}"

    def __repr__(self) -> str:
        return f"Money({str(self.amount)!r}, {self.currency!r})"
