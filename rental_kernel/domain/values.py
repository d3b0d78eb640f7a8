"""
Values -- the Money ledger value.

Responsibility:
    Exact fixed-point money for every amount the engine computes or stores:
    line totals, subtotal, tax, discount, deposit, late and damage fees,
    invoice balances and payments.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Imported by pricing,
    the services and the DTOs.

Invariants enforced:
    - Amounts are Decimal with exactly two fractional digits.  Binary floats
      are rejected at construction; so are values carrying more than two
      fractional digits (truncation is never silent).
    - Addition, subtraction and comparison are exact.  Multiplication by a
      scalar and percentages round to the cent AFTER the multiply, using
      banker's rounding (ROUND_HALF_EVEN).

Failure modes:
    - TypeError when constructed from float or combined with a non-Money.
    - ValueError when constructed from a malformed value or one with more
      than two fractional digits.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Iterable

CENT = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, float):
        raise TypeError(f"Money does not accept float values: {value!r}")
    if isinstance(value, bool):
        raise TypeError("Money does not accept bool values")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Invalid money amount: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported money amount type: {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"Money amount must be finite, got {value!r}")
    return result


@dataclass(frozen=True, slots=True)
class Money:
    """
    Two-decimal monetary amount.

    Contract:
        Construct with ``Money("12.50")``, ``Money(Decimal("12.5"))`` or
        ``Money(12)``.  Use ``Money.quantize()`` when a computed value may
        carry more precision and must be rounded.

    Guarantees:
        - Immutable and hashable.
        - ``amount`` is always a Decimal quantized to the cent.

    Non-goals:
        - No currency: the engine is single-currency.
    """

    amount: Decimal

    def __post_init__(self) -> None:
        amount = _to_decimal(self.amount)
        quantized = amount.quantize(CENT, rounding=ROUND_HALF_EVEN)
        if quantized != amount:
            raise ValueError(
                f"Money supports at most two fractional digits, got {amount}; "
                "use Money.quantize() to round explicitly"
            )
        object.__setattr__(self, "amount", quantized)

    @classmethod
    def quantize(cls, value: Decimal | int | str) -> Money:
        """Round any exact value to the cent (ROUND_HALF_EVEN)."""
        return cls(_to_decimal(value).quantize(CENT, rounding=ROUND_HALF_EVEN))

    @classmethod
    def zero(cls) -> Money:
        return cls(Decimal("0.00"))

    @classmethod
    def from_minor_units(cls, minor: int) -> Money:
        """Build from an integer count of minor units (e.g. paise, cents)."""
        if isinstance(minor, bool) or not isinstance(minor, int):
            raise TypeError(f"Minor units must be an int, got {type(minor).__name__}")
        return cls(Decimal(minor) / MINOR_UNITS_PER_MAJOR)

    @classmethod
    def total(cls, values: Iterable[Money]) -> Money:
        result = cls.zero()
        for value in values:
            result = result + value
        return result

    @property
    def minor_units(self) -> int:
        return int(self.amount * MINOR_UNITS_PER_MAJOR)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def percent(self, rate: Decimal | int | str) -> Money:
        """``self × rate / 100`` rounded to the cent after the multiply."""
        return Money.quantize(self.amount * _to_decimal(rate) / 100)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.amount + other.amount)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.amount - other.amount)

    def __neg__(self) -> Money:
        return Money(-self.amount)

    def __mul__(self, factor: Decimal | int) -> Money:
        """Multiply by a scalar; the product is rounded to the cent."""
        if isinstance(factor, (float, bool)) or not isinstance(factor, (int, Decimal)):
            return NotImplemented
        return Money.quantize(self.amount * factor)

    def __rmul__(self, factor: Decimal | int) -> Money:
        return self.__mul__(factor)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount >= other.amount

    def __str__(self) -> str:
        return str(self.amount)

    def __repr__(self) -> str:
        return f"Money({str(self.amount)!r})"
