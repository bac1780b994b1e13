"""
Values -- Immutable, self-validating monetary value objects.

Responsibility:
    Provides Currency and Money, the only representation of monetary
    amounts anywhere in the ledger, plus the percentage helper every
    derived utilization figure goes through.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module.

Invariants enforced:
    - Amounts are Decimal, never float (floats are rejected outright so
      binary rounding drift cannot enter a sum of thousands of expenses)
    - Currency codes are validated at construction time
    - Arithmetic and comparison never mix currencies

Failure modes:
    - InvalidCurrencyError on an unknown currency code
    - CurrencyMismatchError when arithmetic mixes currencies
    - TypeError when constructed from a float
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from budget_kernel.domain.currency import CurrencyRegistry
from budget_kernel.exceptions import CurrencyMismatchError

HUNDRED = Decimal("100")
PERCENT_QUANTUM = Decimal("0.01")


def _to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary values must not be built from {type(value).__name__}")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Guarantees:
        - Immutable and hashable
        - code is uppercase, stripped, and registered in CurrencyRegistry
    """

    code: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", CurrencyRegistry.validate(self.code))

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with its Currency -- they are NEVER separated.
        Signed: derived figures such as truly_available_amount may go
        negative when a budget is overcommitted.

    Guarantees:
        - Immutable and hashable
        - Arithmetic and ordering raise CurrencyMismatchError across currencies
        - No implicit rounding; callers use round() or percentage_of()
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _to_decimal(self.amount))
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | int | str, currency: str | Currency) -> Money:
        """Factory method for creating Money."""
        return cls(amount=_to_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        return cls(amount=Decimal("0"), currency=currency)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Round to the currency's ISO 4217 decimal places."""
        exponent = Decimal(1).scaleb(-self.currency.decimal_places)
        return Money(self.amount.quantize(exponent, rounding=rounding), self.currency)

    def percentage_of(self, whole: Money) -> Decimal:
        """
        Express this amount as a percentage of ``whole``.

        Rounded to 2 decimal places, ROUND_HALF_UP.  A zero ``whole``
        yields 0 (percentages against an empty budget are defined as 0).
        """
        self._check_currency(whole, "compare")
        if whole.amount == 0:
            return Decimal("0.00")
        return (HUNDRED * self.amount / whole.amount).quantize(
            PERCENT_QUANTUM, rounding=ROUND_HALF_UP
        )

    def _check_currency(self, other: Money, operation: str) -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                self.currency.code, other.currency.code, operation
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __abs__(self) -> Money:
        return Money(abs(self.amount), self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        """Multiply by a scalar."""
        if isinstance(factor, Money):
            return NotImplemented
        return Money(self.amount * _to_decimal(factor), self.currency)

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"


def sum_money(amounts: Iterable[Money], currency: str | Currency) -> Money:
    """Sum ``amounts``; an empty iterable yields zero in ``currency``."""
    total = Money.zero(currency)
    for amount in amounts:
        total = total + amount
    return total
