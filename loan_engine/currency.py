"""
Currency Module

Handles ISO 4217 currency codes and proper Decimal precision for loan
amounts. NEVER uses float for monetary values. Money in this engine is
never negative: principals, contributions and installments are all sizes.
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN, getcontext
from dataclasses import dataclass
from enum import Enum

from .errors import InvalidAmount, CurrencyMismatch

# Set global decimal context for financial precision
getcontext().prec = 28  # High precision for financial calculations


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places
    CAD = ("CAD", 2)  # Canadian Dollar, 2 decimal places
    CHF = ("CHF", 2)  # Swiss Franc, 2 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01 for GBP"""
        return Decimal('0.1') ** self.precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code (case-insensitive)"""
        try:
            return cls[code.strip().upper()]
        except (KeyError, AttributeError):
            raise InvalidAmount(f"Unsupported currency code: {code!r}")


@dataclass(frozen=True)
class Money:
    """
    Immutable, non-negative money representation with currency and
    proper precision. Every transformation returns a new instance.
    """
    amount: Decimal
    currency: Currency = Currency.GBP

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = quantize(self.amount, self.currency)
        if rounded < Decimal('0'):
            raise InvalidAmount(f"Money amount cannot be negative: {rounded}")
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency = Currency.GBP) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {verb} Money and {type(other).__name__}")
        if self.currency != other.currency:
            raise CurrencyMismatch(
                f"Cannot {verb} {self.currency.code} and {other.currency.code}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        if other.amount > self.amount:
            raise InvalidAmount(
                f"Subtracting {other.to_string()} from {self.to_string()} would go negative"
            )
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __truediv__(self, divisor: Decimal) -> 'Money':
        if not isinstance(divisor, Decimal):
            divisor = Decimal(str(divisor))
        return Money(self.amount / divisor, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        else:
            return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"

    def __str__(self) -> str:
        return self.to_string()


def quantize(value: Decimal, currency: Currency, rounding: str = ROUND_HALF_UP) -> Decimal:
    """
    Round a decimal to currency precision

    Args:
        value: Decimal to round
        currency: Currency defining precision
        rounding: Decimal rounding mode (half-up by default)

    Returns:
        Properly rounded Decimal
    """
    return value.quantize(currency.minor_unit, rounding=rounding)


def truncate(value: Decimal, currency: Currency) -> Decimal:
    """Drop digits below the currency's minor unit"""
    return quantize(value, currency, rounding=ROUND_DOWN)


def sum_money(values, currency: Currency) -> Money:
    """Sum Money values, starting from zero in the given currency"""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total
