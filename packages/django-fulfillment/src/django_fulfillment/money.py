"""Money value object for order totals and snapshot prices."""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Iterable, Union

from django_fulfillment.exceptions import CurrencyMismatchError, ValidationError


# Settlement precision per currency
CURRENCY_DECIMALS = {
    'RUB': 2, 'USD': 2, 'EUR': 2, 'GBP': 2,
    'UAH': 2, 'KZT': 2, 'TRY': 2,
    'JPY': 0, 'KRW': 0,
    'USDT': 2, 'BTC': 8, 'TON': 9,
}


@dataclass(frozen=True)
class Money:
    """
    Immutable, currency-tagged amount.

    Amounts are always Decimal. Floats are converted through str() so that
    19.99 stays 19.99.

    Usage:
        price = Money("199.00", "RUB")
        line_total = price * 3           # Money(Decimal("597.00"), "RUB")
        total = Money.sum([a, b], "RUB")
    """
    amount: Decimal
    currency: str

    def __post_init__(self):
        """Normalize amount to Decimal and currency to upper case."""
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, 'amount', Decimal(str(self.amount)))
            except InvalidOperation as e:
                raise ValidationError(f"Invalid amount: {self.amount!r}") from e
        if not self.currency:
            raise ValidationError("Money requires a currency code")
        object.__setattr__(self, 'currency', self.currency.upper())

    @classmethod
    def zero(cls, currency: str) -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def sum(cls, values: Iterable['Money'], currency: str) -> 'Money':
        """Add up Money values, all of which must be in `currency`."""
        total = cls.zero(currency)
        for value in values:
            total = total + value
        return total

    def quantized(self) -> 'Money':
        """Round to the currency's settlement precision (banker's rounding)."""
        decimals = CURRENCY_DECIMALS.get(self.currency, 2)
        return Money(
            self.amount.quantize(Decimal(10) ** -decimals, rounding=ROUND_HALF_EVEN),
            self.currency,
        )

    def __add__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot add {other.currency} to {self.currency}"
            )
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise CurrencyMismatchError(
                f"Cannot subtract {other.currency} from {self.currency}"
            )
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor: Union[Decimal, int]) -> 'Money':
        """Multiply by a quantity. Floats are rejected to keep arithmetic exact."""
        if isinstance(factor, float):
            raise TypeError("Money can only be multiplied by int or Decimal")
        return Money(self.amount * Decimal(factor), self.currency)

    def __rmul__(self, factor: Union[Decimal, int]) -> 'Money':
        return self.__mul__(factor)

    def is_negative(self) -> bool:
        return self.amount < 0

    def __str__(self):
        return f"{self.quantized().amount} {self.currency}"
