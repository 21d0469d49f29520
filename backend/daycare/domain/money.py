from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
MINOR_UNITS_PER_MAJOR = 100


def quantize_amount(value: Decimal | str | int) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """Fixed-point amount in a tenant's major currency unit."""

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", quantize_amount(self.amount))
        object.__setattr__(self, "currency", self.currency.upper())

    def _check_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise ValueError(f"Currency mismatch: {self.currency} != {other.currency}")

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def to_minor_units(self) -> int:
        minor = self.amount * MINOR_UNITS_PER_MAJOR
        return int(minor.to_integral_value(rounding=ROUND_HALF_UP))

    @classmethod
    def from_minor_units(cls, minor: int, currency: str) -> "Money":
        return cls(Decimal(minor) / MINOR_UNITS_PER_MAJOR, currency)
