from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# Rounding noise from upstream statement parsing, not a domain tolerance.
AMOUNT_TOLERANCE = Decimal("0.01")
QUANTITY_TOLERANCE = Decimal("0.0001")


def within_tolerance(a: Decimal, b: Decimal, epsilon: Decimal) -> bool:
    return abs(a - b) <= epsilon


@dataclass(frozen=True)
class ToleranceRange:
    """Closed interval ``[center - epsilon, center + epsilon]``."""

    center: Decimal
    epsilon: Decimal

    @property
    def low(self) -> Decimal:
        return self.center - self.epsilon

    @property
    def high(self) -> Decimal:
        return self.center + self.epsilon

    def contains(self, value: Decimal) -> bool:
        return within_tolerance(value, self.center, self.epsilon)


def amount_range(amount: Decimal) -> ToleranceRange:
    return ToleranceRange(center=amount, epsilon=AMOUNT_TOLERANCE)


def quantity_range(quantity: Decimal) -> ToleranceRange:
    return ToleranceRange(center=quantity, epsilon=QUANTITY_TOLERANCE)


__all__ = [
    "AMOUNT_TOLERANCE",
    "QUANTITY_TOLERANCE",
    "ToleranceRange",
    "amount_range",
    "quantity_range",
    "within_tolerance",
]
