from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class PriceQuote:
    """Closing price of a symbol on a calendar day."""

    day: date
    symbol: str
    price: Decimal
    source: str


__all__ = ["PriceQuote"]
