from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol

PricePoint = tuple[date, Decimal]


class PriceOracle(Protocol):
    """Lookup interface for security prices in the portfolio base currency.

    Coverage may be partial: callers must handle ``None`` and short histories.
    """

    def latest_price(self, symbol: str) -> Decimal | None: ...

    def price_history(self, symbol: str, start: date, end: date) -> list[PricePoint]:
        """Ascending points up to ``end``; may start with the last point before ``start``."""
        ...


def price_at_or_before(history: list[PricePoint], day: date) -> Decimal | None:
    """Latest price on or before ``day`` from an ascending history."""
    price: Decimal | None = None
    for point_day, point_price in history:
        if point_day > day:
            break
        price = point_price
    return price
