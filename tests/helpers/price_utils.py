from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal

from services.price_service import PriceService
from services.price_store import PriceStore
from services.price_types import PriceQuote


class InMemoryPriceStore(PriceStore):
    def __init__(self) -> None:
        self._quotes: dict[str, dict[date, PriceQuote]] = defaultdict(dict)

    def write(self, quote: PriceQuote) -> None:
        self._quotes[quote.symbol.upper()][quote.day] = quote

    def read_history(self, symbol: str) -> list[PriceQuote]:
        by_day = self._quotes.get(symbol.upper(), {})
        return [by_day[day] for day in sorted(by_day)]


def record_prices(service: PriceService, symbol: str, prices: dict[str, str]) -> None:
    """Record ``{"YYYY-MM-DD": "price"}`` closes for ``symbol``."""
    for day, price in prices.items():
        service.record(symbol, date.fromisoformat(day), Decimal(price), source="test")
