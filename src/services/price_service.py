from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

from domain.pricing import PricePoint

from .price_store import JsonlPriceStore, PriceStore
from .price_types import PriceQuote


class PriceService:
    """Price oracle over locally stored snapshots; never fetches."""

    def __init__(self, store: PriceStore) -> None:
        self.store = store

    def record(self, symbol: str, day: date, price: Decimal, source: str = "manual") -> PriceQuote:
        quote = PriceQuote(day=day, symbol=symbol.upper(), price=price, source=source)
        self.store.write(quote)
        return quote

    def latest_price(self, symbol: str) -> Decimal | None:
        history = self.store.read_history(symbol)
        if not history:
            return None
        return history[-1].price

    def price_history(self, symbol: str, start: date, end: date) -> list[PricePoint]:
        """Points within ``[start, end]``, preceded by the last point before ``start`` if any."""
        points: list[PricePoint] = []
        carried: PricePoint | None = None
        for quote in self.store.read_history(symbol):
            if quote.day < start:
                carried = (quote.day, quote.price)
            elif quote.day <= end:
                points.append((quote.day, quote.price))
        if carried is not None:
            points.insert(0, carried)
        return points


def build_default_service(cache_dir: Path) -> PriceService:
    return PriceService(store=JsonlPriceStore(root_dir=cache_dir))


__all__ = ["PriceService", "build_default_service"]
