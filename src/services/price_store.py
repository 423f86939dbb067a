from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Protocol

from .price_types import PriceQuote


class PriceStore(Protocol):
    def write(self, quote: PriceQuote) -> None: ...

    def read_history(self, symbol: str) -> list[PriceQuote]: ...


class JsonlPriceStore(PriceStore):
    """Append-only JSONL snapshots, one file per symbol.

    A later line for the same day overrides an earlier one.
    """

    def __init__(self, *, root_dir: Path) -> None:
        self.root_dir = root_dir

    def write(self, quote: PriceQuote) -> None:
        path = self._file_path(quote.symbol)
        path.parent.mkdir(parents=True, exist_ok=True)
        record = {
            "day": quote.day.isoformat(),
            "symbol": quote.symbol.upper(),
            "price": str(quote.price),
            "source": quote.source,
        }
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record))
            handle.write("\n")

    def read_history(self, symbol: str) -> list[PriceQuote]:
        path = self._file_path(symbol)
        if not path.exists():
            return []

        by_day: dict[date, PriceQuote] = {}
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                quote = PriceQuote(
                    day=date.fromisoformat(record["day"]),
                    symbol=record["symbol"],
                    price=Decimal(record["price"]),
                    source=record.get("source", "unknown"),
                )
                by_day[quote.day] = quote

        return [by_day[day] for day in sorted(by_day)]

    def _file_path(self, symbol: str) -> Path:
        safe_symbol = symbol.upper().replace("^", "_").replace("/", "_")
        return self.root_dir / f"{safe_symbol}.jsonl"


__all__ = ["JsonlPriceStore", "PriceStore"]
