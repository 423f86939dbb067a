from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

from services.price_store import JsonlPriceStore
from services.price_types import PriceQuote


def _quote(symbol: str, day: str, price: str, source: str = "test") -> PriceQuote:
    return PriceQuote(day=date.fromisoformat(day), symbol=symbol, price=Decimal(price), source=source)


def test_store_returns_history_sorted_by_day(tmp_path: Path) -> None:
    store = JsonlPriceStore(root_dir=tmp_path)
    store.write(_quote("AAPL", "2024-01-03", "185.00"))
    store.write(_quote("AAPL", "2024-01-02", "184.25"))

    history = store.read_history("AAPL")

    assert [quote.day for quote in history] == [date(2024, 1, 2), date(2024, 1, 3)]
    assert history[0].price == Decimal("184.25")


def test_later_write_for_same_day_wins(tmp_path: Path) -> None:
    store = JsonlPriceStore(root_dir=tmp_path)
    store.write(_quote("AAPL", "2024-01-02", "184.25", source="stale"))
    store.write(_quote("AAPL", "2024-01-02", "185.10", source="manual"))

    (quote,) = store.read_history("aapl")

    assert quote.price == Decimal("185.10")
    assert quote.source == "manual"


def test_index_symbols_map_to_safe_file_names(tmp_path: Path) -> None:
    store = JsonlPriceStore(root_dir=tmp_path / "nested")
    store.write(_quote("^GSPC", "2024-01-02", "4742.83"))

    assert (tmp_path / "nested" / "_GSPC.jsonl").exists()
    assert store.read_history("^GSPC")[0].price == Decimal("4742.83")


def test_unknown_symbol_has_empty_history(tmp_path: Path) -> None:
    assert JsonlPriceStore(root_dir=tmp_path).read_history("NOPE") == []
