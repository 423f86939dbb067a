from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

from domain.pricing import price_at_or_before
from services.price_service import PriceService, build_default_service
from tests.helpers.price_utils import record_prices


def test_record_and_latest_price(tmp_path: Path) -> None:
    service = build_default_service(tmp_path)

    service.record("vti", date(2024, 1, 2), Decimal("236.10"))
    service.record("VTI", date(2024, 1, 3), Decimal("235.40"))

    assert service.latest_price("VTI") == Decimal("235.40")
    assert service.latest_price("BND") is None


def test_price_history_carries_last_point_before_start(price_service: PriceService) -> None:
    record_prices(
        price_service,
        "AAPL",
        {"2023-12-28": "190", "2023-12-29": "192", "2024-01-02": "185", "2024-02-01": "186"},
    )

    history = price_service.price_history("AAPL", date(2024, 1, 1), date(2024, 1, 31))

    assert history == [(date(2023, 12, 29), Decimal("192")), (date(2024, 1, 2), Decimal("185"))]
    assert price_at_or_before(history, date(2024, 1, 1)) == Decimal("192")
    assert price_at_or_before(history, date(2024, 1, 15)) == Decimal("185")
    assert price_at_or_before(history, date(2023, 12, 1)) is None
