from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from api.api import create_app
from config import AppSettings
from services.access import StaticAccessPolicy
from services.price_service import PriceService
from tests.constants import OTHER_USER_ID, USER_ID
from tests.helpers.price_utils import record_prices

HEADERS = {"X-User-Id": USER_ID}

TRADES = [
    {"date": "2024-01-10T10:00:00", "type": "DEPOSIT", "amount": "3000", "external_id": "D-1"},
    {
        "date": "2024-01-10T10:05:00",
        "type": "BUY",
        "symbol": "AAPL",
        "quantity": "10",
        "amount": "-1000",
        "external_id": "T-1",
    },
    {
        "date": "2024-06-10T10:00:00",
        "type": "BUY",
        "symbol": "AAPL",
        "quantity": "10",
        "amount": "-1500",
        "external_id": "T-2",
    },
    {
        "date": "2025-03-10T10:00:00",
        "type": "SELL",
        "symbol": "AAPL",
        "quantity": "-15",
        "amount": "2700",
        "external_id": "T-3",
    },
]


@pytest.fixture()
def client(
    tmp_path: Path, db_session_factory: sessionmaker[Session], price_service: PriceService
) -> Generator[TestClient, None, None]:
    record_prices(price_service, "AAPL", {"2024-01-10": "100", "2025-03-10": "180"})
    app = create_app(
        settings=AppSettings(db_file=tmp_path / "unused.db", price_cache_dir=tmp_path / "prices"),
        session_factory=db_session_factory,
        prices=price_service,
        access=StaticAccessPolicy(
            default_tier="AUTHENTICATED",
            feature_tiers={"tax_reports": "AUTHENTICATED", "benchmarking": "AUTHENTICATED"},
            user_tiers={OTHER_USER_ID: "FREE"},
        ),
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def portfolio_id(client: TestClient) -> str:
    response = client.post("/portfolios", json={"name": "Household"}, headers=HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture()
def account_id(client: TestClient, portfolio_id: str) -> str:
    response = client.post(f"/portfolios/{portfolio_id}/accounts", json={"name": "Brokerage"}, headers=HEADERS)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture()
def imported(client: TestClient, account_id: str) -> dict:
    response = client.post(f"/accounts/{account_id}/imports", json={"transactions": TRADES}, headers=HEADERS)
    assert response.status_code == 200
    return response.json()


def test_requests_need_a_user(client: TestClient) -> None:
    assert client.get("/portfolios").status_code == 401


def test_portfolios_are_listed_per_user(client: TestClient, portfolio_id: str, account_id: str) -> None:
    mine = client.get("/portfolios", headers=HEADERS).json()
    theirs = client.get("/portfolios", headers={"X-User-Id": OTHER_USER_ID}).json()

    assert [portfolio["id"] for portfolio in mine] == [portfolio_id]
    assert [account["id"] for account in mine[0]["accounts"]] == [account_id]
    assert theirs == []


def test_import_is_idempotent(client: TestClient, account_id: str, imported: dict) -> None:
    assert imported["imported"] == 4

    again = client.post(f"/accounts/{account_id}/imports", json={"transactions": TRADES}, headers=HEADERS).json()

    assert again["imported"] == 0
    assert again["skipped"] == 4


def test_import_into_foreign_account_is_not_found(client: TestClient, account_id: str) -> None:
    response = client.post(
        f"/accounts/{account_id}/imports", json={"transactions": TRADES}, headers={"X-User-Id": OTHER_USER_ID}
    )

    assert response.status_code == 404


def test_import_history_and_rollback(client: TestClient, account_id: str, imported: dict) -> None:
    history = client.get(f"/accounts/{account_id}/imports", headers=HEADERS).json()
    assert [(item["import_batch"], item["entry_count"]) for item in history] == [(imported["import_batch"], 4)]

    response = client.delete(f"/accounts/{account_id}/imports/{imported['import_batch']}", headers=HEADERS)

    assert response.json() == {"deleted": 4}
    assert client.get(f"/accounts/{account_id}/imports", headers=HEADERS).json() == []


@pytest.mark.usefixtures("imported")
def test_tax_report_json(client: TestClient, portfolio_id: str) -> None:
    response = client.get(f"/portfolios/{portfolio_id}/tax-report", params={"year": "2025"}, headers=HEADERS)

    assert response.status_code == 200
    report = response.json()
    # 10 long-term shares at 100 and 5 short-term at 150, all sold at 180.
    assert report["totals"] == {"shortTerm": "150", "longTerm": "800", "net": "950"}
    assert report["scheduleD"]["line16"] == "950"
    assert len(report["shortTermGains"]) == 1
    assert len(report["longTermGains"]) == 1


@pytest.mark.usefixtures("imported")
def test_tax_report_csv(client: TestClient, portfolio_id: str) -> None:
    response = client.get(
        f"/portfolios/{portfolio_id}/tax-report", params={"year": "2025", "format": "csv"}, headers=HEADERS
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="form-8949-2025.csv"' in response.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(response.text)))
    assert len(rows) == 3
    assert rows[1][-1] == "Short-term"


@pytest.mark.usefixtures("imported")
def test_tax_years(client: TestClient, portfolio_id: str) -> None:
    response = client.get(f"/portfolios/{portfolio_id}/tax-report", params={"action": "years"}, headers=HEADERS)

    assert response.json() == {"years": [2025]}


@pytest.mark.parametrize("params", [{}, {"year": "nope"}, {"year": "1990"}, {"year": "2024", "format": "pdf"}])
def test_tax_report_rejects_bad_input(client: TestClient, portfolio_id: str, params: dict[str, str]) -> None:
    response = client.get(f"/portfolios/{portfolio_id}/tax-report", params=params, headers=HEADERS)

    assert response.status_code == 400
    assert "error" in response.json()


def test_tax_report_for_unknown_portfolio(client: TestClient) -> None:
    response = client.get("/portfolios/missing/tax-report", params={"year": "2024"}, headers=HEADERS)

    assert response.status_code == 404


def test_tax_report_feature_lock(client: TestClient, portfolio_id: str) -> None:
    response = client.get(
        f"/portfolios/{portfolio_id}/tax-report", params={"year": "2024"}, headers={"X-User-Id": OTHER_USER_ID}
    )

    assert response.status_code == 403
    body = response.json()
    assert body["code"] == "FEATURE_LOCKED"
    assert body["requiredTier"] == "AUTHENTICATED"


def test_oversell_is_reported_as_conflict(client: TestClient, portfolio_id: str, account_id: str) -> None:
    rows = [
        {"date": "2024-01-10T10:00:00", "type": "BUY", "symbol": "AAPL", "quantity": "1", "amount": "-100"},
        {"date": "2024-02-10T10:00:00", "type": "SELL", "symbol": "AAPL", "quantity": "-2", "amount": "300"},
    ]
    client.post(f"/accounts/{account_id}/imports", json={"transactions": rows}, headers=HEADERS)

    response = client.get(f"/portfolios/{portfolio_id}/tax-report", params={"year": "2024"}, headers=HEADERS)

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "LEDGER_INCONSISTENCY"
    assert body["symbol"] == "AAPL"
    assert body["accountId"] == account_id
    assert body["date"] == "2024-02-10"


@pytest.mark.usefixtures("imported")
def test_analytics_holdings(client: TestClient, portfolio_id: str) -> None:
    response = client.get(f"/portfolios/{portfolio_id}/analytics", params={"type": "holdings"}, headers=HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "holdings"
    (holding,) = body["data"]
    assert holding["symbol"] == "AAPL"
    assert holding["quantity"] == "5"
    assert holding["currentValue"] == "900"


def test_analytics_rejects_unknown_type(client: TestClient, portfolio_id: str) -> None:
    response = client.get(f"/portfolios/{portfolio_id}/analytics", params={"type": "risk"}, headers=HEADERS)

    assert response.status_code == 400


def test_analytics_rejects_unknown_benchmark(client: TestClient, portfolio_id: str) -> None:
    response = client.get(
        f"/portfolios/{portfolio_id}/analytics", params={"type": "benchmark", "benchmark": "FTSE"}, headers=HEADERS
    )

    assert response.status_code == 400


def test_benchmark_configuration_only_applies_to_benchmark_analytics(
    tmp_path: Path, db_session_factory: sessionmaker[Session], price_service: PriceService
) -> None:
    app = create_app(
        settings=AppSettings(
            db_file=tmp_path / "unused.db",
            price_cache_dir=tmp_path / "prices",
            benchmark_symbols={"NASDAQ": "^IXIC"},
        ),
        session_factory=db_session_factory,
        prices=price_service,
    )
    with TestClient(app) as test_client:
        portfolio_id = test_client.post("/portfolios", json={"name": "Household"}, headers=HEADERS).json()["id"]
        url = f"/portfolios/{portfolio_id}/analytics"

        holdings = test_client.get(url, params={"type": "holdings"}, headers=HEADERS)
        default_benchmark = test_client.get(url, params={"type": "benchmark"}, headers=HEADERS)
        nasdaq = test_client.get(url, params={"type": "benchmark", "benchmark": "nasdaq"}, headers=HEADERS)

    assert holdings.status_code == 200
    assert holdings.json() == {"type": "holdings", "data": []}
    assert default_benchmark.status_code == 400
    assert nasdaq.status_code == 200
    assert nasdaq.json()["data"]["benchmarkSymbol"] == "^IXIC"
