from decimal import Decimal

import pytest

from db.repositories import LedgerEntryRepository, PortfolioRepository
from domain.access import FeatureLockedError
from domain.ledger import PortfolioId, UserId
from domain.lots import OversellError
from domain.portfolio import Portfolio
from services.access import StaticAccessPolicy
from services.tax_report_service import TaxReportService
from tests.constants import OTHER_USER_ID, USER_ID
from tests.helpers.ledger_utils import buy, sell


@pytest.fixture()
def access() -> StaticAccessPolicy:
    return StaticAccessPolicy(
        default_tier="AUTHENTICATED",
        feature_tiers={"tax_reports": "AUTHENTICATED"},
        user_tiers={OTHER_USER_ID: "FREE"},
    )


@pytest.fixture()
def service(
    portfolio_repo: PortfolioRepository, ledger_repo: LedgerEntryRepository, access: StaticAccessPolicy
) -> TaxReportService:
    return TaxReportService(portfolios=portfolio_repo, ledger=ledger_repo, access=access)


@pytest.fixture()
def trades(ledger_repo: LedgerEntryRepository, portfolio: Portfolio) -> None:
    for entry in (
        buy("2023-01-10", "AAPL", "10", "100"),
        buy("2023-06-01", "AAPL", "10", "200"),
        sell("2023-06-10", "AAPL", "5", "100"),
        sell("2024-03-10", "AAPL", "10", "250"),
    ):
        ledger_repo.insert(entry)


@pytest.mark.usefixtures("trades")
def test_generate_tax_report(service: TaxReportService, portfolio: Portfolio) -> None:
    report = service.generate_tax_report(portfolio.id, UserId(USER_ID), 2024)

    assert report is not None
    assert report.portfolio_name == "Household"
    # 5 long-term shares from January, 5 short-term from June.
    assert report.totals.long_term == Decimal("75")
    assert report.totals.short_term == Decimal("25")
    assert report.totals.net == Decimal("100")


@pytest.mark.usefixtures("trades")
def test_get_tax_years(service: TaxReportService, portfolio: Portfolio) -> None:
    assert service.get_tax_years(portfolio.id, UserId(USER_ID)) == [2024, 2023]


def test_missing_or_foreign_portfolio_returns_none(service: TaxReportService, portfolio: Portfolio) -> None:
    assert service.generate_tax_report(PortfolioId("missing"), UserId(USER_ID), 2024) is None
    assert service.get_tax_years(portfolio.id, UserId("stranger")) is None


def test_locked_feature_is_checked_first(service: TaxReportService, portfolio: Portfolio) -> None:
    with pytest.raises(FeatureLockedError):
        service.generate_tax_report(portfolio.id, UserId(OTHER_USER_ID), 2024)


def test_oversell_surfaces_as_ledger_inconsistency(
    service: TaxReportService, ledger_repo: LedgerEntryRepository, portfolio: Portfolio
) -> None:
    ledger_repo.insert(buy("2024-01-10", "AAPL", "1", "100"))
    ledger_repo.insert(sell("2024-02-10", "AAPL", "2", "300"))

    with pytest.raises(OversellError):
        service.generate_tax_report(portfolio.id, UserId(USER_ID), 2024)
