from typing import Annotated, Generator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from config import AppSettings
from db.repositories import LedgerEntryRepository, PortfolioRepository
from domain.access import AccessValidator
from domain.ledger import UserId
from domain.pricing import PriceOracle
from services.analytics_service import AnalyticsService
from services.import_service import ImportService
from services.tax_report_service import TaxReportService


def get_session(request: Request) -> Generator[Session, None, None]:
    with request.app.state.sessionmaker() as session:
        yield session


def get_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def get_price_oracle(request: Request) -> PriceOracle:
    return request.app.state.prices


def get_access_validator(request: Request) -> AccessValidator:
    return request.app.state.access


def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> UserId:
    # Authentication happens upstream; the gateway forwards the caller's id.
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return UserId(x_user_id)


def get_portfolio_repository(session: Annotated[Session, Depends(get_session)]) -> PortfolioRepository:
    return PortfolioRepository(session)


def get_ledger_repository(session: Annotated[Session, Depends(get_session)]) -> LedgerEntryRepository:
    return LedgerEntryRepository(session)


def get_import_service(ledger: Annotated[LedgerEntryRepository, Depends(get_ledger_repository)]) -> ImportService:
    return ImportService(ledger)


def get_tax_report_service(
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
    ledger: Annotated[LedgerEntryRepository, Depends(get_ledger_repository)],
    access: Annotated[AccessValidator, Depends(get_access_validator)],
) -> TaxReportService:
    return TaxReportService(portfolios=portfolios, ledger=ledger, access=access)


def get_analytics_service(
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
    ledger: Annotated[LedgerEntryRepository, Depends(get_ledger_repository)],
    prices: Annotated[PriceOracle, Depends(get_price_oracle)],
    access: Annotated[AccessValidator, Depends(get_access_validator)],
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> AnalyticsService:
    return AnalyticsService(
        portfolios=portfolios,
        ledger=ledger,
        prices=prices,
        access=access,
        benchmark_symbols=settings.benchmark_symbols,
    )
