import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from time import perf_counter
from typing import Annotated, Any, AsyncGenerator, Awaitable, Callable

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from api.dependencies import (
    get_analytics_service,
    get_import_service,
    get_portfolio_repository,
    get_settings,
    get_tax_report_service,
    get_user_id,
)
from config import AppSettings, config
from db.models import Base
from db.repositories import PortfolioRepository
from domain.access import AccessValidator, FeatureLockedError
from domain.ledger import AccountId, NormalizedTransaction, PortfolioId, TransactionType, UserId
from domain.ledger_store import ImportBatchInfo
from domain.lots import OversellError
from domain.portfolio import Account, AccountType, Portfolio
from domain.pricing import PriceOracle
from services.access import StaticAccessPolicy
from services.analytics_service import AnalyticsService
from services.import_service import ImportService, ImportSummary
from services.price_service import build_default_service
from services.tax_report_service import TaxReportService
from services.validation import (
    AnalyticsType,
    InvalidRequestError,
    ReportFormat,
    parse_analytics_type,
    parse_benchmark,
    parse_date_range,
    parse_optional_year,
    parse_period,
    parse_report_format,
    parse_year,
)
from utils.tax_report import generate_form8949_csv

logger = logging.getLogger(__name__)


class PortfolioIn(BaseModel):
    name: str = Field(min_length=1)


class AccountIn(BaseModel):
    name: str = Field(min_length=1)
    account_type: AccountType = AccountType.BROKERAGE


class TransactionIn(BaseModel):
    date: datetime
    type: TransactionType
    symbol: str | None = None
    quantity: Decimal | None = None
    amount: Decimal
    external_id: str | None = None
    description: str = ""
    category: str | None = None


class ImportRequest(BaseModel):
    transactions: list[TransactionIn]
    dry_run: bool = False
    skip_duplicates: bool = True
    import_source: str | None = "api"


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def create_app(
    *,
    settings: AppSettings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    prices: PriceOracle | None = None,
    access: AccessValidator | None = None,
) -> FastAPI:
    settings = settings or config()

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI) -> AsyncGenerator[None, None]:
        if fastapi_app.state.sessionmaker is not None:
            yield
            return
        settings.db_file.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(f"sqlite:///{settings.db_file}")
        Base.metadata.create_all(engine)
        fastapi_app.state.sessionmaker = sessionmaker(engine)
        yield
        engine.dispose()

    fastapi_app = FastAPI(title="lotledger", lifespan=lifespan)
    fastapi_app.state.settings = settings
    fastapi_app.state.sessionmaker = session_factory
    fastapi_app.state.prices = prices or build_default_service(settings.price_cache_dir)
    fastapi_app.state.access = access or StaticAccessPolicy(
        default_tier=settings.default_user_tier,
        feature_tiers=settings.feature_tiers,
        user_tiers=settings.user_tiers,
    )

    @fastapi_app.middleware("http")
    async def log_process_time(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        start_time = perf_counter()
        response = await call_next(request)
        process_time = perf_counter() - start_time
        logger.info("Request time: %s %s: %.4fs", request.method, request.url.path, process_time)
        return response

    @fastapi_app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError) -> JSONResponse:
        return _error(400, str(exc))

    @fastapi_app.exception_handler(FeatureLockedError)
    async def feature_locked_handler(request: Request, exc: FeatureLockedError) -> JSONResponse:
        return _error(403, str(exc), code="FEATURE_LOCKED", tier=exc.tier, requiredTier=exc.required_tier)

    @fastapi_app.exception_handler(OversellError)
    async def oversell_handler(request: Request, exc: OversellError) -> JSONResponse:
        return _error(
            409,
            str(exc),
            code="LEDGER_INCONSISTENCY",
            accountId=exc.account_id,
            symbol=exc.symbol,
            date=exc.disposed_date.isoformat(),
        )

    fastapi_app.include_router(router)
    return fastapi_app


router = APIRouter()


@router.post("/portfolios", status_code=201)
def create_portfolio(
    body: PortfolioIn,
    user_id: Annotated[UserId, Depends(get_user_id)],
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
) -> Portfolio:
    return portfolios.create(Portfolio(name=body.name, user_id=user_id))


@router.get("/portfolios")
def list_portfolios(
    user_id: Annotated[UserId, Depends(get_user_id)],
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
) -> list[Portfolio]:
    return portfolios.list_for_user(user_id)


@router.post("/portfolios/{portfolio_id}/accounts", status_code=201)
def create_account(
    portfolio_id: PortfolioId,
    body: AccountIn,
    user_id: Annotated[UserId, Depends(get_user_id)],
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
) -> Account:
    if portfolios.get_for_user(portfolio_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Portfolio not found")
    return portfolios.add_account(portfolio_id, Account(name=body.name, account_type=body.account_type))


@router.get("/portfolios/{portfolio_id}/analytics")
def get_analytics(
    portfolio_id: PortfolioId,
    user_id: Annotated[UserId, Depends(get_user_id)],
    analytics: Annotated[AnalyticsService, Depends(get_analytics_service)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    analytics_type: Annotated[str, Query(alias="type")] = "performance",
    year: str | None = None,
    period: str | None = None,
    benchmark: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> JSONResponse:
    parsed_type = parse_analytics_type(analytics_type)
    parsed_start, parsed_end = parse_date_range(start, end)
    parsed_benchmark = (
        parse_benchmark(benchmark, settings.benchmark_symbols) if parsed_type == AnalyticsType.BENCHMARK else None
    )
    envelope = analytics.get_analytics(
        portfolio_id,
        user_id,
        parsed_type,
        year=parse_optional_year(year),
        period=parse_period(period),
        benchmark=parsed_benchmark,
        start=parsed_start,
        end=parsed_end,
    )
    if envelope is None:
        raise HTTPException(status_code=404, detail="Portfolio not found")
    return JSONResponse(content=envelope.model_dump(mode="json", by_alias=True))


@router.get("/portfolios/{portfolio_id}/tax-report", response_model=None)
def get_tax_report(
    portfolio_id: PortfolioId,
    user_id: Annotated[UserId, Depends(get_user_id)],
    reports: Annotated[TaxReportService, Depends(get_tax_report_service)],
    year: str | None = None,
    report_format: Annotated[str | None, Query(alias="format")] = None,
    include_zero_gains: Annotated[bool, Query(alias="includeZeroGains")] = False,
    action: str | None = None,
) -> Response:
    if action == "years":
        years = reports.get_tax_years(portfolio_id, user_id)
        if years is None:
            raise HTTPException(status_code=404, detail="Portfolio not found")
        return JSONResponse(content={"years": years})

    parsed_year = parse_year(year)
    parsed_format = parse_report_format(report_format)
    report = reports.generate_tax_report(portfolio_id, user_id, parsed_year, include_zero_gains=include_zero_gains)
    if report is None:
        raise HTTPException(status_code=404, detail="Portfolio not found")

    if parsed_format == ReportFormat.CSV:
        return Response(
            content=generate_form8949_csv(report),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="form-8949-{parsed_year}.csv"'},
        )
    return JSONResponse(content=report.model_dump(mode="json", by_alias=True))


@router.post("/accounts/{account_id}/imports")
def import_transactions(
    account_id: AccountId,
    body: ImportRequest,
    user_id: Annotated[UserId, Depends(get_user_id)],
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
    imports: Annotated[ImportService, Depends(get_import_service)],
) -> ImportSummary:
    if portfolios.get_account_for_user(account_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")
    transactions = [
        NormalizedTransaction(**row.model_dump(), account_id=account_id, import_source=body.import_source)
        for row in body.transactions
    ]
    return imports.import_transactions(
        transactions, account_id, dry_run=body.dry_run, skip_duplicates=body.skip_duplicates
    )


@router.get("/accounts/{account_id}/imports")
def get_import_history(
    account_id: AccountId,
    user_id: Annotated[UserId, Depends(get_user_id)],
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
    imports: Annotated[ImportService, Depends(get_import_service)],
) -> list[ImportBatchInfo]:
    if portfolios.get_account_for_user(account_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return imports.get_import_history(account_id)


@router.delete("/accounts/{account_id}/imports/{import_batch}")
def rollback_import(
    account_id: AccountId,
    import_batch: str,
    user_id: Annotated[UserId, Depends(get_user_id)],
    portfolios: Annotated[PortfolioRepository, Depends(get_portfolio_repository)],
    imports: Annotated[ImportService, Depends(get_import_service)],
) -> dict[str, int]:
    if portfolios.get_account_for_user(account_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return {"deleted": imports.rollback_import(import_batch, account_id)}


app = create_app()
