from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from time import perf_counter
from typing import Any, Callable, Mapping

from domain.access import AccessValidator, FeatureKey, require_feature
from domain.base_types import CamelModel
from domain.ledger import PortfolioId, UserId
from domain.ledger_store import LedgerStore, PortfolioStore
from domain.lots import LotLedger
from domain.pricing import PriceOracle
from utils.performance import (
    HistoryPeriod,
    calculate_allocation,
    calculate_bank_summary,
    calculate_dividend_summary,
    calculate_holding_performance,
    calculate_performance_metrics,
    calculate_realized_gains,
    compare_to_benchmark,
    get_portfolio_history,
)

from .tax_report_service import replay_portfolio
from .validation import DEFAULT_BENCHMARK, AnalyticsType, InvalidRequestError

logger = logging.getLogger(__name__)

PREMIUM_FEATURES: dict[AnalyticsType, FeatureKey] = {
    AnalyticsType.DIVIDENDS: FeatureKey.DIVIDEND_TRACKING,
    AnalyticsType.BENCHMARK: FeatureKey.BENCHMARKING,
    AnalyticsType.TAX: FeatureKey.TAX_REPORTS,
}


class AnalyticsEnvelope(CamelModel):
    type: AnalyticsType
    data: Any


class AnalyticsService:
    def __init__(
        self,
        *,
        portfolios: PortfolioStore,
        ledger: LedgerStore,
        prices: PriceOracle,
        access: AccessValidator,
        benchmark_symbols: Mapping[str, str],
        lot_ledger: LotLedger | None = None,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.portfolios = portfolios
        self.ledger = ledger
        self.prices = prices
        self.access = access
        self.benchmark_symbols = dict(benchmark_symbols)
        self.lot_ledger = lot_ledger or LotLedger()
        self.clock = clock

    def get_analytics(
        self,
        portfolio_id: PortfolioId,
        user_id: UserId,
        analytics_type: AnalyticsType,
        *,
        year: int | None = None,
        period: HistoryPeriod = HistoryPeriod.ONE_YEAR,
        benchmark: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> AnalyticsEnvelope | None:
        feature = PREMIUM_FEATURES.get(analytics_type)
        if feature is not None:
            require_feature(self.access, user_id, feature)
        benchmark_name = benchmark or DEFAULT_BENCHMARK
        if analytics_type == AnalyticsType.BENCHMARK and benchmark_name not in self.benchmark_symbols:
            raise InvalidRequestError(f"Unknown benchmark {benchmark_name!r}")

        portfolio = self.portfolios.get_for_user(portfolio_id, user_id)
        if portfolio is None:
            return None

        started = perf_counter()
        today = self.clock()
        entries = self.ledger.list_by_portfolio(portfolio.id)
        data: Any
        if analytics_type == AnalyticsType.PERFORMANCE:
            data = calculate_performance_metrics(
                entries, self.prices, start=start, end=end or today, lot_ledger=self.lot_ledger
            )
        elif analytics_type == AnalyticsType.HOLDINGS:
            replay = replay_portfolio(self.ledger, self.lot_ledger, portfolio)
            data = calculate_holding_performance(replay, self.prices, as_of=today)
        elif analytics_type == AnalyticsType.ALLOCATION:
            replay = replay_portfolio(self.ledger, self.lot_ledger, portfolio)
            holdings = calculate_holding_performance(replay, self.prices, as_of=today)
            names = {account.id: account.name for account in portfolio.accounts}
            data = calculate_allocation(holdings, names)
        elif analytics_type == AnalyticsType.DIVIDENDS:
            replay = replay_portfolio(self.ledger, self.lot_ledger, portfolio)
            holdings = calculate_holding_performance(replay, self.prices, as_of=today)
            portfolio_value = sum((holding.current_value for holding in holdings), start=Decimal(0))
            data = calculate_dividend_summary(
                entries, year or today.year, portfolio_value=portfolio_value, today=today
            )
        elif analytics_type == AnalyticsType.HISTORY:
            data = get_portfolio_history(entries, self.prices, period=period, today=today, lot_ledger=self.lot_ledger)
        elif analytics_type == AnalyticsType.BENCHMARK:
            data = compare_to_benchmark(
                entries,
                self.prices,
                benchmark=benchmark_name,
                benchmark_symbol=self.benchmark_symbols[benchmark_name],
                period=period,
                today=today,
                lot_ledger=self.lot_ledger,
            )
        elif analytics_type == AnalyticsType.TAX:
            replay = replay_portfolio(self.ledger, self.lot_ledger, portfolio)
            data = calculate_realized_gains(replay, year or today.year)
        else:
            data = calculate_bank_summary(entries, start=start, end=end)

        logger.info(
            "Computed %s analytics for portfolio %s over %d entries in %.3fs",
            analytics_type.value,
            portfolio.id,
            len(entries),
            perf_counter() - started,
        )
        return AnalyticsEnvelope(type=analytics_type, data=data)


__all__ = ["AnalyticsEnvelope", "AnalyticsService", "PREMIUM_FEATURES"]
