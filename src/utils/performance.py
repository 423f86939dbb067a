"""Portfolio analytics computed from a ledger snapshot and a price oracle.

Every function here is pure: it takes already-fetched ledger entries (plus
prices and parameters) and never touches storage. Lot state comes from
``LotLedger.replay``; missing prices degrade to cost basis and are reported
in ``unpriced_symbols`` instead of failing the computation.
"""

from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import StrEnum
from itertools import groupby
from typing import Iterable, Mapping, Sequence

from domain.assets import AssetType, classify_asset_type
from domain.base_types import CamelModel
from domain.ledger import (
    EXTERNAL_FLOW_TYPES,
    AccountId,
    HoldingPeriod,
    LedgerEntry,
    RealizedGainRecord,
    Symbol,
    TransactionType,
    classify_holding_period,
)
from domain.lots import LotLedger, LotLedgerResult
from domain.pricing import PriceOracle, PricePoint, price_at_or_before

from .formatting import to_cents

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
ONE = Decimal(1)
HUNDRED = Decimal(100)

_CASH_INFLOW_TYPES = frozenset(
    {
        TransactionType.DEPOSIT,
        TransactionType.TRANSFER_IN,
        TransactionType.SELL,
        TransactionType.DIVIDEND,
        TransactionType.INTEREST,
    }
)
_CASH_OUTFLOW_TYPES = frozenset(
    {
        TransactionType.WITHDRAWAL,
        TransactionType.TRANSFER_OUT,
        TransactionType.BUY,
        TransactionType.FEE,
        TransactionType.TAX_WITHHOLDING,
    }
)
_SIGNED_CASH_TYPES = frozenset({TransactionType.TRANSFER, TransactionType.OTHER})

INCOME_CATEGORIES = frozenset(
    {"SALARY", "RENTAL_INCOME", "ALLOWANCE", "INVESTMENT_INCOME", "REFUND", "OTHER_INCOME"}
)

RECENT_DIVIDENDS_LIMIT = 10


class HistoryPeriod(StrEnum):
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"
    YEAR_TO_DATE = "YTD"
    ALL = "ALL"


def cash_impact(entry: LedgerEntry) -> Decimal:
    """Effect of an entry on the account's cash balance."""
    if entry.type in _CASH_INFLOW_TYPES:
        return abs(entry.amount)
    if entry.type in _CASH_OUTFLOW_TYPES:
        return -abs(entry.amount)
    if entry.type in _SIGNED_CASH_TYPES:
        return entry.amount
    # REINVEST_DIVIDEND and SPLIT do not move cash.
    return ZERO


def external_flow(entry: LedgerEntry) -> Decimal:
    if entry.type not in EXTERNAL_FLOW_TYPES:
        return ZERO
    return cash_impact(entry)


def implied_contributions(entries: Iterable[LedgerEntry]) -> dict[date, Decimal]:
    """Cash spent beyond an account's recorded balance, by day.

    Brokerage exports often start with trades and no funding deposit. The
    end-of-day shortfall is booked as an external contribution instead of
    negative cash.
    """
    balances: dict[AccountId, Decimal] = defaultdict(lambda: ZERO)
    implied: dict[date, Decimal] = defaultdict(lambda: ZERO)
    ordered = sorted(entries, key=lambda entry: entry.date.date())
    for day, day_entries in groupby(ordered, key=lambda entry: entry.date.date()):
        touched: set[AccountId] = set()
        for entry in day_entries:
            balances[entry.account_id] += cash_impact(entry)
            touched.add(entry.account_id)
        for account_id in sorted(touched):
            if balances[account_id] < 0:
                implied[day] -= balances[account_id]
                balances[account_id] = ZERO
    return dict(implied)


def shift_months(day: date, months: int) -> date:
    month_index = day.year * 12 + day.month - 1 + months
    year, month_zero = divmod(month_index, 12)
    month = month_zero + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def month_ends_between(start: date, end: date) -> list[date]:
    """Month-end dates strictly inside ``(start, end)``."""
    month_ends: list[date] = []
    cursor = date(start.year, start.month, calendar.monthrange(start.year, start.month)[1])
    while cursor < end:
        if cursor > start:
            month_ends.append(cursor)
        next_month = shift_months(date(cursor.year, cursor.month, 1), 1)
        cursor = date(next_month.year, next_month.month, calendar.monthrange(next_month.year, next_month.month)[1])
    return month_ends


def period_start(period: HistoryPeriod, today: date, inception: date) -> date:
    if period == HistoryPeriod.ONE_MONTH:
        return shift_months(today, -1)
    if period == HistoryPeriod.THREE_MONTHS:
        return shift_months(today, -3)
    if period == HistoryPeriod.SIX_MONTHS:
        return shift_months(today, -6)
    if period == HistoryPeriod.ONE_YEAR:
        return shift_months(today, -12)
    if period == HistoryPeriod.YEAR_TO_DATE:
        return date(today.year, 1, 1)
    return inception


class PriceBook:
    """Price histories fetched once per symbol for a computation window."""

    def __init__(self, oracle: PriceOracle, symbols: Iterable[str], start: date, end: date) -> None:
        self._oracle = oracle
        self._histories: dict[str, list[PricePoint]] = {
            symbol: oracle.price_history(symbol, start, end) for symbol in sorted(set(symbols))
        }

    def price_on(self, symbol: str, day: date) -> Decimal | None:
        history = self._histories.get(symbol)
        if history is None:
            history = self._oracle.price_history(symbol, day, day)
            self._histories[symbol] = history
        return price_at_or_before(history, day)


@dataclass
class Valuation:
    day: date
    market_value: Decimal
    cost_basis: Decimal
    cash: Decimal
    unpriced_symbols: set[str] = field(default_factory=set)

    @property
    def total_value(self) -> Decimal:
        return self.market_value + self.cash


class PortfolioValuer:
    """Values the ledger prefix up to a day: open lots at market plus derived cash.

    Derived cash includes implied contributions, so it never goes negative.
    """

    def __init__(self, entries: Sequence[LedgerEntry], prices: PriceBook, lot_ledger: LotLedger) -> None:
        self._entries = sorted(entries, key=lambda entry: entry.date.date())
        self.implied_flows = implied_contributions(self._entries)
        self._prices = prices
        self._lot_ledger = lot_ledger
        self._cache: dict[date, Valuation] = {}

    def at(self, day: date) -> Valuation:
        cached = self._cache.get(day)
        if cached is not None:
            return cached

        included = [entry for entry in self._entries if entry.date.date() <= day]
        implied = sum((amount for flow_day, amount in self.implied_flows.items() if flow_day <= day), start=ZERO)
        replay = self._lot_ledger.replay(included)

        market_value = cost_basis = ZERO
        unpriced: set[str] = set()
        for lot in replay.open_lots:
            cost_basis += lot.cost_basis_remaining
            price = self._prices.price_on(lot.symbol, day)
            if price is None:
                unpriced.add(lot.symbol)
                market_value += lot.cost_basis_remaining
            else:
                market_value += lot.remaining_quantity * price

        valuation = Valuation(
            day=day,
            market_value=market_value,
            cost_basis=cost_basis,
            cash=sum((cash_impact(entry) for entry in included), start=ZERO) + implied,
            unpriced_symbols=unpriced,
        )
        self._cache[day] = valuation
        return valuation

    def external_flows(self) -> dict[date, Decimal]:
        """Recorded external flows plus implied contributions, by day."""
        flows = _flows_by_day(self._entries)
        for day, amount in self.implied_flows.items():
            flows[day] = flows.get(day, ZERO) + amount
        return flows


class SubPeriodReturn(CamelModel):
    start: date
    end: date
    start_value: Decimal
    end_value: Decimal
    net_flow: Decimal
    period_return: Decimal | None


class PerformanceMetrics(CamelModel):
    start_date: date
    end_date: date
    start_value: Decimal
    end_value: Decimal
    net_external_flows: Decimal
    implied_contributions: Decimal
    total_return: Decimal
    time_weighted_return: Decimal
    annualized_return: Decimal | None
    max_drawdown: Decimal
    sub_periods: list[SubPeriodReturn]
    unpriced_symbols: list[str]
    warnings: list[str]


def _flows_by_day(entries: Iterable[LedgerEntry]) -> dict[date, Decimal]:
    flows: dict[date, Decimal] = defaultdict(lambda: ZERO)
    for entry in entries:
        if entry.type in EXTERNAL_FLOW_TYPES:
            flows[entry.date.date()] += external_flow(entry)
    return dict(flows)


def _chain_returns(
    valuer: PortfolioValuer, boundaries: Sequence[date], flows: Mapping[date, Decimal]
) -> tuple[list[SubPeriodReturn], list[str]]:
    """Sub-period returns ``(V_end - F) / V_start - 1`` between consecutive boundaries.

    Flows are booked at the end of their day, so a flow on a boundary day
    belongs to the sub-period ending there.
    """
    sub_periods: list[SubPeriodReturn] = []
    warnings: list[str] = []
    for previous, current in zip(boundaries, boundaries[1:]):
        start_value = valuer.at(previous).total_value
        end_value = valuer.at(current).total_value
        net_flow = sum((amount for day, amount in flows.items() if previous < day <= current), start=ZERO)

        period_return: Decimal | None
        if start_value <= 0:
            period_return = None
            warnings.append(
                f"{previous.isoformat()}..{current.isoformat()}: starting value {start_value} is not positive; "
                "sub-period skipped."
            )
        else:
            period_return = (end_value - net_flow) / start_value - ONE

        sub_periods.append(
            SubPeriodReturn(
                start=previous,
                end=current,
                start_value=start_value,
                end_value=end_value,
                net_flow=net_flow,
                period_return=period_return,
            )
        )
    return sub_periods, warnings


def _compound(returns: Iterable[Decimal | None]) -> Decimal:
    growth = ONE
    for period_return in returns:
        if period_return is not None:
            growth *= ONE + period_return
    return growth - ONE


def _max_drawdown(returns: Iterable[Decimal | None]) -> Decimal:
    index = peak = ONE
    worst = ZERO
    for period_return in returns:
        if period_return is None:
            continue
        index *= ONE + period_return
        peak = max(peak, index)
        if peak > 0:
            worst = max(worst, (peak - index) / peak)
    return worst


def _annualize(total: Decimal, days: int) -> Decimal | None:
    growth = ONE + total
    if days <= 0 or growth <= 0:
        return None
    return growth ** (Decimal(365) / Decimal(days)) - ONE


def _inception(entries: Sequence[LedgerEntry], fallback: date) -> date:
    if not entries:
        return fallback
    return min(entry.date for entry in entries).date()


def _symbols(entries: Iterable[LedgerEntry]) -> set[str]:
    return {entry.symbol for entry in entries if entry.symbol is not None}


def calculate_performance_metrics(
    entries: Sequence[LedgerEntry],
    prices: PriceOracle,
    *,
    end: date,
    start: date | None = None,
    lot_ledger: LotLedger | None = None,
) -> PerformanceMetrics:
    """Time-weighted return over ``[start, end]``.

    The period is split at every day with an external cash flow (deposits,
    withdrawals, transfers); sub-period returns are chained geometrically so
    the size and timing of contributions do not distort the result.
    """
    start = start or _inception(entries, end)
    lot_ledger = lot_ledger or LotLedger()
    book = PriceBook(prices, _symbols(entries), start, end)
    valuer = PortfolioValuer(entries, book, lot_ledger)

    flows = valuer.external_flows()
    boundaries = sorted({start, end, *(day for day in flows if start < day < end)})
    sub_periods, warnings = _chain_returns(valuer, boundaries, flows)
    returns = [sub.period_return for sub in sub_periods]

    start_valuation = valuer.at(start)
    end_valuation = valuer.at(end)
    net_flows = sum((amount for day, amount in flows.items() if start < day <= end), start=ZERO)
    twr = _compound(returns)
    implied = sum((amount for day, amount in valuer.implied_flows.items() if day <= end), start=ZERO)
    if implied:
        logger.info("Booked %s of trade funding without a recorded deposit as implied contributions", implied)

    unpriced = sorted(set().union(*(valuer.at(day).unpriced_symbols for day in boundaries)))
    if unpriced:
        logger.warning("Valued %d symbols at cost basis for lack of prices: %s", len(unpriced), ", ".join(unpriced))

    return PerformanceMetrics(
        start_date=start,
        end_date=end,
        start_value=start_valuation.total_value,
        end_value=end_valuation.total_value,
        net_external_flows=net_flows,
        implied_contributions=implied,
        total_return=end_valuation.total_value - start_valuation.total_value - net_flows,
        time_weighted_return=twr,
        annualized_return=_annualize(twr, (end - start).days),
        max_drawdown=_max_drawdown(returns),
        sub_periods=sub_periods,
        unpriced_symbols=unpriced,
        warnings=warnings,
    )


class HoldingPerformance(CamelModel):
    account_id: AccountId
    symbol: Symbol
    asset_type: AssetType
    quantity: Decimal
    cost_basis: Decimal
    current_price: Decimal | None
    current_value: Decimal
    unrealized_gain: Decimal
    unrealized_gain_percent: Decimal
    long_term_quantity: Decimal
    open_lots: int
    priced: bool


def calculate_holding_performance(
    replay: LotLedgerResult, prices: PriceOracle, *, as_of: date | None = None
) -> list[HoldingPerformance]:
    """Unrealized gain per open position, measured against its open lots' remaining cost."""
    as_of = as_of or date.today()
    holdings: list[HoldingPerformance] = []
    for (account_id, symbol), lots in sorted(replay.open_lots_by_position().items()):
        quantity = sum((lot.remaining_quantity for lot in lots), start=ZERO)
        cost_basis = sum((lot.cost_basis_remaining for lot in lots), start=ZERO)
        long_term_quantity = sum(
            (
                lot.remaining_quantity
                for lot in lots
                if classify_holding_period(lot.opened_date, max(lot.opened_date, as_of)) == HoldingPeriod.LONG_TERM
            ),
            start=ZERO,
        )

        price = prices.latest_price(symbol)
        current_value = quantity * price if price is not None else cost_basis
        gain = current_value - cost_basis
        holdings.append(
            HoldingPerformance(
                account_id=account_id,
                symbol=symbol,
                asset_type=classify_asset_type(symbol),
                quantity=quantity,
                cost_basis=cost_basis,
                current_price=price,
                current_value=current_value,
                unrealized_gain=gain,
                unrealized_gain_percent=gain / cost_basis * HUNDRED if cost_basis > 0 else ZERO,
                long_term_quantity=long_term_quantity,
                open_lots=len(lots),
                priced=price is not None,
            )
        )

    unpriced = sorted({holding.symbol for holding in holdings if not holding.priced})
    if unpriced:
        logger.warning("No latest price for %s; holdings valued at cost basis", ", ".join(unpriced))

    return sorted(holdings, key=lambda holding: holding.current_value, reverse=True)


class AllocationSlice(CamelModel):
    key: str
    label: str
    value: Decimal
    percentage: Decimal


class AllocationData(CamelModel):
    total_value: Decimal
    by_asset_type: list[AllocationSlice]
    by_account: list[AllocationSlice]
    by_symbol: list[AllocationSlice]


def normalize_percentages(values: Mapping[str, Decimal]) -> dict[str, Decimal]:
    """Percent shares rounded to cents, largest first; the last share absorbs rounding drift."""
    ordered = sorted(values.items(), key=lambda item: (-item[1], item[0]))
    total = sum(values.values(), start=ZERO)
    if total <= 0 or not ordered:
        return {key: ZERO for key, _ in ordered}

    shares: dict[str, Decimal] = {}
    assigned = ZERO
    for key, value in ordered[:-1]:
        share = to_cents(value / total * HUNDRED)
        shares[key] = share
        assigned += share
    last_key = ordered[-1][0]
    shares[last_key] = HUNDRED - assigned
    return shares


def _slices(values: Mapping[str, Decimal], labels: Mapping[str, str] | None = None) -> list[AllocationSlice]:
    shares = normalize_percentages(values)
    return [
        AllocationSlice(
            key=key,
            label=(labels or {}).get(key, key),
            value=values[key],
            percentage=percentage,
        )
        for key, percentage in shares.items()
    ]


def calculate_allocation(
    holdings: Iterable[HoldingPerformance], account_names: Mapping[str, str] | None = None
) -> AllocationData:
    by_type: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_account: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_symbol: dict[str, Decimal] = defaultdict(lambda: ZERO)
    total = ZERO
    for holding in holdings:
        total += holding.current_value
        by_type[holding.asset_type.value] += holding.current_value
        by_account[holding.account_id] += holding.current_value
        by_symbol[holding.symbol] += holding.current_value

    return AllocationData(
        total_value=total,
        by_asset_type=_slices(by_type),
        by_account=_slices(by_account, account_names),
        by_symbol=_slices(by_symbol),
    )


class DividendPayment(CamelModel):
    date: datetime
    account_id: AccountId
    symbol: Symbol | None
    amount: Decimal


class DividendBucket(CamelModel):
    key: str
    total: Decimal
    count: int


class DividendSummary(CamelModel):
    year: int
    total_dividends: Decimal
    by_month: list[DividendBucket]
    by_symbol: list[DividendBucket]
    annualized_yield: Decimal
    projected_annual: Decimal
    recent_dividends: list[DividendPayment]


def calculate_dividend_summary(
    entries: Iterable[LedgerEntry], year: int, *, portfolio_value: Decimal, today: date | None = None
) -> DividendSummary:
    today = today or date.today()
    dividends = sorted(
        (entry for entry in entries if entry.type == TransactionType.DIVIDEND and entry.date.year == year),
        key=lambda entry: entry.date,
        reverse=True,
    )

    total = ZERO
    months: dict[str, list[Decimal]] = defaultdict(list)
    symbols: dict[str, list[Decimal]] = defaultdict(list)
    for dividend in dividends:
        total += dividend.amount
        months[f"{dividend.date.year:04d}-{dividend.date.month:02d}"].append(dividend.amount)
        symbols[dividend.symbol or "Unknown"].append(dividend.amount)

    months_of_data = today.month if year == today.year else 12
    by_symbol = [
        DividendBucket(key=symbol, total=sum(amounts, start=ZERO), count=len(amounts))
        for symbol, amounts in symbols.items()
    ]

    return DividendSummary(
        year=year,
        total_dividends=total,
        by_month=[
            DividendBucket(key=month, total=sum(amounts, start=ZERO), count=len(amounts))
            for month, amounts in sorted(months.items())
        ],
        by_symbol=sorted(by_symbol, key=lambda bucket: (-bucket.total, bucket.key)),
        annualized_yield=total / portfolio_value * HUNDRED if portfolio_value > 0 else ZERO,
        projected_annual=total / Decimal(months_of_data) * Decimal(12),
        recent_dividends=[
            DividendPayment(
                date=dividend.date, account_id=dividend.account_id, symbol=dividend.symbol, amount=dividend.amount
            )
            for dividend in dividends[:RECENT_DIVIDENDS_LIMIT]
        ],
    )


class BenchmarkPoint(CamelModel):
    start: date
    end: date
    portfolio_return: Decimal | None
    benchmark_return: Decimal | None
    excess_return: Decimal | None


class BenchmarkComparison(CamelModel):
    benchmark: str
    benchmark_symbol: str
    period: HistoryPeriod
    start_date: date
    end_date: date
    portfolio_return: Decimal
    benchmark_return: Decimal | None
    alpha: Decimal | None
    is_partial: bool
    points: list[BenchmarkPoint]
    warnings: list[str]


def compare_to_benchmark(
    entries: Sequence[LedgerEntry],
    prices: PriceOracle,
    *,
    benchmark: str,
    benchmark_symbol: str,
    period: HistoryPeriod,
    today: date,
    lot_ledger: LotLedger | None = None,
) -> BenchmarkComparison:
    """Portfolio vs benchmark returns on shared month-end boundaries.

    A sub-period without benchmark prices keeps its portfolio return and
    reports ``benchmark_return=None``; the comparison is then partial.
    """
    start = period_start(period, today, _inception(entries, today))
    lot_ledger = lot_ledger or LotLedger()
    book = PriceBook(prices, _symbols(entries) | {benchmark_symbol}, start, today)
    valuer = PortfolioValuer(entries, book, lot_ledger)
    flows = valuer.external_flows()

    checkpoints = sorted({start, today, *month_ends_between(start, today)})
    points: list[BenchmarkPoint] = []
    warnings: list[str] = []
    for previous, current in zip(checkpoints, checkpoints[1:]):
        inner = sorted({previous, current, *(day for day in flows if previous < day < current)})
        sub_periods, sub_warnings = _chain_returns(valuer, inner, flows)
        warnings.extend(sub_warnings)
        portfolio_return = (
            _compound(sub.period_return for sub in sub_periods)
            if any(sub.period_return is not None for sub in sub_periods)
            else None
        )

        benchmark_start = book.price_on(benchmark_symbol, previous)
        benchmark_end = book.price_on(benchmark_symbol, current)
        benchmark_return: Decimal | None = None
        if benchmark_start is not None and benchmark_end is not None and benchmark_start > 0:
            benchmark_return = benchmark_end / benchmark_start - ONE
        else:
            warnings.append(f"{previous.isoformat()}..{current.isoformat()}: no {benchmark} data.")

        points.append(
            BenchmarkPoint(
                start=previous,
                end=current,
                portfolio_return=portfolio_return,
                benchmark_return=benchmark_return,
                excess_return=(
                    portfolio_return - benchmark_return
                    if portfolio_return is not None and benchmark_return is not None
                    else None
                ),
            )
        )

    covered = [point.benchmark_return for point in points if point.benchmark_return is not None]
    total_portfolio = _compound(point.portfolio_return for point in points)
    total_benchmark = _compound(covered) if covered else None
    return BenchmarkComparison(
        benchmark=benchmark,
        benchmark_symbol=benchmark_symbol,
        period=period,
        start_date=start,
        end_date=today,
        portfolio_return=total_portfolio,
        benchmark_return=total_benchmark,
        alpha=total_portfolio - total_benchmark if total_benchmark is not None else None,
        is_partial=len(covered) < len(points),
        points=points,
        warnings=warnings,
    )


class PortfolioSnapshot(CamelModel):
    snapshot_date: date
    total_value: Decimal
    cost_basis: Decimal
    gain_loss: Decimal


def _history_days(period: HistoryPeriod, start: date, end: date) -> list[date]:
    if period == HistoryPeriod.ONE_MONTH:
        step = timedelta(days=1)
    elif period in (HistoryPeriod.THREE_MONTHS, HistoryPeriod.SIX_MONTHS):
        step = timedelta(days=7)
    else:
        return sorted({start, end, *month_ends_between(start, end)})

    days: list[date] = []
    cursor = start
    while cursor < end:
        days.append(cursor)
        cursor += step
    days.append(end)
    return days


def get_portfolio_history(
    entries: Sequence[LedgerEntry],
    prices: PriceOracle,
    *,
    period: HistoryPeriod,
    today: date,
    lot_ledger: LotLedger | None = None,
) -> list[PortfolioSnapshot]:
    """Market value of open positions against their remaining cost, sampled over ``period``."""
    start = period_start(period, today, _inception(entries, today))
    book = PriceBook(prices, _symbols(entries), start, today)
    valuer = PortfolioValuer(entries, book, lot_ledger or LotLedger())

    snapshots: list[PortfolioSnapshot] = []
    for day in _history_days(period, start, today):
        valuation = valuer.at(day)
        snapshots.append(
            PortfolioSnapshot(
                snapshot_date=day,
                total_value=valuation.market_value,
                cost_basis=valuation.cost_basis,
                gain_loss=valuation.market_value - valuation.cost_basis,
            )
        )
    return snapshots


class RealizedGainSummary(CamelModel):
    year: int
    short_term: Decimal
    long_term: Decimal
    total: Decimal
    records: list[RealizedGainRecord]


def calculate_realized_gains(replay: LotLedgerResult, year: int) -> RealizedGainSummary:
    records = replay.gains_for_year(year)
    short_term = sum(
        (record.gain for record in records if record.holding_period == HoldingPeriod.SHORT_TERM), start=ZERO
    )
    long_term = sum(
        (record.gain for record in records if record.holding_period == HoldingPeriod.LONG_TERM), start=ZERO
    )
    return RealizedGainSummary(
        year=year, short_term=short_term, long_term=long_term, total=short_term + long_term, records=records
    )


class CategorySummary(CamelModel):
    category: str
    amount: Decimal
    count: int


class BankSummary(CamelModel):
    total_income: Decimal
    total_expenses: Decimal
    net_cash_flow: Decimal
    income_by_category: list[CategorySummary]
    expenses_by_category: list[CategorySummary]


def calculate_bank_summary(
    entries: Iterable[LedgerEntry], *, start: date | None = None, end: date | None = None
) -> BankSummary:
    """Income vs expenses of categorized entries; expenses stay negative."""
    categories: dict[str, list[Decimal]] = defaultdict(list)
    for entry in entries:
        if entry.category is None:
            continue
        day = entry.date.date()
        if (start is not None and day < start) or (end is not None and day > end):
            continue
        categories[entry.category].append(entry.amount)

    income: list[CategorySummary] = []
    expenses: list[CategorySummary] = []
    for category, amounts in sorted(categories.items()):
        summary = CategorySummary(category=category, amount=sum(amounts, start=ZERO), count=len(amounts))
        if category in INCOME_CATEGORIES or summary.amount > 0:
            income.append(summary)
        else:
            expenses.append(summary)

    total_income = sum((summary.amount for summary in income), start=ZERO)
    total_expenses = sum((summary.amount for summary in expenses), start=ZERO)
    return BankSummary(
        total_income=total_income,
        total_expenses=total_expenses,
        net_cash_flow=total_income + total_expenses,
        income_by_category=sorted(income, key=lambda summary: -summary.amount),
        expenses_by_category=sorted(expenses, key=lambda summary: summary.amount),
    )
