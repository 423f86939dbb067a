from __future__ import annotations

from datetime import date
from enum import StrEnum
from typing import Iterable, TypeVar

from utils.performance import HistoryPeriod

MIN_TAX_YEAR = 2000

E = TypeVar("E", bound=StrEnum)


DEFAULT_BENCHMARK = "SP500"


class InvalidRequestError(ValueError):
    """Caller input rejected before any computation runs."""


class AnalyticsType(StrEnum):
    PERFORMANCE = "performance"
    HOLDINGS = "holdings"
    DIVIDENDS = "dividends"
    ALLOCATION = "allocation"
    HISTORY = "history"
    BENCHMARK = "benchmark"
    TAX = "tax"
    BANK_SUMMARY = "bank_summary"


class ReportFormat(StrEnum):
    JSON = "json"
    CSV = "csv"


def parse_year(raw: str | int | None, *, today: date | None = None) -> int:
    today = today or date.today()
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise InvalidRequestError("Year is required")
    try:
        year = int(raw)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"Invalid year: {raw!r}") from None
    if not MIN_TAX_YEAR <= year <= today.year + 1:
        raise InvalidRequestError(f"Year must be between {MIN_TAX_YEAR} and {today.year + 1}")
    return year


def parse_optional_year(raw: str | int | None, *, today: date | None = None) -> int | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    return parse_year(raw, today=today)


def parse_choice(enum_cls: type[E], raw: str, label: str) -> E:
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidRequestError(f"Invalid {label} {raw!r}; expected one of: {allowed}") from None


def parse_analytics_type(raw: str) -> AnalyticsType:
    return parse_choice(AnalyticsType, raw.strip().lower(), "analytics type")


def parse_period(raw: str | None, default: HistoryPeriod = HistoryPeriod.ONE_YEAR) -> HistoryPeriod:
    if raw is None:
        return default
    return parse_choice(HistoryPeriod, raw.strip().upper(), "period")


def parse_report_format(raw: str | None) -> ReportFormat:
    if raw is None:
        return ReportFormat.JSON
    return parse_choice(ReportFormat, raw.strip().lower(), "format")


def parse_benchmark(raw: str | None, known: Iterable[str], default: str = DEFAULT_BENCHMARK) -> str:
    name = (raw or default).strip().upper()
    known_names = sorted(known)
    if name not in known_names:
        raise InvalidRequestError(f"Invalid benchmark {raw!r}; expected one of: {', '.join(known_names)}")
    return name


def parse_date_range(start: date | None, end: date | None) -> tuple[date | None, date | None]:
    if start is not None and end is not None and start > end:
        raise InvalidRequestError("start must not be after end")
    return start, end


__all__ = [
    "AnalyticsType",
    "DEFAULT_BENCHMARK",
    "InvalidRequestError",
    "MIN_TAX_YEAR",
    "ReportFormat",
    "parse_analytics_type",
    "parse_benchmark",
    "parse_choice",
    "parse_date_range",
    "parse_optional_year",
    "parse_period",
    "parse_report_format",
    "parse_year",
]
