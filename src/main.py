from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Sequence

from config import AppSettings, config
from db.db import create_session_factory
from db.repositories import LedgerEntryRepository, PortfolioRepository
from domain.access import FeatureLockedError
from domain.ledger import AccountId, NormalizedTransaction, PortfolioId, UserId
from domain.lots import OversellError
from domain.portfolio import Account, AccountType, Portfolio
from importers.normalized_csv import NormalizedCsvImporter
from services.access import StaticAccessPolicy
from services.analytics_service import AnalyticsService
from services.import_service import ImportSummary, import_accounts
from services.price_service import build_default_service
from services.tax_report_service import TaxReportService
from services.validation import (
    AnalyticsType,
    InvalidRequestError,
    ReportFormat,
    parse_analytics_type,
    parse_benchmark,
    parse_optional_year,
    parse_period,
    parse_report_format,
    parse_year,
)
from utils.tax_report import generate_form8949_csv

logger = logging.getLogger(__name__)


def _access_policy(settings: AppSettings) -> StaticAccessPolicy:
    return StaticAccessPolicy(
        default_tier=settings.default_user_tier,
        feature_tiers=settings.feature_tiers,
        user_tiers=settings.user_tiers,
    )


def _parse_account_file(raw: str) -> tuple[AccountId, Path]:
    account_id, sep, path = raw.partition("=")
    if not sep or not account_id or not path:
        raise argparse.ArgumentTypeError(f"expected ACCOUNT_ID=PATH, got {raw!r}")
    return AccountId(account_id), Path(path)


def create_portfolio(settings: AppSettings, args: argparse.Namespace) -> None:
    with create_session_factory(settings.db_file)() as session:
        portfolio = PortfolioRepository(session).create(Portfolio(name=args.name, user_id=UserId(args.user)))
    print(portfolio.id)


def create_account(settings: AppSettings, args: argparse.Namespace) -> None:
    with create_session_factory(settings.db_file)() as session:
        portfolios = PortfolioRepository(session)
        if portfolios.get_for_user(PortfolioId(args.portfolio), UserId(args.user)) is None:
            raise InvalidRequestError(f"Portfolio {args.portfolio} not found")
        account = portfolios.add_account(
            PortfolioId(args.portfolio), Account(name=args.name, account_type=AccountType(args.account_type))
        )
    print(account.id)


def import_files(settings: AppSettings, args: argparse.Namespace) -> None:
    batches: dict[AccountId, list[NormalizedTransaction]] = {}
    for account_id, path in args.files:
        importer = NormalizedCsvImporter(path, account_id=account_id, import_source=path.name)
        batches.setdefault(account_id, []).extend(importer.load_transactions())

    summaries = import_accounts(
        create_session_factory(settings.db_file),
        batches,
        dry_run=args.dry_run,
        max_workers=settings.import_max_workers,
    )
    for account_id in batches:
        render_import_summary(summaries[account_id])


def render_import_summary(summary: ImportSummary) -> None:
    prefix = "[dry run] " if summary.dry_run else ""
    print(f"{prefix}Account {summary.account_id} (batch {summary.import_batch or '-'}):")
    print(f"  Imported: {summary.imported}")
    print(f"  Skipped:  {summary.skipped}")
    print(f"  Errors:   {summary.errors}")
    for result in summary.results:
        if result.status != "imported":
            print(f"    row {result.index}: {result.status} ({result.reason})")


def tax_report(settings: AppSettings, args: argparse.Namespace) -> None:
    year = parse_year(args.year)
    report_format = parse_report_format(args.format)
    with create_session_factory(settings.db_file)() as session:
        service = TaxReportService(
            portfolios=PortfolioRepository(session),
            ledger=LedgerEntryRepository(session),
            access=_access_policy(settings),
        )
        report = service.generate_tax_report(
            PortfolioId(args.portfolio), UserId(args.user), year, include_zero_gains=args.include_zero_gains
        )
    if report is None:
        raise InvalidRequestError(f"Portfolio {args.portfolio} not found")

    if report_format == ReportFormat.CSV:
        output = generate_form8949_csv(report)
    else:
        output = report.model_dump_json(by_alias=True, indent=2)
    if args.output is None:
        sys.stdout.write(output)
        return
    args.output.write_text(output, encoding="utf-8")
    print(f"Wrote {len(report.rows)} rows to {args.output}")


def analytics(settings: AppSettings, args: argparse.Namespace) -> None:
    analytics_type = parse_analytics_type(args.type)
    benchmark = (
        parse_benchmark(args.benchmark, settings.benchmark_symbols)
        if analytics_type == AnalyticsType.BENCHMARK
        else None
    )
    with create_session_factory(settings.db_file)() as session:
        service = AnalyticsService(
            portfolios=PortfolioRepository(session),
            ledger=LedgerEntryRepository(session),
            prices=build_default_service(settings.price_cache_dir),
            access=_access_policy(settings),
            benchmark_symbols=settings.benchmark_symbols,
        )
        envelope = service.get_analytics(
            PortfolioId(args.portfolio),
            UserId(args.user),
            analytics_type,
            year=parse_optional_year(args.year),
            period=parse_period(args.period),
            benchmark=benchmark,
            start=args.start,
            end=args.end,
        )
    if envelope is None:
        raise InvalidRequestError(f"Portfolio {args.portfolio} not found")
    print(json.dumps(envelope.model_dump(mode="json", by_alias=True), indent=2))


def record_price(settings: AppSettings, args: argparse.Namespace) -> None:
    quote = build_default_service(settings.price_cache_dir).record(args.symbol, args.date, args.price, args.source)
    print(f"{quote.symbol} {quote.day.isoformat()} {quote.price}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Portfolio ledger: imports, cost-basis tax reports and analytics.")
    parser.add_argument("--db-file", type=Path, default=None, help="override the configured database file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sub = subparsers.add_parser("create-portfolio", help="create a portfolio and print its id")
    sub.add_argument("--user", required=True)
    sub.add_argument("--name", required=True)
    sub.set_defaults(handler=create_portfolio)

    sub = subparsers.add_parser("create-account", help="add an account to a portfolio and print its id")
    sub.add_argument("--user", required=True)
    sub.add_argument("--portfolio", required=True)
    sub.add_argument("--name", required=True)
    sub.add_argument("--type", dest="account_type", choices=[t.value for t in AccountType], default="BROKERAGE")
    sub.set_defaults(handler=create_account)

    sub = subparsers.add_parser("import", help="import normalized CSV exports into accounts")
    sub.add_argument("files", nargs="+", type=_parse_account_file, metavar="ACCOUNT_ID=PATH")
    sub.add_argument("--dry-run", action="store_true")
    sub.set_defaults(handler=import_files)

    sub = subparsers.add_parser("tax-report", help="build the Form 8949 report for a tax year")
    sub.add_argument("--user", required=True)
    sub.add_argument("--portfolio", required=True)
    sub.add_argument("--year", required=True)
    sub.add_argument("--format", default="json")
    sub.add_argument("--include-zero-gains", action="store_true")
    sub.add_argument("--output", type=Path, default=None)
    sub.set_defaults(handler=tax_report)

    sub = subparsers.add_parser("analytics", help="compute portfolio analytics")
    sub.add_argument("--user", required=True)
    sub.add_argument("--portfolio", required=True)
    sub.add_argument("--type", default="performance")
    sub.add_argument("--year", default=None)
    sub.add_argument("--period", default=None)
    sub.add_argument("--benchmark", default=None)
    sub.add_argument("--start", type=date.fromisoformat, default=None)
    sub.add_argument("--end", type=date.fromisoformat, default=None)
    sub.set_defaults(handler=analytics)

    sub = subparsers.add_parser("price", help="record a closing price snapshot")
    sub.add_argument("symbol")
    sub.add_argument("date", type=date.fromisoformat)
    sub.add_argument("price", type=Decimal)
    sub.add_argument("--source", default="manual")
    sub.set_defaults(handler=record_price)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    settings = config()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    if args.db_file is not None:
        settings = settings.model_copy(update={"db_file": args.db_file})

    try:
        args.handler(settings, args)
    except (InvalidRequestError, FeatureLockedError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    except OversellError as exc:
        print(f"error: ledger inconsistency: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
