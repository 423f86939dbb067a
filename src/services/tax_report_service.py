from __future__ import annotations

import logging

from domain.access import AccessValidator, FeatureKey, require_feature
from domain.ledger import PortfolioId, UserId
from domain.ledger_store import LedgerStore, PortfolioStore
from domain.lots import LotLedger, LotLedgerResult, OversellError
from domain.portfolio import Portfolio
from utils.tax_report import TaxReport, build_tax_report, tax_years

logger = logging.getLogger(__name__)


def replay_portfolio(ledger: LedgerStore, lot_ledger: LotLedger, portfolio: Portfolio) -> LotLedgerResult:
    entries = ledger.list_by_portfolio(portfolio.id)
    try:
        return lot_ledger.replay(entries)
    except OversellError as exc:
        logger.error(
            "Ledger inconsistency in portfolio %s: account=%s symbol=%s date=%s",
            portfolio.id,
            exc.account_id,
            exc.symbol,
            exc.disposed_date.isoformat(),
        )
        raise


class TaxReportService:
    def __init__(
        self,
        *,
        portfolios: PortfolioStore,
        ledger: LedgerStore,
        access: AccessValidator,
        lot_ledger: LotLedger | None = None,
    ) -> None:
        self.portfolios = portfolios
        self.ledger = ledger
        self.access = access
        self.lot_ledger = lot_ledger or LotLedger()

    def generate_tax_report(
        self, portfolio_id: PortfolioId, user_id: UserId, year: int, *, include_zero_gains: bool = False
    ) -> TaxReport | None:
        require_feature(self.access, user_id, FeatureKey.TAX_REPORTS)
        portfolio = self.portfolios.get_for_user(portfolio_id, user_id)
        if portfolio is None:
            return None

        replay = replay_portfolio(self.ledger, self.lot_ledger, portfolio)
        report = build_tax_report(portfolio, year, replay.realized_gains, include_zero_gains=include_zero_gains)
        logger.info(
            "Tax report %s/%d: %d short-term, %d long-term rows, net %s",
            portfolio.id,
            year,
            report.short_term_count,
            report.long_term_count,
            report.totals.net,
        )
        return report

    def get_tax_years(self, portfolio_id: PortfolioId, user_id: UserId) -> list[int] | None:
        require_feature(self.access, user_id, FeatureKey.TAX_REPORTS)
        portfolio = self.portfolios.get_for_user(portfolio_id, user_id)
        if portfolio is None:
            return None
        return tax_years(replay_portfolio(self.ledger, self.lot_ledger, portfolio).realized_gains)


__all__ = ["TaxReportService", "replay_portfolio"]
