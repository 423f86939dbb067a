from __future__ import annotations

import csv
import io
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from pydantic import Field

from domain.base_types import CamelModel
from domain.ledger import AccountId, HoldingPeriod, RealizedGainRecord, Symbol
from domain.portfolio import Portfolio

from .formatting import format_currency, format_decimal

FORM_8949_HEADER = ("Description", "Acquired", "Disposed", "Proceeds", "Cost Basis", "Gain/Loss", "Term")

_TERM_LABELS = {
    HoldingPeriod.SHORT_TERM: "Short-term",
    HoldingPeriod.LONG_TERM: "Long-term",
}


class Form8949Row(CamelModel):
    description: str
    symbol: Symbol
    account_id: AccountId
    quantity: Decimal
    date_acquired: date
    date_sold: date
    proceeds: Decimal
    cost_basis: Decimal
    gain_or_loss: Decimal
    holding_period: HoldingPeriod
    holding_period_days: int
    lot_id: UUID
    transaction_id: UUID

    @classmethod
    def from_record(cls, record: RealizedGainRecord) -> Form8949Row:
        return cls(
            description=f"{format_decimal(record.quantity_closed)} sh {record.symbol}",
            symbol=record.symbol,
            account_id=record.account_id,
            quantity=record.quantity_closed,
            date_acquired=record.acquired_date,
            date_sold=record.disposed_date,
            proceeds=record.proceeds,
            cost_basis=record.cost_basis,
            gain_or_loss=record.gain,
            holding_period=record.holding_period,
            holding_period_days=record.holding_period_days,
            lot_id=record.lot_id,
            transaction_id=record.disposal_entry_id,
        )


class TaxTotals(CamelModel):
    short_term: Decimal
    long_term: Decimal
    net: Decimal


class PartSummary(CamelModel):
    proceeds: Decimal
    cost_basis: Decimal
    gain_or_loss: Decimal

    @classmethod
    def of(cls, rows: Iterable[Form8949Row]) -> PartSummary:
        proceeds = cost_basis = gain = Decimal(0)
        for row in rows:
            proceeds += row.proceeds
            cost_basis += row.cost_basis
            gain += row.gain_or_loss
        return cls(proceeds=proceeds, cost_basis=cost_basis, gain_or_loss=gain)


class ScheduleDSummary(CamelModel):
    """Schedule D lines fed by Form 8949.

    Every row is reported as basis-reported-to-IRS (boxes A and D), so lines
    1b, 2, 8b and 9 stay zero.
    """

    year: int
    line_1a: Decimal = Field(alias="line1a")
    line_1b: Decimal = Field(default=Decimal(0), alias="line1b")
    line_2: Decimal = Decimal(0)
    line_7: Decimal
    line_8a: Decimal = Field(alias="line8a")
    line_8b: Decimal = Field(default=Decimal(0), alias="line8b")
    line_9: Decimal = Decimal(0)
    line_15: Decimal
    line_16: Decimal


class TaxReport(CamelModel):
    portfolio_id: str
    portfolio_name: str
    year: int
    generated_at: datetime = Field(default_factory=datetime.now)
    short_term_gains: list[Form8949Row]
    long_term_gains: list[Form8949Row]
    totals: TaxTotals
    short_term_summary: PartSummary
    long_term_summary: PartSummary
    schedule_d: ScheduleDSummary
    transaction_count: int
    short_term_count: int
    long_term_count: int

    @property
    def rows(self) -> list[Form8949Row]:
        return [*self.short_term_gains, *self.long_term_gains]


def records_for_year(
    records: Iterable[RealizedGainRecord], year: int, *, include_zero_gains: bool = False
) -> list[RealizedGainRecord]:
    selected = [
        record
        for record in records
        if record.disposed_date.year == year and (include_zero_gains or record.gain != 0)
    ]
    return sorted(selected, key=lambda record: (record.disposed_date, record.acquired_date))


def tax_years(records: Iterable[RealizedGainRecord]) -> list[int]:
    return sorted({record.disposed_date.year for record in records}, reverse=True)


def build_tax_report(
    portfolio: Portfolio,
    year: int,
    records: Iterable[RealizedGainRecord],
    *,
    include_zero_gains: bool = False,
) -> TaxReport:
    short_term: list[Form8949Row] = []
    long_term: list[Form8949Row] = []
    for record in records_for_year(records, year, include_zero_gains=include_zero_gains):
        row = Form8949Row.from_record(record)
        if row.holding_period == HoldingPeriod.SHORT_TERM:
            short_term.append(row)
        else:
            long_term.append(row)

    short_summary = PartSummary.of(short_term)
    long_summary = PartSummary.of(long_term)
    net = short_summary.gain_or_loss + long_summary.gain_or_loss

    return TaxReport(
        portfolio_id=portfolio.id,
        portfolio_name=portfolio.name,
        year=year,
        short_term_gains=short_term,
        long_term_gains=long_term,
        totals=TaxTotals(short_term=short_summary.gain_or_loss, long_term=long_summary.gain_or_loss, net=net),
        short_term_summary=short_summary,
        long_term_summary=long_summary,
        schedule_d=ScheduleDSummary(
            year=year,
            line_1a=short_summary.gain_or_loss,
            line_7=short_summary.gain_or_loss,
            line_8a=long_summary.gain_or_loss,
            line_15=long_summary.gain_or_loss,
            line_16=net,
        ),
        transaction_count=len(short_term) + len(long_term),
        short_term_count=len(short_term),
        long_term_count=len(long_term),
    )


def generate_form8949_csv(report: TaxReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(FORM_8949_HEADER)
    for row in report.rows:
        writer.writerow(
            [
                row.description,
                row.date_acquired.isoformat(),
                row.date_sold.isoformat(),
                format_currency(row.proceeds),
                format_currency(row.cost_basis),
                format_currency(row.gain_or_loss),
                _TERM_LABELS[row.holding_period],
            ]
        )
    return buffer.getvalue()


__all__ = [
    "FORM_8949_HEADER",
    "Form8949Row",
    "ScheduleDSummary",
    "TaxReport",
    "TaxTotals",
    "build_tax_report",
    "generate_form8949_csv",
    "records_for_year",
    "tax_years",
]
