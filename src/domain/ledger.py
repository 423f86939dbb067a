from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum
from typing import NewType
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

AccountId = NewType("AccountId", str)
PortfolioId = NewType("PortfolioId", str)
UserId = NewType("UserId", str)
Symbol = NewType("Symbol", str)
LedgerEntryId = NewType("LedgerEntryId", UUID)
LotId = NewType("LotId", UUID)


class TransactionType(StrEnum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"
    REINVEST_DIVIDEND = "REINVEST_DIVIDEND"
    INTEREST = "INTEREST"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    TRANSFER = "TRANSFER"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    FEE = "FEE"
    TAX_WITHHOLDING = "TAX_WITHHOLDING"
    SPLIT = "SPLIT"
    OTHER = "OTHER"


ACQUISITION_TYPES = frozenset({TransactionType.BUY, TransactionType.REINVEST_DIVIDEND})
DISPOSAL_TYPES = frozenset({TransactionType.SELL})
EXTERNAL_FLOW_TYPES = frozenset(
    {
        TransactionType.DEPOSIT,
        TransactionType.WITHDRAWAL,
        TransactionType.TRANSFER,
        TransactionType.TRANSFER_IN,
        TransactionType.TRANSFER_OUT,
    }
)


class HoldingPeriod(StrEnum):
    SHORT_TERM = "SHORT_TERM"
    LONG_TERM = "LONG_TERM"


class NormalizedTransaction(BaseModel):
    """A transaction as emitted by an upstream statement parser.

    ``amount`` is signed and already expressed in the account currency.
    Only the calendar day of ``date`` is significant.
    """

    model_config = ConfigDict(frozen=True)

    date: datetime
    type: TransactionType
    symbol: Symbol | None = None
    quantity: Decimal | None = None
    amount: Decimal
    external_id: str | None = None
    account_id: AccountId
    description: str = ""
    category: str | None = None
    import_source: str | None = None

    @field_validator("date", mode="after")
    @classmethod
    def _to_local_naive(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    @field_validator("symbol", "external_id", "category", mode="before")
    @classmethod
    def _empty_to_none(cls, value: str | None) -> str | None:
        if isinstance(value, str):
            value = value.strip()
            if value == "":
                return None
        return value

    @field_validator("symbol", mode="after")
    @classmethod
    def _upper_symbol(cls, value: str | None) -> str | None:
        return value.upper() if value is not None else None

    @model_validator(mode="after")
    def _validate_fields(self) -> NormalizedTransaction:
        if not self.account_id:
            raise ValueError("account_id must be non-empty")
        return self


class LedgerEntry(NormalizedTransaction):
    id: LedgerEntryId = LedgerEntryId(Field(default_factory=uuid4))
    created_at: datetime = Field(default_factory=datetime.now)
    import_batch: str | None = None

    @classmethod
    def from_transaction(
        cls, tx: NormalizedTransaction, *, account_id: AccountId, import_batch: str | None = None
    ) -> LedgerEntry:
        payload = tx.model_dump()
        payload["account_id"] = account_id
        return cls(**payload, import_batch=import_batch)


class AcquisitionLot(BaseModel):
    id: LotId = LotId(Field(default_factory=uuid4))
    source_entry_id: LedgerEntryId
    account_id: AccountId
    symbol: Symbol
    opened_date: date
    original_quantity: Decimal
    remaining_quantity: Decimal
    unit_cost: Decimal

    @model_validator(mode="after")
    def _validate_fields(self) -> AcquisitionLot:
        if self.original_quantity <= 0:
            raise ValueError("original_quantity must be > 0")
        if not 0 <= self.remaining_quantity <= self.original_quantity:
            raise ValueError("remaining_quantity must be within [0, original_quantity]")
        if self.unit_cost < 0:
            raise ValueError("unit_cost must be >= 0")
        return self

    @property
    def cost_basis_remaining(self) -> Decimal:
        return self.remaining_quantity * self.unit_cost


def one_year_after(day: date) -> date:
    try:
        return day.replace(year=day.year + 1)
    except ValueError:
        # Feb 29 acquisitions reach their anniversary on Feb 28.
        return day.replace(year=day.year + 1, day=28)


def classify_holding_period(acquired: date, disposed: date) -> HoldingPeriod:
    if disposed < one_year_after(acquired):
        return HoldingPeriod.SHORT_TERM
    return HoldingPeriod.LONG_TERM


class RealizedGainRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    lot_id: LotId
    disposal_entry_id: LedgerEntryId
    account_id: AccountId
    symbol: Symbol
    quantity_closed: Decimal
    proceeds: Decimal
    cost_basis: Decimal
    acquired_date: date
    disposed_date: date

    @model_validator(mode="after")
    def _validate(self) -> RealizedGainRecord:
        if self.quantity_closed <= 0:
            raise ValueError("quantity_closed must be > 0")
        if self.disposed_date < self.acquired_date:
            raise ValueError("disposed_date must not precede acquired_date")
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def gain(self) -> Decimal:
        return self.proceeds - self.cost_basis

    @computed_field  # type: ignore[prop-decorator]
    @property
    def holding_period(self) -> HoldingPeriod:
        return classify_holding_period(self.acquired_date, self.disposed_date)

    @property
    def holding_period_days(self) -> int:
        return (self.disposed_date - self.acquired_date).days
