from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from pydantic import BaseModel

from .ledger import AccountId, LedgerEntry, PortfolioId, Symbol, TransactionType, UserId
from .portfolio import Portfolio
from .tolerance import ToleranceRange

DateRange = tuple[datetime, datetime]


class DuplicateExternalIdError(Exception):
    """Raised by ``LedgerStore.insert`` when ``(account_id, external_id)`` already exists."""

    def __init__(self, *, account_id: str, external_id: str) -> None:
        self.account_id = account_id
        self.external_id = external_id
        super().__init__(f"Ledger entry with external_id={external_id} already exists for account={account_id}")


class ImportBatchInfo(BaseModel):
    import_batch: str
    account_id: AccountId
    entry_count: int
    imported_at: datetime


class LedgerStore(Protocol):
    def find_by_external_id(self, account_id: AccountId, external_id: str) -> LedgerEntry | None: ...

    def find_by_composite_key(
        self,
        account_id: AccountId,
        date_range: DateRange,
        tx_type: TransactionType,
        symbol: Symbol,
        amount_range: ToleranceRange,
        quantity_range: ToleranceRange | None = None,
    ) -> LedgerEntry | None: ...

    def bulk_find_by_external_ids(self, account_id: AccountId, external_ids: Iterable[str]) -> list[LedgerEntry]: ...

    def insert(self, entry: LedgerEntry) -> LedgerEntry: ...

    def list_by_portfolio(self, portfolio_id: PortfolioId, date_range: DateRange | None = None) -> list[LedgerEntry]:
        """Entries of every account in the portfolio, by date then insertion order."""
        ...


class PortfolioStore(Protocol):
    def get_for_user(self, portfolio_id: PortfolioId, user_id: UserId) -> Portfolio | None: ...


class BatchLedgerStore(LedgerStore, Protocol):
    def delete_batch(self, import_batch: str, account_id: AccountId | None = None) -> int: ...

    def import_history(self, account_id: AccountId) -> list[ImportBatchInfo]: ...
