from __future__ import annotations

from typing import Iterable

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db import models
from domain.ledger import AccountId, LedgerEntry, LedgerEntryId, PortfolioId, Symbol, TransactionType, UserId
from domain.ledger_store import DateRange, DuplicateExternalIdError, ImportBatchInfo
from domain.portfolio import Account, AccountType, Portfolio
from domain.tolerance import ToleranceRange


_EXTERNAL_ID_CONSTRAINT = "uq_ledger_entries_account_external_id"
_EXTERNAL_ID_COLUMNS = "ledger_entries.account_id, ledger_entries.external_id"


def _is_external_id_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    # SQLite reports the columns; other backends name the constraint.
    return _EXTERNAL_ID_CONSTRAINT in message or _EXTERNAL_ID_COLUMNS in message


class LedgerEntryRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def insert(self, entry: LedgerEntry) -> LedgerEntry:
        self._session.add(self._to_orm(entry))
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            if entry.external_id is None or not _is_external_id_conflict(exc):
                raise
            raise DuplicateExternalIdError(account_id=entry.account_id, external_id=entry.external_id) from None
        return entry

    def get(self, entry_id: LedgerEntryId) -> LedgerEntry | None:
        orm_entry = self._session.query(models.LedgerEntryOrm).filter(models.LedgerEntryOrm.id == entry_id).first()
        if orm_entry is None:
            return None
        return self._to_domain(orm_entry)

    def find_by_external_id(self, account_id: AccountId, external_id: str) -> LedgerEntry | None:
        orm_entry = (
            self._session.query(models.LedgerEntryOrm)
            .filter(
                models.LedgerEntryOrm.account_id == account_id,
                models.LedgerEntryOrm.external_id == external_id,
            )
            .first()
        )
        if orm_entry is None:
            return None
        return self._to_domain(orm_entry)

    def find_by_composite_key(
        self,
        account_id: AccountId,
        date_range: DateRange,
        tx_type: TransactionType,
        symbol: Symbol,
        amount_range: ToleranceRange,
        quantity_range: ToleranceRange | None = None,
    ) -> LedgerEntry | None:
        start, end = date_range
        candidates = (
            self._session.query(models.LedgerEntryOrm)
            .filter(
                models.LedgerEntryOrm.account_id == account_id,
                models.LedgerEntryOrm.date >= start,
                models.LedgerEntryOrm.date <= end,
                models.LedgerEntryOrm.type == tx_type.value,
                models.LedgerEntryOrm.symbol == symbol,
            )
            .order_by(models.LedgerEntryOrm.seq.asc())
            .all()
        )
        # Amounts are stored as strings, so the tolerance window is applied here.
        for candidate in candidates:
            if not amount_range.contains(candidate.amount):
                continue
            if quantity_range is not None and (
                candidate.quantity is None or not quantity_range.contains(candidate.quantity)
            ):
                continue
            return self._to_domain(candidate)
        return None

    def bulk_find_by_external_ids(self, account_id: AccountId, external_ids: Iterable[str]) -> list[LedgerEntry]:
        ids = list(external_ids)
        if not ids:
            return []
        orm_entries = (
            self._session.query(models.LedgerEntryOrm)
            .filter(
                models.LedgerEntryOrm.account_id == account_id,
                models.LedgerEntryOrm.external_id.in_(ids),
            )
            .all()
        )
        return [self._to_domain(entry) for entry in orm_entries]

    def list_by_account(self, account_id: AccountId) -> list[LedgerEntry]:
        orm_entries = (
            self._session.query(models.LedgerEntryOrm)
            .filter(models.LedgerEntryOrm.account_id == account_id)
            .order_by(func.date(models.LedgerEntryOrm.date).asc(), models.LedgerEntryOrm.seq.asc())
            .all()
        )
        return [self._to_domain(entry) for entry in orm_entries]

    def list_by_portfolio(self, portfolio_id: PortfolioId, date_range: DateRange | None = None) -> list[LedgerEntry]:
        query = (
            self._session.query(models.LedgerEntryOrm)
            .join(models.AccountOrm, models.AccountOrm.id == models.LedgerEntryOrm.account_id)
            .filter(models.AccountOrm.portfolio_id == portfolio_id)
        )
        if date_range is not None:
            start, end = date_range
            query = query.filter(models.LedgerEntryOrm.date >= start, models.LedgerEntryOrm.date <= end)
        orm_entries = query.order_by(
            func.date(models.LedgerEntryOrm.date).asc(), models.LedgerEntryOrm.seq.asc()
        ).all()
        return [self._to_domain(entry) for entry in orm_entries]

    def delete_batch(self, import_batch: str, account_id: AccountId | None = None) -> int:
        query = self._session.query(models.LedgerEntryOrm).filter(models.LedgerEntryOrm.import_batch == import_batch)
        if account_id is not None:
            query = query.filter(models.LedgerEntryOrm.account_id == account_id)
        deleted = query.delete(synchronize_session=False)
        self._session.commit()
        return deleted

    def import_history(self, account_id: AccountId) -> list[ImportBatchInfo]:
        rows = (
            self._session.query(
                models.LedgerEntryOrm.import_batch,
                func.count(models.LedgerEntryOrm.seq),
                func.min(models.LedgerEntryOrm.created_at),
            )
            .filter(
                models.LedgerEntryOrm.account_id == account_id,
                models.LedgerEntryOrm.import_batch.is_not(None),
            )
            .group_by(models.LedgerEntryOrm.import_batch)
            .order_by(func.min(models.LedgerEntryOrm.created_at).desc())
            .all()
        )
        return [
            ImportBatchInfo(import_batch=batch, account_id=account_id, entry_count=count, imported_at=imported_at)
            for batch, count, imported_at in rows
        ]

    @staticmethod
    def _to_orm(entry: LedgerEntry) -> models.LedgerEntryOrm:
        return models.LedgerEntryOrm(
            id=entry.id,
            account_id=entry.account_id,
            date=entry.date,
            type=entry.type.value,
            symbol=entry.symbol,
            quantity=entry.quantity,
            amount=entry.amount,
            external_id=entry.external_id,
            description=entry.description,
            category=entry.category,
            import_source=entry.import_source,
            import_batch=entry.import_batch,
            created_at=entry.created_at,
        )

    @staticmethod
    def _to_domain(orm_entry: models.LedgerEntryOrm) -> LedgerEntry:
        return LedgerEntry(
            id=LedgerEntryId(orm_entry.id),
            account_id=AccountId(orm_entry.account_id),
            date=orm_entry.date,
            type=TransactionType(orm_entry.type),
            symbol=Symbol(orm_entry.symbol) if orm_entry.symbol is not None else None,
            quantity=orm_entry.quantity,
            amount=orm_entry.amount,
            external_id=orm_entry.external_id,
            description=orm_entry.description,
            category=orm_entry.category,
            import_source=orm_entry.import_source,
            import_batch=orm_entry.import_batch,
            created_at=orm_entry.created_at,
        )


class PortfolioRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, portfolio: Portfolio) -> Portfolio:
        orm_portfolio = models.PortfolioOrm(
            id=portfolio.id,
            name=portfolio.name,
            user_id=portfolio.user_id,
            created_at=portfolio.created_at,
        )
        orm_portfolio.accounts = [
            models.AccountOrm(id=account.id, name=account.name, account_type=account.account_type.value)
            for account in portfolio.accounts
        ]
        self._session.add(orm_portfolio)
        self._session.commit()
        return portfolio

    def add_account(self, portfolio_id: PortfolioId, account: Account) -> Account:
        self._session.add(
            models.AccountOrm(
                id=account.id,
                portfolio_id=portfolio_id,
                name=account.name,
                account_type=account.account_type.value,
            )
        )
        self._session.commit()
        return account

    def get(self, portfolio_id: PortfolioId) -> Portfolio | None:
        orm_portfolio = self._session.get(models.PortfolioOrm, portfolio_id)
        if orm_portfolio is None:
            return None
        return self._to_domain(orm_portfolio)

    def get_for_user(self, portfolio_id: PortfolioId, user_id: UserId) -> Portfolio | None:
        portfolio = self.get(portfolio_id)
        if portfolio is None or portfolio.user_id != user_id:
            return None
        return portfolio

    def list_for_user(self, user_id: UserId) -> list[Portfolio]:
        orm_portfolios = (
            self._session.query(models.PortfolioOrm)
            .filter(models.PortfolioOrm.user_id == user_id)
            .order_by(models.PortfolioOrm.created_at.asc())
            .all()
        )
        return [self._to_domain(portfolio) for portfolio in orm_portfolios]

    def get_account_for_user(self, account_id: AccountId, user_id: UserId) -> Account | None:
        orm_account = (
            self._session.query(models.AccountOrm)
            .join(models.PortfolioOrm, models.PortfolioOrm.id == models.AccountOrm.portfolio_id)
            .filter(models.AccountOrm.id == account_id, models.PortfolioOrm.user_id == user_id)
            .first()
        )
        if orm_account is None:
            return None
        return self._account_to_domain(orm_account)

    @staticmethod
    def _account_to_domain(orm_account: models.AccountOrm) -> Account:
        return Account(
            id=AccountId(orm_account.id),
            name=orm_account.name,
            account_type=AccountType(orm_account.account_type),
        )

    @classmethod
    def _to_domain(cls, orm_portfolio: models.PortfolioOrm) -> Portfolio:
        return Portfolio(
            id=PortfolioId(orm_portfolio.id),
            name=orm_portfolio.name,
            user_id=UserId(orm_portfolio.user_id),
            created_at=orm_portfolio.created_at,
            accounts=[cls._account_to_domain(account) for account in orm_portfolio.accounts],
        )
