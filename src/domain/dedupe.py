from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time
from typing import Iterable

from .ledger import AccountId, LedgerEntryId, NormalizedTransaction
from .ledger_store import DateRange, LedgerStore
from .tolerance import amount_range, quantity_range

REASON_EXTERNAL_ID = "matching externalId"
REASON_COMPOSITE_KEY = "matching date, type, symbol, and amount"

_END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    existing_id: LedgerEntryId | None = None
    reason: str | None = None


NOT_DUPLICATE = DuplicateCheck(is_duplicate=False)


def day_range(moment: datetime) -> DateRange:
    day = moment.date()
    return datetime.combine(day, time.min), datetime.combine(day, _END_OF_DAY)


def matches_composite_key(tx: NormalizedTransaction, other: NormalizedTransaction) -> bool:
    """Whether ``other`` falls inside the composite-key window of ``tx``."""
    if tx.symbol is None or other.symbol != tx.symbol or other.type != tx.type:
        return False
    if other.date.date() != tx.date.date() or not amount_range(tx.amount).contains(other.amount):
        return False
    if tx.quantity is None:
        return True
    return other.quantity is not None and quantity_range(tx.quantity).contains(other.quantity)


class DuplicateResolver:
    """Decide whether an incoming transaction is already in an account's ledger.

    The external id is authoritative when present. Without one, security
    trades fall back to a same-day composite key with amount/quantity
    tolerance. Cash movements (no symbol) skip the composite check, because
    several same-day, same-amount bank transactions are legitimate.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def resolve(self, tx: NormalizedTransaction, account_id: AccountId) -> DuplicateCheck:
        if tx.external_id is not None:
            existing = self._store.find_by_external_id(account_id, tx.external_id)
            if existing is not None:
                return DuplicateCheck(is_duplicate=True, existing_id=existing.id, reason=REASON_EXTERNAL_ID)

        if tx.symbol is not None:
            existing = self._store.find_by_composite_key(
                account_id,
                day_range(tx.date),
                tx.type,
                tx.symbol,
                amount_range(tx.amount),
                quantity_range(tx.quantity) if tx.quantity is not None else None,
            )
            if existing is not None:
                return DuplicateCheck(is_duplicate=True, existing_id=existing.id, reason=REASON_COMPOSITE_KEY)

        return NOT_DUPLICATE


class BatchReconciler:
    """Bulk external-id pre-filter for an import batch.

    Only accelerates the external-id branch; rows absent from the returned
    mapping still need ``DuplicateResolver.resolve``.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store

    def find_existing(
        self, transactions: Iterable[NormalizedTransaction], account_id: AccountId
    ) -> dict[str, LedgerEntryId]:
        external_ids = sorted({tx.external_id for tx in transactions if tx.external_id is not None})
        if not external_ids:
            return {}

        existing = self._store.bulk_find_by_external_ids(account_id, external_ids)
        return {entry.external_id: entry.id for entry in existing if entry.external_id is not None}


__all__ = [
    "BatchReconciler",
    "DuplicateCheck",
    "DuplicateResolver",
    "NOT_DUPLICATE",
    "REASON_COMPOSITE_KEY",
    "REASON_EXTERNAL_ID",
    "day_range",
    "matches_composite_key",
]
