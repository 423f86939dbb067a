from __future__ import annotations

import logging
import secrets
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from enum import StrEnum
from time import perf_counter
from typing import Mapping, Sequence

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session, sessionmaker

from db.repositories import LedgerEntryRepository
from domain.dedupe import (
    REASON_COMPOSITE_KEY,
    REASON_EXTERNAL_ID,
    BatchReconciler,
    DuplicateResolver,
    matches_composite_key,
)
from domain.ledger import AccountId, LedgerEntry, LedgerEntryId, NormalizedTransaction
from domain.ledger_store import BatchLedgerStore, DuplicateExternalIdError, ImportBatchInfo

logger = logging.getLogger(__name__)

REASON_IN_BATCH = "repeated externalId within the batch"


def new_import_batch_id(now: datetime | None = None) -> str:
    now = now or datetime.now()
    return f"import-{now:%Y%m%dT%H%M%S}-{secrets.token_hex(3)}"


class ImportStatus(StrEnum):
    IMPORTED = "imported"
    SKIPPED = "skipped"
    ERROR = "error"


class TransactionImportResult(BaseModel):
    index: int
    status: ImportStatus
    entry_id: LedgerEntryId | None = None
    existing_id: LedgerEntryId | None = None
    reason: str | None = None


class ImportSummary(BaseModel):
    account_id: AccountId
    import_batch: str | None
    dry_run: bool
    total: int
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    results: list[TransactionImportResult] = Field(default_factory=list)

    def record(self, result: TransactionImportResult) -> None:
        self.results.append(result)
        if result.status == ImportStatus.IMPORTED:
            self.imported += 1
        elif result.status == ImportStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1


class ImportService:
    """Gate normalized transactions into an account's ledger.

    Each row goes through the bulk external-id pre-filter, then the
    per-row duplicate resolver, then ``insert``. An insert that loses a
    race on ``(account_id, external_id)`` is recorded as a skipped duplicate.
    """

    def __init__(self, ledger: BatchLedgerStore) -> None:
        self.ledger = ledger
        self.resolver = DuplicateResolver(ledger)
        self.reconciler = BatchReconciler(ledger)

    def import_transactions(
        self,
        transactions: Sequence[NormalizedTransaction],
        account_id: AccountId,
        *,
        dry_run: bool = False,
        skip_duplicates: bool = True,
    ) -> ImportSummary:
        started = perf_counter()
        summary = ImportSummary(
            account_id=account_id,
            import_batch=None if dry_run else new_import_batch_id(),
            dry_run=dry_run,
            total=len(transactions),
        )
        # The unique constraint guards external ids even without the resolver.
        check_known = skip_duplicates or dry_run
        known = self.reconciler.find_existing(transactions, account_id) if check_known else {}
        # A dry run inserts nothing, so rows it would import stand in for the ledger.
        accepted: list[NormalizedTransaction] = []

        for index, tx in enumerate(transactions):
            if check_known and tx.external_id is not None and tx.external_id in known:
                logger.debug("Row %d: externalId %s already in ledger", index, tx.external_id)
                result = TransactionImportResult(
                    index=index,
                    status=ImportStatus.SKIPPED,
                    existing_id=known[tx.external_id],
                    reason=REASON_EXTERNAL_ID,
                )
            elif dry_run:
                result = self._dry_run_one(index, tx, account_id, accepted, skip_duplicates)
            else:
                result = self._import_one(index, tx, account_id, summary.import_batch, skip_duplicates)
            summary.record(result)

        logger.info(
            "Import into account %s (batch=%s, dry_run=%s): %d imported, %d skipped, %d errors of %d in %.2fs",
            account_id,
            summary.import_batch,
            dry_run,
            summary.imported,
            summary.skipped,
            summary.errors,
            summary.total,
            perf_counter() - started,
        )
        return summary

    def _resolve(self, index: int, tx: NormalizedTransaction, account_id: AccountId) -> TransactionImportResult | None:
        check = self.resolver.resolve(tx, account_id)
        if not check.is_duplicate:
            return None
        logger.debug("Row %d: duplicate of %s (%s)", index, check.existing_id, check.reason)
        return TransactionImportResult(
            index=index, status=ImportStatus.SKIPPED, existing_id=check.existing_id, reason=check.reason
        )

    def _dry_run_one(
        self,
        index: int,
        tx: NormalizedTransaction,
        account_id: AccountId,
        accepted: list[NormalizedTransaction],
        skip_duplicates: bool,
    ) -> TransactionImportResult:
        if tx.external_id is not None and any(row.external_id == tx.external_id for row in accepted):
            return TransactionImportResult(index=index, status=ImportStatus.SKIPPED, reason=REASON_IN_BATCH)
        if skip_duplicates:
            duplicate = self._resolve(index, tx, account_id)
            if duplicate is not None:
                return duplicate
            if any(matches_composite_key(tx, row) for row in accepted):
                return TransactionImportResult(index=index, status=ImportStatus.SKIPPED, reason=REASON_COMPOSITE_KEY)

        try:
            LedgerEntry.from_transaction(tx, account_id=account_id)
        except ValidationError as exc:
            return TransactionImportResult(index=index, status=ImportStatus.ERROR, reason=str(exc))
        accepted.append(tx)
        return TransactionImportResult(index=index, status=ImportStatus.IMPORTED)

    def _import_one(
        self,
        index: int,
        tx: NormalizedTransaction,
        account_id: AccountId,
        import_batch: str | None,
        skip_duplicates: bool,
    ) -> TransactionImportResult:
        if skip_duplicates:
            duplicate = self._resolve(index, tx, account_id)
            if duplicate is not None:
                return duplicate

        try:
            entry = LedgerEntry.from_transaction(tx, account_id=account_id, import_batch=import_batch)
        except ValidationError as exc:
            return TransactionImportResult(index=index, status=ImportStatus.ERROR, reason=str(exc))

        try:
            self.ledger.insert(entry)
        except DuplicateExternalIdError as exc:
            logger.info("Row %d: lost insert race on externalId %s; skipping", index, exc.external_id)
            return TransactionImportResult(index=index, status=ImportStatus.SKIPPED, reason=REASON_EXTERNAL_ID)

        return TransactionImportResult(index=index, status=ImportStatus.IMPORTED, entry_id=entry.id)

    def rollback_import(self, import_batch: str, account_id: AccountId | None = None) -> int:
        deleted = self.ledger.delete_batch(import_batch, account_id)
        logger.info("Rolled back import batch %s: %d entries removed", import_batch, deleted)
        return deleted

    def get_import_history(self, account_id: AccountId) -> list[ImportBatchInfo]:
        return self.ledger.import_history(account_id)


def import_accounts(
    session_factory: sessionmaker[Session],
    batches: Mapping[AccountId, Sequence[NormalizedTransaction]],
    *,
    dry_run: bool = False,
    max_workers: int = 4,
) -> dict[AccountId, ImportSummary]:
    """Import independent accounts concurrently, one session per account."""

    def _run(account_id: AccountId, transactions: Sequence[NormalizedTransaction]) -> ImportSummary:
        with session_factory() as session:
            service = ImportService(LedgerEntryRepository(session))
            return service.import_transactions(transactions, account_id, dry_run=dry_run)

    if not batches:
        return {}

    summaries: dict[AccountId, ImportSummary] = {}
    workers = min(max_workers, len(batches))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ledger-import") as executor:
        futures = {
            executor.submit(_run, account_id, transactions): account_id
            for account_id, transactions in batches.items()
        }
        for future in as_completed(futures):
            summaries[futures[future]] = future.result()
    return summaries


__all__ = [
    "ImportService",
    "ImportStatus",
    "ImportSummary",
    "TransactionImportResult",
    "import_accounts",
    "new_import_batch_id",
]
