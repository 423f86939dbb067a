from __future__ import annotations

import re
from decimal import Decimal
from pathlib import Path

import pytest

from db.db import create_session_factory
from db.repositories import LedgerEntryRepository, PortfolioRepository
from domain.dedupe import REASON_COMPOSITE_KEY, REASON_EXTERNAL_ID
from domain.ledger import LedgerEntry, NormalizedTransaction, TransactionType, UserId
from domain.ledger_store import DuplicateExternalIdError
from domain.portfolio import Account, Portfolio
from services.import_service import REASON_IN_BATCH, ImportService, ImportStatus, import_accounts, new_import_batch_id
from tests.constants import BANK_ACCOUNT, BROKERAGE_ACCOUNT, USER_ID
from tests.helpers.ledger_utils import InMemoryLedgerStore, make_transaction


def _statement() -> list[NormalizedTransaction]:
    return [
        make_transaction(day="2024-03-01", tx_type=TransactionType.DEPOSIT, amount="5000", external_id="D-1"),
        make_transaction(
            day="2024-03-01",
            tx_type=TransactionType.BUY,
            symbol="AAPL",
            quantity="10",
            amount="-1800",
            external_id="T-1",
        ),
        make_transaction(day="2024-03-04", tx_type=TransactionType.BUY, symbol="MSFT", quantity="5", amount="-2000"),
    ]


@pytest.fixture()
def service(ledger_repo: LedgerEntryRepository) -> ImportService:
    return ImportService(ledger_repo)


def test_import_then_reimport_is_idempotent(service: ImportService, ledger_repo: LedgerEntryRepository) -> None:
    first = service.import_transactions(_statement(), BROKERAGE_ACCOUNT)
    second = service.import_transactions(_statement(), BROKERAGE_ACCOUNT)

    assert (first.imported, first.skipped, first.errors) == (3, 0, 0)
    assert (second.imported, second.skipped) == (0, 3)
    assert [result.reason for result in second.results] == [
        REASON_EXTERNAL_ID,
        REASON_EXTERNAL_ID,
        REASON_COMPOSITE_KEY,
    ]
    assert all(result.existing_id is not None for result in second.results)
    assert len(ledger_repo.list_by_account(BROKERAGE_ACCOUNT)) == 3


def test_imported_entries_carry_the_batch_id(service: ImportService, ledger_repo: LedgerEntryRepository) -> None:
    summary = service.import_transactions(_statement(), BROKERAGE_ACCOUNT)

    assert summary.import_batch is not None
    assert {entry.import_batch for entry in ledger_repo.list_by_account(BROKERAGE_ACCOUNT)} == {summary.import_batch}
    assert {result.entry_id for result in summary.results} == {
        entry.id for entry in ledger_repo.list_by_account(BROKERAGE_ACCOUNT)
    }


def test_dry_run_writes_nothing(service: ImportService, ledger_repo: LedgerEntryRepository) -> None:
    rows = [*_statement(), _statement()[0]]

    summary = service.import_transactions(rows, BROKERAGE_ACCOUNT, dry_run=True)

    assert summary.dry_run
    assert summary.import_batch is None
    assert (summary.imported, summary.skipped) == (3, 1)
    assert summary.results[-1].reason == REASON_IN_BATCH
    assert ledger_repo.list_by_account(BROKERAGE_ACCOUNT) == []


def test_dry_run_predicts_the_real_import(service: ImportService) -> None:
    trade = make_transaction(
        day="2024-03-04", tx_type=TransactionType.BUY, symbol="AAPL", quantity="10", amount="-1800"
    )
    rows = [*_statement(), trade, trade]

    dry = service.import_transactions(rows, BROKERAGE_ACCOUNT, dry_run=True)
    real = service.import_transactions(rows, BROKERAGE_ACCOUNT)

    assert (dry.imported, dry.skipped) == (real.imported, real.skipped) == (4, 1)
    assert [result.status for result in dry.results] == [result.status for result in real.results]
    assert dry.results[-1].reason == REASON_COMPOSITE_KEY


def test_dry_run_without_resolver_still_skips_repeated_external_ids(service: ImportService) -> None:
    rows = [_statement()[0], _statement()[0]]

    summary = service.import_transactions(rows, BROKERAGE_ACCOUNT, dry_run=True, skip_duplicates=False)

    assert [result.status for result in summary.results] == [ImportStatus.IMPORTED, ImportStatus.SKIPPED]


def test_repeated_external_id_within_batch_is_skipped_on_insert(
    service: ImportService, ledger_repo: LedgerEntryRepository
) -> None:
    rows = [_statement()[0], _statement()[0]]

    summary = service.import_transactions(rows, BROKERAGE_ACCOUNT)

    assert [result.status for result in summary.results] == [ImportStatus.IMPORTED, ImportStatus.SKIPPED]
    assert len(ledger_repo.list_by_account(BROKERAGE_ACCOUNT)) == 1


def test_skip_duplicates_disabled_still_guards_external_ids(service: ImportService) -> None:
    service.import_transactions(_statement(), BROKERAGE_ACCOUNT)

    summary = service.import_transactions(_statement(), BROKERAGE_ACCOUNT, skip_duplicates=False)

    # Without the resolver only the uniqueness constraint stops repeats.
    assert [result.status for result in summary.results] == [
        ImportStatus.SKIPPED,
        ImportStatus.SKIPPED,
        ImportStatus.IMPORTED,
    ]


def test_bank_movements_without_ids_are_all_imported(service: ImportService) -> None:
    coffee = make_transaction(
        day="2024-03-01", tx_type=TransactionType.WITHDRAWAL, amount="-4.50", account_id=BANK_ACCOUNT
    )

    summary = service.import_transactions([coffee, coffee], BANK_ACCOUNT)

    assert summary.imported == 2


def test_lost_insert_race_counts_as_duplicate() -> None:
    class RacingStore(InMemoryLedgerStore):
        def insert(self, entry: LedgerEntry) -> LedgerEntry:
            raise DuplicateExternalIdError(account_id=entry.account_id, external_id=entry.external_id or "")

    summary = ImportService(RacingStore()).import_transactions(_statement()[:1], BROKERAGE_ACCOUNT)

    (result,) = summary.results
    assert result.status == ImportStatus.SKIPPED
    assert result.reason == REASON_EXTERNAL_ID


def test_rollback_and_history(service: ImportService, ledger_repo: LedgerEntryRepository) -> None:
    first = service.import_transactions(_statement()[:2], BROKERAGE_ACCOUNT)
    second = service.import_transactions(_statement()[2:], BROKERAGE_ACCOUNT)

    history = service.get_import_history(BROKERAGE_ACCOUNT)
    assert {info.import_batch: info.entry_count for info in history} == {
        first.import_batch: 2,
        second.import_batch: 1,
    }

    assert first.import_batch is not None
    assert service.rollback_import(first.import_batch, BROKERAGE_ACCOUNT) == 2
    (remaining,) = ledger_repo.list_by_account(BROKERAGE_ACCOUNT)
    assert remaining.symbol == "MSFT"

    # Rolled-back rows can be imported again.
    assert service.import_transactions(_statement(), BROKERAGE_ACCOUNT).imported == 2


def test_transactions_are_bound_to_target_account(service: ImportService, ledger_repo: LedgerEntryRepository) -> None:
    tx = make_transaction(day="2024-03-01", tx_type=TransactionType.DEPOSIT, amount="10", account_id=BANK_ACCOUNT)

    service.import_transactions([tx], BROKERAGE_ACCOUNT)

    (entry,) = ledger_repo.list_by_account(BROKERAGE_ACCOUNT)
    assert entry.amount == Decimal("10")


def test_new_import_batch_id_format() -> None:
    assert re.fullmatch(r"import-\d{8}T\d{6}-[0-9a-f]{6}", new_import_batch_id())


def test_import_accounts_runs_accounts_concurrently(tmp_path: Path) -> None:
    session_factory = create_session_factory(tmp_path / "ledger.db")
    with session_factory() as session:
        PortfolioRepository(session).create(
            Portfolio(
                name="Household",
                user_id=UserId(USER_ID),
                accounts=[Account(id=BROKERAGE_ACCOUNT, name="Brokerage"), Account(id=BANK_ACCOUNT, name="Checking")],
            )
        )
    bank_rows = [
        make_transaction(
            day=f"2024-03-0{day}", tx_type=TransactionType.DEPOSIT, amount="100", account_id=BANK_ACCOUNT
        )
        for day in range(1, 6)
    ]
    batches = {BROKERAGE_ACCOUNT: _statement(), BANK_ACCOUNT: bank_rows}

    summaries = import_accounts(session_factory, batches, max_workers=2)
    repeat = import_accounts(session_factory, batches, max_workers=2)

    assert summaries[BROKERAGE_ACCOUNT].imported == 3
    assert summaries[BANK_ACCOUNT].imported == 5
    assert repeat[BROKERAGE_ACCOUNT].skipped == 3
    # Bank rows carry neither an id nor a symbol, so nothing marks them as repeats.
    assert repeat[BANK_ACCOUNT].imported == 5
    with session_factory() as session:
        assert len(LedgerEntryRepository(session).list_by_account(BANK_ACCOUNT)) == 10


def test_import_accounts_with_no_batches(tmp_path: Path) -> None:
    assert import_accounts(create_session_factory(tmp_path / "empty.db"), {}) == {}
