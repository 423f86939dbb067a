from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from domain.ledger import TransactionType
from importers.normalized_csv import NormalizedCsvImporter
from tests.constants import BROKERAGE_ACCOUNT

CSV_CONTENT = """date,type,symbol,quantity,amount,external_id,description,category
2024-03-01,deposit,,,5000.00,D-1,Transfer in,
2024-03-01 15:30:00,BUY,aapl,10,-1800.00,T-1,Buy AAPL,
03/04/2024,Sell,AAPL,-5,950.00,,,
2024-03-05,BUY,MSFT,abc,-10.00,,,
2024-03-06,REBALANCE,MSFT,1,-10.00,,,
"""


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "export.csv"
    path.write_text(content, encoding="utf-8")
    return path


def test_loads_valid_rows_and_skips_invalid(tmp_path: Path) -> None:
    importer = NormalizedCsvImporter(_write(tmp_path, CSV_CONTENT), account_id=BROKERAGE_ACCOUNT)

    transactions = importer.load_transactions()

    assert len(transactions) == 3
    deposit, buy, sell = transactions
    assert deposit.type == TransactionType.DEPOSIT
    assert deposit.symbol is None
    assert deposit.quantity is None
    assert deposit.external_id == "D-1"
    assert buy.symbol == "AAPL"
    assert buy.date == datetime(2024, 3, 1, 15, 30)
    assert buy.amount == Decimal("-1800.00")
    assert sell.date == datetime(2024, 3, 4)
    assert sell.external_id is None
    assert all(tx.account_id == BROKERAGE_ACCOUNT for tx in transactions)
    assert all(tx.import_source == "csv" for tx in transactions)


def test_missing_required_columns(tmp_path: Path) -> None:
    importer = NormalizedCsvImporter(_write(tmp_path, "date,symbol\n2024-03-01,AAPL\n"), account_id=BROKERAGE_ACCOUNT)

    with pytest.raises(ValueError, match="type, amount"):
        importer.load_transactions()
