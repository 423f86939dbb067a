from __future__ import annotations

import logging
from csv import DictReader
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from pydantic import BaseModel, ValidationError, field_validator

from domain.ledger import AccountId, NormalizedTransaction, TransactionType

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "type", "amount")
DATE_FORMATS = ("%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%m/%d/%Y")


class NormalizedCsvRow(BaseModel):
    date: datetime
    type: TransactionType
    symbol: str | None = None
    quantity: Decimal | None = None
    amount: Decimal
    external_id: str | None = None
    description: str = ""
    category: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: str | datetime) -> datetime:
        if isinstance(value, datetime):
            return value
        raw = value.strip()
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(raw, fmt)
            except ValueError:
                continue
        return datetime.fromisoformat(raw)

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("symbol", "quantity", "external_id", "category", mode="before")
    @classmethod
    def _empty_to_none(cls, value: str | None) -> str | None:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("description", mode="before")
    @classmethod
    def _empty_description(cls, value: str | None) -> str:
        return value or ""


class NormalizedCsvImporter:
    """Reads rows that are already in ledger shape.

    Columns: date, type, symbol, quantity, amount, external_id, description,
    category. Rows that fail validation are logged and skipped.
    """

    def __init__(self, source_path: str | Path, *, account_id: AccountId, import_source: str = "csv") -> None:
        self._source_path = Path(source_path)
        self._account_id = account_id
        self._import_source = import_source

    def load_transactions(self) -> list[NormalizedTransaction]:
        transactions: list[NormalizedTransaction] = []
        with self._source_path.open(encoding="utf-8", newline="") as handle:
            reader = DictReader(handle)
            missing = [column for column in REQUIRED_COLUMNS if column not in (reader.fieldnames or [])]
            if missing:
                raise ValueError(f"{self._source_path}: missing required columns {', '.join(missing)}")

            for line_number, row in enumerate(reader, start=2):
                try:
                    parsed = NormalizedCsvRow.model_validate(row)
                except ValidationError as exc:
                    logger.warning("Skipping %s line %d: %s", self._source_path.name, line_number, exc)
                    continue
                transactions.append(
                    NormalizedTransaction(
                        **parsed.model_dump(),
                        account_id=self._account_id,
                        import_source=self._import_source,
                    )
                )

        logger.info("Loaded %d transactions from %s", len(transactions), self._source_path)
        return transactions


__all__ = ["NormalizedCsvImporter", "NormalizedCsvRow"]
