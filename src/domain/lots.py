from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator

from pydantic import BaseModel

from .ledger import (
    ACQUISITION_TYPES,
    DISPOSAL_TYPES,
    AccountId,
    AcquisitionLot,
    LedgerEntry,
    LedgerEntryId,
    LotId,
    RealizedGainRecord,
    Symbol,
)

logger = logging.getLogger(__name__)

PositionKey = tuple[AccountId, Symbol]


class OversellError(Exception):
    """A disposal closes more quantity than the open lots hold."""

    def __init__(
        self,
        message: str,
        *,
        entry: LedgerEntry,
        quantity_needed: Decimal,
        quantity_available: Decimal,
    ) -> None:
        super().__init__(message)
        self.entry = entry
        self.account_id = entry.account_id
        self.symbol = entry.symbol
        self.disposed_date = entry.date.date()
        self.quantity_needed = quantity_needed
        self.quantity_available = quantity_available


@dataclass
class _OpenLotState:
    id: LotId
    source_entry_id: LedgerEntryId
    account_id: AccountId
    symbol: Symbol
    opened_date: date
    original_quantity: Decimal
    remaining_quantity: Decimal
    unit_cost: Decimal

    def snapshot(self) -> AcquisitionLot:
        return AcquisitionLot(
            id=self.id,
            source_entry_id=self.source_entry_id,
            account_id=self.account_id,
            symbol=self.symbol,
            opened_date=self.opened_date,
            original_quantity=self.original_quantity,
            remaining_quantity=self.remaining_quantity,
            unit_cost=self.unit_cost,
        )


class LotLedgerResult(BaseModel):
    lots: list[AcquisitionLot]
    realized_gains: list[RealizedGainRecord]

    @property
    def open_lots(self) -> list[AcquisitionLot]:
        return [lot for lot in self.lots if lot.remaining_quantity > 0]

    def open_lots_by_position(self) -> dict[PositionKey, list[AcquisitionLot]]:
        positions: dict[PositionKey, list[AcquisitionLot]] = defaultdict(list)
        for lot in self.open_lots:
            positions[(lot.account_id, lot.symbol)].append(lot)
        return dict(positions)

    def gains_for_year(self, year: int) -> list[RealizedGainRecord]:
        return [record for record in self.realized_gains if record.disposed_date.year == year]


class LotLedger:
    """Rebuild FIFO tax lots and realized gains by replaying ledger entries.

    Nothing is persisted: every call starts from an empty book, so the
    ledger stays the single source of truth.
    """

    def replay(self, entries: Iterable[LedgerEntry]) -> LotLedgerResult:
        # Time of day is not significant; the stable sort keeps insertion order within a day.
        ordered = sorted(entries, key=lambda entry: entry.date.date())

        all_lots: list[_OpenLotState] = []
        realized: list[RealizedGainRecord] = []
        inventory: dict[PositionKey, deque[_OpenLotState]] = defaultdict(deque)

        for entry in ordered:
            if entry.type in ACQUISITION_TYPES:
                state = self._open_lot(entry)
                if state is None:
                    continue
                all_lots.append(state)
                self._append_open_lot_state(inventory[(state.account_id, state.symbol)], state)
            elif entry.type in DISPOSAL_TYPES:
                realized.extend(self._close_lots(entry, inventory))

        return LotLedgerResult(lots=[state.snapshot() for state in all_lots], realized_gains=realized)

    def _open_lot(self, entry: LedgerEntry) -> _OpenLotState | None:
        if entry.symbol is None or not entry.quantity:
            logger.warning("Skipping %s entry %s without symbol or quantity", entry.type, entry.id)
            return None

        quantity = abs(entry.quantity)
        return _OpenLotState(
            id=LotId(entry.id),
            source_entry_id=entry.id,
            account_id=entry.account_id,
            symbol=entry.symbol,
            opened_date=entry.date.date(),
            original_quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=abs(entry.amount) / quantity,
        )

    def _close_lots(
        self, entry: LedgerEntry, inventory: dict[PositionKey, deque[_OpenLotState]]
    ) -> list[RealizedGainRecord]:
        if entry.symbol is None or not entry.quantity:
            logger.warning("Skipping %s entry %s without symbol or quantity", entry.type, entry.id)
            return []

        sale_quantity = abs(entry.quantity)
        sale_proceeds = abs(entry.amount)
        open_lots = inventory[(entry.account_id, entry.symbol)]

        available = sum((lot.remaining_quantity for lot in open_lots), start=Decimal(0))
        if available < sale_quantity:
            raise self._oversell_error(entry, quantity_needed=sale_quantity, quantity_available=available)

        records: list[RealizedGainRecord] = []
        proceeds_assigned = Decimal(0)
        closed_so_far = Decimal(0)
        for lot_state, take_quantity in self._match_lots(open_lots, sale_quantity):
            closed_so_far += take_quantity
            if closed_so_far == sale_quantity:
                # Last slice takes the remainder so the sale's proceeds add up exactly.
                proceeds = sale_proceeds - proceeds_assigned
            else:
                proceeds = sale_proceeds * take_quantity / sale_quantity
            proceeds_assigned += proceeds

            records.append(
                RealizedGainRecord(
                    lot_id=lot_state.id,
                    disposal_entry_id=entry.id,
                    account_id=entry.account_id,
                    symbol=entry.symbol,
                    quantity_closed=take_quantity,
                    proceeds=proceeds,
                    cost_basis=lot_state.unit_cost * take_quantity,
                    acquired_date=lot_state.opened_date,
                    disposed_date=entry.date.date(),
                )
            )
        return records

    @staticmethod
    def _match_lots(
        open_lots: deque[_OpenLotState], quantity_needed: Decimal
    ) -> Iterator[tuple[_OpenLotState, Decimal]]:
        remaining = quantity_needed
        while remaining > 0:
            lot_state = open_lots[0]
            take_quantity = min(remaining, lot_state.remaining_quantity)
            lot_state.remaining_quantity -= take_quantity
            remaining -= take_quantity
            if lot_state.remaining_quantity == 0:
                open_lots.popleft()
            yield lot_state, take_quantity

    @staticmethod
    def _oversell_error(entry: LedgerEntry, *, quantity_needed: Decimal, quantity_available: Decimal) -> OversellError:
        return OversellError(
            f"Oversell for symbol={entry.symbol} account={entry.account_id} entry={entry.id} "
            f"@{entry.date.date().isoformat()}: selling {quantity_needed}, open lots hold {quantity_available}",
            entry=entry,
            quantity_needed=quantity_needed,
            quantity_available=quantity_available,
        )

    @staticmethod
    def _append_open_lot_state(open_lots: deque[_OpenLotState], state: _OpenLotState) -> None:
        insert_at = None
        for idx, existing in enumerate(open_lots):
            if existing.opened_date > state.opened_date:
                insert_at = idx
                break

        if insert_at is None:
            open_lots.append(state)
        else:
            open_lots.insert(insert_at, state)


__all__ = ["LotLedger", "LotLedgerResult", "OversellError", "PositionKey"]
