"""Domain models and pure ledger logic.

Pydantic models for ledger entries, acquisition lots and realized gains, plus
the duplicate resolver and FIFO lot ledger. Nothing here touches the database;
stores are described by the protocols in ``ledger_store``.
"""

__all__ = [
    "access",
    "dedupe",
    "ledger",
    "ledger_store",
    "lots",
    "portfolio",
    "pricing",
    "tolerance",
]
