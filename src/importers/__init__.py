"""Loaders that turn already-normalized exports into ledger transactions."""

from importers.normalized_csv import NormalizedCsvImporter, NormalizedCsvRow

__all__ = ["NormalizedCsvImporter", "NormalizedCsvRow"]
