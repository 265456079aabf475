"""Ledger entities and the JSON store used as backup exporter."""

from finvault.ledger.models import (
    Account,
    Budget,
    Category,
    Ledger,
    LedgerSnapshot,
    Transaction,
)
from finvault.ledger.store import JsonLedgerStore, LedgerExporter

__all__ = [
    "Account",
    "Budget",
    "Category",
    "JsonLedgerStore",
    "Ledger",
    "LedgerExporter",
    "LedgerSnapshot",
    "Transaction",
]
