"""finvault - backup, retention and remote sync engine for a personal ledger."""

__version__ = "0.1.0"
