"""Ledger persistence backends."""

from hedvac.storage.base import LedgerStore
from hedvac.storage.factory import close_ledger_store, create_ledger_store, get_ledger_store

__all__ = [
    "LedgerStore",
    "create_ledger_store",
    "get_ledger_store",
    "close_ledger_store",
]
