"""
Sync state storage engine.

This module provides persistent storage of the sync engine's own state in
SQLite: tenant connections, export run history, the item mapping ledger
that makes incremental exports idempotent, and per-tenant export locks.

Usage:
    from corsync.storage import SyncStore

    store = SyncStore()
    connection = store.get_connection("tenant-1")
    history = store.get_sync_history("tenant-1")
"""

from corsync.storage.models import (
    ITEM_TYPES,
    Connection,
    ConnectionStats,
    ItemMapping,
    SyncErrorEntry,
    SyncLog,
)
from corsync.storage.sync_store import StorageError, SyncStore

__all__ = [
    # Main store class
    "SyncStore",
    # Data models
    "Connection",
    "ConnectionStats",
    "SyncLog",
    "SyncErrorEntry",
    "ItemMapping",
    "ITEM_TYPES",
    # Exceptions
    "StorageError",
]
