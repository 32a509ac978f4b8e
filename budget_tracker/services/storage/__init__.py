"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
SQLite (via aiosqlite) is the real backend; the in-memory stores serve
tests and the transaction-less restore path.
"""

from budget_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    KeyValueStoreInterface,
    RecordNotFoundError,
    RecordStoreInterface,
    StoreError,
)
from budget_tracker.services.storage.memory import (
    InMemoryRecordStore,
    InMemorySettingsStore,
)
from budget_tracker.services.storage.sqlite import (
    SqliteAuditStorage,
    SqliteDatabase,
    SqliteRecordStore,
    SqliteSettingsStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStoreInterface",
    "RecordStoreInterface",
    # Exceptions
    "ConnectionError",
    "RecordNotFoundError",
    "StoreError",
    # In-memory implementation
    "InMemoryRecordStore",
    "InMemorySettingsStore",
    # SQLite implementation
    "SqliteAuditStorage",
    "SqliteDatabase",
    "SqliteRecordStore",
    "SqliteSettingsStore",
]
