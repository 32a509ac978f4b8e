"""Services package."""

from budget_tracker.services.platform import (
    AsyncioRecurringTaskFacility,
    DirectoryShareFacility,
    FacilityError,
    RecurringTaskFacility,
    ShareFacility,
    TaskNotRegisteredError,
)
from budget_tracker.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    InMemoryRecordStore,
    InMemorySettingsStore,
    KeyValueStoreInterface,
    RecordNotFoundError,
    RecordStoreInterface,
    SqliteAuditStorage,
    SqliteDatabase,
    SqliteRecordStore,
    SqliteSettingsStore,
    StoreError,
)

__all__ = [
    # Platform services
    "AsyncioRecurringTaskFacility",
    "DirectoryShareFacility",
    "FacilityError",
    "RecurringTaskFacility",
    "ShareFacility",
    "TaskNotRegisteredError",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "InMemoryRecordStore",
    "InMemorySettingsStore",
    "KeyValueStoreInterface",
    "RecordNotFoundError",
    "RecordStoreInterface",
    "SqliteAuditStorage",
    "SqliteDatabase",
    "SqliteRecordStore",
    "SqliteSettingsStore",
    "StoreError",
]
