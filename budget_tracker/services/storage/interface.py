"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the backup engine ignorant of the concrete database
2. Use in-memory storage for testing
3. Treat transactions as an optional capability of a store

The interface is intentionally simple - we're not building a full ORM.
Just the operations the app and the backup engine need.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Optional

from budget_tracker.models.record import Record
from budget_tracker.models.audit import AuditEvent


class RecordStoreInterface(ABC):
    """
    Abstract interface for spending record storage.

    Any storage implementation (SQLite, in-memory, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def init(self) -> None:
        """
        Create the record table if it does not exist.

        Idempotent and safe to call from several places concurrently.

        Raises:
            StoreError: If the schema cannot be created
        """
        pass

    @abstractmethod
    async def list_records(self) -> list[Record]:
        """
        List all records, newest date first.

        Raises:
            StoreError: If the read fails
        """
        pass

    @abstractmethod
    async def get_record(self, record_id: int) -> Optional[Record]:
        """
        Retrieve a record by its id.

        Returns:
            The record if found, None otherwise
        """
        pass

    @abstractmethod
    async def add_record(self, amount: Decimal, details: str, date: str) -> int:
        """
        Insert a new record.

        If a record with the same amount and details was inserted within
        the duplicate window, nothing is inserted and the existing id is
        returned.

        Args:
            amount: Amount spent (must be positive)
            details: Description, sanitized before storage
            date: ISO-8601 date or datetime

        Returns:
            The id of the new (or duplicate) record

        Raises:
            StoreError: If the insert fails
        """
        pass

    @abstractmethod
    async def update_record(
        self,
        record_id: int,
        amount: Decimal,
        details: str,
        date: str,
    ) -> Record:
        """
        Update an existing record.

        Returns:
            The updated record

        Raises:
            StoreError: If update fails
            RecordNotFoundError: If the record doesn't exist
        """
        pass

    @abstractmethod
    async def delete_record(self, record_id: int) -> bool:
        """
        Delete a record by id.

        Returns:
            True if a record was deleted
        """
        pass

    @abstractmethod
    async def insert_record(self, record: Record) -> None:
        """
        Insert a record keeping its id (used by restore).

        Bypasses duplicate detection.

        Raises:
            StoreError: If the insert fails (e.g. the id is taken)
        """
        pass

    @abstractmethod
    async def delete_all(self) -> int:
        """
        Delete every record.

        Returns:
            Number of records deleted
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """Number of stored records."""
        pass

    @property
    def supports_transactions(self) -> bool:
        """Whether transaction() gives all-or-nothing semantics."""
        return False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Group writes so they commit together or not at all.

        Stores without transaction support raise NotImplementedError;
        callers check supports_transactions first.
        """
        raise NotImplementedError("This store does not support transactions")
        yield


class KeyValueStoreInterface(ABC):
    """
    Abstract interface for small string settings.

    Holds the app settings blob and the backup schedule policy.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is unset."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Store a value, replacing any previous one.

        Raises:
            StoreError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StoreError(Exception):
    """Base exception for storage operations."""
    pass


class RecordNotFoundError(StoreError):
    """Record not found in storage."""
    pass


class ConnectionError(StoreError):
    """Could not open the storage backend."""
    pass
