"""
In-Memory Storage

Dict-backed stores with the same contracts as the SQLite ones. They have
no transaction support, so restore against them takes the per-record path.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from budget_tracker.models.record import Record, RecordDraft
from budget_tracker.services.storage.interface import (
    KeyValueStoreInterface,
    RecordNotFoundError,
    RecordStoreInterface,
    StoreError,
)


class InMemoryRecordStore(RecordStoreInterface):
    """Record store kept in a dict keyed by id."""

    def __init__(
        self,
        duplicate_window: timedelta = timedelta(minutes=5),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._records: dict[int, Record] = {}
        self._inserted_at: dict[int, datetime] = {}
        self._next_id = 1
        self._duplicate_window = duplicate_window
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def init(self) -> None:
        return None

    async def list_records(self) -> list[Record]:
        return sorted(
            self._records.values(),
            key=lambda r: (r.date, r.id),
            reverse=True,
        )

    async def get_record(self, record_id: int) -> Optional[Record]:
        return self._records.get(record_id)

    def _find_duplicate(self, draft: RecordDraft, now: datetime) -> Optional[int]:
        if self._duplicate_window <= timedelta(0):
            return None
        for record_id, inserted in self._inserted_at.items():
            record = self._records.get(record_id)
            if (
                record is not None
                and record.amount == draft.amount
                and record.details == draft.details
                and now - inserted <= self._duplicate_window
            ):
                return record_id
        return None

    async def add_record(self, amount: Decimal, details: str, date: str) -> int:
        draft = RecordDraft(amount=amount, details=details, date=date)
        now = self._clock()

        existing_id = self._find_duplicate(draft, now)
        if existing_id is not None:
            return existing_id

        record_id = self._next_id
        self._next_id += 1
        self._records[record_id] = Record(id=record_id, **draft.model_dump())
        self._inserted_at[record_id] = now
        return record_id

    async def update_record(
        self,
        record_id: int,
        amount: Decimal,
        details: str,
        date: str,
    ) -> Record:
        if record_id not in self._records:
            raise RecordNotFoundError(f"Record not found: {record_id}")
        draft = RecordDraft(amount=amount, details=details, date=date)
        record = Record(id=record_id, **draft.model_dump())
        self._records[record_id] = record
        return record

    async def delete_record(self, record_id: int) -> bool:
        self._inserted_at.pop(record_id, None)
        return self._records.pop(record_id, None) is not None

    async def insert_record(self, record: Record) -> None:
        if record.id in self._records:
            raise StoreError(f"Record id already taken: {record.id}")
        self._records[record.id] = record
        self._next_id = max(self._next_id, record.id + 1)

    async def delete_all(self) -> int:
        deleted = len(self._records)
        self._records.clear()
        self._inserted_at.clear()
        return deleted

    async def count(self) -> int:
        return len(self._records)


class InMemorySettingsStore(KeyValueStoreInterface):
    """Key-value store kept in a dict."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._values: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._values[key] = value

    async def delete(self, key: str) -> bool:
        return self._values.pop(key, None) is not None
