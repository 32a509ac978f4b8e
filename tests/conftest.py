"""
Shared fixtures.

Everything runs against temporary directories: a real SQLite file through
aiosqlite, in-memory stores where a test needs a store without
transactions, and a fake recurring-task facility.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio

from budget_tracker.backup import BackupCodec, BackupRepository, BackupScheduler, RestoreEngine
from budget_tracker.config import SchedulerSettings
from budget_tracker.models.schedule import FacilityStatus, RegistrationOptions
from budget_tracker.services.platform import (
    FacilityError,
    RecurringTaskFacility,
    TaskCallback,
    TaskNotRegisteredError,
)
from budget_tracker.services.storage import (
    InMemoryRecordStore,
    InMemorySettingsStore,
    SqliteDatabase,
    SqliteRecordStore,
    SqliteSettingsStore,
)


START = datetime(2024, 3, 10, 2, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, moment: datetime) -> None:
        self.now = moment


class FakeTaskFacility(RecurringTaskFacility):
    """Records registrations instead of scheduling anything."""

    def __init__(self, status: FacilityStatus = FacilityStatus.AVAILABLE):
        self.status = status
        self.callbacks: dict[str, TaskCallback] = {}
        self.registrations: dict[str, tuple[int, RegistrationOptions]] = {}
        self.unregister_calls = 0

    def define_task(self, task_id: str, callback: TaskCallback) -> None:
        self.callbacks[task_id] = callback

    async def get_status(self) -> FacilityStatus:
        return self.status

    async def register(
        self,
        task_id: str,
        minimum_interval_minutes: int,
        options: RegistrationOptions,
    ) -> None:
        if self.status != FacilityStatus.AVAILABLE:
            raise FacilityError("refused")
        self.registrations[task_id] = (minimum_interval_minutes, options)

    async def unregister(self, task_id: str) -> None:
        self.unregister_calls += 1
        if self.registrations.pop(task_id, None) is None:
            raise TaskNotRegisteredError(task_id)

    async def is_registered(self, task_id: str) -> bool:
        return task_id in self.registrations

    async def fire(self, task_id: str = "background-backup-task"):
        return await self.callbacks[task_id]()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / "backups"


@pytest.fixture
def export_dir(tmp_path):
    return tmp_path / "exports"


@pytest_asyncio.fixture
async def database(tmp_path):
    db = SqliteDatabase(tmp_path / "data" / "spending.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def record_store(database, clock) -> SqliteRecordStore:
    return SqliteRecordStore(database, duplicate_window=timedelta(minutes=5), clock=clock)


@pytest.fixture
def settings_store(database) -> SqliteSettingsStore:
    return SqliteSettingsStore(database)


@pytest.fixture
def memory_records(clock) -> InMemoryRecordStore:
    return InMemoryRecordStore(clock=clock)


@pytest.fixture
def memory_settings() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def codec(clock) -> BackupCodec:
    return BackupCodec(version="1.0.0", clock=clock)


def make_repository(
    record_store,
    settings_store,
    backup_dir,
    export_dir,
    codec,
    clock,
    max_backups: int = 10,
) -> BackupRepository:
    return BackupRepository(
        record_store,
        settings_store,
        backup_dir=backup_dir,
        export_dir=export_dir,
        codec=codec,
        max_backups=max_backups,
        settings_key="app_settings",
        clock=clock,
    )


@pytest.fixture
def repository(record_store, settings_store, backup_dir, export_dir, codec, clock) -> BackupRepository:
    return make_repository(record_store, settings_store, backup_dir, export_dir, codec, clock)


@pytest.fixture
def restore_engine(repository, record_store, settings_store, clock) -> RestoreEngine:
    return RestoreEngine(
        repository,
        record_store,
        settings_store,
        settings_key="app_settings",
        clock=clock,
    )


@pytest.fixture
def facility() -> FakeTaskFacility:
    return FakeTaskFacility()


@pytest.fixture
def memory_repository(memory_records, memory_settings, backup_dir, export_dir, codec, clock) -> BackupRepository:
    return make_repository(memory_records, memory_settings, backup_dir, export_dir, codec, clock)


@pytest.fixture
def scheduler(memory_repository, memory_settings, facility, clock) -> BackupScheduler:
    scheduler = BackupScheduler(
        memory_repository,
        memory_settings,
        facility,
        clock=clock,
        settings=SchedulerSettings(
            task_id="background-backup-task",
            policy_key="backup_schedule",
            time_tolerance_minutes=5,
        ),
    )
    scheduler.attach()
    return scheduler


def snapshot_document(records: Optional[list] = None, **overrides) -> dict:
    """A minimal valid snapshot document for writing test files."""
    records = [] if records is None else records
    document = {
        "version": "1.0.0",
        "timestamp": "2024-01-01T00:00:00.000Z",
        "records": records,
        "settings": None,
        "metadata": {
            "totalRecords": len(records),
            "dateRange": {"earliest": "", "latest": ""},
            "totalAmount": sum(r.get("amount") or 0 for r in records),
        },
    }
    document.update(overrides)
    return document
