"""Tests for restoring snapshots into the record store."""

import json
from decimal import Decimal

import pytest

from budget_tracker.backup import (
    InvalidBackupError,
    NotFoundError,
    RestoreEngine,
    RestoreVerificationError,
)
from budget_tracker.models.record import Record
from budget_tracker.services.storage import InMemoryRecordStore, StoreError

from conftest import make_repository, snapshot_document


class RejectingRecordStore(InMemoryRecordStore):
    """Accepts deletes but refuses every restored row."""

    async def insert_record(self, record: Record) -> None:
        raise StoreError(f"cannot insert {record.id}")


def write_backup(backup_dir, backup_id: str, document: dict) -> None:
    backup_dir.mkdir(parents=True, exist_ok=True)
    (backup_dir / f"budget_backup_{backup_id}.json").write_text(json.dumps(document))


class TestTransactionalRestore:
    """Tests for restoring into SQLite."""

    @pytest.mark.asyncio
    async def test_backup_then_restore_round_trip(self, repository, restore_engine, record_store):
        """Test that a restore brings back exactly the snapshot contents."""
        coffee_id = await record_store.add_record(Decimal("12.50"), "Coffee", "2024-01-01")
        info = await repository.create()

        await record_store.delete_record(coffee_id)
        await record_store.add_record(Decimal("3.00"), "Bus", "2024-01-02")

        result = await restore_engine.restore(info.id)

        records = await record_store.list_records()
        assert [(r.id, r.amount, r.details, r.date) for r in records] == [
            (coffee_id, Decimal("12.5"), "Coffee", "2024-01-01")
        ]
        assert result.restored_records == 1
        assert result.skipped_records == 0
        assert result.transactional is True

    @pytest.mark.asyncio
    async def test_restore_is_idempotent(self, repository, restore_engine, record_store):
        """Test that restoring twice gives the same state."""
        await record_store.add_record(Decimal("1"), "A", "2024-01-01")
        await record_store.add_record(Decimal("2"), "B", "2024-01-02")
        info = await repository.create()

        await restore_engine.restore(info.id)
        first = await record_store.list_records()
        await restore_engine.restore(info.id)

        assert await record_store.list_records() == first

    @pytest.mark.asyncio
    async def test_settings_restored(self, repository, restore_engine, settings_store):
        """Test that snapshot settings overwrite the current ones."""
        await settings_store.set("app_settings", '{"currency": "EUR"}')
        info = await repository.create()
        await settings_store.set("app_settings", '{"currency": "USD"}')

        result = await restore_engine.restore(info.id)

        assert result.settings_restored is True
        assert json.loads(await settings_store.get("app_settings")) == {"currency": "EUR"}

    @pytest.mark.asyncio
    async def test_settings_untouched_without_snapshot_settings(
        self, repository, restore_engine, settings_store
    ):
        """Test that a snapshot without settings leaves them alone."""
        info = await repository.create()
        await settings_store.set("app_settings", '{"currency": "USD"}')

        result = await restore_engine.restore(info.id)

        assert result.settings_restored is False
        assert await settings_store.get("app_settings") == '{"currency": "USD"}'

    @pytest.mark.asyncio
    async def test_failed_restore_rolls_back(self, restore_engine, record_store, backup_dir):
        """Test that a mid-restore failure keeps the original data."""
        await record_store.add_record(Decimal("5"), "Original", "2024-01-01")
        record = {"id": 1, "amount": 1.0, "details": "Dup", "date": "2024-01-01"}
        write_backup(backup_dir, "dupes", snapshot_document([record, dict(record)]))

        with pytest.raises(StoreError):
            await restore_engine.restore("dupes")

        records = await record_store.list_records()
        assert [r.details for r in records] == ["Original"]

    @pytest.mark.asyncio
    async def test_invalid_record_aborts_transactional_restore(self, restore_engine, record_store, backup_dir):
        """Test that one invalid record fails the whole replace."""
        await record_store.add_record(Decimal("5"), "Original", "2024-01-01")
        records = [
            {"id": 1, "amount": 1.0, "details": "Coffee", "date": "2024-01-01"},
            {"id": 2, "amount": 0, "details": "Free sample", "date": "2024-01-02"},
        ]
        write_backup(backup_dir, "mixed", snapshot_document(records))

        with pytest.raises(InvalidBackupError, match="Record 1"):
            await restore_engine.restore("mixed")

        assert [r.details for r in await record_store.list_records()] == ["Original"]

    @pytest.mark.asyncio
    async def test_snapshot_file_unchanged(self, repository, restore_engine, record_store, backup_dir):
        """Test that restore only reads the snapshot."""
        await record_store.add_record(Decimal("12.50"), "Coffee", "2024-01-01")
        info = await repository.create()
        before = (backup_dir / info.filename).read_bytes()

        await restore_engine.restore(info.id)

        assert (backup_dir / info.filename).read_bytes() == before

    @pytest.mark.asyncio
    async def test_restore_missing_backup(self, restore_engine):
        """Test NotFoundError for unknown ids."""
        with pytest.raises(NotFoundError):
            await restore_engine.restore("2020-01-01T00-00-00-000Z")

    @pytest.mark.asyncio
    async def test_invalid_snapshot_changes_nothing(self, restore_engine, record_store, backup_dir):
        """Test that verification runs before anything is deleted."""
        await record_store.add_record(Decimal("5"), "Original", "2024-01-01")
        write_backup(backup_dir, "broken", snapshot_document([{"id": 1, "amount": 2}]))

        with pytest.raises(InvalidBackupError):
            await restore_engine.restore("broken")

        assert await record_store.count() == 1


class TestBestEffortRestore:
    """Tests for stores without transactions."""

    @pytest.mark.asyncio
    async def test_bad_records_are_skipped(self, memory_records, memory_settings, backup_dir, export_dir, codec, clock):
        """Test per-record isolation when transactions are unavailable."""
        await memory_records.add_record(Decimal("9"), "Gone", "2024-01-01")
        repository = make_repository(memory_records, memory_settings, backup_dir, export_dir, codec, clock)
        engine = RestoreEngine(repository, memory_records, memory_settings, settings_key="app_settings", clock=clock)
        records = [
            {"id": 1, "amount": 1.0, "details": "A", "date": "2024-01-01"},
            {"id": 1, "amount": 2.0, "details": "B", "date": "2024-01-02"},
            {"id": 2, "amount": 3.0, "details": "C", "date": "2024-01-03"},
        ]
        write_backup(backup_dir, "partial", snapshot_document(records))

        result = await engine.restore("partial")

        assert result.transactional is False
        assert result.restored_records == 2
        assert result.skipped_records == 1
        assert sorted(r.details for r in await memory_records.list_records()) == ["A", "C"]

    @pytest.mark.asyncio
    async def test_invalid_record_is_skipped(self, memory_records, memory_settings, backup_dir, export_dir, codec, clock):
        """Test that a record failing validation is counted as skipped."""
        repository = make_repository(memory_records, memory_settings, backup_dir, export_dir, codec, clock)
        engine = RestoreEngine(repository, memory_records, memory_settings, settings_key="app_settings", clock=clock)
        records = [
            {"id": 1, "amount": 1.0, "details": "Coffee", "date": "2024-01-01"},
            {"id": 2, "amount": 0, "details": "Free sample", "date": "2024-01-02"},
            {"id": 3, "amount": 2.0, "details": "<script>x</script>", "date": "2024-01-03"},
        ]
        write_backup(backup_dir, "mixed", snapshot_document(records))

        result = await engine.restore("mixed")

        assert result.restored_records == 1
        assert result.skipped_records == 2
        assert [r.details for r in await memory_records.list_records()] == ["Coffee"]

    @pytest.mark.asyncio
    async def test_only_invalid_records_fails_verification(self, memory_records, memory_settings, backup_dir, export_dir, codec, clock):
        """Test that a snapshot whose every record is invalid restores nothing."""
        await memory_records.add_record(Decimal("9"), "Gone", "2024-01-01")
        repository = make_repository(memory_records, memory_settings, backup_dir, export_dir, codec, clock)
        engine = RestoreEngine(repository, memory_records, memory_settings, settings_key="app_settings", clock=clock)
        write_backup(
            backup_dir,
            "worthless",
            snapshot_document([{"id": 1, "amount": -4, "details": "A", "date": "2024-01-01"}]),
        )

        with pytest.raises(RestoreVerificationError):
            await engine.restore("worthless")

    @pytest.mark.asyncio
    async def test_nothing_restored_fails_verification(self, memory_settings, backup_dir, export_dir, codec, clock):
        """Test that a restore where every insert failed is an error."""
        store = RejectingRecordStore(clock=clock)
        repository = make_repository(store, memory_settings, backup_dir, export_dir, codec, clock)
        engine = RestoreEngine(repository, store, memory_settings, settings_key="app_settings", clock=clock)
        write_backup(
            backup_dir,
            "doomed",
            snapshot_document([{"id": 1, "amount": 1.0, "details": "A", "date": "2024-01-01"}]),
        )

        with pytest.raises(RestoreVerificationError):
            await engine.restore("doomed")

    @pytest.mark.asyncio
    async def test_empty_snapshot_restores_empty_store(self, memory_records, memory_settings, backup_dir, export_dir, codec, clock):
        """Test that restoring zero records is not a verification failure."""
        await memory_records.add_record(Decimal("9"), "Gone", "2024-01-01")
        repository = make_repository(memory_records, memory_settings, backup_dir, export_dir, codec, clock)
        engine = RestoreEngine(repository, memory_records, memory_settings, settings_key="app_settings", clock=clock)
        write_backup(backup_dir, "empty", snapshot_document())

        result = await engine.restore("empty")

        assert result.restored_records == 0
        assert await memory_records.count() == 0
