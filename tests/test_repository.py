"""Tests for the on-disk backup collection."""

import json
from decimal import Decimal

import pytest

from budget_tracker.backup import (
    BackupRepository,
    CorruptBackupError,
    InvalidBackupError,
    NotFoundError,
)
from budget_tracker.services.storage import InMemoryRecordStore, InMemorySettingsStore, StoreError

from conftest import make_repository, snapshot_document


VALID_RECORD = {"id": 1, "amount": 12.5, "details": "Coffee", "date": "2024-01-01"}


class FailingReadStore(InMemoryRecordStore):
    async def list_records(self):
        raise StoreError("disk on fire")


class FailingSettingsStore(InMemorySettingsStore):
    async def get(self, key):
        raise StoreError("unreadable")


def backup_files(directory) -> list[str]:
    if not directory.exists():
        return []
    return sorted(p.name for p in directory.iterdir())


class TestCreate:
    """Tests for creating backups."""

    @pytest.mark.asyncio
    async def test_create_writes_verified_backup(self, repository, record_store, backup_dir):
        """Test the returned info and the file name."""
        await record_store.add_record(Decimal("12.50"), "Coffee", "2024-01-01")

        info = await repository.create()

        assert info.id == "2024-03-10T02-00-00-000Z"
        assert info.filename == "budget_backup_2024-03-10T02-00-00-000Z.json"
        assert info.record_count == 1
        assert info.total_amount == Decimal("12.50")
        assert info.is_verified is True
        assert (backup_dir / info.filename).stat().st_size == info.size
        assert backup_files(backup_dir) == [info.filename]

    @pytest.mark.asyncio
    async def test_create_includes_settings(self, repository, settings_store, backup_dir):
        """Test that the JSON settings blob is embedded parsed."""
        await settings_store.set("app_settings", '{"currency": "EUR"}')

        info = await repository.create()

        document = json.loads((backup_dir / info.filename).read_text())
        assert document["settings"] == {"currency": "EUR"}

    @pytest.mark.asyncio
    async def test_create_without_settings(self, repository, backup_dir):
        """Test that missing settings are written as null."""
        info = await repository.create()
        document = json.loads((backup_dir / info.filename).read_text())
        assert document["settings"] is None

    @pytest.mark.asyncio
    async def test_create_survives_unreadable_records(self, backup_dir, export_dir, codec, clock):
        """Test that a failed record read yields an empty backup."""
        repository = make_repository(
            FailingReadStore(), FailingSettingsStore(), backup_dir, export_dir, codec, clock
        )

        info = await repository.create()

        assert info.record_count == 0
        assert info.total_amount == Decimal("0")
        assert info.is_verified is True

    @pytest.mark.asyncio
    async def test_same_timestamp_gets_distinct_ids(self, repository):
        """Test that two creates in the same millisecond do not collide."""
        first = await repository.create()
        second = await repository.create()

        assert first.id != second.id
        assert second.timestamp == "2024-03-10T02:00:00.001Z"
        assert len(await repository.list_backups()) == 2

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, repository, backup_dir):
        """Test that the atomic write cleans up after itself."""
        await repository.create()
        assert not any(name.endswith(".tmp") for name in backup_files(backup_dir))


class TestRetention:
    """Tests for the retention cap."""

    @pytest.mark.asyncio
    async def test_keeps_ten_most_recent(self, repository, clock):
        """Test 12 creates leave the 10 newest."""
        created = []
        for _ in range(12):
            created.append((await repository.create()).id)
            clock.advance(minutes=1)

        backups = await repository.list_backups()

        assert len(backups) == 10
        assert [b.id for b in backups] == list(reversed(created[2:]))

    @pytest.mark.asyncio
    async def test_imports_count_toward_cap(self, record_store, settings_store, backup_dir, export_dir, codec, clock, tmp_path):
        """Test that an old imported snapshot is pruned first."""
        repository = make_repository(
            record_store, settings_store, backup_dir, export_dir, codec, clock, max_backups=2
        )
        source = tmp_path / "old.json"
        source.write_text(json.dumps(snapshot_document([VALID_RECORD])))

        imported = await repository.import_backup(source)
        clock.advance(minutes=1)
        await repository.create()
        assert len(await repository.list_backups()) == 2

        clock.advance(minutes=1)
        await repository.create()

        ids = [b.id for b in await repository.list_backups()]
        assert len(ids) == 2
        assert imported.id not in ids


class TestList:
    """Tests for listing backups."""

    @pytest.mark.asyncio
    async def test_empty_directory(self, repository):
        """Test listing before anything was written."""
        assert await repository.list_backups() == []

    @pytest.mark.asyncio
    async def test_newest_first(self, repository, clock):
        """Test ordering by timestamp."""
        first = await repository.create()
        clock.advance(days=1)
        second = await repository.create()

        assert [b.id for b in await repository.list_backups()] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_skips_unparseable_and_foreign_files(self, repository, backup_dir):
        """Test that bad files are skipped, not fatal."""
        info = await repository.create()
        (backup_dir / "budget_backup_garbage.json").write_text("not json")
        (backup_dir / "budget_backup_notimestamp.json").write_text("{}")
        (backup_dir / "notes.txt").write_text("hello")

        assert [b.id for b in await repository.list_backups()] == [info.id]

    @pytest.mark.asyncio
    async def test_flags_unverified(self, repository, backup_dir):
        """Test that a parseable but invalid backup is listed unverified."""
        document = snapshot_document([{"id": 1, "amount": 3, "details": "X"}])
        (backup_dir).mkdir(parents=True, exist_ok=True)
        (backup_dir / "budget_backup_partial.json").write_text(json.dumps(document))

        backups = await repository.list_backups()

        assert len(backups) == 1
        assert backups[0].id == "partial"
        assert backups[0].is_verified is False

    @pytest.mark.asyncio
    async def test_invalid_record_values_flag_unverified(self, repository, backup_dir):
        """Test that complete but invalid records are listed unverified."""
        records = [VALID_RECORD, {"id": 2, "amount": 0, "details": "Free", "date": "2024-01-02"}]
        backup_dir.mkdir(parents=True, exist_ok=True)
        (backup_dir / "budget_backup_mixed.json").write_text(json.dumps(snapshot_document(records)))

        backups = await repository.list_backups()

        assert [b.id for b in backups] == ["mixed"]
        assert backups[0].record_count == 2
        assert backups[0].is_verified is False


class TestDelete:
    """Tests for deleting backups."""

    @pytest.mark.asyncio
    async def test_delete(self, repository, backup_dir):
        """Test removing a backup file."""
        info = await repository.create()
        await repository.delete(info.id)
        assert backup_files(backup_dir) == []

    @pytest.mark.asyncio
    async def test_delete_missing(self, repository):
        """Test NotFoundError for unknown ids."""
        with pytest.raises(NotFoundError):
            await repository.delete("2020-01-01T00-00-00-000Z")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("backup_id", ["../secret", "a/b", "", "x.json"])
    async def test_delete_rejects_path_like_ids(self, repository, tmp_path, backup_id):
        """Test that ids cannot escape the backup directory."""
        (tmp_path / "secret").write_text("keep")

        with pytest.raises(NotFoundError):
            await repository.delete(backup_id)

        assert (tmp_path / "secret").read_text() == "keep"

    @pytest.mark.asyncio
    async def test_find_backup_file(self, repository):
        """Test the internal lookup returns None instead of raising."""
        info = await repository.create()
        assert await repository.find_backup_file(info.id) is not None
        assert await repository.find_backup_file("missing") is None
        assert await repository.find_backup_file("../escape") is None

    @pytest.mark.asyncio
    async def test_delete_all_backups(self, repository, clock, backup_dir):
        """Test clearing every backup."""
        await repository.create()
        clock.advance(minutes=1)
        await repository.create()
        (backup_dir / "budget_backup_garbage.json").write_text("not json")

        deleted = await repository.delete_all_backups()

        assert len(deleted) == 3
        assert backup_files(backup_dir) == []


class TestExportImport:
    """Tests for moving backups in and out."""

    @pytest.mark.asyncio
    async def test_export_copies_file(self, repository, backup_dir, export_dir):
        """Test the exported copy matches the original."""
        info = await repository.create()

        path = await repository.export(info.id)

        assert path == export_dir / f"{info.id}.json"
        assert path.read_bytes() == (backup_dir / info.filename).read_bytes()

    @pytest.mark.asyncio
    async def test_export_missing(self, repository):
        """Test NotFoundError on export."""
        with pytest.raises(NotFoundError):
            await repository.export("missing")

    @pytest.mark.asyncio
    async def test_import_valid_file(self, repository, backup_dir, tmp_path):
        """Test importing under a new imported_ id."""
        source = tmp_path / "incoming.json"
        text = json.dumps(snapshot_document([VALID_RECORD]), indent=2)
        source.write_text(text)

        info = await repository.import_backup(source)

        assert info.id == "imported_2024-03-10T02-00-00-000Z"
        assert info.filename == "budget_backup_imported_2024-03-10T02-00-00-000Z.json"
        assert info.timestamp == "2024-01-01T00:00:00.000Z"
        assert info.record_count == 1
        assert (backup_dir / info.filename).read_text() == text

    @pytest.mark.asyncio
    async def test_import_without_records_writes_nothing(self, repository, backup_dir, tmp_path):
        """Test that a file lacking a records array is rejected."""
        document = snapshot_document()
        del document["records"]
        source = tmp_path / "bad.json"
        source.write_text(json.dumps(document))

        with pytest.raises(InvalidBackupError):
            await repository.import_backup(source)

        assert backup_files(backup_dir) == []

    @pytest.mark.asyncio
    async def test_import_corrupt_file(self, repository, backup_dir, tmp_path):
        """Test that non-JSON input is corrupt."""
        source = tmp_path / "bad.json"
        source.write_text("{{{{")

        with pytest.raises(CorruptBackupError):
            await repository.import_backup(source)
        assert backup_files(backup_dir) == []

    @pytest.mark.asyncio
    async def test_import_missing_source(self, repository, tmp_path):
        """Test that an unreadable source is corrupt."""
        with pytest.raises(CorruptBackupError):
            await repository.import_backup(tmp_path / "nope.json")

    @pytest.mark.asyncio
    async def test_imported_backup_restorable_id(self, repository, tmp_path):
        """Test that the imported id loads back."""
        source = tmp_path / "incoming.json"
        source.write_text(json.dumps(snapshot_document([VALID_RECORD])))

        info = await repository.import_backup(source)
        snapshot = await repository.load_snapshot(info.id)

        assert snapshot.records[0].details == "Coffee"


class TestStats:
    """Tests for aggregate stats."""

    @pytest.mark.asyncio
    async def test_empty_stats(self, repository):
        """Test zero/None for no backups."""
        stats = await repository.stats()
        assert stats.total_backups == 0
        assert stats.total_size == 0
        assert stats.oldest_timestamp is None
        assert stats.newest_timestamp is None

    @pytest.mark.asyncio
    async def test_stats(self, repository, clock):
        """Test totals and time range."""
        first = await repository.create()
        clock.advance(hours=1)
        second = await repository.create()

        stats = await repository.stats()

        assert stats.total_backups == 2
        assert stats.total_size == first.size + second.size
        assert stats.oldest_timestamp == first.timestamp
        assert stats.newest_timestamp == second.timestamp


def test_repository_defaults_from_settings():
    """Test that directories and cap come from configuration."""
    repository = BackupRepository(InMemoryRecordStore(), InMemorySettingsStore())
    assert repository.max_backups == 10
    assert repository.backup_dir.name == "backups"
    assert repository.export_dir.name == "exports"
