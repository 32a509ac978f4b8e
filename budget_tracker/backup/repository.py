"""
Backup Repository

Owns the directory of snapshot files: create, list, delete, import,
export and the retention cap.

DESIGN DECISION: The filename is the only index. Every snapshot lives in
budget_backup_<id>.json, where <id> is the sanitized creation timestamp
(or imported_<timestamp> for imports). There is no manifest to drift out
of sync with the files on disk.

Read paths (listing, stats) degrade to empty results on I/O errors.
Write paths (create, import, delete, export) raise typed errors.
"""

import json
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

import aiofiles
import aiofiles.os
import structlog
from pydantic import ValidationError

from budget_tracker.backup.codec import BackupCodec, format_timestamp
from budget_tracker.backup.errors import BackupError, CorruptBackupError, NotFoundError
from budget_tracker.config import get_settings
from budget_tracker.models.record import (
    BackupInfo,
    BackupStats,
    Record,
    Snapshot,
    SnapshotMetadata,
    sanitize_timestamp,
)
from budget_tracker.services.storage.interface import (
    KeyValueStoreInterface,
    RecordStoreInterface,
    StoreError,
)
from budget_tracker.validation import iso_sort_key


logger = structlog.get_logger(__name__)


BACKUP_PREFIX = "budget_backup_"
BACKUP_SUFFIX = ".json"
IMPORTED_PREFIX = "imported_"

_BACKUP_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def backup_filename(backup_id: str) -> str:
    return f"{BACKUP_PREFIX}{backup_id}{BACKUP_SUFFIX}"


def backup_id_from_filename(filename: str) -> Optional[str]:
    """Inverse of backup_filename(); None for files that are not backups."""
    if not (filename.startswith(BACKUP_PREFIX) and filename.endswith(BACKUP_SUFFIX)):
        return None
    backup_id = filename[len(BACKUP_PREFIX):-len(BACKUP_SUFFIX)]
    return backup_id if _BACKUP_ID.match(backup_id) else None


class BackupRepository:
    """
    Manages snapshot files in a single backup directory.

    Usage:
        repository = BackupRepository(record_store, settings_store, backup_dir=path)
        info = await repository.create()
        backups = await repository.list_backups()
    """

    def __init__(
        self,
        record_store: RecordStoreInterface,
        settings_store: KeyValueStoreInterface,
        backup_dir: Optional[Union[str, Path]] = None,
        export_dir: Optional[Union[str, Path]] = None,
        codec: Optional[BackupCodec] = None,
        max_backups: Optional[int] = None,
        settings_key: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        settings = get_settings()
        self._records = record_store
        self._settings = settings_store
        self._backup_dir = Path(backup_dir or settings.backup.backup_dir)
        self._export_dir = Path(export_dir or settings.backup.export_dir)
        self._codec = codec or BackupCodec()
        self._max_backups = max_backups or settings.backup.max_backups
        self._settings_key = settings_key or settings.app.settings_key
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    @property
    def export_dir(self) -> Path:
        return self._export_dir

    @property
    def codec(self) -> BackupCodec:
        return self._codec

    @property
    def max_backups(self) -> int:
        return self._max_backups

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def path_for(self, backup_id: str) -> Path:
        """
        Path of the file holding backup_id.

        Raises:
            NotFoundError: If backup_id cannot name a backup file
        """
        if not _BACKUP_ID.match(backup_id or ""):
            raise NotFoundError(backup_id, f"Invalid backup id: {backup_id!r}")
        return self._backup_dir / backup_filename(backup_id)

    async def find_backup_file(self, backup_id: str) -> Optional[Path]:
        """Path of an existing backup file, or None."""
        try:
            path = self.path_for(backup_id)
        except NotFoundError:
            return None
        return path if await aiofiles.os.path.isfile(path) else None

    async def _require(self, backup_id: str) -> Path:
        path = await self.find_backup_file(backup_id)
        if path is None:
            raise NotFoundError(backup_id)
        return path

    async def read_backup(self, backup_id: str) -> str:
        """
        Raw text of a backup file.

        Raises:
            NotFoundError: If no file matches backup_id
            CorruptBackupError: If the file cannot be read as UTF-8
        """
        path = await self._require(backup_id)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return await f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptBackupError(f"Cannot read backup {backup_id}: {e}") from e

    async def load_snapshot(self, backup_id: str) -> Snapshot:
        """Read, parse and verify a backup."""
        return self._codec.deserialize(await self.read_backup(backup_id))

    async def load_snapshot_lenient(self, backup_id: str) -> tuple[Snapshot, list[str]]:
        """Read and verify a backup, setting aside records that fail validation."""
        return self._codec.parse(await self.read_backup(backup_id))

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create(self) -> BackupInfo:
        """
        Snapshot the record store and settings into a new file.

        Steps run in order: read records, read settings, serialize,
        write atomically, prune.

        Returns:
            Info for the new file (verified)

        Raises:
            BackupError: If the file cannot be written
        """
        records = await self._read_records()
        settings = await self._read_settings()

        backup_id, timestamp = await self._allocate_id("")
        snapshot = self._codec.serialize(records, settings, timestamp=timestamp)
        text = self._codec.encode(snapshot)

        path = self.path_for(backup_id)
        await self._write_atomic(path, text)
        logger.info(
            "backup_created",
            backup_id=backup_id,
            record_count=snapshot.metadata.total_records,
        )

        await self.prune()

        return BackupInfo(
            id=backup_id,
            filename=path.name,
            timestamp=snapshot.timestamp,
            size=len(text.encode("utf-8")),
            record_count=snapshot.metadata.total_records,
            total_amount=snapshot.metadata.total_amount,
            is_verified=True,
        )

    async def _read_records(self) -> list[Record]:
        try:
            return await self._records.list_records()
        except StoreError as e:
            # A backup of zero records is still a valid outcome
            logger.warning("backup_records_unreadable", error=str(e))
            return []

    async def _read_settings(self) -> Any:
        try:
            raw = await self._settings.get(self._settings_key)
        except StoreError as e:
            logger.warning("backup_settings_unreadable", error=str(e))
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    async def _allocate_id(self, prefix: str) -> tuple[str, str]:
        """Id and timestamp for a new file; bumps by 1ms while the name is taken."""
        moment = self._clock()
        while True:
            timestamp = format_timestamp(moment)
            backup_id = prefix + sanitize_timestamp(timestamp)
            if not await aiofiles.os.path.exists(self.path_for(backup_id)):
                return backup_id, timestamp
            moment += timedelta(milliseconds=1)

    async def _write_atomic(self, path: Path, text: str) -> None:
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(text)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError:
                pass
            raise BackupError(f"Failed to write {path.name}: {e}") from e

    # =========================================================================
    # LIST / STATS
    # =========================================================================

    async def _backup_files(self) -> list[tuple[str, Path]]:
        try:
            names = await aiofiles.os.listdir(self._backup_dir)
        except FileNotFoundError:
            return []
        files = []
        for name in names:
            backup_id = backup_id_from_filename(name)
            if backup_id is not None:
                files.append((backup_id, self._backup_dir / name))
        return files

    async def _load_info(self, backup_id: str, path: Path) -> Optional[BackupInfo]:
        try:
            stat = await aiofiles.os.stat(path)
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                document = self._codec.decode(await f.read())
        except (OSError, UnicodeDecodeError, CorruptBackupError) as e:
            logger.warning("backup_unreadable", backup_id=backup_id, error=str(e))
            return None

        timestamp = document.get("timestamp")
        if not isinstance(timestamp, str):
            logger.warning("backup_unreadable", backup_id=backup_id, error="missing timestamp")
            return None

        try:
            metadata = SnapshotMetadata.model_validate(document.get("metadata"))
        except ValidationError:
            records = document.get("records")
            metadata = SnapshotMetadata(total_records=len(records) if isinstance(records, list) else 0)

        return BackupInfo(
            id=backup_id,
            filename=path.name,
            timestamp=timestamp,
            size=stat.st_size,
            record_count=metadata.total_records,
            total_amount=metadata.total_amount,
            is_verified=self._codec.is_restorable(document),
        )

    async def list_backups(self) -> list[BackupInfo]:
        """
        All readable backups, newest first.

        Unreadable files are skipped and logged; never raises on I/O errors.
        """
        try:
            files = await self._backup_files()
        except OSError as e:
            logger.warning("backup_listing_failed", error=str(e))
            return []

        backups = []
        for backup_id, path in files:
            info = await self._load_info(backup_id, path)
            if info is not None:
                backups.append(info)

        backups.sort(key=lambda b: (iso_sort_key(b.timestamp), b.id), reverse=True)
        return backups

    async def stats(self) -> BackupStats:
        """Aggregate counts over all backups (zeros when there are none)."""
        backups = await self.list_backups()
        if not backups:
            return BackupStats()
        return BackupStats(
            total_backups=len(backups),
            total_size=sum(b.size for b in backups),
            oldest_timestamp=backups[-1].timestamp,
            newest_timestamp=backups[0].timestamp,
        )

    # =========================================================================
    # DELETE / RETENTION
    # =========================================================================

    async def delete(self, backup_id: str) -> None:
        """
        Remove a backup file.

        Raises:
            NotFoundError: If no file matches backup_id
            BackupError: If the file cannot be removed
        """
        path = await self._require(backup_id)
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise BackupError(f"Failed to delete backup {backup_id}: {e}") from e
        logger.info("backup_deleted", backup_id=backup_id)

    async def delete_all_backups(self) -> list[str]:
        """
        Remove every backup file, readable or not.

        Returns:
            Ids of the deleted backups
        """
        try:
            files = await self._backup_files()
        except OSError as e:
            raise BackupError(f"Failed to list backups: {e}") from e

        deleted = []
        for backup_id, path in files:
            try:
                await aiofiles.os.remove(path)
            except OSError as e:
                raise BackupError(f"Failed to delete backup {backup_id}: {e}") from e
            deleted.append(backup_id)

        logger.info("backups_cleared", deleted=len(deleted))
        return deleted

    async def prune(self) -> list[str]:
        """
        Delete the oldest backups beyond the retention cap.

        Failures are logged; pruning never fails the create that triggered it.

        Returns:
            Ids of the pruned backups
        """
        backups = await self.list_backups()
        excess = len(backups) - self._max_backups
        if excess <= 0:
            return []

        pruned = []
        for info in reversed(backups[-excess:]):
            try:
                await aiofiles.os.remove(self._backup_dir / info.filename)
                pruned.append(info.id)
            except OSError as e:
                logger.warning("backup_prune_failed", backup_id=info.id, error=str(e))

        logger.info("backups_pruned", pruned=pruned, max_backups=self._max_backups)
        return pruned

    # =========================================================================
    # EXPORT / IMPORT
    # =========================================================================

    async def export(self, backup_id: str) -> Path:
        """
        Copy a backup into the export directory as <id>.json.

        Raises:
            NotFoundError: If no file matches backup_id
            BackupError: If the copy fails
        """
        source = await self._require(backup_id)
        target = self._export_dir / f"{backup_id}.json"
        try:
            await aiofiles.os.makedirs(self._export_dir, exist_ok=True)
            async with aiofiles.open(source, "rb") as src:
                content = await src.read()
            async with aiofiles.open(target, "wb") as dst:
                await dst.write(content)
        except OSError as e:
            raise BackupError(f"Failed to export backup {backup_id}: {e}") from e

        logger.info("backup_exported", backup_id=backup_id, path=str(target))
        return target

    async def import_backup(self, source: Union[str, Path]) -> BackupInfo:
        """
        Verify an external file and store it under a new imported_ id.

        Nothing is written unless the file parses and verifies.

        Raises:
            CorruptBackupError: If the source is unreadable or not JSON
            InvalidBackupError: If the source fails verification
            BackupError: If the copy cannot be written
        """
        source = Path(source)
        try:
            async with aiofiles.open(source, "r", encoding="utf-8") as f:
                text = await f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptBackupError(f"Cannot read {source.name}: {e}") from e

        snapshot = self._codec.deserialize(text)

        backup_id, _ = await self._allocate_id(IMPORTED_PREFIX)
        path = self.path_for(backup_id)
        await self._write_atomic(path, text)
        logger.info("backup_imported", backup_id=backup_id, source=str(source))

        return BackupInfo(
            id=backup_id,
            filename=path.name,
            timestamp=snapshot.timestamp,
            size=len(text.encode("utf-8")),
            record_count=snapshot.metadata.total_records,
            total_amount=snapshot.metadata.total_amount,
            is_verified=True,
        )
