"""
Restore Engine

Replaces the live record store contents with a snapshot.

DESIGN DECISION: Restore is destructive, so it is all-or-nothing whenever
the store can do transactions: delete everything, insert every snapshot
record with its original id, overwrite settings, and check the row count,
all inside one transaction. Any failure rolls back to the prior state.

Stores without transactions get a best-effort path instead: each record
is validated and inserted on its own, bad records (invalid, or refused by
the store) are skipped and logged, and a final count check catches a
restore where nothing landed.

The snapshot file itself is only read, never modified.
"""

import json
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from budget_tracker.backup.errors import InvalidBackupError, RestoreVerificationError
from budget_tracker.backup.repository import BackupRepository
from budget_tracker.config import get_settings
from budget_tracker.models.record import RestoreResult, Snapshot
from budget_tracker.services.storage.interface import (
    KeyValueStoreInterface,
    RecordStoreInterface,
    StoreError,
)


logger = structlog.get_logger(__name__)


class RestoreEngine:
    """Restores snapshots from a BackupRepository into a record store."""

    def __init__(
        self,
        repository: BackupRepository,
        record_store: RecordStoreInterface,
        settings_store: KeyValueStoreInterface,
        settings_key: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._repository = repository
        self._records = record_store
        self._settings = settings_store
        self._settings_key = settings_key or get_settings().app.settings_key
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def restore(self, backup_id: str) -> RestoreResult:
        """
        Replace all records (and settings, if present) with a snapshot.

        Args:
            backup_id: Id of the snapshot to restore

        Returns:
            What was restored and how

        Raises:
            NotFoundError: If no snapshot matches backup_id
            CorruptBackupError: If the file is unreadable or not JSON
            InvalidBackupError: If the snapshot fails verification, or any record
                is invalid when restoring inside a transaction
            RestoreVerificationError: If the row count is wrong afterwards
            StoreError: If the store fails (transactional path: nothing changed)
        """
        snapshot, rejected = await self._repository.load_snapshot_lenient(backup_id)
        transactional = self._records.supports_transactions
        logger.info(
            "restore_started",
            backup_id=backup_id,
            records=len(snapshot.records) + len(rejected),
            transactional=transactional,
        )

        if transactional:
            if rejected:
                raise InvalidBackupError(rejected[0])
            restored, skipped, settings_restored = await self._restore_in_transaction(snapshot)
        else:
            for message in rejected:
                logger.warning("restore_record_skipped", error=message)
            restored, skipped, settings_restored = await self._restore_best_effort(
                snapshot, len(rejected)
            )

        logger.info(
            "restore_completed",
            backup_id=backup_id,
            restored=restored,
            skipped=skipped,
        )
        return RestoreResult(
            backup_id=backup_id,
            snapshot_timestamp=snapshot.timestamp,
            restored_records=restored,
            skipped_records=skipped,
            settings_restored=settings_restored,
            transactional=transactional,
            completed_at=self._clock(),
        )

    async def _restore_in_transaction(self, snapshot: Snapshot) -> tuple[int, int, bool]:
        async with self._records.transaction():
            await self._records.delete_all()
            for record in snapshot.records:
                await self._records.insert_record(record)
            settings_restored = await self._write_settings(snapshot)

            # Raising here rolls the whole replace back
            actual = await self._records.count()
            if actual != len(snapshot.records):
                raise RestoreVerificationError(len(snapshot.records), actual)

        return len(snapshot.records), 0, settings_restored

    async def _restore_best_effort(
        self,
        snapshot: Snapshot,
        rejected: int = 0,
    ) -> tuple[int, int, bool]:
        await self._records.delete_all()

        restored = 0
        skipped = rejected
        for record in snapshot.records:
            try:
                await self._records.insert_record(record)
                restored += 1
            except StoreError as e:
                skipped += 1
                logger.warning("restore_record_skipped", record_id=record.id, error=str(e))

        try:
            settings_restored = await self._write_settings(snapshot)
        except StoreError as e:
            logger.warning("restore_settings_failed", error=str(e))
            settings_restored = False

        actual = await self._records.count()
        expected = len(snapshot.records) + rejected
        if expected and actual == 0:
            raise RestoreVerificationError(expected, actual)

        return restored, skipped, settings_restored

    async def _write_settings(self, snapshot: Snapshot) -> bool:
        if snapshot.settings is None:
            return False
        value = snapshot.settings
        if not isinstance(value, str):
            value = json.dumps(value)
        await self._settings.set(self._settings_key, value)
        return True
