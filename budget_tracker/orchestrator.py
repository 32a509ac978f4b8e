"""
Main Orchestrator for Budget Tracker

This module ties together all the components and defines the
user-facing flows for:
1. Records (add → dedup → store, edit, delete, clear all)
2. Backups (create, list, restore, delete, import, export, share)
3. Automatic backup scheduling

DESIGN DECISION: The orchestrator enforces the boundaries:
- No destructive operation runs without explicit confirmation
- Every user-visible change is audited
- Start-up never hangs: it runs under a wall-clock timeout and falls back
  to a degraded state instead

Components are constructed here and passed down explicitly; nothing below
this layer holds process-wide state.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Optional, Union
from uuid import UUID

import structlog

from budget_tracker.audit import AuditLogger, configure_logging, create_correlation_id
from budget_tracker.backup import (
    BackupCodec,
    BackupError,
    BackupRepository,
    BackupScheduler,
    ConfirmationRequiredError,
    CorruptBackupError,
    InvalidBackupError,
    RestoreEngine,
    SchedulingUnavailableError,
    SharingUnavailableError,
)
from budget_tracker.config import Settings, get_settings
from budget_tracker.models.audit import AuditEventType
from budget_tracker.models.record import BackupInfo, BackupStats, Record, RestoreResult
from budget_tracker.models.schedule import SchedulePolicy, ScheduleStatus
from budget_tracker.services.platform import (
    AsyncioRecurringTaskFacility,
    DirectoryShareFacility,
    FacilityError,
    RecurringTaskFacility,
    ShareFacility,
)
from budget_tracker.services.storage import (
    AuditStorageInterface,
    KeyValueStoreInterface,
    RecordStoreInterface,
    SqliteAuditStorage,
    SqliteDatabase,
    SqliteRecordStore,
    SqliteSettingsStore,
    StoreError,
)


logger = structlog.get_logger(__name__)


class RecordFlow:
    """
    Orchestrates record changes.

    Duplicate detection lives in the store; this layer audits and guards
    the destructive clear.
    """

    def __init__(
        self,
        record_store: RecordStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._records = record_store
        self._audit_logger = audit_logger

    async def list_records(self) -> list[Record]:
        return await self._records.list_records()

    async def add_record(
        self,
        amount: Decimal,
        details: str,
        date: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Add a record (or return the id of a recent identical one).

        Raises:
            ValidationError: If amount, details or date are invalid
            StoreError: If the insert fails
        """
        record_id = await self._records.add_record(amount, details, date)
        if self._audit_logger:
            await self._audit_logger.log_record_changed(
                event_type=AuditEventType.RECORD_ADDED,
                record_id=record_id,
                details={"amount": str(amount)},
                correlation_id=correlation_id,
            )
        return record_id

    async def update_record(
        self,
        record_id: int,
        amount: Decimal,
        details: str,
        date: str,
        correlation_id: Optional[UUID] = None,
    ) -> Record:
        record = await self._records.update_record(record_id, amount, details, date)
        if self._audit_logger:
            await self._audit_logger.log_record_changed(
                event_type=AuditEventType.RECORD_UPDATED,
                record_id=record_id,
                correlation_id=correlation_id,
            )
        return record

    async def delete_record(
        self,
        record_id: int,
        confirmed: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        if not confirmed:
            raise ConfirmationRequiredError("delete record")
        deleted = await self._records.delete_record(record_id)
        if deleted and self._audit_logger:
            await self._audit_logger.log_record_changed(
                event_type=AuditEventType.RECORD_DELETED,
                record_id=record_id,
                correlation_id=correlation_id,
            )
        return deleted

    async def clear_all_data(
        self,
        confirmed: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete every record. Backups are left untouched.

        Raises:
            ConfirmationRequiredError: Unless confirmed is True
        """
        if not confirmed:
            raise ConfirmationRequiredError("clear all data")
        deleted = await self._records.delete_all()
        if self._audit_logger:
            await self._audit_logger.log_records_cleared(
                deleted=deleted,
                correlation_id=correlation_id,
            )
        return deleted


class BackupService:
    """
    User-facing facade over the backup components.

    Destructive operations (restore, delete, clear) require confirmed=True.
    Every outcome, success or failure, is audited.
    """

    def __init__(
        self,
        repository: BackupRepository,
        restore_engine: RestoreEngine,
        scheduler: BackupScheduler,
        share_facility: Optional[ShareFacility] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._restore_engine = restore_engine
        self._scheduler = scheduler
        self._share_facility = share_facility
        self._audit_logger = audit_logger or AuditLogger()

    # =========================================================================
    # BACKUPS
    # =========================================================================

    async def create_backup(self, correlation_id: Optional[UUID] = None) -> BackupInfo:
        """
        Create a manual backup.

        Raises:
            BackupError: If the backup cannot be written
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            info = await self._repository.create()
        except BackupError as e:
            await self._audit_logger.log_operation_failed(
                event_type=AuditEventType.BACKUP_FAILED,
                error=e,
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log_backup_created(
            backup_id=info.id,
            record_count=info.record_count,
            total_amount=str(info.total_amount),
            automatic=False,
            correlation_id=correlation_id,
        )
        return info

    async def list_backups(self) -> list[BackupInfo]:
        return await self._repository.list_backups()

    async def backup_stats(self) -> BackupStats:
        return await self._repository.stats()

    async def delete_backup(
        self,
        backup_id: str,
        confirmed: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete one backup file.

        Raises:
            ConfirmationRequiredError: Unless confirmed is True
            NotFoundError: If no backup matches backup_id
        """
        if not confirmed:
            raise ConfirmationRequiredError("delete backup")
        await self._repository.delete(backup_id)
        await self._audit_logger.log_backups_removed(
            backup_ids=[backup_id],
            correlation_id=correlation_id,
        )

    async def delete_all_backups(
        self,
        confirmed: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """Delete every backup file. Returns how many were deleted."""
        if not confirmed:
            raise ConfirmationRequiredError("delete all backups")
        deleted = await self._repository.delete_all_backups()
        if deleted:
            await self._audit_logger.log_backups_removed(
                backup_ids=deleted,
                correlation_id=correlation_id,
            )
        return len(deleted)

    async def restore_backup(
        self,
        backup_id: str,
        confirmed: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> RestoreResult:
        """
        Replace all current records with a backup.

        Raises:
            ConfirmationRequiredError: Unless confirmed is True
            NotFoundError, CorruptBackupError, InvalidBackupError,
            RestoreVerificationError, StoreError: From the restore itself
        """
        if not confirmed:
            raise ConfirmationRequiredError("restore backup")
        correlation_id = correlation_id or create_correlation_id()

        try:
            result = await self._restore_engine.restore(backup_id)
        except (BackupError, StoreError) as e:
            await self._audit_logger.log_operation_failed(
                event_type=AuditEventType.RESTORE_FAILED,
                error=e,
                backup_id=backup_id,
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log_restore_completed(
            backup_id=backup_id,
            restored=result.restored_records,
            skipped=result.skipped_records,
            transactional=result.transactional,
            correlation_id=correlation_id,
        )
        return result

    # =========================================================================
    # IMPORT / EXPORT / SHARE
    # =========================================================================

    async def export_backup(
        self,
        backup_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Path:
        path = await self._repository.export(backup_id)
        await self._audit_logger.log_backup_exported(
            backup_id=backup_id,
            path=str(path),
            correlation_id=correlation_id,
        )
        return path

    async def share_backup(
        self,
        backup_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Path:
        """
        Export a backup and hand it to the share facility.

        Raises:
            SharingUnavailableError: If there is no working share facility
            NotFoundError: If no backup matches backup_id
        """
        if self._share_facility is None or not await self._share_facility.is_available():
            raise SharingUnavailableError("Sharing is not available on this device")

        path = await self.export_backup(backup_id, correlation_id=correlation_id)
        try:
            return await self._share_facility.share(path)
        except FacilityError as e:
            raise SharingUnavailableError(str(e)) from e

    async def import_backup(
        self,
        source: Union[str, Path],
        correlation_id: Optional[UUID] = None,
    ) -> BackupInfo:
        """
        Import an external backup file.

        Raises:
            CorruptBackupError: If the file is unreadable or not JSON
            InvalidBackupError: If the file is not a valid backup
        """
        correlation_id = correlation_id or create_correlation_id()
        try:
            info = await self._repository.import_backup(source)
        except (CorruptBackupError, InvalidBackupError) as e:
            await self._audit_logger.log_import_rejected(
                source=str(source),
                reason=str(e),
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log_backup_imported(
            backup_id=info.id,
            source=str(source),
            correlation_id=correlation_id,
        )
        return info

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    async def update_schedule(self, correlation_id: Optional[UUID] = None, **changes) -> SchedulePolicy:
        """
        Change the automatic backup policy.

        Raises:
            SchedulingUnavailableError: If enabling was refused
                (the previous policy stays in effect)
        """
        try:
            policy = await self._scheduler.save_policy(**changes)
        except SchedulingUnavailableError as e:
            await self._audit_logger.log_operation_failed(
                event_type=AuditEventType.SCHEDULE_REGISTRATION_FAILED,
                error=e,
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log_schedule_updated(
            enabled=policy.enabled,
            frequency=policy.frequency.value,
            time=policy.time,
            correlation_id=correlation_id,
        )
        return policy

    async def schedule_status(self) -> ScheduleStatus:
        return await self._scheduler.get_status()

    async def test_backup(self) -> BackupInfo:
        """Run the automatic backup path once, without the schedule gating."""
        info = await self._scheduler.test_backup()
        await self._audit_logger.log_backup_created(
            backup_id=info.id,
            record_count=info.record_count,
            total_amount=str(info.total_amount),
            automatic=False,
        )
        return info


class AppComponents:
    """
    Everything the app needs, wired together.

    degraded is True when start-up failed or timed out; the app then
    runs on whatever state it has rather than hanging.
    """

    def __init__(
        self,
        record_store: RecordStoreInterface,
        settings_store: KeyValueStoreInterface,
        repository: BackupRepository,
        restore_engine: RestoreEngine,
        scheduler: BackupScheduler,
        facility: RecurringTaskFacility,
        audit_logger: AuditLogger,
        records: RecordFlow,
        backups: BackupService,
        database: Optional[SqliteDatabase] = None,
    ):
        self.record_store = record_store
        self.settings_store = settings_store
        self.repository = repository
        self.restore_engine = restore_engine
        self.scheduler = scheduler
        self.facility = facility
        self.audit_logger = audit_logger
        self.records = records
        self.backups = backups
        self.database = database
        self.degraded = False

    async def start(self) -> None:
        """
        Initialize storage and the scheduler.

        Raises:
            StoreError: If the record store cannot be initialized
        """
        await self.record_store.init()
        self.scheduler.attach()
        await self.scheduler.load_policy()
        try:
            await self.scheduler.ensure_registered()
        except SchedulingUnavailableError as e:
            # The policy stays enabled; the next start-up tries again
            logger.warning("schedule_registration_failed", error=str(e))
            await self.audit_logger.log_operation_failed(
                event_type=AuditEventType.SCHEDULE_REGISTRATION_FAILED,
                error=e,
            )

    async def close(self) -> None:
        await self.facility.shutdown()
        if self.database is not None:
            await self.database.close()


def create_app_components(
    settings: Optional[Settings] = None,
    data_dir: Optional[Union[str, Path]] = None,
    backup_dir: Optional[Union[str, Path]] = None,
    export_dir: Optional[Union[str, Path]] = None,
    record_store: Optional[RecordStoreInterface] = None,
    settings_store: Optional[KeyValueStoreInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    facility: Optional[RecurringTaskFacility] = None,
    share_facility: Optional[ShareFacility] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to get_settings())
        data_dir, backup_dir, export_dir: Directory overrides
        record_store, settings_store, audit_storage: Store overrides.
            Any store not given is backed by the SQLite database.
        facility: Recurring-task facility (defaults to the in-process one)
        share_facility: Share facility (defaults to a directory outbox)
        clock: Time source for backups and scheduling

    Returns:
        Wired but not yet started components; see initialize_app()
    """
    settings = settings or get_settings()

    database = None
    if record_store is None or settings_store is None or audit_storage is None:
        database_path = (
            Path(data_dir) / settings.storage.database_name
            if data_dir else settings.storage.database_path
        )
        database = SqliteDatabase(database_path)

    record_store = record_store or SqliteRecordStore(database, clock=clock)
    settings_store = settings_store or SqliteSettingsStore(database)
    audit_storage = audit_storage or SqliteAuditStorage(database)
    audit_logger = AuditLogger(audit_storage)

    repository = BackupRepository(
        record_store,
        settings_store,
        backup_dir=backup_dir,
        export_dir=export_dir,
        codec=BackupCodec(version=settings.backup.format_version),
        max_backups=settings.backup.max_backups,
        settings_key=settings.app.settings_key,
        clock=clock,
    )
    restore_engine = RestoreEngine(
        repository,
        record_store,
        settings_store,
        settings_key=settings.app.settings_key,
        clock=clock,
    )
    facility = facility or AsyncioRecurringTaskFacility(settings.scheduler.wake_interval_seconds)
    scheduler = BackupScheduler(
        repository,
        settings_store,
        facility,
        clock=clock,
        settings=settings.scheduler,
        audit_logger=audit_logger,
    )
    backups = BackupService(
        repository,
        restore_engine,
        scheduler,
        share_facility=share_facility or DirectoryShareFacility(),
        audit_logger=audit_logger,
    )

    return AppComponents(
        record_store=record_store,
        settings_store=settings_store,
        repository=repository,
        restore_engine=restore_engine,
        scheduler=scheduler,
        facility=facility,
        audit_logger=audit_logger,
        records=RecordFlow(record_store, audit_logger),
        backups=backups,
        database=database,
    )


async def initialize_app(
    components: AppComponents,
    timeout: Optional[float] = None,
) -> AppComponents:
    """
    Start the app under a wall-clock ceiling.

    Logging is configured first, at debug level when DEBUG_MODE is set.

    On timeout or storage failure the components are marked degraded and
    returned anyway; start-up never raises for those.
    """
    settings = get_settings()
    configure_logging(settings.app.debug_mode)
    timeout = timeout or settings.app.init_timeout_seconds
    try:
        await asyncio.wait_for(components.start(), timeout=timeout)
    except asyncio.TimeoutError:
        components.degraded = True
        logger.error("app_init_timeout", timeout_seconds=timeout)
    except StoreError as e:
        components.degraded = True
        logger.error("app_init_failed", error=str(e))
        await components.audit_logger.log_error(
            error_type=type(e).__name__,
            error_message=str(e),
        )
    else:
        logger.info("app_initialized")
    return components
