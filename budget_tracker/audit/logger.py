"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Complete traceability of backups, restores and deletions
2. Debugging capability when a restore or import goes wrong
3. A history the user can inspect

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budget_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from budget_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug: bool = False) -> None:
    """Route structlog output through the stdlib root logger."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(format="%(message)s", level=level)
    # basicConfig is a no-op once handlers exist
    logging.getLogger().setLevel(level)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_log table (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent persisted events, newest first (empty without storage)."""
        if not self._storage:
            return []
        return await self._storage.get_recent_events(limit)

    async def log_record_changed(
        self,
        event_type: AuditEventType,
        record_id: int,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a record add, update or delete."""
        event = AuditEventBuilder.record_changed(
            event_type=event_type,
            record_id=record_id,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_records_cleared(
        self,
        deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.records_cleared(
            deleted=deleted,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backup_created(
        self,
        backup_id: str,
        record_count: int,
        total_amount: str,
        automatic: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log backup creation."""
        event = AuditEventBuilder.backup_created(
            backup_id=backup_id,
            record_count=record_count,
            total_amount=total_amount,
            automatic=automatic,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backups_removed(
        self,
        backup_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log deletion of one or more backups."""
        event = AuditEventBuilder.backup_removed(
            backup_ids=backup_ids,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backup_exported(
        self,
        backup_id: str,
        path: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.backup_transferred(
            event_type=AuditEventType.BACKUP_EXPORTED,
            backup_id=backup_id,
            path=path,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backup_imported(
        self,
        backup_id: str,
        source: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.backup_transferred(
            event_type=AuditEventType.BACKUP_IMPORTED,
            backup_id=backup_id,
            path=source,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_rejected(
        self,
        source: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rejected import file."""
        event = AuditEventBuilder.import_rejected(
            source=source,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_restore_completed(
        self,
        backup_id: str,
        restored: int,
        skipped: int,
        transactional: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log restore completion."""
        event = AuditEventBuilder.restore_completed(
            backup_id=backup_id,
            restored=restored,
            skipped=skipped,
            transactional=transactional,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_operation_failed(
        self,
        event_type: AuditEventType,
        error: Exception,
        backup_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed backup, restore or schedule operation."""
        event = AuditEventBuilder.operation_failed(
            event_type=event_type,
            error_type=type(error).__name__,
            error_message=str(error),
            backup_id=backup_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_schedule_updated(
        self,
        enabled: bool,
        frequency: str,
        time: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.schedule_updated(
            enabled=enabled,
            frequency=frequency,
            time=time,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a restore).
    Pass it through all subsequent operations.
    """
    return uuid4()
