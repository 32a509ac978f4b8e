"""
Audit Models for Budget Tracker

Every user-visible change to records, backups or the schedule is logged
for audit purposes. This provides:
1. A history the user can inspect ("when did my last backup run?")
2. Debugging information when a restore or import goes wrong
3. The ability to reconstruct what happened around data loss

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Records
    RECORD_ADDED = "record_added"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    RECORDS_CLEARED = "records_cleared"

    # Backups
    BACKUP_CREATED = "backup_created"
    BACKUP_FAILED = "backup_failed"
    BACKUP_DELETED = "backup_deleted"
    BACKUPS_CLEARED = "backups_cleared"
    BACKUP_EXPORTED = "backup_exported"
    BACKUP_IMPORTED = "backup_imported"
    BACKUP_IMPORT_REJECTED = "backup_import_rejected"

    # Restore
    RESTORE_COMPLETED = "restore_completed"
    RESTORE_FAILED = "restore_failed"

    # Scheduling
    SCHEDULE_UPDATED = "schedule_updated"
    SCHEDULE_REGISTRATION_FAILED = "schedule_registration_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'record', 'backup', 'schedule')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Record id or backup id this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., restore and the backup taken before it)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_log table.

        Column order:
        (event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type,
            self.entity_id,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_message,
            int(self.is_user_action),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.backup_created(backup_id, record_count, ...)
        event = AuditEventBuilder.restore_completed(backup_id, restored, ...)
    """

    @staticmethod
    def record_changed(
        event_type: AuditEventType,
        record_id: int,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            entity_type="record",
            entity_id=str(record_id),
            correlation_id=correlation_id,
            description=f"Record {record_id} {verb}",
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def records_cleared(
        deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORDS_CLEARED,
            severity=AuditSeverity.WARNING,
            entity_type="record",
            correlation_id=correlation_id,
            description=f"All records cleared ({deleted} deleted)",
            details={"deleted": deleted},
            is_user_action=True,
        )

    @staticmethod
    def backup_created(
        backup_id: str,
        record_count: int,
        total_amount: str,
        automatic: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        kind = "Automatic" if automatic else "Manual"
        return AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            entity_type="backup",
            entity_id=backup_id,
            correlation_id=correlation_id,
            description=f"{kind} backup created with {record_count} records",
            details={
                "record_count": record_count,
                "total_amount": total_amount,
                "automatic": automatic,
            },
            is_user_action=not automatic,
        )

    @staticmethod
    def backup_removed(
        backup_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        if len(backup_ids) == 1:
            return AuditEvent(
                event_type=AuditEventType.BACKUP_DELETED,
                severity=AuditSeverity.WARNING,
                entity_type="backup",
                entity_id=backup_ids[0],
                correlation_id=correlation_id,
                description=f"Backup deleted: {backup_ids[0]}",
                is_user_action=True,
            )
        return AuditEvent(
            event_type=AuditEventType.BACKUPS_CLEARED,
            severity=AuditSeverity.WARNING,
            entity_type="backup",
            correlation_id=correlation_id,
            description=f"{len(backup_ids)} backups deleted",
            details={"backup_ids": backup_ids},
            is_user_action=True,
        )

    @staticmethod
    def backup_transferred(
        event_type: AuditEventType,
        backup_id: str,
        path: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        direction = "exported to" if event_type == AuditEventType.BACKUP_EXPORTED else "imported from"
        return AuditEvent(
            event_type=event_type,
            entity_type="backup",
            entity_id=backup_id,
            correlation_id=correlation_id,
            description=f"Backup {backup_id} {direction} {path}"[:500],
            details={"path": path},
            is_user_action=True,
        )

    @staticmethod
    def import_rejected(
        source: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_IMPORT_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="backup",
            correlation_id=correlation_id,
            description="Imported file is not a valid backup",
            details={"source": source},
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def restore_completed(
        backup_id: str,
        restored: int,
        skipped: int,
        transactional: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_COMPLETED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            entity_type="backup",
            entity_id=backup_id,
            correlation_id=correlation_id,
            description=f"Restored {restored} records from backup {backup_id}",
            details={
                "restored": restored,
                "skipped": skipped,
                "transactional": transactional,
            },
            is_user_action=True,
        )

    @staticmethod
    def operation_failed(
        event_type: AuditEventType,
        error_type: str,
        error_message: str,
        backup_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.ERROR,
            entity_type="backup" if backup_id else None,
            entity_id=backup_id,
            correlation_id=correlation_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {error_type}",
            error_message=error_message,
        )

    @staticmethod
    def schedule_updated(
        enabled: bool,
        frequency: str,
        time: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        state = f"{frequency} at {time}" if enabled else "disabled"
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_UPDATED,
            entity_type="schedule",
            correlation_id=correlation_id,
            description=f"Automatic backups {state}",
            details={
                "enabled": enabled,
                "frequency": frequency,
                "time": time,
            },
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
