"""
Data Models Package

This package contains all Pydantic models used in Budget Tracker.
All data flowing through the system must conform to these schemas.
"""

from budget_tracker.models.record import (
    BackupInfo,
    BackupStats,
    DateRange,
    Record,
    RecordDraft,
    RestoreResult,
    Snapshot,
    SnapshotMetadata,
    sanitize_timestamp,
)
from budget_tracker.models.schedule import (
    BackupFrequency,
    FacilityStatus,
    RegistrationOptions,
    SchedulePolicy,
    ScheduleStatus,
    TaskResult,
)
from budget_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record and snapshot models
    "BackupInfo",
    "BackupStats",
    "DateRange",
    "Record",
    "RecordDraft",
    "RestoreResult",
    "Snapshot",
    "SnapshotMetadata",
    "sanitize_timestamp",
    # Scheduling models
    "BackupFrequency",
    "FacilityStatus",
    "RegistrationOptions",
    "SchedulePolicy",
    "ScheduleStatus",
    "TaskResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
