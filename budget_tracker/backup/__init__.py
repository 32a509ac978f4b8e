"""
Backup Package

Snapshot codec, on-disk repository, restore engine and the automatic
backup scheduler.
"""

from budget_tracker.backup.codec import BackupCodec, format_timestamp
from budget_tracker.backup.errors import (
    BackupError,
    ConfirmationRequiredError,
    CorruptBackupError,
    InvalidBackupError,
    NotFoundError,
    RestoreVerificationError,
    SchedulingUnavailableError,
    SharingUnavailableError,
    describe_error,
)
from budget_tracker.backup.formatting import (
    format_backup_date,
    format_file_size,
    format_time_until,
)
from budget_tracker.backup.repository import BackupRepository
from budget_tracker.backup.restore import RestoreEngine
from budget_tracker.backup.scheduler import BackupScheduler

__all__ = [
    # Components
    "BackupCodec",
    "BackupRepository",
    "BackupScheduler",
    "RestoreEngine",
    # Errors
    "BackupError",
    "ConfirmationRequiredError",
    "CorruptBackupError",
    "InvalidBackupError",
    "NotFoundError",
    "RestoreVerificationError",
    "SchedulingUnavailableError",
    "SharingUnavailableError",
    "describe_error",
    # Formatting
    "format_backup_date",
    "format_file_size",
    "format_time_until",
    "format_timestamp",
]
