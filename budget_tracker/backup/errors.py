"""
Backup Errors

Every public backup operation either returns its result or raises one of
these. Storage failures keep their own StoreError hierarchy and are
described alongside them by describe_error().
"""

from budget_tracker.services.platform.interface import FacilityError
from budget_tracker.services.storage.interface import StoreError


class BackupError(Exception):
    """Base exception for backup, restore and scheduling errors."""

    kind = "Backup error"


class CorruptBackupError(BackupError):
    """File unreadable or not valid JSON."""

    kind = "Corrupt backup"


class InvalidBackupError(BackupError):
    """Well-formed JSON that fails integrity verification."""

    kind = "Invalid backup"


class NotFoundError(BackupError):
    """No snapshot file matches the requested id."""

    kind = "Backup not found"

    def __init__(self, backup_id: str, message: str = ""):
        self.backup_id = backup_id
        super().__init__(message or f"No backup with id {backup_id}")


class RestoreVerificationError(BackupError):
    """Row count after a restore contradicts the snapshot."""

    kind = "Restore verification failed"

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} records after restore, found {actual}")


class SchedulingUnavailableError(BackupError):
    """The recurring-task facility refused the registration."""

    kind = "Scheduling unavailable"


class ConfirmationRequiredError(BackupError):
    """A destructive operation was invoked without confirmation."""

    kind = "Confirmation required"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"'{operation}' is destructive and must be confirmed")


class SharingUnavailableError(BackupError):
    """No sharing facility is available on this platform."""

    kind = "Sharing unavailable"


def describe_error(exc: BaseException) -> str:
    """
    Render an error as "<kind>: <message>" for display to the user.

    Falls back to the kind alone when the error carries no message.
    """
    if isinstance(exc, BackupError):
        kind = exc.kind
    elif isinstance(exc, StoreError):
        kind = "Storage error"
    elif isinstance(exc, FacilityError):
        kind = "Platform error"
    else:
        kind = "Unexpected error"

    message = str(exc).strip()
    return f"{kind}: {message}" if message else kind
