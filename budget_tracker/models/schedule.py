"""
Scheduling Models for Budget Tracker

The automatic backup policy and the small enums shared with the
recurring-task facility.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


class BackupFrequency(str, Enum):
    """How often automatic backups should run."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def interval(self) -> timedelta:
        """Minimum time between two automatic backups."""
        return _INTERVALS[self]

    @property
    def minimum_interval_minutes(self) -> int:
        """The interval in the recurring-task facility's native unit."""
        return int(self.interval.total_seconds() // 60)


_INTERVALS = {
    BackupFrequency.DAILY: timedelta(days=1),
    BackupFrequency.WEEKLY: timedelta(days=7),
    BackupFrequency.MONTHLY: timedelta(days=30),
}


class FacilityStatus(str, Enum):
    """Availability reported by the recurring-task facility."""
    AVAILABLE = "available"
    RESTRICTED = "restricted"
    DENIED = "denied"


class TaskResult(str, Enum):
    """What a background wake-up achieved."""
    NEW_DATA = "new_data"   # A backup was written
    NO_DATA = "no_data"     # Nothing was due
    FAILED = "failed"


class SchedulePolicy(BaseModel):
    """
    Automatic backup policy.

    Persisted as JSON in the key-value store. Missing keys in stored
    policies fall back to the defaults below.
    """
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    frequency: BackupFrequency = BackupFrequency.WEEKLY
    time: str = Field(
        default="02:00",
        pattern=TIME_PATTERN,
        description="Time of day (HH:MM) the backup should run"
    )
    last_backup: Optional[datetime] = Field(
        default=None,
        alias="lastBackup",
        description="When the last automatic backup completed"
    )

    @field_validator('last_backup')
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps from older policies are treated as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def hour(self) -> int:
        return int(self.time.split(":")[0])

    @property
    def minute(self) -> int:
        return int(self.time.split(":")[1])


class RegistrationOptions(BaseModel):
    """Options passed along when registering the recurring task."""

    stop_on_terminate: bool = False
    start_on_boot: bool = True


class ScheduleStatus(BaseModel):
    """Display-ready summary of the scheduler state."""

    enabled: bool
    frequency: BackupFrequency
    time: str
    next_backup: str
    last_backup: Optional[datetime] = None
    background_available: bool = False
