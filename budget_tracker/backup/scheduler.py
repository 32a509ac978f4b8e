"""
Automatic Backup Scheduler

DESIGN DECISION: The platform's recurring-task facility is coarse and
inexact. It may wake us far more often than the backup cadence, or at odd
times. Every wake-up therefore re-checks two things before doing any work:

1. Is a backup due?  (never run, or at least one interval since the last)
2. Is it backup time? (now within the tolerance window of the configured HH:MM)

Only when both hold is a backup created. All other wake-ups are no-ops,
so extra wake-ups never cause extra backups.

The policy has two states, disabled and enabled. Registration with the
facility happens on the transition into enabled (or on a frequency change
while enabled); if the facility refuses, the policy keeps its previous
state rather than ending up "enabled but not registered".

Time of day is evaluated in the timezone of the clock's datetimes
(local time by default).
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from budget_tracker.audit import AuditLogger
from budget_tracker.backup.errors import SchedulingUnavailableError
from budget_tracker.backup.formatting import format_time_until
from budget_tracker.backup.repository import BackupRepository
from budget_tracker.config import SchedulerSettings, get_settings
from budget_tracker.models.record import BackupInfo
from budget_tracker.models.schedule import (
    FacilityStatus,
    RegistrationOptions,
    SchedulePolicy,
    ScheduleStatus,
    TaskResult,
)
from budget_tracker.services.platform.interface import (
    FacilityError,
    RecurringTaskFacility,
    TaskNotRegisteredError,
)
from budget_tracker.services.storage.interface import KeyValueStoreInterface, StoreError


logger = structlog.get_logger(__name__)


def _local_now() -> datetime:
    return datetime.now().astimezone()


class BackupScheduler:
    """
    Decides when automatic backups run and keeps the facility in sync.

    Usage:
        scheduler = BackupScheduler(repository, settings_store, facility)
        scheduler.attach()
        await scheduler.load_policy()
        await scheduler.save_policy(enabled=True, frequency=BackupFrequency.DAILY)
    """

    def __init__(
        self,
        repository: BackupRepository,
        settings_store: KeyValueStoreInterface,
        facility: RecurringTaskFacility,
        clock: Optional[Callable[[], datetime]] = None,
        settings: Optional[SchedulerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._store = settings_store
        self._facility = facility
        self._clock = clock or _local_now
        self._settings = settings or get_settings().scheduler
        self._audit_logger = audit_logger
        self._policy = SchedulePolicy()

    @property
    def policy(self) -> SchedulePolicy:
        return self._policy.model_copy()

    @property
    def task_id(self) -> str:
        return self._settings.task_id

    # =========================================================================
    # POLICY PERSISTENCE
    # =========================================================================

    async def load_policy(self) -> SchedulePolicy:
        """
        Load the stored policy, falling back to defaults.

        Missing keys take their default values. Unreadable or invalid
        stored policies are logged and replaced by the defaults.
        """
        try:
            raw = await self._store.get(self._settings.policy_key)
            self._policy = SchedulePolicy.model_validate_json(raw) if raw else SchedulePolicy()
        except (StoreError, ValidationError) as e:
            logger.warning("schedule_policy_unreadable", error=str(e))
            self._policy = SchedulePolicy()
        return self.policy

    async def _persist(self, policy: SchedulePolicy) -> None:
        await self._store.set(
            self._settings.policy_key,
            policy.model_dump_json(by_alias=True),
        )

    async def save_policy(self, **changes) -> SchedulePolicy:
        """
        Apply changes to the policy, sync the facility, and persist.

        Args:
            **changes: Any of enabled, frequency, time, last_backup

        Returns:
            The policy now in effect

        Raises:
            SchedulingUnavailableError: If enabling was refused by the facility
                (the previous policy stays in effect)
            StoreError: If the policy cannot be persisted (the facility is
                put back in line with the previous policy)
        """
        previous = self._policy
        updated = SchedulePolicy.model_validate(
            {**previous.model_dump(), **changes}
        )

        synced = False
        if updated.enabled and (not previous.enabled or updated.frequency != previous.frequency):
            await self._register(updated)
            synced = True
        elif previous.enabled and not updated.enabled:
            await self._unregister()
            synced = True

        try:
            await self._persist(updated)
        except StoreError:
            if synced:
                await self._restore_registration(previous)
            raise

        self._policy = updated
        logger.info(
            "schedule_policy_saved",
            enabled=updated.enabled,
            frequency=updated.frequency.value,
            time=updated.time,
        )
        return self.policy

    # =========================================================================
    # FACILITY
    # =========================================================================

    def attach(self) -> None:
        """Define the background task on the facility."""
        self._facility.define_task(self._settings.task_id, self.handle_background_task)

    async def is_background_available(self) -> bool:
        try:
            return await self._facility.get_status() == FacilityStatus.AVAILABLE
        except FacilityError as e:
            logger.warning("facility_status_unavailable", error=str(e))
            return False

    async def _register(self, policy: SchedulePolicy) -> None:
        if not await self.is_background_available():
            raise SchedulingUnavailableError("Background execution is not available")
        try:
            await self._facility.register(
                self._settings.task_id,
                policy.frequency.minimum_interval_minutes,
                RegistrationOptions(),
            )
        except FacilityError as e:
            raise SchedulingUnavailableError(str(e)) from e

    async def _unregister(self) -> None:
        try:
            await self._facility.unregister(self._settings.task_id)
        except TaskNotRegisteredError:
            logger.debug("schedule_already_unregistered", task_id=self._settings.task_id)
        except FacilityError as e:
            raise SchedulingUnavailableError(str(e)) from e

    async def _restore_registration(self, policy: SchedulePolicy) -> None:
        """Put the facility back in line with a policy after a failed save."""
        try:
            if policy.enabled:
                await self._register(policy)
            else:
                await self._unregister()
        except SchedulingUnavailableError as e:
            logger.error("schedule_rollback_failed", task_id=self._settings.task_id, error=str(e))

    async def ensure_registered(self) -> None:
        """
        Re-register an enabled policy, e.g. after a process restart.

        Raises:
            SchedulingUnavailableError: If the facility refuses
        """
        if self._policy.enabled:
            await self._register(self._policy)

    # =========================================================================
    # GATING
    # =========================================================================

    def is_backup_due(self, now: Optional[datetime] = None) -> bool:
        """Never run, or at least one frequency interval since the last run."""
        now = now or self._clock()
        last = self._policy.last_backup
        return last is None or now - last >= self._policy.frequency.interval

    def is_backup_time(self, now: Optional[datetime] = None) -> bool:
        """Whether now is within the tolerance window around the configured HH:MM."""
        if not self._policy.enabled:
            return False
        now = now or self._clock()
        tolerance = timedelta(minutes=self._settings.time_tolerance_minutes)
        scheduled = now.replace(
            hour=self._policy.hour,
            minute=self._policy.minute,
            second=0,
            microsecond=0,
        )
        # Windows near midnight straddle two calendar days
        return any(
            abs(now - (scheduled + timedelta(days=offset))) <= tolerance
            for offset in (-1, 0, 1)
        )

    async def run_scheduled_backup(self) -> bool:
        """
        One scheduler tick.

        Returns:
            True if a backup was created and lastBackup updated

        Raises:
            BackupError: If creating the backup fails
            StoreError: If the updated policy cannot be persisted
        """
        now = self._clock()
        if not self._policy.enabled:
            return False
        if not self.is_backup_due(now):
            logger.debug("automatic_backup_not_due")
            return False
        if not self.is_backup_time(now):
            logger.debug("automatic_backup_not_time")
            return False

        info = await self._repository.create()
        updated = self._policy.model_copy(update={"last_backup": now})
        await self._persist(updated)
        self._policy = updated
        logger.info("automatic_backup_created", backup_id=info.id)

        if self._audit_logger:
            await self._audit_logger.log_backup_created(
                backup_id=info.id,
                record_count=info.record_count,
                total_amount=str(info.total_amount),
                automatic=True,
            )
        return True

    async def handle_background_task(self) -> TaskResult:
        """Callback for the facility; never raises."""
        try:
            await self.load_policy()
            created = await self.run_scheduled_backup()
        except Exception as e:
            logger.error("automatic_backup_failed", error=str(e))
            return TaskResult.FAILED
        return TaskResult.NEW_DATA if created else TaskResult.NO_DATA

    async def test_backup(self) -> BackupInfo:
        """Create a backup right now, bypassing the gating."""
        return await self._repository.create()

    # =========================================================================
    # DISPLAY
    # =========================================================================

    def next_backup_time(self) -> Optional[datetime]:
        """
        lastBackup plus one interval, at the configured time of day.

        None when disabled or never run.
        """
        last = self._policy.last_backup
        if not self._policy.enabled or last is None:
            return None
        tz = self._clock().tzinfo
        following = (last + self._policy.frequency.interval).astimezone(tz)
        return following.replace(
            hour=self._policy.hour,
            minute=self._policy.minute,
            second=0,
            microsecond=0,
        )

    def format_next_backup_time(self) -> str:
        return format_time_until(self.next_backup_time(), self._clock())

    async def get_status(self) -> ScheduleStatus:
        return ScheduleStatus(
            enabled=self._policy.enabled,
            frequency=self._policy.frequency,
            time=self._policy.time,
            next_backup=self.format_next_backup_time(),
            last_backup=self._policy.last_backup,
            background_available=await self.is_background_available(),
        )
