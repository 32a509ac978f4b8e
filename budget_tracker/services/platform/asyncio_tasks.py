"""
In-Process Recurring-Task Facility

Runs each registered task as an asyncio task that sleeps and wakes in a
loop while the process is alive. The wake interval is deliberately shorter
than the scheduler's time-of-day tolerance window, so at least one wake-up
lands inside every window; the scheduler's own due/time check throttles
the extra wake-ups.
"""

import asyncio
from typing import Optional

import structlog

from budget_tracker.config import get_settings
from budget_tracker.models.schedule import FacilityStatus, RegistrationOptions
from budget_tracker.services.platform.interface import (
    FacilityError,
    RecurringTaskFacility,
    TaskCallback,
    TaskNotRegisteredError,
)


logger = structlog.get_logger(__name__)


class AsyncioRecurringTaskFacility(RecurringTaskFacility):
    """
    Recurring-task facility backed by the running event loop.

    Callbacks of one task never overlap: the loop awaits each run before
    sleeping again.
    """

    def __init__(
        self,
        wake_interval_seconds: Optional[float] = None,
        status: FacilityStatus = FacilityStatus.AVAILABLE,
    ):
        if wake_interval_seconds is None:
            wake_interval_seconds = get_settings().scheduler.wake_interval_seconds
        self._wake_interval = wake_interval_seconds
        self._status = status
        self._callbacks: dict[str, TaskCallback] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def define_task(self, task_id: str, callback: TaskCallback) -> None:
        self._callbacks[task_id] = callback

    def set_status(self, status: FacilityStatus) -> None:
        self._status = status

    async def get_status(self) -> FacilityStatus:
        return self._status

    async def register(
        self,
        task_id: str,
        minimum_interval_minutes: int,
        options: RegistrationOptions,
    ) -> None:
        if self._status != FacilityStatus.AVAILABLE:
            raise FacilityError(f"Background execution is {self._status.value}")
        if task_id not in self._callbacks:
            raise FacilityError(f"Task {task_id} has no callback defined")

        await self._cancel(task_id)

        interval = min(self._wake_interval, minimum_interval_minutes * 60)
        self._tasks[task_id] = asyncio.create_task(
            self._run(task_id, interval),
            name=f"recurring:{task_id}",
        )
        logger.info(
            "recurring_task_registered",
            task_id=task_id,
            minimum_interval_minutes=minimum_interval_minutes,
            wake_interval_seconds=interval,
            start_on_boot=options.start_on_boot,
        )

    async def unregister(self, task_id: str) -> None:
        if not await self._cancel(task_id):
            raise TaskNotRegisteredError(f"Task {task_id} is not registered")
        logger.info("recurring_task_unregistered", task_id=task_id)

    async def is_registered(self, task_id: str) -> bool:
        return task_id in self._tasks

    async def shutdown(self) -> None:
        for task_id in list(self._tasks):
            await self._cancel(task_id)

    async def _cancel(self, task_id: str) -> bool:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return True

    async def _run(self, task_id: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            callback = self._callbacks.get(task_id)
            if callback is None:
                continue
            try:
                result = await callback()
                logger.debug("recurring_task_ran", task_id=task_id, result=result.value)
            except Exception as e:
                # Keep the loop alive; the next wake-up retries
                logger.error("recurring_task_failed", task_id=task_id, error=str(e))
