"""
Platform Facility Interfaces

DESIGN DECISION: The recurring-task scheduler and the share sheet belong
to the host platform. The backup engine only talks to these interfaces,
so it runs the same way under a mobile OS job scheduler, a desktop timer
or a test fake.

Wake-ups from a recurring-task facility are coarse and inexact. Callers
must not assume the callback fires at the registered interval.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Awaitable, Callable

from budget_tracker.models.schedule import FacilityStatus, RegistrationOptions, TaskResult


TaskCallback = Callable[[], Awaitable[TaskResult]]


class RecurringTaskFacility(ABC):
    """
    Abstract interface for an OS-level recurring-task primitive.

    A task must be defined (callback attached) before it can be registered.
    """

    @abstractmethod
    def define_task(self, task_id: str, callback: TaskCallback) -> None:
        """Attach the callback invoked on each wake-up of task_id."""
        pass

    @abstractmethod
    async def get_status(self) -> FacilityStatus:
        """
        Report whether background execution is currently allowed.

        Raises:
            FacilityError: If the status cannot be determined
        """
        pass

    @abstractmethod
    async def register(
        self,
        task_id: str,
        minimum_interval_minutes: int,
        options: RegistrationOptions,
    ) -> None:
        """
        Ask the platform to wake task_id at most every minimum_interval_minutes.

        Re-registering an already registered task replaces its interval.

        Raises:
            FacilityError: If the platform refuses the registration
        """
        pass

    @abstractmethod
    async def unregister(self, task_id: str) -> None:
        """
        Stop waking task_id.

        Raises:
            TaskNotRegisteredError: If task_id is not registered
        """
        pass

    @abstractmethod
    async def is_registered(self, task_id: str) -> bool:
        pass

    async def shutdown(self) -> None:
        """Release any resources held by the facility."""
        return None


class ShareFacility(ABC):
    """Hands an exported file to whatever the platform uses for sharing."""

    @abstractmethod
    async def is_available(self) -> bool:
        pass

    @abstractmethod
    async def share(self, path: Path) -> Path:
        """
        Share a file.

        Returns:
            Where the platform placed the shared file

        Raises:
            FacilityError: If sharing fails
        """
        pass


class FacilityError(Exception):
    """Base exception for platform facility failures."""
    pass


class TaskNotRegisteredError(FacilityError):
    """The task was not registered (unregistering it is then a no-op)."""
    pass
