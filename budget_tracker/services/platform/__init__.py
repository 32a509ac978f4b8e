"""Platform facilities: recurring background tasks and file sharing."""

from budget_tracker.services.platform.interface import (
    FacilityError,
    RecurringTaskFacility,
    ShareFacility,
    TaskCallback,
    TaskNotRegisteredError,
)
from budget_tracker.services.platform.asyncio_tasks import AsyncioRecurringTaskFacility
from budget_tracker.services.platform.sharing import DirectoryShareFacility

__all__ = [
    # Interfaces
    "RecurringTaskFacility",
    "ShareFacility",
    "TaskCallback",
    # Exceptions
    "FacilityError",
    "TaskNotRegisteredError",
    # Implementations
    "AsyncioRecurringTaskFacility",
    "DirectoryShareFacility",
]
