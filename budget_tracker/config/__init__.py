"""Configuration package."""

from budget_tracker.config.settings import (
    AppSettings,
    BackupSettings,
    SchedulerSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "BackupSettings",
    "SchedulerSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
