"""
Configuration Management for Budget Tracker

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Components receive their paths and limits from these settings by default,
but every component also accepts explicit values so tests can point them
at temporary directories.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Local SQLite storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        extra="ignore"
    )

    data_dir: str = Field(
        default="data",
        description="Directory holding the primary database"
    )
    database_name: str = Field(
        default="spending.db",
        description="SQLite database filename inside data_dir"
    )

    @property
    def database_path(self) -> Path:
        return Path(self.data_dir) / self.database_name


class BackupSettings(BaseSettings):
    """Snapshot file management configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BACKUP_",
        extra="ignore"
    )

    backup_dir: str = Field(
        default="backups",
        description="Directory holding snapshot files (separate from data_dir)"
    )
    export_dir: str = Field(
        default="exports",
        description="Directory export copies are written to for sharing"
    )
    share_outbox_dir: str = Field(
        default="outbox",
        description="Directory the local share facility drops files into"
    )
    max_backups: int = Field(
        default=10,
        ge=1,
        le=1000,
        description="Retention cap applied after every create"
    )
    format_version: str = Field(
        default="1.0.0",
        description="Snapshot format version written into new backups"
    )

    @field_validator('backup_dir')
    @classmethod
    def validate_backup_dir(cls, v: str) -> str:
        """Backups must not share the data directory."""
        data_dir = StorageSettings().data_dir
        if Path(v).resolve() == Path(data_dir).resolve():
            raise ValueError("backup_dir must differ from the data directory")
        return v


class SchedulerSettings(BaseSettings):
    """Automatic backup scheduling configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore"
    )

    task_id: str = Field(
        default="background-backup-task",
        description="Identifier registered with the recurring-task facility"
    )
    policy_key: str = Field(
        default="backup_schedule",
        description="Key-value store key holding the schedule policy"
    )
    time_tolerance_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="How close to the configured HH:MM a wake-up must land"
    )
    # Must stay below the tolerance window so a wake-up always lands in it
    wake_interval_seconds: int = Field(
        default=240,
        ge=1,
        description="Wake-up interval of the in-process recurring-task facility"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug logging"
    )

    # Start-up
    init_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Wall-clock ceiling for app initialization"
    )

    # Record store behaviour
    duplicate_window_minutes: int = Field(
        default=5,
        ge=0,
        le=1440,
        description="Identical amount+details inserted within this window are duplicates"
    )
    settings_key: str = Field(
        default="app_settings",
        description="Key-value store key holding the app settings blob"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def backup(self) -> BackupSettings:
        return BackupSettings()

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("storage", "backup", "scheduler", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
