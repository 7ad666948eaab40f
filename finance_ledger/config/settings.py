"""
Configuration Management for the Finance Ledger

Every tunable of the engine is read here from the environment with
pydantic-settings, one settings class per env prefix.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Spreadsheet backend: credentials, spreadsheet and one worksheet per entity."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Worksheet names within the spreadsheet
    accounts_sheet_name: str = Field(default="Accounts")
    categories_sheet_name: str = Field(default="Categories")
    transactions_sheet_name: str = Field(default="Transactions")
    schedules_sheet_name: str = Field(default="ScheduledTransactions")
    budgets_sheet_name: str = Field(default="Budgets")
    notifications_sheet_name: str = Field(default="Notifications")
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """A missing key file only warns; deployments may mount it after start."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class SchedulerSettings(BaseSettings):
    """Periodic sweep configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SCHEDULER_",
        extra="ignore"
    )

    sweep_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between two sweep ticks"
    )
    item_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for processing one due schedule"
    )
    upcoming_window_days: int = Field(
        default=3,
        ge=0,
        le=90,
        description="How far ahead the upcoming-schedules view looks"
    )


class BudgetSettings(BaseSettings):
    """Budget alerting configuration."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGET_",
        extra="ignore"
    )

    default_notification_threshold: int = Field(
        default=80,
        ge=1,
        le=100,
        description="Warning threshold (percent) when a budget does not set one"
    )


class AppSettings(BaseSettings):
    """
    Process-wide settings: environment, log level and storage backend.

    Read from the environment, falling back to a local .env file.
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
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Root log level"
    )
    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Persistence backend"
    )


class Settings(BaseSettings):
    """
    Entry point to every settings group.

    Groups are built on access, so a missing Sheets configuration only
    fails when the Sheets backend is actually used.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()

    @property
    def budgets(self) -> BudgetSettings:
        return BudgetSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings root.

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Check every settings group the selected backend needs.

    Returns a dict of {setting_name: is_valid}. Google Sheets is only
    checked when it is the selected storage backend.
    Used by the sweep service before it starts.
    """
    results = {}

    settings = get_settings()

    try:
        app = settings.app
        results["app"] = True
    except Exception as e:
        app = None
        results["app"] = False
        results["app_error"] = str(e)

    try:
        _ = settings.scheduler
        results["scheduler"] = True
    except Exception as e:
        results["scheduler"] = False
        results["scheduler_error"] = str(e)

    try:
        _ = settings.budgets
        results["budgets"] = True
    except Exception as e:
        results["budgets"] = False
        results["budgets_error"] = str(e)

    if app is not None and app.storage_backend == "google_sheets":
        try:
            _ = settings.google_sheets
            results["google_sheets"] = True
        except Exception as e:
            results["google_sheets"] = False
            results["google_sheets_error"] = str(e)

    return results
