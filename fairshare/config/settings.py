"""
Configuration Management for Fairshare

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FAIRSHARE_DB_",
        extra="ignore"
    )

    backend: str = Field(
        default="sqlite",
        pattern="^(sqlite|memory)$",
        description="Storage backend to use"
    )
    path: str = Field(
        default="fairshare.db",
        description="Path to the SQLite database file"
    )
    timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long a connection waits on a locked database"
    )
    connect_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts made when initializing the schema"
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
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Group defaults
    default_currency: str = Field(
        default="UYU",
        min_length=3,
        max_length=3,
        description="Currency label for new groups and invoices"
    )
    default_split_method: str = Field(
        default="equal",
        pattern="^(equal|proportional)$",
        description="Split method for new groups"
    )

    # Validation thresholds
    max_expense_amount: Decimal = Field(
        default=Decimal("10000000"),
        gt=0,
        description="Maximum reasonable expense amount (sanity check)"
    )
    future_date_tolerance_days: int = Field(
        default=365,
        ge=0,
        description="How many days in the future an expense date can be"
    )

    # Identity headers set by the upstream identity provider
    identity_header: str = Field(
        default="X-User-Id",
        description="Header carrying the authenticated user id"
    )
    identity_email_header: str = Field(
        default="X-User-Email",
        description="Header carrying the authenticated user email"
    )
    identity_name_header: str = Field(
        default="X-User-Name",
        description="Header carrying the authenticated user display name"
    )

    # Group lifecycle
    delete_group_when_last_member_leaves: bool = Field(
        default=True,
        description="Delete a group when its only member leaves it"
    )

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


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
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

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

    try:
        _ = settings.database
        results["database"] = True
    except Exception as e:
        results["database"] = False
        results["database_error"] = str(e)

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    return results
