"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

All configuration is centralized here, and every value is validated when it
is first loaded.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    """Recurring execution ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Persistence
    data_path: Path = Field(
        default=Path("data/ledger_state.json"),
        description="JSON document holding schedules, events and processed logs"
    )
    audit_log_path: Path = Field(
        default=Path("data/audit_log.jsonl"),
        description="Append-only JSON-lines file for audit events"
    )
    storage_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a single persistence write before giving up"
    )

    # Execution behaviour
    execution_log_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="How many execution log entries to keep (newest first)"
    )
    require_transfer_before_payments: bool = Field(
        default=False,
        description="Only fire scheduled payments in a month where a transfer has executed"
    )

    # History display
    currency_symbol: str = Field(
        default="£",
        max_length=4,
        description="Symbol prefixed to amounts in run detail lines"
    )

    @field_validator('data_path', 'audit_log_path')
    @classmethod
    def validate_parent_not_file(cls, v: Path) -> Path:
        """The parent of a storage path must be a directory (or not exist yet)."""
        if v.parent.exists() and not v.parent.is_dir():
            raise ValueError(f"Parent of {v} exists and is not a directory")
        return v


class LoggingSettings(BaseSettings):
    """Structured logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(
        default="INFO",
        description="Log level name"
    )
    json_output: bool = Field(
        default=True,
        description="Render log lines as JSON (False = console renderer)"
    )

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Unsupported log level: {v}. Allowed: {sorted(allowed)}")
        return v.upper()


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

    # Note: sub-settings are loaded lazily to allow partial configuration

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with a
    "<name>_error" entry for every section that failed.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    try:
        _ = settings.logging
        results["logging"] = True
    except Exception as e:
        results["logging"] = False
        results["logging_error"] = str(e)

    return results
