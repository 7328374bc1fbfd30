"""Application configuration via pydantic-settings.

Values are loaded from environment variables (.env file).
Settings are organized into logical groups and composed into a single Settings object.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    """Status-machine policy and identifier minting limits."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    strict_transitions: bool = Field(
        default=True,
        description="Enforce the CRF/request transition tables (False = legacy any-jump mode)",
    )
    allow_status_override: bool = Field(
        default=False,
        description="Permit force=True status changes outside the transition tables",
    )
    sequence_limit: int = Field(
        default=999,
        description="Highest sequence number a counter may issue (3-digit field)",
    )
    id_year: int | None = Field(
        default=None,
        description="Fixed two-digit year for minted ids; None = current year",
    )
    default_due_days: int = Field(
        default=7,
        description="Days from assignment until the default due date",
    )

    @field_validator("id_year")
    @classmethod
    def validate_id_year(cls, v: int | None) -> int | None:
        """Two-digit year only."""
        if v is not None and not 0 <= v <= 99:
            msg = f"Invalid id_year: {v}. Must be between 0 and 99"
            raise ValueError(msg)
        return v


class StorageSettings(BaseSettings):
    """Snapshot file location for the in-memory store."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    snapshot_path: str | None = Field(
        default=None,
        description="JSON file the store is loaded from at startup and saved to at shutdown",
    )


class AuditSettings(BaseSettings):
    """In-memory audit trail limits."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    audit_max_entries: int = Field(default=5000, description="Oldest entries are dropped beyond this")


class Settings(BaseSettings):
    """Root settings composing all sub-settings.

    Usage:
        settings = Settings()
        settings.workflow.strict_transitions
        settings.storage.snapshot_path
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    environment: str = Field(default="development")
    log_level: str = Field(default="DEBUG")
    lab_name: str = Field(default="Lindel Environmental Laboratory")

    # Composed settings (loaded from same .env)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            msg = f"Invalid log level: {v}. Must be one of {valid}"
            raise ValueError(msg)
        return upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


# Module-level singleton, import this wherever settings are needed.
settings = Settings()
