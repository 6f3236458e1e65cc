from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Strategy = Literal["pessimistic", "optimistic"]


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    dsn: str = Field(default="sqlite+pysqlite:///./tokenpool.db")
    echo: bool = Field(default=False)


class CooldownConfig(BaseModel):
    """Per-claimant cooldown between successful claims."""

    minutes: int = Field(default=15, ge=1, le=7 * 24 * 60)

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.minutes)


class AllocationConfig(BaseModel):
    """Knobs for the claim algorithm and its retry loops."""

    strategy: Strategy = Field(default="pessimistic")
    max_selection_attempts: int = Field(default=3, ge=1, le=10)
    selection_backoff_seconds: float = Field(default=0.05, ge=0.0, le=1.0)
    max_transaction_retries: int = Field(default=3, ge=0, le=10)
    backoff_cap_seconds: float = Field(default=5.0, ge=0.0, le=30.0)


class MaintenanceConfig(BaseModel):
    """Bounds for bulk pool maintenance."""

    max_ingest_batch: int = Field(default=2000, ge=1, le=100_000)
    delete_window_min: int = Field(default=10, ge=1)
    delete_window_max: int = Field(default=20, ge=1)

    @model_validator(mode="after")
    def _check_window(self) -> MaintenanceConfig:
        if self.delete_window_min > self.delete_window_max:
            raise ValueError("delete_window_min must not exceed delete_window_max")
        return self


class AuthConfig(BaseModel):
    """Secrets for claimant sessions and the admin surface."""

    session_secret: str = Field(default="change-me-session-secret-0123456789abcdef", min_length=32)
    session_ttl_days: int = Field(default=7, ge=1, le=90)
    admin_secret: str = Field(default="change-me-admin", min_length=8)


class AppConfig(BaseSettings):
    """Application settings loaded from ``TOKENPOOL_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TOKENPOOL_",
        env_nested_delimiter="__",
        extra="forbid",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    cooldown: CooldownConfig = Field(default_factory=CooldownConfig)
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    app_name: str = Field(default="Key Token App")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> str:
        text = str(value or "INFO").strip().upper()
        if text not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value!r}")
        return text

    @classmethod
    def from_env(cls) -> AppConfig:
        return cls()  # type: ignore[call-arg]


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig.from_env()


__all__ = [
    "AllocationConfig",
    "AppConfig",
    "AuthConfig",
    "CooldownConfig",
    "DatabaseConfig",
    "MaintenanceConfig",
    "Strategy",
    "get_config",
]
