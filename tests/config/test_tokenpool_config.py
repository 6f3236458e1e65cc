"""Configuration defaults, environment overrides and validation."""

from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import timedelta

import pytest
from pydantic import ValidationError

from tokenpool.config import AppConfig, MaintenanceConfig, get_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith("TOKENPOOL_"):
            monkeypatch.delenv(name, raising=False)
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def test_defaults() -> None:
    config = AppConfig()
    assert config.cooldown.interval == timedelta(minutes=15)
    assert config.allocation.strategy == "pessimistic"
    assert config.allocation.max_selection_attempts == 3
    assert config.allocation.max_transaction_retries == 3
    assert config.maintenance.delete_window_min == 10
    assert config.maintenance.delete_window_max == 20
    assert config.maintenance.max_ingest_batch == 2000
    assert config.auth.session_ttl_days == 7
    assert config.log_level == "INFO"


def test_nested_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENPOOL_DATABASE__DSN", "postgresql+psycopg://pool@db/tokens")
    monkeypatch.setenv("TOKENPOOL_COOLDOWN__MINUTES", "5")
    monkeypatch.setenv("TOKENPOOL_ALLOCATION__STRATEGY", "optimistic")
    monkeypatch.setenv("TOKENPOOL_LOG_LEVEL", "debug")

    config = AppConfig.from_env()

    assert config.database.dsn == "postgresql+psycopg://pool@db/tokens"
    assert config.cooldown.interval == timedelta(minutes=5)
    assert config.allocation.strategy == "optimistic"
    assert config.log_level == "DEBUG"


def test_unknown_strategy_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENPOOL_ALLOCATION__STRATEGY", "yolo")
    with pytest.raises(ValidationError):
        AppConfig.from_env()


def test_invalid_log_level_is_rejected() -> None:
    with pytest.raises(ValidationError):
        AppConfig(log_level="chatty")


def test_delete_window_bounds_must_be_ordered() -> None:
    with pytest.raises(ValidationError):
        MaintenanceConfig(delete_window_min=30, delete_window_max=20)


def test_short_session_secret_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOKENPOOL_AUTH__SESSION_SECRET", "too-short")
    with pytest.raises(ValidationError):
        AppConfig.from_env()


def test_get_config_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_config()
    monkeypatch.setenv("TOKENPOOL_COOLDOWN__MINUTES", "30")
    assert get_config() is first
    get_config.cache_clear()
    assert get_config().cooldown.minutes == 30
