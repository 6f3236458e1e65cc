"""Clock abstractions shared by the allocation engine and the API."""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Clock abstraction for deterministic tests."""

    def now(self) -> datetime:
        """Return a timezone-aware wall-clock timestamp."""

    def monotonic(self) -> float:
        """Return a monotonic reference in seconds."""


class SystemClock(Clock):
    """Default implementation backed by stdlib clocks."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* as an aware UTC datetime; naive values are taken as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_clock(clock: Clock | None) -> Clock:
    return clock if clock is not None else SystemClock()


__all__ = ["Clock", "SystemClock", "as_utc", "ensure_clock"]
