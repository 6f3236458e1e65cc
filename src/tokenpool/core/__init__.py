"""Cross-cutting helpers: clocks and logging."""
from __future__ import annotations

from .clock import Clock, SystemClock, as_utc, ensure_clock

__all__ = ["Clock", "SystemClock", "as_utc", "ensure_clock"]
