"""Per-claimant cooldown evaluation.

Pure functions only: no store access and no clock reads. The allocator and
the status query both go through :func:`evaluate_cooldown`, so they can never
disagree about when a claimant becomes eligible again.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from tokenpool.core.clock import as_utc

_ZERO = timedelta(0)


@dataclass(frozen=True, slots=True)
class CooldownState:
    limited: bool
    next_available_at: Optional[datetime]


def next_available_at(last_issue_at: Optional[datetime], cooldown: timedelta) -> Optional[datetime]:
    if last_issue_at is None:
        return None
    return as_utc(last_issue_at) + cooldown


def evaluate_cooldown(last_issue_at: Optional[datetime], cooldown: timedelta, now: datetime) -> CooldownState:
    """Return whether a claim at ``now`` is blocked and until when.

    A claimant that never claimed is never limited. The window is half-open:
    at exactly ``last_issue_at + cooldown`` the claimant is eligible again.
    """

    opens_at = next_available_at(last_issue_at, cooldown)
    if opens_at is None:
        return CooldownState(limited=False, next_available_at=None)
    return CooldownState(limited=as_utc(now) < opens_at, next_available_at=opens_at)


def remaining_cooldown(last_issue_at: Optional[datetime], cooldown: timedelta, now: datetime) -> timedelta:
    state = evaluate_cooldown(last_issue_at, cooldown, now)
    if not state.limited or state.next_available_at is None:
        return _ZERO
    return state.next_available_at - as_utc(now)


__all__ = ["CooldownState", "evaluate_cooldown", "next_available_at", "remaining_cooldown"]
