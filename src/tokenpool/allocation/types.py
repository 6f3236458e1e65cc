# -*- coding: utf-8 -*-
"""Value types and collaborator protocols for the allocation engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping, Optional, Protocol, Tuple

TokenFilter = Literal["all", "available", "partial", "full", "assigned"]


@dataclass(frozen=True, slots=True)
class ErrorDetail:
    """Structured error payload returned to callers.

    Attributes
    ----------
    code:
        Machine-readable error code, stable across releases.
    message:
        Human-facing message.
    details:
        Extra machine-readable context (for example ``blockedUntil``).
    """

    code: str
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ClaimantSession:
    """Authenticated identity handed to the allocator by the session layer."""

    claimant_id: str


@dataclass(frozen=True, slots=True)
class Claimant:
    id: str
    key: str
    expires_at: datetime
    is_active: bool
    last_issue_at: Optional[datetime]
    created_at: datetime

    def is_usable(self, now: datetime) -> bool:
        return self.is_active and self.expires_at > now


@dataclass(frozen=True, slots=True)
class ReservedToken:
    id: str
    value: str
    claim_count: int
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """Successful claim: the token handed out and when the next claim opens."""

    token: str
    token_id: str
    created_at: datetime
    next_available_at: datetime


@dataclass(frozen=True, slots=True)
class ClaimantStatus:
    claimant_id: str
    key_mask: str
    is_active: bool
    expires_at: datetime
    last_issue_at: Optional[datetime]
    assigned_count: int
    next_available_at: Optional[datetime]


@dataclass(frozen=True, slots=True)
class ClaimantSummary:
    id: str
    key_mask: str
    is_active: bool
    expires_at: datetime
    last_issue_at: Optional[datetime]
    created_at: datetime
    assigned_count: int


@dataclass(frozen=True, slots=True)
class TokenSummary:
    id: str
    value_preview: str
    claim_count: int
    assigned_to: Optional[str]
    assigned_at: Optional[datetime]
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Page:
    items: Tuple[Any, ...]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass(frozen=True, slots=True)
class IngestReport:
    inserted: int
    duplicates: int
    total: int


@dataclass(frozen=True, slots=True)
class DeleteReport:
    deleted_tokens: int
    deleted_deliveries: int
    token_ids: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PoolStats:
    tokens_total: int
    tokens_fresh: int
    tokens_partial: int
    tokens_full: int
    claims_remaining: int
    claimants_active: int
    claimants_expired: int

    @property
    def tokens_remaining(self) -> int:
        return self.tokens_fresh + self.tokens_partial

    @property
    def tokens_assigned(self) -> int:
        return self.tokens_partial + self.tokens_full


class LoggerLike(Protocol):
    """Protocol representing the structured logger used by the engine."""

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class MeterLike(Protocol):
    """Protocol capturing the observability hooks consumed by the engine."""

    def record_claim(self, result: str) -> None: ...

    def record_conflict(self, stage: str) -> None: ...

    def record_tx_retry(self) -> None: ...

    def record_ingest(self, inserted: int, duplicates: int) -> None: ...

    def record_delete(self, tokens: int, deliveries: int) -> None: ...
