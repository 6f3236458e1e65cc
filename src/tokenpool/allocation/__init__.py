"""Token allocation engine: claimant directory, pool repository and allocator."""
from __future__ import annotations

from .allocator import TokenAllocator
from .directory import ClaimantDirectory, mask_key
from .errors import AllocationServiceError, ReservationConflict
from .maintenance import BulkMaintenance, is_valid_token_format, parse_token_lines
from .metrics import AllocationMeters
from .pool import FaultInjector, PoolRepository
from .ratelimit import CooldownState, evaluate_cooldown, next_available_at, remaining_cooldown
from .types import (
    Claimant,
    ClaimantSession,
    ClaimantStatus,
    ClaimResult,
    DeleteReport,
    ErrorDetail,
    IngestReport,
    PoolStats,
    ReservedToken,
)
from .uow import SQLAlchemyUnitOfWork, UnitOfWork, sqlalchemy_uow_factory

__all__ = [
    "AllocationMeters",
    "AllocationServiceError",
    "BulkMaintenance",
    "Claimant",
    "ClaimantDirectory",
    "ClaimantSession",
    "ClaimantStatus",
    "ClaimResult",
    "CooldownState",
    "DeleteReport",
    "ErrorDetail",
    "FaultInjector",
    "IngestReport",
    "PoolRepository",
    "PoolStats",
    "ReservationConflict",
    "ReservedToken",
    "SQLAlchemyUnitOfWork",
    "TokenAllocator",
    "UnitOfWork",
    "evaluate_cooldown",
    "is_valid_token_format",
    "mask_key",
    "next_available_at",
    "parse_token_lines",
    "remaining_cooldown",
    "sqlalchemy_uow_factory",
]
