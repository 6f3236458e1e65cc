"""Token pool: rate-limited, twice-claimable token distribution."""
from __future__ import annotations

from .allocation import (
    AllocationServiceError,
    BulkMaintenance,
    ClaimantDirectory,
    ClaimantSession,
    ClaimResult,
    PoolRepository,
    TokenAllocator,
)
from .config import AppConfig, get_config

__version__ = "1.0.0"

__all__ = [
    "AllocationServiceError",
    "AppConfig",
    "BulkMaintenance",
    "ClaimantDirectory",
    "ClaimantSession",
    "ClaimResult",
    "PoolRepository",
    "TokenAllocator",
    "__version__",
    "get_config",
]
