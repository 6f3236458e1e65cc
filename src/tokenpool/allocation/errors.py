# -*- coding: utf-8 -*-
"""Error taxonomy with machine-readable codes and stable HTTP statuses."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from .types import ErrorDetail

UNAUTHORIZED = "UNAUTHORIZED"
INVALID_INPUT = "INVALID_INPUT"
RATE_LIMITED = "RATE_LIMITED"
OUT_OF_STOCK = "OUT_OF_STOCK"
KEY_INVALID_OR_EXPIRED = "KEY_INVALID_OR_EXPIRED"
NOT_FOUND = "NOT_FOUND"
INTERNAL = "INTERNAL_ERROR"

HTTP_STATUS = {
    UNAUTHORIZED: 401,
    INVALID_INPUT: 400,
    KEY_INVALID_OR_EXPIRED: 400,
    NOT_FOUND: 404,
    OUT_OF_STOCK: 409,
    RATE_LIMITED: 429,
    INTERNAL: 500,
}


@dataclass(eq=False)
class AllocationServiceError(Exception):
    """Base class for domain errors exposed to callers."""

    detail: ErrorDetail
    cause: Optional[BaseException] = None

    def __post_init__(self) -> None:
        super().__init__(self.detail.code, self.detail.message)

    @property
    def code(self) -> str:
        return self.detail.code

    @property
    def http_status(self) -> int:
        return HTTP_STATUS.get(self.detail.code, 500)

    def __str__(self) -> str:  # pragma: no cover - human readable path
        return f"{self.detail.code}: {self.detail.message} ({dict(self.detail.details)})"


class ReservationConflict(Exception):
    """A concurrent claim won the race for a row; the caller should retry."""

    def __init__(self, stage: str, token_id: str | None = None) -> None:
        super().__init__(f"{stage} conflict on token {token_id}")
        self.stage = stage
        self.token_id = token_id


def unauthorized(message: str = "Unauthorized") -> AllocationServiceError:
    return AllocationServiceError(ErrorDetail(UNAUTHORIZED, message))


def invalid_input(message: str, details: Mapping[str, Any] | None = None) -> AllocationServiceError:
    return AllocationServiceError(ErrorDetail(INVALID_INPUT, message, dict(details or {})))


def rate_limited(next_available_at: datetime) -> AllocationServiceError:
    return AllocationServiceError(
        ErrorDetail(
            RATE_LIMITED,
            "Please wait before requesting another token",
            {"blockedUntil": next_available_at.isoformat()},
        )
    )


def out_of_stock() -> AllocationServiceError:
    return AllocationServiceError(ErrorDetail(OUT_OF_STOCK, "No tokens available at the moment"))


def key_invalid_or_expired() -> AllocationServiceError:
    return AllocationServiceError(ErrorDetail(KEY_INVALID_OR_EXPIRED, "Key is invalid, inactive, or expired"))


def not_found(message: str = "Not found") -> AllocationServiceError:
    return AllocationServiceError(ErrorDetail(NOT_FOUND, message))


def internal(message: str = "Internal server error", *, cause: Optional[BaseException] = None) -> AllocationServiceError:
    return AllocationServiceError(ErrorDetail(INTERNAL, message), cause)


__all__ = [
    "AllocationServiceError",
    "HTTP_STATUS",
    "ReservationConflict",
    "internal",
    "invalid_input",
    "key_invalid_or_expired",
    "not_found",
    "out_of_stock",
    "rate_limited",
    "unauthorized",
]
