# -*- coding: utf-8 -*-
"""Bulk pool maintenance: ingesting new token values and windowed deletion."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError

from tokenpool.config import AppConfig
from tokenpool.core.clock import Clock, ensure_clock

from .errors import invalid_input
from .metrics import DEFAULT_METERS
from .pool import PoolRepository
from .types import DeleteReport, IngestReport, MeterLike
from .uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 8
MAX_TOKEN_LENGTH = 2048


def parse_token_lines(text: str) -> List[str]:
    """Split an upload into trimmed, non-empty, de-duplicated lines (first wins)."""

    seen: dict[str, None] = {}
    for line in text.splitlines():
        value = line.strip()
        if value:
            seen.setdefault(value, None)
    return list(seen)


def is_valid_token_format(value: str) -> bool:
    return MIN_TOKEN_LENGTH <= len(value) <= MAX_TOKEN_LENGTH


class BulkMaintenance:
    """Admin-side bulk operations on the pool, each in one transaction."""

    def __init__(
        self,
        *,
        uow_factory: UnitOfWorkFactory,
        clock: Clock | None = None,
        meters: MeterLike | None = None,
        max_batch: int = 2000,
        window_min: int = 10,
        window_max: int = 20,
        max_retries: int = 3,
    ) -> None:
        self._uow_factory = uow_factory
        self._clock = ensure_clock(clock)
        self._meters = meters or DEFAULT_METERS
        self._max_batch = max_batch
        self._window_min = window_min
        self._window_max = window_max
        self._max_retries = max_retries

    @classmethod
    def from_config(cls, config: AppConfig, uow_factory: UnitOfWorkFactory, **overrides) -> "BulkMaintenance":
        params = dict(
            uow_factory=uow_factory,
            max_batch=config.maintenance.max_ingest_batch,
            window_min=config.maintenance.delete_window_min,
            window_max=config.maintenance.delete_window_max,
        )
        params.update(overrides)
        return cls(**params)

    def ingest_text(self, text: str) -> IngestReport:
        return self.ingest(parse_token_lines(text or ""))

    def ingest(self, values: Iterable[str]) -> IngestReport:
        cleaned = [value.strip() for value in values if value and value.strip()]
        accepted = [value for value in cleaned if is_valid_token_format(value)]
        if not accepted:
            raise invalid_input("No valid tokens found")
        if len(accepted) > self._max_batch:
            raise invalid_input(
                f"Too many tokens. Maximum is {self._max_batch} per upload.",
                {"max": self._max_batch, "received": len(accepted)},
            )
        report = self._insert_with_retry(accepted)
        self._meters.record_ingest(report.inserted, report.duplicates)
        logger.info(
            "tokens_ingested",
            extra={
                "inserted": report.inserted,
                "duplicates": report.duplicates,
                "rejected": len(cleaned) - len(accepted),
            },
        )
        return report

    def _insert_with_retry(self, values: Sequence[str]) -> IngestReport:
        attempt = 0
        while True:
            try:
                with self._uow_factory() as uow:
                    return PoolRepository(uow.session, clock=self._clock).bulk_insert(values)
            except IntegrityError:
                # A concurrent upload stored one of our values first; recount.
                attempt += 1
                if attempt >= self._max_retries:
                    raise
                logger.warning("ingest_retry", extra={"attempt": attempt})

    def delete_window(self, anchor: Optional[str], count: int) -> DeleteReport:
        anchor = (anchor or "").strip()
        if not anchor:
            raise invalid_input("Start token is required")
        if not self._window_min <= count <= self._window_max:
            raise invalid_input(
                f"Count must be between {self._window_min} and {self._window_max}",
                {"min": self._window_min, "max": self._window_max},
            )
        with self._uow_factory() as uow:
            report = PoolRepository(uow.session, clock=self._clock).bulk_delete(anchor, count)
        self._meters.record_delete(report.deleted_tokens, report.deleted_deliveries)
        logger.info(
            "tokens_deleted",
            extra={
                "anchor": anchor,
                "deleted_tokens": report.deleted_tokens,
                "deleted_deliveries": report.deleted_deliveries,
            },
        )
        return report


__all__ = [
    "BulkMaintenance",
    "MAX_TOKEN_LENGTH",
    "MIN_TOKEN_LENGTH",
    "is_valid_token_format",
    "parse_token_lines",
]
