# -*- coding: utf-8 -*-
"""Prometheus metrics for the allocation engine."""
from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter

from .types import MeterLike

CLAIM_RESULT_LABELS = ("result",)
CLAIM_CONFLICT_LABELS = ("stage",)


class AllocationMeters(MeterLike):
    """Wraps Prometheus primitives behind a friendly interface."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or REGISTRY
        self._claims = Counter(
            "tokenpool_claims_total",
            "Claim attempts by outcome",
            CLAIM_RESULT_LABELS,
            registry=self._registry,
        )
        self._conflicts = Counter(
            "tokenpool_claim_conflicts_total",
            "Lost races while reserving or recording a token",
            CLAIM_CONFLICT_LABELS,
            registry=self._registry,
        )
        self._tx_retries = Counter(
            "tokenpool_tx_retries_total",
            "Claim transactions retried after a transient store failure",
            registry=self._registry,
        )
        self._ingested = Counter(
            "tokenpool_ingested_total",
            "Token values seen by bulk ingest",
            ("outcome",),
            registry=self._registry,
        )
        self._deleted = Counter(
            "tokenpool_deleted_total",
            "Rows removed by bulk delete",
            ("kind",),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the registry backing the meters."""

        return self._registry

    def record_claim(self, result: str) -> None:
        self._claims.labels(result=result).inc()

    def record_conflict(self, stage: str) -> None:
        self._conflicts.labels(stage=stage).inc()

    def record_tx_retry(self) -> None:
        self._tx_retries.inc()

    def record_ingest(self, inserted: int, duplicates: int) -> None:
        self._ingested.labels(outcome="inserted").inc(inserted)
        self._ingested.labels(outcome="duplicate").inc(duplicates)

    def record_delete(self, tokens: int, deliveries: int) -> None:
        self._deleted.labels(kind="token").inc(tokens)
        self._deleted.labels(kind="delivery").inc(deliveries)


DEFAULT_METERS = AllocationMeters()

__all__ = ["AllocationMeters", "CLAIM_CONFLICT_LABELS", "CLAIM_RESULT_LABELS", "DEFAULT_METERS"]
