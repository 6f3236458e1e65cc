# -*- coding: utf-8 -*-
from __future__ import annotations

import threading
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import uuid4

import pytest
from prometheus_client import CollectorRegistry
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from tokenpool.allocation.allocator import TokenAllocator
from tokenpool.allocation.metrics import AllocationMeters
from tokenpool.allocation.pool import FaultInjector, PoolRepository
from tokenpool.allocation.uow import sqlalchemy_uow_factory
from tokenpool.infrastructure.persistence.models import ClaimantModel, DeliveryModel, TokenModel
from tokenpool.infrastructure.persistence.session import init_schema, make_engine, make_session_factory

COOLDOWN = timedelta(minutes=15)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self._wall = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._mono = 0.0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._wall

    def monotonic(self) -> float:
        with self._lock:
            return self._mono

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._wall += timedelta(seconds=seconds)
            self._mono += seconds


class Seeder:
    """Short-lived sessions only: an open SQLite session holds the write lock."""

    def __init__(self, session_factory: sessionmaker, clock: FakeClock) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def claimant(
        self,
        key: Optional[str] = None,
        *,
        expires_in: timedelta = timedelta(days=30),
        active: bool = True,
        last_issue_at: Optional[datetime] = None,
    ) -> str:
        now = self._clock.now()
        with self._session_factory() as session:
            row = ClaimantModel(
                key=key or f"key-{uuid4().hex}",
                expires_at=now + expires_in,
                is_active=active,
                last_issue_at=last_issue_at,
                created_at=now,
            )
            session.add(row)
            session.commit()
            return row.id

    def tokens(self, count: int, prefix: str = "token") -> list[str]:
        values = [f"{prefix}-{index:04d}-{uuid4().hex[:8]}" for index in range(count)]
        with self._session_factory() as session:
            PoolRepository(session, clock=self._clock).bulk_insert(values)
            session.commit()
            rows = session.execute(
                select(TokenModel.id).where(TokenModel.value.in_(values)).order_by(TokenModel.created_at)
            ).scalars()
            return list(rows)

    def deliver(self, claimant_id: str, token_id: str) -> None:
        with self._session_factory() as session:
            pool = PoolRepository(session, clock=self._clock)
            assert pool.commit_reservation(token_id, claimant_id, self._clock.now()) is not None
            pool.record_delivery(claimant_id, token_id, self._clock.now())
            session.commit()

    def claimant_row(self, claimant_id: str) -> ClaimantModel:
        with self._session_factory() as session:
            return session.get(ClaimantModel, claimant_id)

    def token_row(self, token_id: str) -> Optional[TokenModel]:
        with self._session_factory() as session:
            return session.get(TokenModel, token_id)

    def token_value(self, token_id: str) -> str:
        return self.token_row(token_id).value

    def deliveries(self) -> list[tuple[str, str]]:
        with self._session_factory() as session:
            return [tuple(row) for row in session.execute(select(DeliveryModel.key_id, DeliveryModel.token_id))]

    def assert_consistent(self) -> None:
        with self._session_factory() as session:
            pool = PoolRepository(session)
            claim_counts = pool.claim_counts()
            delivery_counts = pool.delivery_counts()
        for token_id, count in claim_counts.items():
            assert 0 <= count <= 2
            assert count == delivery_counts.get(token_id, 0), token_id
        assert set(delivery_counts) <= set(claim_counts)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine(tmp_path) -> Iterator:
    db_path = tmp_path / "tokenpool.sqlite"
    engine = make_engine(f"sqlite+pysqlite:///{db_path}")
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return make_session_factory(engine)


@pytest.fixture()
def uow_factory(session_factory):
    return sqlalchemy_uow_factory(session_factory)


@pytest.fixture()
def seed(session_factory, clock) -> Seeder:
    return Seeder(session_factory, clock)


@pytest.fixture()
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture()
def meters(registry) -> AllocationMeters:
    return AllocationMeters(registry)


@pytest.fixture()
def fault_injector() -> FaultInjector:
    return FaultInjector()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def make_allocator(uow_factory, clock, meters, fault_injector, sleeps):
    def _make(strategy: str = "pessimistic", **overrides) -> TokenAllocator:
        params = dict(
            uow_factory=uow_factory,
            cooldown=COOLDOWN,
            strategy=strategy,
            clock=clock,
            meters=meters,
            fault_injector=fault_injector,
            sleep=sleeps.append,
        )
        params.update(overrides)
        return TokenAllocator(**params)

    return _make


@pytest.fixture()
def metric(registry):
    def _value(name: str, **labels: str) -> float:
        return registry.get_sample_value(name, labels) or 0.0

    return _value
