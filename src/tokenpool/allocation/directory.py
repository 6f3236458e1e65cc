# -*- coding: utf-8 -*-
"""Claimant directory: identity lookups, cooldown stamping and admin toggles."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tokenpool.core.clock import Clock, SystemClock, as_utc
from tokenpool.infrastructure.persistence.models import ClaimantModel, DeliveryModel

from .errors import invalid_input
from .ratelimit import evaluate_cooldown
from .types import Claimant, ClaimantStatus, ClaimantSummary, Page

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 200


def mask_key(key: str) -> str:
    """Hide all but the first and last four characters of a credential."""

    if len(key) <= 8:
        return "*" * len(key)
    return key[:4] + "*" * max(4, len(key) - 8) + key[-4:]


def _to_claimant(row: ClaimantModel) -> Claimant:
    return Claimant(
        id=row.id,
        key=row.key,
        expires_at=as_utc(row.expires_at),
        is_active=bool(row.is_active),
        last_issue_at=as_utc(row.last_issue_at),
        created_at=as_utc(row.created_at),
    )


def store_now(session: Session) -> datetime:
    """Read the current time from the database server."""

    value = session.execute(select(func.now())).scalar_one()
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return as_utc(value)


class ClaimantDirectory:
    """Claimant reads and writes bound to one session.

    When ``clock`` is ``None`` the cooldown stamp is taken from the store so
    that every application node agrees on "now"; tests inject a clock instead.
    """

    def __init__(self, session: Session, *, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock.now()
        return store_now(self._session)

    # Claim path -----------------------------------------------------------
    def fetch_claimant(self, claimant_id: str) -> Optional[Claimant]:
        stmt = select(ClaimantModel).where(ClaimantModel.id == claimant_id)
        row = self._session.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()
        return _to_claimant(row) if row is not None else None

    def mark_issued_now(self, claimant_id: str, cooldown: timedelta) -> Optional[datetime]:
        """Stamp ``last_issue_at`` if the cooldown has elapsed; return the stamp.

        ``None`` means a concurrent claim by the same claimant got there first.
        """

        now = self.now()
        stmt = (
            update(ClaimantModel)
            .where(
                ClaimantModel.id == claimant_id,
                or_(ClaimantModel.last_issue_at.is_(None), ClaimantModel.last_issue_at <= now - cooldown),
            )
            .values(last_issue_at=now)
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        return now if result.rowcount == 1 else None

    def compensate_issue(
        self, claimant_id: str, stamped_at: datetime, previous: Optional[datetime]
    ) -> bool:
        """Put back ``previous`` unless someone stamped the claimant after us."""

        stmt = (
            update(ClaimantModel)
            .where(ClaimantModel.id == claimant_id, ClaimantModel.last_issue_at == stamped_at)
            .values(last_issue_at=previous)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    # Login / status ------------------------------------------------------
    def authenticate(self, key: str, now: datetime) -> Optional[Claimant]:
        stmt = select(ClaimantModel).where(ClaimantModel.key == key)
        row = self._session.execute(stmt).scalar_one_or_none()
        if row is None:
            return None
        claimant = _to_claimant(row)
        return claimant if claimant.is_usable(now) else None

    def status(self, claimant_id: str, cooldown: timedelta, now: datetime) -> Optional[ClaimantStatus]:
        claimant = self.fetch_claimant(claimant_id)
        if claimant is None:
            return None
        cooldown_state = evaluate_cooldown(claimant.last_issue_at, cooldown, now)
        return ClaimantStatus(
            claimant_id=claimant.id,
            key_mask=mask_key(claimant.key),
            is_active=claimant.is_active,
            expires_at=claimant.expires_at,
            last_issue_at=claimant.last_issue_at,
            assigned_count=self.delivery_count(claimant.id),
            next_available_at=cooldown_state.next_available_at,
        )

    def delivery_count(self, claimant_id: str) -> int:
        stmt = select(func.count(DeliveryModel.id)).where(DeliveryModel.key_id == claimant_id)
        return int(self._session.execute(stmt).scalar_one())

    # Admin ---------------------------------------------------------------
    def create_claimant(self, key: str, expires_at: datetime, *, now: datetime | None = None) -> Claimant:
        key = key.strip()
        if not key:
            raise invalid_input("Key must not be empty")
        existing = self._session.execute(
            select(ClaimantModel.id).where(ClaimantModel.key == key)
        ).scalar_one_or_none()
        if existing is not None:
            raise invalid_input("Key already exists")
        row = ClaimantModel(
            key=key,
            expires_at=as_utc(expires_at),
            is_active=True,
            created_at=now or (self._clock or SystemClock()).now(),
        )
        self._session.add(row)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise invalid_input("Key already exists") from exc
        logger.info("claimant_created", extra={"claimant_id": row.id})
        return _to_claimant(row)

    def toggle_active(self, claimant_id: str) -> Optional[bool]:
        """Flip ``is_active``; ``None`` when the claimant does not exist.

        Read-then-write: a claim already past validation may still complete.
        """

        row = self._session.get(ClaimantModel, claimant_id)
        if row is None:
            return None
        row.is_active = not bool(row.is_active)
        self._session.flush()
        logger.info("claimant_toggled", extra={"claimant_id": claimant_id, "is_active": row.is_active})
        return bool(row.is_active)

    def list_claimants(self, query: str | None = None, limit: int = 50, offset: int = 0) -> Page:
        limit = max(1, min(int(limit), MAX_LIST_LIMIT))
        offset = max(0, int(offset))
        assigned = (
            select(DeliveryModel.key_id, func.count(DeliveryModel.id).label("assigned"))
            .group_by(DeliveryModel.key_id)
            .subquery()
        )
        conditions = []
        if query:
            conditions.append(ClaimantModel.key.ilike(f"%{query.strip()}%"))
        total = self._session.execute(
            select(func.count(ClaimantModel.id)).where(*conditions)
        ).scalar_one()
        stmt = (
            select(ClaimantModel, func.coalesce(assigned.c.assigned, 0))
            .outerjoin(assigned, assigned.c.key_id == ClaimantModel.id)
            .where(*conditions)
            .order_by(ClaimantModel.created_at.desc(), ClaimantModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        items = tuple(
            ClaimantSummary(
                id=row.id,
                key_mask=mask_key(row.key),
                is_active=bool(row.is_active),
                expires_at=as_utc(row.expires_at),
                last_issue_at=as_utc(row.last_issue_at),
                created_at=as_utc(row.created_at),
                assigned_count=int(count),
            )
            for row, count in self._session.execute(stmt).all()
        )
        return Page(items=items, total=int(total), limit=limit, offset=offset)


__all__ = ["ClaimantDirectory", "MAX_LIST_LIMIT", "mask_key", "store_now"]
