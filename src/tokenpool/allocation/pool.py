# -*- coding: utf-8 -*-
"""SQLAlchemy repository for the token pool and its delivery ledger."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence
from uuid import uuid4

from sqlalchemy import and_, case, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from tokenpool.core.clock import Clock, as_utc, ensure_clock
from tokenpool.infrastructure.persistence.models import (
    MAX_CLAIMS_PER_TOKEN,
    ClaimantModel,
    DeliveryModel,
    TokenModel,
)

from .errors import ReservationConflict, invalid_input
from .types import DeleteReport, IngestReport, Page, PoolStats, ReservedToken, TokenFilter, TokenSummary

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
PREVIEW_LENGTH = 20
_LOOKUP_CHUNK = 500


@dataclass(slots=True)
class FaultInjector:
    """Deterministic fault injection toggles used only in tests."""

    steal_on_commit: int = 0
    duplicate_delivery: int = 0
    lock_timeout: int = 0

    def consume(self, name: str) -> bool:
        remaining = getattr(self, name, 0)
        if remaining > 0:
            setattr(self, name, remaining - 1)
            return True
        return False

    def raise_if(self, name: str) -> None:
        if self.consume(name):
            if name == "lock_timeout":
                raise OperationalError(f"fault:{name}", params={}, orig=RuntimeError("database is locked"))
            raise IntegrityError(f"fault:{name}", params={}, orig=RuntimeError(name))


def _row_to_reserved(row) -> ReservedToken:
    return ReservedToken(
        id=row.id,
        value=row.value,
        claim_count=int(row.claim_count),
        created_at=as_utc(row.created_at),
    )


class PoolRepository:
    """Token pool reads and writes bound to one session."""

    def __init__(
        self,
        session: Session,
        *,
        clock: Clock | None = None,
        fault_injector: Optional[FaultInjector] = None,
    ) -> None:
        self._session = session
        self._clock = ensure_clock(clock)
        self._faults = fault_injector or FaultInjector()

    @property
    def supports_row_locks(self) -> bool:
        bind = self._session.get_bind()
        return bind.dialect.name != "sqlite"

    # Claim path -----------------------------------------------------------
    def reserve_token(
        self,
        claimant_id: str,
        *,
        lock: bool = True,
        exclude: Iterable[str] = (),
    ) -> Optional[ReservedToken]:
        """Pick the best candidate token for ``claimant_id`` or ``None``.

        Half-claimed tokens go first so the pool drains pairwise; ties break
        on ingestion order. Tokens already delivered to the claimant are never
        candidates.
        """

        self._faults.raise_if("lock_timeout")
        delivered = select(DeliveryModel.token_id).where(DeliveryModel.key_id == claimant_id)
        stmt = (
            select(TokenModel.id, TokenModel.value, TokenModel.claim_count, TokenModel.created_at)
            .where(TokenModel.claim_count < MAX_CLAIMS_PER_TOKEN, TokenModel.id.not_in(delivered))
            .order_by(TokenModel.claim_count.desc(), TokenModel.created_at.asc(), TokenModel.id.asc())
            .limit(1)
        )
        excluded = list(exclude)
        if excluded:
            stmt = stmt.where(TokenModel.id.not_in(excluded))
        if lock and self.supports_row_locks:  # pragma: no branch - dialect guard
            stmt = stmt.with_for_update(skip_locked=True, of=TokenModel)
        row = self._session.execute(stmt).first()
        return _row_to_reserved(row) if row is not None else None

    def commit_reservation(self, token_id: str, claimant_id: str, now: datetime) -> Optional[ReservedToken]:
        """Count one more claim on ``token_id``; ``None`` if it filled up meanwhile."""

        if self._faults.consume("steal_on_commit"):
            self._session.execute(
                update(TokenModel)
                .where(TokenModel.id == token_id)
                .values(claim_count=MAX_CLAIMS_PER_TOKEN)
                .execution_options(synchronize_session=False)
            )
        stmt = (
            update(TokenModel)
            .where(TokenModel.id == token_id, TokenModel.claim_count < MAX_CLAIMS_PER_TOKEN)
            .values(
                claim_count=TokenModel.claim_count + 1,
                assigned_to=claimant_id,
                assigned_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if self._session.execute(stmt).rowcount != 1:
            return None
        row = self._session.execute(
            select(TokenModel.id, TokenModel.value, TokenModel.claim_count, TokenModel.created_at).where(
                TokenModel.id == token_id
            )
        ).one()
        return _row_to_reserved(row)

    def record_delivery(self, claimant_id: str, token_id: str, now: datetime) -> str:
        delivery_id = str(uuid4())
        try:
            self._faults.raise_if("duplicate_delivery")
            self._session.execute(
                insert(DeliveryModel).values(
                    id=delivery_id,
                    key_id=claimant_id,
                    token_id=token_id,
                    delivered_at=now,
                )
            )
        except IntegrityError as exc:
            raise ReservationConflict("delivery", token_id) from exc
        return delivery_id

    def release_reservation(self, token_id: str) -> bool:
        stmt = (
            update(TokenModel)
            .where(TokenModel.id == token_id, TokenModel.claim_count > 0)
            .values(claim_count=TokenModel.claim_count - 1)
            .execution_options(synchronize_session=False)
        )
        return self._session.execute(stmt).rowcount == 1

    # Maintenance ---------------------------------------------------------
    def existing_values(self, values: Sequence[str]) -> set[str]:
        found: set[str] = set()
        for start in range(0, len(values), _LOOKUP_CHUNK):
            chunk = list(values[start : start + _LOOKUP_CHUNK])
            stmt = select(TokenModel.value).where(TokenModel.value.in_(chunk))
            found.update(self._session.execute(stmt).scalars())
        return found

    def bulk_insert(self, values: Sequence[str]) -> IngestReport:
        """Insert unseen values in order; repeated or stored values count as duplicates."""

        unique: list[str] = list(dict.fromkeys(values))
        existing = self.existing_values(unique)
        fresh = [value for value in unique if value not in existing]
        base = self._clock.now()
        if fresh:
            self._session.execute(
                insert(TokenModel),
                [
                    {
                        "id": str(uuid4()),
                        "value": value,
                        "claim_count": 0,
                        # Strictly increasing so FIFO order equals ingestion order.
                        "created_at": base + timedelta(microseconds=index),
                    }
                    for index, value in enumerate(fresh)
                ],
            )
        return IngestReport(
            inserted=len(fresh),
            duplicates=len(values) - len(fresh),
            total=len(values),
        )

    def resolve_anchor(self, anchor: str) -> Optional[ReservedToken]:
        anchor = anchor.strip()
        columns = (TokenModel.id, TokenModel.value, TokenModel.claim_count, TokenModel.created_at)
        row = None
        if UUID_PATTERN.match(anchor):
            row = self._session.execute(select(*columns).where(TokenModel.id == anchor.lower())).first()
        if row is None:
            row = self._session.execute(select(*columns).where(TokenModel.value == anchor)).first()
        return _row_to_reserved(row) if row is not None else None

    def bulk_delete(self, anchor: str, count: int) -> DeleteReport:
        """Delete ``count`` tokens starting at ``anchor`` in ingestion order.

        Deliveries of the selected tokens go first, then the tokens. The
        selected rows are locked so an in-flight claim either finished before
        us or will not find them.
        """

        start = self.resolve_anchor(anchor)
        if start is None:
            raise invalid_input("Token not found. Check the start token ID.", {"anchor": anchor})
        stmt = (
            select(TokenModel.id)
            .where(
                or_(
                    TokenModel.created_at > start.created_at,
                    and_(TokenModel.created_at == start.created_at, TokenModel.id >= start.id),
                )
            )
            .order_by(TokenModel.created_at.asc(), TokenModel.id.asc())
            .limit(count)
        )
        if self.supports_row_locks:  # pragma: no branch - dialect guard
            stmt = stmt.with_for_update()
        token_ids = tuple(self._session.execute(stmt).scalars())
        if not token_ids:
            return DeleteReport(deleted_tokens=0, deleted_deliveries=0, token_ids=())
        deliveries = self._session.execute(
            delete(DeliveryModel)
            .where(DeliveryModel.token_id.in_(token_ids))
            .execution_options(synchronize_session=False)
        ).rowcount
        tokens = self._session.execute(
            delete(TokenModel)
            .where(TokenModel.id.in_(token_ids))
            .execution_options(synchronize_session=False)
        ).rowcount
        return DeleteReport(deleted_tokens=int(tokens), deleted_deliveries=int(deliveries), token_ids=token_ids)

    # Reads ---------------------------------------------------------------
    def list_tokens(self, token_filter: TokenFilter = "all", limit: int = 50, offset: int = 0) -> Page:
        limit = max(1, min(int(limit), 200))
        offset = max(0, int(offset))
        conditions = {
            "all": [],
            "available": [TokenModel.claim_count == 0],
            "partial": [TokenModel.claim_count == 1],
            "full": [TokenModel.claim_count >= MAX_CLAIMS_PER_TOKEN],
            "assigned": [TokenModel.claim_count >= 1],
        }.get(token_filter)
        if conditions is None:
            raise invalid_input("Unknown token filter", {"filter": token_filter})
        total = self._session.execute(select(func.count(TokenModel.id)).where(*conditions)).scalar_one()
        stmt = (
            select(TokenModel)
            .where(*conditions)
            .order_by(TokenModel.created_at.desc(), TokenModel.id.desc())
            .limit(limit)
            .offset(offset)
        )
        items = tuple(
            TokenSummary(
                id=row.id,
                value_preview=row.value[:PREVIEW_LENGTH] + "...",
                claim_count=int(row.claim_count),
                assigned_to=row.assigned_to,
                assigned_at=as_utc(row.assigned_at),
                created_at=as_utc(row.created_at),
            )
            for row in self._session.execute(stmt).scalars()
        )
        return Page(items=items, total=int(total), limit=limit, offset=offset)

    def claim_counts(self) -> dict[str, int]:
        """Map token id to stored claim count (used by consistency checks)."""

        rows = self._session.execute(select(TokenModel.id, TokenModel.claim_count)).all()
        return {token_id: int(count) for token_id, count in rows}

    def delivery_counts(self) -> dict[str, int]:
        rows = self._session.execute(
            select(DeliveryModel.token_id, func.count(DeliveryModel.id)).group_by(DeliveryModel.token_id)
        ).all()
        return {token_id: int(count) for token_id, count in rows}

    def pool_stats(self, now: datetime) -> PoolStats:
        fresh, partial, full, total = self._session.execute(
            select(
                func.coalesce(func.sum(case((TokenModel.claim_count == 0, 1), else_=0)), 0),
                func.coalesce(func.sum(case((TokenModel.claim_count == 1, 1), else_=0)), 0),
                func.coalesce(func.sum(case((TokenModel.claim_count >= MAX_CLAIMS_PER_TOKEN, 1), else_=0)), 0),
                func.count(TokenModel.id),
            )
        ).one()
        usable = and_(ClaimantModel.is_active.is_(True), ClaimantModel.expires_at > now)
        active = self._session.execute(select(func.count(ClaimantModel.id)).where(usable)).scalar_one()
        claimants = self._session.execute(select(func.count(ClaimantModel.id))).scalar_one()
        fresh, partial, full = int(fresh), int(partial), int(full)
        return PoolStats(
            tokens_total=int(total),
            tokens_fresh=fresh,
            tokens_partial=partial,
            tokens_full=full,
            claims_remaining=MAX_CLAIMS_PER_TOKEN * fresh + (MAX_CLAIMS_PER_TOKEN - 1) * partial,
            claimants_active=int(active),
            claimants_expired=int(claimants) - int(active),
        )


__all__ = ["FaultInjector", "PoolRepository", "UUID_PATTERN"]
