# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from tokenpool.core.clock import SystemClock, as_utc

MAX_CLAIMS_PER_TOKEN = 2

Base = declarative_base()


def _new_id() -> str:
    return str(uuid4())


def _utc_now() -> datetime:
    return SystemClock().now()


class UTCDateTime(TypeDecorator):
    """Timestamp column that always round-trips as an aware UTC datetime.

    SQLite has no zone-aware storage, so values are stored there as naive UTC
    and re-tagged on load. PostgreSQL keeps ``timestamptz`` semantics.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = as_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        return as_utc(value)


class ClaimantModel(Base):
    __tablename__ = "claimants"

    id = Column(String(36), primary_key=True, default=_new_id)
    key = Column(String(512), nullable=False, unique=True)
    expires_at = Column(UTCDateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_issue_at = Column(UTCDateTime(timezone=True), nullable=True)
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=_utc_now)

    deliveries = relationship("DeliveryModel", back_populates="claimant")


class TokenModel(Base):
    __tablename__ = "token_pool"

    id = Column(String(36), primary_key=True, default=_new_id)
    value = Column(String(2048), nullable=False, unique=True)
    claim_count = Column(Integer, nullable=False, default=0)
    # Most recent claimant only; eligibility is decided by deliveries.
    assigned_to = Column(String(36), ForeignKey("claimants.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(UTCDateTime(timezone=True), nullable=True)
    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=_utc_now)

    deliveries = relationship("DeliveryModel", back_populates="token")

    __table_args__ = (
        CheckConstraint(
            f"claim_count >= 0 AND claim_count <= {MAX_CLAIMS_PER_TOKEN}",
            name="ck_token_claim_count_range",
        ),
        Index(
            "ix_token_pool_available",
            "claim_count",
            "created_at",
            postgresql_where=text(f"claim_count < {MAX_CLAIMS_PER_TOKEN}"),
        ),
        Index("ix_token_pool_created_at", "created_at"),
    )


class DeliveryModel(Base):
    __tablename__ = "deliveries"

    id = Column(String(36), primary_key=True, default=_new_id)
    key_id = Column(String(36), ForeignKey("claimants.id"), nullable=False)
    token_id = Column(String(36), ForeignKey("token_pool.id"), nullable=False)
    delivered_at = Column(UTCDateTime(timezone=True), nullable=False, default=_utc_now)

    claimant = relationship("ClaimantModel", back_populates="deliveries")
    token = relationship("TokenModel", back_populates="deliveries")

    __table_args__ = (
        UniqueConstraint("key_id", "token_id", name="ux_delivery_key_token"),
        Index("ix_deliveries_token", "token_id"),
    )


__all__ = [
    "Base",
    "ClaimantModel",
    "DeliveryModel",
    "MAX_CLAIMS_PER_TOKEN",
    "TokenModel",
    "UTCDateTime",
]
