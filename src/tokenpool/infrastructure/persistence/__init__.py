"""SQLAlchemy schema and session plumbing for the token pool."""
from __future__ import annotations

from .models import MAX_CLAIMS_PER_TOKEN, Base, ClaimantModel, DeliveryModel, TokenModel
from .session import init_schema, make_engine, make_session_factory, session_scope

__all__ = [
    "Base",
    "ClaimantModel",
    "DeliveryModel",
    "MAX_CLAIMS_PER_TOKEN",
    "TokenModel",
    "init_schema",
    "make_engine",
    "make_session_factory",
    "session_scope",
]
