# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from tokenpool.allocation.allocator import TokenAllocator
from tokenpool.allocation.directory import ClaimantDirectory
from tokenpool.allocation.errors import key_invalid_or_expired, not_found, unauthorized
from tokenpool.allocation.maintenance import BulkMaintenance
from tokenpool.allocation.pool import PoolRepository
from tokenpool.allocation.ratelimit import remaining_cooldown
from tokenpool.allocation.types import ClaimantSession
from tokenpool.infrastructure.persistence.session import session_scope

from .schemas import CreateClaimantRequest, DeleteRequest, IngestRequest, LoginRequest
from .security import SESSION_COOKIE, require_admin, require_claimant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
admin_router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])
ops_router = APIRouter()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _ok(data: Any) -> dict:
    return {"ok": True, "data": data}


# Claimant surface ---------------------------------------------------------
@router.post("/login")
def login(payload: LoginRequest, request: Request, response: Response):
    state = request.app.state
    with session_scope(state.session_factory) as session:
        claimant = ClaimantDirectory(session).authenticate(payload.key, state.clock.now())
    if claimant is None:
        raise key_invalid_or_expired()
    token, expires_at = state.signer.issue(claimant.id)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        max_age=int(state.config.auth.session_ttl_days * 24 * 3600),
    )
    return _ok({"session": token, "expiresAt": _iso(expires_at)})


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(SESSION_COOKIE)
    return _ok({"ok": True})


@router.post("/token")
def claim_token(request: Request, claimant: ClaimantSession = Depends(require_claimant)):
    allocator: TokenAllocator = request.app.state.allocator
    result = allocator.claim(claimant)
    return _ok(
        {
            "token": result.token,
            "createdAt": _iso(result.created_at),
            "nextAvailableAt": _iso(result.next_available_at),
        }
    )


@router.get("/me")
def me(request: Request, claimant: ClaimantSession = Depends(require_claimant)):
    state = request.app.state
    now = state.clock.now()
    with session_scope(state.session_factory) as session:
        status = ClaimantDirectory(session).status(claimant.claimant_id, state.allocator.cooldown, now)
    if status is None:
        raise unauthorized()
    return _ok(
        {
            "keyId": status.claimant_id,
            "keyMask": status.key_mask,
            "isActive": status.is_active,
            "expiresAt": _iso(status.expires_at),
            "lastTokenAt": _iso(status.last_issue_at),
            "assignedCount": status.assigned_count,
            "nextAvailableAt": _iso(status.next_available_at),
            "remainingSeconds": int(
                remaining_cooldown(status.last_issue_at, state.allocator.cooldown, now).total_seconds()
            ),
        }
    )


# Admin surface ------------------------------------------------------------
@admin_router.post("/tokens")
def ingest_tokens(payload: IngestRequest, request: Request):
    maintenance: BulkMaintenance = request.app.state.maintenance
    if payload.values is not None:
        report = maintenance.ingest(payload.values)
    else:
        report = maintenance.ingest_text(payload.tokens or "")
    return _ok({"inserted": report.inserted, "duplicates": report.duplicates, "total": report.total})


@admin_router.get("/tokens")
def list_tokens(request: Request, status: str = "all", limit: int = 50, offset: int = 0):
    with session_scope(request.app.state.session_factory) as session:
        page = PoolRepository(session).list_tokens(status, limit, offset)  # type: ignore[arg-type]
    return _ok(
        {
            "tokens": [
                {
                    "id": item.id,
                    "value": item.value_preview,
                    "claimCount": item.claim_count,
                    "assignedTo": item.assigned_to,
                    "assignedAt": _iso(item.assigned_at),
                    "createdAt": _iso(item.created_at),
                }
                for item in page.items
            ],
            "pagination": {
                "total": page.total,
                "limit": page.limit,
                "offset": page.offset,
                "hasMore": page.has_more,
            },
        }
    )


@admin_router.post("/delete-tokens")
def delete_tokens(payload: DeleteRequest, request: Request):
    maintenance: BulkMaintenance = request.app.state.maintenance
    report = maintenance.delete_window(payload.anchor, payload.count)
    return _ok(
        {
            "deletedTokens": report.deleted_tokens,
            "deletedDeliveries": report.deleted_deliveries,
            "tokenIds": list(report.token_ids),
            "message": f"Deleted {report.deleted_tokens} tokens and {report.deleted_deliveries} deliveries",
        }
    )


@admin_router.get("/keys")
def list_keys(request: Request, q: Optional[str] = None, limit: int = 50, offset: int = 0):
    with session_scope(request.app.state.session_factory) as session:
        page = ClaimantDirectory(session).list_claimants(q, limit, offset)
    return _ok(
        {
            "keys": [
                {
                    "id": item.id,
                    "keyMask": item.key_mask,
                    "isActive": item.is_active,
                    "expiresAt": _iso(item.expires_at),
                    "lastTokenAt": _iso(item.last_issue_at),
                    "createdAt": _iso(item.created_at),
                    "assignedCount": item.assigned_count,
                }
                for item in page.items
            ],
            "pagination": {
                "total": page.total,
                "limit": page.limit,
                "offset": page.offset,
                "hasMore": page.has_more,
            },
        }
    )


@admin_router.post("/keys", status_code=201)
def create_key(payload: CreateClaimantRequest, request: Request):
    state = request.app.state
    with session_scope(state.session_factory) as session:
        claimant = ClaimantDirectory(session, clock=state.clock).create_claimant(payload.key, payload.expires_at)
    return _ok({"id": claimant.id, "expiresAt": _iso(claimant.expires_at), "isActive": claimant.is_active})


@admin_router.patch("/keys/{claimant_id}/toggle")
def toggle_key(claimant_id: str, request: Request):
    with session_scope(request.app.state.session_factory) as session:
        is_active = ClaimantDirectory(session).toggle_active(claimant_id)
    if is_active is None:
        raise not_found("Key not found")
    return _ok({"id": claimant_id, "isActive": is_active})


@admin_router.get("/stats")
def stats(request: Request):
    state = request.app.state
    with session_scope(state.session_factory) as session:
        pool_stats = PoolRepository(session).pool_stats(state.clock.now())
    return _ok(
        {
            "tokensTotal": pool_stats.tokens_total,
            "tokensRemaining": pool_stats.tokens_remaining,
            "tokensAssigned": pool_stats.tokens_assigned,
            "tokensFresh": pool_stats.tokens_fresh,
            "tokensPartial": pool_stats.tokens_partial,
            "tokensFull": pool_stats.tokens_full,
            "claimsRemaining": pool_stats.claims_remaining,
            "usersActive": pool_stats.claimants_active,
            "usersExpired": pool_stats.claimants_expired,
        }
    )


# Ops ----------------------------------------------------------------------
@ops_router.get("/metrics")
def metrics(request: Request):
    return Response(generate_latest(request.app.state.registry), media_type=CONTENT_TYPE_LATEST)


@ops_router.get("/readyz")
def readyz(request: Request):
    with session_scope(request.app.state.session_factory) as session:
        session.execute(text("SELECT 1"))
    return {"status": "ok"}


__all__ = ["admin_router", "ops_router", "router"]
