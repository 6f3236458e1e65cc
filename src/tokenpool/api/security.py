# -*- coding: utf-8 -*-
"""Claimant session tokens and admin secret checks."""
from __future__ import annotations

import hmac
from datetime import datetime, timedelta
from hashlib import sha256
from typing import Optional, Tuple

from fastapi import Request

from tokenpool.allocation.errors import unauthorized
from tokenpool.allocation.types import ClaimantSession
from tokenpool.core.clock import Clock, ensure_clock

SESSION_COOKIE = "session"


class SessionSigner:
    """Issue and verify time-bound, HMAC-signed claimant sessions.

    The token is ``<claimant_id>.<expires_epoch>.<hex digest>``; it carries no
    secret material and is only trusted after the digest checks out.
    """

    def __init__(self, secret: str, *, ttl: timedelta, clock: Clock | None = None) -> None:
        if not secret:
            raise ValueError("session secret must not be empty")
        self._secret = secret.encode("utf-8")
        self._ttl = ttl
        self._clock = ensure_clock(clock)

    def issue(self, claimant_id: str) -> Tuple[str, datetime]:
        expires_at = self._clock.now() + self._ttl
        expires_epoch = int(expires_at.timestamp())
        digest = self._digest(claimant_id, expires_epoch)
        return f"{claimant_id}.{expires_epoch}.{digest}", expires_at

    def verify(self, token: str, *, now: datetime | None = None) -> Optional[ClaimantSession]:
        parts = (token or "").rsplit(".", 2)
        if len(parts) != 3:
            return None
        claimant_id, exp, sig = parts
        if not claimant_id:
            return None
        try:
            expires_epoch = int(exp)
        except ValueError:
            return None
        now = now or self._clock.now()
        if int(now.timestamp()) >= expires_epoch:
            return None
        expected = self._digest(claimant_id, expires_epoch)
        if not hmac.compare_digest(expected, sig):
            return None
        return ClaimantSession(claimant_id=claimant_id)

    def _digest(self, claimant_id: str, expires_epoch: int) -> str:
        payload = f"{claimant_id}:{expires_epoch}".encode("utf-8")
        return hmac.new(self._secret, payload, sha256).hexdigest()


def _bearer(request: Request) -> str:
    header = (request.headers.get("Authorization") or "").strip()
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""


def require_claimant(request: Request) -> ClaimantSession:
    signer: SessionSigner = request.app.state.signer
    token = request.cookies.get(SESSION_COOKIE) or _bearer(request)
    session = signer.verify(token) if token else None
    if session is None:
        raise unauthorized()
    return session


def require_admin(request: Request) -> None:
    expected = request.app.state.config.auth.admin_secret
    provided = _bearer(request) or (request.headers.get("X-Admin-Secret") or "").strip()
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise unauthorized()


__all__ = ["SESSION_COOKIE", "SessionSigner", "require_admin", "require_claimant"]
