"""Admin CLI using Typer."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import NoReturn, Optional

import typer

from tokenpool.allocation.directory import ClaimantDirectory
from tokenpool.allocation.errors import AllocationServiceError
from tokenpool.allocation.maintenance import BulkMaintenance
from tokenpool.allocation.pool import PoolRepository
from tokenpool.allocation.uow import sqlalchemy_uow_factory
from tokenpool.config import AppConfig, get_config
from tokenpool.core.clock import SystemClock, as_utc
from tokenpool.core.logging_config import setup_logging
from tokenpool.infrastructure.persistence.session import (
    init_schema,
    make_engine,
    make_session_factory,
    session_scope,
)

app = typer.Typer(
    pretty_exceptions_short=True,
    no_args_is_help=True,
    help="Manage the token pool and its claimants.",
)


def _config() -> AppConfig:
    config = get_config()
    setup_logging(config.log_level, json_format=config.log_json)
    return config


def _session_factory(config: AppConfig):
    return make_session_factory(make_engine(config.database.dsn, echo=config.database.echo))


def _emit(payload: dict) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, default=str))


def _fail(exc: AllocationServiceError) -> NoReturn:
    _emit({"error": exc.detail.code, "message": exc.detail.message, "details": dict(exc.detail.details)})
    raise typer.Exit(code=2)


@app.command("init-db")
def init_db() -> None:
    """Create the database tables if they do not exist."""
    config = _config()
    init_schema(make_engine(config.database.dsn, echo=config.database.echo))
    _emit({"ok": True})


@app.command("create-claimant")
def create_claimant(
    key: str = typer.Argument(..., help="Credential handed to the claimant."),
    days: int = typer.Option(30, "--days", min=1, help="Validity in days from now."),
    expires_at: Optional[datetime] = typer.Option(
        None, "--expires-at", help="Explicit expiry (UTC when no offset is given)."
    ),
) -> None:
    config = _config()
    now = SystemClock().now()
    expiry = as_utc(expires_at) if expires_at is not None else now + timedelta(days=days)
    try:
        with session_scope(_session_factory(config)) as session:
            claimant = ClaimantDirectory(session).create_claimant(key, expiry, now=now)
    except AllocationServiceError as exc:
        _fail(exc)
    _emit({"id": claimant.id, "expiresAt": claimant.expires_at.isoformat()})


@app.command()
def ingest(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="One token per line."),
) -> None:
    """Add tokens from a text file to the pool."""
    config = _config()
    maintenance = BulkMaintenance.from_config(config, sqlalchemy_uow_factory(_session_factory(config)))
    try:
        report = maintenance.ingest_text(source.read_text(encoding="utf-8"))
    except AllocationServiceError as exc:
        _fail(exc)
    _emit({"inserted": report.inserted, "duplicates": report.duplicates, "total": report.total})


@app.command()
def delete(
    anchor: str = typer.Argument(..., help="Token id or value to start from."),
    count: int = typer.Option(10, "--count", help="How many tokens to delete."),
) -> None:
    """Delete a window of tokens, oldest first, starting at ANCHOR."""
    config = _config()
    maintenance = BulkMaintenance.from_config(config, sqlalchemy_uow_factory(_session_factory(config)))
    try:
        report = maintenance.delete_window(anchor, count)
    except AllocationServiceError as exc:
        _fail(exc)
    _emit(
        {
            "deletedTokens": report.deleted_tokens,
            "deletedDeliveries": report.deleted_deliveries,
            "tokenIds": list(report.token_ids),
        }
    )


@app.command()
def toggle(claimant_id: str = typer.Argument(..., help="Claimant id.")) -> None:
    config = _config()
    with session_scope(_session_factory(config)) as session:
        is_active = ClaimantDirectory(session).toggle_active(claimant_id)
    if is_active is None:
        _emit({"error": "NOT_FOUND", "message": "Key not found", "details": {}})
        raise typer.Exit(code=2)
    _emit({"id": claimant_id, "isActive": is_active})


@app.command()
def stats() -> None:
    config = _config()
    with session_scope(_session_factory(config)) as session:
        pool_stats = PoolRepository(session).pool_stats(SystemClock().now())
    _emit(
        {
            "tokensRemaining": pool_stats.tokens_remaining,
            "tokensAssigned": pool_stats.tokens_assigned,
            "claimsRemaining": pool_stats.claims_remaining,
            "usersActive": pool_stats.claimants_active,
            "usersExpired": pool_stats.claimants_expired,
        }
    )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port", min=1, max=65535),
) -> None:  # pragma: no cover - starts a server
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from tokenpool.api.app import create_app

    config = _config()
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


if __name__ == "__main__":  # pragma: no cover
    app()
