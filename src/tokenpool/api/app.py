# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from prometheus_client import CollectorRegistry
from sqlalchemy.orm import sessionmaker

from tokenpool.allocation.allocator import TokenAllocator
from tokenpool.allocation.maintenance import BulkMaintenance
from tokenpool.allocation.metrics import AllocationMeters
from tokenpool.allocation.pool import FaultInjector
from tokenpool.allocation.uow import sqlalchemy_uow_factory
from tokenpool.config import AppConfig, get_config
from tokenpool.core.clock import Clock, SystemClock
from tokenpool.core.logging_config import CorrelationIdMiddleware
from tokenpool.infrastructure.persistence.session import make_engine, make_session_factory

from .error_handlers import install_error_handlers
from .routes import admin_router, ops_router, router
from .security import SessionSigner


def create_app(
    config: Optional[AppConfig] = None,
    *,
    session_factory: Optional[sessionmaker] = None,
    clock: Optional[Clock] = None,
    registry: Optional[CollectorRegistry] = None,
    fault_injector: Optional[FaultInjector] = None,
) -> FastAPI:
    config = config or get_config()
    if session_factory is None:
        session_factory = make_session_factory(make_engine(config.database.dsn, echo=config.database.echo))
    registry = registry or CollectorRegistry()
    meters = AllocationMeters(registry)
    uow_factory = sqlalchemy_uow_factory(session_factory)

    app = FastAPI(title=config.app_name, version="1.0.0")
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.clock = clock or SystemClock()
    app.state.registry = registry
    app.state.signer = SessionSigner(
        config.auth.session_secret,
        ttl=timedelta(days=config.auth.session_ttl_days),
        clock=clock,
    )
    app.state.allocator = TokenAllocator.from_config(
        config, uow_factory, clock=clock, meters=meters, fault_injector=fault_injector
    )
    app.state.maintenance = BulkMaintenance.from_config(config, uow_factory, clock=clock, meters=meters)

    app.add_middleware(CorrelationIdMiddleware)
    app.include_router(router)
    app.include_router(admin_router)
    app.include_router(ops_router)
    install_error_handlers(app)
    return app


__all__ = ["create_app"]
