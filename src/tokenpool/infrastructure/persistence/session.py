# -*- coding: utf-8 -*-
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


def make_engine(dsn: str, *, echo: bool = False) -> Engine:
    url = make_url(dsn)
    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            dsn,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 15},
        )

        @event.listens_for(engine, "connect")
        def configure_sqlite(dbapi_connection, connection_record):  # pragma: no cover - driver specific
            # pysqlite must not open transactions itself; see the "begin" hook.
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(connection):  # pragma: no cover - driver specific
            # Take the write lock up front so read-then-write claims queue on
            # the busy timeout instead of failing a lock upgrade.
            connection.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    engine = create_engine(
        dsn,
        echo=echo,
        pool_size=20,
        max_overflow=40,
        pool_timeout=5,
        pool_recycle=1800,
        future=True,
    )

    if url.get_backend_name() == "postgresql":

        @event.listens_for(engine, "connect")
        def set_statement_timeout(dbapi_connection, connection_record):  # pragma: no cover - driver specific
            cursor = dbapi_connection.cursor()
            cursor.execute("SET statement_timeout TO 2000")
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, future=True)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
