"""Database engine and session management.

PostgreSQL in production (``EG_DB_URL``), SQLite for development and tests
(``EG_SQLITE_PATH``). The engine is cached per process; tests that switch
database files call ``reset_engine_cache()`` first.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from api.db_models import Base

log = logging.getLogger("edgeguard.db")

DEFAULT_SQLITE_PATH = "/tmp/edgeguard/edgeguard.db"

_engine: Optional[Engine] = None
_sessionmaker: Optional[sessionmaker[Session]] = None


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def get_database_url(sqlite_path: Optional[str] = None) -> str:
    """
    Priority:
      1. explicit sqlite_path argument (tests, scripts)
      2. EG_DB_URL
      3. EG_SQLITE_PATH / default sqlite file
    """
    if sqlite_path:
        return f"sqlite:///{sqlite_path}"

    db_url = (os.getenv("EG_DB_URL") or "").strip()
    if db_url:
        if db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql+psycopg://", 1)
        elif db_url.startswith("postgresql://"):
            db_url = db_url.replace("postgresql://", "postgresql+psycopg://", 1)
        return db_url

    path = (os.getenv("EG_SQLITE_PATH") or DEFAULT_SQLITE_PATH).strip()
    return f"sqlite:///{path}"


def get_engine(sqlite_path: Optional[str] = None) -> Engine:
    global _engine

    if _engine is None:
        db_url = get_database_url(sqlite_path)
        is_sqlite = db_url.startswith("sqlite")

        engine_kwargs: dict = {"pool_pre_ping": True}
        if is_sqlite:
            path = db_url[len("sqlite:///") :]
            if path and path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            # cron/worker threads share the engine with request handlers
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs.update(
                {
                    "pool_size": _env_int("EG_DB_POOL_SIZE", 5),
                    "max_overflow": _env_int("EG_DB_POOL_MAX_OVERFLOW", 10),
                    "pool_recycle": _env_int("EG_DB_POOL_RECYCLE", 1800),
                }
            )

        _engine = create_engine(db_url, **engine_kwargs)

        if is_sqlite:

            @event.listens_for(_engine, "connect")
            def _sqlite_pragma(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        log.info("db engine created dialect=%s", _engine.dialect.name)

    return _engine


def get_sessionmaker() -> sessionmaker[Session]:
    global _sessionmaker

    if _sessionmaker is None:
        _sessionmaker = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _sessionmaker


def reset_engine_cache() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessionmaker = None


def init_db(sqlite_path: Optional[str] = None) -> None:
    if sqlite_path:
        reset_engine_cache()
    engine = get_engine(sqlite_path)
    Base.metadata.create_all(bind=engine)


def get_db() -> Iterator[Session]:
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()
