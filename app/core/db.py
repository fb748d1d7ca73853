# app/core/db.py
"""
Database engine and session management for OrderDesk (sync SQLAlchemy 2.x).

- Lazy engine creation (no connections at import time).
- SQLite gets check_same_thread=False so TestClient/threadpool handlers can share it.
- Utilities: get_db(), session_scope(), init_db(), drop_db(), dispose_engine(), health_check_db().
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.base import Base

logger = get_logger(__name__)

__all__ = [
    "Base",
    "get_engine",
    "get_db",
    "session_scope",
    "init_db",
    "drop_db",
    "dispose_engine",
    "health_check_db",
    "enable_sqlite_savepoints",
]

_ENGINE: Optional[Engine] = None
_SESSION_MAKER: Optional[sessionmaker] = None


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT (begin_nested).
    Hand transaction control back to SQLAlchemy.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine() -> Engine:
    """Creates and caches the sync engine lazily."""
    global _ENGINE, _SESSION_MAKER
    if _ENGINE is not None:
        return _ENGINE

    s = get_settings()
    url = s.DATABASE_URL
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}

    _ENGINE = create_engine(url, echo=s.SQLALCHEMY_ECHO, pool_pre_ping=True, future=True, connect_args=connect_args)
    if _ENGINE.dialect.name == "sqlite":
        enable_sqlite_savepoints(_ENGINE)
    _SESSION_MAKER = sessionmaker(bind=_ENGINE, autocommit=False, autoflush=False, expire_on_commit=False)
    logger.info("Sync engine created", dialect=_ENGINE.dialect.name)
    return _ENGINE


def _get_session_maker() -> sessionmaker:
    get_engine()
    assert _SESSION_MAKER is not None
    return _SESSION_MAKER


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency; services commit explicitly."""
    db = _get_session_maker()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    db = _get_session_maker()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(create_all: bool = True) -> None:
    if not create_all:
        return
    try:
        import app.models  # noqa: F401  (register mappers)

        Base.metadata.create_all(bind=get_engine())
        logger.info("DB schema created")
    except SQLAlchemyError as e:
        logger.exception("create_all failed", error=str(e))
        raise


def drop_db(drop_all: bool = True) -> None:
    if not drop_all:
        return
    try:
        Base.metadata.drop_all(bind=get_engine())
        logger.info("DB schema dropped")
    except SQLAlchemyError as e:
        logger.exception("drop_all failed", error=str(e))
        raise


def dispose_engine() -> None:
    global _ENGINE, _SESSION_MAKER
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _SESSION_MAKER = None


def health_check_db() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning("DB health check failed", error=str(e))
        return False
