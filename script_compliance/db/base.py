"""Engine and session wiring for the compliance worker."""

import os
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Declarative base for the analysis tables."""

    pass


DEFAULT_DATABASE_URL = "sqlite:///./script_compliance.db"


def _ensure_sync_driver(url: URL) -> URL:
    """Swap async drivers for their synchronous counterparts."""
    if url.drivername.startswith("postgresql+"):
        if any(token in url.drivername for token in ("async", "aiopg")):
            url = url.set(drivername="postgresql+psycopg")
    elif url.drivername.startswith("sqlite+") and "aiosqlite" in url.drivername:
        url = url.set(drivername="sqlite")
    return url


def get_database_url(raw_url: Optional[str] = None) -> str:
    """Resolve the configured database URL with a synchronous driver."""
    url = make_url(raw_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL)
    # render_as_string keeps the password; str(url) would mask it
    return _ensure_sync_driver(url).render_as_string(hide_password=False)


def _is_memory_sqlite(url: URL) -> bool:
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def create_db_engine(database_url: str) -> Engine:
    """Build an engine for the worker.

    In-memory SQLite shares one connection so every session sees the same
    database. File-backed SQLite keeps the default per-thread pooling, since
    the lexicon refresh thread opens sessions beside the worker's own.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        if _is_memory_sqlite(url):
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Create the process-wide engine on first use."""
    global _engine
    if _engine is None:
        from ..config import get_settings

        _engine = create_db_engine(get_database_url(get_settings().database_url))
    return _engine


def get_session_local() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_database(engine: Optional[Engine] = None) -> None:
    """Create all tables. Deployments run the Alembic migrations instead."""
    from . import audit_models, models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
