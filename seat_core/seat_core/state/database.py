"""Async SQLAlchemy engines for the seat store.

The backend follows the URL scheme:

* ``postgresql+asyncpg://`` gives a pooled engine with server-side statement
  and lock timeouts plus advisory locks;
* ``sqlite+aiosqlite://`` gives a file (or in-memory) engine for local mode.
  SQLite has no advisory locks, so account scoping is done by the
  repositories' ``WHERE account_id`` filters and the in-process account lock.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

logger = logging.getLogger(__name__)

_SQLITE_PRAGMAS: tuple[str, ...] = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA synchronous=NORMAL",
)


def _sqlite_engine(database_url: str) -> AsyncEngine:
    """Build a SQLite engine, creating the database file's directory."""
    path = database_url.split("///", 1)[1] if "///" in database_url else ""
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    else:
        database_url = "sqlite+aiosqlite:///:memory:"

    # Concurrent writers wait on the file lock instead of failing at once.
    engine = create_async_engine(database_url, connect_args={"timeout": 30})

    @event.listens_for(engine.sync_engine, "connect")
    def _apply_pragmas(dbapi_conn: object, _: object) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        for pragma in _SQLITE_PRAGMAS:
            cursor.execute(pragma)
        cursor.close()

    logger.info("Created SQLite engine: %s", database_url)
    return engine


def get_engine(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 20,
) -> AsyncEngine:
    """Create an async engine for *database_url*.

    Parameters
    ----------
    database_url:
        Connection string (PostgreSQL or SQLite scheme).
    pool_size:
        Persistent PostgreSQL connections (ignored for SQLite).
    max_overflow:
        Extra PostgreSQL connections under load (ignored for SQLite).
    """
    if database_url.startswith("sqlite"):
        return _sqlite_engine(database_url)

    engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        connect_args={
            "server_settings": {
                "statement_timeout": "30000",
                # Bounds the wait on a contended account advisory lock.
                "lock_timeout": "10000",
            }
        },
    )
    logger.info("Created PostgreSQL engine pool_size=%d max_overflow=%d", pool_size, max_overflow)
    return engine


def dialect_name(session: AsyncSession) -> str:
    """Return the dialect name (``postgresql``, ``sqlite``) behind *session*."""
    bind = session.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", ""))


def advisory_key(namespace: str, account_id: str) -> int:
    """Return a PostgreSQL advisory lock key for *account_id* in *namespace*.

    Derived from SHA-256 so every process computes the same key; ``hash()``
    is salted per interpreter.
    """
    digest = hashlib.sha256(f"{namespace}_{account_id}".encode()).digest()
    return int.from_bytes(digest[:4], "big") & 0x7FFFFFFF
