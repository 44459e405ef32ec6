"""Per-account serialisation for seat-affecting actions.

Two layers are stacked:

* an in-process ``asyncio.Lock`` per account id, so concurrent requests
  handled by the same worker queue up instead of interleaving their reads;
* a PostgreSQL transaction-scoped advisory lock on the same key, so
  requests handled by *different* workers are serialised too.

The advisory lock is released when the transaction ends, so callers must
commit (or roll back) before leaving the ``account_lock`` block.  Unrelated
accounts never contend.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from seat_core.state.database import advisory_key, dialect_name
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Locks are dropped once no coroutine holds or waits on them.
_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def advisory_lock_id(account_id: str) -> int:
    """Return the 31-bit seat billing advisory lock key for *account_id*."""
    return advisory_key("seat_billing", account_id)


def _local_lock(account_id: str) -> asyncio.Lock:
    lock = _locks.get(account_id)
    if lock is None:
        lock = asyncio.Lock()
        _locks[account_id] = lock
    return lock


@asynccontextmanager
async def account_lock(session: AsyncSession, account_id: str) -> AsyncIterator[None]:
    """Hold the seat lock for *account_id* for the duration of the block.

    On non-PostgreSQL databases (SQLite in local mode and tests) only the
    in-process lock applies.
    """
    lock = _local_lock(account_id)
    async with lock:
        if "postgresql" in dialect_name(session):
            await session.execute(
                text("SELECT pg_advisory_xact_lock(:id)"),
                {"id": advisory_lock_id(account_id)},
            )
        logger.debug("Acquired seat lock for account=%s", account_id)
        yield
