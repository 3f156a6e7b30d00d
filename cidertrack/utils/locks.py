"""Press-run serialization — one completion per press run at a time.

Two concurrent completions of the same press run could both pass the
"no batches yet" check before either commits.  ``press_run_lock`` makes the
check-then-insert sequence exclusive per press run:

  - ``local``  → an asyncio.Lock per press run id (single process)
  - ``redis``  → a Redis lock named ``press-run:{id}`` (shared by workers)

The lock is the first line of defence.  The unique ``press_run_allocations``
claim row and the ``FOR UPDATE`` read of the press run still apply at the
database level whichever backend is configured.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import redis.asyncio as redis

from cidertrack.config import settings

logger = logging.getLogger(__name__)


@dataclass
class _KeyedLock:
    lock: asyncio.Lock
    waiters: int = 0


_local_locks: dict[str, _KeyedLock] = {}


@asynccontextmanager
async def _local_lock(key: str) -> AsyncIterator[None]:
    entry = _local_locks.get(key)
    if entry is None:
        entry = _local_locks[key] = _KeyedLock(asyncio.Lock())
    entry.waiters += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.waiters -= 1
        if entry.waiters == 0:
            _local_locks.pop(key, None)


@asynccontextmanager
async def _redis_lock(key: str) -> AsyncIterator[None]:
    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        async with client.lock(
            key,
            timeout=settings.press_lock_timeout_s,
            blocking_timeout=settings.press_lock_timeout_s,
        ):
            yield
    finally:
        await client.aclose()


def held_local_locks() -> list[str]:
    """Keys of local locks currently held or awaited."""
    return list(_local_locks)


@asynccontextmanager
async def press_run_lock(
    press_run_id: str, backend: str | None = None
) -> AsyncIterator[None]:
    backend = backend or settings.press_lock_backend
    key = f"press-run:{press_run_id}"

    if backend == "redis":
        ctx = _redis_lock(key)
    elif backend == "local":
        ctx = _local_lock(key)
    else:
        raise ValueError(f"Unknown press lock backend: {backend}")

    logger.debug("Acquiring %s lock %s", backend, key)
    async with ctx:
        yield
