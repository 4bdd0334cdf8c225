"""Mutual exclusion for payee lookup-or-create.

Two commits that mention the same new merchant must not both create a
payee. Locks are keyed by the case-folded merchant name so ``Coffee
Shop`` and ``coffee shop`` serialise against each other while different
merchants proceed in parallel.

``local`` locks cover a single API process. Deployments running several
workers should set ``PAYEE_LOCK_BACKEND=redis``.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from redis import asyncio as aioredis
from redis.exceptions import LockError, RedisError

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import ProcessingError


logger = logging.getLogger(__name__)


def payee_key(name: str) -> str:
    return name.strip().casefold()


class PayeeLocks:
    """In-process locks, one ``asyncio.Lock`` per merchant name.

    An entry lives only while some commit holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        key = payee_key(name)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class RedisPayeeLocks(PayeeLocks):
    """Cross-process locks backed by Redis."""

    def __init__(
        self,
        url: str | None = None,
        timeout: float = 30.0,
        blocking_timeout: float = 10.0,
        client: aioredis.Redis | None = None,
    ) -> None:
        super().__init__()
        self._client = client or aioredis.from_url(url or settings.REDIS_URL, decode_responses=True)
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        lock = self._client.lock(
            f"receipts:payee-create:{payee_key(name)}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            raise ProcessingError(f"Payee lock unavailable: {exc}") from exc
        if not acquired:
            raise ProcessingError(f"Timed out waiting for payee lock: {name}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                logger.warning("[reconcile] payee lock release failed name=%s err=%s", name, exc)


@lru_cache(maxsize=1)
def get_payee_locks() -> PayeeLocks:
    if (settings.PAYEE_LOCK_BACKEND or "local").lower() == "redis":
        return RedisPayeeLocks()
    return PayeeLocks()
