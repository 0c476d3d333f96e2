"""Cache of stake deposits that already reached final confirmation depth.

Once a deposit has ``min_confirmations`` it will not change, so re-verifying
the same transaction (client retries, idempotent re-submits) can skip the
RPC round trip. The cache is an injected component: tests construct a fresh
instance per case, and the app picks Redis when it is reachable.

Invalidation contract:
    - entries expire after ``ttl_seconds``
    - ``invalidate(tx_ref)`` drops one entry (e.g. after a chain reorg alert)
    - ``clear()`` drops everything
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from attendance_escrow.domain.models import StakeDeposit
from attendance_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    import redis.asyncio as aioredis

logger = get_logger(__name__)


@runtime_checkable
class ConfirmationCache(Protocol):
    async def get(self, tx_ref: str) -> StakeDeposit | None: ...

    async def put(self, tx_ref: str, deposit: StakeDeposit) -> None: ...

    async def invalidate(self, tx_ref: str) -> None: ...

    async def clear(self) -> None: ...


@dataclass
class _Entry:
    deposit: StakeDeposit
    expires_at: float


class InMemoryConfirmationCache:
    """Bounded TTL cache with LRU eviction, per process."""

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    async def get(self, tx_ref: str) -> StakeDeposit | None:
        key = tx_ref.lower()
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.deposit

    async def put(self, tx_ref: str, deposit: StakeDeposit) -> None:
        key = tx_ref.lower()
        self._entries[key] = _Entry(deposit=deposit, expires_at=self._clock() + self._ttl)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def invalidate(self, tx_ref: str) -> None:
        self._entries.pop(tx_ref.lower(), None)

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisConfirmationCache:
    """Shared cache across API workers, stored as JSON with a Redis TTL."""

    KEY_PREFIX = "stake-confirmation:"

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int = 3600) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    def _key(self, tx_ref: str) -> str:
        return f"{self.KEY_PREFIX}{tx_ref.lower()}"

    async def get(self, tx_ref: str) -> StakeDeposit | None:
        raw = await self._redis.get(self._key(tx_ref))
        if raw is None:
            return None
        return StakeDeposit.from_dict(json.loads(raw))

    async def put(self, tx_ref: str, deposit: StakeDeposit) -> None:
        await self._redis.set(self._key(tx_ref), json.dumps(deposit.to_dict()), ex=self._ttl)

    async def invalidate(self, tx_ref: str) -> None:
        await self._redis.delete(self._key(tx_ref))

    async def clear(self) -> None:
        keys = [key async for key in self._redis.scan_iter(match=f"{self.KEY_PREFIX}*")]
        if keys:
            await self._redis.delete(*keys)
        logger.info("confirmation_cache.cleared", entries=len(keys))
