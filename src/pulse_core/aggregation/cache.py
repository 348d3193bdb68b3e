"""Response cache keyed by a deterministic request fingerprint.

Expiry is evaluated lazily on read: an entry whose age has reached its TTL is
reported as a miss and overwritten by the next successful computation.
"""
import asyncio
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional

from redis.asyncio import Redis
from redis.asyncio.lock import Lock as AsyncRedisLock
from redis.exceptions import RedisError

from .types import RequestSpec


logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def fingerprint(spec: RequestSpec, namespace: str = "overview") -> str:
    """SHA-256 over the canonical JSON of the semantically relevant fields.

    Covers namespace, account references, the source serving each requested
    kind, date range and non-empty filters. Key order and cache_bypass do
    not contribute.
    """
    requested = spec.requested_kinds
    payload = {
        "namespace": namespace,
        "account_refs": {kind.value: spec.account_refs[kind] for kind in requested},
        "sources": {kind.value: spec.source_for(kind) for kind in requested},
        "date_range": {
            "from": spec.date_range.start.isoformat(),
            "to": spec.date_range.end.isoformat(),
        },
        "filters": {
            key: value for key, value in spec.filters.items() if value not in (None, "")
        },
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload with its creation time and TTL."""

    fingerprint: str
    payload: dict[str, Any]
    created_at: float
    ttl_s: float

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) >= self.ttl_s


class ResponseCache(ABC):
    """Fingerprint -> payload store with a per-entry TTL."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock or time.time

    @abstractmethod
    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Return the live entry, or None on miss or expiry."""

    @abstractmethod
    async def put(
        self, fingerprint: str, payload: dict[str, Any], ttl_s: float
    ) -> CacheEntry:
        """Store payload, replacing any previous entry."""

    @abstractmethod
    async def clear(self, fingerprint: Optional[str] = None) -> int:
        """Remove one entry, or every entry when fingerprint is None."""

    @asynccontextmanager
    async def single_flight(self, fingerprint: str) -> AsyncIterator[None]:
        """Best-effort guard so concurrent misses for one key compute once."""
        yield


class InMemoryResponseCache(ResponseCache):
    """Process-lifetime cache held in a dict."""

    LOCK_WAIT_SECONDS = 90.0

    def __init__(self, clock: Optional[Clock] = None) -> None:
        super().__init__(clock)
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if entry.is_expired(self.clock()):
            logger.debug("Cache entry expired: %s", fingerprint)
            return None
        return entry

    async def put(
        self, fingerprint: str, payload: dict[str, Any], ttl_s: float
    ) -> CacheEntry:
        entry = CacheEntry(
            fingerprint=fingerprint,
            payload=payload,
            created_at=self.clock(),
            ttl_s=ttl_s,
        )
        self._entries[fingerprint] = entry
        return entry

    async def clear(self, fingerprint: Optional[str] = None) -> int:
        if fingerprint is None:
            removed = len(self._entries)
            self._entries.clear()
            logger.info("Cleared all %s cache entries", removed)
            return removed

        removed = 1 if self._entries.pop(fingerprint, None) is not None else 0
        logger.info("Cleared cache entry %s (removed=%s)", fingerprint, removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def single_flight(self, fingerprint: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(fingerprint, asyncio.Lock())
        self._waiters[fingerprint] = self._waiters.get(fingerprint, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.LOCK_WAIT_SECONDS)
                acquired = True
            except asyncio.TimeoutError:
                logger.warning("Single-flight wait timed out for %s", fingerprint)
                acquired = False

            try:
                yield
            finally:
                if acquired:
                    lock.release()
        finally:
            self._waiters[fingerprint] -= 1
            if not self._waiters[fingerprint]:
                del self._waiters[fingerprint]
                self._locks.pop(fingerprint, None)


class RedisResponseCache(ResponseCache):
    """Cache persisted in Redis so entries survive process restarts.

    Redis EX is set to the TTL as a backstop; the age check on read is what
    decides expiry.
    """

    KEY_PREFIX = "pulse:cache:"
    LOCK_TTL_SECONDS = 120
    LOCK_WAIT_SECONDS = 30.0

    def __init__(self, redis: Redis, clock: Optional[Clock] = None) -> None:
        super().__init__(clock)
        self.redis = redis

    def _key(self, fingerprint: str) -> str:
        return f"{self.KEY_PREFIX}{fingerprint}"

    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        try:
            raw = await self.redis.get(self._key(fingerprint))
        except RedisError as exc:
            logger.warning("Cache read failed for %s: %s", fingerprint, exc)
            return None

        if raw is None:
            return None

        try:
            data = json.loads(raw)
            entry = CacheEntry(
                fingerprint=fingerprint,
                payload=data["payload"],
                created_at=float(data["created_at"]),
                ttl_s=float(data["ttl_s"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", fingerprint, exc)
            return None

        if entry.is_expired(self.clock()):
            return None
        return entry

    async def put(
        self, fingerprint: str, payload: dict[str, Any], ttl_s: float
    ) -> CacheEntry:
        entry = CacheEntry(
            fingerprint=fingerprint,
            payload=payload,
            created_at=self.clock(),
            ttl_s=ttl_s,
        )
        body = json.dumps(
            {"payload": payload, "created_at": entry.created_at, "ttl_s": ttl_s},
            separators=(",", ":"),
        )
        try:
            await self.redis.set(self._key(fingerprint), body, ex=max(int(ttl_s), 1))
        except RedisError as exc:
            logger.error("Cache write failed for %s: %s", fingerprint, exc)
        return entry

    async def clear(self, fingerprint: Optional[str] = None) -> int:
        if fingerprint is not None:
            removed = await self.redis.delete(self._key(fingerprint))
            logger.info("Cleared cache entry %s (removed=%s)", fingerprint, removed)
            return int(removed)

        keys = [key async for key in self.redis.scan_iter(match=f"{self.KEY_PREFIX}*")]
        if not keys:
            return 0
        removed = await self.redis.delete(*keys)
        logger.info("Cleared all %s cache entries", removed)
        return int(removed)

    @asynccontextmanager
    async def single_flight(self, fingerprint: str) -> AsyncIterator[None]:
        lock = AsyncRedisLock(
            self.redis,
            name=f"{self.KEY_PREFIX}lock:{fingerprint}",
            timeout=self.LOCK_TTL_SECONDS,
            blocking_timeout=self.LOCK_WAIT_SECONDS,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            logger.warning("Single-flight lock unavailable for %s: %s", fingerprint, exc)
            acquired = False

        try:
            yield
        finally:
            if acquired:
                await self._release_lock_best_effort(lock)

    async def _release_lock_best_effort(self, lock: AsyncRedisLock) -> None:
        try:
            await lock.release()
        except Exception as exc:
            logger.error("Failed to release cache lock: %s", exc)
