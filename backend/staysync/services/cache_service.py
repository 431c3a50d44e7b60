"""Two-tier cache: Redis primary, in-process fallback, typed TTLs."""

import asyncio
import json
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis

from staysync.models import CacheEntry

logger = logging.getLogger(__name__)

# TTLs in seconds
TTL_AVAILABILITY = 5 * 60         # 5 minutes
TTL_PROPERTY = 30 * 60            # 30 minutes, static property metadata
TTL_PRICING = 10 * 60             # 10 minutes, quotes
TTL_BOOKING_RULES = 60 * 60       # 1 hour, min/max stay rules

KEY_PREFIXES = ("availability:", "pricing:", "property:", "booking_rules:")


class LocalCache:
    """Process-local tier. Guarded by a lock since it may be shared across threads."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            now = self._clock()
            self._purge(now)
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=now + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> list[str]:
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for k in keys:
                del self._entries[k]
            return keys

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _purge(self, now: float) -> None:
        expired = [k for k, e in self._entries.items() if e.expired(now)]
        for k in expired:
            del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheService:
    """Redis-backed cache that degrades to the local tier.

    The Redis connection is opened lazily. After ``connect_attempts`` failed
    attempts the service runs local-only for the rest of the process, unless
    ``reprobe_seconds`` is set, in which case Redis is tried again once that
    interval has passed. Errors never leave this class: a failing primary is a
    cache miss.
    """

    def __init__(
        self,
        redis_url: str,
        connect_attempts: int = 3,
        connect_backoff: float = 0.5,
        reprobe_seconds: float | None = None,
        redis_factory: Callable[..., Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._redis_url = redis_url
        self.connect_attempts = max(1, connect_attempts)
        self.connect_backoff = connect_backoff
        self.reprobe_seconds = reprobe_seconds
        self._factory = redis_factory or redis.from_url
        self._clock = clock
        self._sleep = sleep
        self.local = LocalCache(clock)
        self._redis: redis.Redis | None = None
        self._connect_lock = asyncio.Lock()
        self._fallback_only = False
        self._gave_up_at: float | None = None
        self._counters = {"primary_hits": 0, "local_hits": 0, "misses": 0, "primary_errors": 0}

    @property
    def fallback_only(self) -> bool:
        return self._fallback_only

    def _may_connect(self) -> bool:
        if not self._fallback_only:
            return True
        if self.reprobe_seconds is None or self._gave_up_at is None:
            return False
        return self._clock() - self._gave_up_at >= self.reprobe_seconds

    async def _get_redis(self) -> redis.Redis | None:
        if self._redis is not None:
            return self._redis
        if not self._may_connect():
            return None
        async with self._connect_lock:
            if self._redis is not None:
                return self._redis
            if not self._may_connect():
                return None
            return await self._connect()

    async def _connect(self) -> redis.Redis | None:
        for attempt in range(1, self.connect_attempts + 1):
            client = None
            try:
                client = self._factory(self._redis_url, encoding="utf-8", decode_responses=True)
                await client.ping()
            except Exception as e:
                logger.warning(
                    f"Redis connection attempt {attempt}/{self.connect_attempts} failed: {e}"
                )
                await self._discard(client)
                if attempt < self.connect_attempts:
                    await self._sleep(self.connect_backoff * 2 ** (attempt - 1))
                continue
            self._redis = client
            self._fallback_only = False
            self._gave_up_at = None
            logger.info("Redis cache connected")
            return client

        self._fallback_only = True
        self._gave_up_at = self._clock()
        logger.warning(
            f"Redis unavailable after {self.connect_attempts} attempts, using local cache only"
        )
        return None

    @staticmethod
    async def _discard(client: Any) -> None:
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as e:
            logger.debug(f"Ignoring error while closing failed Redis client: {e}")

    async def get(self, key: str) -> Any | None:
        """Get a value. Primary first, then local. Returns None on miss or error."""
        r = await self._get_redis()
        if r is not None:
            try:
                raw = await r.get(key)
                if raw is not None:
                    self._counters["primary_hits"] += 1
                    return json.loads(raw)
            except Exception as e:
                self._counters["primary_errors"] += 1
                logger.warning(f"Redis get failed for {key}: {e}")

        raw = self.local.get(key)
        if raw is None:
            self._counters["misses"] += 1
            return None
        self._counters["local_hits"] += 1
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int = TTL_AVAILABILITY) -> bool:
        """Store in both tiers. The local tier is always written; returns True if Redis took it too."""
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cannot serialize cache value for {key}: {e}")
            return False

        self.local.set(key, raw, ttl)
        r = await self._get_redis()
        if r is None:
            return False
        try:
            await r.set(key, raw, ex=ttl)
            return True
        except Exception as e:
            self._counters["primary_errors"] += 1
            logger.warning(f"Redis set failed for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        removed = self.local.delete(key)
        r = await self._get_redis()
        if r is not None:
            try:
                removed = bool(await r.delete(key)) or removed
            except Exception as e:
                self._counters["primary_errors"] += 1
                logger.warning(f"Redis delete failed for {key}: {e}")
        return removed

    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix`` in both tiers."""
        removed = set(self.local.delete_prefix(prefix))
        r = await self._get_redis()
        if r is not None:
            try:
                keys = [k async for k in r.scan_iter(match=f"{prefix}*")]
                if keys:
                    await r.delete(*keys)
                removed.update(keys)
            except Exception as e:
                self._counters["primary_errors"] += 1
                logger.warning(f"Redis invalidation failed for {prefix}*: {e}")
        if removed:
            logger.info(f"Invalidated {len(removed)} cache keys under {prefix}")
        return len(removed)

    async def clear_all(self) -> None:
        self.local.clear()
        for prefix in KEY_PREFIXES:
            await self.invalidate_prefix(prefix)

    def stats(self) -> dict[str, Any]:
        return {
            "primary": "connected" if self._redis is not None else (
                "fallback_only" if self._fallback_only else "not_connected"
            ),
            "local_entries": len(self.local),
            **self._counters,
        }

    # Typed key helpers

    def availability_key(self, property_id: str, room_id: str, start: str, end: str, mode: str) -> str:
        return f"availability:{property_id}:{room_id}:{start}:{end}:{mode}"

    def pricing_key(
        self,
        property_id: str,
        room_id: str,
        start: str,
        end: str,
        adults: int,
        children: int,
        tier: str,
    ) -> str:
        return f"pricing:{property_id}:{room_id}:{start}:{end}:{adults}a{children}c:{tier}"

    def property_key(self, property_id: str) -> str:
        return f"property:{property_id}"

    def booking_rules_key(self, property_id: str, room_id: str, check_in: str) -> str:
        return f"booking_rules:{property_id}:{room_id}:{check_in}"

    def property_prefixes(self, property_id: str) -> list[str]:
        """Key prefixes that a change to the property's bookings or rates makes stale."""
        return [
            f"availability:{property_id}:",
            f"pricing:{property_id}:",
            f"booking_rules:{property_id}:",
        ]

    async def close(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None
