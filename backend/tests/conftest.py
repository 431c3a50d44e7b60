"""Pytest configuration and shared fixtures for the staysync engine tests.

- FakeRedis: in-memory stand-in for redis.asyncio (get/set/delete/scan_iter)
- FakeAdapter: scripted adapter results with call counting
- make_context: EngineContext wired with fakes, a fixed "today" and no sleeps
- sample upstream payloads shaped like Beds24 v2 responses
"""

import asyncio
import fnmatch
from datetime import date
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from staysync.config import Settings
from staysync.context import EngineContext
from staysync.errors import UpstreamTransportError
from staysync.models import AdapterResult, DateRange
from staysync.services.cache_service import CacheService
from staysync.services.pricing import PricingEngine

TODAY = date(2025, 11, 1)
PROP_ID = "227484"
ROOM_ID = "483027"


async def no_sleep(_seconds: float) -> None:
    return None


# === Fakes ===


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.closed = False

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        self.closed = True


class DownRedis(FakeRedis):
    """Primary tier that never answers."""

    async def ping(self):
        raise RedisConnectionError("Connection refused")


class CountingRedisFactory:
    """Stands in for redis.asyncio.from_url and counts connection attempts."""

    def __init__(self, client: FakeRedis):
        self.client = client
        self.calls = 0

    def __call__(self, *args, **kwargs) -> FakeRedis:
        self.calls += 1
        return self.client


class FakeClock:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeAdapter:
    def __init__(
        self,
        source: str,
        result: AdapterResult | None = None,
        error: Exception | None = None,
        delay: float = 0,
        fail_rooms: set[str] | None = None,
    ):
        self.source = source
        self.result = result if result is not None else AdapterResult(source=source)
        self.error = error
        self.delay = delay
        self.fail_rooms = fail_rooms or set()
        self.calls = 0
        self.cancelled = 0

    async def fetch(self, prop_id: str, room_id: str, date_range: DateRange) -> AdapterResult:
        self.calls += 1
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if self.error is not None:
            raise self.error
        if room_id in self.fail_rooms:
            raise UpstreamTransportError(f"{self.source} down for {room_id}", 503)
        return self.result


class FakeClient:
    def __init__(self, properties: Any = None):
        self.properties = properties if properties is not None else {"data": []}
        self.property_calls = 0
        self.closed = False

    async def get_properties(self, prop_id=None):
        self.property_calls += 1
        return self.properties

    async def close(self):
        self.closed = True


# === Fixtures ===


@pytest.fixture
def settings() -> Settings:
    return Settings(
        beds24_long_life_token="test-long-life-token",
        beds24_refresh_token="",
        beds24_access_token="",
        redis_url="redis://fake:6379/0",
        rate_limit_min_delay=0,
        rate_limit_per_minute=1000,
        adapter_timeout=1.0,
    )


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def make_cache(fake_redis):
    def _make(primary: FakeRedis | None = None, **kwargs) -> CacheService:
        target = primary if primary is not None else fake_redis
        kwargs.setdefault("sleep", no_sleep)
        return CacheService("redis://fake:6379/0", redis_factory=lambda *a, **kw: target, **kwargs)

    return _make


@pytest.fixture
def make_context(settings, make_cache):
    def _make(
        bookings: FakeAdapter | None = None,
        calendar: FakeAdapter | None = None,
        offers: FakeAdapter | None = None,
        cache: CacheService | None = None,
        client: FakeClient | None = None,
    ) -> EngineContext:
        return EngineContext(
            settings=settings,
            client=client or FakeClient(),
            cache=cache or make_cache(),
            pricing=PricingEngine(),
            bookings=bookings or FakeAdapter("bookings"),
            calendar=calendar or FakeAdapter("calendar"),
            offers=offers or FakeAdapter("offers"),
            today=lambda: TODAY,
        )

    return _make


# === Sample upstream payloads ===


@pytest.fixture
def bookings_payload() -> dict:
    return {
        "success": True,
        "data": [
            {
                "id": 1001,
                "roomId": 483027,
                "status": "confirmed",
                "arrival": "2025-11-03",
                "departure": "2025-11-05",
                "price": 240,
                "rateDescription": "2025-11-03 (Standard) EUR 115.00\n2025-11-04 (Standard) EUR 125.00",
            },
            {
                "id": 1002,
                "roomId": 483027,
                "status": "new",
                "arrival": "2025-11-07",
                "departure": "2025-11-10",
                "price": "300.00",
            },
            {
                "id": 1003,
                "roomId": 483027,
                "status": "cancelled",
                "arrival": "2025-11-05",
                "departure": "2025-11-06",
                "price": 90,
            },
            {
                "id": 1004,
                "roomId": 357932,
                "status": "confirmed",
                "arrival": "2025-11-05",
                "departure": "2025-11-06",
                "price": 90,
            },
        ],
    }


@pytest.fixture
def calendar_payload() -> dict:
    return {
        "success": True,
        "data": [
            {
                "roomId": 483027,
                "calendar": [
                    {"from": "2025-11-01", "to": "2025-11-09", "numAvail": 1, "price1": 110, "minStay": 2, "maxStay": 14},
                    {"from": "2025-11-06", "to": "2025-11-06", "numAvail": 0, "price1": 110},
                    {"date": "2025-11-08", "numAvail": 1, "price1": "130.50"},
                ],
            }
        ],
    }


@pytest.fixture
def offers_payload() -> dict:
    return {
        "success": True,
        "data": [
            {
                "roomId": 483027,
                "propertyId": 227484,
                "offers": [
                    {"offerId": 1, "offerName": "Flexible", "price": 360, "unitsAvailable": 1},
                    {"offerId": 2, "offerName": "Non-refundable", "price": 330, "unitsAvailable": 1},
                ],
            }
        ],
    }
