import pytest

from conftest import CountingRedisFactory, DownRedis, FakeClock, FakeRedis, no_sleep
from staysync.services.cache_service import TTL_AVAILABILITY, TTL_PRICING, CacheService, LocalCache


def _service(factory, **kwargs) -> CacheService:
    kwargs.setdefault("sleep", no_sleep)
    return CacheService("redis://fake:6379/0", redis_factory=factory, **kwargs)


class FlakyRedis(FakeRedis):
    async def get(self, key):
        raise ConnectionError("socket closed")


class TestLocalCache:
    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = LocalCache(clock)
        cache.set("a", "1", ttl=10)
        assert cache.get("a") == "1"
        clock.now += 10
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_delete_prefix(self):
        cache = LocalCache()
        cache.set("availability:1:a", "x", 60)
        cache.set("availability:1:b", "y", 60)
        cache.set("availability:2:a", "z", 60)
        assert sorted(cache.delete_prefix("availability:1:")) == ["availability:1:a", "availability:1:b"]
        assert len(cache) == 1


class TestCacheService:
    @pytest.mark.asyncio
    async def test_round_trip_through_primary(self, fake_redis):
        cache = _service(lambda *a, **kw: fake_redis)
        assert await cache.set("availability:k", {"days": [1, 2]}, TTL_AVAILABILITY) is True
        assert fake_redis.ttls["availability:k"] == TTL_AVAILABILITY

        assert await cache.get("availability:k") == {"days": [1, 2]}
        assert cache.stats()["primary_hits"] == 1

    @pytest.mark.asyncio
    async def test_primary_down_at_startup_uses_local_tier(self):
        factory = CountingRedisFactory(DownRedis())
        sleeps = []

        async def record(seconds):
            sleeps.append(seconds)

        cache = _service(factory, connect_attempts=3, connect_backoff=0.5, sleep=record)

        assert await cache.set("pricing:k", {"total": "100.00"}, TTL_PRICING) is False
        assert await cache.get("pricing:k") == {"total": "100.00"}
        assert cache.fallback_only
        assert factory.calls == 3
        assert sleeps == [0.5, 1.0]

        # fallback-only for the rest of the process
        await cache.get("pricing:k")
        await cache.delete("pricing:k")
        assert factory.calls == 3
        assert cache.stats()["primary"] == "fallback_only"

    @pytest.mark.asyncio
    async def test_reprobe_after_interval(self):
        clock = FakeClock()
        primary = DownRedis()
        factory = CountingRedisFactory(primary)
        cache = _service(factory, connect_attempts=1, reprobe_seconds=30, clock=clock)

        await cache.get("k")
        assert cache.fallback_only and factory.calls == 1

        clock.now += 10
        await cache.get("k")
        assert factory.calls == 1

        factory.client = FakeRedis()
        clock.now += 25
        await cache.get("k")
        assert factory.calls == 2
        assert not cache.fallback_only
        assert cache.stats()["primary"] == "connected"

    @pytest.mark.asyncio
    async def test_primary_read_error_falls_back_to_local(self):
        cache = _service(lambda *a, **kw: FlakyRedis())
        await cache.set("availability:k", [1], TTL_AVAILABILITY)
        assert await cache.get("availability:k") == [1]
        assert cache.stats()["primary_errors"] == 1
        assert cache.stats()["local_hits"] == 1

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, fake_redis):
        cache = _service(lambda *a, **kw: fake_redis)
        assert await cache.get("nothing") is None
        assert cache.stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_unserializable_value_is_not_cached(self, fake_redis):
        cache = _service(lambda *a, **kw: fake_redis)
        loop = []
        loop.append(loop)
        assert await cache.set("k", loop) is False
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_invalidate_prefix_clears_both_tiers(self, fake_redis):
        cache = _service(lambda *a, **kw: fake_redis)
        await cache.set("availability:227484:483027:a", 1)
        await cache.set("availability:227484:483027:b", 2)
        await cache.set("availability:161445:357931:a", 3)

        assert await cache.invalidate_prefix("availability:227484:") == 2
        assert await cache.get("availability:227484:483027:a") is None
        assert await cache.get("availability:161445:357931:a") == 3
        assert "availability:227484:483027:b" not in fake_redis.store

    @pytest.mark.asyncio
    async def test_delete_and_clear_all(self, fake_redis):
        cache = _service(lambda *a, **kw: fake_redis)
        await cache.set("property:227484", {"name": "x"})
        await cache.set("pricing:227484:a", {"total": "1"})

        assert await cache.delete("property:227484") is True
        assert await cache.get("property:227484") is None

        await cache.clear_all()
        assert fake_redis.store == {}
        assert len(cache.local) == 0

    @pytest.mark.asyncio
    async def test_close_releases_connection(self, fake_redis):
        cache = _service(lambda *a, **kw: fake_redis)
        await cache.get("k")
        await cache.close()
        assert fake_redis.closed

    def test_key_helpers(self):
        cache = _service(lambda *a, **kw: FakeRedis())
        key = cache.availability_key("227484", "483027", "2025-11-03", "2025-11-06", "booking")
        assert key == "availability:227484:483027:2025-11-03:2025-11-06:booking"
        assert cache.pricing_key("1", "2", "a", "b", 3, 1, "GOLD") == "pricing:1:2:a:b:3a1c:GOLD"
        assert all(p.endswith("227484:") for p in cache.property_prefixes("227484"))
        assert key.startswith(cache.property_prefixes("227484")[0])
