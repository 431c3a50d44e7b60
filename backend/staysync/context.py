"""Clients, cache and adapters shared by every request."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx

from staysync.config import PricingConfig, Settings
from staysync.config import settings as default_settings
from staysync.models import Occupancy
from staysync.services.adapters import (
    BookingsAdapter,
    CalendarAdapter,
    OffersAdapter,
    SourceAdapter,
)
from staysync.services.beds24_client import Beds24Client
from staysync.services.cache_service import CacheService
from staysync.services.pricing import PricingEngine
from staysync.services.rate_limiter import RateLimiter


@dataclass
class EngineContext:
    settings: Settings
    client: Beds24Client
    cache: CacheService
    pricing: PricingEngine
    bookings: SourceAdapter
    calendar: SourceAdapter
    offers: SourceAdapter
    today: Callable[[], date] = date.today
    inflight: dict[str, Any] = field(default_factory=dict)

    async def close(self):
        await self.client.close()
        await self.cache.close()


def build_context(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    redis_factory: Callable[..., Any] | None = None,
) -> EngineContext:
    """Wire one context per upstream account. Build it once at startup."""
    settings = settings or default_settings
    limiter = RateLimiter(
        min_delay=settings.rate_limit_min_delay,
        max_per_minute=settings.rate_limit_per_minute,
    )
    client = Beds24Client(settings, limiter, transport=transport)
    cache = CacheService(
        settings.redis_url,
        connect_attempts=settings.cache_connect_attempts,
        connect_backoff=settings.cache_connect_backoff,
        reprobe_seconds=settings.cache_reprobe_seconds,
        redis_factory=redis_factory,
    )
    base = Occupancy(settings.base_adults, settings.base_children)
    return EngineContext(
        settings=settings,
        client=client,
        cache=cache,
        pricing=PricingEngine(PricingConfig.from_settings(settings)),
        bookings=BookingsAdapter(client),
        calendar=CalendarAdapter(client),
        offers=OffersAdapter(client, base),
    )
