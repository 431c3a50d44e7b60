"""Operations exposed to calling layers (pages, API routes, admin hooks).

Flow for a window: cache -> (miss) adapters in parallel behind the shared
rate limiter -> reconciler -> cache -> caller. Quotes reuse the same window in
BOOKING mode and are cached separately per occupancy and loyalty tier.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

from staysync.errors import (
    AuthError,
    DatesUnavailableError,
    InvalidStayError,
    StaySyncError,
    UpstreamTransportError,
)
from staysync.models import (
    DEFAULT_MAX_STAY,
    DEFAULT_MIN_STAY,
    AdapterResult,
    AvailabilityWindow,
    BookingQuote,
    DateRange,
    LoyaltyTier,
    Occupancy,
    ReconciliationMode,
)
from staysync.services.cache_service import (
    TTL_AVAILABILITY,
    TTL_BOOKING_RULES,
    TTL_PRICING,
    TTL_PROPERTY,
)
from staysync.services.normalize import extract_items, first_present, to_int
from staysync.services.reconciler import reconcile

if TYPE_CHECKING:
    from staysync.context import EngineContext
    from staysync.services.adapters import SourceAdapter

logger = logging.getLogger(__name__)


class _SharedFetch:
    """One in-flight window computation and the number of callers awaiting it."""

    def __init__(self, task: asyncio.Future):
        self.task = task
        self.waiters = 0


async def _run_adapter(
    ctx: "EngineContext",
    adapter: "SourceAdapter",
    property_id: str,
    room_id: str,
    date_range: DateRange,
) -> AdapterResult:
    """One adapter call. Transport failures, timeouts included, become "no data".

    The per-call timeout lives in the client and starts after the rate limiter
    grants the slot, so time spent queued behind other calls never counts.
    """
    try:
        return await adapter.fetch(property_id, room_id, date_range)
    except AuthError:
        raise
    except UpstreamTransportError as e:
        logger.warning(f"{adapter.source} adapter failed: {e}")
        return AdapterResult.failed(adapter.source, str(e))


async def _compute_window(
    ctx: "EngineContext",
    property_id: str,
    room_id: str,
    date_range: DateRange,
    mode: ReconciliationMode,
    key: str,
) -> AvailabilityWindow:
    bookings, calendar, offers = await asyncio.gather(
        _run_adapter(ctx, ctx.bookings, property_id, room_id, date_range),
        _run_adapter(ctx, ctx.calendar, property_id, room_id, date_range),
        _run_adapter(ctx, ctx.offers, property_id, room_id, date_range),
    )
    window = reconcile(
        property_id,
        room_id,
        date_range,
        mode,
        bookings,
        calendar,
        offers,
        today=ctx.today(),
    )
    if window.complete:
        await ctx.cache.set(key, window.to_dict(), TTL_AVAILABILITY)
    else:
        logger.info(f"Not caching {key}: built without every source")
    return window


async def get_availability(
    ctx: "EngineContext",
    property_id: str,
    room_id: str,
    date_range: DateRange,
    mode: ReconciliationMode | str = ReconciliationMode.CALENDAR_DISPLAY,
) -> AvailabilityWindow:
    """Canonical window for a room. Occupancy is not part of the key."""
    mode = ReconciliationMode(mode)
    key = ctx.cache.availability_key(
        property_id, room_id, date_range.start.isoformat(), date_range.end.isoformat(), mode.value
    )

    cached = await ctx.cache.get(key)
    if cached is not None:
        try:
            return AvailabilityWindow.from_dict(cached)
        except (KeyError, TypeError, ValueError, StaySyncError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")

    # identical concurrent requests share one computation
    flight = ctx.inflight.get(key)
    if flight is None:
        flight = _SharedFetch(asyncio.ensure_future(
            _compute_window(ctx, property_id, room_id, date_range, mode, key)
        ))
        ctx.inflight[key] = flight

        def _done(t: asyncio.Future) -> None:
            if ctx.inflight.get(key) is flight:
                del ctx.inflight[key]
            if not t.cancelled():
                t.exception()  # mark retrieved; waiters re-raise it

        flight.task.add_done_callback(_done)
    else:
        logger.debug(f"Joining in-flight request for {key}")

    flight.waiters += 1
    try:
        return await asyncio.shield(flight.task)
    finally:
        flight.waiters -= 1
        if flight.waiters == 0 and not flight.task.done():
            # the last caller gave up (cancelled or timed out): stop the fan-out
            logger.debug(f"Cancelling abandoned request for {key}")
            if ctx.inflight.get(key) is flight:
                del ctx.inflight[key]
            flight.task.cancel()


async def get_quote(
    ctx: "EngineContext",
    property_id: str,
    room_id: str,
    date_range: DateRange,
    occupancy: Occupancy | None = None,
    loyalty_tier: LoyaltyTier | str | None = None,
) -> BookingQuote:
    """Itemized quote for a stay. Only bookable (BOOKING-mode) nights can be quoted."""
    occupancy = occupancy or Occupancy()
    tier = LoyaltyTier(loyalty_tier) if loyalty_tier else None
    key = ctx.cache.pricing_key(
        property_id,
        room_id,
        date_range.start.isoformat(),
        date_range.end.isoformat(),
        occupancy.adults,
        occupancy.children,
        tier.value if tier else "none",
    )

    cached = await ctx.cache.get(key)
    if cached is not None:
        try:
            return BookingQuote.from_dict(cached)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")

    window = await get_availability(ctx, property_id, room_id, date_range, ReconciliationMode.BOOKING)

    nights = date_range.nights
    if nights < window.min_stay:
        raise InvalidStayError(f"Minimum stay is {window.min_stay} nights, requested {nights}")
    if nights > window.max_stay:
        raise InvalidStayError(f"Maximum stay is {window.max_stay} nights, requested {nights}")

    unavailable = [d.date for d in window.days if not d.is_available]
    if unavailable:
        raise DatesUnavailableError(unavailable)

    quote = ctx.pricing.compute_quote(
        window, nights, occupancy.adults, occupancy.children, tier, check_in=date_range.start
    )
    if window.complete:
        await ctx.cache.set(key, quote.to_dict(), TTL_PRICING)
    logger.info(
        f"Quote {property_id}/{room_id} {date_range.start}..{date_range.end} "
        f"{occupancy.adults}a{occupancy.children}c: {quote.total} {quote.currency}"
    )
    return quote


async def invalidate(
    ctx: "EngineContext",
    property_id: str | None = None,
    key: str | None = None,
) -> int:
    """Drop cached data after a mutation (new booking, rate edit). Returns keys removed."""
    if key:
        return int(await ctx.cache.delete(key))
    if property_id:
        removed = 0
        for prefix in ctx.cache.property_prefixes(property_id):
            removed += await ctx.cache.invalidate_prefix(prefix)
        return removed
    raise ValueError("invalidate() needs a property_id or a key")


async def get_batch_availability(
    ctx: "EngineContext",
    rooms: list[tuple[str, str]],
    date_range: DateRange,
    mode: ReconciliationMode | str = ReconciliationMode.CALENDAR_DISPLAY,
) -> dict[tuple[str, str], AvailabilityWindow | None]:
    """Windows for several (property_id, room_id) pairs; a failing room maps to None."""
    results = await asyncio.gather(
        *(get_availability(ctx, pid, rid, date_range, mode) for pid, rid in rooms),
        return_exceptions=True,
    )
    windows: dict[tuple[str, str], AvailabilityWindow | None] = {}
    for room, result in zip(rooms, results):
        if isinstance(result, AvailabilityWindow):
            windows[room] = result
        elif isinstance(result, StaySyncError) and not isinstance(result, AuthError):
            logger.warning(f"Batch availability failed for {room[0]}/{room[1]}: {result}")
            windows[room] = None
        else:
            # credentials problems and programming errors are not per-room
            raise result
    return windows


async def get_booking_rules(
    ctx: "EngineContext",
    property_id: str,
    room_id: str,
    check_in: date,
) -> dict[str, int]:
    """Minimum and maximum stay for an arrival on ``check_in``."""
    key = ctx.cache.booking_rules_key(property_id, room_id, check_in.isoformat())
    cached = await ctx.cache.get(key)
    if isinstance(cached, dict):
        return cached

    night = DateRange(check_in, check_in + timedelta(days=1))
    result = await _run_adapter(ctx, ctx.calendar, property_id, room_id, night)
    rules = {
        "min_stay": result.min_stay or DEFAULT_MIN_STAY,
        "max_stay": result.max_stay or DEFAULT_MAX_STAY,
    }
    if result.ok:
        await ctx.cache.set(key, rules, TTL_BOOKING_RULES)
    return rules


def _summarize_property(item: dict) -> dict[str, Any]:
    rooms = item.get("roomTypes") or item.get("rooms") or []
    return {
        "id": str(first_present(item, "id", "propId")),
        "name": first_present(item, "name", "propName") or "",
        "currency": first_present(item, "currency"),
        "rooms": [
            {
                "id": str(first_present(room, "id", "roomId")),
                "name": first_present(room, "name") or "",
                "max_people": to_int(first_present(room, "maxPeople", "maxGuests")),
                "qty": to_int(first_present(room, "qty", "units")),
            }
            for room in rooms
            if isinstance(room, dict)
        ],
    }


async def get_property_metadata(ctx: "EngineContext", property_id: str) -> dict[str, Any] | None:
    """Static property and room data, cached for the property TTL."""
    key = ctx.cache.property_key(property_id)
    cached = await ctx.cache.get(key)
    if cached is not None:
        return cached

    payload = await ctx.client.get_properties(property_id)
    for item in extract_items(payload, "data", "properties"):
        if isinstance(item, dict) and str(first_present(item, "id", "propId")) == str(property_id):
            metadata = _summarize_property(item)
            await ctx.cache.set(key, metadata, TTL_PROPERTY)
            return metadata

    logger.info(f"Property {property_id} not returned by upstream")
    return None
