"""Merge the three adapter results into one canonical availability window.

Pure and CPU-only: no I/O, no clock reads (the caller passes ``today``).

Per date:
  1. past dates are unavailable (``past_date``)
  2. booked when the bookings or calendar block set contains it
  3. in BOOKING mode, no offer entry for the date means unavailable (``no_offer``)
  4. price precedence: offers > calendar > bookings estimate > unresolved
"""

import logging
from datetime import date
from decimal import Decimal

from staysync.errors import UpstreamUnavailable
from staysync.models import (
    DEFAULT_MAX_STAY,
    DEFAULT_MIN_STAY,
    AdapterResult,
    AvailabilityWindow,
    DateAvailability,
    DateRange,
    ReconciliationMode,
    Source,
)

logger = logging.getLogger(__name__)


def _usable(result: AdapterResult | None) -> AdapterResult | None:
    return result if result is not None and result.ok else None


def resolve_price(
    day: date,
    bookings: AdapterResult | None,
    calendar: AdapterResult | None,
    offers: AdapterResult | None,
) -> tuple[Decimal | None, Source]:
    for result, source in ((offers, Source.OFFERS), (calendar, Source.CALENDAR), (bookings, Source.BOOKINGS)):
        if result is None:
            continue
        price = result.price_for(day)
        if price is not None and price > 0:
            return price, source
    return None, Source.NONE


def _stay_limits(*results: AdapterResult | None) -> tuple[int, int]:
    min_stay = next((r.min_stay for r in results if r and r.min_stay), None)
    max_stay = next((r.max_stay for r in results if r and r.max_stay), None)
    min_stay = min_stay or DEFAULT_MIN_STAY
    max_stay = max_stay or DEFAULT_MAX_STAY
    if max_stay < min_stay:
        max_stay = min_stay
    return min_stay, max_stay


def reconcile(
    property_id: str,
    room_id: str,
    date_range: DateRange,
    mode: ReconciliationMode,
    bookings: AdapterResult | None,
    calendar: AdapterResult | None,
    offers: AdapterResult | None = None,
    today: date | None = None,
) -> AvailabilityWindow:
    supplied = [r for r in (bookings, calendar, offers) if r is not None]
    if supplied and not any(r.ok for r in supplied):
        raise UpstreamUnavailable({r.source: r.error or "failed" for r in supplied})

    today = today or date.today()
    offers_ran = offers is not None
    bookings, calendar, offers = _usable(bookings), _usable(calendar), _usable(offers)

    booked = bookings.blocked if bookings else set()
    blocked = calendar.blocked if calendar else set()

    days: list[DateAvailability] = []
    for day in date_range.dates():
        price, price_source = resolve_price(day, bookings, calendar, offers)

        if day < today:
            state, source = False, Source.PAST_DATE
        elif day in booked:
            state, source = False, Source.BOOKINGS
        elif day in blocked:
            state, source = False, Source.CALENDAR
        elif (
            mode == ReconciliationMode.BOOKING
            and offers_ran
            and (offers is None or day not in offers.entries)
        ):
            state, source = False, Source.NO_OFFER
        else:
            state, source = True, price_source

        days.append(DateAvailability(
            date=day,
            is_available=state,
            is_booked=not state,
            price=price,
            source=source,
        ))

    failed = [r.source for r in supplied if not r.ok]
    min_stay, max_stay = _stay_limits(calendar, offers, bookings)
    window = AvailabilityWindow(
        property_id=property_id,
        room_id=room_id,
        range=date_range,
        mode=mode,
        days=days,
        min_stay=min_stay,
        max_stay=max_stay,
        complete=not failed,
    )

    if failed:
        logger.warning(f"Reconciled {property_id}/{room_id} without {', '.join(failed)}")
    logger.debug(
        f"Reconciled {property_id}/{room_id} {mode.value}: "
        f"{len(window.available_dates())}/{len(days)} available"
    )
    return window
