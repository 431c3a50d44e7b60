"""Normalize the bookings, calendar and offers feeds into per-date maps.

Each adapter returns an ``AdapterResult``. Empty upstream answers are a valid
(empty) result; only transport and auth failures raise.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from staysync.models import AdapterResult, DateRange, DayInfo, Occupancy, money
from staysync.services.normalize import (
    extract_items,
    first_present,
    iter_days,
    iter_nights,
    parse_day,
    parse_rate_description,
    to_decimal_price,
    to_int,
)

if TYPE_CHECKING:
    from staysync.services.beds24_client import Beds24Client

logger = logging.getLogger(__name__)

ACTIVE_BOOKING_STATUSES = {"new", "request", "confirmed", "1", "2"}
BLOCKED_CALENDAR_STATUSES = {"blocked", "unavailable", "closed", "booked", "black", "blackout"}

PRICE_ALIASES = ("price1", "price", "rate", "amount", "dailyPrice")
AVAIL_COUNT_ALIASES = ("numAvail", "numAvailable", "availability", "qty", "available")


def _same_room(item: dict, room_id: str) -> bool:
    item_room = first_present(item, "roomId", "room_id")
    return item_room is None or not room_id or str(item_room) == str(room_id)


class SourceAdapter(ABC):
    source = "base"

    def __init__(self, client: "Beds24Client"):
        self._client = client

    @abstractmethod
    async def fetch(self, prop_id: str, room_id: str, date_range: DateRange) -> AdapterResult:
        ...


class BookingsAdapter(SourceAdapter):
    """Active reservations expanded to booked nights, with a per-night price where derivable."""

    source = "bookings"

    async def fetch(self, prop_id: str, room_id: str, date_range: DateRange) -> AdapterResult:
        payload = await self._client.get_bookings(prop_id, room_id, date_range)
        return self.parse(payload, room_id, date_range)

    def parse(self, payload: Any, room_id: str, date_range: DateRange) -> AdapterResult:
        entries: dict[date, DayInfo] = {}
        kept = 0

        for item in extract_items(payload, "data", "bookings"):
            if not isinstance(item, dict) or not _same_room(item, room_id):
                continue
            status = first_present(item, "status", "bookingStatus")
            if str(status).lower() not in ACTIVE_BOOKING_STATUSES:
                continue

            arrival = parse_day(first_present(item, "arrival", "checkIn", "firstNight"))
            departure = parse_day(first_present(item, "departure", "checkOut", "lastNight"))
            if not arrival or not departure or departure <= arrival:
                continue
            nights = iter_nights(arrival, departure)
            kept += 1

            described = parse_rate_description(first_present(item, "rateDescription", "rate_description"))
            estimate = self._even_split(first_present(item, "price", "totalPrice", "total"), len(nights))

            for night in nights:
                if night not in date_range:
                    continue
                existing = entries.get(night)
                price = described.get(night) or (existing.price if existing else None) or estimate
                entries[night] = DayInfo(available=False, price=price)

        logger.debug(f"Bookings: {kept} active bookings, {len(entries)} booked nights in range")
        return AdapterResult(source=self.source, entries=entries)

    @staticmethod
    def _even_split(total: Any, nights: int) -> Decimal | None:
        amount = to_decimal_price(total)
        if amount is None or nights <= 0:
            return None
        per_night = money(amount / nights)
        return per_night if per_night > 0 else None


class CalendarAdapter(SourceAdapter):
    """Inventory calendar: blocks, explicit prices and stay limits."""

    source = "calendar"

    async def fetch(self, prop_id: str, room_id: str, date_range: DateRange) -> AdapterResult:
        payload = await self._client.get_calendar(prop_id, room_id, date_range)
        return self.parse(payload, room_id, date_range)

    def parse(self, payload: Any, room_id: str, date_range: DateRange) -> AdapterResult:
        entries: dict[date, DayInfo] = {}

        # later entries override earlier ones for the same date
        for item in self._calendar_items(payload, room_id):
            if not isinstance(item, dict):
                continue
            days = self._entry_days(item)
            if not days:
                continue
            info_blocked = self._is_blocked(item)
            price = to_decimal_price(first_present(item, *PRICE_ALIASES))
            min_stay = to_int(first_present(item, "minStay", "min_stay"))
            max_stay = to_int(first_present(item, "maxStay", "max_stay"))
            for day in days:
                if day in date_range:
                    entries[day] = DayInfo(
                        available=not info_blocked,
                        price=price,
                        min_stay=min_stay,
                        max_stay=max_stay,
                    )

        first = entries.get(date_range.start)
        return AdapterResult(
            source=self.source,
            entries=entries,
            min_stay=first.min_stay if first else None,
            max_stay=first.max_stay if first else None,
        )

    @staticmethod
    def _calendar_items(payload: Any, room_id: str) -> list[Any]:
        items = extract_items(payload, "data", "calendar")
        rooms = [i for i in items if isinstance(i, dict) and isinstance(i.get("calendar"), list)]
        if not rooms:
            return items
        flattened: list[Any] = []
        for room in rooms:
            if _same_room(room, room_id):
                flattened.extend(room["calendar"])
        return flattened

    @staticmethod
    def _entry_days(item: dict) -> list[date]:
        start = parse_day(item.get("from"))
        end = parse_day(item.get("to"))
        if start and end and end >= start:
            return iter_days(start, end)
        single = parse_day(first_present(item, "date", "day"))
        return [single] if single else []

    @staticmethod
    def _is_blocked(item: dict) -> bool:
        if item.get("blocked") is True or item.get("closed") is True:
            return True
        if item.get("available") is False:
            return True
        status = first_present(item, "status", "state")
        if isinstance(status, str) and status.lower() in BLOCKED_CALENDAR_STATUSES:
            return True
        count = to_int(first_present(item, *AVAIL_COUNT_ALIASES))
        return count is not None and count <= 0


class OffersAdapter(SourceAdapter):
    """Occupancy-specific quote feed; its prices are authoritative when present.

    Queried with a fixed base occupancy so reconciled windows stay independent
    of the guest count.
    """

    source = "offers"

    def __init__(self, client: "Beds24Client", occupancy: Occupancy | None = None):
        super().__init__(client)
        self.occupancy = occupancy or Occupancy()

    async def fetch(self, prop_id: str, room_id: str, date_range: DateRange) -> AdapterResult:
        payload = await self._client.get_offers(prop_id, room_id, date_range, self.occupancy)
        result = self.parse(payload, room_id, date_range)
        if not result.entries:
            logger.info(f"Offers: no offers for room {room_id} {date_range.start}..{date_range.end}")
        return result

    def parse(self, payload: Any, room_id: str, date_range: DateRange) -> AdapterResult:
        best: dict[date, Decimal] = {}

        for item in extract_items(payload, "data", "offers"):
            if not isinstance(item, dict) or not _same_room(item, room_id):
                continue
            offers = item["offers"] if isinstance(item.get("offers"), list) else [item]
            for offer in offers:
                if not isinstance(offer, dict):
                    continue
                for day, price in self._offer_prices(offer, item, date_range).items():
                    # several rate plans for one night: keep the lowest
                    if day in date_range and (day not in best or price < best[day]):
                        best[day] = price

        entries = {day: DayInfo(available=True, price=price) for day, price in best.items()}
        return AdapterResult(source=self.source, entries=entries)

    @staticmethod
    def _offer_prices(offer: dict, parent: dict, date_range: DateRange) -> dict[date, Decimal]:
        units = to_int(first_present(offer, "unitsAvailable", "numAvail", "qty", "available"))
        if units is not None and units <= 0:
            return {}

        single = parse_day(first_present(offer, "date", "day"))
        if single:
            price = to_decimal_price(first_present(offer, "dailyPrice", "price", "rate", "amount"))
            return {single: price} if price else {}

        # per-stay offer: spread the stay total evenly over its nights
        arrival = (
            parse_day(first_present(offer, "arrival", "checkIn"))
            or parse_day(first_present(parent, "arrival", "checkIn"))
            or date_range.start
        )
        departure = (
            parse_day(first_present(offer, "departure", "checkOut"))
            or parse_day(first_present(parent, "departure", "checkOut"))
            or date_range.end
        )
        nights = iter_nights(arrival, departure)
        total = to_decimal_price(first_present(offer, "price", "total", "totalPrice"))
        if not nights or total is None:
            return {}
        per_night = money(total / len(nights))
        if per_night <= 0:
            return {}
        return {night: per_night for night in nights}
