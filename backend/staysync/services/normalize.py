"""Defensive field normalization for loosely-typed Beds24 payloads."""

import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from staysync.models import money

# "2025-10-03 (Standard rate) EUR 121.50"
RATE_LINE = re.compile(r"(\d{4}-\d{2}-\d{2})[^\n]*?\b([A-Z]{3})\s+(\d+(?:[.,]\d{1,2})?)")


def first_present(obj: Any, *aliases: str) -> Any:
    """Value of the first alias present (and not None/empty) in a mapping."""
    if not isinstance(obj, dict):
        return None
    for key in aliases:
        value = obj.get(key)
        if value is not None and value != "":
            return value
    return None


def to_decimal_price(value: Any) -> Decimal | None:
    """Positive money amount, or None. Zero is never a price."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    amount = money(amount)
    return amount if amount > 0 else None


def to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def parse_day(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) >= 10:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def iter_nights(arrival: date, departure: date) -> list[date]:
    """Nights of a stay: arrival inclusive, departure exclusive."""
    return [arrival + timedelta(days=i) for i in range((departure - arrival).days)]


def iter_days(first: date, last: date) -> list[date]:
    """Calendar span, both ends inclusive."""
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]


def extract_items(payload: Any, *container_keys: str) -> list[Any]:
    """Pull the item list out of whichever envelope the upstream used."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in container_keys or ("data",):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def parse_rate_description(text: str) -> dict[date, Decimal]:
    """Per-day prices embedded in a booking's human-readable rate description."""
    prices: dict[date, Decimal] = {}
    if not isinstance(text, str):
        return prices
    for match in RATE_LINE.finditer(text):
        day = parse_day(match.group(1))
        price = to_decimal_price(match.group(3))
        if day and price:
            prices[day] = price
    return prices
