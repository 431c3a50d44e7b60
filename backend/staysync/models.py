"""Domain types for reconciled availability, rate budgets, cache entries and quotes."""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from staysync.errors import InvalidStayError

CENTS = Decimal("0.01")
DEFAULT_MIN_STAY = 1
DEFAULT_MAX_STAY = 30


def money(value: Decimal | int | float | str) -> Decimal:
    """Quantize to cents, half-up."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class LoyaltyTier(str, Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"


class ReconciliationMode(str, Enum):
    BOOKING = "booking"
    CALENDAR_DISPLAY = "calendar_display"


class Source(str, Enum):
    """Which upstream signal decided a day's state (or price)."""
    OFFERS = "offers"
    CALENDAR = "calendar"
    BOOKINGS = "bookings"
    NO_OFFER = "no_offer"
    PAST_DATE = "past_date"
    NONE = "none"


@dataclass(frozen=True)
class DateRange:
    """Stay-style range: ``end`` is the check-out day and is excluded."""
    start: date
    end: date

    def __post_init__(self):
        if self.end <= self.start:
            raise InvalidStayError(
                f"end ({self.end.isoformat()}) must be after start ({self.start.isoformat()})"
            )

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def dates(self) -> list[date]:
        return [self.start + timedelta(days=i) for i in range(self.nights)]

    def __contains__(self, day: date) -> bool:
        return self.start <= day < self.end


@dataclass(frozen=True)
class Occupancy:
    adults: int = 2
    children: int = 0

    def __post_init__(self):
        if self.adults < 1:
            raise InvalidStayError("At least one adult is required")
        if self.children < 0:
            raise InvalidStayError("Children cannot be negative")

    @property
    def guests(self) -> int:
        return self.adults + self.children


@dataclass
class DayInfo:
    """One adapter's normalized view of a single date."""
    available: bool
    price: Decimal | None = None
    min_stay: int | None = None
    max_stay: int | None = None


@dataclass
class AdapterResult:
    source: str
    entries: dict[date, DayInfo] = field(default_factory=dict)
    ok: bool = True
    error: str | None = None
    min_stay: int | None = None
    max_stay: int | None = None

    @classmethod
    def failed(cls, source: str, error: str) -> "AdapterResult":
        return cls(source=source, ok=False, error=error)

    @property
    def blocked(self) -> set[date]:
        return {d for d, info in self.entries.items() if not info.available}

    def price_for(self, day: date) -> Decimal | None:
        info = self.entries.get(day)
        return info.price if info else None


@dataclass
class DateAvailability:
    date: date
    is_available: bool
    is_booked: bool
    price: Decimal | None
    source: Source

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "is_available": self.is_available,
            "is_booked": self.is_booked,
            "price": str(self.price) if self.price is not None else None,
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DateAvailability":
        price = data.get("price")
        return cls(
            date=date.fromisoformat(data["date"]),
            is_available=bool(data["is_available"]),
            is_booked=bool(data["is_booked"]),
            price=Decimal(price) if price is not None else None,
            source=Source(data.get("source", Source.NONE.value)),
        )


@dataclass
class AvailabilityWindow:
    property_id: str
    room_id: str
    range: DateRange
    mode: ReconciliationMode
    days: list[DateAvailability] = field(default_factory=list)
    min_stay: int = DEFAULT_MIN_STAY
    max_stay: int = DEFAULT_MAX_STAY
    # False when some adapter failed; such windows are served but never cached
    complete: bool = True

    def day(self, day: date) -> DateAvailability | None:
        for d in self.days:
            if d.date == day:
                return d
        return None

    def available_dates(self) -> list[date]:
        return [d.date for d in self.days if d.is_available]

    def booked_dates(self) -> list[date]:
        return [d.date for d in self.days if d.is_booked]

    def prices(self) -> dict[date, Decimal]:
        return {d.date: d.price for d in self.days if d.price is not None}

    def to_dict(self) -> dict[str, Any]:
        return {
            "property_id": self.property_id,
            "room_id": self.room_id,
            "start": self.range.start.isoformat(),
            "end": self.range.end.isoformat(),
            "mode": self.mode.value,
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
            "complete": self.complete,
            "days": [d.to_dict() for d in self.days],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AvailabilityWindow":
        return cls(
            property_id=data["property_id"],
            room_id=data["room_id"],
            range=DateRange(date.fromisoformat(data["start"]), date.fromisoformat(data["end"])),
            mode=ReconciliationMode(data["mode"]),
            days=[DateAvailability.from_dict(d) for d in data.get("days", [])],
            min_stay=int(data.get("min_stay", DEFAULT_MIN_STAY)),
            max_stay=int(data.get("max_stay", DEFAULT_MAX_STAY)),
            complete=bool(data.get("complete", True)),
        )


@dataclass
class RateLimitBudget:
    window_start: float
    request_count: int
    max_per_window: int
    last_call_at: float | None
    min_delay: float


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float
    tier: str = "local"

    def expired(self, now: float) -> bool:
        return self.expires_at <= now


@dataclass
class PricingBreakdown:
    date: date
    base_price: Decimal
    guest_surcharge: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "base_price": str(self.base_price),
            "guest_surcharge": str(self.guest_surcharge),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PricingBreakdown":
        return cls(
            date=date.fromisoformat(data["date"]),
            base_price=Decimal(data["base_price"]),
            guest_surcharge=Decimal(data["guest_surcharge"]),
        )


@dataclass
class BookingQuote:
    nights: int
    base_subtotal: Decimal
    guest_surcharge: Decimal
    loyalty_discount: Decimal
    stay_or_seasonal_discount: Decimal
    cleaning_fee: Decimal
    city_tax: Decimal
    total: Decimal
    breakdown: list[PricingBreakdown] = field(default_factory=list)
    currency: str = "EUR"
    loyalty_tier: LoyaltyTier | None = None
    loyalty_rate: Decimal = Decimal("0")
    applied_discount: str | None = None  # "stay_length" | "seasonal"
    applied_discount_rate: Decimal = Decimal("0")

    @property
    def subtotal(self) -> Decimal:
        return self.base_subtotal + self.guest_surcharge

    @property
    def price_per_night(self) -> Decimal:
        return money(self.total / self.nights)

    def to_dict(self) -> dict[str, Any]:
        return {
            "nights": self.nights,
            "base_subtotal": str(self.base_subtotal),
            "guest_surcharge": str(self.guest_surcharge),
            "loyalty_discount": str(self.loyalty_discount),
            "stay_or_seasonal_discount": str(self.stay_or_seasonal_discount),
            "cleaning_fee": str(self.cleaning_fee),
            "city_tax": str(self.city_tax),
            "total": str(self.total),
            "breakdown": [b.to_dict() for b in self.breakdown],
            "currency": self.currency,
            "loyalty_tier": self.loyalty_tier.value if self.loyalty_tier else None,
            "loyalty_rate": str(self.loyalty_rate),
            "applied_discount": self.applied_discount,
            "applied_discount_rate": str(self.applied_discount_rate),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BookingQuote":
        tier = data.get("loyalty_tier")
        return cls(
            nights=int(data["nights"]),
            base_subtotal=Decimal(data["base_subtotal"]),
            guest_surcharge=Decimal(data["guest_surcharge"]),
            loyalty_discount=Decimal(data["loyalty_discount"]),
            stay_or_seasonal_discount=Decimal(data["stay_or_seasonal_discount"]),
            cleaning_fee=Decimal(data["cleaning_fee"]),
            city_tax=Decimal(data["city_tax"]),
            total=Decimal(data["total"]),
            breakdown=[PricingBreakdown.from_dict(b) for b in data.get("breakdown", [])],
            currency=data.get("currency", "EUR"),
            loyalty_tier=LoyaltyTier(tier) if tier else None,
            loyalty_rate=Decimal(data.get("loyalty_rate", "0")),
            applied_discount=data.get("applied_discount"),
            applied_discount_rate=Decimal(data.get("applied_discount_rate", "0")),
        )
