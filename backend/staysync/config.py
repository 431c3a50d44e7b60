from dataclasses import dataclass, field
from decimal import Decimal

from pydantic import BaseModel
from pydantic_settings import BaseSettings

from staysync.errors import UnknownRoomError
from staysync.models import LoyaltyTier


class RoomMapping(BaseModel):
    prop_id: str
    room_id: str
    name: str = ""


class StayDiscountTier(BaseModel):
    min_nights: int
    rate: Decimal
    label: str = ""


class Settings(BaseSettings):
    # Beds24 upstream
    beds24_base_url: str = "https://api.beds24.com/v2"
    beds24_long_life_token: str = ""
    beds24_access_token: str = ""
    beds24_refresh_token: str = ""
    beds24_token_expires_in: int = 86400  # trust a configured access token for 24h
    beds24_timeout: float = 10.0
    beds24_max_retries: int = 3
    beds24_retry_backoff: float = 1.0
    user_agent: str = "staysync/1.0"

    # Rate budget (Beds24 guidelines)
    rate_limit_min_delay: float = 2.0
    rate_limit_per_minute: int = 30

    # Adapters. Bounds one upstream HTTP attempt, not the wait for a rate-limit slot
    adapter_timeout: float = 20.0

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    cache_connect_attempts: int = 3
    cache_connect_backoff: float = 0.5
    cache_reprobe_seconds: int | None = None

    # Occupancy for the occupancy-independent offers lookup
    base_adults: int = 2
    base_children: int = 0

    # Fees
    currency: str = "EUR"
    included_adults: int = 2
    extra_adult_fee: Decimal = Decimal("20")
    child_fee: Decimal = Decimal("10")
    cleaning_fee: Decimal = Decimal("25")
    city_tax_per_person: Decimal = Decimal("1.50")

    # Discounts
    loyalty_rates: dict[LoyaltyTier, Decimal] = {
        LoyaltyTier.BRONZE: Decimal("0.05"),
        LoyaltyTier.SILVER: Decimal("0.07"),
        LoyaltyTier.GOLD: Decimal("0.10"),
    }
    loyalty_thresholds: dict[LoyaltyTier, int] = {
        LoyaltyTier.BRONZE: 0,
        LoyaltyTier.SILVER: 3,
        LoyaltyTier.GOLD: 6,
    }
    stay_discount_tiers: list[StayDiscountTier] = [
        StayDiscountTier(min_nights=7, rate=Decimal("0.10"), label="7+ nights"),
        StayDiscountTier(min_nights=14, rate=Decimal("0.15"), label="14+ nights"),
        StayDiscountTier(min_nights=30, rate=Decimal("0.20"), label="30+ nights"),
    ]
    seasonal_months: list[int] = [10, 11, 12, 1, 2, 3]
    seasonal_rate: Decimal = Decimal("0.20")

    # Apartment slug -> Beds24 property/room
    rooms: dict[str, RoomMapping] = {
        "design-apartman": RoomMapping(prop_id="227484", room_id="483027", name="Design Apartman"),
        "lite-apartman": RoomMapping(prop_id="168900", room_id="357932", name="Lite Apartman"),
        "deluxe-apartman": RoomMapping(prop_id="161445", room_id="357931", name="Deluxe Apartman"),
    }

    def room_for_slug(self, slug: str) -> RoomMapping:
        try:
            return self.rooms[slug]
        except KeyError:
            raise UnknownRoomError(slug) from None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@dataclass(frozen=True)
class PricingConfig:
    """Fee and discount constants consumed by the pricing engine."""
    currency: str = "EUR"
    included_adults: int = 2
    extra_adult_fee: Decimal = Decimal("20")
    child_fee: Decimal = Decimal("10")
    cleaning_fee: Decimal = Decimal("25")
    city_tax_per_person: Decimal = Decimal("1.50")
    loyalty_rates: dict = field(default_factory=lambda: {
        LoyaltyTier.BRONZE: Decimal("0.05"),
        LoyaltyTier.SILVER: Decimal("0.07"),
        LoyaltyTier.GOLD: Decimal("0.10"),
    })
    loyalty_thresholds: dict = field(default_factory=lambda: {
        LoyaltyTier.BRONZE: 0,
        LoyaltyTier.SILVER: 3,
        LoyaltyTier.GOLD: 6,
    })
    # (min_nights, rate, label), any order
    stay_tiers: tuple = (
        (7, Decimal("0.10"), "7+ nights"),
        (14, Decimal("0.15"), "14+ nights"),
        (30, Decimal("0.20"), "30+ nights"),
    )
    seasonal_months: frozenset = frozenset({10, 11, 12, 1, 2, 3})
    seasonal_rate: Decimal = Decimal("0.20")

    @classmethod
    def from_settings(cls, s: Settings) -> "PricingConfig":
        return cls(
            currency=s.currency,
            included_adults=s.included_adults,
            extra_adult_fee=s.extra_adult_fee,
            child_fee=s.child_fee,
            cleaning_fee=s.cleaning_fee,
            city_tax_per_person=s.city_tax_per_person,
            loyalty_rates=dict(s.loyalty_rates),
            loyalty_thresholds=dict(s.loyalty_thresholds),
            stay_tiers=tuple((t.min_nights, t.rate, t.label) for t in s.stay_discount_tiers),
            seasonal_months=frozenset(s.seasonal_months),
            seasonal_rate=s.seasonal_rate,
        )


settings = Settings()
