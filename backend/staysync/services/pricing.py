"""Turn a reconciled window and stay parameters into an itemized quote.

Discounts are percentages of (base subtotal + guest surcharge):
  - loyalty is always applied when a tier is given
  - stay-length and seasonal are mutually exclusive; only the larger applies
Cleaning fee and city tax are added after discounts. Nothing here guesses a
price: a night without a resolved price fails the quote.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from decimal import Decimal

from staysync.config import PricingConfig
from staysync.errors import IncompletePricingError, InvalidStayError
from staysync.models import (
    AvailabilityWindow,
    BookingQuote,
    LoyaltyTier,
    Occupancy,
    PricingBreakdown,
    money,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class DiscountRule(ABC):
    name = "discount"

    @abstractmethod
    def rate(self) -> Decimal:
        ...

    def amount(self, subtotal: Decimal) -> Decimal:
        return money(subtotal * self.rate())


class LoyaltyDiscount(DiscountRule):
    name = "loyalty"

    def __init__(self, tier: LoyaltyTier | None, config: PricingConfig):
        self.tier = tier
        self._config = config

    def rate(self) -> Decimal:
        if self.tier is None:
            return ZERO
        return Decimal(self._config.loyalty_rates.get(self.tier, ZERO))


class StayLengthDiscount(DiscountRule):
    name = "stay_length"

    def __init__(self, nights: int, config: PricingConfig):
        self.nights = nights
        self._config = config

    def tier(self) -> tuple[int, Decimal, str] | None:
        """Highest stay tier the stay qualifies for."""
        eligible = [t for t in self._config.stay_tiers if self.nights >= t[0]]
        return max(eligible, key=lambda t: t[0]) if eligible else None

    def rate(self) -> Decimal:
        tier = self.tier()
        return Decimal(tier[1]) if tier else ZERO


class SeasonalDiscount(DiscountRule):
    """Flat off-peak discount keyed on the check-in month."""

    name = "seasonal"

    def __init__(self, check_in: date, config: PricingConfig):
        self.check_in = check_in
        self._config = config

    def rate(self) -> Decimal:
        if self.check_in.month in self._config.seasonal_months:
            return Decimal(self._config.seasonal_rate)
        return ZERO


class PricingEngine:
    def __init__(self, config: PricingConfig | None = None):
        self.config = config or PricingConfig()

    def nightly_surcharge(self, adults: int, children: int) -> Decimal:
        extra_adults = max(0, adults - self.config.included_adults)
        return money(extra_adults * self.config.extra_adult_fee + children * self.config.child_fee)

    def compute_quote(
        self,
        window: AvailabilityWindow,
        nights: int,
        adults: int,
        children: int = 0,
        loyalty_tier: LoyaltyTier | str | None = None,
        check_in: date | None = None,
    ) -> BookingQuote:
        if nights < 1:
            raise InvalidStayError("A stay needs at least one night")
        occupancy = Occupancy(adults, children)
        tier = LoyaltyTier(loyalty_tier) if loyalty_tier else None
        check_in = check_in or window.range.start

        stay = [check_in + timedelta(days=i) for i in range(nights)]
        prices: dict[date, Decimal] = {}
        missing: list[date] = []
        for night in stay:
            day = window.day(night)
            if day is None or day.price is None or day.price <= 0:
                missing.append(night)
            else:
                prices[night] = day.price
        if missing:
            logger.info(f"Quote for {window.property_id}/{window.room_id} missing prices: {missing}")
            raise IncompletePricingError(missing)

        surcharge_per_night = self.nightly_surcharge(occupancy.adults, occupancy.children)
        breakdown = [
            PricingBreakdown(date=night, base_price=prices[night], guest_surcharge=surcharge_per_night)
            for night in stay
        ]
        base_subtotal = money(sum(prices.values(), ZERO))
        guest_surcharge = money(surcharge_per_night * nights)
        subtotal = base_subtotal + guest_surcharge

        loyalty = LoyaltyDiscount(tier, self.config)
        loyalty_discount = loyalty.amount(subtotal)

        # exclusive pair: the larger wins, stay-length on a tie
        stay_rule = StayLengthDiscount(nights, self.config)
        seasonal_rule = SeasonalDiscount(check_in, self.config)
        best = stay_rule if stay_rule.rate() >= seasonal_rule.rate() else seasonal_rule
        best_discount = best.amount(subtotal)
        applied = best.name if best_discount > 0 else None

        cleaning_fee = money(self.config.cleaning_fee)
        city_tax = money(occupancy.guests * nights * self.config.city_tax_per_person)

        total = subtotal - loyalty_discount - best_discount + cleaning_fee + city_tax
        total = money(max(ZERO, total))

        return BookingQuote(
            nights=nights,
            base_subtotal=base_subtotal,
            guest_surcharge=guest_surcharge,
            loyalty_discount=loyalty_discount,
            stay_or_seasonal_discount=best_discount,
            cleaning_fee=cleaning_fee,
            city_tax=city_tax,
            total=total,
            breakdown=breakdown,
            currency=self.config.currency,
            loyalty_tier=tier,
            loyalty_rate=loyalty.rate(),
            applied_discount=applied,
            applied_discount_rate=best.rate() if applied else ZERO,
        )

    # Loyalty and stay-tier helpers

    def tier_for_booking_count(self, completed_bookings: int) -> LoyaltyTier:
        reached = [
            tier for tier, threshold in self.config.loyalty_thresholds.items()
            if completed_bookings >= threshold
        ]
        if not reached:
            return LoyaltyTier.BRONZE
        return max(reached, key=lambda t: self.config.loyalty_thresholds[t])

    def bookings_to_next_tier(self, completed_bookings: int) -> tuple[LoyaltyTier, int] | None:
        """Next loyalty tier and how many more completed bookings reach it; None at the top."""
        ahead = sorted(
            (threshold, tier) for tier, threshold in self.config.loyalty_thresholds.items()
            if threshold > completed_bookings
        )
        if not ahead:
            return None
        threshold, tier = ahead[0]
        return tier, threshold - completed_bookings

    def next_stay_tier(self, nights: int) -> tuple[int, Decimal, int] | None:
        """(min_nights, rate, nights still needed) of the next stay tier, or None."""
        ahead = sorted(t for t in self.config.stay_tiers if t[0] > nights)
        if not ahead:
            return None
        min_nights, rate, _label = ahead[0]
        return min_nights, Decimal(rate), min_nights - nights

    def discount_tiers(self) -> list[dict]:
        return [
            {"min_nights": min_nights, "rate": str(rate), "label": label}
            for min_nights, rate, label in sorted(self.config.stay_tiers)
        ]
