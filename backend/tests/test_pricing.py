"""Unit tests for PricingEngine quote calculation.

Test categories:
- Guest surcharge (flat, per night, independent of the nightly price)
- Discount selection (loyalty always, larger of stay-length / seasonal)
- Fees, rounding and the zero floor
- Missing prices fail instead of being guessed
- Loyalty and stay-tier helpers
"""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from staysync.config import PricingConfig
from staysync.errors import IncompletePricingError, InvalidStayError
from staysync.models import (
    AvailabilityWindow,
    DateAvailability,
    DateRange,
    LoyaltyTier,
    ReconciliationMode,
    Source,
)
from staysync.services.pricing import PricingEngine, SeasonalDiscount, StayLengthDiscount

JUNE = date(2026, 6, 1)      # peak season: no seasonal discount
NOVEMBER = date(2025, 11, 3)  # off-peak


def make_window(start: date, prices: list) -> AvailabilityWindow:
    days = [
        DateAvailability(
            date=start + timedelta(days=i),
            is_available=True,
            is_booked=False,
            price=Decimal(str(p)) if p is not None else None,
            source=Source.OFFERS if p is not None else Source.NONE,
        )
        for i, p in enumerate(prices)
    ]
    return AvailabilityWindow(
        property_id="227484",
        room_id="483027",
        range=DateRange(start, start + timedelta(days=len(prices))),
        mode=ReconciliationMode.BOOKING,
        days=days,
    )


class TestGuestSurcharge:
    def test_surcharge_example(self):
        quote = PricingEngine().compute_quote(make_window(JUNE, [100, 100]), 2, adults=3, children=1)

        assert quote.base_subtotal == Decimal("200.00")
        assert quote.guest_surcharge == Decimal("60.00")
        assert quote.subtotal == Decimal("260.00")
        assert [b.guest_surcharge for b in quote.breakdown] == [Decimal("30.00"), Decimal("30.00")]

    def test_two_adults_pay_no_surcharge(self):
        quote = PricingEngine().compute_quote(make_window(JUNE, [80, 90, 100]), 3, adults=2)
        assert quote.guest_surcharge == Decimal("0.00")
        assert quote.base_subtotal == Decimal("270.00")

    def test_surcharge_does_not_scale_with_price(self):
        engine = PricingEngine()
        cheap = engine.compute_quote(make_window(JUNE, [50, 50]), 2, adults=4)
        dear = engine.compute_quote(make_window(JUNE, [500, 500]), 2, adults=4)
        assert cheap.guest_surcharge == dear.guest_surcharge == Decimal("80.00")


class TestDiscountSelection:
    def test_only_larger_of_stay_and_seasonal_applies(self):
        config = replace(PricingConfig(), seasonal_rate=Decimal("0.15"))
        quote = PricingEngine(config).compute_quote(make_window(NOVEMBER, [100] * 10), 10, adults=2)

        # 15% seasonal beats the 10% stay discount; never 25%
        assert quote.applied_discount == "seasonal"
        assert quote.stay_or_seasonal_discount == Decimal("150.00")
        assert quote.total == Decimal("1000.00") - Decimal("150.00") + Decimal("25.00") + Decimal("30.00")

    def test_stay_length_wins_out_of_season(self):
        quote = PricingEngine().compute_quote(make_window(JUNE, [100] * 14), 14, adults=2)
        assert quote.applied_discount == "stay_length"
        assert quote.applied_discount_rate == Decimal("0.15")
        assert quote.stay_or_seasonal_discount == Decimal("210.00")

    def test_loyalty_applies_alongside(self):
        quote = PricingEngine().compute_quote(
            make_window(JUNE, [100] * 7), 7, adults=2, loyalty_tier=LoyaltyTier.GOLD
        )
        assert quote.loyalty_discount == Decimal("70.00")
        assert quote.stay_or_seasonal_discount == Decimal("70.00")
        # 700 - 70 - 70 + 25 cleaning + 2 * 7 * 1.50 tax
        assert quote.total == Decimal("606.00")

    def test_loyalty_tier_accepts_string(self):
        quote = PricingEngine().compute_quote(make_window(JUNE, [100]), 1, adults=1, loyalty_tier="SILVER")
        assert quote.loyalty_tier == LoyaltyTier.SILVER
        assert quote.loyalty_discount == Decimal("7.00")

    def test_no_discounts_for_short_peak_stay(self):
        quote = PricingEngine().compute_quote(make_window(JUNE, [100, 100]), 2, adults=2)
        assert quote.applied_discount is None
        assert quote.stay_or_seasonal_discount == Decimal("0.00")
        assert quote.loyalty_discount == Decimal("0.00")

    def test_rule_rates(self):
        config = PricingConfig()
        assert StayLengthDiscount(6, config).rate() == Decimal("0")
        assert StayLengthDiscount(30, config).rate() == Decimal("0.20")
        assert SeasonalDiscount(date(2025, 12, 24), config).rate() == Decimal("0.20")
        assert SeasonalDiscount(date(2025, 7, 1), config).rate() == Decimal("0")


class TestFeesAndTotals:
    def test_city_tax_counts_every_guest_every_night(self):
        quote = PricingEngine().compute_quote(make_window(JUNE, [100] * 3), 3, adults=2, children=2)
        assert quote.city_tax == Decimal("18.00")
        assert quote.cleaning_fee == Decimal("25.00")

    def test_rounding_half_up(self):
        quote = PricingEngine().compute_quote(
            make_window(JUNE, ["33.33"]), 1, adults=1, loyalty_tier=LoyaltyTier.SILVER
        )
        # 7% of 33.33 = 2.3331
        assert quote.loyalty_discount == Decimal("2.33")
        assert quote.price_per_night == quote.total

    def test_total_floored_at_zero(self):
        config = replace(PricingConfig(), loyalty_rates={LoyaltyTier.GOLD: Decimal("0.90")}, seasonal_rate=Decimal("0.50"))
        quote = PricingEngine(config).compute_quote(
            make_window(NOVEMBER, [100]), 1, adults=1, loyalty_tier=LoyaltyTier.GOLD
        )
        assert quote.total == Decimal("0.00")
        assert quote.loyalty_discount == Decimal("90.00")

    def test_breakdown_keeps_every_figure(self):
        quote = PricingEngine().compute_quote(make_window(JUNE, [100, 120]), 2, adults=3)
        data = quote.to_dict()
        for field in ("base_subtotal", "guest_surcharge", "loyalty_discount",
                      "stay_or_seasonal_discount", "cleaning_fee", "city_tax", "total"):
            assert field in data
        assert [b["base_price"] for b in data["breakdown"]] == ["100", "120"]


class TestMissingPrices:
    def test_unresolved_price_raises(self):
        window = make_window(JUNE, [100, None, 100])
        with pytest.raises(IncompletePricingError) as exc:
            PricingEngine().compute_quote(window, 3, adults=2)
        assert exc.value.missing == [JUNE + timedelta(days=1)]
        assert exc.value.code == "ERR_PRICE_UNAVAILABLE"

    def test_nights_beyond_window_are_missing(self):
        with pytest.raises(IncompletePricingError):
            PricingEngine().compute_quote(make_window(JUNE, [100]), 2, adults=2)

    def test_invalid_occupancy(self):
        with pytest.raises(InvalidStayError):
            PricingEngine().compute_quote(make_window(JUNE, [100]), 1, adults=0)


class TestHelpers:
    @pytest.mark.parametrize("count, tier", [
        (0, LoyaltyTier.BRONZE),
        (2, LoyaltyTier.BRONZE),
        (3, LoyaltyTier.SILVER),
        (6, LoyaltyTier.GOLD),
        (15, LoyaltyTier.GOLD),
    ])
    def test_tier_for_booking_count(self, count, tier):
        assert PricingEngine().tier_for_booking_count(count) == tier

    def test_bookings_to_next_tier(self):
        engine = PricingEngine()
        assert engine.bookings_to_next_tier(1) == (LoyaltyTier.SILVER, 2)
        assert engine.bookings_to_next_tier(4) == (LoyaltyTier.GOLD, 2)
        assert engine.bookings_to_next_tier(6) is None

    def test_next_stay_tier(self):
        engine = PricingEngine()
        assert engine.next_stay_tier(5) == (7, Decimal("0.10"), 2)
        assert engine.next_stay_tier(7) == (14, Decimal("0.15"), 7)
        assert engine.next_stay_tier(30) is None

    def test_discount_tiers(self):
        tiers = PricingEngine().discount_tiers()
        assert [t["min_nights"] for t in tiers] == [7, 14, 30]
        assert tiers[0]["rate"] == "0.10"
