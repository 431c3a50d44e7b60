"""Print the reconciled availability window (and optionally a quote) for one apartment.

Usage:
    python backend/scripts/check_availability.py design-apartman 2025-11-03 2025-11-07
    python backend/scripts/check_availability.py lite-apartman 2025-11-03 2025-11-07 \
        --mode booking --quote --adults 3 --children 1 --tier SILVER
"""

import argparse
import asyncio
import logging
from datetime import date

from staysync.config import settings
from staysync.context import build_context
from staysync.errors import StaySyncError
from staysync.logging_setup import configure_logging
from staysync.models import DateRange, LoyaltyTier, Occupancy, ReconciliationMode
from staysync.services.availability_service import get_availability, get_quote

logger = logging.getLogger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("slug", choices=sorted(settings.rooms))
    parser.add_argument("start", type=date.fromisoformat)
    parser.add_argument("end", type=date.fromisoformat)
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ReconciliationMode],
        default=ReconciliationMode.CALENDAR_DISPLAY.value,
    )
    parser.add_argument("--quote", action="store_true")
    parser.add_argument("--adults", type=int, default=2)
    parser.add_argument("--children", type=int, default=0)
    parser.add_argument("--tier", choices=[t.value for t in LoyaltyTier])
    parser.add_argument("--log-level")
    return parser.parse_args()


async def main():
    args = _parse_args()
    configure_logging(args.log_level)

    room = settings.room_for_slug(args.slug)
    ctx = build_context(settings)
    try:
        stay = DateRange(args.start, args.end)
        window = await get_availability(ctx, room.prop_id, room.room_id, stay, args.mode)
        print(f"{room.name} ({room.prop_id}/{room.room_id}) {window.mode.value}")
        print(f"min stay {window.min_stay}, max stay {window.max_stay}")
        for day in window.days:
            state = "available" if day.is_available else "booked"
            price = f"{day.price} {settings.currency}" if day.price is not None else "-"
            print(f"  {day.date.isoformat()}  {state:<9}  {price:>12}  [{day.source.value}]")

        if args.quote:
            quote = await get_quote(
                ctx,
                room.prop_id,
                room.room_id,
                stay,
                Occupancy(args.adults, args.children),
                args.tier,
            )
            print("Quote:")
            for name, value in quote.to_dict().items():
                if name != "breakdown":
                    print(f"  {name:<26} {value}")
    except StaySyncError as e:
        logger.error(f"{e.code}: {e}")
        raise SystemExit(1)
    finally:
        await ctx.close()


if __name__ == "__main__":
    asyncio.run(main())
