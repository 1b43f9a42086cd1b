"""Warm the booking cache and look up one booking id."""
from __future__ import annotations

import argparse
import asyncio
import json

from booking_bridge.config.settings import Settings
from booking_bridge.core.logging import configure_logging
from booking_bridge.service import BookingBridge


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("booking_id", help="Booking id or reference, e.g. RRP-9263")
    parser.add_argument(
        "--across",
        action="store_true",
        help="Include per-account diagnostics in the output",
    )
    parser.add_argument("--stats", action="store_true", help="Print cache statistics afterwards")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)

    bridge = BookingBridge.from_settings(settings)
    try:
        await bridge.cache.warm_up()
        if args.across:
            result = await bridge.lookup_booking_across_accounts(args.booking_id)
            payload = result.to_dict()
            found = result.lookup.found
        else:
            lookup = await bridge.lookup_booking(args.booking_id)
            payload = lookup.to_dict()
            found = lookup.found
        print(json.dumps(payload, indent=2, default=str))
        if args.stats:
            print(json.dumps(bridge.cache_stats(), indent=2, default=str))
    finally:
        await bridge.stop()
    return 0 if found else 2


def main() -> None:
    raise SystemExit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
