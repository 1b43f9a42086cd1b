"""Probe candidate booking platform endpoints for one account.

Authenticates the account once, walks the endpoint catalogue (GET, plus POST
for list/search style paths), prints the ranked results and writes the full
report as JSON for later inspection.
"""
from __future__ import annotations

import asyncio
import logging
from argparse import ArgumentParser, Namespace
from pathlib import Path

from booking_bridge.config.settings import Settings
from booking_bridge.core.logging import configure_logging
from booking_bridge.discovery import format_ranked
from booking_bridge.errors import AuthenticationError, UnknownAccountError
from booking_bridge.service import BookingBridge
from booking_bridge.storage.json_writer import JsonStore, timestamped_filename

logger = logging.getLogger(__name__)


async def main(args: Namespace) -> int:
    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)

    bridge = BookingBridge.from_settings(settings)
    if args.find:
        return await find(bridge, args)
    try:
        report = await bridge.discover_endpoints(args.account)
    except (AuthenticationError, UnknownAccountError) as exc:
        logger.error("Discovery aborted: %s", exc)
        return 1
    finally:
        await bridge.stop()

    summary = report.summary()
    print(
        f"Account {report.account_id} (site {report.site_id}): "
        f"{summary['working']} working, {summary['with_data']} with data out of {summary['probes']} probes"
    )
    for line in format_ranked(report, limit=args.limit):
        print(line)

    store = JsonStore(args.output)
    path = await store.write(
        [probe.to_dict() for probe in report.ranked()],
        filename=timestamped_filename(f"discovery_{report.account_id}"),
        meta={"summary": summary},
    )
    logger.info("Discovery report written to %s", path)
    return 0


async def find(bridge: BookingBridge, args: Namespace) -> int:
    try:
        search = await bridge.find_booking(args.account, args.find)
    except (AuthenticationError, UnknownAccountError) as exc:
        logger.error("Booking search aborted: %s", exc)
        return 1
    finally:
        await bridge.stop()

    for probe in search.probes:
        print(f"{probe.status:>3}  {probe.path}")
    if not search.found:
        print(f"Booking {args.find} not found for account {args.account}")
        return 1
    print(f"Booking {args.find} found via {search.path}")

    store = JsonStore(args.output)
    path = await store.write(
        [search],
        filename=timestamped_filename(f"booking_{args.find}"),
        meta={"account_id": args.account},
    )
    logger.info("Booking search written to %s", path)
    return 0

if __name__ == "__main__":
    parser = ArgumentParser(description="Probe booking platform endpoints for one account")
    parser.add_argument("--account", required=True, help="Account id (or remote site id) to probe with")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/discovery"),
        help="Directory for the JSON report",
    )
    parser.add_argument("--find", metavar="BOOKING_ID", help="Search for one booking instead of probing the catalogue")
    parser.add_argument("--limit", type=int, default=20, help="How many ranked results to print")
    raise SystemExit(asyncio.run(main(parser.parse_args())))
