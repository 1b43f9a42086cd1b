"""Import bookings, travel ideas or holiday packages by id.

Items are given as ``TYPE:ID`` (for example ``booking:RRP-9263`` or
``idea:28201``). Results are printed as a short table and written to a JSON
file in the output directory.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List

from booking_bridge.config.settings import Settings
from booking_bridge.core.logging import configure_logging
from booking_bridge.importer import ImportRequest
from booking_bridge.service import BookingBridge
from booking_bridge.storage.json_writer import JsonStore, timestamped_filename

logger = logging.getLogger(__name__)


def parse_item(value: str) -> tuple[str, str]:
    record_type, sep, record_id = value.partition(":")
    if not sep or not record_id.strip():
        raise argparse.ArgumentTypeError(f"Expected TYPE:ID, got '{value}'")
    return record_type.strip().lower(), record_id.strip()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("items", nargs="+", type=parse_item, help="One or more TYPE:ID items")
    parser.add_argument("--account", help="Only try this account id (or remote site id)")
    parser.add_argument("--user-email", help="E-mail of the user on whose behalf the import runs")
    parser.add_argument("--user-role", help="Role of that user (super_admin, admin, agent)")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/imports"),
        help="Directory for the JSON results",
    )
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)

    requests: List[ImportRequest] = [
        ImportRequest(
            type=record_type,
            id=record_id,
            account_hint=args.account,
            user_email=args.user_email,
            user_role=args.user_role,
        )
        for record_type, record_id in args.items
    ]

    bridge = BookingBridge.from_settings(settings)
    try:
        results = await bridge.batch_import(requests)
    finally:
        await bridge.stop()

    for result in results:
        request = result.request
        if result.success:
            print(f"OK    {request.type}:{request.id} from {result.account_id} ({result.method})")
        else:
            failure = result.failure
            kind = failure.kind if failure else "unknown"
            message = failure.message if failure else ""
            print(f"FAIL  {request.type}:{request.id} [{kind}] {message}")

    store = JsonStore(args.output)
    path = await store.write(results, filename=timestamped_filename("imports"))
    logger.info("Import results written to %s", path)
    return 0 if all(result.success for result in results) else 1


def main() -> None:
    raise SystemExit(asyncio.run(run(parse_args())))


if __name__ == "__main__":
    main()
