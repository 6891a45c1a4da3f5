"""
Slotkeeper — command line.

    slotkeeper HOST_ID EVENT_TYPE_ID [--date YYYY-MM-DD] [--timezone TZ]

Prints the available slots as a JSON list of {"start", "end"} objects.
Without --date the event type's booking horizon is searched.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime, time, timedelta, timezone

from slotkeeper.config import settings
from slotkeeper.core.availability import AvailabilityEngine, default_window
from slotkeeper.core.collective import get_collective_slots
from slotkeeper.core.conflict_aggregator import ConflictAggregator
from slotkeeper.core.timeutil import utc_now
from slotkeeper.data.db import ConnectionDB, SchedulingDB


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slotkeeper", description="List bookable slots for an event type.",
    )
    parser.add_argument("host_id")
    parser.add_argument("event_type_id")
    parser.add_argument(
        "--date", type=date.fromisoformat,
        help="only this UTC day (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--timezone", default=settings.DEFAULT_TIMEZONE,
        help="IANA timezone of the booker",
    )
    return parser


async def _run(args: argparse.Namespace) -> int:
    scheduling_db = SchedulingDB()
    engine = AvailabilityEngine(scheduling_db, ConflictAggregator(ConnectionDB()))

    event_type = await asyncio.to_thread(scheduling_db.get_event_type, args.event_type_id)
    if event_type is None or event_type.host_id != args.host_id:
        print(
            f"Event type {args.event_type_id} not found for host {args.host_id}",
            file=sys.stderr,
        )
        return 1

    if args.date is not None:
        start = datetime.combine(args.date, time(0), tzinfo=timezone.utc)
        end = start + timedelta(days=1)
    else:
        start, end = default_window(event_type, utc_now())

    slots = await get_collective_slots(engine, event_type, start, end, args.timezone)
    print(json.dumps([slot.to_dict() for slot in slots], indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    args = _build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
