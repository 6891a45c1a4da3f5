"""Collective scheduling — slots every participating host can take."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from slotkeeper.data.models import EventType, TimeSlot

if TYPE_CHECKING:
    from slotkeeper.core.availability import AvailabilityEngine

logger = logging.getLogger(__name__)


def intersect_slots(per_host_slots: list[list[TimeSlot]]) -> list[TimeSlot]:
    """Keep the first host's slots that every other host also has.

    Slots match only on identical start and end. Order follows the first list.
    """
    if not per_host_slots or any(not slots for slots in per_host_slots):
        return []
    first, *others = per_host_slots
    other_sets = [set(slots) for slots in others]
    return [slot for slot in first if all(slot in s for s in other_sets)]


async def get_collective_slots(
    engine: AvailabilityEngine,
    event_type: EventType,
    window_start: datetime,
    window_end: datetime,
    booker_timezone: str = "UTC",
) -> list[TimeSlot]:
    """Slots for an event type, intersected across co-hosts when collective."""
    host_ids = [event_type.host_id]
    if event_type.is_collective:
        host_ids += [m for m in event_type.collective_members if m not in host_ids]

    per_host = await asyncio.gather(
        *(
            engine.get_available_slots(
                host_id, event_type.id, window_start, window_end, booker_timezone,
            )
            for host_id in host_ids
        )
    )
    if len(per_host) == 1:
        return per_host[0]

    slots = intersect_slots(list(per_host))
    logger.info(
        "Collective event type %s: %d common slot(s) across %d host(s)",
        event_type.id, len(slots), len(host_ids),
    )
    return slots
