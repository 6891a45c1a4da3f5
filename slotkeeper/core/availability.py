"""
Slotkeeper — Availability Engine.

Turns a host's availability rules into concrete bookable slots for an event
type, then removes every slot that collides with a calendar conflict or an
existing booking (buffers included), sits inside the minimum-notice period,
or falls on a day/week whose booking cap is already reached.

Rules are wall-clock windows in the host's timezone. Each day's windows are
converted to UTC with zoneinfo, so a 09:00 rule stays 09:00 local across a
DST change while its UTC instant moves by an hour.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from slotkeeper.core.timeutil import (
    Clock,
    get_zone,
    time_str_to_minutes,
    utc_now,
    validate_window,
)
from slotkeeper.data.models import AvailabilityRule, EventType, TimeSlot

if TYPE_CHECKING:
    from slotkeeper.core.conflict_aggregator import ConflictAggregator
    from slotkeeper.ports.store_port import SchedulingStore

logger = logging.getLogger(__name__)

Interval = tuple[datetime, datetime]


def default_window(event_type: EventType, now: datetime) -> tuple[datetime, datetime]:
    """The window searched when the caller gives no date range."""
    return now, now + timedelta(days=event_type.max_future_days)


def overlaps_any(start: datetime, end: datetime, busy: list[Interval]) -> bool:
    """True if [start, end) strictly overlaps any busy interval.

    Touching intervals (one ends exactly when the other starts) do not overlap.
    """
    return any(b_start < end and b_end > start for b_start, b_end in busy)


def _local_dates(window_start: datetime, window_end: datetime, tz: ZoneInfo) -> list[date]:
    """Every host-local date the half-open window touches, in order."""
    first = window_start.astimezone(tz).date()
    last = (window_end - timedelta(microseconds=1)).astimezone(tz).date()
    return [first + timedelta(days=n) for n in range((last - first).days + 1)]


def _local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time(0), tzinfo=tz).astimezone(timezone.utc)


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _rules_for_day(rules: list[AvailabilityRule], day: date) -> list[AvailabilityRule]:
    """Date-specific rules for `day` if any exist, else its weekday rules."""
    overrides = [r for r in rules if r.rule_date == day]
    if overrides:
        return overrides
    weekday = (day.weekday() + 1) % 7   # 0 = Sunday
    return [r for r in rules if r.rule_date is None and r.day_of_week == weekday]


def _rule_bounds(rule: AvailabilityRule, day: date, tz: ZoneInfo) -> Interval | None:
    start_min = time_str_to_minutes(rule.start_time)
    end_min = time_str_to_minutes(rule.end_time)
    if end_min <= start_min:
        return None
    midnight = datetime.combine(day, time(0), tzinfo=tz)
    return (
        (midnight + timedelta(minutes=start_min)).astimezone(timezone.utc),
        (midnight + timedelta(minutes=end_min)).astimezone(timezone.utc),
    )


class AvailabilityEngine:
    """Computes bookable slots for a host and event type."""

    def __init__(
        self,
        scheduling_store: SchedulingStore,
        aggregator: ConflictAggregator,
        clock: Clock = utc_now,
        slot_increment_minutes: int | None = None,
    ) -> None:
        if slot_increment_minutes is None:
            from slotkeeper.config import settings
            slot_increment_minutes = settings.SLOT_INCREMENT_MINUTES
        self._store = scheduling_store
        self._aggregator = aggregator
        self._clock = clock
        self._increment = timedelta(minutes=slot_increment_minutes)

    async def get_available_slots(
        self,
        host_id: str,
        event_type_id: str,
        window_start: datetime,
        window_end: datetime,
        booker_timezone: str = "UTC",
    ) -> list[TimeSlot]:
        """Return the host's free slots for the event type inside the window.

        Slots are in UTC, ordered per day and per rule. A missing host or
        event type yields an empty list.

        Raises:
            ValueError: naive or inverted window, or unknown booker timezone.
        """
        validate_window(window_start, window_end)
        get_zone(booker_timezone)

        host, event_type, rules, conflicts, bookings = await asyncio.gather(
            asyncio.to_thread(self._store.get_host, host_id),
            asyncio.to_thread(self._store.get_event_type, event_type_id),
            asyncio.to_thread(self._store.list_availability_rules, host_id),
            self._aggregator.get_conflicting_events(host_id, window_start, window_end),
            asyncio.to_thread(
                self._store.list_busy_bookings, host_id, window_start, window_end,
            ),
        )
        if host is None or event_type is None:
            logger.info(
                "No slots: host %s or event type %s not found", host_id, event_type_id
            )
            return []

        tz = get_zone(host.timezone)
        earliest = self._clock() + timedelta(minutes=event_type.min_notice_minutes)
        busy: list[Interval] = [(ev.start, ev.end) for ev in conflicts]
        busy.extend((b.start, b.end) for b in bookings)

        days = _local_dates(window_start, window_end, tz)
        capped = await self._capped_days(event_type, days, host.timezone, tz)

        duration = timedelta(minutes=event_type.duration_minutes)
        before = timedelta(minutes=event_type.buffer_before)
        after = timedelta(minutes=event_type.buffer_after)

        slots: list[TimeSlot] = []
        for day in days:
            if day in capped:
                continue
            for rule in _rules_for_day(rules, day):
                bounds = _rule_bounds(rule, day, tz)
                if bounds is None:
                    continue
                rule_start, rule_end = bounds
                start = rule_start
                while start + duration <= rule_end:
                    end = start + duration
                    if (
                        start > earliest
                        and window_start <= start < window_end
                        and not overlaps_any(start - before, end + after, busy)
                    ):
                        slots.append(TimeSlot(start=start, end=end))
                    start += self._increment

        logger.info(
            "Host %s has %d slot(s) for event type %s between %s and %s (booker tz %s)",
            host_id, len(slots), event_type_id,
            window_start.isoformat(), window_end.isoformat(), booker_timezone,
        )
        return slots

    async def _capped_days(
        self,
        event_type: EventType,
        days: list[date],
        tz_name: str,
        tz: ZoneInfo,
    ) -> set[date]:
        """Dates whose daily or weekly booking cap is already reached."""
        if event_type.daily_limit is None and event_type.weekly_limit is None:
            return set()

        first, last = days[0], days[-1]
        if event_type.weekly_limit is not None:
            first = _week_start(first)
            last = _week_start(last) + timedelta(days=6)

        counts = await asyncio.to_thread(
            self._store.count_bookings_by_day,
            event_type.id,
            _local_midnight(first, tz),
            _local_midnight(last + timedelta(days=1), tz),
            tz_name,
        )

        weekly: dict[date, int] = defaultdict(int)
        for day, count in counts.items():
            weekly[_week_start(day)] += count

        capped = set()
        for day in days:
            if event_type.daily_limit is not None and counts.get(day, 0) >= event_type.daily_limit:
                capped.add(day)
            elif (
                event_type.weekly_limit is not None
                and weekly[_week_start(day)] >= event_type.weekly_limit
            ):
                capped.add(day)
        if capped:
            logger.info(
                "Event type %s is at its booking cap on %s",
                event_type.id, ", ".join(d.isoformat() for d in sorted(capped)),
            )
        return capped
