"""Clock and time-window helpers shared by the core modules."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_window(window_start: datetime, window_end: datetime) -> None:
    """Raise ValueError unless [window_start, window_end) is a proper aware window."""
    if window_start.tzinfo is None or window_end.tzinfo is None:
        raise ValueError("window bounds must be timezone-aware datetimes")
    if window_start >= window_end:
        raise ValueError(
            f"window start {window_start.isoformat()} is not before end {window_end.isoformat()}"
        )


def get_zone(name: str) -> ZoneInfo:
    """Return the IANA zone `name`, raising ValueError for unknown names."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown IANA timezone {name!r}") from exc


def time_str_to_minutes(time_str: str) -> int:
    """Convert "HH:MM" to minutes from midnight; "24:00" is end of day."""
    hours, _, minutes = time_str.partition(":")
    total = int(hours) * 60 + int(minutes or 0)
    if not 0 <= total <= 24 * 60:
        raise ValueError(f"invalid time of day: {time_str!r}")
    return total
