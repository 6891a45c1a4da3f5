"""
Slotkeeper — Data Models.

Hosts, their calendar connections, availability rules, event types and
bookings persist in SQLite. Calendar events fetched from providers and the
computed time slots are transient and never stored.

All instants are timezone-aware UTC datetimes. Wall-clock times on rules are
"HH:MM" strings interpreted in the host's timezone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class CalendarProvider(str, Enum):
    """External calendar providers a host can connect."""

    GOOGLE = "GOOGLE"
    OUTLOOK = "OUTLOOK"


class BookingStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"


# Bookings in these states occupy the host's time and count towards caps.
BLOCKING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.PENDING)


@dataclass
class Host:
    """A person whose time can be booked."""

    id: str
    display_name: str
    timezone: str = "UTC"


@dataclass
class CalendarConnection:
    """One external calendar linked to a host.

    A host has at most six connections, exactly one of them primary.
    Only connections with check_conflicts=True block availability.
    """

    id: str
    host_id: str
    provider: CalendarProvider
    access_token: str
    email: str
    refresh_token: str | None = None
    expires_at: datetime | None = None   # None → expiry unknown, never refreshed proactively
    is_primary: bool = False
    check_conflicts: bool = True
    label: str | None = None
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now


@dataclass
class AvailabilityRule:
    """A recurring (day_of_week) or date-specific open window.

    day_of_week follows 0 = Sunday … 6 = Saturday. When a rule for an
    explicit date exists, weekday rules are ignored for that date only.
    """

    id: int
    host_id: str
    start_time: str                 # "HH:MM", host-local
    end_time: str                   # "HH:MM", host-local
    day_of_week: int | None = None
    rule_date: date | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if (self.day_of_week is None) == (self.rule_date is None):
            raise ValueError(
                "AvailabilityRule needs exactly one of day_of_week or rule_date"
            )
        if self.day_of_week is not None and not 0 <= self.day_of_week <= 6:
            raise ValueError(f"day_of_week must be 0-6, got {self.day_of_week}")


@dataclass
class EventType:
    """A bookable meeting template."""

    id: str
    host_id: str
    duration_minutes: int
    title: str = ""
    buffer_before: int = 0
    buffer_after: int = 0
    min_notice_minutes: int = 0
    max_future_days: int = 60
    daily_limit: int | None = None
    weekly_limit: int | None = None
    location_kind: str = "video"
    is_collective: bool = False
    collective_members: list[str] = field(default_factory=list)
    active: bool = True

    def __post_init__(self) -> None:
        if self.duration_minutes <= 0:
            raise ValueError("duration_minutes must be > 0")
        if self.buffer_before < 0 or self.buffer_after < 0:
            raise ValueError("buffers must be >= 0")
        if self.min_notice_minutes < 0:
            raise ValueError("min_notice_minutes must be >= 0")
        for name in ("daily_limit", "weekly_limit"):
            limit = getattr(self, name)
            if limit is not None and limit <= 0:
                raise ValueError(f"{name} must be > 0 when set")


@dataclass
class Booking:
    """An existing reservation of a host's time."""

    id: int
    host_id: str
    event_type_id: str
    start: datetime
    end: datetime
    status: BookingStatus = BookingStatus.CONFIRMED


@dataclass
class CalendarEvent:
    """A busy interval reported by an external calendar (transient)."""

    start: datetime
    end: datetime
    calendar_id: str
    provider: CalendarProvider
    summary: str | None = None


@dataclass(frozen=True)
class TimeSlot:
    """A candidate bookable interval, in UTC."""

    start: datetime
    end: datetime

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class TokenSet:
    """Credentials returned by a provider token refresh."""

    access_token: str
    expires_at: datetime
    refresh_token: str | None = None   # set only when the provider rotated it
