"""Store ports — abstract interfaces for persistent scheduling data.

The availability engine and the conflict aggregator depend on these
protocols; data.db provides the SQLite implementations.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from slotkeeper.data.models import (
    AvailabilityRule,
    Booking,
    CalendarConnection,
    EventType,
    Host,
)


class NotFound(LookupError):
    """Raised when a host, event type or connection does not exist."""


class ValidationError(ValueError):
    """Raised when a connection mutation would break a store invariant."""


class ConnectionStore(Protocol):
    """Calendar connections of hosts."""

    def list_connections(
        self, host_id: str, check_conflicts: bool | None = None
    ) -> list[CalendarConnection]: ...

    def get_connection(self, connection_id: str) -> CalendarConnection | None: ...

    def update_connection_tokens(
        self,
        connection_id: str,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None: ...


class SchedulingStore(Protocol):
    """Hosts, availability rules, event types and bookings."""

    def get_host(self, host_id: str) -> Host | None: ...

    def get_event_type(self, event_type_id: str) -> EventType | None: ...

    def list_availability_rules(
        self, host_id: str, enabled_only: bool = True
    ) -> list[AvailabilityRule]: ...

    def list_busy_bookings(
        self, host_id: str, start: datetime, end: datetime
    ) -> list[Booking]: ...

    def count_bookings_by_day(
        self, event_type_id: str, start: datetime, end: datetime, timezone: str
    ) -> dict[date, int]: ...
