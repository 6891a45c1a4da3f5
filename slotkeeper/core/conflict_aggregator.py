"""
Slotkeeper — Conflict Aggregator.

Fans out to every conflict-checked calendar of a host, merges the busy
events and caches the merged list per (host, window).

Fail-open: a calendar that cannot be read contributes no events. The
aggregator never raises because of a provider; it only raises ValueError
for a malformed window.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from slotkeeper.adapters.registry import create_provider_adapter
from slotkeeper.core.credentials import FreshCredentialsFetcher
from slotkeeper.core.event_cache import EventCache
from slotkeeper.core.timeutil import Clock, utc_now, validate_window
from slotkeeper.data.models import CalendarConnection, CalendarEvent

if TYPE_CHECKING:
    from slotkeeper.ports.calendar_port import CalendarProviderAdapter
    from slotkeeper.ports.store_port import ConnectionStore

logger = logging.getLogger(__name__)


@dataclass
class FetchOutcome:
    """Result of one connection's fetch: its events, or the error it hit."""

    connection: CalendarConnection
    events: list[CalendarEvent] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConflictAggregator:
    """Merges busy events from all of a host's conflict-checked calendars."""

    def __init__(
        self,
        connection_store: ConnectionStore,
        cache: EventCache | None = None,
        adapter_factory: Callable[..., CalendarProviderAdapter] = create_provider_adapter,
        clock: Clock = utc_now,
    ) -> None:
        self._store = connection_store
        self._cache = cache if cache is not None else EventCache(clock=clock)
        self._adapter_factory = adapter_factory
        self._clock = clock

    async def get_conflicting_events(
        self, host_id: str, window_start: datetime, window_end: datetime,
    ) -> list[CalendarEvent]:
        """Return the merged busy events of the host's calendars in the window."""
        validate_window(window_start, window_end)

        cached = self._cache.get(host_id, window_start, window_end)
        if cached is not None:
            return cached

        connections = await asyncio.to_thread(
            self._store.list_connections, host_id, True,
        )
        if not connections:
            logger.debug("Host %s has no conflict-checked calendars", host_id)
            return []

        outcomes = await asyncio.gather(
            *(self._settle(conn, window_start, window_end) for conn in connections)
        )

        events: list[CalendarEvent] = []
        for outcome in outcomes:
            if outcome.ok:
                events.extend(outcome.events)
            else:
                logger.error(
                    "Calendar connection %s (%s) failed, treating as free: %s",
                    outcome.connection.id, outcome.connection.provider.value, outcome.error,
                )

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        logger.info(
            "Merged %d busy event(s) from %d calendar(s) for host %s (%d failed)",
            len(events), len(outcomes), host_id, failed,
        )
        self._cache.set(host_id, window_start, window_end, events)
        return events

    def invalidate(self, host_id: str | None = None) -> None:
        """Forget cached events of one host, or of every host."""
        dropped = self._cache.invalidate(host_id)
        logger.info("Invalidated %d cached window(s) for host %s", dropped, host_id or "*")

    async def _settle(
        self,
        connection: CalendarConnection,
        window_start: datetime,
        window_end: datetime,
    ) -> FetchOutcome:
        try:
            adapter = self._adapter_factory(connection.provider)
            fetcher = FreshCredentialsFetcher(adapter, self._store, clock=self._clock)
            events = await fetcher.fetch(connection, window_start, window_end)
        except Exception as exc:
            return FetchOutcome(connection=connection, error=exc)
        return FetchOutcome(connection=connection, events=list(events))
