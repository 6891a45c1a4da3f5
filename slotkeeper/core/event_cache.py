"""
Slotkeeper — Busy-event cache.

Process-local, in-memory cache of merged calendar events keyed by the exact
(host, window start, window end) triple. A request for a slightly different
window always misses. Entries expire after a fixed TTL and expired ones are
swept on every write. invalidate() drops a host's entries whenever its
calendar settings change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from slotkeeper.core.timeutil import Clock, utc_now
from slotkeeper.data.models import CalendarEvent

logger = logging.getLogger(__name__)

_CacheKey = tuple[str, datetime, datetime]


@dataclass
class _CacheEntry:
    events: list[CalendarEvent]
    expires_at: datetime


class EventCache:
    """TTL cache of merged busy events per host and exact window."""

    def __init__(self, ttl_seconds: int | None = None, clock: Clock = utc_now) -> None:
        if ttl_seconds is None:
            from slotkeeper.config import settings
            ttl_seconds = settings.EVENT_CACHE_TTL_SECONDS
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: dict[_CacheKey, _CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(
        self, host_id: str, window_start: datetime, window_end: datetime,
    ) -> list[CalendarEvent] | None:
        """Return the cached events, or None on a miss or expired entry."""
        key = (host_id, window_start, window_end)
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Event cache miss for host %s", host_id)
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            logger.debug("Event cache entry expired for host %s", host_id)
            return None
        logger.debug("Event cache hit for host %s (%d events)", host_id, len(entry.events))
        return list(entry.events)

    def set(
        self,
        host_id: str,
        window_start: datetime,
        window_end: datetime,
        events: list[CalendarEvent],
    ) -> None:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._entries[(host_id, window_start, window_end)] = _CacheEntry(
            events=list(events), expires_at=now + self._ttl,
        )

    def invalidate(self, host_id: str | None = None) -> int:
        """Drop all entries of one host, or everything. Returns the count dropped."""
        if host_id is None:
            dropped = len(self._entries)
            self._entries.clear()
            return dropped

        stale = [key for key in self._entries if key[0] == host_id]
        for key in stale:
            del self._entries[key]
        return len(stale)
