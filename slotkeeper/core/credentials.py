"""
Slotkeeper — Ensure-fresh-credentials wrapper.

Sits between the conflict aggregator and a provider adapter: refreshes an
expired access token before the fetch, persists whatever tokens the
provider hands back, then delegates to the raw adapter fetch.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from slotkeeper.core.timeutil import Clock, utc_now
from slotkeeper.data.models import CalendarConnection, CalendarEvent, TokenSet

if TYPE_CHECKING:
    from slotkeeper.ports.calendar_port import CalendarProviderAdapter
    from slotkeeper.ports.store_port import ConnectionStore

logger = logging.getLogger(__name__)


class FreshCredentialsFetcher:
    """Fetches a connection's busy events with up-to-date credentials."""

    def __init__(
        self,
        adapter: CalendarProviderAdapter,
        connection_store: ConnectionStore,
        clock: Clock = utc_now,
    ) -> None:
        self._adapter = adapter
        self._store = connection_store
        self._clock = clock

    async def fetch(
        self,
        connection: CalendarConnection,
        window_start: datetime,
        window_end: datetime,
    ) -> list[CalendarEvent]:
        access_token = connection.access_token
        refresh_token = connection.refresh_token

        if connection.is_expired(self._clock()) and refresh_token:
            try:
                tokens = await self._adapter.refresh_token(refresh_token)
            except Exception as exc:
                # The adapter gets the stale token and handles the 401 itself.
                logger.warning(
                    "Proactive token refresh failed for calendar connection %s (%s): %s",
                    connection.id, connection.provider.value, exc,
                )
            else:
                await self._persist(connection, tokens)
                access_token = tokens.access_token
                refresh_token = tokens.refresh_token or refresh_token

        async def on_refresh(tokens: TokenSet) -> None:
            await self._persist(connection, tokens)

        return await self._adapter.fetch_busy_events(
            access_token, refresh_token, window_start, window_end, on_refresh=on_refresh,
        )

    async def _persist(self, connection: CalendarConnection, tokens: TokenSet) -> None:
        # A failed write keeps the fresh token for this fetch only.
        try:
            await asyncio.to_thread(
                self._store.update_connection_tokens,
                connection.id,
                tokens.access_token,
                tokens.expires_at,
                tokens.refresh_token,
            )
        except Exception as exc:
            logger.warning(
                "Could not persist refreshed tokens for calendar connection %s: %s",
                connection.id, exc,
            )
            return
        logger.debug("Persisted refreshed tokens for calendar connection %s", connection.id)
