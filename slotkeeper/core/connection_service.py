"""
Slotkeeper — Calendar connection service.

The only path through which callers change a host's calendar connections.
Every successful change drops the host's cached busy events so the next
availability request sees the new set of calendars.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from slotkeeper.data.models import CalendarConnection, CalendarProvider
from slotkeeper.ports.store_port import NotFound

if TYPE_CHECKING:
    from slotkeeper.core.conflict_aggregator import ConflictAggregator
    from slotkeeper.data.db import ConnectionDB

logger = logging.getLogger(__name__)


class ConnectionService:
    def __init__(self, connection_store: ConnectionDB, aggregator: ConflictAggregator) -> None:
        self._store = connection_store
        self._aggregator = aggregator

    async def connect(
        self,
        host_id: str,
        provider: CalendarProvider | str,
        email: str,
        access_token: str,
        refresh_token: str | None = None,
        expires_at: datetime | None = None,
        label: str | None = None,
    ) -> CalendarConnection:
        connection = await asyncio.to_thread(
            self._store.upsert_connection,
            host_id, provider, email, access_token, refresh_token, expires_at, label,
        )
        self._aggregator.invalidate(host_id)
        return connection

    async def update_settings(
        self,
        connection_id: str,
        host_id: str,
        label: str | None = None,
        check_conflicts: bool | None = None,
        is_primary: bool | None = None,
    ) -> CalendarConnection:
        """Change label, conflict checking or primary flag of a host's connection.

        Raises:
            NotFound: no such connection for this host.
            ValidationError: the change would break a connection invariant.
        """
        await self._owned(connection_id, host_id)
        connection = await asyncio.to_thread(
            self._store.update_settings,
            connection_id, label, check_conflicts, is_primary,
        )
        self._aggregator.invalidate(host_id)
        return connection

    async def disconnect(self, connection_id: str, host_id: str) -> CalendarConnection:
        """Remove a host's connection.

        Raises:
            NotFound: no such connection for this host.
            ValidationError: it is the host's only connection.
        """
        await self._owned(connection_id, host_id)
        connection = await asyncio.to_thread(self._store.delete_connection, connection_id)
        self._aggregator.invalidate(host_id)
        logger.info("Host %s disconnected calendar %s", host_id, connection.email)
        return connection

    async def _owned(self, connection_id: str, host_id: str) -> CalendarConnection:
        connection = await asyncio.to_thread(self._store.get_connection, connection_id)
        if connection is None or connection.host_id != host_id:
            # Foreign connections are reported as missing.
            raise NotFound(f"Calendar connection {connection_id} not found")
        return connection
