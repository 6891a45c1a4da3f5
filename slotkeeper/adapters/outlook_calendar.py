"""Outlook/365 calendar adapter — implements CalendarProviderAdapter via Microsoft Graph API.

All Microsoft-specific logic lives here. Core modules never import this
directly; they get it from the provider registry.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import httpx
from kiota_abstractions.api_error import APIError
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph.generated.models.event import Event
from msgraph.generated.models.free_busy_status import FreeBusyStatus
from msgraph.generated.users.item.calendar_view.calendar_view_request_builder import (
    CalendarViewRequestBuilder,
)

from slotkeeper.config import settings
from slotkeeper.data.models import CalendarEvent, CalendarProvider, TokenSet
from slotkeeper.integrations.ms_auth import get_graph_client, refresh_outlook_token
from slotkeeper.ports.calendar_port import (
    ProviderUnavailable,
    TokenRefreshCallback,
)

logger = logging.getLogger(__name__)

_PROVIDER = CalendarProvider.OUTLOOK.value
_SELECT = ["subject", "start", "end", "showAs", "isCancelled", "isAllDay"]


def _graph_datetime(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _parse_graph_datetime(value: str) -> datetime:
    """Parse Graph's "2026-02-14T10:00:00.0000000" (UTC, no offset)."""
    whole_seconds = value.split(".")[0].rstrip("Z")
    return datetime.fromisoformat(whole_seconds).replace(tzinfo=timezone.utc)


def _to_busy_event(event: Event) -> CalendarEvent | None:
    """Normalize a Graph Event, or None if it does not block time."""
    if event.show_as == FreeBusyStatus.Free:
        return None
    if event.is_cancelled or event.is_all_day:
        return None
    if not (event.start and event.start.date_time and event.end and event.end.date_time):
        return None

    return CalendarEvent(
        start=_parse_graph_datetime(event.start.date_time),
        end=_parse_graph_datetime(event.end.date_time),
        calendar_id="primary",
        provider=CalendarProvider.OUTLOOK,
        summary=event.subject or None,
    )


class OutlookCalendarAdapter:
    """Microsoft Outlook/365 implementation of CalendarProviderAdapter."""

    def __init__(
        self, timeout: float | None = None, page_size: int | None = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self._page_size = page_size if page_size is not None else settings.PROVIDER_PAGE_SIZE

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        return await refresh_outlook_token(refresh_token)

    async def fetch_busy_events(
        self,
        access_token: str,
        refresh_token: str | None,
        window_start: datetime,
        window_end: datetime,
        on_refresh: TokenRefreshCallback | None = None,
    ) -> list[CalendarEvent]:
        try:
            return await self._list_busy(access_token, window_start, window_end)
        except ProviderUnavailable as exc:
            if not (exc.is_unauthorized and refresh_token):
                logger.error("Outlook Calendar fetch events error: %s", exc)
                return []
            logger.info("Outlook rejected the access token, refreshing once")
        except Exception as exc:
            logger.error("Outlook Calendar fetch events error: %s", exc)
            return []

        try:
            tokens = await self.refresh_token(refresh_token)
            if on_refresh is not None:
                await on_refresh(tokens)
            return await self._list_busy(tokens.access_token, window_start, window_end)
        except Exception as exc:
            logger.error("Outlook Calendar retry after token refresh failed: %s", exc)
            return []

    async def _list_busy(
        self, access_token: str, window_start: datetime, window_end: datetime,
    ) -> list[CalendarEvent]:
        try:
            raw_events = await asyncio.wait_for(
                self._list_events(access_token, window_start, window_end),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                _PROVIDER, f"calendarView timed out after {self._timeout}s"
            ) from exc
        except APIError as exc:
            raise ProviderUnavailable(
                _PROVIDER,
                f"calendarView failed: {exc}",
                status_code=getattr(exc, "response_status_code", None),
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(_PROVIDER, f"calendarView failed: {exc}") from exc

        events = [ev for ev in map(_to_busy_event, raw_events) if ev is not None]
        logger.info(
            "Outlook returned %d busy event(s) of %d item(s) between %s and %s",
            len(events), len(raw_events), window_start.isoformat(), window_end.isoformat(),
        )
        return events

    async def _list_events(
        self, access_token: str, window_start: datetime, window_end: datetime,
    ) -> list[Event]:
        """Follow @odata.nextLink pages of /me/calendarView."""
        client = get_graph_client(access_token)
        query_params = CalendarViewRequestBuilder.CalendarViewRequestBuilderGetQueryParameters(
            start_date_time=_graph_datetime(window_start),
            end_date_time=_graph_datetime(window_end),
            select=_SELECT,
            top=self._page_size,
            orderby=["start/dateTime"],
        )
        config = RequestConfiguration(query_parameters=query_params)

        result = await client.me.calendar_view.get(config)
        events: list[Event] = []
        while result is not None:
            events.extend(result.value or [])
            if not result.odata_next_link:
                break
            result = await client.me.calendar_view.with_url(result.odata_next_link).get()
        return events
