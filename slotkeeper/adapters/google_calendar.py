"""Google Calendar adapter — implements CalendarProviderAdapter for Google Calendar API.

All Google-specific logic lives here. Core modules never import this directly;
they get it from the provider registry.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from googleapiclient.errors import HttpError

from slotkeeper.config import settings
from slotkeeper.data.models import CalendarEvent, CalendarProvider, TokenSet
from slotkeeper.integrations.google_auth import get_calendar_service, refresh_google_token
from slotkeeper.ports.calendar_port import (
    ProviderUnavailable,
    TokenRefreshCallback,
)

logger = logging.getLogger(__name__)

_PROVIDER = CalendarProvider.GOOGLE.value


def _parse_rfc3339(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value).astimezone(timezone.utc)


def _to_busy_event(item: dict) -> CalendarEvent | None:
    """Normalize a Google event resource, or None if it does not block time."""
    if item.get("status") == "cancelled":
        return None
    start = item.get("start", {}).get("dateTime")
    end = item.get("end", {}).get("dateTime")
    # All-day events only carry "date"
    if not start or not end:
        return None
    if item.get("transparency") == "transparent":
        return None

    return CalendarEvent(
        start=_parse_rfc3339(start),
        end=_parse_rfc3339(end),
        calendar_id="primary",
        provider=CalendarProvider.GOOGLE,
        summary=item.get("summary") or None,
    )


class GoogleCalendarAdapter:
    """Google Calendar implementation of CalendarProviderAdapter."""

    def __init__(
        self, timeout: float | None = None, page_size: int | None = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self._page_size = page_size if page_size is not None else settings.PROVIDER_PAGE_SIZE

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(refresh_google_token, refresh_token),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                _PROVIDER, f"token refresh timed out after {self._timeout}s"
            ) from exc

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
                logger.error("Google Calendar fetch events error: %s", exc)
                return []
            logger.info("Google Calendar rejected the access token, refreshing once")
        except Exception as exc:
            logger.error("Google Calendar fetch events error: %s", exc)
            return []

        try:
            tokens = await self.refresh_token(refresh_token)
            if on_refresh is not None:
                await on_refresh(tokens)
            return await self._list_busy(tokens.access_token, window_start, window_end)
        except Exception as exc:
            logger.error("Google Calendar retry after token refresh failed: %s", exc)
            return []

    async def _list_busy(
        self, access_token: str, window_start: datetime, window_end: datetime,
    ) -> list[CalendarEvent]:
        try:
            items = await asyncio.wait_for(
                asyncio.to_thread(self._list_items, access_token, window_start, window_end),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                _PROVIDER, f"events.list timed out after {self._timeout}s"
            ) from exc

        events = [ev for ev in map(_to_busy_event, items) if ev is not None]
        logger.info(
            "Google Calendar returned %d busy event(s) of %d item(s) between %s and %s",
            len(events), len(items), window_start.isoformat(), window_end.isoformat(),
        )
        return events

    def _list_items(
        self, access_token: str, window_start: datetime, window_end: datetime,
    ) -> list[dict]:
        """Page through events.list and return every raw item."""
        service = get_calendar_service(access_token)
        items: list[dict] = []
        page_token: str | None = None

        while True:
            try:
                result = (
                    service.events()
                    .list(
                        calendarId="primary",
                        timeMin=window_start.astimezone(timezone.utc).isoformat(),
                        timeMax=window_end.astimezone(timezone.utc).isoformat(),
                        singleEvents=True,
                        orderBy="startTime",
                        maxResults=self._page_size,
                        pageToken=page_token,
                    )
                    .execute()
                )
            except HttpError as exc:
                raise ProviderUnavailable(
                    _PROVIDER, f"events.list failed: {exc}", status_code=exc.resp.status
                ) from exc

            items.extend(result.get("items", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                return items
