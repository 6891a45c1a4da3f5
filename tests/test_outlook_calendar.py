"""Tests for the Outlook/365 calendar adapter.

All Microsoft Graph API calls are mocked.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import datetime, timezone

import httpx
from kiota_abstractions.api_error import APIError
from msgraph.generated.models.free_busy_status import FreeBusyStatus

from slotkeeper.adapters.outlook_calendar import (
    OutlookCalendarAdapter,
    _graph_datetime,
    _parse_graph_datetime,
    _to_busy_event,
)
from slotkeeper.data.models import CalendarProvider, TokenSet

_PATCH_CLIENT = "slotkeeper.adapters.outlook_calendar.get_graph_client"
_PATCH_REFRESH = "slotkeeper.adapters.outlook_calendar.refresh_outlook_token"

WINDOW_START = datetime(2026, 3, 10, tzinfo=timezone.utc)
WINDOW_END = datetime(2026, 3, 11, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_graph_event(
    subject="Busy",
    start_dt="2026-03-10T10:00:00.0000000",
    end_dt="2026-03-10T11:00:00.0000000",
    show_as=FreeBusyStatus.Busy,
    is_cancelled=False,
    is_all_day=False,
):
    """Create a mock Graph Event object."""
    event = MagicMock()
    event.subject = subject
    event.start = MagicMock()
    event.start.date_time = start_dt
    event.end = MagicMock()
    event.end.date_time = end_dt
    event.show_as = show_as
    event.is_cancelled = is_cancelled
    event.is_all_day = is_all_day
    return event


def _page(events, next_link=None):
    page = MagicMock()
    page.value = events
    page.odata_next_link = next_link
    return page


def _api_error(status):
    err = APIError()
    err.response_status_code = status
    return err


def _mock_client(get_result=None, get_side_effect=None):
    client = MagicMock()
    client.me.calendar_view.get = AsyncMock(return_value=get_result, side_effect=get_side_effect)
    return client


# ---------------------------------------------------------------------------
# Tests for conversion helpers
# ---------------------------------------------------------------------------


class TestGraphDatetimes:
    def test_parse_seven_digit_fraction(self):
        assert _parse_graph_datetime("2026-03-10T10:00:00.0000000") == datetime(
            2026, 3, 10, 10, tzinfo=timezone.utc
        )

    def test_format_is_utc_with_z(self):
        assert _graph_datetime(WINDOW_START) == "2026-03-10T00:00:00.000Z"


class TestToBusyEvent:
    def test_busy_event(self):
        ev = _to_busy_event(_mock_graph_event())
        assert ev.start == datetime(2026, 3, 10, 10, tzinfo=timezone.utc)
        assert ev.end == datetime(2026, 3, 10, 11, tzinfo=timezone.utc)
        assert ev.provider == CalendarProvider.OUTLOOK

    def test_tentative_blocks(self):
        assert _to_busy_event(_mock_graph_event(show_as=FreeBusyStatus.Tentative)) is not None

    def test_free_skipped(self):
        assert _to_busy_event(_mock_graph_event(show_as=FreeBusyStatus.Free)) is None

    def test_cancelled_skipped(self):
        assert _to_busy_event(_mock_graph_event(is_cancelled=True)) is None

    def test_all_day_skipped(self):
        assert _to_busy_event(_mock_graph_event(is_all_day=True)) is None

    def test_missing_times_skipped(self):
        event = _mock_graph_event()
        event.start = None
        assert _to_busy_event(event) is None


# ---------------------------------------------------------------------------
# Tests for OutlookCalendarAdapter
# ---------------------------------------------------------------------------


class TestOutlookFetchBusyEvents:
    @pytest.mark.asyncio
    async def test_returns_busy_events(self):
        client = _mock_client(_page([
            _mock_graph_event(),
            _mock_graph_event(show_as=FreeBusyStatus.Free),
        ]))
        with patch(_PATCH_CLIENT, return_value=client) as mock_get_client:
            events = await OutlookCalendarAdapter().fetch_busy_events(
                "tok", "ref", WINDOW_START, WINDOW_END,
            )

        assert len(events) == 1
        mock_get_client.assert_called_once_with("tok")
        config = client.me.calendar_view.get.call_args.args[0]
        assert config.query_parameters.start_date_time == "2026-03-10T00:00:00.000Z"
        assert config.query_parameters.end_date_time == "2026-03-11T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_follows_next_link(self):
        client = _mock_client(_page([_mock_graph_event()], next_link="https://graph/next"))
        second = client.me.calendar_view.with_url.return_value
        second.get = AsyncMock(return_value=_page([_mock_graph_event(subject="Later")]))

        with patch(_PATCH_CLIENT, return_value=client):
            events = await OutlookCalendarAdapter().fetch_busy_events(
                "tok", None, WINDOW_START, WINDOW_END,
            )

        assert [e.summary for e in events] == ["Busy", "Later"]
        client.me.calendar_view.with_url.assert_called_once_with("https://graph/next")

    @pytest.mark.asyncio
    async def test_api_error_returns_empty(self):
        client = _mock_client(get_side_effect=_api_error(503))
        with patch(_PATCH_CLIENT, return_value=client), \
             patch(_PATCH_REFRESH, new_callable=AsyncMock) as mock_refresh:
            events = await OutlookCalendarAdapter().fetch_busy_events(
                "tok", "ref", WINDOW_START, WINDOW_END,
            )
        assert events == []
        mock_refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_error_returns_empty(self):
        client = _mock_client(get_side_effect=httpx.ConnectError("down"))
        with patch(_PATCH_CLIENT, return_value=client):
            events = await OutlookCalendarAdapter().fetch_busy_events(
                "tok", "ref", WINDOW_START, WINDOW_END,
            )
        assert events == []

    @pytest.mark.asyncio
    async def test_unauthorized_refreshes_and_retries_once(self):
        stale = _mock_client(get_side_effect=_api_error(401))
        fresh = _mock_client(_page([_mock_graph_event()]))
        tokens = TokenSet("new-tok", datetime(2026, 3, 10, 1, tzinfo=timezone.utc), "rotated")
        on_refresh = AsyncMock()

        with patch(_PATCH_CLIENT, side_effect=[stale, fresh]) as mock_get_client, \
             patch(_PATCH_REFRESH, new_callable=AsyncMock, return_value=tokens) as mock_refresh:
            events = await OutlookCalendarAdapter().fetch_busy_events(
                "old-tok", "ref", WINDOW_START, WINDOW_END, on_refresh=on_refresh,
            )

        assert len(events) == 1
        mock_refresh.assert_awaited_once_with("ref")
        on_refresh.assert_awaited_once_with(tokens)
        assert [c.args[0] for c in mock_get_client.call_args_list] == ["old-tok", "new-tok"]

    @pytest.mark.asyncio
    async def test_timeout_returns_empty(self):
        client = MagicMock()

        async def _hang(*args, **kwargs):
            await asyncio.sleep(10)

        client.me.calendar_view.get = _hang
        with patch(_PATCH_CLIENT, return_value=client):
            events = await OutlookCalendarAdapter(timeout=0.01).fetch_busy_events(
                "tok", "ref", WINDOW_START, WINDOW_END,
            )
        assert events == []
