"""Tests for the ensure-fresh-credentials wrapper."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, timedelta, timezone

from slotkeeper.core.credentials import FreshCredentialsFetcher
from slotkeeper.data.models import CalendarConnection, CalendarProvider, TokenSet
from slotkeeper.ports.calendar_port import TokenRefreshError

START = datetime(2026, 3, 10, tzinfo=timezone.utc)
END = datetime(2026, 3, 11, tzinfo=timezone.utc)


def _connection(expires_at, refresh_token="ref"):
    return CalendarConnection(
        id="c1", host_id="h1", provider=CalendarProvider.GOOGLE,
        access_token="old-tok", refresh_token=refresh_token,
        email="a@example.com", expires_at=expires_at,
    )


def _adapter(tokens=None, refresh_error=None):
    adapter = MagicMock()
    adapter.refresh_token = AsyncMock(return_value=tokens, side_effect=refresh_error)
    adapter.fetch_busy_events = AsyncMock(return_value=[])
    return adapter


class TestFreshCredentialsFetcher:
    @pytest.mark.asyncio
    async def test_valid_token_used_as_is(self, clock):
        adapter = _adapter()
        store = MagicMock()
        conn = _connection(expires_at=clock() + timedelta(hours=1))

        await FreshCredentialsFetcher(adapter, store, clock=clock).fetch(conn, START, END)

        adapter.refresh_token.assert_not_awaited()
        store.update_connection_tokens.assert_not_called()
        args = adapter.fetch_busy_events.call_args.args
        assert args == ("old-tok", "ref", START, END)

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_and_persisted(self, clock):
        tokens = TokenSet("new-tok", clock() + timedelta(hours=1), "rotated")
        adapter = _adapter(tokens)
        store = MagicMock()
        conn = _connection(expires_at=clock() - timedelta(minutes=1))

        await FreshCredentialsFetcher(adapter, store, clock=clock).fetch(conn, START, END)

        adapter.refresh_token.assert_awaited_once_with("ref")
        store.update_connection_tokens.assert_called_once_with(
            "c1", "new-tok", tokens.expires_at, "rotated",
        )
        args = adapter.fetch_busy_events.call_args.args
        assert args[:2] == ("new-tok", "rotated")

    @pytest.mark.asyncio
    async def test_refresh_failure_falls_back_to_old_token(self, clock):
        adapter = _adapter(refresh_error=TokenRefreshError("revoked"))
        store = MagicMock()
        conn = _connection(expires_at=clock() - timedelta(minutes=1))

        await FreshCredentialsFetcher(adapter, store, clock=clock).fetch(conn, START, END)

        store.update_connection_tokens.assert_not_called()
        assert adapter.fetch_busy_events.call_args.args[0] == "old-tok"

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token_not_refreshed(self, clock):
        adapter = _adapter()
        conn = _connection(expires_at=clock() - timedelta(minutes=1), refresh_token=None)

        await FreshCredentialsFetcher(adapter, MagicMock(), clock=clock).fetch(conn, START, END)

        adapter.refresh_token.assert_not_awaited()
        assert adapter.fetch_busy_events.call_args.args[:2] == ("old-tok", None)

    @pytest.mark.asyncio
    async def test_unknown_expiry_not_refreshed(self, clock):
        adapter = _adapter()
        await FreshCredentialsFetcher(adapter, MagicMock(), clock=clock).fetch(
            _connection(expires_at=None), START, END,
        )
        adapter.refresh_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mid_fetch_refresh_is_persisted(self, clock, connection_db):
        conn = connection_db.upsert_connection(
            "h1", CalendarProvider.GOOGLE, "a@example.com", "old-tok", "ref",
        )
        tokens = TokenSet("retry-tok", clock() + timedelta(hours=1))

        async def fetch_busy_events(access_token, refresh_token, start, end, on_refresh=None):
            await on_refresh(tokens)
            return []

        adapter = MagicMock()
        adapter.fetch_busy_events = fetch_busy_events

        await FreshCredentialsFetcher(adapter, connection_db, clock=clock).fetch(conn, START, END)

        stored = connection_db.get_connection(conn.id)
        assert stored.access_token == "retry-tok"
        assert stored.refresh_token == "ref"
        assert stored.expires_at == tokens.expires_at

    @pytest.mark.asyncio
    async def test_unexpected_refresh_error_still_fetches(self, clock):
        adapter = _adapter(refresh_error=ValueError("not json"))
        store = MagicMock()
        conn = _connection(expires_at=clock() - timedelta(minutes=1))

        await FreshCredentialsFetcher(adapter, store, clock=clock).fetch(conn, START, END)

        store.update_connection_tokens.assert_not_called()
        adapter.fetch_busy_events.assert_awaited_once()
        assert adapter.fetch_busy_events.call_args.args[0] == "old-tok"

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_new_token(self, clock):
        tokens = TokenSet("new-tok", clock() + timedelta(hours=1), "rotated")
        adapter = _adapter(tokens)
        store = MagicMock()
        store.update_connection_tokens.side_effect = RuntimeError("database is locked")
        conn = _connection(expires_at=clock() - timedelta(minutes=1))

        await FreshCredentialsFetcher(adapter, store, clock=clock).fetch(conn, START, END)

        store.update_connection_tokens.assert_called_once()
        adapter.fetch_busy_events.assert_awaited_once()
        assert adapter.fetch_busy_events.call_args.args[:2] == ("new-tok", "rotated")

    @pytest.mark.asyncio
    async def test_mid_fetch_persist_failure_does_not_abort(self, clock):
        store = MagicMock()
        store.update_connection_tokens.side_effect = RuntimeError("database is locked")
        tokens = TokenSet("retry-tok", clock() + timedelta(hours=1))

        async def fetch_busy_events(access_token, refresh_token, start, end, on_refresh=None):
            await on_refresh(tokens)
            return ["event"]

        adapter = MagicMock()
        adapter.fetch_busy_events = fetch_busy_events
        conn = _connection(expires_at=clock() + timedelta(hours=1))

        events = await FreshCredentialsFetcher(adapter, store, clock=clock).fetch(conn, START, END)

        assert events == ["event"]
