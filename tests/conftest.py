"""Shared test fixtures and configuration.

Sets up fake environment variables before any slotkeeper import so
slotkeeper.config loads a predictable configuration, and provides temp-file
store fixtures plus a controllable clock.
"""

import os

# Patch env vars BEFORE any slotkeeper imports
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("GOOGLE_CLIENT_ID", "fake-google-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "fake-google-client-secret")
os.environ.setdefault("MS_CLIENT_ID", "fake-ms-client-id")
os.environ.setdefault("MS_CLIENT_SECRET", "fake-ms-client-secret")
os.environ.setdefault("EVENT_CACHE_TTL_SECONDS", "300")
os.environ.setdefault("SLOT_INCREMENT_MINUTES", "15")

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Callable clock whose current time the test controls."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    """A clock frozen at 2026-03-01 00:00 UTC."""
    return FakeClock(datetime(2026, 3, 1, tzinfo=timezone.utc))


@pytest.fixture
def connection_db(tmp_path):
    """Return a ConnectionDB instance backed by a temp file."""
    from slotkeeper.data.db import ConnectionDB
    return ConnectionDB(db_path=str(tmp_path / "test_connections.db"))


@pytest.fixture
def scheduling_db(tmp_path):
    """Return a SchedulingDB instance backed by a temp file."""
    from slotkeeper.data.db import SchedulingDB
    return SchedulingDB(db_path=str(tmp_path / "test_scheduling.db"))
