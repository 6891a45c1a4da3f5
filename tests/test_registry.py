"""Tests for the calendar adapter registry."""

import pytest
from unittest.mock import MagicMock, patch

from slotkeeper.adapters.google_calendar import GoogleCalendarAdapter
from slotkeeper.adapters.outlook_calendar import OutlookCalendarAdapter
from slotkeeper.adapters.registry import _REGISTRY, create_provider_adapter, register_adapter
from slotkeeper.data.models import CalendarProvider


class TestCreateProviderAdapter:
    def test_google(self):
        assert isinstance(create_provider_adapter(CalendarProvider.GOOGLE), GoogleCalendarAdapter)

    def test_outlook(self):
        assert isinstance(create_provider_adapter(CalendarProvider.OUTLOOK), OutlookCalendarAdapter)

    def test_plain_string_tag(self):
        assert isinstance(create_provider_adapter("google"), GoogleCalendarAdapter)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown calendar provider"):
            create_provider_adapter("YAHOO")


class TestRegisterAdapter:
    def test_register_new_provider(self):
        fake = MagicMock()
        with patch.dict(_REGISTRY):
            register_adapter("CALDAV", lambda: fake)
            assert create_provider_adapter("caldav") is fake
        with pytest.raises(ValueError):
            create_provider_adapter("CALDAV")
