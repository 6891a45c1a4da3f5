"""Calendar adapter registry — maps provider tags to adapter factories."""

from __future__ import annotations

from typing import Callable

from slotkeeper.data.models import CalendarProvider
from slotkeeper.ports.calendar_port import CalendarProviderAdapter

AdapterFactory = Callable[[], CalendarProviderAdapter]


def _google() -> CalendarProviderAdapter:
    from slotkeeper.adapters.google_calendar import GoogleCalendarAdapter

    return GoogleCalendarAdapter()


def _outlook() -> CalendarProviderAdapter:
    from slotkeeper.adapters.outlook_calendar import OutlookCalendarAdapter

    return OutlookCalendarAdapter()


def _key(provider: CalendarProvider | str) -> str:
    if isinstance(provider, CalendarProvider):
        return provider.value
    return str(provider).upper()


_REGISTRY: dict[str, AdapterFactory] = {
    CalendarProvider.GOOGLE.value: _google,
    CalendarProvider.OUTLOOK.value: _outlook,
}


def register_adapter(provider: CalendarProvider | str, factory: AdapterFactory) -> None:
    """Register (or replace) the adapter factory for a provider tag."""
    _REGISTRY[_key(provider)] = factory


def create_provider_adapter(provider: CalendarProvider | str) -> CalendarProviderAdapter:
    """Return the adapter registered for a connection's provider tag.

    Raises:
        ValueError: no adapter is registered for the tag.
    """
    factory = _REGISTRY.get(_key(provider))
    if factory is None:
        raise ValueError(f"Unknown calendar provider: {provider!r}")
    return factory()
