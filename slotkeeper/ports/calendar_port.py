"""Calendar port — abstract interface for calendar provider adapters.

Core modules depend on this protocol, never on a specific provider.
"""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, Protocol

from slotkeeper.data.models import CalendarEvent, TokenSet

# Awaited by an adapter after it refreshed credentials mid-fetch.
TokenRefreshCallback = Callable[[TokenSet], Awaitable[None]]


class CalendarError(Exception):
    """Raised when any calendar provider operation fails."""


class ProviderUnavailable(CalendarError):
    """A provider call failed (network, HTTP status, auth or timeout)."""

    def __init__(
        self, provider: str, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401


class TokenRefreshError(CalendarError):
    """The provider rejected a refresh token (revoked or expired)."""


class CalendarProviderAdapter(Protocol):
    """Fetches busy intervals from one external calendar provider."""

    async def fetch_busy_events(
        self,
        access_token: str,
        refresh_token: str | None,
        window_start: datetime,
        window_end: datetime,
        on_refresh: TokenRefreshCallback | None = None,
    ) -> list[CalendarEvent]: ...

    async def refresh_token(self, refresh_token: str) -> TokenSet: ...
