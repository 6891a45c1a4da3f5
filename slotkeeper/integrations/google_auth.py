"""
Slotkeeper — Google Calendar Authentication.

Builds Calendar API v3 services from a connection's stored access token and
refreshes expired tokens with the configured OAuth client. The interactive
consent flow belongs to the surrounding application, not to this package.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from slotkeeper.data.models import TokenSet
from slotkeeper.ports.calendar_port import ProviderUnavailable, TokenRefreshError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]


def get_calendar_service(access_token: str):
    """Return a Google Calendar API v3 service authorised with access_token.

    The credentials carry no refresh token, so an expired token surfaces as
    an HTTP 401 instead of being refreshed behind the caller's back.
    """
    creds = Credentials(token=access_token, scopes=SCOPES)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def refresh_google_token(refresh_token: str) -> TokenSet:
    """Exchange a refresh token for a new access token.

    Blocking; callers run it in a worker thread.

    Raises:
        TokenRefreshError: Google rejected the refresh token.
        ProviderUnavailable: the token endpoint could not be reached.
    """
    from slotkeeper.config import settings

    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=settings.GOOGLE_TOKEN_URI,
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        scopes=SCOPES,
    )
    try:
        creds.refresh(Request())
    except RefreshError as exc:
        logger.warning("Google token refresh rejected: %s", exc)
        raise TokenRefreshError(f"Google rejected the refresh token: {exc}") from exc
    except TransportError as exc:
        raise ProviderUnavailable("GOOGLE", f"token endpoint unreachable: {exc}") from exc

    # google-auth reports expiry as a naive UTC datetime
    if creds.expiry is not None:
        expires_at = creds.expiry.replace(tzinfo=timezone.utc)
    else:
        expires_at = datetime.now(timezone.utc) + timedelta(hours=1)

    logger.info("Google token refreshed, valid until %s", expires_at.isoformat())
    return TokenSet(access_token=creds.token, expires_at=expires_at)
