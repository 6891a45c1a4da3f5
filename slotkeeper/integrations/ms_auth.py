"""Microsoft Graph authentication helper.

Wraps a connection's delegated OAuth access token in an azure-core token
credential for GraphServiceClient, and refreshes expired tokens against the
Microsoft identity platform token endpoint.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone

import httpx
from azure.core.credentials import AccessToken
from msgraph import GraphServiceClient

from slotkeeper.config import settings
from slotkeeper.data.models import TokenSet
from slotkeeper.ports.calendar_port import ProviderUnavailable, TokenRefreshError

logger = logging.getLogger(__name__)

GRAPH_SCOPES = ["https://graph.microsoft.com/.default"]
_REFRESH_SCOPE = "https://graph.microsoft.com/Calendars.Read offline_access"
_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"


class BearerTokenCredential:
    """azure-core TokenCredential that hands out a fixed access token."""

    def __init__(self, access_token: str) -> None:
        self._access_token = access_token

    def get_token(self, *scopes: str, **kwargs: object) -> AccessToken:
        # Real expiry is tracked on the connection; Graph answers 401 when stale.
        return AccessToken(self._access_token, int(time.time()) + 3600)


def get_graph_client(access_token: str) -> GraphServiceClient:
    """Return a GraphServiceClient acting as the connection's user."""
    return GraphServiceClient(
        credentials=BearerTokenCredential(access_token),
        scopes=GRAPH_SCOPES,
    )


async def refresh_outlook_token(refresh_token: str) -> TokenSet:
    """Exchange a refresh token for a new Graph access token.

    Microsoft may rotate the refresh token; the new one is returned in
    TokenSet.refresh_token when present.

    Raises:
        TokenRefreshError: the identity platform rejected the refresh token.
        ProviderUnavailable: the token endpoint could not be reached.
    """
    url = _TOKEN_URL.format(tenant=settings.MS_TENANT_ID)
    data = {
        "client_id": settings.MS_CLIENT_ID,
        "client_secret": settings.MS_CLIENT_SECRET,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
        "scope": _REFRESH_SCOPE,
    }

    try:
        async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
            resp = await client.post(url, data=data)
    except httpx.HTTPError as exc:
        raise ProviderUnavailable("OUTLOOK", f"token endpoint unreachable: {exc}") from exc

    if resp.status_code != 200:
        logger.warning("Outlook token refresh rejected with HTTP %s", resp.status_code)
        raise TokenRefreshError(
            f"Microsoft rejected the refresh token (HTTP {resp.status_code})"
        )

    payload = resp.json()
    expires_at = datetime.now(timezone.utc) + timedelta(
        seconds=int(payload.get("expires_in", 3600))
    )
    logger.info("Outlook token refreshed, valid until %s", expires_at.isoformat())
    return TokenSet(
        access_token=payload["access_token"],
        expires_at=expires_at,
        refresh_token=payload.get("refresh_token"),
    )
