"""
Tool: OAuth Token Refresh
Purpose: Exchange a refresh token for a new access token (Google, Microsoft)

Interactive consent flows are out of scope: accounts are configured with
tokens obtained elsewhere, and this module only keeps them fresh.

Usage:
    from calbridge.providers.oauth import GOOGLE_TOKEN_URL, refresh_access_token

    tokens = await refresh_access_token(session, GOOGLE_TOKEN_URL, client_id, secret, refresh)
    access_token = tokens["access_token"]
"""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from calbridge.errors import AuthFailureError, ProviderUnavailableError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
MICROSOFT_SCOPES = "offline_access Calendars.ReadWrite User.Read"


async def refresh_access_token(
    session: aiohttp.ClientSession,
    token_url: str,
    client_id: str | None,
    client_secret: str | None,
    refresh_token: str | None,
    provider: str,
    scope: str | None = None,
) -> dict[str, Any]:
    """
    Refresh an expired access token.

    Args:
        session: HTTP session to use
        token_url: Provider token endpoint
        client_id: OAuth client ID
        client_secret: OAuth client secret
        refresh_token: Refresh token
        provider: Provider type (for error context)
        scope: Scopes to request (Microsoft requires them on refresh)

    Returns:
        Token response (access_token, expires_in, optional refresh_token)

    Raises:
        AuthFailureError: Missing credentials or refresh rejected
        ProviderUnavailableError: Token endpoint unreachable
    """
    if not (refresh_token and client_id and client_secret):
        raise AuthFailureError(
            "Token refresh requires refresh_token, client_id and client_secret",
            provider=provider,
        )

    token_data = {
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    if scope:
        token_data["scope"] = scope

    try:
        async with session.post(token_url, data=token_data) as resp:
            if resp.status != 200:
                error = await resp.text()
                raise AuthFailureError(
                    f"Token refresh failed: {error[:200]}",
                    provider=provider,
                    details={"status": resp.status},
                )
            tokens = await resp.json(content_type=None)
    except aiohttp.ClientError as e:
        raise ProviderUnavailableError(f"Token endpoint unreachable: {e!s}", provider=provider) from e

    if not tokens.get("access_token"):
        raise AuthFailureError("Token refresh returned no access token", provider=provider)

    logger.debug(f"Refreshed {provider} access token (expires in {tokens.get('expires_in')}s)")
    return tokens
