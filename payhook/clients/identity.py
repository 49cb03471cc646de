"""
Azure AD client-credentials exchange.

The service runs unattended, so it authenticates as the application itself
(tenant + client id + client secret) rather than on behalf of a user.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Tuple

import httpx

from fastapi import status

from payhook.core.config import GraphSettings
from payhook.utils.datetimes import utcnow


class AuthenticationError(Exception):
    """Raised when the token endpoint refuses or fails the exchange."""


class AzureIdentityClient:
    """Exchange application credentials for Graph bearer tokens."""

    def __init__(
        self,
        graph_settings: GraphSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._graph = graph_settings
        self._transport = transport

    @property
    def token_url(self) -> str:
        authority = self._graph.authority_url.rstrip("/")
        return f"{authority}/{self._graph.tenant_id}/oauth2/v2.0/token"

    async def exchange_client_credentials(self) -> Tuple[str, datetime]:
        """
        Request a new access token.

        Returns a tuple of (access_token, expires_at) where ``expires_at`` is an
        aware UTC datetime computed from ``expires_in``.
        """
        payload = {
            "client_id": self._graph.client_id,
            "client_secret": self._graph.client_secret,
            "scope": self._graph.scope,
            "grant_type": "client_credentials",
        }

        requested_at = utcnow()
        try:
            async with httpx.AsyncClient(
                timeout=self._graph.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.token_url, data=payload)
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != status.HTTP_200_OK:
            raise AuthenticationError(
                f"Token endpoint returned {response.status_code}: {response.text[:200]}"
            )

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise AuthenticationError("Token endpoint returned a non-JSON body.") from exc

        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not expires_in:
            raise AuthenticationError("Incomplete token payload returned from Azure AD.")

        return access_token, requested_at + timedelta(seconds=int(expires_in))


__all__ = ["AuthenticationError", "AzureIdentityClient"]
