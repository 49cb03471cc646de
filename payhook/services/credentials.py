"""
Process-wide cache for the Graph bearer token.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol, Tuple

from payhook.clients.identity import AuthenticationError
from payhook.schemas import TokenStatus
from payhook.utils.datetimes import utcnow

logger = logging.getLogger(__name__)


class TokenExchanger(Protocol):
    async def exchange_client_credentials(self) -> Tuple[str, datetime]:
        ...


@dataclass(frozen=True, slots=True)
class AccessToken:
    """Bearer token and its absolute expiry; replaced as a unit."""

    value: str
    expires_at: datetime

    def expires_within(self, window: timedelta, *, now: datetime) -> bool:
        return self.expires_at <= now + window


class CredentialCache:
    """Hands out a valid token, collapsing concurrent refreshes into one exchange."""

    def __init__(
        self,
        exchanger: TokenExchanger,
        *,
        refresh_buffer: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._exchanger = exchanger
        self._refresh_buffer = refresh_buffer
        self._clock = clock or utcnow
        self._token: Optional[AccessToken] = None
        self._refresh_lock = asyncio.Lock()

    def _is_usable(self, token: Optional[AccessToken]) -> bool:
        return token is not None and not token.expires_within(
            self._refresh_buffer, now=self._clock()
        )

    async def get_token(self) -> AccessToken:
        """Return the cached token, refreshing it first when it is missing or stale."""
        token = self._token
        if self._is_usable(token):
            return token  # type: ignore[return-value]

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock.
            token = self._token
            if self._is_usable(token):
                return token  # type: ignore[return-value]
            logger.info("Access token missing or expiring soon, refreshing")
            return await self._refresh_locked()

    async def refresh(self) -> AccessToken:
        """Force a new exchange regardless of the cached token's age."""
        async with self._refresh_lock:
            return await self._refresh_locked()

    async def refresh_in_background(self) -> None:
        """Scheduled proactive refresh; failures wait for the next tick."""
        try:
            await self.refresh()
        except AuthenticationError:
            logger.exception("Proactive token refresh failed; retrying on next tick")

    async def _refresh_locked(self) -> AccessToken:
        value, expires_at = await self._exchanger.exchange_client_credentials()
        token = AccessToken(value=value, expires_at=expires_at)
        self._token = token
        logger.info("Access token refreshed, expires at %s", expires_at.isoformat())
        return token

    def status(self) -> TokenStatus:
        token = self._token
        now = self._clock()
        if token is None:
            return TokenStatus(has_token=False, expiring_soon=True)
        remaining = token.expires_at - now
        return TokenStatus(
            has_token=True,
            expires_at=token.expires_at,
            expiring_soon=token.expires_within(self._refresh_buffer, now=now),
            minutes_until_expiry=max(int(remaining.total_seconds() // 60), 0),
        )


__all__ = ["AccessToken", "CredentialCache", "TokenExchanger"]
