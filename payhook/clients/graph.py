"""Microsoft Graph REST client wrapper."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, TYPE_CHECKING

import httpx
from pydantic import ValidationError

from payhook.clients.identity import AuthenticationError
from payhook.core.config import GraphSettings
from payhook.schemas import GraphSubscription
from payhook.utils.datetimes import format_graph_datetime

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from payhook.services.credentials import CredentialCache

logger = logging.getLogger(__name__)


class GraphAPIError(Exception):
    """Raised when Graph returns an error status or cannot be reached."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class GraphClient:
    """Subscription management and mailbox access for one mailbox."""

    def __init__(
        self,
        settings: GraphSettings,
        credentials: "CredentialCache",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._credentials = credentials
        self._transport = transport

    @property
    def mailbox_user_id(self) -> str:
        return self._settings.mailbox_user_id

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        token = await self._credentials.get_token()
        headers = {"Authorization": f"Bearer {token.value}"}
        try:
            async with httpx.AsyncClient(
                base_url=self._settings.base_url.rstrip("/"),
                timeout=self._settings.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, json=json, params=params, headers=headers
                )
        except httpx.HTTPError as exc:
            raise GraphAPIError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            raise GraphAPIError(
                f"{method} {path} returned {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        where = f"{response.request.method} {response.request.url.path}"
        try:
            body = response.json()
        except ValueError as exc:
            raise GraphAPIError(
                f"{where} returned an unreadable body",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise GraphAPIError(
                f"{where} returned {type(body).__name__}, expected an object",
                status_code=response.status_code,
            )
        return body

    @staticmethod
    def _subscription(body: dict[str, Any]) -> GraphSubscription:
        try:
            return GraphSubscription.model_validate(body)
        except ValidationError as exc:
            raise GraphAPIError(
                f"Malformed subscription payload ({exc.error_count()} errors)"
            ) from exc

    async def create_subscription(
        self,
        *,
        resource: str,
        notification_url: str,
        client_state: str,
        expires_at: datetime,
        change_type: str = "created",
    ) -> GraphSubscription:
        payload = {
            "changeType": change_type,
            "notificationUrl": notification_url,
            "resource": resource,
            "expirationDateTime": format_graph_datetime(expires_at),
            "clientState": client_state,
        }
        response = await self._request("POST", "/subscriptions", json=payload)
        return self._subscription(self._decode(response))

    async def renew_subscription(
        self, subscription_id: str, *, expires_at: datetime
    ) -> GraphSubscription:
        payload = {"expirationDateTime": format_graph_datetime(expires_at)}
        response = await self._request(
            "PATCH", f"/subscriptions/{subscription_id}", json=payload
        )
        body = self._decode(response)
        body.setdefault("id", subscription_id)
        return self._subscription(body)

    async def delete_subscription(self, subscription_id: str) -> None:
        await self._request("DELETE", f"/subscriptions/{subscription_id}")

    async def list_subscriptions(self) -> list[GraphSubscription]:
        """Return every subscription owned by the application, following paging."""
        subscriptions: list[GraphSubscription] = []
        path: str | None = "/subscriptions"
        while path:
            response = await self._request("GET", path)
            body = self._decode(response)
            subscriptions.extend(
                self._subscription(item) for item in body.get("value") or []
            )
            next_link = body.get("@odata.nextLink")
            path = self._relative(next_link) if next_link else None
        return subscriptions

    async def get_message(self, message_id: str) -> dict[str, Any]:
        response = await self._request(
            "GET",
            f"/users/{self.mailbox_user_id}/messages/{message_id}",
            params={"$select": "id,subject,from,body,receivedDateTime,isRead"},
        )
        return self._decode(response)

    async def mark_message_read(self, message_id: str) -> None:
        await self._request(
            "PATCH",
            f"/users/{self.mailbox_user_id}/messages/{message_id}",
            json={"isRead": True},
        )

    async def test_connection(self) -> dict[str, Any]:
        """Fetch the mailbox owner to prove token and permissions work."""
        try:
            response = await self._request(
                "GET",
                f"/users/{self.mailbox_user_id}",
                params={"$select": "id,displayName,mail"},
            )
        except (GraphAPIError, AuthenticationError) as exc:
            logger.error("Graph connection test failed: %s", exc)
            return {"connected": False, "error": str(exc)}
        try:
            user = self._decode(response)
        except GraphAPIError as exc:
            logger.error("Graph connection test failed: %s", exc)
            return {"connected": False, "error": str(exc)}
        logger.info("Graph connection OK for mailbox %s", user.get("displayName"))
        return {
            "connected": True,
            "display_name": user.get("displayName"),
            "mail": user.get("mail"),
        }

    def _relative(self, link: str) -> str:
        base = self._settings.base_url.rstrip("/")
        if link.startswith(base):
            return link[len(base):]
        return link


__all__ = ["GraphAPIError", "GraphClient"]
