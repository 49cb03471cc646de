from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from payhook.clients.graph import GraphAPIError, GraphClient
from payhook.core.config import GraphSettings
from payhook.services.credentials import AccessToken
from payhook.services.subscriptions import SubscriptionLifecycleManager, SubscriptionState

RESOURCE = "/users/payments@example.com/messages"


class StaticCredentials:
    async def get_token(self) -> AccessToken:
        return AccessToken("graph-token", datetime(2099, 1, 1, tzinfo=timezone.utc))


def _graph_client(handler) -> GraphClient:
    settings = GraphSettings(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret-1",
        mailbox_user_id="payments@example.com",
    )
    return GraphClient(
        settings, StaticCredentials(), transport=httpx.MockTransport(handler)
    )


def _manager(graph: GraphClient, clock) -> SubscriptionLifecycleManager:
    return SubscriptionLifecycleManager(
        graph,
        resource=RESOURCE,
        notification_url="https://hooks.example.com/api/webhooks/notifications",
        client_state="secret-state",
        clock=clock,
    )


class FakeGraphServer:
    """Minimal /subscriptions endpoint; ``renew_body`` replaces PATCH answers."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict] = {}
        self.requests: list[tuple[str, str]] = []
        self.create_answer: dict | None = None
        self.renew_body: bytes | None = None
        self._counter = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1.0")
        self.requests.append((request.method, path))
        if request.method == "GET" and path == "/subscriptions":
            return httpx.Response(200, json={"value": list(self.subscriptions.values())})
        if request.method == "POST" and path == "/subscriptions":
            if self.create_answer is not None:
                return httpx.Response(201, json=self.create_answer)
            payload = json.loads(request.content)
            self._counter += 1
            created = {
                "id": f"sub-{self._counter}",
                "resource": payload["resource"],
                "expirationDateTime": payload["expirationDateTime"],
            }
            self.subscriptions[created["id"]] = created
            return httpx.Response(201, json=created)
        if request.method == "PATCH" and path.startswith("/subscriptions/"):
            if self.renew_body is not None:
                return httpx.Response(
                    200, content=self.renew_body, headers={"content-type": "text/html"}
                )
            return httpx.Response(200, json=json.loads(request.content))
        if request.method == "DELETE" and path.startswith("/subscriptions/"):
            self.subscriptions.pop(path.rsplit("/", 1)[-1], None)
            return httpx.Response(204)
        return httpx.Response(404, json={"error": {"code": "NotFound"}})


@pytest.mark.asyncio
async def test_non_json_message_body_is_graph_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, content=b"<html>maintenance</html>", headers={"content-type": "text/html"}
        )

    client = _graph_client(handler)

    with pytest.raises(GraphAPIError) as exc_info:
        await client.get_message("m1")

    assert exc_info.value.status_code == 200
    assert "unreadable body" in str(exc_info.value)


@pytest.mark.asyncio
async def test_subscription_answer_without_id_is_graph_error() -> None:
    server = FakeGraphServer()
    server.create_answer = {"error": "unexpected"}
    client = _graph_client(server)

    with pytest.raises(GraphAPIError):
        await client.create_subscription(
            resource=RESOURCE,
            notification_url="https://hooks.example.com/api/webhooks/notifications",
            client_state="secret-state",
            expires_at=datetime(2025, 3, 5, tzinfo=timezone.utc),
        )


@pytest.mark.asyncio
async def test_bearer_token_is_sent_and_pages_are_followed() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Authorization"])
        if "skiptoken" in str(request.url):
            return httpx.Response(200, json={"value": [{"id": "sub-2"}]})
        return httpx.Response(
            200,
            json={
                "value": [{"id": "sub-1", "resource": RESOURCE}],
                "@odata.nextLink": "https://graph.microsoft.com/v1.0/subscriptions?$skiptoken=abc",
            },
        )

    client = _graph_client(handler)

    subscriptions = await client.list_subscriptions()

    assert [item.id for item in subscriptions] == ["sub-1", "sub-2"]
    assert seen == ["Bearer graph-token", "Bearer graph-token"]


@pytest.mark.asyncio
async def test_malformed_create_answer_leaves_manager_failed(clock) -> None:
    server = FakeGraphServer()
    server.create_answer = {"error": "unexpected"}
    manager = _manager(_graph_client(server), clock)

    await manager.check_and_renew()

    status = manager.status()
    assert manager.state is SubscriptionState.FAILED
    assert status.active is False
    assert "creation failed" in status.message


@pytest.mark.asyncio
async def test_unreadable_renewal_answer_falls_back_to_recreate(clock) -> None:
    server = FakeGraphServer()
    manager = _manager(_graph_client(server), clock)
    await manager.initialize()
    assert manager.status().subscription_id == "sub-1"

    server.renew_body = b"<html>gateway</html>"
    clock.advance(timedelta(hours=60))
    await manager.check_and_renew()

    status = manager.status()
    assert manager.state is SubscriptionState.ACTIVE
    assert status.active is True
    assert status.subscription_id == "sub-2"
    assert ("PATCH", "/subscriptions/sub-1") in server.requests
    assert ("DELETE", "/subscriptions/sub-1") in server.requests
    assert list(server.subscriptions) == ["sub-2"]
