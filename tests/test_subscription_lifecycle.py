from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from payhook.clients.graph import GraphAPIError
from payhook.schemas import GraphSubscription
from payhook.services.scheduler import TaskScheduler
from payhook.services.subscriptions import (
    BOOTSTRAP_JOB,
    RENEWAL_JOB,
    SubscriptionError,
    SubscriptionLifecycleManager,
    SubscriptionState,
)

RESOURCE = "/users/payments@example.com/messages"
OTHER_RESOURCE = "/users/someone-else@example.com/messages"


class FakeGraphClient:
    def __init__(self) -> None:
        self.remote: dict[str, GraphSubscription] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_create = False
        self.fail_list = False
        self.fail_delete: set[str] = set()
        self._counter = 0

    def seed(self, subscription_id: str, resource: str) -> None:
        self.remote[subscription_id] = GraphSubscription(
            id=subscription_id,
            resource=resource,
            expiration_date_time=datetime(2025, 3, 4, tzinfo=timezone.utc),
        )

    async def create_subscription(
        self, *, resource, notification_url, client_state, expires_at, change_type
    ):
        self.calls.append(("create", resource))
        if self.fail_create:
            raise GraphAPIError("create refused", status_code=400)
        self._counter += 1
        subscription = GraphSubscription(
            id=f"sub-{self._counter}",
            resource=resource,
            notification_url=notification_url,
            client_state=client_state,
            change_type=change_type,
            # Graph answers with a seven-digit fraction.
            expiration_date_time=expires_at.strftime("%Y-%m-%dT%H:%M:%S.%f") + "0Z",
        )
        self.remote[subscription.id] = subscription
        return subscription

    async def renew_subscription(self, subscription_id, *, expires_at):
        self.calls.append(("renew", subscription_id))
        if subscription_id not in self.remote:
            raise GraphAPIError("subscription not found", status_code=404)
        renewed = self.remote[subscription_id].model_copy(
            update={"expiration_date_time": expires_at}
        )
        self.remote[subscription_id] = renewed
        return renewed

    async def list_subscriptions(self):
        self.calls.append(("list", ""))
        if self.fail_list:
            raise GraphAPIError("list failed", status_code=503)
        return list(self.remote.values())

    async def delete_subscription(self, subscription_id):
        self.calls.append(("delete", subscription_id))
        if subscription_id in self.fail_delete:
            raise GraphAPIError("delete failed", status_code=500)
        self.remote.pop(subscription_id, None)

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


def _manager(graph: FakeGraphClient, clock) -> SubscriptionLifecycleManager:
    return SubscriptionLifecycleManager(
        graph,
        resource=RESOURCE,
        notification_url="https://hooks.example.com/api/webhooks/notifications",
        client_state="secret-state",
        clock=clock,
    )


@pytest.mark.asyncio
async def test_initialize_cleans_matching_subscriptions_then_creates(clock) -> None:
    graph = FakeGraphClient()
    graph.seed("stale-1", RESOURCE)
    graph.seed("stale-2", RESOURCE.lstrip("/"))
    graph.seed("foreign", OTHER_RESOURCE)
    manager = _manager(graph, clock)

    subscription = await manager.initialize()

    assert sorted(graph.remote) == ["foreign", subscription.subscription_id]
    assert manager.state is SubscriptionState.ACTIVE
    assert subscription.expires_at == clock.now + timedelta(minutes=4230 - 30)


@pytest.mark.asyncio
async def test_created_expiry_round_trips_through_status(clock) -> None:
    graph = FakeGraphClient()
    manager = _manager(graph, clock)

    subscription = await manager.create()
    status = manager.status()

    assert status.active is True
    assert status.subscription_id == subscription.subscription_id
    assert status.expires_at == subscription.expires_at
    assert status.expires_at.tzinfo is not None
    assert status.expires_at.utcoffset() == timedelta(0)
    assert status.resource == RESOURCE
    assert status.client_state == "secret-state"


@pytest.mark.asyncio
async def test_check_and_renew_is_noop_beyond_threshold(clock) -> None:
    graph = FakeGraphClient()
    manager = _manager(graph, clock)
    await manager.create()
    graph.calls.clear()

    clock.advance(timedelta(hours=24))
    await manager.check_and_renew()

    assert graph.calls == []


@pytest.mark.asyncio
async def test_check_and_renew_renews_once_within_threshold(clock) -> None:
    graph = FakeGraphClient()
    manager = _manager(graph, clock)
    created = await manager.create()
    graph.calls.clear()

    clock.advance(timedelta(hours=48))
    await manager.check_and_renew()

    assert graph.calls == [("renew", created.subscription_id)]
    status = manager.status()
    assert status.subscription_id == created.subscription_id
    assert status.expires_at == clock.now + timedelta(minutes=4230 - 30)


@pytest.mark.asyncio
async def test_failed_renewal_recreates_with_new_identity(clock) -> None:
    graph = FakeGraphClient()
    manager = _manager(graph, clock)
    created = await manager.create()
    # Someone deleted the subscription behind our back.
    graph.remote.clear()
    graph.calls.clear()

    clock.advance(timedelta(hours=50))
    await manager.check_and_renew()

    assert [call for call, _ in graph.calls] == ["renew", "list", "create"]
    status = manager.status()
    assert status.active is True
    assert status.subscription_id != created.subscription_id
    assert manager.state is SubscriptionState.ACTIVE


@pytest.mark.asyncio
async def test_failed_recreation_leaves_failed_then_next_tick_creates(clock) -> None:
    graph = FakeGraphClient()
    manager = _manager(graph, clock)
    await manager.create()
    graph.remote.clear()
    graph.fail_create = True

    clock.advance(timedelta(hours=50))
    await manager.check_and_renew()

    status = manager.status()
    assert manager.state is SubscriptionState.FAILED
    assert status.active is False
    assert "creation failed" in status.message

    graph.fail_create = False
    graph.calls.clear()
    await manager.check_and_renew()

    assert [call for call, _ in graph.calls] == ["create"]
    assert manager.status().active is True


@pytest.mark.asyncio
async def test_create_failure_raises_and_reports_inactive(clock) -> None:
    graph = FakeGraphClient()
    graph.fail_create = True
    manager = _manager(graph, clock)

    with pytest.raises(SubscriptionError):
        await manager.initialize()

    status = manager.status()
    assert status.state == "failed"
    assert status.active is False
    assert status.subscription_id is None


@pytest.mark.asyncio
async def test_cleanup_is_best_effort(clock) -> None:
    graph = FakeGraphClient()
    graph.seed("stale-1", RESOURCE)
    graph.seed("stale-2", RESOURCE)
    graph.fail_delete = {"stale-1"}
    manager = _manager(graph, clock)

    deleted = await manager.cleanup_existing()
    assert deleted == 1

    graph.fail_list = True
    assert await manager.cleanup_existing() == 0

    subscription = await manager.recreate()
    assert subscription.subscription_id in graph.remote


@pytest.mark.asyncio
async def test_cleanup_with_no_matches_deletes_nothing(clock) -> None:
    graph = FakeGraphClient()
    graph.seed("foreign", OTHER_RESOURCE)
    manager = _manager(graph, clock)

    assert await manager.cleanup_existing() == 0
    assert graph.count("delete") == 0


@pytest.mark.asyncio
async def test_start_schedules_bootstrap_and_renewal(clock) -> None:
    graph = FakeGraphClient()
    manager = _manager(graph, clock)
    scheduler = TaskScheduler()

    manager.start(scheduler)
    try:
        assert scheduler.job_names == sorted([BOOTSTRAP_JOB, RENEWAL_JOB])
    finally:
        await scheduler.shutdown()

    assert manager.state is SubscriptionState.UNINITIALIZED


def test_margin_must_be_shorter_than_lifetime() -> None:
    with pytest.raises(ValueError):
        SubscriptionLifecycleManager(
            FakeGraphClient(),
            resource=RESOURCE,
            notification_url="https://hooks.example.com/hook",
            client_state="x",
            max_lifetime=timedelta(minutes=30),
            expiry_margin=timedelta(minutes=30),
        )


class SlowCreateGraphClient(FakeGraphClient):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def create_subscription(self, **kwargs):
        await self.release.wait()
        return await super().create_subscription(**kwargs)


@pytest.mark.asyncio
async def test_status_answers_while_a_transition_waits_on_graph(clock) -> None:
    graph = SlowCreateGraphClient()
    manager = _manager(graph, clock)

    first = asyncio.create_task(manager.initialize())
    second = asyncio.create_task(manager.recreate())
    await asyncio.sleep(0)

    status = manager.status()
    assert status.state == SubscriptionState.RECREATING.value
    assert status.active is False
    assert graph.calls.count(("create", RESOURCE)) == 0

    graph.release.set()
    created = await first
    recreated = await second

    assert created.subscription_id == "sub-1"
    assert recreated.subscription_id == "sub-2"
    assert manager.status().subscription_id == "sub-2"
