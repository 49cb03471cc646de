"""
Keep one Graph change-notification subscription alive for the watched mailbox.

Graph caps mail subscriptions at a few days, so the manager creates a
subscription at startup, renews it when its expiry comes within the renewal
threshold and rebuilds it from scratch when renewal is refused. The current
identity, expiry and state live in a single immutable snapshot that is
replaced whole, which keeps ``status()`` consistent while a renewal runs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from payhook.clients.graph import GraphAPIError
from payhook.clients.identity import AuthenticationError
from payhook.schemas import SubscriptionStatus
from payhook.services.scheduler import TaskScheduler
from payhook.utils.datetimes import utcnow

logger = logging.getLogger(__name__)

BOOTSTRAP_JOB = "subscription-bootstrap"
RENEWAL_JOB = "subscription-renewal"


class SubscriptionError(Exception):
    """Raised when a subscription cannot be created."""


class SubscriptionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    RENEWING = "renewing"
    RECREATING = "recreating"
    FAILED = "failed"


@dataclass(frozen=True)
class TrackedSubscription:
    subscription_id: str
    resource: str
    expires_at: datetime
    client_state: str
    notification_url: str


@dataclass(frozen=True)
class _Snapshot:
    state: SubscriptionState
    subscription: Optional[TrackedSubscription]
    message: str


def _same_resource(left: Optional[str], right: str) -> bool:
    if not left:
        return False
    return left.strip("/").lower() == right.strip("/").lower()


class SubscriptionLifecycleManager:
    """Owns the create / renew / recreate cycle of the mailbox subscription."""

    def __init__(
        self,
        graph_client,
        *,
        resource: str,
        notification_url: str,
        client_state: str,
        change_type: str = "created",
        max_lifetime: timedelta = timedelta(minutes=4230),
        expiry_margin: timedelta = timedelta(minutes=30),
        renewal_threshold: timedelta = timedelta(hours=24),
        initial_delay: float = 30.0,
        check_interval: float = 6 * 3600.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if expiry_margin >= max_lifetime:
            raise ValueError("expiry margin must be shorter than the maximum lifetime")
        self._graph = graph_client
        self._resource = resource
        self._notification_url = notification_url
        self._client_state = client_state
        self._change_type = change_type
        self._max_lifetime = max_lifetime
        self._expiry_margin = expiry_margin
        self._renewal_threshold = renewal_threshold
        self._initial_delay = initial_delay
        self._check_interval = check_interval
        self._clock = clock or utcnow
        # Held across a transition's Graph calls: scheduled and admin transitions
        # never interleave. status() never takes it.
        self._transition_lock = asyncio.Lock()
        self._snapshot = _Snapshot(
            state=SubscriptionState.UNINITIALIZED,
            subscription=None,
            message="Subscription not initialized yet",
        )

    @property
    def resource(self) -> str:
        return self._resource

    @property
    def state(self) -> SubscriptionState:
        return self._snapshot.state

    def start(self, scheduler: TaskScheduler) -> None:
        """Schedule the delayed bootstrap and the periodic renewal check."""
        scheduler.run_once(BOOTSTRAP_JOB, self._bootstrap, delay=self._initial_delay)
        scheduler.run_periodic(
            RENEWAL_JOB,
            self.check_and_renew,
            interval=self._check_interval,
            first_delay=self._initial_delay + self._check_interval,
        )
        logger.info(
            "Subscription bootstrap in %.0fs, renewal check every %.1fh for %s",
            self._initial_delay,
            self._check_interval / 3600,
            self._resource,
        )

    async def _bootstrap(self) -> None:
        try:
            await self.initialize()
        except SubscriptionError as exc:
            logger.error(
                "Subscription bootstrap for %s failed, next renewal check retries: %s",
                self._resource,
                exc,
            )

    async def initialize(self) -> TrackedSubscription:
        """Remove stale subscriptions on the resource and create a fresh one."""
        async with self._transition_lock:
            return await self._recreate_locked()

    async def recreate(self) -> TrackedSubscription:
        """Manual cleanup-then-create; errors reach the caller."""
        async with self._transition_lock:
            logger.info("Manual subscription recreation requested for %s", self._resource)
            return await self._recreate_locked()

    async def create(self) -> TrackedSubscription:
        async with self._transition_lock:
            return await self._create_locked()

    async def renew(self) -> Optional[TrackedSubscription]:
        """Extend the tracked subscription, rebuilding it once if Graph refuses."""
        async with self._transition_lock:
            return await self._renew_locked()

    async def check_and_renew(self) -> None:
        """Periodic job: create when nothing is tracked, renew when close to expiry."""
        async with self._transition_lock:
            current = self._snapshot.subscription
            if current is None:
                logger.info("No tracked subscription for %s, creating one", self._resource)
                try:
                    await self._create_locked()
                except SubscriptionError as exc:
                    logger.error("Subscription creation failed: %s", exc)
                return

            remaining = current.expires_at - self._clock()
            if remaining > self._renewal_threshold:
                logger.debug(
                    "Subscription %s valid for %s, no renewal needed",
                    current.subscription_id,
                    remaining,
                )
                return

            logger.info(
                "Subscription %s expires in %s, renewing",
                current.subscription_id,
                remaining,
            )
            await self._renew_locked()

    async def cleanup_existing(self) -> int:
        """Delete every remote subscription on the watched resource; best-effort."""
        try:
            subscriptions = await self._graph.list_subscriptions()
        except (GraphAPIError, AuthenticationError) as exc:
            logger.warning("Could not list subscriptions for cleanup: %s", exc)
            return 0

        deleted = 0
        for subscription in subscriptions:
            if not _same_resource(subscription.resource, self._resource):
                continue
            try:
                await self._graph.delete_subscription(subscription.id)
            except (GraphAPIError, AuthenticationError) as exc:
                logger.warning(
                    "Could not delete stale subscription %s: %s", subscription.id, exc
                )
                continue
            deleted += 1
            logger.info(
                "Deleted stale subscription %s on %s", subscription.id, self._resource
            )

        if deleted:
            logger.info("Cleanup removed %d subscription(s) on %s", deleted, self._resource)
        return deleted

    def status(self) -> SubscriptionStatus:
        snapshot = self._snapshot
        subscription = snapshot.subscription
        active = (
            subscription is not None
            and snapshot.state in (SubscriptionState.ACTIVE, SubscriptionState.RENEWING)
            and subscription.expires_at > self._clock()
        )
        return SubscriptionStatus(
            state=snapshot.state.value,
            active=active,
            subscription_id=subscription.subscription_id if subscription else None,
            expires_at=subscription.expires_at if subscription else None,
            resource=subscription.resource if subscription else self._resource,
            notification_url=(
                subscription.notification_url if subscription else self._notification_url
            ),
            client_state=subscription.client_state if subscription else self._client_state,
            message=snapshot.message,
        )

    def _next_expiry(self) -> datetime:
        return self._clock() + self._max_lifetime - self._expiry_margin

    def _transition(
        self,
        state: SubscriptionState,
        subscription: Optional[TrackedSubscription],
        message: str,
    ) -> None:
        self._snapshot = _Snapshot(state=state, subscription=subscription, message=message)

    async def _recreate_locked(self) -> TrackedSubscription:
        self._transition(
            SubscriptionState.RECREATING,
            self._snapshot.subscription,
            "Recreating subscription",
        )
        await self.cleanup_existing()
        return await self._create_locked()

    async def _create_locked(self) -> TrackedSubscription:
        requested_expiry = self._next_expiry()
        try:
            remote = await self._graph.create_subscription(
                resource=self._resource,
                notification_url=self._notification_url,
                client_state=self._client_state,
                expires_at=requested_expiry,
                change_type=self._change_type,
            )
        except (GraphAPIError, AuthenticationError) as exc:
            message = f"Subscription creation failed: {exc}"
            self._transition(SubscriptionState.FAILED, None, message)
            raise SubscriptionError(message) from exc

        subscription = TrackedSubscription(
            subscription_id=remote.id,
            resource=remote.resource or self._resource,
            expires_at=remote.expiration_date_time or requested_expiry,
            client_state=self._client_state,
            notification_url=remote.notification_url or self._notification_url,
        )
        self._transition(
            SubscriptionState.ACTIVE,
            subscription,
            f"Subscription active until {subscription.expires_at.isoformat()}",
        )
        logger.info(
            "Created subscription %s on %s, expires at %s",
            subscription.subscription_id,
            subscription.resource,
            subscription.expires_at.isoformat(),
        )
        return subscription

    async def _renew_locked(self) -> Optional[TrackedSubscription]:
        current = self._snapshot.subscription
        if current is None:
            try:
                return await self._create_locked()
            except SubscriptionError as exc:
                logger.error("Subscription creation failed: %s", exc)
                return None

        self._transition(SubscriptionState.RENEWING, current, "Renewing subscription")
        requested_expiry = self._next_expiry()
        try:
            remote = await self._graph.renew_subscription(
                current.subscription_id, expires_at=requested_expiry
            )
        except (GraphAPIError, AuthenticationError) as exc:
            logger.warning(
                "Renewal of subscription %s failed, recreating: %s",
                current.subscription_id,
                exc,
            )
            try:
                return await self._recreate_locked()
            except SubscriptionError as create_exc:
                logger.error(
                    "Recreation after failed renewal of %s failed: %s",
                    current.subscription_id,
                    create_exc,
                )
                return None

        renewed = TrackedSubscription(
            subscription_id=current.subscription_id,
            resource=current.resource,
            expires_at=remote.expiration_date_time or requested_expiry,
            client_state=current.client_state,
            notification_url=current.notification_url,
        )
        self._transition(
            SubscriptionState.ACTIVE,
            renewed,
            f"Subscription active until {renewed.expires_at.isoformat()}",
        )
        logger.info(
            "Renewed subscription %s until %s",
            renewed.subscription_id,
            renewed.expires_at.isoformat(),
        )
        return renewed


__all__ = [
    "SubscriptionError",
    "SubscriptionLifecycleManager",
    "SubscriptionState",
    "TrackedSubscription",
]
