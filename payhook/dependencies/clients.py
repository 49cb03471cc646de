"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Every factory is cached, so the lifespan hook and the request handlers see the
same credential cache, lifecycle manager and dispatcher instances.
"""

from datetime import timedelta
from functools import lru_cache

from payhook.clients import (
    AzureIdentityClient,
    GraphClient,
    NetSuiteClient,
    NetSuitePaymentApplier,
    SQLitePaymentStore,
)
from payhook.services import (
    CredentialCache,
    NotificationDispatcher,
    NotificationIngestionService,
    PaymentEmailExtractor,
    SubscriptionLifecycleManager,
    TaskScheduler,
)

from .config import get_app_settings


@lru_cache()
def get_identity_client() -> AzureIdentityClient:
    """Provide the client-credentials token exchanger."""
    return AzureIdentityClient(get_app_settings().graph)


@lru_cache()
def get_credential_cache() -> CredentialCache:
    """Provide the process-wide bearer token cache."""
    settings = get_app_settings()
    return CredentialCache(
        get_identity_client(),
        refresh_buffer=timedelta(minutes=settings.credentials.refresh_buffer_minutes),
    )


@lru_cache()
def get_graph_client() -> GraphClient:
    """Provide Microsoft Graph client instance."""
    return GraphClient(get_app_settings().graph, get_credential_cache())


@lru_cache()
def get_payment_store() -> SQLitePaymentStore:
    """Provide shared SQLite payment store."""
    return SQLitePaymentStore(get_app_settings().payments_db_path)


@lru_cache()
def get_email_extractor() -> PaymentEmailExtractor:
    return PaymentEmailExtractor()


@lru_cache()
def get_payment_applier() -> NetSuitePaymentApplier | None:
    """Provide the NetSuite applier when it is enabled and fully configured."""
    settings = get_app_settings().netsuite
    if not settings.is_configured:
        return None
    return NetSuitePaymentApplier(NetSuiteClient(settings))


@lru_cache()
def get_ingestion_service() -> NotificationIngestionService:
    """Build the notification ingestion pipeline using configured clients."""
    settings = get_app_settings()
    return NotificationIngestionService(
        graph_client=get_graph_client(),
        store=get_payment_store(),
        extractor=get_email_extractor(),
        applier=get_payment_applier(),
        expected_client_state=settings.webhook.client_state,
        mark_as_read=settings.webhook.mark_as_read,
    )


@lru_cache()
def get_dispatcher() -> NotificationDispatcher:
    """Provide the bounded queue feeding the ingestion workers."""
    settings = get_app_settings().dispatch
    return NotificationDispatcher(
        get_ingestion_service(),
        queue_size=settings.queue_size,
        workers=settings.workers,
        block_on_full=settings.block_on_full,
        enqueue_timeout=settings.enqueue_timeout_seconds,
    )


@lru_cache()
def get_subscription_manager() -> SubscriptionLifecycleManager:
    """Provide the single lifecycle manager for the watched mailbox."""
    settings = get_app_settings()
    webhook = settings.webhook
    return SubscriptionLifecycleManager(
        get_graph_client(),
        resource=settings.graph.watched_resource,
        notification_url=str(webhook.notification_url),
        client_state=webhook.client_state,
        change_type=webhook.change_type,
        max_lifetime=timedelta(minutes=webhook.max_lifetime_minutes),
        expiry_margin=timedelta(minutes=webhook.expiry_margin_minutes),
        renewal_threshold=timedelta(hours=webhook.renewal_threshold_hours),
        initial_delay=webhook.initial_delay_seconds,
        check_interval=webhook.check_interval_hours * 3600,
    )


@lru_cache()
def get_scheduler() -> TaskScheduler:
    return TaskScheduler()


__all__ = [
    "get_credential_cache",
    "get_dispatcher",
    "get_email_extractor",
    "get_graph_client",
    "get_identity_client",
    "get_ingestion_service",
    "get_payment_applier",
    "get_payment_store",
    "get_scheduler",
    "get_subscription_manager",
]
