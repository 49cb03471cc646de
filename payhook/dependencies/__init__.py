"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_credential_cache,
    get_dispatcher,
    get_email_extractor,
    get_graph_client,
    get_identity_client,
    get_ingestion_service,
    get_payment_applier,
    get_payment_store,
    get_scheduler,
    get_subscription_manager,
)
from .config import get_app_settings

__all__ = [
    "get_app_settings",
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
