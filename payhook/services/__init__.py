"""Service layer exports."""

from .credentials import AccessToken, CredentialCache
from .dispatch import NotificationDispatcher
from .email_extraction import PaymentEmailExtractor, PaymentFields, extract_payment_fields
from .ingestion import IngestionSummary, NotificationIngestionService, NotificationOutcome
from .scheduler import TaskScheduler
from .subscriptions import (
    SubscriptionError,
    SubscriptionLifecycleManager,
    SubscriptionState,
    TrackedSubscription,
)

__all__ = [
    "AccessToken",
    "CredentialCache",
    "IngestionSummary",
    "NotificationDispatcher",
    "NotificationIngestionService",
    "NotificationOutcome",
    "PaymentEmailExtractor",
    "PaymentFields",
    "SubscriptionError",
    "SubscriptionLifecycleManager",
    "SubscriptionState",
    "TaskScheduler",
    "TrackedSubscription",
    "extract_payment_fields",
]
