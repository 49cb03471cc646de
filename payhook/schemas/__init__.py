"""Public schema exports."""

from .notifications import ChangeNotification, NotificationBatch, ResourceData
from .subscriptions import GraphSubscription, SubscriptionStatus, TokenStatus

__all__ = [
    "ChangeNotification",
    "GraphSubscription",
    "NotificationBatch",
    "ResourceData",
    "SubscriptionStatus",
    "TokenStatus",
]
