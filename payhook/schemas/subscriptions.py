"""
Schemas describing Graph subscriptions and the admin status projections.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from payhook.utils.datetimes import parse_graph_datetime


class GraphSubscription(BaseModel):
    """Subscription resource as returned by ``/subscriptions``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    resource: Optional[str] = None
    change_type: Optional[str] = Field(None, alias="changeType")
    notification_url: Optional[str] = Field(None, alias="notificationUrl")
    client_state: Optional[str] = Field(None, alias="clientState")
    expiration_date_time: Optional[datetime] = Field(None, alias="expirationDateTime")

    @field_validator("expiration_date_time", mode="before")
    @classmethod
    def _parse_expiry(cls, value):
        if value is None or value == "":
            return None
        return parse_graph_datetime(value)


class SubscriptionStatus(BaseModel):
    """Read-only view of the lifecycle manager for the admin surface."""

    state: str
    active: bool
    subscription_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    resource: Optional[str] = None
    notification_url: Optional[str] = None
    client_state: Optional[str] = None
    message: str


class TokenStatus(BaseModel):
    """Read-only view of the bearer token cache."""

    has_token: bool
    expires_at: Optional[datetime] = None
    expiring_soon: bool
    minutes_until_expiry: int = 0


__all__ = ["GraphSubscription", "SubscriptionStatus", "TokenStatus"]
