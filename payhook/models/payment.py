"""
Domain models for persisted payment notifications.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from payhook.utils.datetimes import utcnow


class PaymentStatus(str, Enum):
    """Processing state of a payment notification."""

    RECEIVED = "RECEIVED"
    APPLIED = "APPLIED"
    PARSE_FAILED = "PARSE_FAILED"
    APPLY_FAILED = "APPLY_FAILED"


class PaymentRecord(BaseModel):
    """Represents a row in the ``payment_notifications`` table."""

    id: Optional[int] = Field(None, description="Internal identifier assigned on insert.")
    tracking_key: str = Field(
        ..., min_length=1, description="Unique interbank tracking key (clave de rastreo)."
    )
    payer_account: Optional[str] = None
    payer_name: Optional[str] = None
    payment_concept: Optional[str] = Field(
        None, description="Free-text concept, usually the invoice number being paid."
    )
    reference: Optional[str] = None
    issuing_institution: Optional[str] = None
    amount: Optional[Decimal] = None
    applied_at: Optional[datetime] = Field(
        None, description="When the issuing bank applied the transfer."
    )
    received_at: datetime = Field(default_factory=utcnow)
    status: PaymentStatus = PaymentStatus.RECEIVED
    status_detail: Optional[str] = None
    source_message_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class ParseFailure(BaseModel):
    """Durable trace of a message whose tracking key could not be extracted."""

    message_id: str
    reason: str
    body_excerpt: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utcnow)


__all__ = ["ParseFailure", "PaymentRecord", "PaymentStatus"]
