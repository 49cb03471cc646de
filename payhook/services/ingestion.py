"""
Business logic for turning Graph change notifications into payment records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Union

from payhook.clients.graph import GraphAPIError
from payhook.clients.identity import AuthenticationError
from payhook.clients.payment_store import DuplicatePaymentError
from payhook.models.payment import ParseFailure, PaymentRecord, PaymentStatus
from payhook.schemas import ChangeNotification, NotificationBatch
from payhook.services.email_extraction import PaymentEmailExtractor, PaymentFields
from payhook.utils.datetimes import utcnow

logger = logging.getLogger(__name__)

_APPLIED_AT_FORMAT = "%d/%m/%Y %H:%M:%S"
_EXCERPT_LENGTH = 500


class PaymentApplier(Protocol):
    async def apply(self, payment: PaymentRecord) -> Any:
        ...


class NotificationOutcome(str, Enum):
    """What happened to one notification of a batch."""

    STORED = "stored"
    APPLIED = "applied"
    APPLY_FAILED = "apply_failed"
    DUPLICATE = "duplicate"
    PARSE_FAILED = "parse_failed"
    SKIPPED = "skipped"


@dataclass
class IngestionSummary:
    """Per-batch tally used for logging."""

    received: int = 0
    stored: int = 0
    applied: int = 0
    apply_failed: int = 0
    duplicates: int = 0
    parse_failures: int = 0
    skipped: int = 0

    def record(self, outcome: NotificationOutcome) -> None:
        if outcome in (
            NotificationOutcome.STORED,
            NotificationOutcome.APPLIED,
            NotificationOutcome.APPLY_FAILED,
        ):
            self.stored += 1
        if outcome is NotificationOutcome.APPLIED:
            self.applied += 1
        elif outcome is NotificationOutcome.APPLY_FAILED:
            self.apply_failed += 1
        elif outcome is NotificationOutcome.DUPLICATE:
            self.duplicates += 1
        elif outcome is NotificationOutcome.PARSE_FAILED:
            self.parse_failures += 1
        elif outcome is NotificationOutcome.SKIPPED:
            self.skipped += 1


class NotificationIngestionService:
    """Fetch, extract, deduplicate, persist and apply notified messages."""

    def __init__(
        self,
        graph_client,
        store,
        extractor: PaymentEmailExtractor | None = None,
        *,
        applier: PaymentApplier | None = None,
        expected_client_state: str | None = None,
        mark_as_read: bool = True,
    ) -> None:
        self._graph = graph_client
        self._store = store
        self._extractor = extractor or PaymentEmailExtractor()
        self._applier = applier
        self._expected_client_state = expected_client_state
        self._mark_as_read = mark_as_read

    async def ingest(
        self, batch: Union[NotificationBatch, Dict[str, Any]]
    ) -> IngestionSummary:
        """Process every notification of a delivery; never raises per item."""
        if not isinstance(batch, NotificationBatch):
            batch = NotificationBatch.model_validate(batch)

        summary = IngestionSummary(received=len(batch.value))
        for notification in batch.value:
            try:
                outcome = await self._process(notification)
            except Exception:  # pylint: disable=broad-except
                logger.exception(
                    "Notification for message %s failed, continuing with the batch",
                    notification.message_id,
                )
                outcome = NotificationOutcome.SKIPPED
            summary.record(outcome)

        logger.info(
            "Batch processed: received=%d stored=%d applied=%d apply_failed=%d "
            "duplicates=%d parse_failures=%d skipped=%d",
            summary.received,
            summary.stored,
            summary.applied,
            summary.apply_failed,
            summary.duplicates,
            summary.parse_failures,
            summary.skipped,
        )
        return summary

    async def _process(self, notification: ChangeNotification) -> NotificationOutcome:
        if (
            self._expected_client_state
            and notification.client_state != self._expected_client_state
        ):
            logger.warning(
                "Rejecting notification for subscription %s: client state mismatch",
                notification.subscription_id,
            )
            return NotificationOutcome.SKIPPED

        message_id = notification.message_id
        if not message_id:
            logger.warning(
                "Notification for subscription %s has no resource id, skipping",
                notification.subscription_id,
            )
            return NotificationOutcome.SKIPPED

        body = await self._fetch_body(message_id)
        if body is None:
            return NotificationOutcome.SKIPPED

        fields = self._extractor.extract(body)
        if not fields.tracking_key:
            self._record_parse_failure(message_id, fields, body)
            return NotificationOutcome.PARSE_FAILED

        if self._store.exists(fields.tracking_key):
            logger.info(
                "Payment %s already stored, skipping message %s",
                fields.tracking_key,
                message_id,
            )
            return NotificationOutcome.DUPLICATE

        try:
            record = self._store.insert(self._build_record(message_id, fields))
        except DuplicatePaymentError:
            logger.info(
                "Payment %s stored concurrently by another delivery, skipping",
                fields.tracking_key,
            )
            return NotificationOutcome.DUPLICATE

        logger.info(
            "Stored payment %s (id=%s, amount=%s, payer=%s) from message %s",
            record.tracking_key,
            record.id,
            record.amount,
            record.payer_name,
            message_id,
        )

        await self._mark_read(message_id)
        return await self._apply(record)

    async def _fetch_body(self, message_id: str) -> Optional[str]:
        try:
            message = await self._graph.get_message(message_id)
        except (GraphAPIError, AuthenticationError) as exc:
            logger.warning("Could not fetch message %s: %s", message_id, exc)
            return None

        content = ((message or {}).get("body") or {}).get("content")
        if not content or not content.strip():
            logger.warning("Message %s has an empty body, skipping", message_id)
            return None

        logger.debug(
            "Fetched message %s subject=%r",
            message_id,
            (message or {}).get("subject"),
        )
        return content

    def _record_parse_failure(
        self, message_id: str, fields: PaymentFields, body: str
    ) -> None:
        reason = "tracking key not found"
        logger.warning(
            "No tracking key in message %s, skipping (found fields: %s)",
            message_id,
            ", ".join(sorted(fields.sources)) or "none",
        )
        self._store.record_parse_failure(
            ParseFailure(
                message_id=message_id,
                reason=reason,
                body_excerpt=body[:_EXCERPT_LENGTH],
            )
        )

    async def _mark_read(self, message_id: str) -> None:
        if not self._mark_as_read:
            return
        try:
            await self._graph.mark_message_read(message_id)
        except (GraphAPIError, AuthenticationError) as exc:
            logger.error("Could not mark message %s as read: %s", message_id, exc)

    async def _apply(self, record: PaymentRecord) -> NotificationOutcome:
        if self._applier is None:
            return NotificationOutcome.STORED

        try:
            await self._applier.apply(record)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(
                "Applying payment %s downstream failed: %s", record.tracking_key, exc
            )
            self._store.update_status(
                record.tracking_key, PaymentStatus.APPLY_FAILED, detail=str(exc)[:500]
            )
            return NotificationOutcome.APPLY_FAILED

        self._store.update_status(record.tracking_key, PaymentStatus.APPLIED)
        return NotificationOutcome.APPLIED

    @staticmethod
    def _build_record(message_id: str, fields: PaymentFields) -> PaymentRecord:
        return PaymentRecord(
            tracking_key=fields.tracking_key,
            payer_account=fields.payer_account,
            payer_name=fields.payer_name,
            payment_concept=fields.payment_concept,
            reference=fields.reference,
            issuing_institution=fields.issuing_institution,
            amount=_parse_amount(fields.amount),
            applied_at=_parse_applied_at(fields.applied_at),
            received_at=utcnow(),
            status=PaymentStatus.RECEIVED,
            source_message_id=message_id,
        )


def _parse_amount(value: Optional[str]) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        logger.warning("Could not parse amount %r", value)
        return None


def _parse_applied_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, _APPLIED_AT_FORMAT)
    except ValueError:
        logger.warning("Could not parse application date %r", value)
        return None


__all__ = [
    "IngestionSummary",
    "NotificationIngestionService",
    "NotificationOutcome",
    "PaymentApplier",
]
