"""
FastAPI routes for the mailbox payment webhook service.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import PlainTextResponse

from payhook.clients.graph import GraphAPIError
from payhook.clients.identity import AuthenticationError
from payhook.dependencies import (
    get_app_settings,
    get_credential_cache,
    get_dispatcher,
    get_graph_client,
    get_payment_store,
    get_subscription_manager,
)
from payhook.models.payment import PaymentStatus
from payhook.schemas import NotificationBatch, SubscriptionStatus, TokenStatus
from payhook.services.subscriptions import SubscriptionError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck(
    manager: Annotated[Any, Depends(get_subscription_manager)],
) -> dict:
    """Health endpoint; degraded while no live subscription exists."""
    active = manager.status().active
    return {"status": "ok" if active else "degraded", "subscription_active": active}


@router.post("/webhooks/notifications", status_code=HTTPStatus.ACCEPTED)
async def receive_notifications(
    request: Request,
    dispatcher: Annotated[Any, Depends(get_dispatcher)],
    validation_token: str | None = Query(
        None,
        alias="validationToken",
        description="Sent by Graph when a subscription is created or renewed.",
    ),
) -> Response:
    """Acknowledge Graph deliveries immediately and queue them for ingestion."""
    if validation_token is not None:
        logger.info("Answering Graph subscription validation request")
        return PlainTextResponse(validation_token, status_code=HTTPStatus.OK)

    try:
        batch = NotificationBatch.model_validate(await request.json())
    except ValueError as exc:
        logger.warning("Rejecting malformed notification payload: %s", exc)
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Body is not a change notification collection.",
        ) from exc

    logger.info("Received %d change notification(s)", len(batch.value))
    await dispatcher.submit(batch)
    return Response(status_code=HTTPStatus.ACCEPTED)


@router.get(
    "/admin/webhooks/status",
    response_model=SubscriptionStatus,
    status_code=HTTPStatus.OK,
)
async def subscription_status(
    manager: Annotated[Any, Depends(get_subscription_manager)],
) -> SubscriptionStatus:
    return manager.status()


@router.post(
    "/admin/webhooks/recreate",
    response_model=SubscriptionStatus,
    status_code=HTTPStatus.OK,
)
async def recreate_subscription(
    manager: Annotated[Any, Depends(get_subscription_manager)],
) -> SubscriptionStatus:
    """Delete subscriptions on the mailbox and create a new one."""
    try:
        await manager.recreate()
    except SubscriptionError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc
    return manager.status()


@router.get("/admin/webhooks/subscriptions", status_code=HTTPStatus.OK)
async def list_remote_subscriptions(
    graph_client: Annotated[Any, Depends(get_graph_client)],
) -> dict:
    try:
        subscriptions = await graph_client.list_subscriptions()
    except (GraphAPIError, AuthenticationError) as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc
    return {
        "count": len(subscriptions),
        "subscriptions": [item.model_dump(mode="json") for item in subscriptions],
    }


@router.delete("/admin/webhooks/subscriptions/{subscription_id}", status_code=HTTPStatus.OK)
async def delete_remote_subscription(
    subscription_id: str,
    graph_client: Annotated[Any, Depends(get_graph_client)],
) -> dict:
    try:
        await graph_client.delete_subscription(subscription_id)
    except GraphAPIError as exc:
        if exc.is_not_found:
            raise HTTPException(
                status_code=HTTPStatus.NOT_FOUND, detail="Subscription not found."
            ) from exc
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc
    except AuthenticationError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_GATEWAY, detail=str(exc)) from exc
    logger.info("Deleted subscription %s on admin request", subscription_id)
    return {"deleted": subscription_id}


@router.get("/admin/webhooks/test-connection", status_code=HTTPStatus.OK)
async def test_graph_connection(
    graph_client: Annotated[Any, Depends(get_graph_client)],
) -> dict:
    return await graph_client.test_connection()


@router.get("/admin/webhooks/config", status_code=HTTPStatus.OK)
async def webhook_configuration(
    settings: Annotated[Any, Depends(get_app_settings)],
) -> dict:
    """Non-secret view of the subscription and applier configuration."""
    webhook = settings.webhook
    return {
        "environment": settings.environment,
        "mailbox_user_id": settings.graph.mailbox_user_id,
        "resource": settings.graph.watched_resource,
        "notification_url": str(webhook.notification_url),
        "change_type": webhook.change_type,
        "auto_create": webhook.auto_create,
        "max_lifetime_minutes": webhook.max_lifetime_minutes,
        "expiry_margin_minutes": webhook.expiry_margin_minutes,
        "renewal_threshold_hours": webhook.renewal_threshold_hours,
        "check_interval_hours": webhook.check_interval_hours,
        "mark_as_read": webhook.mark_as_read,
        "dispatch_queue_size": settings.dispatch.queue_size,
        "dispatch_workers": settings.dispatch.workers,
        "netsuite_enabled": settings.netsuite.is_configured,
    }


@router.get(
    "/admin/webhooks/token",
    response_model=TokenStatus,
    status_code=HTTPStatus.OK,
)
async def token_status(
    credentials: Annotated[Any, Depends(get_credential_cache)],
) -> TokenStatus:
    return credentials.status()


@router.get("/admin/payments", status_code=HTTPStatus.OK)
async def list_payments(
    store: Annotated[Any, Depends(get_payment_store)],
    status: PaymentStatus | None = Query(None, description="Filter by processing status."),
    limit: int = Query(50, ge=1, le=500),
) -> dict:
    payments = store.list_payments(status=status, limit=limit)
    return {
        "count": len(payments),
        "payments": [payment.model_dump(mode="json") for payment in payments],
    }


@router.get("/admin/payments/parse-failures", status_code=HTTPStatus.OK)
async def list_parse_failures(
    store: Annotated[Any, Depends(get_payment_store)],
    limit: int = Query(50, ge=1, le=500),
) -> dict:
    failures = store.list_parse_failures(limit=limit)
    return {
        "count": len(failures),
        "failures": [failure.model_dump(mode="json") for failure in failures],
    }


@router.get("/admin/payments/{tracking_key}", status_code=HTTPStatus.OK)
async def get_payment(
    tracking_key: str,
    store: Annotated[Any, Depends(get_payment_store)],
) -> dict:
    payment = store.get_by_tracking_key(tracking_key)
    if payment is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Payment not found.")
    return payment.model_dump(mode="json")


__all__ = ["router"]
