"""
FastAPI application entrypoint for the mailbox payment webhook service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from payhook.api.routes import router as api_router
from payhook.clients.identity import AuthenticationError
from payhook.core.logging import configure_logging
from payhook.dependencies import (
    get_app_settings,
    get_credential_cache,
    get_dispatcher,
    get_scheduler,
    get_subscription_manager,
)

logger = logging.getLogger(__name__)

TOKEN_REFRESH_JOB = "token-refresh"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the ingestion workers and background jobs; stop them on shutdown."""
    settings = get_app_settings()
    scheduler = get_scheduler()
    dispatcher = get_dispatcher()
    credentials = get_credential_cache()

    dispatcher.start()

    try:
        await credentials.refresh()
    except AuthenticationError as exc:
        logger.error("Initial token acquisition failed, retrying on schedule: %s", exc)
    scheduler.run_periodic(
        TOKEN_REFRESH_JOB,
        credentials.refresh_in_background,
        interval=settings.credentials.refresh_interval_minutes * 60,
    )

    if settings.webhook.auto_create:
        get_subscription_manager().start(scheduler)
    else:
        logger.info("WEBHOOK_AUTO_CREATE is off, subscription must be created manually")

    try:
        yield
    finally:
        await scheduler.shutdown()
        await dispatcher.stop()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_app_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Mailbox Payment Webhooks",
        version="0.1.0",
        description="Receives Microsoft Graph mail notifications and records SPEI payments.",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app", "lifespan"]
