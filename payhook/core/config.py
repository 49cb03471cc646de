"""
Application configuration models and helpers.

Centralizes settings management so the webhook API, the subscription
lifecycle jobs and the ingestion workers share one configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file into the environment."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class GraphSettings(BaseSettings):
    """Configuration required for calling Microsoft Graph as a daemon app."""

    model_config = SettingsConfigDict(env_prefix="GRAPH_", extra="ignore")

    tenant_id: str
    client_id: str
    client_secret: str
    mailbox_user_id: str = Field(
        ...,
        description="User id or UPN whose inbox receives the bank notifications.",
    )
    scope: str = "https://graph.microsoft.com/.default"
    authority_url: str = "https://login.microsoftonline.com"
    base_url: str = "https://graph.microsoft.com/v1.0"
    timeout_seconds: float = 10.0

    @property
    def watched_resource(self) -> str:
        return f"/users/{self.mailbox_user_id}/messages"


class CredentialSettings(BaseSettings):
    """Cadence of the bearer token cache."""

    model_config = SettingsConfigDict(env_prefix="TOKEN_", extra="ignore")

    refresh_buffer_minutes: int = Field(
        5, description="Tokens this close to expiry are refreshed before use."
    )
    refresh_interval_minutes: int = Field(
        50, description="Proactive refresh cadence for one-hour tokens."
    )


class WebhookSettings(BaseSettings):
    """Push subscription parameters and renewal cadence."""

    model_config = SettingsConfigDict(env_prefix="WEBHOOK_", extra="ignore")

    notification_url: AnyHttpUrl
    client_state: str = Field(
        ...,
        description="Shared secret echoed by Graph on every notification.",
    )
    auto_create: bool = True
    change_type: str = "created"
    max_lifetime_minutes: int = Field(
        4230, description="Graph's maximum lifetime for mail message subscriptions."
    )
    expiry_margin_minutes: int = 30
    renewal_threshold_hours: int = 24
    check_interval_hours: float = 6.0
    initial_delay_seconds: float = 30.0
    mark_as_read: bool = True

    @field_validator("max_lifetime_minutes")
    @classmethod
    def _positive_lifetime(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_lifetime_minutes must be positive")
        return value


class DispatchSettings(BaseSettings):
    """Bounded work queue that decouples webhook acknowledgement from ingestion."""

    model_config = SettingsConfigDict(env_prefix="DISPATCH_", extra="ignore")

    queue_size: int = Field(100, ge=1)
    workers: int = Field(2, ge=1)
    block_on_full: bool = Field(
        False,
        description=(
            "Wait up to enqueue_timeout_seconds for queue space instead of "
            "dropping the batch immediately."
        ),
    )
    enqueue_timeout_seconds: float = 1.0


class NetSuiteSettings(BaseSettings):
    """Token-based authentication settings for applying payments in NetSuite."""

    model_config = SettingsConfigDict(env_prefix="NETSUITE_", extra="ignore")

    enabled: bool = False
    account_id: Optional[str] = None
    consumer_key: Optional[str] = None
    consumer_secret: Optional[str] = None
    token_id: Optional[str] = None
    token_secret: Optional[str] = None
    base_domain: str = "suitetalk.api.netsuite.com"
    timeout_seconds: float = 20.0

    @property
    def is_configured(self) -> bool:
        return self.enabled and all(
            (
                self.account_id,
                self.consumer_key,
                self.consumer_secret,
                self.token_id,
                self.token_secret,
            )
        )


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    payments_db_path: str = Field(
        "data/payments.db",
        validation_alias="PAYMENTS_DB_PATH",
        description="SQLite file holding payment notifications.",
    )
    graph: GraphSettings = Field(default_factory=GraphSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    netsuite: NetSuiteSettings = Field(default_factory=NetSuiteSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "CredentialSettings",
    "DispatchSettings",
    "GraphSettings",
    "NetSuiteSettings",
    "WebhookSettings",
    "get_settings",
]
