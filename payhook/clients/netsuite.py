"""
NetSuite REST client used to apply received transfers to open invoices.

Requests are signed with OAuth 1.0a token-based authentication (HMAC-SHA256).
"""

from __future__ import annotations

import base64
import hmac
import logging
import time
import uuid
from hashlib import sha256
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

from payhook.core.config import NetSuiteSettings
from payhook.models.payment import PaymentRecord

logger = logging.getLogger(__name__)


class PaymentApplicationError(Exception):
    """Raised when a payment cannot be applied in NetSuite."""


def _encode(value: str) -> str:
    """RFC 3986 percent-encoding as required by OAuth 1.0a."""
    return quote(value, safe="~")


class OAuth1Signer:
    """Build ``Authorization`` headers for NetSuite token-based authentication."""

    def __init__(
        self,
        *,
        account_id: str,
        consumer_key: str,
        consumer_secret: str,
        token_id: str,
        token_secret: str,
    ) -> None:
        self._realm = account_id.replace("-", "_").upper()
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._token_id = token_id
        self._token_secret = token_secret

    def sign(
        self,
        method: str,
        url: str,
        *,
        nonce: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> str:
        oauth_params = {
            "oauth_consumer_key": self._consumer_key,
            "oauth_token": self._token_id,
            "oauth_nonce": nonce or uuid.uuid4().hex,
            "oauth_timestamp": str(timestamp if timestamp is not None else int(time.time())),
            "oauth_signature_method": "HMAC-SHA256",
            "oauth_version": "1.0",
        }
        parameter_string = "&".join(
            f"{_encode(key)}={_encode(value)}" for key, value in sorted(oauth_params.items())
        )
        base_string = "&".join(
            (method.upper(), _encode(url), _encode(parameter_string))
        )
        signing_key = f"{_encode(self._consumer_secret)}&{_encode(self._token_secret)}"
        digest = hmac.new(
            signing_key.encode("utf-8"), base_string.encode("utf-8"), sha256
        ).digest()
        signature = base64.b64encode(digest).decode("utf-8")

        header_params = ", ".join(
            f'{_encode(key)}="{_encode(value)}"' for key, value in sorted(oauth_params.items())
        )
        return (
            f'OAuth realm="{self._realm}", {header_params}, '
            f'oauth_signature="{_encode(signature)}"'
        )


class NetSuiteClient:
    """Thin wrapper over the SuiteQL and record REST endpoints."""

    def __init__(
        self,
        settings: NetSuiteSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not settings.is_configured:
            raise ValueError("NetSuite credentials are incomplete.")
        self._settings = settings
        self._transport = transport
        self._signer = OAuth1Signer(
            account_id=settings.account_id or "",
            consumer_key=settings.consumer_key or "",
            consumer_secret=settings.consumer_secret or "",
            token_id=settings.token_id or "",
            token_secret=settings.token_secret or "",
        )

    @property
    def base_url(self) -> str:
        host = (self._settings.account_id or "").replace("_", "-").lower()
        return f"https://{host}.{self._settings.base_domain}/services/rest"

    async def _post(
        self, url: str, payload: Dict[str, Any], *, extra_headers: Dict[str, str] | None = None
    ) -> httpx.Response:
        headers = {
            "Authorization": self._signer.sign("POST", url),
            "Content-Type": "application/json",
        }
        headers.update(extra_headers or {})
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise PaymentApplicationError(f"NetSuite unreachable: {exc}") from exc
        if response.is_error:
            raise PaymentApplicationError(
                f"NetSuite returned {response.status_code}: {response.text[:300]}"
            )
        return response

    async def find_open_invoice(self, invoice_number: str) -> Optional[str]:
        """Return the internal id of the open invoice whose ``tranid`` matches."""
        escaped = invoice_number.replace("'", "''")
        query = (
            "SELECT id FROM transaction "
            f"WHERE tranid = '{escaped}' AND type = 'CustInvc' AND status != 'CustInvc:V'"
        )
        response = await self._post(
            f"{self.base_url}/query/v1/suiteql",
            {"q": query},
            extra_headers={"Prefer": "transient"},
        )
        items = response.json().get("items") or []
        if not items:
            return None
        return str(items[0]["id"])

    async def create_customer_payment(
        self, invoice_id: str, payment: PaymentRecord
    ) -> Dict[str, Any]:
        """Transform the invoice into a customer payment for the received amount."""
        applied_on = payment.applied_at or payment.received_at
        payload = {
            "payment": float(payment.amount) if payment.amount is not None else None,
            "trandate": applied_on.date().isoformat(),
            "memo": (
                f"Pago SPEI - Clave: {payment.tracking_key} - "
                f"Ref: {payment.reference or ''} - Origen: {payment.payer_account or ''}"
            ),
            "custbody_clave_rastreo": payment.tracking_key,
            "custbody_referencia_banco": payment.reference,
            "custbody_cuenta_origen": payment.payer_account,
            "custbody_institucion_emisora": payment.issuing_institution,
        }
        url = f"{self.base_url}/record/v1/invoice/{invoice_id}/!transform/customerPayment"
        response = await self._post(url, payload)
        return {
            "invoice_id": invoice_id,
            "location": response.headers.get("Location"),
        }


class NetSuitePaymentApplier:
    """Apply a persisted payment to the invoice named in its concept."""

    def __init__(self, client: NetSuiteClient) -> None:
        self._client = client

    async def apply(self, payment: PaymentRecord) -> Dict[str, Any]:
        if payment.amount is None:
            raise PaymentApplicationError(
                f"Payment {payment.tracking_key} has no amount to apply."
            )
        if not payment.payment_concept:
            raise PaymentApplicationError(
                f"Payment {payment.tracking_key} has no concept to match an invoice."
            )

        invoice_id = await self._client.find_open_invoice(payment.payment_concept)
        if invoice_id is None:
            raise PaymentApplicationError(
                f"No open invoice found for concept {payment.payment_concept!r}."
            )

        result = await self._client.create_customer_payment(invoice_id, payment)
        logger.info(
            "Applied payment %s to NetSuite invoice %s",
            payment.tracking_key,
            invoice_id,
        )
        return result


__all__ = [
    "NetSuiteClient",
    "NetSuitePaymentApplier",
    "OAuth1Signer",
    "PaymentApplicationError",
]
