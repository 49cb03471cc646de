from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from payhook.clients.netsuite import (
    NetSuiteClient,
    NetSuitePaymentApplier,
    OAuth1Signer,
    PaymentApplicationError,
)
from payhook.core.config import NetSuiteSettings
from payhook.models.payment import PaymentRecord


def _settings(**overrides) -> NetSuiteSettings:
    values = {
        "enabled": True,
        "account_id": "1234567_SB1",
        "consumer_key": "ck",
        "consumer_secret": "cs",
        "token_id": "tk",
        "token_secret": "ts",
    }
    values.update(overrides)
    return NetSuiteSettings(**values)


def _payment(**overrides) -> PaymentRecord:
    values = {
        "tracking_key": "SPIN123ABC",
        "payment_concept": "FAC-1029",
        "reference": "88",
        "payer_account": "*****8016",
        "amount": Decimal("1234.56"),
        "applied_at": datetime(2025, 3, 3, 10, 15, 42),
    }
    values.update(overrides)
    return PaymentRecord(**values)


def test_signer_builds_deterministic_header() -> None:
    signer = OAuth1Signer(
        account_id="1234567-sb1",
        consumer_key="ck",
        consumer_secret="cs",
        token_id="tk",
        token_secret="ts",
    )

    first = signer.sign("post", "https://x.example/path", nonce="abc", timestamp=1700000000)
    second = signer.sign("POST", "https://x.example/path", nonce="abc", timestamp=1700000000)
    other = signer.sign("POST", "https://x.example/other", nonce="abc", timestamp=1700000000)

    assert first == second
    assert first != other
    assert first.startswith('OAuth realm="1234567_SB1", ')
    assert 'oauth_signature_method="HMAC-SHA256"' in first
    assert 'oauth_nonce="abc"' in first
    assert "oauth_signature=" in first


def test_client_requires_complete_credentials() -> None:
    with pytest.raises(ValueError):
        NetSuiteClient(_settings(token_secret=None))
    with pytest.raises(ValueError):
        NetSuiteClient(_settings(enabled=False))


def test_base_url_uses_account_host() -> None:
    client = NetSuiteClient(_settings())

    assert client.base_url == "https://1234567-sb1.suitetalk.api.netsuite.com/services/rest"


@pytest.mark.asyncio
async def test_apply_transforms_matching_invoice() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/suiteql"):
            return httpx.Response(200, json={"items": [{"id": "991"}]})
        return httpx.Response(
            204, headers={"Location": "https://ns.example/record/v1/customerPayment/55"}
        )

    client = NetSuiteClient(_settings(), transport=httpx.MockTransport(handler))
    applier = NetSuitePaymentApplier(client)

    result = await applier.apply(_payment())

    assert result == {
        "invoice_id": "991",
        "location": "https://ns.example/record/v1/customerPayment/55",
    }
    query, transform = requests
    assert query.headers["Prefer"] == "transient"
    assert "tranid = 'FAC-1029'" in json.loads(query.content)["q"]
    assert transform.url.path.endswith("/invoice/991/!transform/customerPayment")
    body = json.loads(transform.content)
    assert body["payment"] == 1234.56
    assert body["trandate"] == "2025-03-03"
    assert body["custbody_clave_rastreo"] == "SPIN123ABC"
    assert transform.headers["Authorization"].startswith("OAuth realm=")


@pytest.mark.asyncio
async def test_apply_fails_when_no_invoice_matches() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": []})

    client = NetSuiteClient(_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(PaymentApplicationError):
        await NetSuitePaymentApplier(client).apply(_payment())


@pytest.mark.asyncio
async def test_apply_requires_amount_and_concept() -> None:
    client = NetSuiteClient(_settings(), transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    applier = NetSuitePaymentApplier(client)

    with pytest.raises(PaymentApplicationError):
        await applier.apply(_payment(amount=None))
    with pytest.raises(PaymentApplicationError):
        await applier.apply(_payment(payment_concept=None))


@pytest.mark.asyncio
async def test_http_errors_become_application_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"title": "Invalid login attempt."})

    client = NetSuiteClient(_settings(), transport=httpx.MockTransport(handler))

    with pytest.raises(PaymentApplicationError):
        await client.find_open_invoice("FAC-1029")
