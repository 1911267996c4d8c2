"""
Tests for the MercadoPago client against a mocked HTTP transport.
"""

import hashlib
import hmac
import json

import httpx
import pytest

from core.errors import IntegrationFailure
from payments.mercadopago import MercadoPagoClient, build_preference_items, verify_webhook_signature


def _client(handler) -> MercadoPagoClient:
    return MercadoPagoClient(
        access_token="TEST-token",
        base_url="https://api.mercadopago.test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
class TestGetPayment:
    async def test_parses_payment(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(
                200,
                json={
                    "id": 123,
                    "status": "approved",
                    "external_reference": "order-1",
                    "transaction_amount": 150000,
                    "currency_id": "ARS",
                },
            )

        payment = await _client(handler).get_payment("123")
        assert seen == {"path": "/v1/payments/123", "auth": "Bearer TEST-token"}
        assert payment.payment_id == "123"
        assert payment.status == "approved"
        assert payment.external_reference == "order-1"
        assert payment.transaction_amount == 150000

    async def test_blank_reference_becomes_none(self):
        payment = await _client(
            lambda request: httpx.Response(200, json={"id": 1, "status": "pending", "external_reference": ""})
        ).get_payment("1")
        assert payment.external_reference is None

    async def test_error_status_raises_integration_failure(self):
        client = _client(lambda request: httpx.Response(404, json={"message": "not found"}))
        with pytest.raises(IntegrationFailure) as excinfo:
            await client.get_payment("999")
        assert excinfo.value.provider == "mercadopago"

    async def test_invalid_json_raises_integration_failure(self):
        client = _client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(IntegrationFailure):
            await client.get_payment("1")

    @pytest.mark.parametrize("body", [[1, 2], "approved", 42, None])
    async def test_non_object_body_raises_integration_failure(self, body):
        client = _client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(IntegrationFailure, match="not an object"):
            await client.get_payment("1")


@pytest.mark.asyncio
class TestCreatePreference:
    async def test_posts_preference_with_callbacks(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "pref-9", "init_point": "https://mp/checkout"})

        preference = await _client(handler).create_preference(
            items=[{"title": "Licuadora", "unit_price": 10, "quantity": 1, "currency_id": "ARS"}],
            payer={"email": "ana@example.com"},
            external_reference="order-9",
        )
        assert preference["id"] == "pref-9"
        assert captured["path"] == "/checkout/preferences"
        body = captured["body"]
        assert body["external_reference"] == "order-9"
        assert body["auto_return"] == "approved"
        assert body["notification_url"].endswith("/api/v1/payments/webhook")
        assert set(body["back_urls"]) == {"success", "failure", "pending"}

    async def test_rejected_preference(self):
        client = _client(lambda request: httpx.Response(400, json={"message": "invalid items"}))
        with pytest.raises(IntegrationFailure):
            await client.create_preference(items=[], payer={}, external_reference="order-1")


class TestPreferenceItems:
    def test_one_line_per_item(self):
        items = build_preference_items(
            [
                {"label": "Negro", "quantity": 1, "unit_price": 75000},
                {"label": "Blanco", "quantity": 2, "unit_price": 75000},
            ],
            quantity=3,
            total=225000,
            product_name="Licuadora",
            currency_id="ARS",
        )
        assert [i["title"] for i in items] == ["Licuadora - Negro", "Licuadora - Blanco"]
        assert [i["quantity"] for i in items] == [1, 2]

    def test_single_line_fallback(self):
        (line,) = build_preference_items([], quantity=3, total=100, product_name="Licuadora", currency_id="ARS")
        assert line["quantity"] == 3
        assert line["unit_price"] == 33.33


class TestWebhookSignature:
    def _header(self, secret, data_id, request_id, ts="1700000000"):
        manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
        return f"ts={ts},v1={hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()}"

    def test_valid_signature(self):
        header = self._header("secret", "123", "req-1")
        assert verify_webhook_signature("secret", header, "req-1", "123")

    def test_data_id_is_lowercased(self):
        header = self._header("secret", "abc", "req-1")
        assert verify_webhook_signature("secret", header, "req-1", "ABC")

    def test_wrong_secret(self):
        header = self._header("other", "123", "req-1")
        assert not verify_webhook_signature("secret", header, "req-1", "123")

    def test_malformed_header(self):
        assert not verify_webhook_signature("secret", "", "req-1", "123")
        assert not verify_webhook_signature("secret", "ts=1", "req-1", "123")
