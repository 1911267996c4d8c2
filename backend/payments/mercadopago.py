"""
MercadoPago Client

Payment-gateway query collaborator: fetches full payment details for webhook
reconciliation and creates checkout preferences whose external_reference is
our pre-generated order id. Card capture stays on the gateway side.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from core.errors import IntegrationFailure

settings = get_settings()

PROVIDER = "mercadopago"
REQUEST_TIMEOUT_SECONDS = 10.0


@dataclass
class PaymentDetails:
    payment_id: str
    status: str | None
    external_reference: str | None
    transaction_amount: float | None = None
    currency_id: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "PaymentDetails":
        return cls(
            payment_id=str(payload.get("id", "")),
            status=payload.get("status"),
            external_reference=payload.get("external_reference") or None,
            transaction_amount=payload.get("transaction_amount"),
            currency_id=payload.get("currency_id"),
        )


class MercadoPagoClient:
    """Client for the MercadoPago REST API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mercadopago.com",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=self.transport,
        )

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.request(method, path, **kwargs)
        if response.is_error:
            raise IntegrationFailure(
                PROVIDER,
                f"{method} {path} returned {response.status_code}",
            )
        return response.json()

    async def get_payment(self, payment_id: str) -> PaymentDetails:
        """Fetch a payment by id. Raises IntegrationFailure on any failure."""
        try:
            payload = await self._request("GET", f"/v1/payments/{payment_id}")
        except (httpx.HTTPError, ValueError) as exc:
            raise IntegrationFailure(PROVIDER, f"payment {payment_id} lookup failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise IntegrationFailure(
                PROVIDER,
                f"payment {payment_id} lookup returned {type(payload).__name__}, not an object",
            )
        return PaymentDetails.from_api(payload)

    async def create_preference(
        self,
        *,
        items: list[dict[str, Any]],
        payer: dict[str, Any],
        external_reference: str,
    ) -> dict[str, Any]:
        """Create a checkout preference. Returns the raw body (id, init_point, ...)."""
        frontend = settings.frontend_url.rstrip("/")
        body = {
            "items": items,
            "payer": payer,
            "back_urls": {
                "success": f"{frontend}/checkout-success",
                "failure": f"{frontend}/checkout-failed",
                "pending": f"{frontend}/checkout-pendiente",
            },
            "auto_return": "approved",
            "external_reference": external_reference,
            "notification_url": f"{settings.backend_url.rstrip('/')}/api/v1/payments/webhook",
        }
        try:
            return await self._request("POST", "/checkout/preferences", json=body)
        except (httpx.HTTPError, ValueError) as exc:
            raise IntegrationFailure(PROVIDER, f"preference creation failed: {exc}") from exc


def build_preference_items(
    items: list[dict[str, Any]],
    quantity: int,
    total: float,
    product_name: str,
    currency_id: str,
) -> list[dict[str, Any]]:
    """Gateway line items: one per order item, or a single line for the whole order."""
    if items:
        return [
            {
                "title": f"{product_name} - {item['label']}",
                "unit_price": item["unit_price"],
                "quantity": item["quantity"],
                "currency_id": currency_id,
                "description": f"Variante: {item['label']}",
            }
            for item in items
        ]
    return [
        {
            "title": product_name,
            "unit_price": round(total / quantity, 2),
            "quantity": quantity,
            "currency_id": currency_id,
        }
    ]


def verify_webhook_signature(
    secret: str,
    signature_header: str,
    request_id: str,
    data_id: str,
) -> bool:
    """
    Check MercadoPago's x-signature header ("ts=<ts>,v1=<hex>").

    The signed manifest is "id:<data.id>;request-id:<x-request-id>;ts:<ts>;".
    """
    parts = dict(
        part.strip().split("=", 1)
        for part in signature_header.split(",")
        if "=" in part
    )
    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        return False

    manifest = f"id:{data_id.lower()};request-id:{request_id};ts:{ts};"
    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(received, expected)


def get_mercadopago_client() -> MercadoPagoClient:
    return MercadoPagoClient(
        access_token=settings.mercadopago_access_token,
        base_url=settings.mercadopago_base_url,
    )
