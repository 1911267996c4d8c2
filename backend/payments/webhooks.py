"""
Payment webhook processing.

The HTTP handler acknowledges first and runs process_payment_notification
afterwards, so the gateway's ~22s delivery deadline never depends on how long
reconciliation takes. Errors here are only observable in the logs.
"""

from collections.abc import Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import IntegrationFailure
from payments.reconcile import reconcile

logger = structlog.get_logger()

PAYMENT_EVENT = "payment"


@dataclass
class WebhookNotification:
    event_type: str | None
    data_id: str | None
    action: str | None = None

    @property
    def is_payment(self) -> bool:
        return self.event_type == PAYMENT_EVENT and bool(self.data_id)


def parse_notification(payload: Mapping[str, Any], query: Mapping[str, str]) -> WebhookNotification:
    """
    Read the event type and resource id from a gateway notification.

    The gateway sends them in the JSON body ({"type", "data": {"id"}}) or, for
    legacy IPN deliveries, as ?type= / ?topic= and ?data.id= / ?id= query params.
    """
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else {}
    event_type = payload.get("type") or query.get("type") or query.get("topic")
    data_id = data.get("id") or query.get("data.id") or query.get("id")
    return WebhookNotification(
        event_type=str(event_type) if event_type else None,
        data_id=str(data_id) if data_id else None,
        action=payload.get("action"),
    )


async def process_payment_notification(
    payment_id: str,
    gateway,
    session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]],
) -> dict[str, Any]:
    """
    Fetch the payment and reconcile its order. Never raises.

    Returns the reconcile summary, or a summary with outcome
    "gateway_error" / "missing_reference" / "error".
    """
    try:
        payment = await gateway.get_payment(payment_id)
    except IntegrationFailure as exc:
        logger.error("payments.gateway_lookup_failed", payment_id=payment_id, error=str(exc))
        return {"payment_id": payment_id, "outcome": "gateway_error"}
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "payments.gateway_lookup_crashed",
            payment_id=payment_id,
            error=str(exc),
            exc_info=True,
        )
        return {"payment_id": payment_id, "outcome": "gateway_error"}

    logger.info(
        "payments.notification",
        payment_id=payment.payment_id,
        status=payment.status,
        external_reference=payment.external_reference,
        amount=payment.transaction_amount,
        currency=payment.currency_id,
    )
    if not payment.external_reference:
        logger.warning("payments.missing_external_reference", payment_id=payment_id)
        return {"payment_id": payment_id, "outcome": "missing_reference"}

    try:
        async with session_factory() as db:
            result = await reconcile(db, payment.external_reference, payment.status)
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "payments.reconcile_failed",
            payment_id=payment_id,
            external_reference=payment.external_reference,
            error=str(exc),
            exc_info=True,
        )
        return {"payment_id": payment_id, "outcome": "error"}

    return {"payment_id": payment_id, **result}
