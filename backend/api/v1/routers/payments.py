"""
Payments Router — MercadoPago checkout preferences and payment webhooks.

The webhook is acknowledged before reconciliation runs: processing happens in
a background task with its own session, and its outcome is only logged.
"""

import json
from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_payment_gateway, get_session_factory
from api.v1.routers.orders import CheckoutRequest
from catalog import variants as variant_store
from core.config import get_settings
from core.errors import IntegrationFailure
from orders.checkout import is_preorder_batch, place_order, validate_checkout
from orders.ledger import new_order_id
from orders.status import PENDING
from payments.mercadopago import build_preference_items, verify_webhook_signature
from payments.webhooks import parse_notification, process_payment_notification

settings = get_settings()
logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.get("/public-key")
async def get_public_key():
    """Public key the storefront needs to render the gateway's checkout."""
    return {"public_key": settings.mercadopago_public_key}


@router.post("/create-preference")
async def create_preference(
    request: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_payment_gateway),
):
    """
    Create a pending order and a gateway preference that points back at it.

    The order id is generated up front and sent as the preference's
    external_reference, which is how the webhook finds the order later.
    """
    checkout: dict[str, Any] = request.model_dump(mode="json")
    checkout["product_id"] = request.product_id
    checkout["items"] = [{**item.model_dump(), "variant_id": item.variant_id} for item in request.items]
    validate_checkout(checkout)

    product_name = "Licuadora Portátil"
    if request.product_id is not None:
        product = await variant_store.get_product(db, request.product_id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        product_name = product.name

    order_id = new_order_id()
    try:
        preference = await gateway.create_preference(
            items=build_preference_items(
                checkout["items"],
                request.quantity,
                request.total,
                product_name,
                settings.currency_id,
            ),
            payer={"name": request.name, "email": request.email, "phone": {"number": request.phone}},
            external_reference=str(order_id),
        )
    except IntegrationFailure as exc:
        logger.error("payments.preference_failed", order_id=str(order_id), error=str(exc))
        raise HTTPException(status_code=502, detail="Payment provider unavailable")

    order = await place_order(
        db,
        checkout,
        status=PENDING,
        order_id=order_id,
        payment_reference=preference.get("id"),
    )
    logger.info("payments.preference_created", order_id=str(order.order_id), preference_id=preference.get("id"))

    return {
        "success": True,
        "url": preference.get("init_point"),
        "order_id": str(order.order_id),
        "preference_id": preference.get("id"),
        "is_preorder": is_preorder_batch(request.batch_status),
    }


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    gateway=Depends(get_payment_gateway),
    session_factory=Depends(get_session_factory),
):
    """
    Gateway notification endpoint. Always answers 200 for a well-formed
    delivery; reconciliation runs after the response is sent.
    """
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else {}
    except ValueError:
        logger.warning("payments.webhook_invalid_json")
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    notification = parse_notification(payload, request.query_params)

    if settings.mercadopago_webhook_secret:
        valid = verify_webhook_signature(
            settings.mercadopago_webhook_secret,
            request.headers.get("x-signature", ""),
            request.headers.get("x-request-id", ""),
            notification.data_id or "",
        )
        if not valid:
            logger.warning("payments.webhook_bad_signature", data_id=notification.data_id)
            raise HTTPException(status_code=401, detail="Invalid signature")

    if notification.is_payment:
        background_tasks.add_task(
            process_payment_notification,
            notification.data_id,
            gateway,
            session_factory,
        )
        logger.info("payments.webhook_accepted", payment_id=notification.data_id)
    else:
        logger.info(
            "payments.webhook_ignored",
            event_type=notification.event_type,
            data_id=notification.data_id,
        )

    return {"status": "received", "event_type": notification.event_type}
