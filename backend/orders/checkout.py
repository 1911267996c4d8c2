"""
Checkout — turns a storefront checkout request into an order.

Shared by the direct order endpoint (payment outcome already known) and the
gateway preference flow (order id generated first and handed to the gateway as
external reference). The confirmation email is best effort.
"""

import uuid
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import Order
from notifications.email import send_order_confirmation
from orders.ledger import build_items, create_order, validate_order
from orders.status import PENDING

settings = get_settings()
logger = structlog.get_logger()

PREORDER_BATCH_STATUSES = frozenset({"preorder", "soldout"})
DEFAULT_ITEM_LABEL = "Licuadora Portátil Premium"


def is_preorder_batch(batch_status: str | None) -> bool:
    return batch_status in PREORDER_BATCH_STATUSES


def order_data_from_checkout(checkout: dict[str, Any], status: str = PENDING) -> dict[str, Any]:
    """Map checkout request fields onto order ledger fields."""
    return {
        "customer_name": checkout.get("name"),
        "customer_email": checkout.get("email"),
        "customer_phone": checkout.get("phone"),
        "address": checkout.get("address"),
        "city": checkout.get("city"),
        "zip_code": checkout.get("zip_code"),
        "quantity": checkout.get("quantity"),
        "total": checkout.get("total"),
        "status": status,
        "is_preorder": is_preorder_batch(checkout.get("batch_status")),
    }


def order_items_from_checkout(checkout: dict[str, Any]) -> list[dict[str, Any]]:
    product_id = checkout.get("product_id")
    return [{**item, "product_id": product_id} for item in checkout.get("items") or []]


def validate_checkout(checkout: dict[str, Any]) -> None:
    """Run the ledger's validation before anything is sent to the gateway."""
    validate_order(order_data_from_checkout(checkout))
    build_items(order_items_from_checkout(checkout))


async def place_order(
    db: AsyncSession,
    checkout: dict[str, Any],
    *,
    status: str = PENDING,
    order_id: uuid.UUID | None = None,
    payment_reference: str | None = None,
    sender=None,
) -> Order:
    data = order_data_from_checkout(checkout, status)
    if payment_reference:
        data["payment_reference"] = payment_reference
    items = order_items_from_checkout(checkout)

    order = await create_order(db, data, order_id=order_id, items=items)

    if order.is_preorder or settings.send_order_emails:
        email_items = items or [
            {
                "label": DEFAULT_ITEM_LABEL,
                "quantity": order.quantity,
                "unit_price": order.total / order.quantity,
                "subtotal": order.total,
            }
        ]
        email_items = [
            {**item, "subtotal": item.get("subtotal") or item["quantity"] * item["unit_price"]}
            for item in email_items
        ]
        sender = sender or send_order_confirmation
        sent = await sender(order, email_items, checkout.get("estimated_preorder_days"))
        logger.info("checkout.confirmation_email", order_id=str(order.order_id), sent=sent)

    return order
