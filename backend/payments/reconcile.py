"""
Payment Event Translator — maps gateway payment statuses onto order statuses.

Idempotent: when the mapped status equals the order's current one, nothing
is written, so duplicated or retried webhook deliveries are harmless. There is
no reordering logic; the last delivery applied wins.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from orders.ledger import lock_order_by_external_reference, set_status
from orders.status import CANCELLED, CONFIRMED, PENDING, StatusSource, source_may_set

logger = structlog.get_logger()

GATEWAY_STATUS_MAP = {
    "approved": CONFIRMED,
    "pending": PENDING,
    "in_process": PENDING,
    "in_mediation": PENDING,
    "rejected": CANCELLED,
    "cancelled": CANCELLED,
    "refunded": CANCELLED,
    "charged_back": CANCELLED,
}


def map_gateway_status(gateway_status: str | None) -> str | None:
    """Order status for a gateway payment status, or None if it has no mapping."""
    if not gateway_status:
        return None
    return GATEWAY_STATUS_MAP.get(gateway_status.strip().lower())


async def reconcile(db: AsyncSession, external_reference: str, gateway_status: str) -> dict:
    """
    Advance the order behind external_reference to match a payment status.

    Outcomes (the "outcome" key): not_found, unmapped, unchanged, updated.
    Misses are logged, never raised; the webhook may outrun the order row or
    reference an order from another system.
    """
    result = {
        "external_reference": external_reference,
        "gateway_status": gateway_status,
        "order_id": None,
        "from_status": None,
        "to_status": None,
    }

    order = await lock_order_by_external_reference(db, external_reference)
    if order is None:
        logger.warning("payments.order_not_found", external_reference=external_reference)
        await db.commit()
        return {**result, "outcome": "not_found"}

    result["order_id"] = str(order.order_id)
    result["from_status"] = order.status

    target = map_gateway_status(gateway_status)
    if target is not None and not source_may_set(target, StatusSource.PAYMENT_EVENT):
        target = None
    if target is None:
        logger.warning(
            "payments.unknown_gateway_status",
            order_id=str(order.order_id),
            gateway_status=gateway_status,
        )
        await db.commit()
        return {**result, "to_status": order.status, "outcome": "unmapped"}

    if target == order.status:
        logger.info("payments.reconcile_skipped", order_id=str(order.order_id), status=target)
        await db.commit()
        return {**result, "to_status": target, "outcome": "unchanged"}

    await set_status(db, order.order_id, target, source=StatusSource.PAYMENT_EVENT)
    logger.info(
        "payments.reconciled",
        order_id=str(order.order_id),
        from_status=result["from_status"],
        to_status=target,
        gateway_status=gateway_status,
    )
    return {**result, "to_status": target, "outcome": "updated"}
