"""
Order Ledger — order creation, lookups, and the single status transition.

The order id doubles as the payment gateway's external reference, so a caller
may pre-generate it (new_order_id) and hand it to the gateway before the row
exists. After creation only set_status mutates an order.
"""

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ValidationError
from db.models import Order, OrderItem, OrderStatusChange
from orders.status import PENDING, StatusSource, is_valid_status, source_may_set

logger = structlog.get_logger()

REQUIRED_ORDER_FIELDS = (
    "customer_name",
    "customer_email",
    "customer_phone",
    "address",
    "city",
    "zip_code",
    "quantity",
    "total",
)
OPTIONAL_ORDER_FIELDS = ("payment_reference", "is_preorder")
SUBTOTAL_TOLERANCE = 0.005


def new_order_id() -> uuid.UUID:
    return uuid.uuid4()


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def validate_order(data: dict[str, Any]) -> None:
    missing = [field for field in REQUIRED_ORDER_FIELDS if _is_missing(data.get(field))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

    quantity = data["quantity"]
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", ["quantity"])
    if data["total"] <= 0:
        raise ValidationError("total must be positive", ["total"])

    status = data.get("status", PENDING)
    if not is_valid_status(status):
        raise ValidationError(f"Invalid order status '{status}'", ["status"])


def build_items(items: list[dict[str, Any]]) -> list[OrderItem]:
    built = []
    for index, item in enumerate(items):
        missing = [field for field in ("label", "quantity", "unit_price") if _is_missing(item.get(field))]
        if missing:
            raise ValidationError(
                f"Item {index} missing required fields: {', '.join(missing)}",
                [f"items[{index}].{field}" for field in missing],
            )
        quantity = item["quantity"]
        unit_price = float(item["unit_price"])
        if quantity <= 0 or unit_price < 0:
            raise ValidationError(f"Item {index} has an invalid quantity or price", [f"items[{index}]"])

        expected = round(quantity * unit_price, 2)
        subtotal = item.get("subtotal")
        if subtotal is None:
            subtotal = expected
        elif abs(float(subtotal) - expected) > SUBTOTAL_TOLERANCE:
            raise ValidationError(
                f"Item {index} subtotal {subtotal} != quantity x unit_price ({expected})",
                [f"items[{index}].subtotal"],
            )

        built.append(
            OrderItem(
                product_id=item.get("product_id"),
                variant_id=item.get("variant_id"),
                label=item["label"],
                quantity=quantity,
                unit_price=unit_price,
                subtotal=float(subtotal),
            )
        )
    return built


async def create_order(
    db: AsyncSession,
    data: dict[str, Any],
    order_id: uuid.UUID | None = None,
    items: list[dict[str, Any]] | None = None,
    source: StatusSource = StatusSource.CHECKOUT,
) -> Order:
    """
    Persist a new order (and its line items) in one transaction.

    order_id is used verbatim when given; its string form becomes the
    external reference the webhook later looks the order up by.
    """
    validate_order(data)
    order_items = build_items(items or [])

    order_id = order_id or new_order_id()
    status = data.get("status", PENDING)
    if not source_may_set(status, source):
        raise ValidationError(f"{StatusSource(source).value} may not set status {status}", ["status"])
    order = Order(
        order_id=order_id,
        external_reference=str(order_id),
        status=status,
        **{field: data[field] for field in REQUIRED_ORDER_FIELDS},
        **{field: data[field] for field in OPTIONAL_ORDER_FIELDS if data.get(field) is not None},
    )
    order.items = order_items
    order.status_changes = [OrderStatusChange(from_status=None, to_status=status, source=StatusSource(source).value)]
    db.add(order)
    await db.commit()
    await db.refresh(order)

    logger.info(
        "orders.created",
        order_id=str(order.order_id),
        status=order.status,
        items=len(order_items),
        is_preorder=order.is_preorder,
    )
    return order


async def get_order(db: AsyncSession, order_id: uuid.UUID) -> Order | None:
    return await db.get(Order, order_id)


async def get_order_by_external_reference(db: AsyncSession, external_reference: str) -> Order | None:
    result = await db.execute(select(Order).where(Order.external_reference == external_reference))
    return result.scalar_one_or_none()


async def list_orders(db: AsyncSession, status: str | None = None) -> list[Order]:
    query = select(Order)
    if status:
        query = query.where(Order.status == status)
    query = query.order_by(Order.created_at.desc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_items(db: AsyncSession, order_id: uuid.UUID) -> list[OrderItem]:
    result = await db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.created_at)
    )
    return list(result.scalars().all())


async def lock_order_by_external_reference(db: AsyncSession, external_reference: str) -> Order | None:
    """Row-locked lookup, so a read-compare-write runs against a stable status."""
    result = await db.execute(
        select(Order)
        .where(Order.external_reference == external_reference)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def set_status(
    db: AsyncSession,
    order_id: uuid.UUID,
    status: str,
    source: StatusSource = StatusSource.ADMIN,
) -> Order | None:
    """
    Write status unconditionally and record who asked for it.

    Validity of status is the caller's concern, except that only the admin
    source may move an order to shipped or delivered. Returns None if the
    order does not exist.
    """
    if not source_may_set(status, source):
        raise ValidationError(f"{StatusSource(source).value} may not set status {status}", ["status"])
    result = await db.execute(
        select(Order)
        .where(Order.order_id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        return None

    previous = order.status
    order.status = status
    order.updated_at = datetime.utcnow()
    db.add(
        OrderStatusChange(
            order_id=order.order_id,
            from_status=previous,
            to_status=status,
            source=StatusSource(source).value,
        )
    )
    await db.commit()
    await db.refresh(order)

    logger.info(
        "orders.status_changed",
        order_id=str(order.order_id),
        from_status=previous,
        to_status=status,
        source=StatusSource(source).value,
    )
    return order
