"""
Variant Store — CRUD over product variants and their parent products.

Every mutating variant operation:
  1. locks the parent product row, then the variant row
  2. applies the write
  3. recomputes the product stock aggregate in the same transaction
  4. commits, then (updates only) hands a restock transition to the dispatcher

A restock transition is either clause of:
  - batch status leaves "soldout" for "available" or "low"
  - stock goes from 0 to a positive count
"""

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog.aggregate import recompute_product_stock
from core.errors import NotFoundError, ValidationError
from db.models import BATCH_STATUSES, Product, ProductVariant

logger = structlog.get_logger()

AVAILABLE_STATUSES = frozenset({"available", "low"})
UNAVAILABLE_STATUS = "soldout"

VARIANT_FIELDS = (
    "label",
    "image_url",
    "stock",
    "batch_status",
    "estimated_restock_days",
    "estimated_preorder_delivery_days",
    "sort_order",
    "is_active",
)
VARIANT_DEFAULTS = {
    "stock": 0,
    "sort_order": 0,
    "is_active": True,
    "batch_status": "available",
    "estimated_restock_days": 10,
    "estimated_preorder_delivery_days": 10,
}
PRODUCT_EDITABLE_FIELDS = ("name", "description", "unit_price")
AGGREGATE_FIELDS = frozenset({"stock", "is_active"})


def is_restock_transition(
    previous_status: str | None,
    previous_stock: int | None,
    new_status: str | None,
    new_stock: int | None,
) -> bool:
    """True when a variant moves from an unavailable state to an available one."""
    status_recovered = previous_status == UNAVAILABLE_STATUS and new_status in AVAILABLE_STATUSES
    stock_recovered = (previous_stock or 0) == 0 and (new_stock or 0) > 0
    return status_recovered or stock_recovered


def _validate_variant_fields(values: dict[str, Any]) -> None:
    unknown = sorted(set(values) - set(VARIANT_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown variant fields: {', '.join(unknown)}", unknown)

    nulls = sorted(field for field, value in values.items() if value is None)
    if nulls:
        raise ValidationError(f"Fields cannot be null: {', '.join(nulls)}", nulls)

    for field in ("label", "image_url"):
        if field in values and not str(values[field]).strip():
            raise ValidationError(f"{field} cannot be empty", [field])

    stock = values.get("stock")
    if stock is not None and (not isinstance(stock, int) or isinstance(stock, bool) or stock < 0):
        raise ValidationError("stock must be a non-negative integer", ["stock"])

    batch_status = values.get("batch_status")
    if batch_status is not None and batch_status not in BATCH_STATUSES:
        raise ValidationError(f"Invalid batch_status '{batch_status}'", ["batch_status"])


# ──────────────────────────────────────────────────────────────────────────
# Products
# ──────────────────────────────────────────────────────────────────────────


async def get_product(db: AsyncSession, product_id: uuid.UUID) -> Product | None:
    return await db.get(Product, product_id)


async def list_products(db: AsyncSession) -> list[Product]:
    result = await db.execute(select(Product).order_by(Product.created_at))
    return list(result.scalars().all())


async def create_product(db: AsyncSession, attrs: dict[str, Any]) -> Product:
    """Create a catalog product. Stock starts at 0 and is owned by the variants."""
    missing = [field for field in ("name", "unit_price") if attrs.get(field) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)
    if "stock" in attrs:
        raise ValidationError("Product stock is derived from its variants", ["stock"])

    product = Product(
        name=attrs["name"],
        description=attrs.get("description"),
        unit_price=attrs["unit_price"],
        batch_status=attrs.get("batch_status", "available"),
        estimated_restock_days=attrs.get("estimated_restock_days"),
        estimated_preorder_delivery_days=attrs.get("estimated_preorder_delivery_days"),
        stock=0,
    )
    db.add(product)
    await db.commit()
    await db.refresh(product)
    logger.info("products.created", product_id=str(product.product_id))
    return product


async def update_product(db: AsyncSession, product_id: uuid.UUID, changes: dict[str, Any]) -> Product:
    """Administrative edit of name / description / unit price. Never touches stock."""
    blocked = sorted(set(changes) - set(PRODUCT_EDITABLE_FIELDS))
    if blocked:
        raise ValidationError(f"Fields not editable on a product: {', '.join(blocked)}", blocked)

    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)

    for field, value in changes.items():
        if value is None and field != "description":
            continue
        setattr(product, field, value)
    product.updated_at = datetime.utcnow()

    await db.commit()
    await db.refresh(product)
    return product


async def update_product_batch_status(
    db: AsyncSession,
    product_id: uuid.UUID,
    batch_status: str,
    estimated_restock_days: int | None = None,
    estimated_preorder_delivery_days: int | None = None,
) -> Product:
    if batch_status not in BATCH_STATUSES:
        raise ValidationError(f"Invalid batch_status '{batch_status}'", ["batch_status"])

    product = await db.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)

    product.batch_status = batch_status
    if estimated_restock_days is not None:
        product.estimated_restock_days = estimated_restock_days
    if estimated_preorder_delivery_days is not None:
        product.estimated_preorder_delivery_days = estimated_preorder_delivery_days
    product.updated_at = datetime.utcnow()

    await db.commit()
    await db.refresh(product)
    return product


# ──────────────────────────────────────────────────────────────────────────
# Variants
# ──────────────────────────────────────────────────────────────────────────


async def get_variant(db: AsyncSession, variant_id: uuid.UUID) -> ProductVariant | None:
    return await db.get(ProductVariant, variant_id)


async def list_variants(
    db: AsyncSession,
    product_id: uuid.UUID,
    include_inactive: bool = True,
) -> list[ProductVariant]:
    query = select(ProductVariant).where(ProductVariant.product_id == product_id)
    if not include_inactive:
        query = query.where(ProductVariant.is_active.is_(True))
    query = query.order_by(ProductVariant.sort_order.asc(), ProductVariant.created_at.asc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def _lock_product(db: AsyncSession, product_id: uuid.UUID) -> Product | None:
    result = await db.execute(
        select(Product)
        .where(Product.product_id == product_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _lock_variant(db: AsyncSession, variant_id: uuid.UUID) -> ProductVariant:
    """Lock parent product then variant, in that order, and return the fresh variant row."""
    result = await db.execute(select(ProductVariant.product_id).where(ProductVariant.variant_id == variant_id))
    product_id = result.scalar_one_or_none()
    if product_id is None:
        raise NotFoundError("Variant", variant_id)

    await _lock_product(db, product_id)
    result = await db.execute(
        select(ProductVariant)
        .where(ProductVariant.variant_id == variant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    variant = result.scalar_one_or_none()
    if variant is None:
        raise NotFoundError("Variant", variant_id)
    return variant


async def create_variant(db: AsyncSession, product_id: uuid.UUID, attrs: dict[str, Any]) -> ProductVariant:
    """
    Create a variant under a product and recompute the product stock.

    label and image_url are required; the rest fall back to VARIANT_DEFAULTS.
    """
    missing = [field for field in ("label", "image_url") if not attrs.get(field)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing)

    values = {**VARIANT_DEFAULTS, **{k: v for k, v in attrs.items() if v is not None}}
    _validate_variant_fields(values)

    product = await _lock_product(db, product_id)
    if product is None:
        raise NotFoundError("Product", product_id)

    variant = ProductVariant(product_id=product.product_id, **values)
    db.add(variant)
    await db.flush()

    await recompute_product_stock(db, product.product_id)
    await db.commit()
    await db.refresh(variant)

    logger.info(
        "variants.created",
        product_id=str(product.product_id),
        variant_id=str(variant.variant_id),
        stock=variant.stock,
    )
    return variant


async def update_variant(
    db: AsyncSession,
    variant_id: uuid.UUID,
    changes: dict[str, Any],
    dispatcher=None,
) -> ProductVariant:
    """
    Apply only the supplied fields to a variant.

    The previous (batch_status, stock) is read under the same row lock as the
    write. After commit, a restock transition is handed to dispatcher.schedule;
    a failing hand-off is logged and never reaches the caller.
    """
    if not changes:
        variant = await db.get(ProductVariant, variant_id)
        if variant is None:
            raise NotFoundError("Variant", variant_id)
        return variant

    _validate_variant_fields(changes)

    variant = await _lock_variant(db, variant_id)
    previous_status = variant.batch_status
    previous_stock = variant.stock

    for field, value in changes.items():
        setattr(variant, field, value)
    variant.updated_at = datetime.utcnow()
    await db.flush()

    if AGGREGATE_FIELDS & set(changes):
        await recompute_product_stock(db, variant.product_id)

    await db.commit()
    await db.refresh(variant)

    restocked = is_restock_transition(previous_status, previous_stock, variant.batch_status, variant.stock)
    logger.info(
        "variants.updated",
        variant_id=str(variant.variant_id),
        fields=sorted(changes),
        previous_status=previous_status,
        previous_stock=previous_stock,
        batch_status=variant.batch_status,
        stock=variant.stock,
        restocked=restocked,
    )

    if restocked:
        _hand_off_restock(dispatcher, variant.variant_id)

    return variant


def _hand_off_restock(dispatcher, variant_id: uuid.UUID) -> None:
    if dispatcher is None:
        logger.warning("variants.restock_without_dispatcher", variant_id=str(variant_id))
        return
    try:
        dispatcher.schedule(variant_id)
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "variants.restock_handoff_failed",
            variant_id=str(variant_id),
            error=str(exc),
            exc_info=True,
        )


async def delete_variant(db: AsyncSession, variant_id: uuid.UUID) -> uuid.UUID:
    """Hard-delete a variant and recompute its product's stock. Returns the product id."""
    variant = await _lock_variant(db, variant_id)
    product_id = variant.product_id

    await db.delete(variant)
    await db.flush()
    await recompute_product_stock(db, product_id)
    await db.commit()

    logger.info("variants.deleted", variant_id=str(variant_id), product_id=str(product_id))
    return product_id
