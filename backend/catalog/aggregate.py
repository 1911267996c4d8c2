"""
Aggregate Recalculator — keeps products.stock equal to the sum of active variant stock.

Runs inside the caller's transaction, after each individual variant write.
Callers serialize writers per product by locking the product row first, so a
recompute never overwrites a newer total with a stale one.
"""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Product, ProductVariant

logger = structlog.get_logger()


async def sum_active_variant_stock(db: AsyncSession, product_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(ProductVariant.stock), 0)).where(
            ProductVariant.product_id == product_id,
            ProductVariant.is_active.is_(True),
        )
    )
    return int(result.scalar_one())


async def recompute_product_stock(db: AsyncSession, product_id: uuid.UUID) -> int | None:
    """
    Set the product's stock to Σ stock of its active variants (0 if none).

    Touches no other product field besides updated_at. Returns the new total,
    or None if the product does not exist.
    """
    product = await db.get(Product, product_id)
    if product is None:
        logger.warning("aggregate.product_missing", product_id=str(product_id))
        return None

    await db.flush()
    total = await sum_active_variant_stock(db, product_id)
    if product.stock != total:
        logger.info(
            "aggregate.stock_recomputed",
            product_id=str(product_id),
            previous=product.stock,
            stock=total,
        )
    product.stock = total
    product.updated_at = datetime.utcnow()
    await db.flush()
    return total
