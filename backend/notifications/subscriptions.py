"""
Stock-Notification Subscription Registry.

One subscription per (variant, email). A repeat request is reported as
"already subscribed" instead of raising or duplicating. Once notified a
subscription is terminal; nothing here ever clears the flag, and marking is
an atomic claim so a subscriber is counted as notified at most once.
"""

import re
import uuid
from datetime import datetime

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFoundError, ValidationError
from db.models import ProductVariant, StockNotification

logger = structlog.get_logger()

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_VARIANT_LABEL = "Producto"


def normalize_email(email: str | None) -> str:
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email format", ["email"])
    return normalized


async def _find(db: AsyncSession, variant_id: uuid.UUID, email: str) -> StockNotification | None:
    result = await db.execute(
        select(StockNotification).where(
            StockNotification.variant_id == variant_id,
            StockNotification.email == email,
        )
    )
    return result.scalar_one_or_none()


async def subscribe(
    db: AsyncSession,
    variant_id: uuid.UUID,
    email: str,
    quantity: int = 1,
    variant_label: str | None = None,
) -> tuple[StockNotification, bool]:
    """
    Register a "notify me" request.

    Returns (subscription, created). created is False when the key already
    existed; the existing row is returned untouched.
    """
    email = normalize_email(email)
    if quantity is None or quantity < 1:
        raise ValidationError("quantity must be at least 1", ["quantity"])

    variant = await db.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFoundError("Variant", variant_id)

    existing = await _find(db, variant.variant_id, email)
    if existing is not None:
        logger.info("subscriptions.already_exists", variant_id=str(variant_id), notified=existing.notified)
        return existing, False

    subscription = StockNotification(
        variant_id=variant.variant_id,
        email=email,
        variant_qty=quantity,
        variant_label=variant_label or variant.label or DEFAULT_VARIANT_LABEL,
    )
    db.add(subscription)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race against a concurrent request for the same key.
        await db.rollback()
        existing = await _find(db, variant.variant_id, email)
        if existing is None:
            raise
        return existing, False

    await db.refresh(subscription)
    logger.info(
        "subscriptions.created",
        variant_id=str(variant_id),
        notification_id=str(subscription.notification_id),
    )
    return subscription, True


async def list_pending(db: AsyncSession, variant_id: uuid.UUID) -> list[StockNotification]:
    """Unsent subscriptions for a variant, oldest first (ties broken by id)."""
    result = await db.execute(
        select(StockNotification)
        .where(
            StockNotification.variant_id == variant_id,
            StockNotification.notified.is_(False),
        )
        .order_by(StockNotification.created_at.asc(), StockNotification.notification_id.asc())
    )
    return list(result.scalars().all())


async def mark_notified(db: AsyncSession, notification_id: uuid.UUID) -> bool:
    """
    Claim a subscription as sent.

    The flag only flips from false to true in a single conditional UPDATE, so
    of several concurrent callers exactly one gets True. Already-notified and
    missing rows return False and keep their original timestamp.
    """
    result = await db.execute(
        update(StockNotification)
        .where(
            StockNotification.notification_id == notification_id,
            StockNotification.notified.is_(False),
        )
        .values(notified=True, notified_at=datetime.utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        logger.info("subscriptions.claim_lost", notification_id=str(notification_id))
        return False
    return True


async def list_subscriptions(db: AsyncSession, variant_id: uuid.UUID | None = None) -> list[StockNotification]:
    query = select(StockNotification)
    if variant_id is not None:
        query = query.where(StockNotification.variant_id == variant_id)
    query = query.order_by(StockNotification.created_at.desc())
    result = await db.execute(query)
    return list(result.scalars().all())


async def variants_with_pending(db: AsyncSession) -> list[uuid.UUID]:
    """Active, currently-available variants that still have unsent subscriptions."""
    result = await db.execute(
        select(ProductVariant.variant_id)
        .join(StockNotification, StockNotification.variant_id == ProductVariant.variant_id)
        .where(
            StockNotification.notified.is_(False),
            ProductVariant.is_active.is_(True),
            or_(ProductVariant.stock > 0, ProductVariant.batch_status.in_(("available", "low"))),
        )
        .distinct()
        .order_by(ProductVariant.variant_id)
    )
    return list(result.scalars().all())
