"""
Early Access Registry — the pre-launch mailing list.

One row per address. Re-registering keeps the address (and its preorder flag)
and replaces the variant picks wholesale, so the list always reflects the
shopper's latest intent.
"""

import uuid
from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from db.models import EarlyAccessEmail, EarlyAccessVariant, ProductVariant
from notifications.subscriptions import normalize_email

logger = structlog.get_logger()

MAX_LABEL_LENGTH = 120


def _parse_pick(pick: Any) -> dict[str, Any] | None:
    if not isinstance(pick, Mapping):
        return None
    try:
        variant_id = uuid.UUID(str(pick.get("variant_id")))
    except ValueError:
        return None
    label = str(pick.get("variant_label") or "").strip()
    quantity = pick.get("quantity")
    if not label or len(label) > MAX_LABEL_LENGTH:
        return None
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        return None
    return {"variant_id": variant_id, "variant_label": label, "quantity": quantity}


async def _usable_picks(db: AsyncSession, variants: Iterable[Any]) -> list[dict[str, Any]]:
    """Well-formed picks that point at an existing variant, in request order."""
    candidates = list(variants or [])
    parsed = [p for p in (_parse_pick(pick) for pick in candidates) if p is not None]
    known: set[uuid.UUID] = set()
    if parsed:
        result = await db.execute(
            select(ProductVariant.variant_id).where(
                ProductVariant.variant_id.in_([p["variant_id"] for p in parsed])
            )
        )
        known = set(result.scalars().all())
    picks = [p for p in parsed if p["variant_id"] in known]
    if len(picks) != len(candidates):
        logger.info("early_access.picks_skipped", received=len(candidates), kept=len(picks))
    return picks


async def _find(db: AsyncSession, email: str) -> EarlyAccessEmail | None:
    result = await db.execute(
        select(EarlyAccessEmail)
        .where(EarlyAccessEmail.email == email)
        .options(selectinload(EarlyAccessEmail.variants))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _write(
    db: AsyncSession,
    email: str,
    picks: list[dict[str, Any]],
    is_preorder: bool,
) -> tuple[EarlyAccessEmail, bool]:
    selections = [EarlyAccessVariant(**pick) for pick in picks]
    entry = await _find(db, email)
    if entry is None:
        entry = EarlyAccessEmail(email=email, is_preorder=bool(is_preorder), variants=selections)
        db.add(entry)
        already_exists = False
    else:
        # delete-orphan drops the previous picks on flush.
        entry.variants = selections
        already_exists = True
    await db.commit()
    return entry, already_exists


async def register(
    db: AsyncSession,
    email: str,
    variants: Iterable[Any] = (),
    is_preorder: bool = False,
) -> tuple[EarlyAccessEmail, bool, int]:
    """
    Add an address to the launch list, or refresh its variant picks.

    Returns (entry, already_exists, variants_count) where variants_count is
    the number of picks stored.
    """
    email = normalize_email(email)
    picks = await _usable_picks(db, variants)

    try:
        entry, already_exists = await _write(db, email, picks, is_preorder)
    except IntegrityError:
        # Lost a race against a concurrent first registration.
        await db.rollback()
        entry, already_exists = await _write(db, email, picks, is_preorder)

    logger.info(
        "early_access.registered",
        entry_id=str(entry.entry_id),
        already_exists=already_exists,
        variants_count=len(picks),
    )
    return entry, already_exists, len(picks)


async def list_registrations(db: AsyncSession) -> list[EarlyAccessEmail]:
    """Every address, newest first, with its picks loaded."""
    result = await db.execute(
        select(EarlyAccessEmail)
        .options(selectinload(EarlyAccessEmail.variants))
        .order_by(EarlyAccessEmail.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def variant_stats(db: AsyncSession) -> list[dict[str, Any]]:
    """How often each variant was picked and the total quantity asked for."""
    selection_count = func.count(EarlyAccessVariant.selection_id).label("selection_count")
    total_quantity = func.coalesce(func.sum(EarlyAccessVariant.quantity), 0).label("total_quantity")
    result = await db.execute(
        select(
            EarlyAccessVariant.variant_id,
            EarlyAccessVariant.variant_label,
            selection_count,
            total_quantity,
        )
        .group_by(EarlyAccessVariant.variant_id, EarlyAccessVariant.variant_label)
        .order_by(selection_count.desc(), total_quantity.desc())
    )
    return [
        {
            "variant_id": row.variant_id,
            "variant_label": row.variant_label,
            "selection_count": int(row.selection_count),
            "total_quantity": int(row.total_quantity),
        }
        for row in result.all()
    ]
