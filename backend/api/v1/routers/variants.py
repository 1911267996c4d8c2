"""
Variants Router — update and delete individual product variants.

An update that brings a variant back into stock hands the restock fan-out to
the dispatcher; the response never waits for, or fails because of, emails.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_restock_dispatcher
from catalog import variants as variant_store
from notifications.dispatcher import RestockDispatcher

router = APIRouter(prefix="/api/v1/variants", tags=["variants"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class VariantCreate(BaseModel):
    label: str | None = Field(None, max_length=120)
    image_url: str | None = Field(None, max_length=512)
    stock: int | None = Field(None, ge=0)
    batch_status: str | None = None
    estimated_restock_days: int | None = Field(None, ge=0)
    estimated_preorder_delivery_days: int | None = Field(None, ge=0)
    sort_order: int | None = None
    is_active: bool | None = None


class VariantUpdate(VariantCreate):
    pass


class VariantResponse(BaseModel):
    variant_id: UUID
    product_id: UUID
    label: str
    image_url: str
    stock: int
    batch_status: str
    estimated_restock_days: int | None
    estimated_preorder_delivery_days: int | None
    sort_order: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/{variant_id}", response_model=VariantResponse)
async def get_variant(variant_id: UUID, db: AsyncSession = Depends(get_db)):
    variant = await variant_store.get_variant(db, variant_id)
    if not variant:
        raise HTTPException(status_code=404, detail="Variant not found")
    return variant


@router.patch("/{variant_id}", response_model=VariantResponse)
async def update_variant(
    variant_id: UUID,
    update: VariantUpdate,
    db: AsyncSession = Depends(get_db),
    dispatcher: RestockDispatcher = Depends(get_restock_dispatcher),
):
    """Apply the supplied fields; stock/is_active changes refresh the product total."""
    return await variant_store.update_variant(
        db,
        variant_id,
        update.model_dump(exclude_unset=True),
        dispatcher=dispatcher,
    )


@router.delete("/{variant_id}", status_code=204)
async def delete_variant(variant_id: UUID, db: AsyncSession = Depends(get_db)):
    """Hard-delete a variant."""
    await variant_store.delete_variant(db, variant_id)
