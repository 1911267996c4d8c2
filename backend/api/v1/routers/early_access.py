"""
Early Access Router — pre-launch mailing list sign-ups and admin listing.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from notifications import early_access

router = APIRouter(prefix="/api/v1/early-access", tags=["early-access"])


class EarlyAccessRequest(BaseModel):
    email: str
    # Malformed picks are skipped by the registry, not rejected.
    variants: list[dict[str, Any]] = Field(default_factory=list)
    is_preorder: bool = False


class EarlyAccessVariantResponse(BaseModel):
    variant_id: UUID | None
    variant_label: str
    quantity: int

    model_config = {"from_attributes": True}


class EarlyAccessEntryResponse(BaseModel):
    entry_id: UUID
    email: str
    is_preorder: bool
    created_at: datetime
    variants: list[EarlyAccessVariantResponse]

    model_config = {"from_attributes": True}


class VariantStatResponse(BaseModel):
    variant_id: UUID | None
    variant_label: str
    selection_count: int
    total_quantity: int


class EarlyAccessListResponse(BaseModel):
    count: int
    emails: list[EarlyAccessEntryResponse]
    variant_stats: list[VariantStatResponse]


@router.post("/", status_code=201)
async def join_early_access(request: EarlyAccessRequest, db: AsyncSession = Depends(get_db)):
    """Register an address, or replace the variant picks of a known one."""
    entry, already_exists, variants_count = await early_access.register(
        db,
        request.email,
        request.variants,
        request.is_preorder,
    )
    return {
        "message": "Email actualizado exitosamente" if already_exists else "Email registrado exitosamente",
        "email": entry.email,
        "entry_id": str(entry.entry_id),
        "variants_count": variants_count,
        "already_exists": already_exists,
    }


@router.get("/", response_model=EarlyAccessListResponse)
async def list_early_access(db: AsyncSession = Depends(get_db)):
    entries = await early_access.list_registrations(db)
    return {
        "count": len(entries),
        "emails": [EarlyAccessEntryResponse.model_validate(entry) for entry in entries],
        "variant_stats": await early_access.variant_stats(db),
    }
