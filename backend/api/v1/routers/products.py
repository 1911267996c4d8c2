"""
Products Router — catalog products, batch status, and per-product variants.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from api.v1.routers.variants import VariantCreate, VariantResponse
from catalog import variants as variant_store

router = APIRouter(prefix="/api/v1/products", tags=["products"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    unit_price: float = Field(..., ge=0)
    batch_status: str = "available"
    estimated_restock_days: int | None = Field(None, ge=0)
    estimated_preorder_delivery_days: int | None = Field(None, ge=0)


class ProductUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    unit_price: float | None = Field(None, ge=0)


class BatchStatusUpdate(BaseModel):
    batch_status: str
    estimated_restock_days: int | None = Field(None, ge=0)
    estimated_preorder_delivery_days: int | None = Field(None, ge=0)


class ProductResponse(BaseModel):
    product_id: UUID
    name: str
    description: str | None
    unit_price: float
    stock: int
    batch_status: str
    estimated_restock_days: int | None
    estimated_preorder_delivery_days: int | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProductDetailResponse(ProductResponse):
    variants: list[VariantResponse] = []


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[ProductResponse])
async def list_products(db: AsyncSession = Depends(get_db)):
    """List catalog products."""
    return await variant_store.list_products(db)


@router.post("/", response_model=ProductResponse, status_code=201)
async def create_product(product: ProductCreate, db: AsyncSession = Depends(get_db)):
    """Create a catalog product. Its stock comes from the variants added later."""
    return await variant_store.create_product(db, product.model_dump())


@router.get("/{product_id}", response_model=ProductDetailResponse)
async def get_product(product_id: UUID, db: AsyncSession = Depends(get_db)):
    """Get a product with its active variants (storefront view)."""
    product = await variant_store.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    active = await variant_store.list_variants(db, product_id, include_inactive=False)
    return ProductDetailResponse(
        **ProductResponse.model_validate(product).model_dump(),
        variants=[VariantResponse.model_validate(v) for v in active],
    )


@router.patch("/{product_id}", response_model=ProductResponse)
async def update_product(product_id: UUID, update: ProductUpdate, db: AsyncSession = Depends(get_db)):
    """Edit name, description or price. Stock is never set directly."""
    return await variant_store.update_product(db, product_id, update.model_dump(exclude_unset=True))


@router.patch("/{product_id}/batch-status", response_model=ProductResponse)
async def update_batch_status(product_id: UUID, update: BatchStatusUpdate, db: AsyncSession = Depends(get_db)):
    """Set the product-level batch status and ETAs."""
    return await variant_store.update_product_batch_status(
        db,
        product_id,
        update.batch_status,
        update.estimated_restock_days,
        update.estimated_preorder_delivery_days,
    )


@router.get("/{product_id}/variants", response_model=list[VariantResponse])
async def list_product_variants(
    product_id: UUID,
    include_inactive: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """List a product's variants ordered by sort_order (admin view)."""
    product = await variant_store.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return await variant_store.list_variants(db, product_id, include_inactive=include_inactive)


@router.post("/{product_id}/variants", response_model=VariantResponse, status_code=201)
async def create_product_variant(product_id: UUID, variant: VariantCreate, db: AsyncSession = Depends(get_db)):
    """Create a variant; label and image_url are required."""
    return await variant_store.create_variant(db, product_id, variant.model_dump(exclude_unset=True))
