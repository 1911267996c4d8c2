"""
Orders Router — checkout order creation, admin listing, and admin status changes.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from orders import ledger
from orders.checkout import place_order
from orders.status import StatusSource, initial_status_for_payment, is_valid_status

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class CheckoutItem(BaseModel):
    variant_id: UUID | None = None
    label: str | None = None
    quantity: int | None = None
    unit_price: float | None = None
    subtotal: float | None = None


class CheckoutRequest(BaseModel):
    """Checkout form. Required-field checks happen in the ledger so they answer 400."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    zip_code: str | None = None
    quantity: int | None = None
    total: float | None = None
    product_id: UUID | None = None
    items: list[CheckoutItem] = Field(default_factory=list)
    batch_status: str | None = None
    estimated_preorder_days: int | None = None
    payment_id: str | None = None
    payment_status: str | None = None


class StatusUpdate(BaseModel):
    status: str


class OrderItemResponse(BaseModel):
    item_id: UUID
    product_id: UUID | None
    variant_id: UUID | None
    label: str
    quantity: int
    unit_price: float
    subtotal: float

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    order_id: UUID
    customer_name: str
    customer_email: str
    customer_phone: str
    address: str
    city: str
    zip_code: str
    quantity: int
    total: float
    status: str
    external_reference: str
    payment_reference: str | None
    is_preorder: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrderDetailResponse(OrderResponse):
    items: list[OrderItemResponse] = []


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[OrderResponse])
async def list_orders(status: str | None = None, db: AsyncSession = Depends(get_db)):
    """All orders, newest first."""
    return await ledger.list_orders(db, status)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(order_id: UUID, db: AsyncSession = Depends(get_db)):
    order = await ledger.get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    items = await ledger.list_items(db, order_id)
    return OrderDetailResponse(
        **OrderResponse.model_validate(order).model_dump(),
        items=[OrderItemResponse.model_validate(item) for item in items],
    )


@router.post("/", response_model=OrderResponse, status_code=201)
async def create_order(request: CheckoutRequest, db: AsyncSession = Depends(get_db)):
    """
    Record an order whose payment outcome the client already knows.

    payment_status "approved" confirms the order and "rejected" cancels it;
    anything else leaves it pending for the webhook to settle.
    """
    checkout = request.model_dump(mode="json")
    checkout["product_id"] = request.product_id
    checkout["items"] = [{**item.model_dump(), "variant_id": item.variant_id} for item in request.items]
    return await place_order(
        db,
        checkout,
        status=initial_status_for_payment(request.payment_status),
        payment_reference=request.payment_id,
    )


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(order_id: UUID, update: StatusUpdate, db: AsyncSession = Depends(get_db)):
    """Admin status change (shipping, delivery, manual cancellation)."""
    if not is_valid_status(update.status):
        raise HTTPException(status_code=400, detail=f"Invalid order status '{update.status}'")
    order = await ledger.set_status(db, order_id, update.status, source=StatusSource.ADMIN)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order
