"""
Stock Notifications Router — "notify me when restocked" sign-ups and admin listing.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db
from notifications import subscriptions

router = APIRouter(prefix="/api/v1/stock-notifications", tags=["stock-notifications"])


class SubscriptionRequest(BaseModel):
    email: str
    variant_id: UUID
    variant_qty: int = Field(1, ge=1)
    variant_label: str | None = Field(None, max_length=120)


class SubscriptionResponse(BaseModel):
    notification_id: UUID
    variant_id: UUID
    email: str
    variant_qty: int
    variant_label: str
    notified: bool
    created_at: datetime
    notified_at: datetime | None

    model_config = {"from_attributes": True}


@router.post("/", status_code=201)
async def notify_when_restocked(request: SubscriptionRequest, db: AsyncSession = Depends(get_db)):
    """
    Subscribe an email to a variant's restock.

    201 for a new subscription, 200 with already_exists=true for a repeat.
    """
    subscription, created = await subscriptions.subscribe(
        db,
        request.variant_id,
        request.email,
        request.variant_qty,
        request.variant_label,
    )
    body = {
        "already_exists": not created,
        "notification": SubscriptionResponse.model_validate(subscription).model_dump(mode="json"),
    }
    if created:
        body["message"] = "We will let you know when this variant is back in stock"
        return body
    body["message"] = "You are already subscribed to this variant"
    return JSONResponse(status_code=200, content=body)


@router.get("/", response_model=list[SubscriptionResponse])
async def list_stock_notifications(variant_id: UUID | None = None, db: AsyncSession = Depends(get_db)):
    """All subscriptions, newest first, optionally for one variant."""
    return await subscriptions.list_subscriptions(db, variant_id)
