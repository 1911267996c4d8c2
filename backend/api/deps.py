"""
Storefront API Dependencies

Dependency injection for DB sessions and the core's collaborators
(restock dispatcher, payment gateway). Tests override these.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.session import AsyncSessionLocal
from notifications.dispatcher import RestockDispatcher
from payments.mercadopago import MercadoPagoClient, get_mercadopago_client

settings = get_settings()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory():
    """Session factory for work that outlives the request (webhook processing)."""
    return AsyncSessionLocal


@lru_cache
def get_restock_dispatcher() -> RestockDispatcher:
    """Process-wide dispatcher so in-flight fan-outs are tracked in one place."""
    return RestockDispatcher(
        session_factory=AsyncSessionLocal,
        max_concurrency=settings.restock_max_concurrency,
        max_pending=settings.restock_max_pending_dispatches,
    )


def get_payment_gateway() -> MercadoPagoClient:
    return get_mercadopago_client()
