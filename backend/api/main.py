"""
Storefront API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import NotFoundError, ValidationError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from api.deps import get_restock_dispatcher

    logger.info("Storefront API starting up", version=settings.app_version)
    yield
    dispatcher = get_restock_dispatcher()
    if dispatcher.pending_count:
        logger.info("Draining restock dispatches", pending=dispatcher.pending_count)
    await dispatcher.drain()
    logger.info("Storefront API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Single-product storefront: orders, payment reconciliation and variant inventory",
    lifespan=lifespan,
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "fields": exc.fields})


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": f"{exc.entity} not found"})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import (
    early_access,
    orders,
    payments,
    products,
    stock_notifications,
    variants,
)

app.include_router(products.router)
app.include_router(variants.router)
app.include_router(stock_notifications.router)
app.include_router(orders.router)
app.include_router(payments.router)
app.include_router(early_access.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    from api.deps import get_restock_dispatcher

    return {
        "status": "healthy",
        "version": settings.app_version,
        "pending_restock_dispatches": get_restock_dispatcher().pending_count,
    }
