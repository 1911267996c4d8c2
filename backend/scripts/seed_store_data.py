"""
Seed Store Data — creates the schema, the blender product and its color variants.

Run: python scripts/seed_store_data.py

Safe to re-run: when a product already exists nothing is inserted.
"""

import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalog.variants import create_product, create_variant
from core.config import get_settings
from db.models import Product
from db.session import Base

settings = get_settings()

PRODUCT = {
    "name": "Licuadora Portátil A11 PRO",
    "description": (
        "Licuadora portátil. Potencia 240W | Capacidad 700ml | Material Tritan | Voltaje 12v | "
        "Carga 5V/2A | Bateria 2000mAh *3 | Velocidad motor 18000 RPM | Tiempo carga 4hs."
    ),
    "unit_price": 75000,
}

VARIANTS = [
    ("Negro", "/black.jpeg"),
    ("Negro y Verde", "/black&green.jpeg"),
    ("Negro y Gris", "/black&grey.jpeg"),
    ("Blanco y Gris", "/white&grey.jpeg"),
    ("Blanco y Verde", "/white&green.jpeg"),
    ("Amarillo y Azul", "/yellow&blue.jpeg"),
    ("Blanco", "/white.jpeg"),
]
STOCK_PER_VARIANT = 6


async def seed_data(database_url: str | None = None) -> dict:
    """Create tables and seed the catalog. Returns what was created."""
    engine = create_async_engine(database_url or settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with SessionLocal() as db:
            existing = (await db.execute(select(Product).limit(1))).scalar_one_or_none()
            if existing is not None:
                print(f"Catalog already seeded (product {existing.product_id}), skipping")
                return {"product_id": existing.product_id, "variants": 0}

            product = await create_product(db, PRODUCT)
            for sort_order, (label, image_url) in enumerate(VARIANTS, start=1):
                await create_variant(
                    db,
                    product.product_id,
                    {
                        "label": label,
                        "image_url": image_url,
                        "stock": STOCK_PER_VARIANT,
                        "sort_order": sort_order,
                    },
                )
            await db.refresh(product)
            print(f"Seeded: 1 product, {len(VARIANTS)} variants, stock {product.stock}")
            return {"product_id": product.product_id, "variants": len(VARIANTS)}
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
