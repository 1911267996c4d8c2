"""
Storefront Database Session Management

Async SQLAlchemy engine and session factory. Every stock read goes to the
database; nothing here caches variant or product rows between requests.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings

settings = get_settings()


def engine_options(database_url: str, echo: bool = False) -> dict:
    """Engine kwargs for the given URL (SQLite pools take no sizing)."""
    options = {"echo": echo}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=20, max_overflow=10, pool_pre_ping=True)
    return options


engine = create_async_engine(
    settings.database_url,
    **engine_options(settings.database_url, settings.database_echo),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
