from __future__ import annotations

from collections.abc import AsyncIterator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from printdesk.core.config import get_settings


def create_engine() -> AsyncEngine:
    settings = get_settings()
    kwargs: dict[str, object] = {"pool_pre_ping": True}
    # Webhook bursts arrive in parallel; size the pool for them on PostgreSQL.
    if make_url(settings.database_url).get_backend_name() == "postgresql":
        kwargs["pool_size"] = settings.database_pool_size
        kwargs["max_overflow"] = settings.database_max_overflow
    return create_async_engine(settings.database_url, **kwargs)


engine = create_engine()
SessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Request-scoped session; endpoints open their own transaction with `session.begin()`."""
    async with SessionLocal() as session:
        yield session
