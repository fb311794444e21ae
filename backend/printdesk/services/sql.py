from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def utcnow() -> datetime:
    return datetime.now(UTC)


def dialect_insert(session: AsyncSession, model: Any):
    """
    INSERT construct with ON CONFLICT support for the bound database.

    Natural-key upserts go through this so that concurrent webhook deliveries never race a read-then-write.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise RuntimeError(f"Upserts are not supported on dialect '{dialect}'")
