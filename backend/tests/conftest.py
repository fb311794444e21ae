from __future__ import annotations

import os
import sys
from pathlib import Path
from collections.abc import AsyncIterator

import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# `printdesk.core.db` builds its engine at import time; endpoint modules import it.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-import.db")
os.environ.setdefault("BASIC_AUTH_USERNAME", "test-user")
os.environ.setdefault("BASIC_AUTH_PASSWORD", "test-pass")

import printdesk.models  # noqa: E402,F401
from printdesk.core.config import get_settings  # noqa: E402
from printdesk.core.enums import UploadMode  # noqa: E402
from printdesk.models.shop import Shop  # noqa: E402
from printdesk.models.base import Base  # noqa: E402
from printdesk.services.shops import install_shop, set_product_config  # noqa: E402

from helpers import CONFIGURED_PRODUCT_ID, OTHER_SHOP_DOMAIN, SHOP_DOMAIN, TEST_WEBHOOK_SECRET  # noqa: E402


@compiles(JSONB, "sqlite")
def _compile_jsonb_for_sqlite(_type, _compiler, **_kw) -> str:
    # Test suite uses SQLite; map PostgreSQL JSONB to JSON for portable DDL.
    return "JSON"


@pytest_asyncio.fixture
async def db_engine(tmp_path, monkeypatch) -> AsyncIterator[AsyncEngine]:
    db_path = tmp_path / "test.db"

    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("BASIC_AUTH_USERNAME", "test-user")
    monkeypatch.setenv("BASIC_AUTH_PASSWORD", "test-pass")
    monkeypatch.setenv("SHOP_API_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setenv("FLOW_SEND_DELAY_SECONDS", "0")
    monkeypatch.setenv("COMMISSION_CANCELLATION_POLICY", "retain")
    get_settings.cache_clear()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", future=True)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def shop(db_session: AsyncSession) -> Shop:
    """Installed tenant with one upload-enabled product."""
    async with db_session.begin():
        created = await install_shop(
            db_session,
            actor="test",
            shop_domain=SHOP_DOMAIN,
            access_token="shpat_test",
        )
        await set_product_config(
            db_session,
            actor="test",
            shop_id=created.id,
            product_id=CONFIGURED_PRODUCT_ID,
            mode=UploadMode.DTF_ONLY,
        )
    return created


@pytest_asyncio.fixture
async def other_shop(db_session: AsyncSession) -> Shop:
    async with db_session.begin():
        created = await install_shop(
            db_session,
            actor="test",
            shop_domain=OTHER_SHOP_DOMAIN,
            access_token="shpat_other",
        )
    return created
