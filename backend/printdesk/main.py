from __future__ import annotations

import asyncio
import logging
import os
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy import text

from printdesk.api.v1.router import api_router, storefront_router
from printdesk.api.webhooks import router as webhooks_router
from printdesk.core.config import get_settings
from printdesk.core.db import SessionLocal, engine
from printdesk.core.security import require_basic_auth
from printdesk.models.job_lock import JobLock
from printdesk.services.flow import trigger_stats
from printdesk.services.flow_scheduler import LOCK_NAME, flow_dispatch_loop
from printdesk.services.sql import utcnow


logger = logging.getLogger(__name__)


@lru_cache
def _repo_head_revision() -> str | None:
    default_alembic_path = Path(__file__).resolve().parents[1] / "alembic.ini"
    alembic_path = Path(os.getenv("ALEMBIC_CONFIG_PATH", str(default_alembic_path)))
    if not alembic_path.exists():
        return None

    cfg = Config(str(alembic_path))
    script = ScriptDirectory.from_config(cfg)
    return script.get_current_head()


def _migration_state(has_alembic_version: bool, current_revision: str | None, repo_head: str | None) -> str:
    if not has_alembic_version:
        return "missing_alembic_version"
    if repo_head is None:
        return "unknown_repo_head"
    if current_revision == repo_head:
        return "up_to_date"
    return "behind_head"


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="printdesk",
        version="1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if settings.cors_origins:
        origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/healthz/deep")
    async def deep_healthz() -> JSONResponse:
        payload: dict[str, Any] = {"status": "ok", "checks": {"database": "ok"}}
        try:
            async with engine.connect() as conn:
                has_alembic_version = bool(
                    await conn.scalar(text("SELECT to_regclass('public.alembic_version') IS NOT NULL"))
                )
                current_revision: str | None = None
                if has_alembic_version:
                    current_revision = await conn.scalar(text("SELECT version_num FROM alembic_version LIMIT 1"))
            async with SessionLocal() as session:
                queue = await trigger_stats(session)
                lock = await session.get(JobLock, LOCK_NAME)
        except Exception as exc:
            logger.exception("Deep health check failed")
            payload["status"] = "error"
            payload["checks"]["database"] = "error"
            payload["error"] = f"{exc.__class__.__name__}: {exc}"
            return JSONResponse(status_code=503, content=payload)

        repo_head = _repo_head_revision()
        migration_state = _migration_state(has_alembic_version, current_revision, repo_head)
        payload["checks"]["migration"] = {
            "state": migration_state,
            "current_revision": current_revision,
            "repo_head_revision": repo_head,
        }
        # Failed triggers need an operator requeue; they do not make the service unhealthy.
        payload["checks"]["flow_queue"] = {
            **queue,
            "dispatcher": lock.locked_by if lock is not None and lock.expires_at > utcnow() else None,
        }

        healthy = migration_state == "up_to_date"
        payload["status"] = "ok" if healthy else "degraded"
        return JSONResponse(status_code=200 if healthy else 503, content=payload)

    @app.get("/openapi.json", include_in_schema=False, dependencies=[Depends(require_basic_auth)])
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    @app.get("/docs", include_in_schema=False, dependencies=[Depends(require_basic_auth)])
    async def swagger_ui_html():
        return get_swagger_ui_html(openapi_url="/openapi.json", title=app.title)

    @app.on_event("startup")
    async def startup() -> None:
        if settings.flow_dispatch_enabled:
            logger.info("Starting flow dispatch loop (interval=%ss)", settings.flow_dispatch_interval_seconds)
            app.state.flow_dispatch_task = asyncio.create_task(flow_dispatch_loop(settings))

    @app.on_event("shutdown")
    async def shutdown() -> None:
        task = getattr(app.state, "flow_dispatch_task", None)
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    app.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
    app.include_router(storefront_router, prefix="/api/v1/storefront")
    app.include_router(api_router, prefix="/api/v1")
    return app


app = create_app()
