from __future__ import annotations

import asyncio
import logging
import os
import random
import socket
from dataclasses import dataclass
from datetime import timedelta

from printdesk.core.config import Settings
from printdesk.models.job_lock import JobLock
from printdesk.services.flow import cleanup_old_triggers, pending_trigger_ids, send_flow_trigger
from printdesk.services.preflight import release_stale_claims
from printdesk.services.sql import dialect_insert, utcnow


logger = logging.getLogger(__name__)
SessionLocal = None

LOCK_NAME = "flow_dispatch"


@dataclass(frozen=True)
class DispatchStats:
    sent: int
    failed: int


def _lock_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


async def _try_acquire_or_renew_lock(*, name: str, holder: str, ttl_seconds: int) -> bool:
    now = utcnow()
    expires = now + timedelta(seconds=max(30, int(ttl_seconds)))

    async with _get_session_local()() as session:
        async with session.begin():
            stmt = dialect_insert(session, JobLock).values(name=name, locked_at=now, locked_by=holder, expires_at=expires)
            stmt = stmt.on_conflict_do_update(
                index_elements=[JobLock.name],
                set_={
                    "locked_at": stmt.excluded.locked_at,
                    "locked_by": stmt.excluded.locked_by,
                    "expires_at": stmt.excluded.expires_at,
                },
                # Taken over only once expired, or renewed by the current holder.
                where=(JobLock.expires_at <= now) | (JobLock.locked_by == holder),
            )
            res = await session.execute(stmt)
            return bool(res.rowcount == 1)


def _get_session_local():
    global SessionLocal
    if SessionLocal is None:
        from printdesk.core.db import SessionLocal as _SessionLocal

        SessionLocal = _SessionLocal
    return SessionLocal


async def process_pending_triggers(settings: Settings, *, batch_size: int | None = None) -> DispatchStats:
    """
    Deliver one batch of pending triggers, oldest first.

    Each send runs in its own transaction so one slow or failing endpoint cannot roll back the others.
    """
    async with _get_session_local()() as session:
        trigger_ids = await pending_trigger_ids(session, limit=batch_size or settings.flow_batch_size)

    sent = 0
    failed = 0
    for idx, trigger_id in enumerate(trigger_ids):
        if idx > 0 and settings.flow_send_delay_seconds > 0:
            await asyncio.sleep(settings.flow_send_delay_seconds)
        try:
            async with _get_session_local()() as session:
                async with session.begin():
                    ok = await send_flow_trigger(session, trigger_id)
        except Exception:
            logger.exception("Flow trigger %s could not be sent", trigger_id)
            ok = False
        if ok:
            sent += 1
        else:
            failed += 1

    if trigger_ids:
        logger.info("Flow dispatch: %s sent, %s failed", sent, failed)
    return DispatchStats(sent=sent, failed=failed)


async def _cleanup(settings: Settings) -> int:
    async with _get_session_local()() as session:
        async with session.begin():
            removed = await cleanup_old_triggers(session, retention_days=settings.flow_retention_days)
    if removed > 0:
        logger.info("Flow retention removed %s old trigger(s)", removed)
    return removed


async def _release_stale_preflight_claims() -> int:
    async with _get_session_local()() as session:
        async with session.begin():
            return await release_stale_claims(session)


async def flow_dispatch_loop(settings: Settings) -> None:
    if not settings.flow_dispatch_enabled:
        return

    holder = _lock_holder_id()
    tick = max(1, int(settings.flow_dispatch_interval_seconds))
    cleanup_every = timedelta(seconds=max(60, int(settings.flow_cleanup_interval_seconds)))
    next_cleanup_at = utcnow()

    while True:
        try:
            acquired = await _try_acquire_or_renew_lock(
                name=LOCK_NAME,
                holder=holder,
                ttl_seconds=settings.flow_lock_ttl_seconds,
            )
            if acquired:
                await process_pending_triggers(settings)
                await _release_stale_preflight_claims()
                if utcnow() >= next_cleanup_at:
                    await _cleanup(settings)
                    next_cleanup_at = utcnow() + cleanup_every
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Flow dispatch tick failed")

        await asyncio.sleep(tick + random.uniform(0, 1))
