from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.config import get_settings
from printdesk.core.db import get_session
from printdesk.core.enums import FlowTriggerStatus
from printdesk.core.errors import FlowTriggerNotFoundError, InvalidStateError, TenantNotFoundError
from printdesk.core.security import require_basic_auth
from printdesk.models.flow_trigger import FlowTrigger
from printdesk.schemas.flow import FlowCleanupOut, FlowDispatchOut, FlowSendOut, FlowStatsOut, FlowTriggerOut
from printdesk.services.flow import cleanup_old_triggers, requeue_flow_trigger, send_flow_trigger, trigger_stats
from printdesk.services.flow_scheduler import process_pending_triggers
from printdesk.services.shops import get_shop_by_domain_or_raise


router = APIRouter()


@router.get("/triggers", response_model=list[FlowTriggerOut])
async def list_triggers_endpoint(
    status: FlowTriggerStatus | None = None,
    shop_domain: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> list[FlowTriggerOut]:
    stmt = select(FlowTrigger).order_by(FlowTrigger.created_at.desc(), FlowTrigger.id.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(FlowTrigger.status == status)
    if shop_domain:
        try:
            shop = await get_shop_by_domain_or_raise(session, shop_domain)
        except TenantNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        stmt = stmt.where(FlowTrigger.shop_id == shop.id)
    rows = (await session.execute(stmt)).scalars().all()
    return [FlowTriggerOut.model_validate(row) for row in rows]


@router.get("/stats", response_model=FlowStatsOut)
async def trigger_stats_endpoint(session: AsyncSession = Depends(get_session)) -> FlowStatsOut:
    return FlowStatsOut(**await trigger_stats(session))


@router.post("/triggers/{trigger_id}/send", response_model=FlowSendOut)
async def send_trigger_endpoint(trigger_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> FlowSendOut:
    try:
        async with session.begin():
            delivered = await send_flow_trigger(session, trigger_id)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except FlowTriggerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    trigger = await session.get(FlowTrigger, trigger_id)
    return FlowSendOut(delivered=delivered, trigger=FlowTriggerOut.model_validate(trigger))


@router.post("/triggers/{trigger_id}/requeue", response_model=FlowTriggerOut)
async def requeue_trigger_endpoint(
    trigger_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> FlowTriggerOut:
    try:
        async with session.begin():
            trigger = await requeue_flow_trigger(session, actor=actor, trigger_id=trigger_id)
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except FlowTriggerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return FlowTriggerOut.model_validate(trigger)


@router.post("/dispatch", response_model=FlowDispatchOut)
async def dispatch_triggers_endpoint(
    batch_size: int | None = Query(default=None, ge=1, le=100),
) -> FlowDispatchOut:
    stats = await process_pending_triggers(get_settings(), batch_size=batch_size)
    return FlowDispatchOut(sent=stats.sent, failed=stats.failed)


@router.post("/cleanup", response_model=FlowCleanupOut)
async def cleanup_triggers_endpoint(
    retention_days: int | None = Query(default=None, ge=1, le=365),
    session: AsyncSession = Depends(get_session),
) -> FlowCleanupOut:
    async with session.begin():
        removed = await cleanup_old_triggers(
            session,
            retention_days=retention_days or get_settings().flow_retention_days,
        )
    return FlowCleanupOut(removed=removed)
