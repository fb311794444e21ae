from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.db import get_session
from printdesk.core.errors import TenantNotFoundError
from printdesk.schemas.flow import ExportCompleted, FlowTriggerOut
from printdesk.services.flow import trigger_export_completed
from printdesk.services.shops import get_shop_by_domain_or_raise


router = APIRouter()


@router.post("/{export_id}/completed", response_model=FlowTriggerOut)
async def export_completed_endpoint(
    data: ExportCompleted,
    export_id: str = Path(min_length=1, max_length=64),
    session: AsyncSession = Depends(get_session),
) -> FlowTriggerOut:
    try:
        async with session.begin():
            shop = await get_shop_by_domain_or_raise(session, data.shop_domain)
            trigger = await trigger_export_completed(
                session,
                shop=shop,
                export_id=export_id,
                upload_ids=data.upload_ids,
                status=data.status,
                download_url=data.download_url,
            )
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return FlowTriggerOut.model_validate(trigger)
