from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.db import get_session
from printdesk.core.enums import UploadStatus
from printdesk.core.errors import InvalidStateError, TenantNotFoundError, UploadNotFoundError
from printdesk.core.security import require_basic_auth
from printdesk.schemas.uploads import UploadOut, UploadStatusChange
from printdesk.services.shops import get_shop_by_domain_or_raise
from printdesk.services.uploads import get_upload_or_raise, list_uploads, transition_upload


router = APIRouter()


@router.get("", response_model=list[UploadOut])
async def list_uploads_endpoint(
    shop_domain: str | None = None,
    status: UploadStatus | None = None,
    order_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> list[UploadOut]:
    shop_id = None
    if shop_domain:
        try:
            shop_id = (await get_shop_by_domain_or_raise(session, shop_domain)).id
        except TenantNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
    rows = await list_uploads(session, shop_id=shop_id, status=status, order_id=order_id, limit=limit, offset=offset)
    return [UploadOut.model_validate(row) for row in rows]


@router.get("/{upload_id}", response_model=UploadOut)
async def get_upload_endpoint(upload_id: uuid.UUID, session: AsyncSession = Depends(get_session)) -> UploadOut:
    try:
        upload = await get_upload_or_raise(session, upload_id)
    except UploadNotFoundError:
        raise HTTPException(status_code=404, detail="Not found") from None
    return UploadOut.model_validate(upload)


@router.post("/{upload_id}/status", response_model=UploadOut)
async def change_upload_status_endpoint(
    upload_id: uuid.UUID,
    data: UploadStatusChange,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> UploadOut:
    try:
        async with session.begin():
            upload = await transition_upload(
                session,
                actor=actor,
                upload_id=upload_id,
                new_status=data.status,
                reason=data.reason,
            )
    except UploadNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    upload = await get_upload_or_raise(session, upload.id)
    return UploadOut.model_validate(upload)
