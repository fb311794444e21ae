from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.db import get_session
from printdesk.core.errors import InvalidStateError, TenantNotFoundError, UploadNotFoundError
from printdesk.schemas.uploads import UploadComplete, UploadCompleteOut, UploadCreate, UploadOut, UploadStatusOut
from printdesk.services.preflight import COMPLETION_STATUS, complete_upload
from printdesk.services.shops import get_shop_by_domain_or_raise
from printdesk.services.uploads import create_draft_upload, get_upload_or_raise


router = APIRouter()

STOREFRONT_ACTOR = "storefront"


@router.post("/uploads", response_model=UploadOut)
async def create_upload_endpoint(data: UploadCreate, session: AsyncSession = Depends(get_session)) -> UploadOut:
    try:
        async with session.begin():
            upload = await create_draft_upload(session, actor=STOREFRONT_ACTOR, data=data)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return UploadOut.model_validate(upload)


@router.post("/uploads/{upload_id}/complete", response_model=UploadCompleteOut)
async def complete_upload_endpoint(
    upload_id: uuid.UUID,
    data: UploadComplete,
    session: AsyncSession = Depends(get_session),
) -> UploadCompleteOut:
    try:
        async with session.begin():
            shop_id = None
            if data.shop_domain:
                shop_id = (await get_shop_by_domain_or_raise(session, data.shop_domain)).id
            upload = await complete_upload(
                session,
                actor=STOREFRONT_ACTOR,
                upload_id=upload_id,
                data=data,
                shop_id=shop_id,
            )
    except (TenantNotFoundError, UploadNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return UploadCompleteOut(upload_id=upload.id, status=COMPLETION_STATUS)


@router.get("/uploads/{upload_id}", response_model=UploadStatusOut)
async def get_upload_status_endpoint(
    upload_id: uuid.UUID,
    shop_domain: str,
    session: AsyncSession = Depends(get_session),
) -> UploadStatusOut:
    try:
        shop = await get_shop_by_domain_or_raise(session, shop_domain)
        upload = await get_upload_or_raise(session, upload_id, shop_id=shop.id)
    except (TenantNotFoundError, UploadNotFoundError):
        raise HTTPException(status_code=404, detail="Not found") from None
    return UploadStatusOut.model_validate(upload)
