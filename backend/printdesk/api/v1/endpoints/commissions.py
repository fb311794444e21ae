from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.config import get_settings
from printdesk.core.db import get_session
from printdesk.core.enums import CommissionStatus
from printdesk.core.errors import TenantNotFoundError
from printdesk.core.security import require_basic_auth
from printdesk.models.shop import Shop
from printdesk.schemas.commissions import (
    CommissionBalanceOut,
    CommissionCountOut,
    CommissionDueOut,
    CommissionMarkPaid,
    CommissionOut,
    CommissionRevert,
)
from printdesk.services.commissions import (
    list_commissions,
    mark_paid,
    pending_total,
    revert_payment,
    shops_due_for_collection,
)
from printdesk.services.shops import get_shop_by_domain_or_raise


router = APIRouter()


async def _shop_or_404(session: AsyncSession, shop_domain: str) -> Shop:
    try:
        return await get_shop_by_domain_or_raise(session, shop_domain)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e


@router.get("", response_model=list[CommissionOut])
async def list_commissions_endpoint(
    shop_domain: str,
    status: CommissionStatus | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> list[CommissionOut]:
    shop = await _shop_or_404(session, shop_domain)
    rows = await list_commissions(session, shop_id=shop.id, status=status, limit=limit, offset=offset)
    return [CommissionOut.model_validate(row) for row in rows]


@router.get("/balance", response_model=CommissionBalanceOut)
async def commission_balance_endpoint(shop_domain: str, session: AsyncSession = Depends(get_session)) -> CommissionBalanceOut:
    shop = await _shop_or_404(session, shop_domain)
    threshold = get_settings().commission_collection_threshold_cents
    pending = await pending_total(session, shop_id=shop.id)
    return CommissionBalanceOut(shop_id=shop.id, pending_cents=pending, threshold_cents=threshold, due=pending >= threshold)


@router.get("/due", response_model=list[CommissionDueOut])
async def commissions_due_endpoint(session: AsyncSession = Depends(get_session)) -> list[CommissionDueOut]:
    rows = await shops_due_for_collection(session)
    return [CommissionDueOut(shop_id=shop_id, pending_cents=amount) for shop_id, amount in rows]


@router.post("/mark-paid", response_model=CommissionCountOut)
async def mark_paid_endpoint(
    shop_domain: str,
    data: CommissionMarkPaid,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionCountOut:
    try:
        async with session.begin():
            shop = await get_shop_by_domain_or_raise(session, shop_domain)
            count = await mark_paid(
                session,
                actor=actor,
                shop_id=shop.id,
                order_ids=data.order_ids,
                payment_ref=data.payment_ref,
            )
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return CommissionCountOut(count=count)


@router.post("/revert", response_model=CommissionCountOut)
async def revert_payment_endpoint(
    data: CommissionRevert,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> CommissionCountOut:
    async with session.begin():
        count = await revert_payment(session, actor=actor, payment_ref=data.payment_ref)
    return CommissionCountOut(count=count)
