from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.db import get_session
from printdesk.core.errors import TenantNotFoundError
from printdesk.core.security import require_basic_auth
from printdesk.models.shop import ProductConfig, Shop
from printdesk.schemas.shops import ProductConfigIn, ProductConfigOut, ShopInstall, ShopOut
from printdesk.services.shops import get_shop_by_domain_or_raise, install_shop, set_product_config


router = APIRouter()


@router.get("", response_model=list[ShopOut])
async def list_shops_endpoint(session: AsyncSession = Depends(get_session)) -> list[ShopOut]:
    rows = (await session.execute(select(Shop).order_by(Shop.shop_domain.asc()))).scalars().all()
    return [ShopOut.model_validate(row) for row in rows]


@router.post("", response_model=ShopOut)
async def install_shop_endpoint(
    data: ShopInstall,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ShopOut:
    try:
        async with session.begin():
            shop = await install_shop(
                session,
                actor=actor,
                shop_domain=data.shop_domain,
                access_token=data.access_token,
                webhook_secret=data.webhook_secret,
                auto_approve=data.auto_approve,
            )
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return ShopOut.model_validate(shop)


@router.get("/{shop_domain}/products", response_model=list[ProductConfigOut])
async def list_product_configs_endpoint(
    shop_domain: str,
    session: AsyncSession = Depends(get_session),
) -> list[ProductConfigOut]:
    try:
        shop = await get_shop_by_domain_or_raise(session, shop_domain)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    rows = (
        await session.execute(
            select(ProductConfig).where(ProductConfig.shop_id == shop.id).order_by(ProductConfig.product_id.asc())
        )
    ).scalars().all()
    return [ProductConfigOut.model_validate(row) for row in rows]


@router.put("/{shop_domain}/products/{product_id}", response_model=ProductConfigOut)
async def set_product_config_endpoint(
    shop_domain: str,
    product_id: str,
    data: ProductConfigIn,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> ProductConfigOut:
    try:
        async with session.begin():
            shop = await get_shop_by_domain_or_raise(session, shop_domain)
            config = await set_product_config(
                session,
                actor=actor,
                shop_id=shop.id,
                product_id=product_id,
                mode=data.mode,
                enabled=data.enabled,
            )
    except TenantNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return ProductConfigOut.model_validate(config)
