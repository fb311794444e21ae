from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.config import get_settings
from printdesk.core.enums import UploadMode
from printdesk.core.errors import TenantNotFoundError
from printdesk.models.shop import ProductConfig, Shop
from printdesk.services.audit import audit_log


def normalize_shop_domain(shop_domain: str) -> str:
    return (shop_domain or "").strip().lower()


async def get_shop_by_domain(session: AsyncSession, shop_domain: str) -> Shop | None:
    domain = normalize_shop_domain(shop_domain)
    if not domain:
        return None
    return (await session.execute(select(Shop).where(Shop.shop_domain == domain))).scalar_one_or_none()


async def get_shop_by_domain_or_raise(session: AsyncSession, shop_domain: str) -> Shop:
    shop = await get_shop_by_domain(session, shop_domain)
    if shop is None:
        raise TenantNotFoundError(shop_domain)
    return shop


def webhook_secret_for(shop: Shop | None) -> str | None:
    if shop is not None and shop.webhook_secret:
        return shop.webhook_secret
    return get_settings().shop_api_secret


async def install_shop(
    session: AsyncSession,
    *,
    actor: str,
    shop_domain: str,
    access_token: str | None = None,
    webhook_secret: str | None = None,
    auto_approve: bool | None = None,
) -> Shop:
    domain = normalize_shop_domain(shop_domain)
    if not domain:
        raise ValueError("shop_domain is required")

    shop = await get_shop_by_domain(session, domain)
    created = shop is None
    if shop is None:
        shop = Shop(shop_domain=domain, auto_approve=bool(auto_approve))
        session.add(shop)

    if access_token is not None:
        shop.access_token = access_token
    if webhook_secret is not None:
        shop.webhook_secret = webhook_secret or None
    if auto_approve is not None:
        shop.auto_approve = auto_approve
    await session.flush()

    await audit_log(
        session,
        shop_id=shop.id,
        actor=actor,
        entity_type="shop",
        entity_id=shop.id,
        action="installed" if created else "updated",
        after={"shop_domain": shop.shop_domain, "auto_approve": shop.auto_approve},
    )
    return shop


async def set_product_config(
    session: AsyncSession,
    *,
    actor: str,
    shop_id: uuid.UUID,
    product_id: str,
    mode: UploadMode = UploadMode.DTF_ONLY,
    enabled: bool = True,
) -> ProductConfig:
    product_id = str(product_id).strip()
    if not product_id:
        raise ValueError("product_id is required")

    config = (
        await session.execute(
            select(ProductConfig).where(ProductConfig.shop_id == shop_id, ProductConfig.product_id == product_id)
        )
    ).scalar_one_or_none()
    before = None
    if config is None:
        config = ProductConfig(shop_id=shop_id, product_id=product_id, mode=mode, enabled=enabled)
        session.add(config)
    else:
        before = {"mode": config.mode, "enabled": config.enabled}
        config.mode = mode
        config.enabled = enabled
    await session.flush()

    await audit_log(
        session,
        shop_id=shop_id,
        actor=actor,
        entity_type="product_config",
        entity_id=config.id,
        action="configured",
        before=before,
        after={"product_id": product_id, "mode": mode, "enabled": enabled},
    )
    return config


async def upload_enabled_products(session: AsyncSession, *, shop_id: uuid.UUID) -> dict[str, ProductConfig]:
    """Enabled product configurations for a shop, keyed by product id, as of now."""
    rows = (
        await session.execute(
            select(ProductConfig).where(ProductConfig.shop_id == shop_id, ProductConfig.enabled.is_(True))
        )
    ).scalars().all()
    return {row.product_id: row for row in rows}
