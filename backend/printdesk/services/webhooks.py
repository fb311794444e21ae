from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.config import get_settings
from printdesk.core.enums import UploadStatus
from printdesk.core.errors import WebhookPayloadError
from printdesk.models.order_link import OrderCancellation
from printdesk.models.shop import ProductConfig, Shop
from printdesk.services.audit import WEBHOOK_ACTOR, audit_log
from printdesk.services.commissions import accrue, apply_cancellation_policy
from printdesk.services.order_links import link_upload_to_order, synthesize_ghost_upload, uploads_linked_to_order
from printdesk.services.shops import get_shop_by_domain, get_shop_by_domain_or_raise, upload_enabled_products
from printdesk.services.sql import dialect_insert
from printdesk.services.uploads import get_upload


logger = logging.getLogger(__name__)


@dataclass
class OrderCreatedResult:
    order_id: str
    linked_upload_ids: list[uuid.UUID] = field(default_factory=list)
    ghost_upload_ids: list[uuid.UUID] = field(default_factory=list)
    rejected_references: list[str] = field(default_factory=list)
    commission_accrued: bool = False

    @property
    def matched(self) -> bool:
        return bool(self.linked_upload_ids or self.ghost_upload_ids)


@dataclass
class OrderCancelledResult:
    order_id: str
    archived_upload_ids: list[uuid.UUID] = field(default_factory=list)
    commission_voided: bool = False


def _order_id(payload: dict[str, Any]) -> str:
    raw = payload.get("id")
    if raw is None or str(raw).strip() == "":
        raise WebhookPayloadError("Order payload has no id")
    return str(raw).strip()


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def extract_upload_reference(line_item: dict[str, Any], property_names: tuple[str, ...]) -> str | None:
    """
    Upload reference stored on a cart line by the storefront script.

    Properties arrive either as a list of {name, value} pairs or as a plain mapping.
    """
    props = line_item.get("properties")
    if isinstance(props, dict):
        pairs = list(props.items())
    elif isinstance(props, list):
        pairs = [(p.get("name"), p.get("value")) for p in props if isinstance(p, dict)]
    else:
        return None

    for name in property_names:
        for key, value in pairs:
            if key == name:
                ref = _str_or_none(value)
                if ref:
                    return ref
    return None


async def _order_is_cancelled(session: AsyncSession, *, shop_id: uuid.UUID, order_id: str) -> bool:
    found = (
        await session.execute(
            select(OrderCancellation.id).where(
                OrderCancellation.shop_id == shop_id,
                OrderCancellation.order_id == order_id,
            )
        )
    ).scalar_one_or_none()
    return found is not None


async def _reject_reference(
    session: AsyncSession,
    *,
    shop: Shop,
    order_id: str,
    reference: str,
    reason: str,
    result: OrderCreatedResult,
) -> None:
    logger.warning("Order %s (shop %s): ignoring upload reference %s: %s", order_id, shop.shop_domain, reference, reason)
    result.rejected_references.append(reference)
    await audit_log(
        session,
        shop_id=shop.id,
        actor=WEBHOOK_ACTOR,
        entity_type="order",
        entity_id=order_id,
        action="order_link_rejected",
        after={"reference": reference, "reason": reason},
    )


async def handle_order_created(session: AsyncSession, *, shop_domain: str, payload: dict[str, Any]) -> OrderCreatedResult:
    shop = await get_shop_by_domain_or_raise(session, shop_domain)
    order_id = _order_id(payload)
    result = OrderCreatedResult(order_id=order_id)

    settings = get_settings()
    property_names = settings.upload_reference_property_names
    cancelled = await _order_is_cancelled(session, shop_id=shop.id, order_id=order_id)
    configs = await upload_enabled_products(session, shop_id=shop.id)
    customer = payload.get("customer") if isinstance(payload.get("customer"), dict) else {}
    customer_email = _str_or_none(payload.get("email")) or _str_or_none(customer.get("email"))

    seen_references: set[str] = set()
    line_items = payload.get("line_items") or []
    if not isinstance(line_items, list):
        raise WebhookPayloadError("line_items must be a list")

    for line_index, line_item in enumerate(line_items):
        if not isinstance(line_item, dict):
            continue
        line_item_id = _str_or_none(line_item.get("id"))
        reference = extract_upload_reference(line_item, property_names)

        if reference is not None:
            if reference in seen_references:
                continue
            seen_references.add(reference)

            try:
                upload_id = uuid.UUID(reference)
            except ValueError:
                await _reject_reference(
                    session, shop=shop, order_id=order_id, reference=reference, reason="malformed", result=result
                )
                continue

            upload = await get_upload(session, upload_id, for_update=True)
            if upload is None:
                await _reject_reference(
                    session, shop=shop, order_id=order_id, reference=reference, reason="not_found", result=result
                )
                continue
            if upload.shop_id != shop.id:
                await _reject_reference(
                    session, shop=shop, order_id=order_id, reference=reference, reason="other_shop", result=result
                )
                continue

            await link_upload_to_order(
                session,
                actor=WEBHOOK_ACTOR,
                upload=upload,
                order_id=order_id,
                line_item_id=line_item_id,
                order_cancelled=cancelled,
            )
            result.linked_upload_ids.append(upload.id)
            continue

        product_id = _str_or_none(line_item.get("product_id"))
        config = configs.get(product_id) if product_id else None
        if config is None:
            continue
        if line_item_id is None:
            logger.warning(
                "Order %s (shop %s): line %s on product %s has no id; keying its ghost by position",
                order_id,
                shop.shop_domain,
                line_index,
                product_id,
            )

        ghost, _created = await synthesize_ghost_upload(
            session,
            actor=WEBHOOK_ACTOR,
            shop=shop,
            config=config,
            order_id=order_id,
            line_item=line_item,
            line_index=line_index,
            customer_email=customer_email,
        )
        await link_upload_to_order(
            session,
            actor=WEBHOOK_ACTOR,
            upload=ghost,
            order_id=order_id,
            line_item_id=line_item_id,
            order_cancelled=cancelled,
        )
        result.ghost_upload_ids.append(ghost.id)

    if result.matched:
        await accrue(
            session,
            shop_id=shop.id,
            order_id=order_id,
            order_total=payload.get("total_price"),
            currency=payload.get("currency"),
            order_number=_str_or_none(payload.get("order_number")) or _str_or_none(payload.get("name")),
        )
        result.commission_accrued = True
        if cancelled:
            # The cancellation was processed before any commission existed.
            await apply_cancellation_policy(session, actor=WEBHOOK_ACTOR, shop_id=shop.id, order_id=order_id)

    logger.info(
        "Order %s (shop %s): %s linked, %s ghost, %s rejected",
        order_id,
        shop.shop_domain,
        len(result.linked_upload_ids),
        len(result.ghost_upload_ids),
        len(result.rejected_references),
    )
    return result


async def handle_order_cancelled(
    session: AsyncSession,
    *,
    shop_domain: str,
    payload: dict[str, Any],
) -> OrderCancelledResult:
    shop = await get_shop_by_domain_or_raise(session, shop_domain)
    order_id = _order_id(payload)
    cancel_reason = _str_or_none(payload.get("cancel_reason"))
    result = OrderCancelledResult(order_id=order_id)

    stmt = dialect_insert(session, OrderCancellation).values(
        id=uuid.uuid4(),
        shop_id=shop.id,
        order_id=order_id,
        cancel_reason=cancel_reason,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop_id", "order_id"],
        set_={
            "cancel_reason": func.coalesce(stmt.excluded.cancel_reason, OrderCancellation.__table__.c.cancel_reason),
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)

    for upload in await uploads_linked_to_order(session, shop_id=shop.id, order_id=order_id):
        if upload.status in (UploadStatus.ARCHIVED, UploadStatus.SHIPPED):
            continue
        before = {"status": upload.status}
        upload.status = UploadStatus.ARCHIVED
        await audit_log(
            session,
            shop_id=shop.id,
            actor=WEBHOOK_ACTOR,
            entity_type="upload",
            entity_id=upload.id,
            action="archived",
            before=before,
            after={"status": upload.status, "order_id": order_id, "cancel_reason": cancel_reason},
        )
        result.archived_upload_ids.append(upload.id)
    await session.flush()

    voided = await apply_cancellation_policy(session, actor=WEBHOOK_ACTOR, shop_id=shop.id, order_id=order_id)
    result.commission_voided = voided is not None

    await audit_log(
        session,
        shop_id=shop.id,
        actor=WEBHOOK_ACTOR,
        entity_type="order",
        entity_id=order_id,
        action="order_cancelled",
        after={
            "cancel_reason": cancel_reason,
            "archived_uploads": len(result.archived_upload_ids),
            "commission_voided": result.commission_voided,
        },
    )
    logger.info("Order %s (shop %s) cancelled; %s upload(s) archived", order_id, shop.shop_domain, len(result.archived_upload_ids))
    return result


async def handle_order_fulfilled(session: AsyncSession, *, shop_domain: str, payload: dict[str, Any]) -> list[uuid.UUID]:
    shop = await get_shop_by_domain_or_raise(session, shop_domain)
    order_id = _order_id(payload)

    shipped: list[uuid.UUID] = []
    for upload in await uploads_linked_to_order(session, shop_id=shop.id, order_id=order_id):
        if upload.status != UploadStatus.PRINTED:
            continue
        upload.status = UploadStatus.SHIPPED
        await audit_log(
            session,
            shop_id=shop.id,
            actor=WEBHOOK_ACTOR,
            entity_type="upload",
            entity_id=upload.id,
            action="shipped",
            before={"status": UploadStatus.PRINTED},
            after={"status": UploadStatus.SHIPPED, "order_id": order_id},
        )
        shipped.append(upload.id)
    await session.flush()
    return shipped


async def handle_app_uninstalled(session: AsyncSession, *, shop_domain: str) -> bool:
    """Offboard a tenant. Everything it owns goes with it, except its audit trail."""
    shop = await get_shop_by_domain(session, shop_domain)
    if shop is None:
        logger.info("Uninstall for unknown shop %s ignored", shop_domain)
        return False

    shop_id = shop.id
    await audit_log(
        session,
        shop_id=shop_id,
        actor=WEBHOOK_ACTOR,
        entity_type="shop",
        entity_id=shop_id,
        action="uninstalled",
        before={"shop_domain": shop.shop_domain},
    )
    await session.flush()
    session.expunge(shop)
    await session.execute(delete(Shop).where(Shop.id == shop_id))
    logger.info("Shop %s uninstalled; tenant data removed", shop_domain)
    return True


async def handle_product_deleted(session: AsyncSession, *, shop_domain: str, payload: dict[str, Any]) -> bool:
    shop = await get_shop_by_domain_or_raise(session, shop_domain)
    product_id = _str_or_none(payload.get("id"))
    if product_id is None:
        raise WebhookPayloadError("Product payload has no id")

    config = (
        await session.execute(
            select(ProductConfig).where(ProductConfig.shop_id == shop.id, ProductConfig.product_id == product_id)
        )
    ).scalar_one_or_none()
    if config is None:
        return False

    config_id = config.id
    await session.delete(config)
    await audit_log(
        session,
        shop_id=shop.id,
        actor=WEBHOOK_ACTOR,
        entity_type="product_config",
        entity_id=config_id,
        action="deleted",
        before={"product_id": product_id, "mode": config.mode, "enabled": config.enabled},
    )
    await session.flush()
    return True


async def handle_product_updated(session: AsyncSession, *, shop_domain: str, payload: dict[str, Any]) -> bool:
    shop = await get_shop_by_domain_or_raise(session, shop_domain)
    product_id = _str_or_none(payload.get("id"))
    if product_id is None:
        raise WebhookPayloadError("Product payload has no id")

    config_id = (
        await session.execute(
            select(ProductConfig.id).where(ProductConfig.shop_id == shop.id, ProductConfig.product_id == product_id)
        )
    ).scalar_one_or_none()
    if config_id is None:
        return False

    await audit_log(
        session,
        shop_id=shop.id,
        actor=WEBHOOK_ACTOR,
        entity_type="product_config",
        entity_id=config_id,
        action="product_updated",
        after={"product_id": product_id, "title": payload.get("title"), "status": payload.get("status")},
    )
    return True
