from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from printdesk.core.enums import PreflightStatus, UploadProvenance, UploadStatus
from printdesk.models.order_link import OrderLink
from printdesk.models.shop import ProductConfig, Shop
from printdesk.models.upload import Upload, UploadItem
from printdesk.services.audit import audit_log
from printdesk.services.sql import dialect_insert
from printdesk.services.uploads import PROTECTED_STATUSES, preflight_counts


logger = logging.getLogger(__name__)

GHOST_CHECK_NAME = "upload_data"
GHOST_CHECK_MESSAGE = "Upload data missing"

# Cancellation never touches these.
_CANCEL_EXEMPT_STATUSES = {UploadStatus.ARCHIVED, UploadStatus.SHIPPED}


def ghost_key(order_id: str, line_item_id: str) -> str:
    return f"{order_id}:{line_item_id}"


async def upsert_order_link(
    session: AsyncSession,
    *,
    shop_id: uuid.UUID,
    order_id: str,
    upload_id: uuid.UUID,
    line_item_id: str | None,
) -> None:
    stmt = dialect_insert(session, OrderLink).values(
        id=uuid.uuid4(),
        shop_id=shop_id,
        order_id=order_id,
        upload_id=upload_id,
        line_item_id=line_item_id,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop_id", "order_id", "upload_id"],
        set_={"line_item_id": stmt.excluded.line_item_id, "updated_at": func.now()},
    )
    await session.execute(stmt)


async def link_upload_to_order(
    session: AsyncSession,
    *,
    actor: str,
    upload: Upload,
    order_id: str,
    line_item_id: str | None,
    order_cancelled: bool = False,
) -> Upload:
    """
    Bind an upload to an order line. Safe to repeat for every redelivery of the same order.

    The upload goes to review unless it is blocked or already past review. When the order was cancelled
    before this delivery arrived, the upload is archived straight away.
    """
    await upsert_order_link(
        session,
        shop_id=upload.shop_id,
        order_id=order_id,
        upload_id=upload.id,
        line_item_id=line_item_id,
    )

    before = {"status": upload.status, "order_id": upload.order_id}
    if upload.order_id is None:
        upload.order_id = order_id

    if order_cancelled:
        if upload.status not in _CANCEL_EXEMPT_STATUSES:
            upload.status = UploadStatus.ARCHIVED
    elif upload.status not in PROTECTED_STATUSES and upload.status != UploadStatus.BLOCKED:
        upload.status = UploadStatus.NEEDS_REVIEW
    await session.flush()

    await audit_log(
        session,
        shop_id=upload.shop_id,
        actor=actor,
        entity_type="upload",
        entity_id=upload.id,
        action="order_linked",
        before=before,
        after={"status": upload.status, "order_id": upload.order_id, "line_item_id": line_item_id},
    )
    return upload


async def synthesize_ghost_upload(
    session: AsyncSession,
    *,
    actor: str,
    shop: Shop,
    config: ProductConfig,
    order_id: str,
    line_item: dict[str, Any],
    line_index: int = 0,
    customer_email: str | None = None,
) -> tuple[Upload, bool]:
    """
    Create the placeholder upload for an order line on an upload-enabled product that carried no upload.

    Keyed on (shop, order, line item): a redelivered order returns the existing ghost instead of a second one.
    Lines without an id are keyed by their position in the order.
    """
    line_item_id = str(line_item.get("id") or "").strip() or None
    key = ghost_key(order_id, line_item_id or f"#{line_index}")

    stmt = dialect_insert(session, Upload).values(
        id=uuid.uuid4(),
        shop_id=shop.id,
        mode=config.mode,
        product_id=config.product_id,
        status=UploadStatus.BLOCKED,
        provenance=UploadProvenance.SYNTHESIZED,
        ghost_key=key,
    )
    stmt = stmt.on_conflict_do_nothing(index_elements=["shop_id", "ghost_key"]).returning(Upload.id)
    created = (await session.execute(stmt)).scalar_one_or_none() is not None

    upload = (
        await session.execute(
            select(Upload)
            .where(Upload.shop_id == shop.id, Upload.ghost_key == key)
            .options(selectinload(Upload.items))
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    if not created:
        return upload, False

    variant_id = line_item.get("variant_id")
    upload.variant_id = str(variant_id) if variant_id is not None else None
    upload.customer_email = customer_email
    upload.metadata_json = {
        "ghost": True,
        "lineItemId": line_item_id,
        "productTitle": line_item.get("title"),
        "quantity": line_item.get("quantity"),
    }
    upload.items.append(
        UploadItem(
            location="front",
            storage_key=None,
            preflight_status=PreflightStatus.ERROR,
            preflight_result={
                "overall": PreflightStatus.ERROR.value,
                "checks": [
                    {
                        "name": GHOST_CHECK_NAME,
                        "status": PreflightStatus.ERROR.value,
                        "message": GHOST_CHECK_MESSAGE,
                    }
                ],
            },
        )
    )
    upload.preflight_summary = {
        "overall": PreflightStatus.ERROR.value,
        "itemCount": 1,
        "counts": preflight_counts([PreflightStatus.ERROR]),
    }
    await session.flush()

    await audit_log(
        session,
        shop_id=shop.id,
        actor=actor,
        entity_type="upload",
        entity_id=upload.id,
        action="ghost_upload_created",
        after={"order_id": order_id, "line_item_id": line_item_id, "product_id": config.product_id},
    )
    logger.warning(
        "Order %s line %s on upload-enabled product %s carried no upload; created ghost upload %s",
        order_id,
        line_item_id,
        config.product_id,
        upload.id,
    )
    return upload, True


async def uploads_linked_to_order(session: AsyncSession, *, shop_id: uuid.UUID, order_id: str) -> list[Upload]:
    rows = (
        await session.execute(
            select(Upload)
            .join(OrderLink, OrderLink.upload_id == Upload.id)
            .where(OrderLink.shop_id == shop_id, OrderLink.order_id == order_id)
            .order_by(Upload.created_at.asc(), Upload.id.asc())
            .with_for_update(of=Upload)
            .execution_options(populate_existing=True)
        )
    ).scalars().unique().all()
    return list(rows)
