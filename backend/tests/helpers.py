from __future__ import annotations

import json
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from printdesk.core.enums import UploadMode
from printdesk.core.security import compute_webhook_signature
from printdesk.models.shop import Shop
from printdesk.models.upload import Upload
from printdesk.schemas.uploads import UploadComplete, UploadCreate, UploadItemCreate
from printdesk.services.preflight import complete_upload
from printdesk.services.uploads import create_draft_upload, get_upload_or_raise

TEST_WEBHOOK_SECRET = "test-webhook-secret"
SHOP_DOMAIN = "alpha.example.com"
OTHER_SHOP_DOMAIN = "beta.example.com"
CONFIGURED_PRODUCT_ID = "9001"


async def make_upload(
    session: AsyncSession,
    shop: Shop,
    *,
    locations: tuple[str, ...] = ("front",),
    mode: UploadMode = UploadMode.DTF_ONLY,
    complete: bool = True,
) -> Upload:
    async with session.begin():
        upload = await create_draft_upload(
            session,
            actor="test",
            data=UploadCreate(
                shop_domain=shop.shop_domain,
                mode=mode,
                product_id=CONFIGURED_PRODUCT_ID,
                customer_email="buyer@example.com",
                items=[
                    UploadItemCreate(location=loc, storage_key=f"uploads/{shop.shop_domain}/{loc}.png")
                    for loc in locations
                ],
            ),
        )
        if complete:
            await complete_upload(session, actor="test", upload_id=upload.id, data=UploadComplete())
    return await reload_upload(session, upload.id)


async def reload_upload(session: AsyncSession, upload_id) -> Upload:  # noqa: ANN001
    async with session.begin():
        return await get_upload_or_raise(session, upload_id, for_update=True)


async def count_rows(session_factory: async_sessionmaker[AsyncSession], model, *criteria) -> int:  # noqa: ANN001
    async with session_factory() as session:
        stmt = select(func.count()).select_from(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return int((await session.execute(stmt)).scalar_one())


def line_item(
    line_item_id: str,
    *,
    upload_ref: str | None = None,
    product_id: str = "1234",
    property_name: str = "_upload_id",
) -> dict[str, Any]:
    properties = []
    if upload_ref is not None:
        properties.append({"name": property_name, "value": upload_ref})
    return {
        "id": int(line_item_id),
        "product_id": int(product_id),
        "variant_id": 77,
        "title": "Custom print",
        "quantity": 1,
        "properties": properties,
    }


def order_payload(order_id: str, lines: list[dict[str, Any]], *, total: str = "29.99") -> dict[str, Any]:
    return {
        "id": int(order_id),
        "name": f"#{order_id[-4:]}",
        "order_number": order_id[-4:],
        "email": "buyer@example.com",
        "total_price": total,
        "currency": "usd",
        "line_items": lines,
    }


def signed_body(payload: dict[str, Any], *, secret: str = TEST_WEBHOOK_SECRET) -> tuple[bytes, str]:
    raw = json.dumps(payload).encode("utf-8")
    return raw, compute_webhook_signature(raw, secret)
