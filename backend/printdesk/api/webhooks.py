from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.db import get_session
from printdesk.core.errors import AuthenticationError, TenantNotFoundError, WebhookPayloadError
from printdesk.core.security import verify_webhook_signature
from printdesk.services.shops import get_shop_by_domain, webhook_secret_for
from printdesk.services.webhooks import (
    handle_app_uninstalled,
    handle_order_cancelled,
    handle_order_created,
    handle_order_fulfilled,
    handle_product_deleted,
    handle_product_updated,
)


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Shop-Hmac-Sha256"
SHOP_DOMAIN_HEADER = "X-Shop-Domain"

router = APIRouter()

Handler = Callable[[AsyncSession, str, dict[str, Any]], Awaitable[dict[str, Any]]]


async def _orders_create(session: AsyncSession, shop_domain: str, payload: dict[str, Any]) -> dict[str, Any]:
    result = await handle_order_created(session, shop_domain=shop_domain, payload=payload)
    return {
        "linked": len(result.linked_upload_ids),
        "ghosts": len(result.ghost_upload_ids),
        "rejected": len(result.rejected_references),
    }


async def _orders_cancelled(session: AsyncSession, shop_domain: str, payload: dict[str, Any]) -> dict[str, Any]:
    result = await handle_order_cancelled(session, shop_domain=shop_domain, payload=payload)
    return {"archived": len(result.archived_upload_ids)}


async def _orders_fulfilled(session: AsyncSession, shop_domain: str, payload: dict[str, Any]) -> dict[str, Any]:
    shipped = await handle_order_fulfilled(session, shop_domain=shop_domain, payload=payload)
    return {"shipped": len(shipped)}


async def _app_uninstalled(session: AsyncSession, shop_domain: str, _payload: dict[str, Any]) -> dict[str, Any]:
    return {"removed": await handle_app_uninstalled(session, shop_domain=shop_domain)}


async def _products_update(session: AsyncSession, shop_domain: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"configured": await handle_product_updated(session, shop_domain=shop_domain, payload=payload)}


async def _products_delete(session: AsyncSession, shop_domain: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"removed": await handle_product_deleted(session, shop_domain=shop_domain, payload=payload)}


WEBHOOK_HANDLERS: dict[str, Handler] = {
    "orders-create": _orders_create,
    "orders-cancelled": _orders_cancelled,
    "orders-fulfilled": _orders_fulfilled,
    "app-uninstalled": _app_uninstalled,
    "products-update": _products_update,
    "products-delete": _products_delete,
}


def _parse_body(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WebhookPayloadError("Body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Body must be a JSON object")
    return payload


async def process_webhook(
    session: AsyncSession,
    *,
    topic: str,
    raw_body: bytes,
    signature: str | None,
    shop_domain: str | None,
) -> JSONResponse:
    """
    Verify, parse and apply one webhook delivery in a single transaction.

    The body is parsed only after the signature over the raw bytes checks out.
    """
    handler = WEBHOOK_HANDLERS.get(topic)
    if handler is None:
        return JSONResponse(status_code=404, content={"error": f"Unknown webhook topic: {topic}"})

    shop_domain = (shop_domain or "").strip()
    try:
        async with session.begin():
            if not shop_domain:
                # A delivery must name its shop before any secret is chosen.
                raise AuthenticationError("Missing shop domain header")
            shop = await get_shop_by_domain(session, shop_domain)
            verify_webhook_signature(raw_body, signature, webhook_secret_for(shop))
            payload = _parse_body(raw_body)
            outcome = await handler(session, shop_domain, payload)
    except AuthenticationError as e:
        logger.warning("Rejected %s webhook for %s: %s", topic, shop_domain or "<no shop>", e)
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    except WebhookPayloadError as e:
        logger.warning("Malformed %s webhook for %s: %s", topic, shop_domain, e)
        return JSONResponse(status_code=400, content={"error": str(e)})
    except TenantNotFoundError as e:
        logger.info("Ignoring %s webhook for unknown shop %s", topic, e.shop_domain)
        return JSONResponse(status_code=200, content={"ok": True, "ignored": "unknown_shop"})
    except Exception:
        logger.exception("Failed to process %s webhook for %s", topic, shop_domain)
        return JSONResponse(status_code=500, content={"error": "Processing failed"})

    return JSONResponse(status_code=200, content={"ok": True, **outcome})


@router.post("/{topic}")
async def receive_webhook(
    topic: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    raw_body = await request.body()
    return await process_webhook(
        session,
        topic=topic,
        raw_body=raw_body,
        signature=request.headers.get(SIGNATURE_HEADER),
        shop_domain=request.headers.get(SHOP_DOMAIN_HEADER),
    )
