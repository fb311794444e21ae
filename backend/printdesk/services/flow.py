from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

import httpx
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from printdesk.core.config import Settings, get_settings
from printdesk.core.enums import FlowEventType, FlowTriggerStatus, PreflightStatus
from printdesk.core.errors import DeliveryFailure, FlowTriggerNotFoundError, InvalidStateError
from printdesk.models.flow_trigger import FlowTrigger
from printdesk.models.shop import Shop
from printdesk.models.upload import Upload, UploadItem
from printdesk.services.audit import audit_log
from printdesk.services.sql import utcnow


logger = logging.getLogger(__name__)

FLOW_TRIGGER_MUTATION = """
mutation flowTriggerReceive($handle: String!, $payload: JSON!) {
  flowTriggerReceive(handle: $handle, payload: $payload) {
    userErrors {
      field
      message
    }
  }
}
"""


def flow_handle(event_type: FlowEventType, *, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    return f"{settings.flow_handle_prefix}/{event_type.value}"


def _timestamp() -> str:
    return utcnow().isoformat()


def _compact(payload: dict[str, Any]) -> dict[str, Any]:
    # Optional fields are omitted rather than sent as null.
    return {k: v for k, v in payload.items() if v is not None}


async def queue_flow_trigger(
    session: AsyncSession,
    *,
    shop_id: uuid.UUID,
    event_type: FlowEventType,
    resource_id: uuid.UUID | str,
    payload: dict[str, Any],
) -> FlowTrigger:
    trigger = FlowTrigger(
        shop_id=shop_id,
        event_type=event_type,
        resource_id=str(resource_id),
        payload=payload,
        status=FlowTriggerStatus.PENDING,
        attempts=0,
    )
    session.add(trigger)
    await session.flush()
    logger.info("Queued %s flow trigger for shop %s", event_type.value, shop_id)
    return trigger


def upload_payload(*, shop: Shop, upload: Upload, items: Iterable[UploadItem]) -> dict[str, Any]:
    items = list(items)
    return _compact(
        {
            "timestamp": _timestamp(),
            "shopDomain": shop.shop_domain,
            "uploadId": str(upload.id),
            "mode": upload.mode.value,
            "productId": upload.product_id,
            "variantId": upload.variant_id,
            "customerId": upload.customer_id,
            "customerEmail": upload.customer_email,
            "itemCount": len(items),
            "locations": [item.location for item in items],
        }
    )


async def trigger_upload_received(
    session: AsyncSession,
    *,
    shop: Shop,
    upload: Upload,
    items: Iterable[UploadItem],
) -> FlowTrigger:
    return await queue_flow_trigger(
        session,
        shop_id=shop.id,
        event_type=FlowEventType.UPLOAD_RECEIVED,
        resource_id=upload.id,
        payload=upload_payload(shop=shop, upload=upload, items=items),
    )


async def trigger_upload_decision(
    session: AsyncSession,
    *,
    shop: Shop,
    upload: Upload,
    items: Iterable[UploadItem],
    event_type: FlowEventType,
) -> FlowTrigger:
    if event_type not in (FlowEventType.UPLOAD_APPROVED, FlowEventType.UPLOAD_REJECTED):
        raise ValueError(f"Not a decision event: {event_type}")
    return await queue_flow_trigger(
        session,
        shop_id=shop.id,
        event_type=event_type,
        resource_id=upload.id,
        payload=upload_payload(shop=shop, upload=upload, items=items),
    )


async def trigger_preflight_result(
    session: AsyncSession,
    *,
    shop: Shop,
    upload_id: uuid.UUID,
    item: UploadItem,
) -> FlowTrigger | None:
    if item.preflight_status == PreflightStatus.OK:
        return None
    if item.preflight_status == PreflightStatus.PENDING:
        return None

    event_type = (
        FlowEventType.PREFLIGHT_ERROR
        if item.preflight_status == PreflightStatus.ERROR
        else FlowEventType.PREFLIGHT_WARNING
    )
    result = item.preflight_result if isinstance(item.preflight_result, dict) else {}
    checks = result.get("checks") if isinstance(result.get("checks"), list) else []
    return await queue_flow_trigger(
        session,
        shop_id=shop.id,
        event_type=event_type,
        resource_id=item.id,
        payload={
            "timestamp": _timestamp(),
            "shopDomain": shop.shop_domain,
            "uploadId": str(upload_id),
            "itemId": str(item.id),
            "location": item.location,
            "status": item.preflight_status.value,
            "checks": checks,
        },
    )


async def trigger_export_completed(
    session: AsyncSession,
    *,
    shop: Shop,
    export_id: str,
    upload_ids: list[uuid.UUID],
    status: str,
    download_url: str | None = None,
) -> FlowTrigger:
    return await queue_flow_trigger(
        session,
        shop_id=shop.id,
        event_type=FlowEventType.EXPORT_COMPLETED,
        resource_id=export_id,
        payload=_compact(
            {
                "timestamp": _timestamp(),
                "shopDomain": shop.shop_domain,
                "exportId": export_id,
                "uploadCount": len(upload_ids),
                "downloadUrl": download_url,
                "status": status,
            }
        ),
    )


def _first_error_message(errors: Any) -> str:
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
        return str(first)
    return "Unknown flow trigger error"


async def _deliver(trigger: FlowTrigger, *, settings: Settings, client: httpx.AsyncClient | None) -> None:
    shop = trigger.shop
    if not shop.access_token:
        raise DeliveryFailure(f"Shop {shop.shop_domain} has no access token")

    url = settings.shop_admin_url_template.format(shop_domain=shop.shop_domain, api_version=settings.shop_api_version)
    body = {
        "query": FLOW_TRIGGER_MUTATION,
        "variables": {
            "handle": flow_handle(trigger.event_type, settings=settings),
            "payload": trigger.payload,
        },
    }
    headers = {
        "Content-Type": "application/json",
        "X-Shop-Access-Token": shop.access_token,
    }

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.flow_request_timeout_seconds) as own_client:
                r = await own_client.post(url, json=body, headers=headers)
        else:
            r = await client.post(url, json=body, headers=headers)
        r.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise DeliveryFailure(f"HTTP {e.response.status_code}: {e.response.text[:500]}") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise DeliveryFailure(f"{e.__class__.__name__}: {e}") from e

    try:
        data = r.json()
    except ValueError as e:
        raise DeliveryFailure("Response is not valid JSON") from e
    if not isinstance(data, dict):
        raise DeliveryFailure("Response is not a JSON object")

    if data.get("errors"):
        raise DeliveryFailure(_first_error_message(data["errors"]))
    result = data.get("data")
    if not isinstance(result, dict):
        raise DeliveryFailure("Response has no data object")
    received = result.get("flowTriggerReceive")
    if not isinstance(received, dict):
        raise DeliveryFailure("Response has no flowTriggerReceive object")
    user_errors = received.get("userErrors") or []
    if user_errors:
        raise DeliveryFailure(_first_error_message(user_errors))


async def send_flow_trigger(
    session: AsyncSession,
    trigger_id: uuid.UUID,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """
    Make exactly one delivery attempt for a pending trigger.

    The attempt counter increments once per call whatever the outcome. Reaching the attempt limit marks the
    trigger as failed for good; only an operator requeue brings it back.
    """
    settings = get_settings()
    trigger = (
        await session.execute(
            select(FlowTrigger).where(FlowTrigger.id == trigger_id).options(selectinload(FlowTrigger.shop))
        )
    ).scalar_one_or_none()
    if trigger is None:
        raise FlowTriggerNotFoundError(f"Flow trigger not found: {trigger_id}")
    if trigger.status != FlowTriggerStatus.PENDING:
        raise InvalidStateError(f"Flow trigger is {trigger.status.value}; only pending triggers can be sent")

    max_attempts = max(1, settings.flow_max_attempts)
    if trigger.attempts >= max_attempts:
        trigger.status = FlowTriggerStatus.FAILED
        await session.flush()
        return False

    error: str | None = None
    try:
        await _deliver(trigger, settings=settings, client=client)
    except DeliveryFailure as e:
        error = str(e) or e.__class__.__name__
    except Exception as e:
        # Still a real attempt; it counts towards the limit like any other failure.
        logger.exception("Unexpected error delivering flow trigger %s", trigger.id)
        error = f"{e.__class__.__name__}: {e}"

    trigger.attempts += 1
    if error is None:
        trigger.status = FlowTriggerStatus.SENT
        trigger.sent_at = utcnow()
        trigger.error = None
        await session.flush()
        logger.info("Sent %s flow trigger %s", trigger.event_type.value, trigger.id)
        return True

    trigger.error = error
    trigger.status = FlowTriggerStatus.FAILED if trigger.attempts >= max_attempts else FlowTriggerStatus.PENDING
    await session.flush()
    logger.warning(
        "Flow trigger %s (%s) failed: %s (attempt %s/%s)",
        trigger.id,
        trigger.event_type.value,
        error,
        trigger.attempts,
        max_attempts,
    )
    return False


async def pending_trigger_ids(session: AsyncSession, *, limit: int) -> list[uuid.UUID]:
    settings = get_settings()
    rows = (
        await session.execute(
            select(FlowTrigger.id)
            .where(
                FlowTrigger.status == FlowTriggerStatus.PENDING,
                FlowTrigger.attempts < settings.flow_max_attempts,
            )
            .order_by(FlowTrigger.created_at.asc(), FlowTrigger.id.asc())
            .limit(max(1, limit))
        )
    ).scalars().all()
    return list(rows)


async def requeue_flow_trigger(session: AsyncSession, *, actor: str, trigger_id: uuid.UUID) -> FlowTrigger:
    trigger = await session.get(FlowTrigger, trigger_id)
    if trigger is None:
        raise FlowTriggerNotFoundError(f"Flow trigger not found: {trigger_id}")
    if trigger.status != FlowTriggerStatus.FAILED:
        raise InvalidStateError(f"Only failed triggers can be requeued (status: {trigger.status.value})")

    before = {"status": trigger.status, "attempts": trigger.attempts, "error": trigger.error}
    trigger.status = FlowTriggerStatus.PENDING
    trigger.attempts = 0
    trigger.error = None
    await session.flush()

    await audit_log(
        session,
        shop_id=trigger.shop_id,
        actor=actor,
        entity_type="flow_trigger",
        entity_id=trigger.id,
        action="requeued",
        before=before,
        after={"status": trigger.status, "attempts": 0},
    )
    return trigger


async def cleanup_old_triggers(session: AsyncSession, *, retention_days: int) -> int:
    cutoff = utcnow() - timedelta(days=max(1, retention_days))
    res = await session.execute(
        delete(FlowTrigger).where(
            FlowTrigger.status.in_([FlowTriggerStatus.SENT, FlowTriggerStatus.FAILED]),
            FlowTrigger.created_at < cutoff,
        )
    )
    return int(res.rowcount or 0)


async def trigger_stats(session: AsyncSession, *, shop_id: uuid.UUID | None = None) -> dict[str, int]:
    stmt = select(FlowTrigger.status, func.count()).group_by(FlowTrigger.status)
    if shop_id is not None:
        stmt = stmt.where(FlowTrigger.shop_id == shop_id)
    out = {status.value: 0 for status in FlowTriggerStatus}
    for status, count in (await session.execute(stmt)).all():
        out[FlowTriggerStatus(status).value] = int(count)
    return out
