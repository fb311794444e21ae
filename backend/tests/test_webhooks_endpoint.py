from __future__ import annotations

import json
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from printdesk.api import webhooks as webhooks_api
from printdesk.api.webhooks import process_webhook
from printdesk.core.security import compute_webhook_signature
from printdesk.models.audit_log import AuditLog
from printdesk.models.commission import Commission
from printdesk.models.order_link import OrderLink
from printdesk.models.shop import Shop
from printdesk.services.shops import install_shop

from helpers import SHOP_DOMAIN, TEST_WEBHOOK_SECRET, count_rows, line_item, make_upload, order_payload, signed_body


ORDER_ID = "7001"


async def _post(
    session: AsyncSession,
    raw_body: bytes,
    signature: str | None,
    *,
    topic: str = "orders-create",
    shop_domain: str | None = SHOP_DOMAIN,
) -> tuple[int, dict[str, Any]]:
    response = await process_webhook(
        session,
        topic=topic,
        raw_body=raw_body,
        signature=signature,
        shop_domain=shop_domain,
    )
    return response.status_code, json.loads(response.body)


@pytest.mark.asyncio
async def test_signed_order_is_processed(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload = await make_upload(db_session, shop)
    raw, signature = signed_body(order_payload(ORDER_ID, [line_item("1", upload_ref=str(upload.id))]))

    status, body = await _post(db_session, raw, signature)

    assert status == 200
    assert body == {"ok": True, "linked": 1, "ghosts": 0, "rejected": 0}
    assert await count_rows(session_factory, OrderLink) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("signature", [None, "", "bm9wZQ=="])
async def test_unverified_delivery_changes_nothing(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
    signature: str | None,
) -> None:
    upload = await make_upload(db_session, shop)
    raw, _ = signed_body(order_payload(ORDER_ID, [line_item("1", upload_ref=str(upload.id))]))
    audit_before = await count_rows(session_factory, AuditLog)

    status, body = await _post(db_session, raw, signature)

    assert status == 401
    assert body == {"error": "Unauthorized"}
    assert await count_rows(session_factory, OrderLink) == 0
    assert await count_rows(session_factory, Commission) == 0
    assert await count_rows(session_factory, AuditLog) == audit_before


@pytest.mark.asyncio
async def test_body_altered_after_signing_is_rejected(db_session: AsyncSession, shop: Shop) -> None:
    raw, signature = signed_body(order_payload(ORDER_ID, []))
    tampered = raw.replace(b"29.99", b"0.01")

    status, _ = await _post(db_session, tampered, signature)

    assert status == 401


@pytest.mark.asyncio
async def test_shop_specific_secret_overrides_app_secret(db_session: AsyncSession, shop: Shop) -> None:
    async with db_session.begin():
        await install_shop(db_session, actor="test", shop_domain=SHOP_DOMAIN, webhook_secret="per-shop-secret")
    payload = order_payload(ORDER_ID, [])

    raw, app_signature = signed_body(payload)
    assert (await _post(db_session, raw, app_signature))[0] == 401

    raw, shop_signature = signed_body(payload, secret="per-shop-secret")
    assert (await _post(db_session, raw, shop_signature))[0] == 200


@pytest.mark.asyncio
async def test_signed_but_malformed_body_is_a_bad_request(db_session: AsyncSession, shop: Shop) -> None:
    for raw in (b"{not json", b"[1, 2, 3]"):
        status, body = await _post(db_session, raw, compute_webhook_signature(raw, TEST_WEBHOOK_SECRET))
        assert status == 400
        assert "error" in body

    raw, signature = signed_body({"line_items": []})
    assert (await _post(db_session, raw, signature))[0] == 400


@pytest.mark.asyncio
async def test_unknown_shop_is_acknowledged_and_ignored(db_session: AsyncSession) -> None:
    raw, signature = signed_body(order_payload(ORDER_ID, []))

    status, body = await _post(db_session, raw, signature, shop_domain="unknown.example.com")

    assert status == 200
    assert body == {"ok": True, "ignored": "unknown_shop"}


@pytest.mark.asyncio
async def test_unknown_topic_is_not_found(db_session: AsyncSession, shop: Shop) -> None:
    raw, signature = signed_body({"id": 1})

    status, _ = await _post(db_session, raw, signature, topic="carts-update")

    assert status == 404


@pytest.mark.asyncio
async def test_handler_failure_rolls_back_and_reports_server_error(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    upload = await make_upload(db_session, shop)
    real_handler = webhooks_api.WEBHOOK_HANDLERS["orders-create"]

    async def _fails_after_writing(session: AsyncSession, shop_domain: str, payload: dict[str, Any]) -> dict[str, Any]:
        await real_handler(session, shop_domain, payload)
        raise RuntimeError("downstream exploded")

    monkeypatch.setitem(webhooks_api.WEBHOOK_HANDLERS, "orders-create", _fails_after_writing)
    raw, signature = signed_body(order_payload(ORDER_ID, [line_item("1", upload_ref=str(upload.id))]))

    status, body = await _post(db_session, raw, signature)

    assert status == 500
    assert body == {"error": "Processing failed"}
    assert await count_rows(session_factory, OrderLink) == 0
    assert await count_rows(session_factory, Commission) == 0


@pytest.mark.asyncio
async def test_uninstall_webhook(db_session: AsyncSession, session_factory: async_sessionmaker[AsyncSession], shop: Shop) -> None:
    raw, signature = signed_body({"id": 1, "domain": SHOP_DOMAIN})

    status, body = await _post(db_session, raw, signature, topic="app-uninstalled")

    assert (status, body) == (200, {"ok": True, "removed": True})
    assert await count_rows(session_factory, Shop) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("shop_domain", [None, "", "   "])
async def test_delivery_without_shop_domain_is_unauthorized(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
    shop_domain: str | None,
) -> None:
    upload = await make_upload(db_session, shop)
    raw, signature = signed_body(order_payload(ORDER_ID, [line_item("1", upload_ref=str(upload.id))]))

    status, body = await _post(db_session, raw, signature, shop_domain=shop_domain)

    assert (status, body) == (401, {"error": "Unauthorized"})
    assert await count_rows(session_factory, OrderLink) == 0
