from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from printdesk.core.enums import FlowEventType, PreflightJobStatus, PreflightStatus, UploadMode, UploadStatus
from printdesk.core.errors import InvalidStateError, TenantNotFoundError, UploadNotFoundError
from printdesk.models.audit_log import AuditLog
from printdesk.models.flow_trigger import FlowTrigger
from printdesk.models.preflight_job import PreflightJob
from printdesk.models.shop import Shop
from printdesk.schemas.uploads import UploadComplete, UploadCreate, UploadItemComplete, UploadItemCreate
from printdesk.services.preflight import complete_upload
from printdesk.services.shops import install_shop
from printdesk.services.uploads import create_draft_upload, get_upload_or_raise, list_uploads, transition_upload

from helpers import SHOP_DOMAIN, count_rows, make_upload, reload_upload


@pytest.mark.asyncio
async def test_draft_upload_starts_with_pending_items(db_session: AsyncSession, shop: Shop) -> None:
    upload = await make_upload(db_session, shop, locations=("front", "back"), complete=False)

    assert upload.status == UploadStatus.DRAFT
    assert upload.shop_id == shop.id
    assert {item.location for item in upload.items} == {"front", "back"}
    assert all(item.preflight_status == PreflightStatus.PENDING for item in upload.items)


@pytest.mark.asyncio
async def test_create_upload_for_unknown_shop_fails(db_session: AsyncSession) -> None:
    with pytest.raises(TenantNotFoundError):
        async with db_session.begin():
            await create_draft_upload(
                db_session,
                actor="test",
                data=UploadCreate(shop_domain="nope.example.com", mode=UploadMode.QUICK, items=[UploadItemCreate()]),
            )


@pytest.mark.asyncio
async def test_complete_queues_one_job_per_item_and_one_received_event(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload = await make_upload(db_session, shop, locations=("front", "back"))

    assert upload.status == UploadStatus.UPLOADED
    assert upload.metadata_json["autoApprove"] is False

    async with session_factory() as session:
        jobs = (await session.execute(select(PreflightJob).where(PreflightJob.upload_id == upload.id))).scalars().all()
        triggers = (await session.execute(select(FlowTrigger))).scalars().all()

    assert {job.item_id for job in jobs} == {item.id for item in upload.items}
    assert all(job.status == PreflightJobStatus.QUEUED for job in jobs)
    assert [t.event_type for t in triggers] == [FlowEventType.UPLOAD_RECEIVED]
    assert triggers[0].resource_id == str(upload.id)
    assert triggers[0].payload["shopDomain"] == SHOP_DOMAIN
    assert triggers[0].payload["itemCount"] == 2
    assert "customerId" not in triggers[0].payload

    assert await count_rows(session_factory, AuditLog, AuditLog.entity_id == str(upload.id), AuditLog.action == "complete") == 1


@pytest.mark.asyncio
async def test_completing_twice_is_rejected_without_side_effects(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload = await make_upload(db_session, shop)

    with pytest.raises(InvalidStateError, match="already completed"):
        async with db_session.begin():
            await complete_upload(db_session, actor="test", upload_id=upload.id, data=UploadComplete())

    assert await count_rows(session_factory, FlowTrigger) == 1
    assert await count_rows(session_factory, PreflightJob) == 1


@pytest.mark.asyncio
async def test_complete_requires_a_stored_file_for_every_item(db_session: AsyncSession, shop: Shop) -> None:
    async with db_session.begin():
        upload = await create_draft_upload(
            db_session,
            actor="test",
            data=UploadCreate(shop_domain=shop.shop_domain, mode=UploadMode.CLASSIC, items=[UploadItemCreate()]),
        )
    upload_id = upload.id
    item_id = upload.items[0].id

    with pytest.raises(InvalidStateError, match="storage key"):
        async with db_session.begin():
            await complete_upload(db_session, actor="test", upload_id=upload_id, data=UploadComplete())

    async with db_session.begin():
        completed = await complete_upload(
            db_session,
            actor="test",
            upload_id=upload_id,
            data=UploadComplete(
                items=[UploadItemComplete(item_id=item_id, location="sleeve", storage_key="uploads/late.png")]
            ),
        )

    assert completed.status == UploadStatus.UPLOADED
    refreshed = await reload_upload(db_session, upload_id)
    assert refreshed.items[0].location == "sleeve"
    assert refreshed.items[0].storage_key == "uploads/late.png"


@pytest.mark.asyncio
async def test_complete_without_items_is_rejected(db_session: AsyncSession, shop: Shop) -> None:
    async with db_session.begin():
        upload = await create_draft_upload(
            db_session,
            actor="test",
            data=UploadCreate(shop_domain=shop.shop_domain, mode=UploadMode.BUILDER),
        )

    with pytest.raises(InvalidStateError, match="no items"):
        async with db_session.begin():
            await complete_upload(db_session, actor="test", upload_id=upload.id, data=UploadComplete())


@pytest.mark.asyncio
async def test_complete_rejects_foreign_item_ids(db_session: AsyncSession, shop: Shop) -> None:
    upload = await make_upload(db_session, shop, complete=False)

    with pytest.raises(UploadNotFoundError):
        async with db_session.begin():
            await complete_upload(
                db_session,
                actor="test",
                upload_id=upload.id,
                data=UploadComplete(items=[UploadItemComplete(item_id=uuid.uuid4(), storage_key="x.png")]),
            )


@pytest.mark.asyncio
async def test_complete_is_scoped_to_the_calling_shop(db_session: AsyncSession, shop: Shop, other_shop: Shop) -> None:
    upload = await make_upload(db_session, shop, complete=False)

    with pytest.raises(UploadNotFoundError):
        async with db_session.begin():
            await complete_upload(
                db_session,
                actor="test",
                upload_id=upload.id,
                data=UploadComplete(),
                shop_id=other_shop.id,
            )


@pytest.mark.asyncio
async def test_auto_approve_is_captured_at_completion(db_session: AsyncSession, shop: Shop) -> None:
    async with db_session.begin():
        await install_shop(db_session, actor="test", shop_domain=SHOP_DOMAIN, auto_approve=True)

    upload = await make_upload(db_session, shop)
    assert upload.metadata_json["autoApprove"] is True
    assert upload.auto_approve is True

    # Later changes to the shop setting do not reach uploads already submitted.
    async with db_session.begin():
        await install_shop(db_session, actor="test", shop_domain=SHOP_DOMAIN, auto_approve=False)
    assert (await reload_upload(db_session, upload.id)).auto_approve is True


@pytest.mark.asyncio
async def test_manual_review_decisions(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload_id = (await make_upload(db_session, shop)).id

    with pytest.raises(InvalidStateError, match="uploaded -> approved"):
        async with db_session.begin():
            await transition_upload(db_session, actor="merchant", upload_id=upload_id, new_status=UploadStatus.APPROVED)

    async with db_session.begin():
        row = await get_upload_or_raise(db_session, upload_id, for_update=True)
        row.status = UploadStatus.NEEDS_REVIEW

    async with db_session.begin():
        rejected = await transition_upload(
            db_session,
            actor="merchant",
            upload_id=upload_id,
            new_status=UploadStatus.REJECTED,
            reason="blurry",
        )
    assert rejected.status == UploadStatus.REJECTED

    async with db_session.begin():
        await transition_upload(db_session, actor="merchant", upload_id=upload_id, new_status=UploadStatus.NEEDS_REVIEW)
    async with db_session.begin():
        approved = await transition_upload(
            db_session, actor="merchant", upload_id=upload_id, new_status=UploadStatus.APPROVED
        )
    assert approved.status == UploadStatus.APPROVED

    async with session_factory() as session:
        events = (await session.execute(select(FlowTrigger.event_type))).scalars().all()
        reasons = (
            await session.execute(
                select(AuditLog.after).where(AuditLog.entity_id == str(upload_id), AuditLog.action == "status_change")
            )
        ).scalars().all()

    assert sorted(events) == sorted(
        [FlowEventType.UPLOAD_RECEIVED, FlowEventType.UPLOAD_REJECTED, FlowEventType.UPLOAD_APPROVED]
    )
    assert {"status": "rejected", "reason": "blurry"} in reasons


@pytest.mark.asyncio
async def test_list_uploads_filters(db_session: AsyncSession, shop: Shop, other_shop: Shop) -> None:
    mine = await make_upload(db_session, shop)
    await make_upload(db_session, shop, complete=False)
    await make_upload(db_session, other_shop)

    async with db_session.begin():
        uploaded = await list_uploads(db_session, shop_id=shop.id, status=UploadStatus.UPLOADED)
        everything = await list_uploads(db_session, shop_id=shop.id)

    assert [u.id for u in uploaded] == [mine.id]
    assert len(everything) == 2
