from __future__ import annotations

import uuid
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from printdesk.core.enums import FlowEventType, PreflightJobStatus, PreflightStatus, UploadStatus
from printdesk.core.errors import PreflightJobNotFoundError, UploadNotFoundError
from printdesk.models.audit_log import AuditLog
from printdesk.models.flow_trigger import FlowTrigger
from printdesk.models.preflight_job import PreflightJob
from printdesk.models.shop import Shop
from printdesk.models.upload import Upload
from printdesk.schemas.preflight import PreflightCheck, PreflightResultIn, PreflightVerdict
from printdesk.services.preflight import (
    claim_preflight_jobs,
    release_stale_claims,
    report_processing_failure,
    report_verdict,
)
from printdesk.services.shops import install_shop
from printdesk.services.sql import utcnow

from helpers import SHOP_DOMAIN, count_rows, make_upload, reload_upload


async def _verdict(
    session: AsyncSession,
    upload: Upload,
    location: str,
    status: PreflightStatus,
    *checks: PreflightCheck,
):
    item = next(i for i in upload.items if i.location == location)
    async with session.begin():
        return await report_verdict(
            session,
            actor="worker",
            data=PreflightVerdict(
                upload_id=upload.id,
                shop_id=upload.shop_id,
                item_id=item.id,
                status=status,
                result=PreflightResultIn(overall=status, checks=list(checks)),
            ),
        )


async def _events(session_factory: async_sessionmaker[AsyncSession]) -> list[FlowEventType]:
    async with session_factory() as session:
        return list((await session.execute(select(FlowTrigger.event_type))).scalars().all())


@pytest.mark.asyncio
async def test_first_verdict_moves_upload_to_processing(db_session: AsyncSession, shop: Shop) -> None:
    upload = await make_upload(db_session, shop, locations=("front", "back"))

    outcome = await _verdict(db_session, upload, "front", PreflightStatus.OK)

    assert outcome.overall == PreflightStatus.PENDING
    refreshed = await reload_upload(db_session, upload.id)
    assert refreshed.status == UploadStatus.PROCESSING
    assert refreshed.preflight_summary["overall"] == "pending"
    assert refreshed.preflight_summary["counts"] == {"pending": 1, "ok": 1, "warning": 0, "error": 0}
    assert "completedAt" not in refreshed.preflight_summary


@pytest.mark.asyncio
async def test_all_ok_without_auto_approve_waits_for_approval(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload = await make_upload(db_session, shop, locations=("front", "back"))

    await _verdict(db_session, upload, "front", PreflightStatus.OK)
    outcome = await _verdict(db_session, upload, "back", PreflightStatus.OK)

    assert outcome.overall == PreflightStatus.OK
    refreshed = await reload_upload(db_session, upload.id)
    assert refreshed.status == UploadStatus.PENDING_APPROVAL
    assert refreshed.preflight_summary["itemCount"] == 2
    assert "completedAt" in refreshed.preflight_summary

    # ok verdicts never notify
    assert await _events(session_factory) == [FlowEventType.UPLOAD_RECEIVED]
    assert await count_rows(session_factory, PreflightJob, PreflightJob.status == PreflightJobStatus.DONE) == 2


@pytest.mark.asyncio
async def test_all_ok_with_auto_approve_is_approved(db_session: AsyncSession, shop: Shop) -> None:
    async with db_session.begin():
        await install_shop(db_session, actor="test", shop_domain=SHOP_DOMAIN, auto_approve=True)
    upload = await make_upload(db_session, shop)

    outcome = await _verdict(db_session, upload, "front", PreflightStatus.OK)

    assert outcome.upload.status == UploadStatus.APPROVED


@pytest.mark.asyncio
async def test_warning_needs_review_even_with_auto_approve(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    async with db_session.begin():
        await install_shop(db_session, actor="test", shop_domain=SHOP_DOMAIN, auto_approve=True)
    upload = await make_upload(db_session, shop)

    await _verdict(
        db_session,
        upload,
        "front",
        PreflightStatus.WARNING,
        PreflightCheck(name="dpi", status=PreflightStatus.WARNING, message="150 dpi at print size"),
    )

    refreshed = await reload_upload(db_session, upload.id)
    assert refreshed.status == UploadStatus.NEEDS_REVIEW
    assert refreshed.items[0].preflight_result["checks"][0]["name"] == "dpi"

    async with session_factory() as session:
        trigger = (
            await session.execute(select(FlowTrigger).where(FlowTrigger.event_type == FlowEventType.PREFLIGHT_WARNING))
        ).scalar_one()
    assert trigger.resource_id == str(refreshed.items[0].id)
    assert trigger.payload["uploadId"] == str(upload.id)
    assert trigger.payload["status"] == "warning"
    assert trigger.payload["checks"] == [{"name": "dpi", "status": "warning", "message": "150 dpi at print size"}]


@pytest.mark.asyncio
async def test_repeated_verdict_queues_one_notification(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload = await make_upload(db_session, shop)
    dpi = PreflightCheck(name="dpi", status=PreflightStatus.WARNING, message="150 dpi at print size")

    await _verdict(db_session, upload, "front", PreflightStatus.WARNING, dpi)
    await _verdict(db_session, upload, "front", PreflightStatus.WARNING, dpi)
    assert sorted(await _events(session_factory)) == sorted([FlowEventType.UPLOAD_RECEIVED, FlowEventType.PREFLIGHT_WARNING])

    await _verdict(
        db_session,
        upload,
        "front",
        PreflightStatus.ERROR,
        PreflightCheck(name="format", status=PreflightStatus.ERROR, message="unsupported file"),
    )
    events = await _events(session_factory)
    assert sorted(events) == sorted(
        [FlowEventType.UPLOAD_RECEIVED, FlowEventType.PREFLIGHT_WARNING, FlowEventType.PREFLIGHT_ERROR]
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("order", [("front", "back"), ("back", "front")])
async def test_error_blocks_regardless_of_verdict_order(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
    order: tuple[str, str],
) -> None:
    upload = await make_upload(db_session, shop, locations=("front", "back"))
    verdicts = {"front": PreflightStatus.ERROR, "back": PreflightStatus.OK}

    for location in order:
        await _verdict(db_session, upload, location, verdicts[location])

    refreshed = await reload_upload(db_session, upload.id)
    assert refreshed.status == UploadStatus.BLOCKED
    assert refreshed.preflight_summary["overall"] == "error"
    assert sorted(await _events(session_factory)) == sorted(
        [FlowEventType.UPLOAD_RECEIVED, FlowEventType.PREFLIGHT_ERROR]
    )


@pytest.mark.asyncio
async def test_late_verdict_does_not_move_a_protected_upload(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload = await make_upload(db_session, shop)
    async with db_session.begin():
        row = await db_session.get(Upload, upload.id)
        row.status = UploadStatus.ARCHIVED

    await _verdict(db_session, upload, "front", PreflightStatus.ERROR)

    refreshed = await reload_upload(db_session, upload.id)
    assert refreshed.status == UploadStatus.ARCHIVED
    assert refreshed.items[0].preflight_status == PreflightStatus.ERROR
    assert await count_rows(session_factory, AuditLog, AuditLog.action == "preflight_status_change") == 0


@pytest.mark.asyncio
async def test_status_change_is_audited(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    shop: Shop,
) -> None:
    upload = await make_upload(db_session, shop)

    await _verdict(db_session, upload, "front", PreflightStatus.OK)

    async with session_factory() as session:
        entry = (
            await session.execute(select(AuditLog).where(AuditLog.action == "preflight_status_change"))
        ).scalar_one()
    assert entry.actor == "worker"
    assert entry.before == {"status": "uploaded"}
    assert entry.after == {"status": "pending_approval", "overall": "ok"}


@pytest.mark.asyncio
async def test_verdict_for_unknown_item_or_other_shop(db_session: AsyncSession, shop: Shop, other_shop: Shop) -> None:
    upload = await make_upload(db_session, shop)
    shop_id, other_shop_id = shop.id, other_shop.id
    upload_id = upload.id
    item_id = upload.items[0].id

    with pytest.raises(UploadNotFoundError):
        async with db_session.begin():
            await report_verdict(
                db_session,
                actor="worker",
                data=PreflightVerdict(upload_id=upload_id, shop_id=shop_id, item_id=uuid.uuid4(), status="ok"),
            )

    with pytest.raises(UploadNotFoundError):
        async with db_session.begin():
            await report_verdict(
                db_session,
                actor="worker",
                data=PreflightVerdict(upload_id=upload_id, shop_id=other_shop_id, item_id=item_id, status="ok"),
            )


def test_verdict_payload_uses_worker_field_names() -> None:
    upload_id, shop_id, item_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    verdict = PreflightVerdict.model_validate(
        {
            "uploadId": str(upload_id),
            "shopId": str(shop_id),
            "itemId": str(item_id),
            "status": "warning",
            "result": {"checks": [{"name": "transparency", "status": "warning"}], "engine": "v2"},
        }
    )
    assert verdict.upload_id == upload_id
    assert verdict.result.checks[0].name == "transparency"
    assert verdict.result.model_extra == {"engine": "v2"}

    with pytest.raises(ValidationError):
        PreflightVerdict(upload_id=upload_id, shop_id=shop_id, item_id=item_id, status="pending")


@pytest.mark.asyncio
async def test_claim_jobs_and_reclaim_stale_claims(db_session: AsyncSession, shop: Shop) -> None:
    await make_upload(db_session, shop, locations=("front", "back"))

    async with db_session.begin():
        first = await claim_preflight_jobs(db_session, worker_id="worker-a", limit=5)
    assert len(first) == 2
    assert all(job.status == PreflightJobStatus.CLAIMED and job.attempts == 1 for job in first)

    async with db_session.begin():
        assert await claim_preflight_jobs(db_session, worker_id="worker-b") == []

    async with db_session.begin():
        await db_session.execute(
            update(PreflightJob)
            .where(PreflightJob.id == first[0].id)
            .values(claimed_at=utcnow() - timedelta(hours=2))
        )

    async with db_session.begin():
        again = await claim_preflight_jobs(db_session, worker_id="worker-b")
    assert [job.id for job in again] == [first[0].id]
    assert again[0].claimed_by == "worker-b"
    assert again[0].attempts == 2


@pytest.mark.asyncio
async def test_release_stale_claims_requeues_jobs(db_session: AsyncSession, shop: Shop) -> None:
    await make_upload(db_session, shop)
    async with db_session.begin():
        jobs = await claim_preflight_jobs(db_session, worker_id="worker-a")
        await db_session.execute(update(PreflightJob).values(claimed_at=utcnow() - timedelta(hours=2)))

    async with db_session.begin():
        released = await release_stale_claims(db_session)
    assert released == 1

    async with db_session.begin():
        job = (
            await db_session.execute(
                select(PreflightJob).where(PreflightJob.id == jobs[0].id).execution_options(populate_existing=True)
            )
        ).scalar_one()
    assert job.status == PreflightJobStatus.QUEUED
    assert job.claimed_by is None


@pytest.mark.asyncio
async def test_processing_failure_blocks_the_upload(db_session: AsyncSession, shop: Shop) -> None:
    upload = await make_upload(db_session, shop)
    async with db_session.begin():
        jobs = await claim_preflight_jobs(db_session, worker_id="worker-a")

    async with db_session.begin():
        outcome = await report_processing_failure(
            db_session, actor="worker-a", job_id=jobs[0].id, message="cannot decode image"
        )

    assert outcome.upload.status == UploadStatus.BLOCKED
    assert outcome.item.preflight_result["checks"] == [
        {"name": "processing", "status": "error", "message": "cannot decode image"}
    ]

    refreshed = await reload_upload(db_session, upload.id)
    assert refreshed.items[0].preflight_status == PreflightStatus.ERROR

    with pytest.raises(PreflightJobNotFoundError):
        async with db_session.begin():
            await report_processing_failure(db_session, actor="worker-a", job_id=uuid.uuid4(), message="x")
