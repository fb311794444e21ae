from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.config import get_settings
from printdesk.core.enums import PreflightJobStatus, PreflightStatus, UploadStatus
from printdesk.core.errors import InvalidStateError, PreflightJobNotFoundError, UploadNotFoundError
from printdesk.models.preflight_job import PreflightJob
from printdesk.models.shop import Shop
from printdesk.models.upload import Upload, UploadItem
from printdesk.schemas.preflight import PreflightCheck, PreflightResultIn, PreflightVerdict, result_to_json
from printdesk.schemas.uploads import UploadComplete
from printdesk.services.audit import audit_log
from printdesk.services.flow import trigger_preflight_result, trigger_upload_received
from printdesk.services.sql import utcnow
from printdesk.services.uploads import aggregate_preflight_status, get_upload_or_raise, preflight_counts


logger = logging.getLogger(__name__)

COMPLETION_STATUS = "processing"

# Verdicts only drive the status while validation is still the upload's current concern.
_RESOLVABLE_STATUSES = {UploadStatus.UPLOADED, UploadStatus.PROCESSING}


@dataclass(frozen=True)
class VerdictOutcome:
    upload: Upload
    item: UploadItem
    overall: PreflightStatus


def resolve_upload_status(overall: PreflightStatus, *, auto_approve: bool) -> UploadStatus:
    if overall == PreflightStatus.ERROR:
        return UploadStatus.BLOCKED
    if overall == PreflightStatus.WARNING:
        return UploadStatus.NEEDS_REVIEW
    if overall == PreflightStatus.OK:
        return UploadStatus.APPROVED if auto_approve else UploadStatus.PENDING_APPROVAL
    return UploadStatus.PROCESSING


async def complete_upload(
    session: AsyncSession,
    *,
    actor: str,
    upload_id: uuid.UUID,
    data: UploadComplete,
    shop_id: uuid.UUID | None = None,
) -> Upload:
    upload = await get_upload_or_raise(session, upload_id, shop_id=shop_id, for_update=True)
    if upload.status != UploadStatus.DRAFT:
        raise InvalidStateError("Upload already completed")

    items_by_id = {item.id: item for item in upload.items}
    for change in data.items:
        item = items_by_id.get(change.item_id)
        if item is None:
            raise UploadNotFoundError(f"Upload item not found: {change.item_id}")
        if change.location is not None:
            item.location = change.location
        if change.transform is not None:
            item.transform = change.transform
        if change.storage_key is not None:
            item.storage_key = change.storage_key

    if not upload.items:
        raise InvalidStateError("Upload has no items")
    missing = [str(item.id) for item in upload.items if not item.storage_key]
    if missing:
        raise InvalidStateError(f"Upload items without storage key: {', '.join(missing)}")

    shop = await session.get(Shop, upload.shop_id)
    meta = dict(upload.metadata_json or {})
    meta["autoApprove"] = bool(shop.auto_approve)
    upload.metadata_json = meta
    upload.status = UploadStatus.UPLOADED

    for item in upload.items:
        item.preflight_status = PreflightStatus.PENDING
        item.preflight_result = None
        session.add(
            PreflightJob(
                shop_id=upload.shop_id,
                upload_id=upload.id,
                item_id=item.id,
                storage_key=item.storage_key,
                status=PreflightJobStatus.QUEUED,
            )
        )
    await session.flush()

    await audit_log(
        session,
        shop_id=upload.shop_id,
        actor=actor,
        entity_type="upload",
        entity_id=upload.id,
        action="complete",
        before={"status": UploadStatus.DRAFT},
        after={"status": upload.status, "items_count": len(upload.items), "auto_approve": meta["autoApprove"]},
    )
    await trigger_upload_received(session, shop=shop, upload=upload, items=upload.items)

    logger.info("Upload %s completed; %s preflight job(s) queued", upload.id, len(upload.items))
    return upload


async def report_verdict(session: AsyncSession, *, actor: str, data: PreflightVerdict) -> VerdictOutcome:
    """
    Record a worker's verdict for one item and re-derive the upload's aggregate.

    The upload row is locked before the items are read, so verdicts for sibling items arriving concurrently
    serialize and the last writer always sees every item's latest status.
    """
    upload = await get_upload_or_raise(session, data.upload_id, shop_id=data.shop_id, for_update=True)
    item = next((i for i in upload.items if i.id == data.item_id), None)
    if item is None:
        raise UploadNotFoundError(f"Upload item not found: {data.item_id}")

    previous = (item.preflight_status, item.preflight_result)
    item.preflight_status = data.status
    item.preflight_result = result_to_json(data.result)
    # Redelivered verdicts (e.g. after a stale claim was re-queued) notify only once.
    changed = (item.preflight_status, item.preflight_result) != previous

    statuses = [i.preflight_status for i in upload.items]
    overall = aggregate_preflight_status(statuses)
    summary: dict = {
        "overall": overall.value,
        "itemCount": len(statuses),
        "counts": preflight_counts(statuses),
    }
    if overall != PreflightStatus.PENDING:
        summary["completedAt"] = utcnow().isoformat()
    upload.preflight_summary = summary

    before_status = upload.status
    if overall == PreflightStatus.PENDING:
        if upload.status == UploadStatus.UPLOADED:
            upload.status = UploadStatus.PROCESSING
    elif upload.status in _RESOLVABLE_STATUSES:
        upload.status = resolve_upload_status(overall, auto_approve=upload.auto_approve)

    await session.execute(
        update(PreflightJob)
        .where(PreflightJob.item_id == item.id, PreflightJob.status != PreflightJobStatus.DONE)
        .values(status=PreflightJobStatus.DONE, completed_at=utcnow())
    )
    await session.flush()

    if upload.status != before_status:
        await audit_log(
            session,
            shop_id=upload.shop_id,
            actor=actor,
            entity_type="upload",
            entity_id=upload.id,
            action="preflight_status_change",
            before={"status": before_status},
            after={"status": upload.status, "overall": overall},
        )

    if changed:
        shop = await session.get(Shop, upload.shop_id)
        await trigger_preflight_result(session, shop=shop, upload_id=upload.id, item=item)

    logger.info(
        "Preflight verdict %s for item %s; upload %s is %s (%s)",
        data.status.value,
        item.id,
        upload.id,
        upload.status.value,
        overall.value,
    )
    return VerdictOutcome(upload=upload, item=item, overall=overall)


async def report_processing_failure(
    session: AsyncSession,
    *,
    actor: str,
    job_id: uuid.UUID,
    message: str,
) -> VerdictOutcome:
    """A worker that could not process the file reports it as an error verdict on the item."""
    job = await session.get(PreflightJob, job_id)
    if job is None:
        raise PreflightJobNotFoundError(f"Preflight job not found: {job_id}")
    verdict = PreflightVerdict(
        upload_id=job.upload_id,
        shop_id=job.shop_id,
        item_id=job.item_id,
        status=PreflightStatus.ERROR,
        result=PreflightResultIn(
            overall=PreflightStatus.ERROR,
            checks=[PreflightCheck(name="processing", status=PreflightStatus.ERROR, message=message[:1000] or None)],
        ),
    )
    return await report_verdict(session, actor=actor, data=verdict)


def _claim_cutoff():
    return utcnow() - timedelta(seconds=max(1, get_settings().preflight_claim_ttl_seconds))


async def claim_preflight_jobs(
    session: AsyncSession,
    *,
    worker_id: str,
    limit: int | None = None,
) -> list[PreflightJob]:
    settings = get_settings()
    limit = max(1, limit or settings.preflight_claim_batch_size)
    cutoff = _claim_cutoff()

    jobs = (
        await session.execute(
            select(PreflightJob)
            .where(
                or_(
                    PreflightJob.status == PreflightJobStatus.QUEUED,
                    (PreflightJob.status == PreflightJobStatus.CLAIMED) & (PreflightJob.claimed_at < cutoff),
                )
            )
            .order_by(PreflightJob.created_at.asc(), PreflightJob.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
    ).scalars().all()

    now = utcnow()
    for job in jobs:
        job.status = PreflightJobStatus.CLAIMED
        job.claimed_by = worker_id
        job.claimed_at = now
        job.attempts += 1
    await session.flush()
    return list(jobs)


async def release_stale_claims(session: AsyncSession) -> int:
    res = await session.execute(
        update(PreflightJob)
        .where(PreflightJob.status == PreflightJobStatus.CLAIMED, PreflightJob.claimed_at < _claim_cutoff())
        .values(status=PreflightJobStatus.QUEUED, claimed_by=None, claimed_at=None)
    )
    released = int(res.rowcount or 0)
    if released:
        logger.warning("Released %s stale preflight claim(s)", released)
    return released
