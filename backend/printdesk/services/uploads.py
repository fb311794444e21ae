from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from printdesk.core.enums import FlowEventType, PreflightStatus, UploadProvenance, UploadStatus
from printdesk.core.errors import InvalidStateError, UploadNotFoundError
from printdesk.models.shop import Shop
from printdesk.models.upload import Upload, UploadItem
from printdesk.schemas.uploads import UploadCreate
from printdesk.services.audit import audit_log
from printdesk.services.flow import trigger_upload_decision
from printdesk.services.shops import get_shop_by_domain_or_raise


# No automatic writer may move an upload out of these.
PROTECTED_STATUSES: frozenset[UploadStatus] = frozenset(
    {
        UploadStatus.APPROVED,
        UploadStatus.REJECTED,
        UploadStatus.PRINTED,
        UploadStatus.SHIPPED,
        UploadStatus.ARCHIVED,
    }
)

MANUAL_TRANSITIONS: dict[UploadStatus, set[UploadStatus]] = {
    UploadStatus.NEEDS_REVIEW: {UploadStatus.APPROVED, UploadStatus.REJECTED},
    UploadStatus.PENDING_APPROVAL: {UploadStatus.APPROVED, UploadStatus.REJECTED},
    UploadStatus.BLOCKED: {UploadStatus.APPROVED, UploadStatus.REJECTED},
    UploadStatus.REJECTED: {UploadStatus.NEEDS_REVIEW},
    UploadStatus.APPROVED: {UploadStatus.PRINTED},
}

_DECISION_EVENTS = {
    UploadStatus.APPROVED: FlowEventType.UPLOAD_APPROVED,
    UploadStatus.REJECTED: FlowEventType.UPLOAD_REJECTED,
}


def aggregate_preflight_status(statuses: Iterable[PreflightStatus]) -> PreflightStatus:
    statuses = list(statuses)
    if not statuses:
        return PreflightStatus.PENDING
    if PreflightStatus.ERROR in statuses:
        return PreflightStatus.ERROR
    if PreflightStatus.WARNING in statuses:
        return PreflightStatus.WARNING
    if all(s == PreflightStatus.OK for s in statuses):
        return PreflightStatus.OK
    return PreflightStatus.PENDING


def preflight_counts(statuses: Iterable[PreflightStatus]) -> dict[str, int]:
    counts = {s.value: 0 for s in PreflightStatus}
    for s in statuses:
        counts[PreflightStatus(s).value] += 1
    return counts


async def create_draft_upload(session: AsyncSession, *, actor: str, data: UploadCreate) -> Upload:
    shop = await get_shop_by_domain_or_raise(session, data.shop_domain)

    upload = Upload(
        shop_id=shop.id,
        mode=data.mode,
        product_id=data.product_id,
        variant_id=data.variant_id,
        customer_id=data.customer_id,
        customer_email=data.customer_email,
        status=UploadStatus.DRAFT,
        provenance=UploadProvenance.REAL,
        items=[
            UploadItem(
                location=item.location,
                storage_key=item.storage_key,
                original_name=item.original_name,
                mime_type=item.mime_type,
                file_size=item.file_size,
                transform=item.transform,
                preflight_status=PreflightStatus.PENDING,
            )
            for item in data.items
        ],
    )
    session.add(upload)
    await session.flush()

    await audit_log(
        session,
        shop_id=shop.id,
        actor=actor,
        entity_type="upload",
        entity_id=upload.id,
        action="create",
        after={"mode": upload.mode, "status": upload.status, "items_count": len(data.items)},
    )
    return await get_upload_or_raise(session, upload.id)


async def get_upload(
    session: AsyncSession,
    upload_id: uuid.UUID,
    *,
    shop_id: uuid.UUID | None = None,
    for_update: bool = False,
) -> Upload | None:
    stmt = select(Upload).where(Upload.id == upload_id).options(selectinload(Upload.items))
    if shop_id is not None:
        stmt = stmt.where(Upload.shop_id == shop_id)
    if for_update:
        # Item statuses must be re-read once the row lock is held.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_upload_or_raise(
    session: AsyncSession,
    upload_id: uuid.UUID,
    *,
    shop_id: uuid.UUID | None = None,
    for_update: bool = False,
) -> Upload:
    upload = await get_upload(session, upload_id, shop_id=shop_id, for_update=for_update)
    if upload is None:
        raise UploadNotFoundError("Upload not found")
    return upload


async def list_uploads(
    session: AsyncSession,
    *,
    shop_id: uuid.UUID | None = None,
    status: UploadStatus | None = None,
    order_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Upload]:
    stmt = select(Upload).options(selectinload(Upload.items))
    if shop_id is not None:
        stmt = stmt.where(Upload.shop_id == shop_id)
    if status is not None:
        stmt = stmt.where(Upload.status == status)
    if order_id is not None:
        stmt = stmt.where(Upload.order_id == order_id)
    stmt = stmt.order_by(Upload.created_at.desc(), Upload.id.desc()).limit(limit).offset(offset)
    return list((await session.execute(stmt)).scalars().all())


async def transition_upload(
    session: AsyncSession,
    *,
    actor: str,
    upload_id: uuid.UUID,
    new_status: UploadStatus,
    shop_id: uuid.UUID | None = None,
    reason: str | None = None,
) -> Upload:
    """
    Merchant review decision on an upload.

    Approve and reject also queue the matching outbound event in the same transaction.
    """
    upload = await get_upload_or_raise(session, upload_id, shop_id=shop_id, for_update=True)

    allowed = MANUAL_TRANSITIONS.get(upload.status, set())
    if new_status not in allowed:
        raise InvalidStateError(f"Invalid status transition: {upload.status.value} -> {new_status.value}")

    before = {"status": upload.status}
    upload.status = new_status
    await session.flush()

    after: dict = {"status": new_status}
    if reason:
        after["reason"] = reason
    await audit_log(
        session,
        shop_id=upload.shop_id,
        actor=actor,
        entity_type="upload",
        entity_id=upload.id,
        action="status_change",
        before=before,
        after=after,
    )

    event_type = _DECISION_EVENTS.get(new_status)
    if event_type is not None:
        shop = await session.get(Shop, upload.shop_id)
        await trigger_upload_decision(session, shop=shop, upload=upload, items=upload.items, event_type=event_type)

    return upload
