from __future__ import annotations

import uuid

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.db import get_session
from printdesk.core.errors import PreflightJobNotFoundError, UploadNotFoundError
from printdesk.core.security import require_basic_auth
from printdesk.schemas.preflight import (
    PreflightClaimRequest,
    PreflightJobOut,
    PreflightVerdict,
    PreflightVerdictOut,
)
from printdesk.services.preflight import (
    VerdictOutcome,
    claim_preflight_jobs,
    report_processing_failure,
    report_verdict,
)


router = APIRouter()


def _verdict_out(outcome: VerdictOutcome) -> PreflightVerdictOut:
    return PreflightVerdictOut(
        upload_id=outcome.upload.id,
        item_id=outcome.item.id,
        item_status=outcome.item.preflight_status,
        overall=outcome.overall,
        upload_status=outcome.upload.status.value,
    )


@router.post("/verdicts", response_model=PreflightVerdictOut)
async def report_verdict_endpoint(
    data: PreflightVerdict,
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> PreflightVerdictOut:
    try:
        async with session.begin():
            outcome = await report_verdict(session, actor=actor, data=data)
    except UploadNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return _verdict_out(outcome)


@router.post("/jobs/claim", response_model=list[PreflightJobOut])
async def claim_jobs_endpoint(
    data: PreflightClaimRequest,
    session: AsyncSession = Depends(get_session),
) -> list[PreflightJobOut]:
    async with session.begin():
        jobs = await claim_preflight_jobs(session, worker_id=data.worker_id, limit=data.limit)
    return [PreflightJobOut.model_validate(job) for job in jobs]


@router.post("/jobs/{job_id}/failure", response_model=PreflightVerdictOut)
async def report_job_failure_endpoint(
    job_id: uuid.UUID,
    message: str = Body(default="Processing failed", embed=True, max_length=1000),
    session: AsyncSession = Depends(get_session),
    actor: str = Depends(require_basic_auth),
) -> PreflightVerdictOut:
    try:
        async with session.begin():
            outcome = await report_processing_failure(session, actor=actor, job_id=job_id, message=message)
    except (PreflightJobNotFoundError, UploadNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return _verdict_out(outcome)
