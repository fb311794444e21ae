from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from printdesk.core.enums import PreflightJobStatus, PreflightStatus


class PreflightCheck(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    status: PreflightStatus
    message: str | None = Field(default=None, max_length=1000)


class PreflightResultIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    overall: PreflightStatus | None = None
    checks: list[PreflightCheck] = Field(default_factory=list)


class PreflightVerdict(BaseModel):
    """Verdict callback posted by a validation worker."""

    model_config = ConfigDict(populate_by_name=True)

    upload_id: UUID = Field(alias="uploadId")
    shop_id: UUID = Field(alias="shopId")
    item_id: UUID = Field(alias="itemId")
    status: PreflightStatus
    result: PreflightResultIn = Field(default_factory=PreflightResultIn)

    @field_validator("status")
    @classmethod
    def resolved_status(cls, value: PreflightStatus) -> PreflightStatus:
        if value == PreflightStatus.PENDING:
            raise ValueError("status must be ok, warning or error")
        return value


class PreflightVerdictOut(BaseModel):
    upload_id: UUID
    item_id: UUID
    item_status: PreflightStatus
    overall: PreflightStatus
    upload_status: str


class PreflightClaimRequest(BaseModel):
    worker_id: str = Field(min_length=1, max_length=200)
    limit: int | None = Field(default=None, ge=1, le=100)


class PreflightJobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_id: UUID
    upload_id: UUID
    item_id: UUID
    storage_key: str
    status: PreflightJobStatus
    attempts: int
    claimed_by: str | None
    claimed_at: datetime | None
    completed_at: datetime | None


def result_to_json(result: PreflightResultIn) -> dict[str, Any]:
    return result.model_dump(mode="json", exclude_none=True)
