from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from printdesk.core.enums import FlowEventType, FlowTriggerStatus


class FlowTriggerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_id: UUID
    event_type: FlowEventType
    resource_id: str
    payload: dict[str, Any]
    status: FlowTriggerStatus
    attempts: int
    sent_at: datetime | None
    error: str | None
    created_at: datetime


class FlowSendOut(BaseModel):
    delivered: bool
    trigger: FlowTriggerOut


class FlowDispatchOut(BaseModel):
    sent: int
    failed: int


class FlowCleanupOut(BaseModel):
    removed: int


class FlowStatsOut(BaseModel):
    pending: int = 0
    sent: int = 0
    failed: int = 0


class ExportCompleted(BaseModel):
    shop_domain: str = Field(min_length=1, max_length=255)
    upload_ids: list[UUID] = Field(default_factory=list)
    status: str = Field(default="completed", min_length=1, max_length=40)
    download_url: str | None = Field(default=None, max_length=2000)
