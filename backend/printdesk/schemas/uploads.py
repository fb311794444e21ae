from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from printdesk.core.enums import PreflightStatus, UploadMode, UploadProvenance, UploadStatus


class UploadItemCreate(BaseModel):
    location: str = Field(default="front", min_length=1, max_length=40)
    storage_key: str | None = Field(default=None, max_length=500)
    original_name: str | None = Field(default=None, max_length=255)
    mime_type: str | None = Field(default=None, max_length=100)
    file_size: int | None = Field(default=None, ge=0)
    transform: dict[str, Any] | None = None


class UploadCreate(BaseModel):
    shop_domain: str = Field(min_length=1, max_length=255)
    mode: UploadMode
    product_id: str | None = Field(default=None, max_length=64)
    variant_id: str | None = Field(default=None, max_length=64)
    customer_id: str | None = Field(default=None, max_length=64)
    customer_email: str | None = Field(default=None, max_length=320)
    items: list[UploadItemCreate] = Field(default_factory=list)


class UploadItemComplete(BaseModel):
    item_id: UUID
    location: str | None = Field(default=None, min_length=1, max_length=40)
    storage_key: str | None = Field(default=None, max_length=500)
    transform: dict[str, Any] | None = None


class UploadComplete(BaseModel):
    shop_domain: str | None = Field(default=None, max_length=255)
    items: list[UploadItemComplete] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_item_ids(self) -> "UploadComplete":
        ids = [i.item_id for i in self.items]
        if len(set(ids)) != len(ids):
            raise ValueError("items must not contain duplicate item_id")
        return self


class UploadCompleteOut(BaseModel):
    upload_id: UUID
    status: str


class UploadStatusChange(BaseModel):
    status: UploadStatus
    reason: str | None = Field(default=None, max_length=1000)

    @field_validator("reason")
    @classmethod
    def blank_reason_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class UploadItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    location: str
    storage_key: str | None
    original_name: str | None
    mime_type: str | None
    file_size: int | None
    transform: dict[str, Any] | None
    preflight_status: PreflightStatus
    preflight_result: dict[str, Any] | None


class UploadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_id: UUID
    mode: UploadMode
    product_id: str | None
    variant_id: str | None
    customer_id: str | None
    customer_email: str | None
    order_id: str | None
    status: UploadStatus
    provenance: UploadProvenance
    preflight_summary: dict[str, Any] | None
    metadata_json: dict[str, Any] | None = Field(default=None, serialization_alias="metadata")
    created_at: datetime
    updated_at: datetime
    items: list[UploadItemOut]


class UploadStatusOut(BaseModel):
    """What the storefront polls while validation is running."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: UploadStatus
    preflight_summary: dict[str, Any] | None
    items: list[UploadItemOut]
