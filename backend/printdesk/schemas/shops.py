from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from printdesk.core.enums import UploadMode


class ShopInstall(BaseModel):
    shop_domain: str = Field(min_length=1, max_length=255)
    access_token: str | None = Field(default=None, max_length=255)
    webhook_secret: str | None = Field(default=None, max_length=255)
    auto_approve: bool | None = None


class ShopOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_domain: str
    auto_approve: bool
    created_at: datetime


class ProductConfigIn(BaseModel):
    mode: UploadMode = UploadMode.DTF_ONLY
    enabled: bool = True


class ProductConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_id: UUID
    product_id: str
    mode: UploadMode
    enabled: bool
