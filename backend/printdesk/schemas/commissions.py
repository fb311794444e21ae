from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from printdesk.core.enums import CommissionStatus


class CommissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shop_id: UUID
    order_id: str
    order_number: str | None
    order_total_cents: int
    order_currency: str
    commission_amount_cents: int
    status: CommissionStatus
    payment_ref: str | None
    paid_at: datetime | None
    created_at: datetime


class CommissionMarkPaid(BaseModel):
    order_ids: list[str] = Field(min_length=1)
    payment_ref: str = Field(min_length=1, max_length=200)

    @field_validator("order_ids")
    @classmethod
    def unique_order_ids(cls, value: list[str]) -> list[str]:
        cleaned = [v.strip() for v in value if v and v.strip()]
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("order_ids must be unique")
        return cleaned


class CommissionRevert(BaseModel):
    payment_ref: str = Field(min_length=1, max_length=200)


class CommissionCountOut(BaseModel):
    count: int


class CommissionBalanceOut(BaseModel):
    shop_id: UUID
    pending_cents: int
    threshold_cents: int
    due: bool


class CommissionDueOut(BaseModel):
    shop_id: UUID
    pending_cents: int
