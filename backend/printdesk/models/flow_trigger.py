from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printdesk.core.enums import FlowEventType, FlowTriggerStatus
from printdesk.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from printdesk.models.shop import Shop
from printdesk.models.sql_enums import flow_event_type_enum, flow_trigger_status_enum


class FlowTrigger(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "flow_triggers"
    __table_args__ = (
        Index("ix_flow_triggers_status_created_at", "status", "created_at"),
    )

    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[FlowEventType] = mapped_column(flow_event_type_enum, nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False)

    status: Mapped[FlowTriggerStatus] = mapped_column(
        flow_trigger_status_enum,
        nullable=False,
        default=FlowTriggerStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    shop: Mapped[Shop] = relationship()
