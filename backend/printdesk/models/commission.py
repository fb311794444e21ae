from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from printdesk.core.enums import CommissionStatus
from printdesk.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from printdesk.models.sql_enums import commission_status_enum


class Commission(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint("shop_id", "order_id", name="uq_commission_shop_order"),
        Index("ix_commissions_shop_id_status", "shop_id", "status"),
        Index("ix_commissions_payment_ref", "payment_ref"),
    )

    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    order_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    order_total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    order_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    commission_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[CommissionStatus] = mapped_column(
        commission_status_enum,
        nullable=False,
        default=CommissionStatus.PENDING,
    )
    payment_ref: Mapped[str | None] = mapped_column(String(200), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
