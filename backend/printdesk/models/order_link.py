from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printdesk.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from printdesk.models.upload import Upload


class OrderLink(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "order_links"
    __table_args__ = (
        UniqueConstraint("shop_id", "order_id", "upload_id", name="uq_order_link_shop_order_upload"),
        Index("ix_order_links_shop_id_order_id", "shop_id", "order_id"),
    )

    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    upload_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("uploads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    upload: Mapped[Upload] = relationship()


class OrderCancellation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Remembers cancelled orders so a late order-created delivery is archived on arrival."""

    __tablename__ = "order_cancellations"
    __table_args__ = (
        UniqueConstraint("shop_id", "order_id", name="uq_order_cancellation_shop_order"),
    )

    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
    )
    order_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
