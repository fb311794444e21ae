from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printdesk.core.enums import PreflightStatus, UploadMode, UploadProvenance, UploadStatus
from printdesk.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from printdesk.models.sql_enums import (
    preflight_status_enum,
    upload_mode_enum,
    upload_provenance_enum,
    upload_status_enum,
)

if TYPE_CHECKING:
    from printdesk.models.shop import Shop


class Upload(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "uploads"
    __table_args__ = (
        UniqueConstraint("shop_id", "ghost_key", name="uq_upload_shop_ghost_key"),
        Index("ix_uploads_shop_id_status", "shop_id", "status"),
        Index("ix_uploads_shop_id_order_id", "shop_id", "order_id"),
    )

    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
    )

    mode: Mapped[UploadMode] = mapped_column(upload_mode_enum, nullable=False)
    product_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    variant_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[UploadStatus] = mapped_column(upload_status_enum, nullable=False, default=UploadStatus.DRAFT)
    provenance: Mapped[UploadProvenance] = mapped_column(
        upload_provenance_enum,
        nullable=False,
        default=UploadProvenance.REAL,
    )
    # "{order_id}:{line_item_id}" for synthesized uploads ("{order_id}:#{position}" when the line has no id).
    ghost_key: Mapped[str | None] = mapped_column(String(140), nullable=True)

    preflight_summary: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    shop: Mapped["Shop"] = relationship(back_populates="uploads")
    items: Mapped[list["UploadItem"]] = relationship(
        back_populates="upload",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="UploadItem.created_at.asc()",
    )

    @property
    def auto_approve(self) -> bool:
        meta = self.metadata_json if isinstance(self.metadata_json, dict) else {}
        return bool(meta.get("autoApprove", False))


class UploadItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "upload_items"

    upload_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("uploads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    location: Mapped[str] = mapped_column(String(40), nullable=False, default="front")
    storage_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    original_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    transform: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    preflight_status: Mapped[PreflightStatus] = mapped_column(
        preflight_status_enum,
        nullable=False,
        default=PreflightStatus.PENDING,
    )
    preflight_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    upload: Mapped[Upload] = relationship(back_populates="items")
