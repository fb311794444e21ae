from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from printdesk.core.enums import UploadMode
from printdesk.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from printdesk.models.sql_enums import upload_mode_enum

if TYPE_CHECKING:
    from printdesk.models.upload import Upload


class Shop(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "shops"

    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    access_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    auto_approve: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    product_configs: Mapped[list["ProductConfig"]] = relationship(
        back_populates="shop",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    uploads: Mapped[list["Upload"]] = relationship(
        back_populates="shop",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ProductConfig(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Marks a product as accepting customer uploads."""

    __tablename__ = "product_configs"
    __table_args__ = (
        UniqueConstraint("shop_id", "product_id", name="uq_product_config_shop_product"),
    )

    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mode: Mapped[UploadMode] = mapped_column(upload_mode_enum, nullable=False, default=UploadMode.DTF_ONLY)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    shop: Mapped[Shop] = relationship(back_populates="product_configs")
