"""initial upload lifecycle schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0a1b2c3d4e5f"
down_revision = None
branch_labels = None
depends_on = None


ENUM_TYPES: dict[str, tuple[str, ...]] = {
    "upload_mode": ("dtf_only", "tshirt_included", "quick", "classic", "builder"),
    "upload_status": (
        "draft",
        "uploaded",
        "processing",
        "needs_review",
        "pending_approval",
        "blocked",
        "approved",
        "rejected",
        "printed",
        "shipped",
        "archived",
    ),
    "upload_provenance": ("real", "synthesized"),
    "preflight_status": ("pending", "ok", "warning", "error"),
    "preflight_job_status": ("queued", "claimed", "done"),
    "commission_status": ("pending", "paid", "voided"),
    "flow_trigger_status": ("pending", "sent", "failed"),
    "flow_event_type": (
        "upload_received",
        "upload_approved",
        "upload_rejected",
        "preflight_warning",
        "preflight_error",
        "export_completed",
    ),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUM_TYPES[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    for name, values in ENUM_TYPES.items():
        labels = ", ".join(f"'{v}'" for v in values)
        op.execute(
            "DO $$ BEGIN "
            f"CREATE TYPE {name} AS ENUM ({labels}); "
            "EXCEPTION WHEN duplicate_object THEN null; "
            "END $$;"
        )

    op.create_table(
        "shops",
        sa.Column("shop_domain", sa.String(length=255), nullable=False),
        sa.Column("access_token", sa.String(length=255), nullable=True),
        sa.Column("webhook_secret", sa.String(length=255), nullable=True),
        sa.Column("auto_approve", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_domain"),
    )

    op.create_table(
        "product_configs",
        sa.Column("shop_id", sa.UUID(), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=False),
        sa.Column("mode", _enum("upload_mode"), server_default="dtf_only", nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "product_id", name="uq_product_config_shop_product"),
    )
    op.create_index("ix_product_configs_shop_id", "product_configs", ["shop_id"])

    op.create_table(
        "uploads",
        sa.Column("shop_id", sa.UUID(), nullable=False),
        sa.Column("mode", _enum("upload_mode"), nullable=False),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("variant_id", sa.String(length=64), nullable=True),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("order_id", sa.String(length=64), nullable=True),
        sa.Column("status", _enum("upload_status"), server_default="draft", nullable=False),
        sa.Column("provenance", _enum("upload_provenance"), server_default="real", nullable=False),
        sa.Column("ghost_key", sa.String(length=140), nullable=True),
        sa.Column("preflight_summary", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "ghost_key", name="uq_upload_shop_ghost_key"),
    )
    op.create_index("ix_uploads_shop_id_status", "uploads", ["shop_id", "status"])
    op.create_index("ix_uploads_shop_id_order_id", "uploads", ["shop_id", "order_id"])

    op.create_table(
        "upload_items",
        sa.Column("upload_id", sa.UUID(), nullable=False),
        sa.Column("location", sa.String(length=40), server_default="front", nullable=False),
        sa.Column("storage_key", sa.String(length=500), nullable=True),
        sa.Column("original_name", sa.String(length=255), nullable=True),
        sa.Column("mime_type", sa.String(length=100), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("transform", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("preflight_status", _enum("preflight_status"), server_default="pending", nullable=False),
        sa.Column("preflight_result", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["upload_id"], ["uploads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_upload_items_upload_id", "upload_items", ["upload_id"])

    op.create_table(
        "order_links",
        sa.Column("shop_id", sa.UUID(), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("upload_id", sa.UUID(), nullable=False),
        sa.Column("line_item_id", sa.String(length=64), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["upload_id"], ["uploads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "order_id", "upload_id", name="uq_order_link_shop_order_upload"),
    )
    op.create_index("ix_order_links_shop_id_order_id", "order_links", ["shop_id", "order_id"])
    op.create_index("ix_order_links_upload_id", "order_links", ["upload_id"])

    op.create_table(
        "order_cancellations",
        sa.Column("shop_id", sa.UUID(), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "order_id", name="uq_order_cancellation_shop_order"),
    )

    op.create_table(
        "commissions",
        sa.Column("shop_id", sa.UUID(), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=True),
        sa.Column("order_total_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("order_currency", sa.String(length=3), server_default="USD", nullable=False),
        sa.Column("commission_amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", _enum("commission_status"), server_default="pending", nullable=False),
        sa.Column("payment_ref", sa.String(length=200), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop_id", "order_id", name="uq_commission_shop_order"),
    )
    op.create_index("ix_commissions_shop_id_status", "commissions", ["shop_id", "status"])
    op.create_index("ix_commissions_payment_ref", "commissions", ["payment_ref"])

    op.create_table(
        "flow_triggers",
        sa.Column("shop_id", sa.UUID(), nullable=False),
        sa.Column("event_type", _enum("flow_event_type"), nullable=False),
        sa.Column("resource_id", sa.String(length=64), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", _enum("flow_trigger_status"), server_default="pending", nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_flow_triggers_shop_id", "flow_triggers", ["shop_id"])
    op.create_index("ix_flow_triggers_status_created_at", "flow_triggers", ["status", "created_at"])

    op.create_table(
        "preflight_jobs",
        sa.Column("shop_id", sa.UUID(), nullable=False),
        sa.Column("upload_id", sa.UUID(), nullable=False),
        sa.Column("item_id", sa.UUID(), nullable=False),
        sa.Column("storage_key", sa.String(length=500), nullable=False),
        sa.Column("status", _enum("preflight_job_status"), server_default="queued", nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("claimed_by", sa.String(length=200), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("id", sa.UUID(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["upload_id"], ["uploads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["item_id"], ["upload_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_preflight_jobs_upload_id", "preflight_jobs", ["upload_id"])
    op.create_index("ix_preflight_jobs_item_id", "preflight_jobs", ["item_id"])
    op.create_index("ix_preflight_jobs_status_created_at", "preflight_jobs", ["status", "created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("shop_id", sa.UUID(), nullable=True),
        sa.Column("actor", sa.String(length=200), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_shop_id_created_at", "audit_logs", ["shop_id", "created_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])

    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_by", sa.String(length=200), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    op.drop_table("job_locks")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_shop_id_created_at", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("preflight_jobs")
    op.drop_table("flow_triggers")
    op.drop_table("commissions")
    op.drop_table("order_cancellations")
    op.drop_table("order_links")
    op.drop_table("upload_items")
    op.drop_table("uploads")
    op.drop_table("product_configs")
    op.drop_table("shops")

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
