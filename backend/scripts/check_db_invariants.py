from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

from alembic.autogenerate import compare_metadata
from alembic.migration import MigrationContext
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

# Script entrypoint: ensure `backend/` is importable.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import printdesk.models  # noqa: E402,F401  (register models with Base.metadata)
from printdesk.core.enums import (  # noqa: E402
    CommissionStatus,
    FlowEventType,
    FlowTriggerStatus,
    PreflightJobStatus,
    PreflightStatus,
    UploadMode,
    UploadProvenance,
    UploadStatus,
)
from printdesk.models.base import Base  # noqa: E402


EXPECTED_ENUMS: dict[str, list[str]] = {
    "upload_mode": [e.value for e in UploadMode],
    "upload_status": [e.value for e in UploadStatus],
    "upload_provenance": [e.value for e in UploadProvenance],
    "preflight_status": [e.value for e in PreflightStatus],
    "preflight_job_status": [e.value for e in PreflightJobStatus],
    "commission_status": [e.value for e in CommissionStatus],
    "flow_trigger_status": [e.value for e in FlowTriggerStatus],
    "flow_event_type": [e.value for e in FlowEventType],
}

# Idempotent webhook processing relies on these natural keys.
EXPECTED_UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    "shops": [("shop_domain",)],
    "product_configs": [("shop_id", "product_id")],
    "uploads": [("shop_id", "ghost_key")],
    "order_links": [("shop_id", "order_id", "upload_id")],
    "order_cancellations": [("shop_id", "order_id")],
    "commissions": [("shop_id", "order_id")],
}


async def _check_enums(conn: AsyncConnection) -> list[str]:
    problems: list[str] = []
    for type_name, expected in EXPECTED_ENUMS.items():
        rows = (
            await conn.execute(
                text(
                    """
                    SELECT e.enumlabel
                    FROM pg_enum e
                    JOIN pg_type t ON t.oid = e.enumtypid
                    JOIN pg_namespace n ON n.oid = t.typnamespace
                    WHERE n.nspname = 'public' AND t.typname = :type_name
                    ORDER BY e.enumsortorder
                    """
                ),
                {"type_name": type_name},
            )
        ).all()
        actual = [r[0] for r in rows]
        missing = [v for v in expected if v not in actual]
        if missing:
            problems.append(f"Enum type '{type_name}' is missing values: {missing} (actual: {actual})")
    return problems


async def _check_unique_keys(conn: AsyncConnection) -> list[str]:
    problems: list[str] = []
    for table, keys in EXPECTED_UNIQUE_KEYS.items():
        rows = (
            await conn.execute(
                text(
                    """
                    SELECT array_agg(a.attname ORDER BY k.ord)
                    FROM pg_constraint c
                    JOIN pg_class r ON r.oid = c.conrelid
                    JOIN pg_namespace n ON n.oid = r.relnamespace
                    CROSS JOIN LATERAL unnest(c.conkey) WITH ORDINALITY AS k(attnum, ord)
                    JOIN pg_attribute a ON a.attrelid = r.oid AND a.attnum = k.attnum
                    WHERE n.nspname = 'public' AND r.relname = :table AND c.contype = 'u'
                    GROUP BY c.oid
                    """
                ),
                {"table": table},
            )
        ).all()
        actual = {tuple(r[0]) for r in rows}
        for key in keys:
            if key not in actual:
                problems.append(f"Table '{table}' lacks unique constraint on {key}")
    return problems


def _include_object(obj, name: str | None, type_: str, reflected: bool, compare_to) -> bool:  # noqa: ANN001
    return not (type_ == "table" and name == "alembic_version")


async def _check_drift(conn: AsyncConnection) -> list[str]:
    def _run(sync_conn) -> list:
        ctx = MigrationContext.configure(
            sync_conn,
            opts={
                "target_metadata": Base.metadata,
                "compare_type": True,
                "compare_server_default": False,
                "include_object": _include_object,
            },
        )
        return compare_metadata(ctx, Base.metadata)

    diffs = await conn.run_sync(_run)
    return [f"Schema drift: {d}" for d in diffs]


async def _main() -> int:
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL is required.", file=sys.stderr)
        return 2

    engine = create_async_engine(url, pool_pre_ping=True)
    try:
        async with engine.connect() as conn:
            problems = await _check_enums(conn)
            problems += await _check_unique_keys(conn)
            if "--skip-drift" not in sys.argv[1:]:
                problems += await _check_drift(conn)
    finally:
        await engine.dispose()

    if problems:
        for p in problems:
            print(p, file=sys.stderr)
        return 1

    print("DB invariants ok (enums, natural keys, models match schema).")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
