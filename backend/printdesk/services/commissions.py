from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from printdesk.core.config import COMMISSION_POLICY_VOID, get_settings
from printdesk.core.enums import CommissionStatus
from printdesk.models.commission import Commission
from printdesk.services.audit import audit_log
from printdesk.services.money import normalize_currency, parse_amount_to_cents
from printdesk.services.sql import dialect_insert, utcnow


logger = logging.getLogger(__name__)


async def get_commission(session: AsyncSession, *, shop_id: uuid.UUID, order_id: str) -> Commission | None:
    return (
        await session.execute(
            select(Commission)
            .where(Commission.shop_id == shop_id, Commission.order_id == order_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def accrue(
    session: AsyncSession,
    *,
    shop_id: uuid.UUID,
    order_id: str,
    order_total: Any,
    currency: Any,
    order_number: str | None = None,
) -> Commission:
    """
    Record the per-order fee for an order, once per (shop, order).

    Redeliveries refresh the order figures and the fee amount but never the payment state.
    """
    settings = get_settings()
    stmt = dialect_insert(session, Commission).values(
        id=uuid.uuid4(),
        shop_id=shop_id,
        order_id=order_id,
        order_number=order_number,
        order_total_cents=parse_amount_to_cents(order_total),
        order_currency=normalize_currency(currency, default=settings.commission_currency),
        commission_amount_cents=settings.commission_per_order_cents,
        status=CommissionStatus.PENDING,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["shop_id", "order_id"],
        set_={
            "order_number": func.coalesce(stmt.excluded.order_number, Commission.__table__.c.order_number),
            "order_total_cents": stmt.excluded.order_total_cents,
            "order_currency": stmt.excluded.order_currency,
            "commission_amount_cents": stmt.excluded.commission_amount_cents,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)

    commission = await get_commission(session, shop_id=shop_id, order_id=order_id)
    logger.info(
        "Commission for order %s (shop %s): %s cents, %s",
        order_id,
        shop_id,
        commission.commission_amount_cents,
        commission.status.value,
    )
    return commission


async def mark_paid(
    session: AsyncSession,
    *,
    actor: str,
    shop_id: uuid.UUID,
    order_ids: list[str],
    payment_ref: str,
) -> int:
    payment_ref = (payment_ref or "").strip()
    if not payment_ref:
        raise ValueError("payment_ref is required")
    if not order_ids:
        return 0

    rows = (
        await session.execute(
            select(Commission)
            .where(
                Commission.shop_id == shop_id,
                Commission.order_id.in_(order_ids),
                Commission.status == CommissionStatus.PENDING,
            )
            .with_for_update()
        )
    ).scalars().all()

    now = utcnow()
    for commission in rows:
        commission.status = CommissionStatus.PAID
        commission.payment_ref = payment_ref
        commission.paid_at = now
        await audit_log(
            session,
            shop_id=shop_id,
            actor=actor,
            entity_type="commission",
            entity_id=commission.id,
            action="paid",
            before={"status": CommissionStatus.PENDING},
            after={"status": CommissionStatus.PAID, "payment_ref": payment_ref},
        )
    await session.flush()
    return len(rows)


async def revert_payment(session: AsyncSession, *, actor: str, payment_ref: str) -> int:
    """A refunded capture puts every commission it settled back into the pending pool."""
    rows = (
        await session.execute(
            select(Commission)
            .where(Commission.payment_ref == payment_ref, Commission.status == CommissionStatus.PAID)
            .with_for_update()
        )
    ).scalars().all()

    for commission in rows:
        commission.status = CommissionStatus.PENDING
        commission.payment_ref = None
        commission.paid_at = None
        await audit_log(
            session,
            shop_id=commission.shop_id,
            actor=actor,
            entity_type="commission",
            entity_id=commission.id,
            action="payment_reverted",
            before={"status": CommissionStatus.PAID, "payment_ref": payment_ref},
            after={"status": CommissionStatus.PENDING},
        )
    await session.flush()
    if rows:
        logger.warning("Reverted %s commission(s) settled by payment %s", len(rows), payment_ref)
    return len(rows)


async def pending_total(session: AsyncSession, *, shop_id: uuid.UUID) -> int:
    total = (
        await session.execute(
            select(func.coalesce(func.sum(Commission.commission_amount_cents), 0)).where(
                Commission.shop_id == shop_id,
                Commission.status == CommissionStatus.PENDING,
            )
        )
    ).scalar_one()
    return int(total)


async def shops_due_for_collection(
    session: AsyncSession,
    *,
    threshold_cents: int | None = None,
) -> list[tuple[uuid.UUID, int]]:
    if threshold_cents is None:
        threshold_cents = get_settings().commission_collection_threshold_cents
    total = func.sum(Commission.commission_amount_cents)
    rows = (
        await session.execute(
            select(Commission.shop_id, total)
            .where(Commission.status == CommissionStatus.PENDING)
            .group_by(Commission.shop_id)
            .having(total >= threshold_cents)
            .order_by(total.desc())
        )
    ).all()
    return [(shop_id, int(amount)) for shop_id, amount in rows]


async def apply_cancellation_policy(
    session: AsyncSession,
    *,
    actor: str,
    shop_id: uuid.UUID,
    order_id: str,
) -> Commission | None:
    """Returns the voided commission, or None when the policy keeps it (or there is nothing to void)."""
    if get_settings().commission_cancellation_policy != COMMISSION_POLICY_VOID:
        return None

    commission = await get_commission(session, shop_id=shop_id, order_id=order_id)
    if commission is None or commission.status != CommissionStatus.PENDING:
        return None

    commission.status = CommissionStatus.VOIDED
    await session.flush()
    await audit_log(
        session,
        shop_id=shop_id,
        actor=actor,
        entity_type="commission",
        entity_id=commission.id,
        action="voided",
        before={"status": CommissionStatus.PENDING},
        after={"status": CommissionStatus.VOIDED, "order_id": order_id},
    )
    return commission


async def list_commissions(
    session: AsyncSession,
    *,
    shop_id: uuid.UUID,
    status: CommissionStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Commission]:
    stmt = select(Commission).where(Commission.shop_id == shop_id)
    if status is not None:
        stmt = stmt.where(Commission.status == status)
    stmt = stmt.order_by(Commission.created_at.desc(), Commission.id.desc()).limit(limit).offset(offset)
    return list((await session.execute(stmt)).scalars().all())
