# affiliate_ledger/core/earnings.py
"""
Read-only earnings views. Nothing here writes; queries run outside any
explicit transaction.
"""
from __future__ import annotations

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.config import settings
from affiliate_ledger.core.statuses import CommissionEventStatus
from affiliate_ledger.crud.payouts import get_in_flight_payout, list_payouts
from affiliate_ledger.models.affiliate_commission_event import AffiliateCommissionEvent
from affiliate_ledger.schemas.commission import CommissionEventOut, CommissionPageOut
from affiliate_ledger.schemas.earnings import EarningsSummary
from affiliate_ledger.schemas.payouts import PayoutOut, PayoutPageOut


async def get_earnings_summary(db: AsyncSession, *, affiliate_id: int) -> EarningsSummary:
    """
    Balances by ledger bucket.

    lifetime_earned counts PENDING + APPROVED + PAID everywhere; REVERSED is
    kept apart so that available + pending + lifetime_paid + reversed always
    equals lifetime_gross.
    """
    claimed = case((AffiliateCommissionEvent.payout_id.is_(None), 0), else_=1).label("claimed")
    stmt = (
        select(
            AffiliateCommissionEvent.status,
            claimed,
            func.coalesce(func.sum(AffiliateCommissionEvent.amount_cents), 0),
        )
        .where(AffiliateCommissionEvent.affiliate_id == affiliate_id)
        .group_by(AffiliateCommissionEvent.status, claimed)
    )
    rows = (await db.execute(stmt)).all()

    pending = available = processing = paid = reversed_ = 0
    for status, is_claimed, total in rows:
        total = int(total or 0)
        if status == CommissionEventStatus.PENDING.value:
            pending += total
        elif status == CommissionEventStatus.APPROVED.value:
            if is_claimed:
                processing += total
            else:
                available += total
        elif status == CommissionEventStatus.PAID.value:
            paid += total
        elif status == CommissionEventStatus.REVERSED.value:
            reversed_ += total

    gross = pending + available + processing + paid + reversed_
    in_flight = await get_in_flight_payout(db, affiliate_id)

    return EarningsSummary(
        affiliate_id=affiliate_id,
        pending_cents=pending,
        available_cents=available,
        processing_cents=processing,
        paid_cents=paid,
        reversed_cents=reversed_,
        lifetime_paid_cents=processing + paid,
        lifetime_gross_cents=gross,
        lifetime_earned_cents=gross - reversed_,
        minimum_payout_cents=settings.MINIMUM_PAYOUT_CENTS,
        in_flight_payout_id=in_flight.id if in_flight else None,
    )


async def get_commission_history(
    db: AsyncSession,
    *,
    affiliate_id: int,
    limit: int = 20,
    offset: int = 0,
    status: str | None = None,
) -> CommissionPageOut:
    where = [AffiliateCommissionEvent.affiliate_id == affiliate_id]
    if status:
        where.append(AffiliateCommissionEvent.status == status)

    total = (
        await db.execute(select(func.count()).select_from(AffiliateCommissionEvent).where(*where))
    ).scalar_one()

    stmt = (
        select(AffiliateCommissionEvent)
        .where(*where)
        .order_by(AffiliateCommissionEvent.occurred_at.desc(), AffiliateCommissionEvent.id.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(stmt)).scalars().all()

    return CommissionPageOut(
        items=[CommissionEventOut.model_validate(r) for r in rows],
        limit=limit,
        offset=offset,
        total=int(total),
    )


async def get_payout_history(
    db: AsyncSession,
    *,
    affiliate_id: int,
    limit: int = 20,
    offset: int = 0,
) -> PayoutPageOut:
    rows, total = await list_payouts(db, affiliate_id=affiliate_id, limit=limit, offset=offset)
    items = []
    for payout, count in rows:
        item = PayoutOut.model_validate(payout)
        item.commission_count = count
        items.append(item)
    return PayoutPageOut(items=items, limit=limit, offset=offset, total=total)
