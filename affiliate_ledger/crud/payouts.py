# affiliate_ledger/crud/payouts.py
from __future__ import annotations

from typing import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.statuses import IN_FLIGHT_PAYOUT_STATUSES, CommissionEventStatus
from affiliate_ledger.models.affiliate_commission_event import AffiliateCommissionEvent
from affiliate_ledger.models.affiliate_payout import AffiliatePayout
from affiliate_ledger.models.affiliate_payout_method import AffiliatePayoutMethod


async def get_in_flight_payout(db: AsyncSession, affiliate_id: int) -> AffiliatePayout | None:
    stmt = (
        select(AffiliatePayout)
        .where(AffiliatePayout.affiliate_id == affiliate_id)
        .where(AffiliatePayout.status.in_(IN_FLIGHT_PAYOUT_STATUSES))
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_default_verified_method(db: AsyncSession, affiliate_id: int) -> AffiliatePayoutMethod | None:
    stmt = (
        select(AffiliatePayoutMethod)
        .where(AffiliatePayoutMethod.affiliate_id == affiliate_id)
        .where(AffiliatePayoutMethod.is_default.is_(True))
        .where(AffiliatePayoutMethod.is_verified.is_(True))
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_payout_for_update(db: AsyncSession, *, payout_id: int, clinic_id: int | None) -> AffiliatePayout | None:
    stmt = (
        select(AffiliatePayout)
        .where(AffiliatePayout.id == payout_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if clinic_id is not None:
        stmt = stmt.where(AffiliatePayout.clinic_id == clinic_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_payouts(
    db: AsyncSession,
    *,
    affiliate_id: int,
    limit: int,
    offset: int,
) -> tuple[Sequence[tuple[AffiliatePayout, int]], int]:
    """
    Newest first, each with the number of commission events it claimed.
    """
    total = (
        await db.execute(
            select(func.count()).select_from(AffiliatePayout).where(AffiliatePayout.affiliate_id == affiliate_id)
        )
    ).scalar_one()

    event_count = (
        select(func.count(AffiliateCommissionEvent.id))
        .where(AffiliateCommissionEvent.payout_id == AffiliatePayout.id)
        .correlate(AffiliatePayout)
        .scalar_subquery()
    )
    stmt = (
        select(AffiliatePayout, event_count)
        .where(AffiliatePayout.affiliate_id == affiliate_id)
        .order_by(AffiliatePayout.created_at.desc(), AffiliatePayout.id.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = (await db.execute(stmt)).all()
    return [(r[0], int(r[1] or 0)) for r in rows], int(total or 0)


async def mark_payout_events_paid(db: AsyncSession, payout_id: int) -> int:
    """
    APPROVED events claimed by the payout become PAID. Nothing else is touched.
    """
    res = await db.execute(
        update(AffiliateCommissionEvent)
        .where(AffiliateCommissionEvent.payout_id == payout_id)
        .where(AffiliateCommissionEvent.status == CommissionEventStatus.APPROVED.value)
        .values(status=CommissionEventStatus.PAID.value)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


async def release_events_for_payout(db: AsyncSession, payout_id: int) -> int:
    res = await db.execute(
        update(AffiliateCommissionEvent)
        .where(AffiliateCommissionEvent.payout_id == payout_id)
        .values(payout_id=None)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)
