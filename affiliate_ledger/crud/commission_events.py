# affiliate_ledger/crud/commission_events.py
from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.statuses import CommissionEventStatus
from affiliate_ledger.models.affiliate_commission_event import AffiliateCommissionEvent


async def get_event_for_stripe_event(
    db: AsyncSession,
    *,
    affiliate_id: int,
    stripe_event_id: str,
) -> AffiliateCommissionEvent | None:
    stmt = select(AffiliateCommissionEvent).where(
        AffiliateCommissionEvent.affiliate_id == affiliate_id,
        AffiliateCommissionEvent.stripe_event_id == stripe_event_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def list_events_for_object(
    db: AsyncSession,
    *,
    clinic_id: int,
    stripe_object_id: str,
) -> Sequence[AffiliateCommissionEvent]:
    """
    Refund lineage: every commission event recorded for one payment object
    (one per attributed affiliate), oldest first.
    """
    stmt = (
        select(AffiliateCommissionEvent)
        .where(AffiliateCommissionEvent.clinic_id == clinic_id)
        .where(AffiliateCommissionEvent.stripe_object_id == stripe_object_id)
        .order_by(AffiliateCommissionEvent.id.asc())
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalars().all()


async def reverse_event_if_unpaid(
    db: AsyncSession,
    *,
    event_id: int,
    reason: str,
    at: datetime,
    claimed_by: int | None = None,
) -> bool:
    """
    PENDING/APPROVED -> REVERSED.

    Without `claimed_by` only unclaimed events match; with it, only an event
    still claimed by that payout matches, and the claim is dropped. The status
    guard in the WHERE clause makes concurrent refunds reverse once.
    """
    if claimed_by is None:
        claim_guard = AffiliateCommissionEvent.payout_id.is_(None)
    else:
        claim_guard = AffiliateCommissionEvent.payout_id == claimed_by
    stmt = (
        update(AffiliateCommissionEvent)
        .where(
            AffiliateCommissionEvent.id == event_id,
            AffiliateCommissionEvent.status.in_(
                [CommissionEventStatus.PENDING.value, CommissionEventStatus.APPROVED.value]
            ),
            claim_guard,
            AffiliateCommissionEvent.reversed_at.is_(None),
        )
        .values(
            status=CommissionEventStatus.REVERSED.value,
            reversed_at=at,
            reversal_reason=reason,
            payout_id=None,
        )
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return res.rowcount == 1


async def flag_clawback(db: AsyncSession, *, event_id: int, reason: str, at: datetime) -> bool:
    stmt = (
        update(AffiliateCommissionEvent)
        .where(
            AffiliateCommissionEvent.id == event_id,
            AffiliateCommissionEvent.clawback_flagged_at.is_(None),
        )
        .values(clawback_flagged_at=at, clawback_reason=reason)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return res.rowcount == 1


async def approve_matured(
    db: AsyncSession,
    *,
    now: datetime,
    clinic_id: int | None = None,
) -> int:
    stmt = (
        update(AffiliateCommissionEvent)
        .where(AffiliateCommissionEvent.status == CommissionEventStatus.PENDING.value)
        .where(or_(AffiliateCommissionEvent.hold_until.is_(None), AffiliateCommissionEvent.hold_until <= now))
        .values(status=CommissionEventStatus.APPROVED.value, approved_at=now)
        .execution_options(synchronize_session=False)
    )
    if clinic_id is not None:
        stmt = stmt.where(AffiliateCommissionEvent.clinic_id == clinic_id)
    res = await db.execute(stmt)
    return int(res.rowcount or 0)


async def list_available_events(db: AsyncSession, affiliate_id: int) -> Sequence[AffiliateCommissionEvent]:
    """
    APPROVED and not yet claimed by a payout, oldest first (greedy claim order).
    """
    stmt = (
        select(AffiliateCommissionEvent)
        .where(AffiliateCommissionEvent.affiliate_id == affiliate_id)
        .where(AffiliateCommissionEvent.status == CommissionEventStatus.APPROVED.value)
        .where(AffiliateCommissionEvent.payout_id.is_(None))
        .order_by(
            AffiliateCommissionEvent.occurred_at.asc(),
            AffiliateCommissionEvent.created_at.asc(),
            AffiliateCommissionEvent.id.asc(),
        )
    )
    return (await db.execute(stmt)).scalars().all()


async def sum_available_cents(db: AsyncSession, affiliate_id: int) -> int:
    stmt = select(func.coalesce(func.sum(AffiliateCommissionEvent.amount_cents), 0)).where(
        AffiliateCommissionEvent.affiliate_id == affiliate_id,
        AffiliateCommissionEvent.status == CommissionEventStatus.APPROVED.value,
        AffiliateCommissionEvent.payout_id.is_(None),
    )
    return int((await db.execute(stmt)).scalar_one() or 0)


async def claim_events(db: AsyncSession, *, event_ids: list[int], payout_id: int) -> int:
    if not event_ids:
        return 0
    stmt = (
        update(AffiliateCommissionEvent)
        .where(AffiliateCommissionEvent.id.in_(event_ids))
        .where(AffiliateCommissionEvent.payout_id.is_(None))
        .values(payout_id=payout_id)
        .execution_options(synchronize_session=False)
    )
    res = await db.execute(stmt)
    return int(res.rowcount or 0)
