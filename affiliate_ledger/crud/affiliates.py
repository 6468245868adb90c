# affiliate_ledger/crud/affiliates.py
from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.models.affiliate import Affiliate


async def get_affiliate(db: AsyncSession, affiliate_id: int) -> Affiliate | None:
    return (await db.execute(select(Affiliate).where(Affiliate.id == affiliate_id))).scalar_one_or_none()


async def lock_affiliate(db: AsyncSession, affiliate_id: int) -> Affiliate | None:
    """
    SELECT ... FOR UPDATE on the affiliate row.
    Concurrent withdrawals for the same affiliate queue up here.
    """
    stmt = select(Affiliate).where(Affiliate.id == affiliate_id).with_for_update()
    return (await db.execute(stmt)).scalar_one_or_none()


async def increment_lifetime_conversions(db: AsyncSession, affiliate_id: int, by: int = 1) -> None:
    # single UPDATE, no read-modify-write
    await db.execute(
        update(Affiliate)
        .where(Affiliate.id == affiliate_id)
        .values(lifetime_conversions=Affiliate.lifetime_conversions + by)
        .execution_options(synchronize_session=False)
    )


async def increment_lifetime_revenue(db: AsyncSession, affiliate_id: int, amount_cents: int) -> None:
    await db.execute(
        update(Affiliate)
        .where(Affiliate.id == affiliate_id)
        .values(lifetime_revenue_cents=Affiliate.lifetime_revenue_cents + amount_cents)
        .execution_options(synchronize_session=False)
    )
