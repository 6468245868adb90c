# affiliate_ledger/crud/ref_codes.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.models.affiliate import Affiliate
from affiliate_ledger.models.affiliate_ref_code import AffiliateRefCode
from affiliate_ledger.models.clinic import Clinic


async def get_active_ref_code(
    db: AsyncSession,
    *,
    ref_code: str,
    clinic_id: int,
) -> tuple[AffiliateRefCode, Affiliate] | None:
    stmt = (
        select(AffiliateRefCode, Affiliate)
        .join(Affiliate, Affiliate.id == AffiliateRefCode.affiliate_id)
        .where(AffiliateRefCode.ref_code == ref_code)
        .where(AffiliateRefCode.clinic_id == clinic_id)
        .where(AffiliateRefCode.is_active.is_(True))
    )
    row = (await db.execute(stmt)).first()
    return (row[0], row[1]) if row else None


async def get_active_ref_code_in_other_clinic(
    db: AsyncSession,
    *,
    ref_code: str,
    clinic_id: int,
) -> tuple[AffiliateRefCode, Clinic] | None:
    stmt = (
        select(AffiliateRefCode, Clinic)
        .join(Clinic, Clinic.id == AffiliateRefCode.clinic_id)
        .where(AffiliateRefCode.ref_code == ref_code)
        .where(AffiliateRefCode.clinic_id != clinic_id)
        .where(AffiliateRefCode.is_active.is_(True))
        .order_by(AffiliateRefCode.id.asc())
        .limit(1)
    )
    row = (await db.execute(stmt)).first()
    return (row[0], row[1]) if row else None


async def get_inactive_ref_code(
    db: AsyncSession,
    *,
    ref_code: str,
    clinic_id: int,
) -> AffiliateRefCode | None:
    stmt = (
        select(AffiliateRefCode)
        .where(AffiliateRefCode.ref_code == ref_code)
        .where(AffiliateRefCode.clinic_id == clinic_id)
        .where(AffiliateRefCode.is_active.is_(False))
    )
    return (await db.execute(stmt)).scalar_one_or_none()
