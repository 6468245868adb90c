# affiliate_ledger/crud/touches.py
"""
TouchStore: append-only touches plus the windowed visitor query.
"""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.core.statuses import TouchType
from affiliate_ledger.models.affiliate_touch import AffiliateTouch


class TouchAlreadyConvertedError(Exception):
    def __init__(self, touch_id: int, existing_patient_id: int, patient_id: int) -> None:
        super().__init__(
            f"Touch {touch_id} already converted for patient {existing_patient_id}; "
            f"refusing to relink to patient {patient_id}"
        )
        self.touch_id = touch_id
        self.existing_patient_id = existing_patient_id
        self.patient_id = patient_id


async def create_touch(
    db: AsyncSession,
    *,
    clinic_id: int,
    affiliate_id: int,
    ref_code: str,
    visitor_fingerprint: str | None = None,
    cookie_id: str | None = None,
    touch_type: TouchType = TouchType.CLICK,
    landing_page: str | None = None,
    utm_source: str | None = None,
    utm_medium: str | None = None,
    utm_campaign: str | None = None,
    converted_patient_id: int | None = None,
    created_at: datetime | None = None,
) -> AffiliateTouch:
    if not visitor_fingerprint and not cookie_id:
        raise ValueError("A touch needs a visitor fingerprint or a cookie id")

    touch = AffiliateTouch(
        clinic_id=clinic_id,
        affiliate_id=affiliate_id,
        ref_code=ref_code,
        visitor_fingerprint=visitor_fingerprint or None,
        cookie_id=cookie_id or None,
        touch_type=TouchType(touch_type).value,
        landing_page=landing_page,
        utm_source=utm_source,
        utm_medium=utm_medium,
        utm_campaign=utm_campaign,
        converted_patient_id=converted_patient_id,
        converted_at=utcnow() if converted_patient_id is not None else None,
    )
    if created_at is not None:
        touch.created_at = created_at
    db.add(touch)
    await db.flush()  # assigns touch.id
    return touch


async def find_touches_in_window(
    db: AsyncSession,
    *,
    clinic_id: int,
    window_start: datetime,
    visitor_fingerprint: str | None = None,
    cookie_id: str | None = None,
) -> Sequence[AffiliateTouch]:
    """
    Touches in the clinic matching ANY of the supplied identifiers, created at or
    after window_start, oldest first (id breaks created_at ties).
    """
    conditions = []
    if visitor_fingerprint:
        conditions.append(AffiliateTouch.visitor_fingerprint == visitor_fingerprint)
    if cookie_id:
        conditions.append(AffiliateTouch.cookie_id == cookie_id)
    if not conditions:
        return []

    stmt = (
        select(AffiliateTouch)
        .where(AffiliateTouch.clinic_id == clinic_id)
        .where(AffiliateTouch.created_at >= window_start)
        .where(or_(*conditions))
        .order_by(AffiliateTouch.created_at.asc(), AffiliateTouch.id.asc())
    )
    return (await db.execute(stmt)).scalars().all()


async def count_touches_for_code(db: AsyncSession, *, clinic_id: int, ref_code: str) -> int:
    stmt = (
        select(func.count(AffiliateTouch.id))
        .where(AffiliateTouch.clinic_id == clinic_id)
        .where(AffiliateTouch.ref_code == ref_code)
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)


async def mark_touch_converted(
    db: AsyncSession,
    *,
    touch_id: int,
    patient_id: int,
    clinic_id: int,
) -> bool:
    """
    Link a touch to the patient it converted, exactly once.

    Returns True when the link was written, False when it already pointed at
    this patient. Raises TouchAlreadyConvertedError for a different patient and
    LookupError for an unknown touch.
    """
    stmt = (
        update(AffiliateTouch)
        .where(
            AffiliateTouch.id == touch_id,
            AffiliateTouch.clinic_id == clinic_id,
            AffiliateTouch.converted_patient_id.is_(None),
        )
        .values(converted_patient_id=patient_id, converted_at=utcnow())
    )
    res = await db.execute(stmt)
    if res.rowcount == 1:
        return True

    existing = (
        await db.execute(
            select(AffiliateTouch.converted_patient_id).where(
                AffiliateTouch.id == touch_id,
                AffiliateTouch.clinic_id == clinic_id,
            )
        )
    ).first()
    if existing is None:
        raise LookupError(f"Touch {touch_id} not found in clinic {clinic_id}")
    if existing[0] == patient_id:
        return False
    raise TouchAlreadyConvertedError(touch_id, existing[0], patient_id)
