# affiliate_ledger/crud/patients.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.models.patient import Patient

AFFILIATE_TAG_PREFIX = "affiliate:"


def affiliate_tag(ref_code: str) -> str:
    return f"{AFFILIATE_TAG_PREFIX}{ref_code}"


async def get_patient(db: AsyncSession, *, patient_id: int, clinic_id: int) -> Patient | None:
    stmt = select(Patient).where(Patient.id == patient_id, Patient.clinic_id == clinic_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def set_attribution_if_unset(
    db: AsyncSession,
    *,
    patient_id: int,
    clinic_id: int,
    affiliate_id: int,
    ref_code: str,
    at: datetime,
) -> bool:
    """
    First-attribution-wins. The write only applies while attribution_affiliate_id
    is still NULL, so concurrent intakes cannot overwrite each other.
    Returns True if this call set the attribution.
    """
    stmt = (
        update(Patient)
        .where(
            Patient.id == patient_id,
            Patient.clinic_id == clinic_id,
            Patient.attribution_affiliate_id.is_(None),
        )
        .values(
            attribution_affiliate_id=affiliate_id,
            attribution_ref_code=ref_code,
            attribution_first_touch_at=at,
        )
    )
    res = await db.execute(stmt)
    return res.rowcount == 1


async def set_ref_code_if_unattributed(
    db: AsyncSession,
    *,
    patient_id: int,
    clinic_id: int,
    ref_code: str,
) -> bool:
    """
    Degraded path for codes with no registered affiliate yet: remember the code
    for later reconciliation without claiming an affiliate.
    """
    stmt = (
        update(Patient)
        .where(
            Patient.id == patient_id,
            Patient.clinic_id == clinic_id,
            Patient.attribution_affiliate_id.is_(None),
        )
        .values(attribution_ref_code=ref_code)
    )
    res = await db.execute(stmt)
    return res.rowcount == 1


async def add_tag(db: AsyncSession, patient: Patient, tag: str) -> bool:
    """
    Append a tag once. Returns False when the patient already carries it.

    The row is re-read under `SELECT ... FOR UPDATE` so the append starts from
    the committed list, not from whatever `patient` held when it was loaded.
    """
    stmt = (
        select(Patient)
        .where(Patient.id == patient.id, Patient.clinic_id == patient.clinic_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    current = (await db.execute(stmt)).scalar_one_or_none()
    if current is None:
        return False

    tags = list(current.tags or [])
    if tag in tags:
        return False
    tags.append(tag)
    current.tags = tags
    await db.flush()
    return True
