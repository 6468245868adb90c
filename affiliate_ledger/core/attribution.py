# affiliate_ledger/core/attribution.py
"""
Attribution resolver.

Decides which affiliate gets credit for a conversion from the visitor's
touches, using the clinic's configured weighting model. Runs once at
conversion time; payments read the stored patient attribution.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.attribution_models import WeightedTouch, apply_model, pick_winner
from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.crud.affiliates import increment_lifetime_conversions
from affiliate_ledger.crud.attribution_config import get_attribution_config
from affiliate_ledger.crud.patients import get_patient, set_attribution_if_unset
from affiliate_ledger.crud.touches import find_touches_in_window, mark_touch_converted
from affiliate_ledger.schemas.attribution import (
    STORED,
    AttributionRequest,
    AttributionResult,
    Confidence,
    WeightedTouchOut,
)

logger = logging.getLogger(__name__)


def _clean(identifier: Optional[str]) -> Optional[str]:
    if identifier is None:
        return None
    identifier = identifier.strip()
    return identifier or None


def confidence_for(*, fingerprint_used: bool, cookie_used: bool, matched: int) -> Confidence:
    if matched <= 0:
        return "low"
    if fingerprint_used and cookie_used:
        return "high"
    if fingerprint_used or cookie_used:
        return "medium"
    return "low"


async def resolve_attribution(
    db: AsyncSession,
    request: AttributionRequest,
    *,
    now: datetime | None = None,
) -> AttributionResult | None:
    """
    Pick the credited affiliate for a visitor.

    Returns None (never raises) when no identifier is supplied or no touch
    matched inside the clinic's lookback window.
    """
    fingerprint = _clean(request.visitor_fingerprint)
    cookie_id = _clean(request.cookie_id)
    if fingerprint is None and cookie_id is None:
        return None

    config = await get_attribution_config(db, request.clinic_id)
    if not config.enable_fingerprinting:
        fingerprint = None
    if fingerprint is None and cookie_id is None:
        logger.info(
            "[Attribution] Fingerprinting disabled and no cookie supplied",
            extra={"clinic_id": request.clinic_id},
        )
        return None

    now = now or utcnow()
    model = config.model_for(is_new_patient=request.is_new_patient)
    window_start = now - timedelta(days=config.window_days)

    rows = await find_touches_in_window(
        db,
        clinic_id=request.clinic_id,
        window_start=window_start,
        visitor_fingerprint=fingerprint,
        cookie_id=cookie_id,
    )
    if not rows:
        logger.info(
            "[Attribution] No touches in window",
            extra={"clinic_id": request.clinic_id, "window_days": config.window_days},
        )
        return None

    weighted = apply_model(
        model,
        [
            WeightedTouch(
                touch_id=t.id,
                affiliate_id=t.affiliate_id,
                ref_code=t.ref_code,
                created_at=t.created_at,
            )
            for t in rows
        ],
        now,
    )
    winner = pick_winner(weighted)
    if winner is None:
        return None

    confidence = confidence_for(
        fingerprint_used=fingerprint is not None,
        cookie_used=cookie_id is not None,
        matched=len(rows),
    )

    logger.info(
        "[Attribution] Resolved",
        extra={
            "clinic_id": request.clinic_id,
            "affiliate_id": winner.affiliate_id,
            "touch_id": winner.touch_id,
            "model": model.value,
            "confidence": confidence,
            "touch_count": len(rows),
        },
    )

    return AttributionResult(
        affiliate_id=winner.affiliate_id,
        ref_code=winner.ref_code,
        touch_id=winner.touch_id,
        model=model.value,
        confidence=confidence,
        weight=winner.weight,
        touches=[WeightedTouchOut.model_validate(t) for t in weighted],
    )


async def get_patient_attribution(
    db: AsyncSession,
    *,
    patient_id: int,
    clinic_id: int,
) -> AttributionResult | None:
    patient = await get_patient(db, patient_id=patient_id, clinic_id=clinic_id)
    if patient is None or patient.attribution_affiliate_id is None:
        return None
    return AttributionResult(
        affiliate_id=patient.attribution_affiliate_id,
        ref_code=patient.attribution_ref_code or "",
        model=STORED,
        confidence="high",
        weight=1.0,
    )


async def set_patient_attribution(
    db: AsyncSession,
    *,
    patient_id: int,
    clinic_id: int,
    result: AttributionResult,
    now: datetime | None = None,
) -> bool:
    """
    Store a resolved attribution on the patient, first writer wins.

    Only when the write applies: the affiliate's lifetime conversions go up by
    one and the winning touch is linked to the patient.
    The caller owns the commit.
    """
    now = now or utcnow()
    applied = await set_attribution_if_unset(
        db,
        patient_id=patient_id,
        clinic_id=clinic_id,
        affiliate_id=result.affiliate_id,
        ref_code=result.ref_code,
        at=now,
    )
    if not applied:
        logger.info(
            "[Attribution] Patient already attributed, keeping existing affiliate",
            extra={"clinic_id": clinic_id, "patient_id": patient_id, "affiliate_id": result.affiliate_id},
        )
        return False

    await increment_lifetime_conversions(db, result.affiliate_id)
    if result.touch_id is not None:
        await mark_touch_converted(db, touch_id=result.touch_id, patient_id=patient_id, clinic_id=clinic_id)

    logger.info(
        "[Attribution] Patient attributed",
        extra={
            "clinic_id": clinic_id,
            "patient_id": patient_id,
            "affiliate_id": result.affiliate_id,
            "model": result.model,
        },
    )
    return True
