# affiliate_ledger/core/intake_attribution.py
"""
Intake attribution: a patient typed a promo / referral code into an intake form.

Unlike the resolver this path is explicit: the code names the affiliate.
Failures are reported as AttributionFailureReason values for admin
diagnostics and never block the intake itself.

The caller owns the transaction; these functions flush but never commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.clock import utcnow
from affiliate_ledger.core.errors import AttributionFailureReason
from affiliate_ledger.core.statuses import AffiliateStatus, TouchType
from affiliate_ledger.crud.affiliates import increment_lifetime_conversions
from affiliate_ledger.crud.patients import (
    add_tag,
    affiliate_tag,
    get_patient,
    set_attribution_if_unset,
    set_ref_code_if_unattributed,
)
from affiliate_ledger.crud.ref_codes import (
    get_active_ref_code,
    get_active_ref_code_in_other_clinic,
    get_inactive_ref_code,
)
from affiliate_ledger.crud.touches import create_touch, mark_touch_converted
from affiliate_ledger.models.affiliate import Affiliate
from affiliate_ledger.models.affiliate_ref_code import AffiliateRefCode
from affiliate_ledger.schemas.attribution import (
    INTAKE_DIRECT,
    INTAKE_TOUCH_ONLY,
    AttributionResult,
    IntakeAttributionOutcome,
)

logger = logging.getLogger(__name__)

MAX_REF_CODE_LENGTH = 64


def normalize_ref_code(code: str | None) -> str | None:
    if not code:
        return None
    c = code.strip().upper()
    if not c or len(c) > MAX_REF_CODE_LENGTH:
        return None
    return c


# -----------------------------
# Ref code diagnosis
# -----------------------------
@dataclass(frozen=True)
class RefCodeLookup:
    """
    Outcome of one diagnosis strategy. Either a usable code (ref_code + affiliate)
    or a failure reason with a diagnostic message.
    """

    ref_code: Optional[AffiliateRefCode] = None
    affiliate: Optional[Affiliate] = None
    failure_reason: Optional[AttributionFailureReason] = None
    message: Optional[str] = None
    other_clinic_name: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure_reason is None and self.ref_code is not None


RefCodeStrategy = Callable[[AsyncSession, str, int], Awaitable[Optional[RefCodeLookup]]]


async def active_code_in_clinic(db: AsyncSession, code: str, clinic_id: int) -> Optional[RefCodeLookup]:
    found = await get_active_ref_code(db, ref_code=code, clinic_id=clinic_id)
    if found is None:
        return None
    ref_code, affiliate = found
    return RefCodeLookup(ref_code=ref_code, affiliate=affiliate)


async def active_code_in_other_clinic(db: AsyncSession, code: str, clinic_id: int) -> Optional[RefCodeLookup]:
    found = await get_active_ref_code_in_other_clinic(db, ref_code=code, clinic_id=clinic_id)
    if found is None:
        return None
    _, clinic = found
    return RefCodeLookup(
        failure_reason=AttributionFailureReason.CLINIC_MISMATCH,
        message=f"Code {code} belongs to a different clinic ({clinic.name})",
        other_clinic_name=clinic.name,
    )


async def inactive_code_in_clinic(db: AsyncSession, code: str, clinic_id: int) -> Optional[RefCodeLookup]:
    found = await get_inactive_ref_code(db, ref_code=code, clinic_id=clinic_id)
    if found is None:
        return None
    return RefCodeLookup(
        failure_reason=AttributionFailureReason.CODE_INACTIVE,
        message=f"Code {code} exists but is inactive",
    )


# Precedence is the order of this tuple: the first strategy with an answer wins.
REF_CODE_STRATEGIES: tuple[tuple[str, RefCodeStrategy], ...] = (
    ("active_in_clinic", active_code_in_clinic),
    ("active_in_other_clinic", active_code_in_other_clinic),
    ("inactive_in_clinic", inactive_code_in_clinic),
)


async def diagnose_ref_code(db: AsyncSession, *, code: str, clinic_id: int) -> RefCodeLookup:
    for name, strategy in REF_CODE_STRATEGIES:
        lookup = await strategy(db, code, clinic_id)
        if lookup is not None:
            logger.debug("[Attribution] Ref code matched by %s", name, extra={"code": code, "clinic_id": clinic_id})
            return lookup
    return RefCodeLookup(
        failure_reason=AttributionFailureReason.CODE_NOT_FOUND,
        message=f"No affiliate ref code {code} found",
    )


def _failure(
    reason: AttributionFailureReason,
    message: str,
    **kwargs,
) -> IntakeAttributionOutcome:
    return IntakeAttributionOutcome(success=False, failure_reason=reason, message=message, **kwargs)


# -----------------------------
# Public operations
# -----------------------------
async def attribute_from_intake_extended(
    db: AsyncSession,
    *,
    patient_id: int,
    promo_code: str | None,
    clinic_id: int,
    source: str = "intake",
) -> IntakeAttributionOutcome:
    """
    Attribute a patient from an intake promo code.

    - A POSTBACK touch is always recorded for a usable code, even when the
      patient is already attributed (code usage tracking).
    - First attribution wins: the patient write is a conditional UPDATE that
      only applies while attribution_affiliate_id is NULL.
    - Lifetime conversions go up exactly once, together with that write.
    """
    code = normalize_ref_code(promo_code)
    if code is None:
        return _failure(AttributionFailureReason.INVALID_CODE, "Promo code is empty or too long")

    ctx = {"patient_id": patient_id, "clinic_id": clinic_id, "code": code, "source": source}

    try:
        patient = await get_patient(db, patient_id=patient_id, clinic_id=clinic_id)
        if patient is None:
            logger.warning("[Attribution] Patient not found for intake attribution", extra=ctx)
            return _failure(AttributionFailureReason.PATIENT_NOT_FOUND, f"Patient {patient_id} not found")

        lookup = await diagnose_ref_code(db, code=code, clinic_id=clinic_id)
        if not lookup.ok:
            logger.info(
                "[Attribution] Intake code not attributable: %s",
                lookup.failure_reason.value,
                extra={**ctx, "other_clinic_name": lookup.other_clinic_name},
            )
            return _failure(lookup.failure_reason, lookup.message or "", other_clinic_name=lookup.other_clinic_name)

        affiliate = lookup.affiliate
        if affiliate.status != AffiliateStatus.ACTIVE.value:
            logger.warning(
                "[Attribution] Affiliate not active, skipping attribution",
                extra={**ctx, "affiliate_id": affiliate.id, "status": affiliate.status},
            )
            return _failure(
                AttributionFailureReason.AFFILIATE_INACTIVE,
                f"Affiliate {affiliate.id} is {affiliate.status}",
            )

        now = utcnow()
        touch = await create_touch(
            db,
            clinic_id=clinic_id,
            affiliate_id=affiliate.id,
            ref_code=code,
            touch_type=TouchType.POSTBACK,
            visitor_fingerprint=f"intake-{patient_id}-{int(now.timestamp() * 1000)}",
            landing_page=f"/intake/{source}",
            utm_source=source,
            utm_medium="intake_form",
            utm_campaign="promo_code",
        )

        applied = False
        if patient.attribution_affiliate_id is None:
            applied = await set_attribution_if_unset(
                db,
                patient_id=patient_id,
                clinic_id=clinic_id,
                affiliate_id=affiliate.id,
                ref_code=code,
                at=now,
            )

        if not applied:
            await db.flush()
            logger.info(
                "[Attribution] Patient already attributed, touch recorded only",
                extra={**ctx, "affiliate_id": affiliate.id, "touch_id": touch.id},
            )
            return IntakeAttributionOutcome(
                success=True,
                result=AttributionResult(
                    affiliate_id=affiliate.id,
                    ref_code=code,
                    touch_id=touch.id,
                    model=INTAKE_TOUCH_ONLY,
                    confidence="high",
                    weight=1.0,
                ),
                failure_reason=AttributionFailureReason.ALREADY_ATTRIBUTED,
                message="Patient already attributed; existing attribution kept",
            )

        await mark_touch_converted(db, touch_id=touch.id, patient_id=patient_id, clinic_id=clinic_id)
        await add_tag(db, patient, affiliate_tag(code))
        await increment_lifetime_conversions(db, affiliate.id)
        await db.flush()

        logger.info(
            "[Attribution] Successfully attributed patient from intake",
            extra={**ctx, "affiliate_id": affiliate.id, "affiliate_name": affiliate.display_name, "touch_id": touch.id},
        )
        return IntakeAttributionOutcome(
            success=True,
            result=AttributionResult(
                affiliate_id=affiliate.id,
                ref_code=code,
                touch_id=touch.id,
                model=INTAKE_DIRECT,
                confidence="high",
                weight=1.0,
            ),
        )
    except SQLAlchemyError as exc:
        logger.error(
            "[Attribution] Failed to attribute from intake",
            extra={**ctx, "error": str(exc)},
            exc_info=True,
        )
        return _failure(AttributionFailureReason.DATABASE_ERROR, "Database error during attribution", retryable=True)


async def attribute_from_intake(
    db: AsyncSession,
    *,
    patient_id: int,
    promo_code: str | None,
    clinic_id: int,
    source: str = "intake",
) -> AttributionResult | None:
    outcome = await attribute_from_intake_extended(
        db,
        patient_id=patient_id,
        promo_code=promo_code,
        clinic_id=clinic_id,
        source=source,
    )
    return outcome.result if outcome.success else None


async def tag_patient_with_referral_code_only(
    db: AsyncSession,
    *,
    patient_id: int,
    promo_code: str | None,
    clinic_id: int,
) -> bool:
    """
    Degraded path for a code that has no registered affiliate yet (legacy
    sources). Remembers the code and an `affiliate:<CODE>` tag for later
    reconciliation. No touch, no affiliate assignment, and an existing
    attribution is never touched.
    """
    code = normalize_ref_code(promo_code)
    if code is None:
        return False

    try:
        patient = await get_patient(db, patient_id=patient_id, clinic_id=clinic_id)
        if patient is None or patient.attribution_affiliate_id is not None:
            return False

        if not await set_ref_code_if_unattributed(db, patient_id=patient_id, clinic_id=clinic_id, ref_code=code):
            return False
        await add_tag(db, patient, affiliate_tag(code))
        await db.flush()
    except SQLAlchemyError:
        logger.error(
            "[Attribution] Failed to tag patient with referral code",
            extra={"patient_id": patient_id, "clinic_id": clinic_id, "code": code},
            exc_info=True,
        )
        return False

    logger.info(
        "[Attribution] Patient tagged with unregistered referral code",
        extra={"patient_id": patient_id, "clinic_id": clinic_id, "code": code},
    )
    return True
