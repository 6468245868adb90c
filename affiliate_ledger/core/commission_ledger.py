# affiliate_ledger/core/commission_ledger.py
"""
Commission ledger.

Turns payment activity into commission events and moves them through
PENDING -> APPROVED -> PAID, or to REVERSED on refund / chargeback.

Recording and reversal are best-effort relative to the payment itself: they
never raise to the payment webhook layer. Failures come back as a
CommissionResult and are logged at ERROR for manual reconciliation.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.clock import ensure_utc, utcnow
from affiliate_ledger.core.commission_plans import (
    AssignmentPlanLookup,
    CommissionPlanLookup,
    calculate_commission_breakdown,
    get_affiliate_tier,
    get_plan,
    plan_applies,
)
from affiliate_ledger.core.payouts import reverse_claimed_event
from affiliate_ledger.core.statuses import AffiliateStatus, CommissionEventStatus
from affiliate_ledger.crud import commission_events as events_crud
from affiliate_ledger.crud.affiliates import get_affiliate, increment_lifetime_revenue
from affiliate_ledger.crud.patients import get_patient
from affiliate_ledger.models.affiliate_commission_event import AffiliateCommissionEvent
from affiliate_ledger.schemas.commission import (
    CommissionCalculationDetails,
    CommissionResult,
    PaymentEvent,
    RefundEvent,
)

logger = logging.getLogger(__name__)

# skip reasons
ALREADY_PROCESSED = "ALREADY_PROCESSED"
NO_ATTRIBUTION = "NO_ATTRIBUTION"
AFFILIATE_NOT_ACTIVE = "AFFILIATE_NOT_ACTIVE"
NO_ACTIVE_PLAN = "NO_ACTIVE_PLAN"
FIRST_PAYMENT_ONLY = "FIRST_PAYMENT_ONLY"
RECURRING_NOT_ENABLED = "RECURRING_NOT_ENABLED"
ZERO_COMMISSION = "ZERO_COMMISSION"
NO_COMMISSION_EVENT = "NO_COMMISSION_EVENT"
ALREADY_REVERSED = "ALREADY_REVERSED"
CLAWBACK_DISABLED = "CLAWBACK_DISABLED"


def _skipped(reason: str, commission_event_id: Optional[int] = None) -> CommissionResult:
    return CommissionResult(success=True, skipped=True, skip_reason=reason, commission_event_id=commission_event_id)


def compute_hold_until(occurred_at: datetime, hold_days: int) -> Optional[datetime]:
    # no hold: eligible for the next sweep
    if hold_days <= 0:
        return None
    return ensure_utc(occurred_at) + timedelta(days=hold_days)


async def record_payment_commission(
    db: AsyncSession,
    event: PaymentEvent,
    *,
    plan_lookup: CommissionPlanLookup | None = None,
) -> CommissionResult:
    """
    Create the commission event for one successful payment.

    Idempotent on (affiliate_id, stripe_event_id): replays are detected before
    the insert; a concurrent duplicate that slips past the check is caught by
    the unique constraint and reported the same way.
    Commits on success.
    """
    plan_lookup = plan_lookup or AssignmentPlanLookup()
    ctx = {
        "clinic_id": event.clinic_id,
        "patient_id": event.patient_id,
        "stripe_event_id": event.stripe_event_id,
        "stripe_object_id": event.stripe_object_id,
        "event_amount_cents": event.amount_cents,
    }
    affiliate_id: Optional[int] = None

    try:
        patient = await get_patient(db, patient_id=event.patient_id, clinic_id=event.clinic_id)
        if patient is None or patient.attribution_affiliate_id is None:
            logger.debug("[Commission] No affiliate attribution for patient", extra=ctx)
            return _skipped(NO_ATTRIBUTION)

        affiliate_id = patient.attribution_affiliate_id
        ctx["affiliate_id"] = affiliate_id

        existing = await events_crud.get_event_for_stripe_event(
            db, affiliate_id=affiliate_id, stripe_event_id=event.stripe_event_id
        )
        if existing is not None:
            logger.debug("[Commission] Event already processed", extra={**ctx, "commission_event_id": existing.id})
            return _skipped(ALREADY_PROCESSED, existing.id)

        affiliate = await get_affiliate(db, affiliate_id)
        if (
            affiliate is None
            or affiliate.clinic_id != event.clinic_id
            or affiliate.status != AffiliateStatus.ACTIVE.value
        ):
            logger.info("[Commission] Affiliate not active or not in clinic", extra=ctx)
            return _skipped(AFFILIATE_NOT_ACTIVE)

        plan = await plan_lookup.get_effective_plan(
            db, affiliate_id=affiliate_id, clinic_id=event.clinic_id, at=event.occurred_at
        )
        if plan is None or not plan.is_active:
            logger.info("[Commission] No active commission plan", extra=ctx)
            return _skipped(NO_ACTIVE_PLAN)

        if not plan_applies(plan, is_first_payment=event.is_first_payment, is_recurring=event.is_recurring):
            logger.debug("[Commission] Plan only applies to first payment", extra={**ctx, "plan_id": plan.id})
            return _skipped(FIRST_PAYMENT_ONLY)

        if event.is_recurring and not plan.recurring_enabled:
            logger.debug("[Commission] Recurring commissions not enabled", extra={**ctx, "plan_id": plan.id})
            return _skipped(RECURRING_NOT_ENABLED)

        tier = await get_affiliate_tier(db, plan_id=plan.id, affiliate=affiliate) if plan.tier_enabled else None
        breakdown = calculate_commission_breakdown(
            event.amount_cents,
            plan,
            is_recurring=event.is_recurring,
            recurring_month=event.recurring_month,
            tier=tier,
        )
        commission_cents = breakdown.total_commission_cents
        if commission_cents <= 0:
            logger.debug(
                "[Commission] Zero commission calculated",
                extra={**ctx, "plan_id": plan.id, "recurring_multiplier": str(breakdown.recurring_multiplier)},
            )
            return _skipped(ZERO_COMMISSION)

        details = CommissionCalculationDetails(
            plan_id=plan.id,
            plan_name=plan.name,
            plan_type=plan.plan_type,
            flat_amount_cents=plan.flat_amount_cents,
            percent_bps=plan.percent_bps,
            applies_to=plan.applies_to,
            hold_days=plan.hold_days,
            ref_code=patient.attribution_ref_code,
            event_amount_cents=event.amount_cents,
            is_first_payment=event.is_first_payment,
            is_recurring=event.is_recurring,
            recurring_month=event.recurring_month,
            rate_label=breakdown.rate_label,
            tier_name=breakdown.tier_name,
            base_commission_cents=breakdown.base_commission_cents,
            tier_bonus_cents=breakdown.tier_bonus_cents,
            recurring_multiplier=str(breakdown.recurring_multiplier),
        )

        row = AffiliateCommissionEvent(
            affiliate_id=affiliate_id,
            clinic_id=event.clinic_id,
            patient_id=event.patient_id,
            stripe_event_id=event.stripe_event_id,
            stripe_object_id=event.stripe_object_id,
            stripe_event_type=event.stripe_event_type,
            amount_cents=commission_cents,
            event_amount_cents=event.amount_cents,
            status=CommissionEventStatus.PENDING.value,
            commission_plan_id=plan.id,
            occurred_at=event.occurred_at,
            hold_until=compute_hold_until(event.occurred_at, plan.hold_days),
            calculation_details=details.model_dump(mode="json"),
        )
        db.add(row)
        await db.flush()
        await increment_lifetime_revenue(db, affiliate_id, event.amount_cents)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = None
        if affiliate_id is not None:
            existing = await events_crud.get_event_for_stripe_event(
                db, affiliate_id=affiliate_id, stripe_event_id=event.stripe_event_id
            )
        if existing is None:
            logger.error("[Commission] Integrity error recording commission", extra=ctx, exc_info=True)
            return CommissionResult(success=False, error="Integrity error recording commission")
        logger.debug("[Commission] Duplicate event caught by constraint", extra={**ctx, "commission_event_id": existing.id})
        return _skipped(ALREADY_PROCESSED, existing.id)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("[Commission] Error processing payment", extra={**ctx, "error": str(exc)}, exc_info=True)
        return CommissionResult(success=False, error=str(exc))

    logger.info(
        "[Commission] Commission event created",
        extra={**ctx, "commission_event_id": row.id, "commission_amount_cents": commission_cents, "plan_id": plan.id},
    )
    return CommissionResult(success=True, commission_event_id=row.id, commission_amount_cents=commission_cents)


async def reverse_commission_for_refund(
    db: AsyncSession,
    event: RefundEvent,
    *,
    plan_lookup: CommissionPlanLookup | None = None,
) -> CommissionResult:
    """
    Reverse the commission(s) recorded for a refunded / disputed payment.

    Events are found by stripe_object_id lineage, never by amount.
      - PENDING / APPROVED -> REVERSED; an APPROVED event claimed by a
        PENDING / PROCESSING payout is taken out of it and the payout shrinks
      - already REVERSED -> no-op
      - PAID: no-op unless the plan has clawback enabled, in which case the
        event is flagged for manual recovery
    Commits when anything changed.
    """
    plan_lookup = plan_lookup or AssignmentPlanLookup()
    ctx = {
        "clinic_id": event.clinic_id,
        "stripe_event_id": event.stripe_event_id,
        "stripe_object_id": event.stripe_object_id,
        "reason": event.reason,
    }
    reason = event.reason or event.stripe_event_type
    now = utcnow()

    try:
        rows = await events_crud.list_events_for_object(
            db, clinic_id=event.clinic_id, stripe_object_id=event.stripe_object_id
        )
        if not rows:
            logger.debug("[Commission] No commission event found to reverse", extra=ctx)
            return _skipped(NO_COMMISSION_EVENT)

        reversed_ids: list[int] = []
        flagged_ids: list[int] = []
        skip_reasons: set[str] = set()

        for row in rows:
            row_ctx = {**ctx, "commission_event_id": row.id, "affiliate_id": row.affiliate_id, "status": row.status}

            if row.status == CommissionEventStatus.REVERSED.value:
                logger.info("[Commission] Commission already reversed", extra=row_ctx)
                skip_reasons.add(ALREADY_REVERSED)
                continue

            unpaid = row.status in (CommissionEventStatus.PENDING.value, CommissionEventStatus.APPROVED.value)
            if unpaid and row.payout_id is None:
                if await events_crud.reverse_event_if_unpaid(db, event_id=row.id, reason=reason, at=now):
                    reversed_ids.append(row.id)
                    logger.info("[Commission] Commission reversed", extra={**row_ctx, "amount_cents": row.amount_cents})
                else:
                    skip_reasons.add(ALREADY_REVERSED)
                continue

            # claimed by a payout that has not been paid out yet
            if unpaid and await reverse_claimed_event(db, event=row, reason=reason, at=now):
                reversed_ids.append(row.id)
                logger.info(
                    "[Commission] Claimed commission reversed",
                    extra={**row_ctx, "amount_cents": row.amount_cents, "payout_id": row.payout_id},
                )
                continue

            # PAID, or claimed by a payout that already completed
            plan = await get_plan(db, row.commission_plan_id)
            if plan is None:
                plan = await plan_lookup.get_effective_plan(
                    db, affiliate_id=row.affiliate_id, clinic_id=row.clinic_id, at=ensure_utc(row.occurred_at)
                )
            if plan is None or not plan.clawback_enabled:
                logger.info("[Commission] Refund on paid commission, clawback not enabled", extra=row_ctx)
                skip_reasons.add(CLAWBACK_DISABLED)
                continue

            if await events_crud.flag_clawback(db, event_id=row.id, reason=reason, at=now):
                flagged_ids.append(row.id)
                logger.warning(
                    "[Commission] Clawback required on paid commission, manual recovery needed",
                    extra={**row_ctx, "amount_cents": row.amount_cents, "payout_id": row.payout_id},
                )

        if reversed_ids or flagged_ids:
            await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("[Commission] Error reversing commission", extra={**ctx, "error": str(exc)}, exc_info=True)
        return CommissionResult(success=False, error=str(exc))

    if not reversed_ids and not flagged_ids:
        reason_out = CLAWBACK_DISABLED if CLAWBACK_DISABLED in skip_reasons else ALREADY_REVERSED
        return _skipped(reason_out, rows[0].id)

    return CommissionResult(
        success=True,
        commission_event_id=(reversed_ids or flagged_ids)[0],
        reversed_event_ids=reversed_ids,
        clawback_flagged_event_ids=flagged_ids,
    )


async def approve_matured_commissions(
    db: AsyncSession,
    *,
    now: datetime | None = None,
    clinic_id: int | None = None,
) -> int:
    """
    Hold sweep: PENDING events whose hold has expired (or that had none) become
    APPROVED. Safe to run repeatedly. Returns how many events moved.
    """
    now = now or utcnow()
    try:
        count = await events_crud.approve_matured(db, now=now, clinic_id=clinic_id)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.error("[Commission] Error approving commissions", extra={"clinic_id": clinic_id}, exc_info=True)
        raise

    logger.info("[Commission] Approved pending commissions", extra={"count": count, "clinic_id": clinic_id})
    return count
