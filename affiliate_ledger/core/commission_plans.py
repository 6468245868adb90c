# affiliate_ledger/core/commission_plans.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.statuses import PlanAppliesTo, PlanType
from affiliate_ledger.models.affiliate import Affiliate
from affiliate_ledger.models.commission_plan import (
    AffiliateCommissionPlan,
    AffiliateCommissionTier,
    AffiliatePlanAssignment,
)

BPS_DENOMINATOR = Decimal("10000")

# recurring decay starts after the first year of a subscription
RECURRING_DECAY_AFTER_MONTH = 12


class CommissionPlanLookup(Protocol):
    async def get_effective_plan(
        self,
        db: AsyncSession,
        *,
        affiliate_id: int,
        clinic_id: int,
        at: datetime,
    ) -> Optional[AffiliateCommissionPlan]: ...


class AssignmentPlanLookup:
    """
    Plan from the affiliate's latest assignment whose window covers `at`
    (effective_from <= at < effective_to, open-ended when effective_to is NULL).
    Inactive plans are ignored.
    """

    async def get_effective_plan(
        self,
        db: AsyncSession,
        *,
        affiliate_id: int,
        clinic_id: int,
        at: datetime,
    ) -> Optional[AffiliateCommissionPlan]:
        stmt = (
            select(AffiliateCommissionPlan)
            .join(AffiliatePlanAssignment, AffiliatePlanAssignment.commission_plan_id == AffiliateCommissionPlan.id)
            .where(AffiliatePlanAssignment.affiliate_id == affiliate_id)
            .where(AffiliatePlanAssignment.clinic_id == clinic_id)
            .where(AffiliatePlanAssignment.effective_from <= at)
            .where(or_(AffiliatePlanAssignment.effective_to.is_(None), AffiliatePlanAssignment.effective_to > at))
            .where(AffiliateCommissionPlan.is_active.is_(True))
            .order_by(AffiliatePlanAssignment.effective_from.desc(), AffiliatePlanAssignment.id.desc())
            .limit(1)
        )
        return (await db.execute(stmt)).scalar_one_or_none()


async def get_plan(db: AsyncSession, plan_id: int | None) -> Optional[AffiliateCommissionPlan]:
    if plan_id is None:
        return None
    return await db.get(AffiliateCommissionPlan, plan_id)


async def get_affiliate_tier(
    db: AsyncSession,
    *,
    plan_id: int,
    affiliate: Affiliate,
) -> Optional[AffiliateCommissionTier]:
    """
    Highest tier of the plan whose conversion and revenue thresholds the
    affiliate's lifetime stats both meet.
    """
    stmt = (
        select(AffiliateCommissionTier)
        .where(AffiliateCommissionTier.commission_plan_id == plan_id)
        .where(AffiliateCommissionTier.min_conversions <= int(affiliate.lifetime_conversions or 0))
        .where(AffiliateCommissionTier.min_revenue_cents <= int(affiliate.lifetime_revenue_cents or 0))
        .order_by(AffiliateCommissionTier.level.desc(), AffiliateCommissionTier.id.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


def plan_applies(plan: AffiliateCommissionPlan, *, is_first_payment: bool, is_recurring: bool = False) -> bool:
    # FIRST_PAYMENT_ONLY excludes one-off repeat payments; subscription renewals
    # are governed by recurring_enabled instead
    if plan.applies_to == PlanAppliesTo.FIRST_PAYMENT_ONLY.value:
        return is_first_payment or is_recurring
    return True


def _round_cents(value: Decimal) -> int:
    return max(0, int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def _rate_cents(event_amount_cents: int, plan_type: str, flat_amount_cents: int | None, percent_bps: int | None) -> int:
    if plan_type == PlanType.FLAT.value:
        return max(0, int(flat_amount_cents or 0))
    if plan_type == PlanType.PERCENT.value:
        raw = Decimal(int(event_amount_cents)) * Decimal(int(percent_bps or 0)) / BPS_DENOMINATOR
        return _round_cents(raw)
    return 0


def effective_rates(plan: AffiliateCommissionPlan, *, is_recurring: bool) -> tuple[int | None, int | None]:
    """
    (flat_amount_cents, percent_bps) for the payment kind. Initial and
    recurring rates fall back to the plan's default rates when unset.
    """
    if is_recurring:
        flat = plan.recurring_flat_amount_cents
        bps = plan.recurring_percent_bps
    else:
        flat = plan.initial_flat_amount_cents
        bps = plan.initial_percent_bps
    return (
        flat if flat is not None else plan.flat_amount_cents,
        bps if bps is not None else plan.percent_bps,
    )


def recurring_multiplier(recurring_month: int, recurring_months: int | None, decay_pct: int | None) -> Decimal:
    """
    1 inside the recurring window, 0 past it. After the first year a plan
    with a decay percentage pays only that share.
    """
    if recurring_months is not None and recurring_month > recurring_months:
        return Decimal(0)
    if decay_pct is not None and recurring_month > RECURRING_DECAY_AFTER_MONTH:
        return Decimal(int(decay_pct)) / Decimal(100)
    return Decimal(1)


def rate_label(plan_type: str, flat_amount_cents: int | None, percent_bps: int | None) -> str:
    if plan_type == PlanType.PERCENT.value:
        return f"{Decimal(int(percent_bps or 0)) / Decimal(100)}%"
    return f"{int(flat_amount_cents or 0)}c flat"


@dataclass(frozen=True)
class CommissionBreakdown:
    base_commission_cents: int
    tier_bonus_cents: int
    recurring_multiplier: Decimal
    total_commission_cents: int
    rate_label: str
    tier_name: Optional[str] = None


def calculate_commission_breakdown(
    event_amount_cents: int,
    plan: AffiliateCommissionPlan,
    *,
    is_recurring: bool = False,
    recurring_month: int | None = None,
    tier: AffiliateCommissionTier | None = None,
) -> CommissionBreakdown:
    """
    FLAT pays the flat amount; PERCENT pays amount * bps / 10000.

    Base rate (initial or recurring), overridden by the tier's rates when a
    tier applies, plus the tier bonus; the recurring multiplier scales the
    sum and the total is rounded half up.
    """
    flat, bps = effective_rates(plan, is_recurring=is_recurring)

    tier_bonus = 0
    if tier is not None:
        if tier.percent_bps is not None:
            bps = tier.percent_bps
        if tier.flat_amount_cents is not None:
            flat = tier.flat_amount_cents
        tier_bonus = max(0, int(tier.bonus_cents or 0))

    base = _rate_cents(event_amount_cents, plan.plan_type, flat, bps)

    multiplier = Decimal(1)
    if is_recurring and plan.recurring_enabled and recurring_month:
        multiplier = recurring_multiplier(recurring_month, plan.recurring_months, plan.recurring_decay_pct)

    return CommissionBreakdown(
        base_commission_cents=base,
        tier_bonus_cents=tier_bonus,
        recurring_multiplier=multiplier,
        total_commission_cents=_round_cents(Decimal(base + tier_bonus) * multiplier),
        rate_label=rate_label(plan.plan_type, flat, bps),
        tier_name=tier.name if tier is not None else None,
    )
