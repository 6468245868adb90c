# tests/test_commission_ledger.py
from __future__ import annotations

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from affiliate_ledger.core.clock import ensure_utc
from affiliate_ledger.core.commission_ledger import (
    AFFILIATE_NOT_ACTIVE,
    ALREADY_PROCESSED,
    ALREADY_REVERSED,
    CLAWBACK_DISABLED,
    FIRST_PAYMENT_ONLY,
    NO_ACTIVE_PLAN,
    NO_ATTRIBUTION,
    NO_COMMISSION_EVENT,
    RECURRING_NOT_ENABLED,
    ZERO_COMMISSION,
    approve_matured_commissions,
    compute_hold_until,
    record_payment_commission,
    reverse_commission_for_refund,
)
from affiliate_ledger.core.commission_plans import (
    calculate_commission_breakdown,
    effective_rates,
    rate_label,
    recurring_multiplier,
)
from affiliate_ledger.core.config import Settings
from affiliate_ledger.core.earnings import get_commission_history, get_earnings_summary
from affiliate_ledger.core.payouts import complete_payout, request_withdrawal
from affiliate_ledger.core.statuses import CommissionEventStatus, PayoutStatus, PlanAppliesTo, PlanType
from affiliate_ledger.models.affiliate import Affiliate
from affiliate_ledger.models.affiliate_commission_event import AffiliateCommissionEvent
from affiliate_ledger.models.affiliate_payout import AffiliatePayout
from affiliate_ledger.models.commission_plan import AffiliateCommissionPlan, AffiliateCommissionTier
from affiliate_ledger.schemas.commission import CommissionCalculationDetails, PaymentEvent, RefundEvent

from factories import (
    create_affiliate,
    create_clinic,
    create_commission_event,
    create_patient,
    create_payout_method,
    create_plan,
    create_tier,
    utcnow,
)

pytestmark = pytest.mark.asyncio(loop_scope="session")


def payment(clinic_id: int, patient_id: int, amount_cents: int = 10000, **overrides) -> PaymentEvent:
    data = {
        "clinic_id": clinic_id,
        "patient_id": patient_id,
        "stripe_event_id": f"evt_{uuid.uuid4().hex}",
        "stripe_object_id": f"pi_{uuid.uuid4().hex}",
        "stripe_event_type": "payment_intent.succeeded",
        "amount_cents": amount_cents,
        "occurred_at": utcnow(),
        "is_first_payment": False,
    }
    data.update(overrides)
    return PaymentEvent(**data)


def refund(clinic_id: int, stripe_object_id: str, reason: str = "refund") -> RefundEvent:
    return RefundEvent(
        clinic_id=clinic_id,
        stripe_event_id=f"evt_{uuid.uuid4().hex}",
        stripe_object_id=stripe_object_id,
        stripe_event_type="charge.refunded" if reason == "refund" else "charge.dispute.created",
        amount_cents=10000,
        occurred_at=utcnow(),
        reason=reason,
    )


async def _event(db, event_id: int) -> AffiliateCommissionEvent:
    stmt = (
        select(AffiliateCommissionEvent)
        .where(AffiliateCommissionEvent.id == event_id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one()


async def _attributed_setup(db, **plan_kwargs):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    patient = await create_patient(db, clinic.id, attribution_affiliate_id=affiliate.id)
    plan = await create_plan(db, affiliate, **plan_kwargs)
    return clinic, affiliate, patient, plan


# -----------------------------
# pure helpers
# -----------------------------
@pytest.mark.parametrize(
    "amount,bps,expected",
    [
        (10000, 2000, 2000),
        (9999, 1000, 1000),  # 999.9 -> 1000
        (12345, 1000, 1235),  # 1234.5 rounds half up
        (1, 100, 0),
        (0, 2000, 0),
    ],
)
def test_percent_commission_rounds_half_up(amount, bps, expected):
    plan = AffiliateCommissionPlan(plan_type=PlanType.PERCENT.value, percent_bps=bps)
    assert calculate_commission_breakdown(amount, plan).total_commission_cents == expected


def test_flat_commission_ignores_amount():
    plan = AffiliateCommissionPlan(plan_type=PlanType.FLAT.value, flat_amount_cents=5000)
    assert calculate_commission_breakdown(1, plan).total_commission_cents == 5000
    assert calculate_commission_breakdown(999999, plan).total_commission_cents == 5000


def test_recurring_multiplier_window_and_decay():
    assert recurring_multiplier(1, None, None) == Decimal(1)
    assert recurring_multiplier(12, 24, 50) == Decimal(1)
    assert recurring_multiplier(13, 24, 50) == Decimal("0.5")
    assert recurring_multiplier(24, 24, None) == Decimal(1)
    assert recurring_multiplier(25, 24, 50) == Decimal(0)


def test_effective_rates_fall_back_to_plan_rates():
    plan = AffiliateCommissionPlan(
        plan_type=PlanType.PERCENT.value,
        percent_bps=2000,
        flat_amount_cents=None,
        initial_percent_bps=3000,
        recurring_percent_bps=None,
    )
    assert effective_rates(plan, is_recurring=False) == (None, 3000)
    assert effective_rates(plan, is_recurring=True) == (None, 2000)


def test_tier_overrides_rate_and_adds_bonus():
    plan = AffiliateCommissionPlan(plan_type=PlanType.PERCENT.value, percent_bps=2000)
    tier = AffiliateCommissionTier(name="Gold", level=2, percent_bps=2500, bonus_cents=300)

    breakdown = calculate_commission_breakdown(10000, plan, tier=tier)

    assert breakdown.base_commission_cents == 2500
    assert breakdown.tier_bonus_cents == 300
    assert breakdown.total_commission_cents == 2800
    assert breakdown.tier_name == "Gold"
    assert breakdown.rate_label == "25%"


def test_recurring_decay_scales_total():
    plan = AffiliateCommissionPlan(
        plan_type=PlanType.PERCENT.value,
        percent_bps=2000,
        recurring_percent_bps=1000,
        recurring_enabled=True,
        recurring_months=None,
        recurring_decay_pct=50,
    )
    assert calculate_commission_breakdown(10001, plan, is_recurring=True, recurring_month=2).total_commission_cents == 1000
    decayed = calculate_commission_breakdown(10001, plan, is_recurring=True, recurring_month=14)
    assert decayed.recurring_multiplier == Decimal("0.5")
    assert decayed.total_commission_cents == 500


def test_rate_label():
    assert rate_label(PlanType.PERCENT.value, None, 1250) == "12.5%"
    assert rate_label(PlanType.FLAT.value, 5000, None) == "5000c flat"


def test_hold_until():
    occurred = utcnow()
    assert compute_hold_until(occurred, 14) == occurred + timedelta(days=14)
    assert compute_hold_until(occurred, 0) is None


def test_calculation_details_parse():
    assert CommissionCalculationDetails.parse(None) is None
    assert CommissionCalculationDetails.parse({}) is None
    details = CommissionCalculationDetails.parse(
        {
            "version": 1,
            "plan_id": 3,
            "plan_name": "Standard",
            "plan_type": "PERCENT",
            "percent_bps": 2000,
            "applies_to": "ALL_PAYMENTS",
            "hold_days": 14,
            "event_amount_cents": 10000,
        }
    )
    assert details.plan_id == 3
    assert details.flat_amount_cents is None


# -----------------------------
# recording
# -----------------------------
async def test_percent_commission_is_pending_with_hold(db):
    clinic, affiliate, patient, plan = await _attributed_setup(db, percent_bps=2000, hold_days=14)
    evt = payment(clinic.id, patient.id, 10000)

    result = await record_payment_commission(db, evt)

    assert result.success and not result.skipped
    assert result.commission_amount_cents == 2000

    row = await _event(db, result.commission_event_id)
    assert row.status == CommissionEventStatus.PENDING.value
    assert row.amount_cents == 2000
    assert row.event_amount_cents == 10000
    assert row.commission_plan_id == plan.id
    assert ensure_utc(row.hold_until) == ensure_utc(evt.occurred_at) + timedelta(days=14)

    details = CommissionCalculationDetails.parse(row.calculation_details)
    assert details.plan_id == plan.id
    assert details.percent_bps == 2000
    assert details.event_amount_cents == 10000

    await db.refresh(affiliate)
    assert affiliate.lifetime_revenue_cents == 10000


async def test_replayed_payment_is_already_processed(db):
    clinic, affiliate, patient, _ = await _attributed_setup(db)
    evt = payment(clinic.id, patient.id, 10000)

    first = await record_payment_commission(db, evt)
    second = await record_payment_commission(db, evt)

    assert second.skipped is True
    assert second.skip_reason == ALREADY_PROCESSED
    assert second.commission_event_id == first.commission_event_id

    rows = (
        await db.execute(select(AffiliateCommissionEvent).where(AffiliateCommissionEvent.affiliate_id == affiliate.id))
    ).scalars().all()
    assert len(rows) == 1

    await db.refresh(affiliate)
    assert affiliate.lifetime_revenue_cents == 10000


async def test_unattributed_patient_is_skipped(db):
    clinic = await create_clinic(db)
    patient = await create_patient(db, clinic.id)

    result = await record_payment_commission(db, payment(clinic.id, patient.id))

    assert result.success and result.skipped
    assert result.skip_reason == NO_ATTRIBUTION


async def test_inactive_affiliate_is_skipped(db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id, status="INACTIVE")
    patient = await create_patient(db, clinic.id, attribution_affiliate_id=affiliate.id)
    await create_plan(db, affiliate)

    result = await record_payment_commission(db, payment(clinic.id, patient.id))
    assert result.skip_reason == AFFILIATE_NOT_ACTIVE


async def test_no_plan_is_skipped(db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    patient = await create_patient(db, clinic.id, attribution_affiliate_id=affiliate.id)

    result = await record_payment_commission(db, payment(clinic.id, patient.id))
    assert result.skip_reason == NO_ACTIVE_PLAN


async def test_plan_assignment_in_the_future_does_not_apply(db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    patient = await create_patient(db, clinic.id, attribution_affiliate_id=affiliate.id)
    await create_plan(db, affiliate, effective_from=utcnow() + timedelta(days=3))

    result = await record_payment_commission(db, payment(clinic.id, patient.id))
    assert result.skip_reason == NO_ACTIVE_PLAN


async def test_first_payment_only_plan(db):
    clinic, _, patient, _ = await _attributed_setup(db, applies_to=PlanAppliesTo.FIRST_PAYMENT_ONLY.value)

    renewal = await record_payment_commission(db, payment(clinic.id, patient.id, is_first_payment=False))
    first = await record_payment_commission(db, payment(clinic.id, patient.id, is_first_payment=True))

    assert renewal.skip_reason == FIRST_PAYMENT_ONLY
    assert first.commission_amount_cents == 2000


async def test_flat_plan_records_flat_amount(db):
    clinic, _, patient, _ = await _attributed_setup(
        db, plan_type=PlanType.FLAT.value, percent_bps=None, flat_amount_cents=5000
    )

    result = await record_payment_commission(db, payment(clinic.id, patient.id, 1200))
    assert result.commission_amount_cents == 5000


async def test_zero_commission_is_skipped(db):
    clinic, _, patient, _ = await _attributed_setup(db, percent_bps=100)

    result = await record_payment_commission(db, payment(clinic.id, patient.id, 1))
    assert result.skip_reason == ZERO_COMMISSION


async def test_zero_hold_is_approved_by_next_sweep(db):
    clinic, _, patient, _ = await _attributed_setup(db, hold_days=0)
    result = await record_payment_commission(db, payment(clinic.id, patient.id))

    row = await _event(db, result.commission_event_id)
    assert row.hold_until is None

    assert await approve_matured_commissions(db, clinic_id=clinic.id) == 1
    assert (await _event(db, row.id)).status == CommissionEventStatus.APPROVED.value


async def test_recurring_payment_needs_recurring_enabled(db):
    clinic, _, patient, _ = await _attributed_setup(db)

    result = await record_payment_commission(
        db, payment(clinic.id, patient.id, is_recurring=True, recurring_month=2)
    )
    assert result.skip_reason == RECURRING_NOT_ENABLED


async def test_recurring_rate_window_and_decay(db):
    clinic, _, patient, _ = await _attributed_setup(
        db,
        percent_bps=2000,
        recurring_enabled=True,
        recurring_percent_bps=1000,
        recurring_months=24,
        recurring_decay_pct=50,
    )

    first_year = await record_payment_commission(
        db, payment(clinic.id, patient.id, 10000, is_recurring=True, recurring_month=3)
    )
    second_year = await record_payment_commission(
        db, payment(clinic.id, patient.id, 10000, is_recurring=True, recurring_month=13)
    )
    past_window = await record_payment_commission(
        db, payment(clinic.id, patient.id, 10000, is_recurring=True, recurring_month=25)
    )

    assert first_year.commission_amount_cents == 1000
    assert second_year.commission_amount_cents == 500
    assert past_window.skip_reason == ZERO_COMMISSION

    row = await _event(db, second_year.commission_event_id)
    details = CommissionCalculationDetails.parse(row.calculation_details)
    assert details.version == 2
    assert details.is_recurring is True
    assert details.recurring_month == 13
    assert details.recurring_multiplier == "0.5"


async def test_first_payment_only_plan_pays_enabled_renewals(db):
    clinic, _, patient, _ = await _attributed_setup(
        db, applies_to=PlanAppliesTo.FIRST_PAYMENT_ONLY.value, recurring_enabled=True
    )

    renewal = await record_payment_commission(
        db, payment(clinic.id, patient.id, is_first_payment=False, is_recurring=True, recurring_month=2)
    )
    assert renewal.commission_amount_cents == 2000


async def test_tier_applies_once_thresholds_are_met(db):
    clinic, affiliate, patient, plan = await _attributed_setup(db, percent_bps=2000, tier_enabled=True)
    await create_tier(db, plan, name="Silver", level=1, min_conversions=5, percent_bps=2500, bonus_cents=500)
    await create_tier(db, plan, name="Gold", level=2, min_conversions=50, percent_bps=3000)

    base = await record_payment_commission(db, payment(clinic.id, patient.id, 10000))
    assert base.commission_amount_cents == 2000

    affiliate.lifetime_conversions = 10
    await db.commit()

    tiered = await record_payment_commission(db, payment(clinic.id, patient.id, 10000))
    assert tiered.commission_amount_cents == 3000

    details = CommissionCalculationDetails.parse((await _event(db, tiered.commission_event_id)).calculation_details)
    assert details.tier_name == "Silver"
    assert details.base_commission_cents == 2500
    assert details.tier_bonus_cents == 500


# -----------------------------
# hold sweep
# -----------------------------
async def test_sweep_respects_hold(db):
    clinic, _, patient, _ = await _attributed_setup(db, hold_days=14)
    occurred = utcnow() - timedelta(days=1)
    result = await record_payment_commission(db, payment(clinic.id, patient.id, occurred_at=occurred))

    assert await approve_matured_commissions(db, now=occurred + timedelta(days=13)) == 0
    assert (await _event(db, result.commission_event_id)).status == CommissionEventStatus.PENDING.value

    assert await approve_matured_commissions(db, now=occurred + timedelta(days=14, seconds=1)) == 1
    row = await _event(db, result.commission_event_id)
    assert row.status == CommissionEventStatus.APPROVED.value
    assert row.approved_at is not None

    # idempotent
    assert await approve_matured_commissions(db, now=occurred + timedelta(days=30)) == 0


async def test_sweep_can_be_scoped_to_a_clinic(db):
    clinic_a = await create_clinic(db)
    clinic_b = await create_clinic(db)
    aff_a = await create_affiliate(db, clinic_a.id)
    aff_b = await create_affiliate(db, clinic_b.id)
    await create_commission_event(db, aff_a, 1000, status=CommissionEventStatus.PENDING.value)
    await create_commission_event(db, aff_b, 1000, status=CommissionEventStatus.PENDING.value)
    await db.commit()

    assert await approve_matured_commissions(db, clinic_id=clinic_a.id) == 1
    assert await approve_matured_commissions(db) == 1


# -----------------------------
# reversal
# -----------------------------
async def test_refund_reverses_unpaid_event(db):
    clinic, affiliate, patient, _ = await _attributed_setup(db)
    evt = payment(clinic.id, patient.id)
    recorded = await record_payment_commission(db, evt)
    await approve_matured_commissions(db, now=utcnow() + timedelta(days=15))

    result = await reverse_commission_for_refund(db, refund(clinic.id, evt.stripe_object_id, "chargeback"))

    assert result.success and not result.skipped
    assert result.reversed_event_ids == [recorded.commission_event_id]

    row = await _event(db, recorded.commission_event_id)
    assert row.status == CommissionEventStatus.REVERSED.value
    assert row.reversal_reason == "chargeback"
    assert row.reversed_at is not None

    again = await reverse_commission_for_refund(db, refund(clinic.id, evt.stripe_object_id))
    assert again.skipped and again.skip_reason == ALREADY_REVERSED

    summary = await get_earnings_summary(db, affiliate_id=affiliate.id)
    assert summary.reversed_cents == 2000
    assert summary.available_cents == 0
    assert summary.lifetime_earned_cents == 0


async def _payout(db, payout_id: int) -> AffiliatePayout:
    stmt = select(AffiliatePayout).where(AffiliatePayout.id == payout_id).execution_options(populate_existing=True)
    return (await db.execute(stmt)).scalar_one()


async def test_refund_of_claimed_event_shrinks_in_flight_payout(db, sessionmaker):
    clinic, affiliate, patient, _ = await _attributed_setup(db, percent_bps=2000, hold_days=0)
    await create_payout_method(db, affiliate)
    await db.commit()

    refunded = payment(clinic.id, patient.id, 30000, occurred_at=utcnow() - timedelta(days=2))
    kept = payment(clinic.id, patient.id, 30000, occurred_at=utcnow() - timedelta(days=1))
    rec_refunded = await record_payment_commission(db, refunded)
    rec_kept = await record_payment_commission(db, kept)
    assert await approve_matured_commissions(db, clinic_id=clinic.id) == 2

    withdrawal = await request_withdrawal(sessionmaker, affiliate_id=affiliate.id, amount_cents=12000)
    assert withdrawal.event_ids == [rec_refunded.commission_event_id, rec_kept.commission_event_id]

    result = await reverse_commission_for_refund(db, refund(clinic.id, refunded.stripe_object_id, "chargeback"))
    assert result.reversed_event_ids == [rec_refunded.commission_event_id]

    row = await _event(db, rec_refunded.commission_event_id)
    assert row.status == CommissionEventStatus.REVERSED.value
    assert row.payout_id is None

    payout = await _payout(db, withdrawal.payout_id)
    assert payout.status == PayoutStatus.PENDING.value
    assert payout.amount_cents == 6000
    assert payout.net_amount_cents == 6000

    completed = await complete_payout(db, payout_id=withdrawal.payout_id, clinic_id=clinic.id)

    assert (await _event(db, rec_refunded.commission_event_id)).status == CommissionEventStatus.REVERSED.value
    assert (await _event(db, rec_kept.commission_event_id)).status == CommissionEventStatus.PAID.value

    summary = await get_earnings_summary(db, affiliate_id=affiliate.id)
    assert summary.paid_cents == completed.amount_cents == 6000
    assert summary.reversed_cents == 6000
    assert summary.is_balanced


async def test_refund_of_only_claimed_event_fails_the_payout(db, sessionmaker):
    clinic, affiliate, patient, _ = await _attributed_setup(db, percent_bps=2000, hold_days=0)
    await create_payout_method(db, affiliate)
    await db.commit()

    evt = payment(clinic.id, patient.id, 30000, occurred_at=utcnow() - timedelta(days=1))
    await record_payment_commission(db, evt)
    await approve_matured_commissions(db, clinic_id=clinic.id)
    first = await request_withdrawal(sessionmaker, affiliate_id=affiliate.id, amount_cents=6000)

    await reverse_commission_for_refund(db, refund(clinic.id, evt.stripe_object_id))

    payout = await _payout(db, first.payout_id)
    assert payout.status == PayoutStatus.FAILED.value
    assert payout.amount_cents == 0
    assert payout.failed_at is not None

    summary = await get_earnings_summary(db, affiliate_id=affiliate.id)
    assert summary.in_flight_payout_id is None
    assert summary.processing_cents == 0
    assert summary.is_balanced

    await create_commission_event(db, affiliate, 6000)
    await db.commit()
    second = await request_withdrawal(sessionmaker, affiliate_id=affiliate.id, amount_cents=6000)
    assert second.payout_id != first.payout_id


async def test_refund_without_commission_is_skipped(db):
    clinic = await create_clinic(db)
    result = await reverse_commission_for_refund(db, refund(clinic.id, "pi_unknown"))
    assert result.skip_reason == NO_COMMISSION_EVENT


async def test_refund_finds_event_by_lineage_not_amount(db):
    clinic, affiliate, patient, _ = await _attributed_setup(db)
    a = payment(clinic.id, patient.id, 10000)
    b = payment(clinic.id, patient.id, 10000)
    rec_a = await record_payment_commission(db, a)
    rec_b = await record_payment_commission(db, b)

    await reverse_commission_for_refund(db, refund(clinic.id, b.stripe_object_id))

    assert (await _event(db, rec_a.commission_event_id)).status == CommissionEventStatus.PENDING.value
    assert (await _event(db, rec_b.commission_event_id)).status == CommissionEventStatus.REVERSED.value


async def test_refund_on_paid_event_without_clawback_is_noop(db):
    clinic, affiliate, _, plan = await _attributed_setup(db, clawback_enabled=False)
    row = await create_commission_event(
        db, affiliate, 2000, status=CommissionEventStatus.PAID.value, commission_plan_id=plan.id
    )
    await db.commit()

    result = await reverse_commission_for_refund(db, refund(clinic.id, row.stripe_object_id))

    assert result.skipped and result.skip_reason == CLAWBACK_DISABLED
    reloaded = await _event(db, row.id)
    assert reloaded.status == CommissionEventStatus.PAID.value
    assert reloaded.clawback_flagged_at is None


async def test_refund_on_paid_event_with_clawback_flags_it(db):
    clinic, affiliate, _, plan = await _attributed_setup(db, clawback_enabled=True)
    row = await create_commission_event(
        db, affiliate, 2000, status=CommissionEventStatus.PAID.value, commission_plan_id=plan.id
    )
    await db.commit()

    result = await reverse_commission_for_refund(db, refund(clinic.id, row.stripe_object_id, "chargeback"))

    assert result.success and not result.skipped
    assert result.clawback_flagged_event_ids == [row.id]
    reloaded = await _event(db, row.id)
    assert reloaded.status == CommissionEventStatus.PAID.value
    assert reloaded.clawback_flagged_at is not None
    assert reloaded.clawback_reason == "chargeback"


# -----------------------------
# history + conservation
# -----------------------------
async def test_commission_history_filters_and_pages(db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    base = utcnow() - timedelta(days=10)
    for i in range(3):
        await create_commission_event(db, affiliate, 1000, occurred_at=base + timedelta(days=i))
    await create_commission_event(
        db, affiliate, 500, status=CommissionEventStatus.PENDING.value, occurred_at=base + timedelta(days=5)
    )
    await db.commit()

    page = await get_commission_history(db, affiliate_id=affiliate.id, limit=2, offset=0)
    assert page.total == 4
    assert len(page.items) == 2
    assert page.items[0].status == CommissionEventStatus.PENDING.value

    approved = await get_commission_history(db, affiliate_id=affiliate.id, status="APPROVED")
    assert approved.total == 3
    assert all(item.status == "APPROVED" for item in approved.items)


async def test_buckets_always_balance(db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_commission_event(db, affiliate, 1000, status=CommissionEventStatus.PENDING.value)
    await create_commission_event(db, affiliate, 2000, status=CommissionEventStatus.APPROVED.value)
    await create_commission_event(db, affiliate, 4000, status=CommissionEventStatus.PAID.value)
    await create_commission_event(db, affiliate, 8000, status=CommissionEventStatus.REVERSED.value)
    await db.commit()

    summary = await get_earnings_summary(db, affiliate_id=affiliate.id)

    assert summary.pending_cents == 1000
    assert summary.available_cents == 2000
    assert summary.paid_cents == 4000
    assert summary.reversed_cents == 8000
    assert summary.lifetime_gross_cents == 15000
    assert summary.lifetime_earned_cents == 7000
    assert summary.is_balanced


async def test_payment_to_payout_to_refund(db, sessionmaker):
    clinic, affiliate, patient, _ = await _attributed_setup(db, percent_bps=2000, hold_days=14, clawback_enabled=False)
    await create_payout_method(db, affiliate)
    await db.commit()

    evt = payment(clinic.id, patient.id, 10000, occurred_at=utcnow() - timedelta(days=20))
    recorded = await record_payment_commission(db, evt)
    assert recorded.commission_amount_cents == 2000
    assert await approve_matured_commissions(db) == 1

    withdrawal = await request_withdrawal(
        sessionmaker, affiliate_id=affiliate.id, amount_cents=2000, settings=Settings(MINIMUM_PAYOUT_CENTS=1000)
    )
    assert withdrawal.event_ids == [recorded.commission_event_id]

    processing = await get_earnings_summary(db, affiliate_id=affiliate.id)
    assert processing.available_cents == 0
    assert processing.processing_cents == 2000
    assert processing.in_flight_payout_id == withdrawal.payout_id
    assert processing.is_balanced

    await complete_payout(db, payout_id=withdrawal.payout_id, clinic_id=clinic.id)
    assert (await _event(db, recorded.commission_event_id)).status == CommissionEventStatus.PAID.value

    late_refund = await reverse_commission_for_refund(db, refund(clinic.id, evt.stripe_object_id))
    assert late_refund.skip_reason == CLAWBACK_DISABLED

    summary = await get_earnings_summary(db, affiliate_id=affiliate.id)
    assert summary.paid_cents == 2000
    assert summary.lifetime_paid_cents == 2000
    assert summary.in_flight_payout_id is None
    assert summary.is_balanced

    stored = await db.get(Affiliate, affiliate.id)
    await db.refresh(stored)
    assert stored.lifetime_revenue_cents == 10000
