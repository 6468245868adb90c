# affiliate_ledger/models/commission_plan.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from affiliate_ledger.db.base import Base


class AffiliateCommissionPlan(Base):
    __tablename__ = "affiliate_commission_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # FLAT | PERCENT
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    flat_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # basis points: 1000 = 10%
    percent_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # first / recurring payment rates; NULL falls back to the default rates above
    initial_flat_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    initial_percent_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recurring_flat_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recurring_percent_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)

    recurring_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    # months of a subscription that earn commission; NULL = no limit
    recurring_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # share (percent) paid on renewals after month 12; NULL = no decay
    recurring_decay_pct: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tier_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    # ALL_PAYMENTS | FIRST_PAYMENT_ONLY
    applies_to: Mapped[str] = mapped_column(String(30), nullable=False, default="ALL_PAYMENTS", server_default="ALL_PAYMENTS")

    hold_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    clawback_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AffiliatePlanAssignment(Base):
    __tablename__ = "affiliate_plan_assignments"
    __table_args__ = (
        Index("ix_affiliate_plan_assignments_affiliate_from", "affiliate_id", "effective_from"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
    )
    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
    )
    commission_plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="RESTRICT"),
        nullable=False,
    )

    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AffiliateCommissionTier(Base):
    """
    Performance tier of a plan. An affiliate qualifies once both lifetime
    thresholds are met; the highest qualifying level wins and its rates
    replace the plan's.
    """

    __tablename__ = "affiliate_commission_tiers"
    __table_args__ = (
        Index("ix_affiliate_commission_tiers_plan_level", "commission_plan_id", "level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    commission_plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)

    min_conversions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    min_revenue_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")

    percent_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    flat_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # added to every commission earned at this tier
    bonus_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
