# affiliate_ledger/models/affiliate_commission_event.py
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from affiliate_ledger.db.base import Base


class AffiliateCommissionEvent(Base):
    """
    Commission ledger: one line per commissionable payment.

    Lifecycle:
      PENDING -> APPROVED -> PAID
      PENDING | APPROVED -> REVERSED (refund / chargeback)

    NOTE:
      - amount_cents is the commission, event_amount_cents the underlying payment.
      - amount_cents is stored verbatim so plan edits never rewrite history.
      - payout_id is set only by the withdrawal protocol.
      - calculation_details holds a versioned CommissionCalculationDetails payload;
        decode it with schemas.commission.CommissionCalculationDetails.
    """

    __tablename__ = "affiliate_commission_events"
    __table_args__ = (
        UniqueConstraint("affiliate_id", "stripe_event_id", name="uq_affiliate_commission_events_affiliate_stripe_event"),
        Index("ix_affiliate_commission_events_affiliate_status", "affiliate_id", "status"),
        Index("ix_affiliate_commission_events_clinic_object", "clinic_id", "stripe_object_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    patient_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True,
    )

    stripe_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_object_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_event_type: Mapped[str] = mapped_column(String(100), nullable=False)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    event_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # PENDING | APPROVED | PAID | REVERSED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", server_default="PENDING")

    commission_plan_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("affiliate_commission_plans.id", ondelete="SET NULL"),
        nullable=True,
    )

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    hold_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # audit only: refund/dispute arrived after the funds were claimed by a payout
    clawback_flagged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clawback_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)

    payout_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("affiliate_payouts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    calculation_details: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
