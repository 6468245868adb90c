# affiliate_ledger/schemas/commission.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentEvent(BaseModel):
    """
    Normalized successful payment, as handed over by the payment webhook layer.
    """

    clinic_id: int
    patient_id: int
    stripe_event_id: str = Field(min_length=1, max_length=255)
    stripe_object_id: str = Field(min_length=1, max_length=255)
    stripe_event_type: str = Field(min_length=1, max_length=100)
    amount_cents: int = Field(ge=0)
    occurred_at: datetime
    is_first_payment: bool = False
    # subscription renewal; recurring_month counts from 1 at the first charge
    is_recurring: bool = False
    recurring_month: Optional[int] = Field(default=None, ge=1)


class RefundEvent(BaseModel):
    clinic_id: int
    stripe_event_id: str = Field(min_length=1, max_length=255)
    stripe_object_id: str = Field(min_length=1, max_length=255)
    stripe_event_type: str = Field(min_length=1, max_length=100)
    amount_cents: int = Field(ge=0)
    occurred_at: datetime
    reason: Literal["refund", "chargeback"] = "refund"


class CommissionCalculationDetails(BaseModel):
    """
    Stored on AffiliateCommissionEvent.calculation_details.
    Bump `version` when the shape changes; decode with `parse`.
    Version 1 rows predate the breakdown fields, which then stay at their defaults.
    """

    version: Literal[1, 2] = 2
    plan_id: int
    plan_name: str
    plan_type: str
    flat_amount_cents: Optional[int] = None
    percent_bps: Optional[int] = None
    applies_to: str
    hold_days: int
    ref_code: Optional[str] = None
    event_amount_cents: int
    is_first_payment: bool = False

    is_recurring: bool = False
    recurring_month: Optional[int] = None
    rate_label: Optional[str] = None
    tier_name: Optional[str] = None
    base_commission_cents: Optional[int] = None
    tier_bonus_cents: int = 0
    recurring_multiplier: str = "1"

    @classmethod
    def parse(cls, raw: Dict[str, Any] | None) -> Optional["CommissionCalculationDetails"]:
        if not raw:
            return None
        return cls.model_validate(raw)


class CommissionResult(BaseModel):
    success: bool
    commission_event_id: Optional[int] = None
    commission_amount_cents: Optional[int] = None
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    # reversal bookkeeping
    reversed_event_ids: List[int] = Field(default_factory=list)
    clawback_flagged_event_ids: List[int] = Field(default_factory=list)


class CommissionEventOut(BaseModel):
    id: int
    affiliate_id: int
    clinic_id: int
    patient_id: Optional[int] = None

    stripe_event_id: str
    stripe_object_id: str
    stripe_event_type: str

    amount_cents: int
    event_amount_cents: int
    status: str

    occurred_at: datetime
    hold_until: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_reason: Optional[str] = None
    payout_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommissionPageOut(BaseModel):
    items: List[CommissionEventOut]
    limit: int
    offset: int
    total: int


class ApproveMaturedOut(BaseModel):
    approved: int
