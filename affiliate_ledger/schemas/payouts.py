# affiliate_ledger/schemas/payouts.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WithdrawalRequest(BaseModel):
    amount_cents: int = Field(gt=0)


class WithdrawalResult(BaseModel):
    payout_id: int
    requested_amount_cents: int
    amount_cents: int
    fee_cents: int
    net_amount_cents: int
    method_type: str
    status: str
    event_ids: List[int] = Field(default_factory=list)


class PayoutOut(BaseModel):
    id: int
    affiliate_id: int
    clinic_id: int
    requested_amount_cents: int
    amount_cents: int
    fee_cents: int
    net_amount_cents: int
    currency: str
    status: str
    method_type: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    commission_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class PayoutPageOut(BaseModel):
    items: List[PayoutOut]
    limit: int
    offset: int
    total: int


class PayoutFailIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
