# affiliate_ledger/schemas/earnings.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class EarningsSummary(BaseModel):
    affiliate_id: int

    pending_cents: int = 0
    available_cents: int = 0
    # claimed by an unfinished payout, not yet PAID
    processing_cents: int = 0
    paid_cents: int = 0
    reversed_cents: int = 0

    lifetime_paid_cents: int = 0
    lifetime_gross_cents: int = 0
    lifetime_earned_cents: int = 0

    minimum_payout_cents: int
    in_flight_payout_id: Optional[int] = None

    @property
    def is_balanced(self) -> bool:
        return (
            self.available_cents + self.pending_cents + self.lifetime_paid_cents + self.reversed_cents
            == self.lifetime_gross_cents
        )
