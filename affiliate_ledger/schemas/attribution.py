# affiliate_ledger/schemas/attribution.py
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from affiliate_ledger.core.errors import AttributionFailureReason

Confidence = Literal["high", "medium", "low"]

# Result model names beyond the weighting models.
INTAKE_DIRECT = "INTAKE_DIRECT"
INTAKE_TOUCH_ONLY = "INTAKE_TOUCH_ONLY"
STORED = "STORED"


class AttributionRequest(BaseModel):
    clinic_id: int
    visitor_fingerprint: Optional[str] = Field(default=None, max_length=255)
    cookie_id: Optional[str] = Field(default=None, max_length=255)
    is_new_patient: bool = True


class WeightedTouchOut(BaseModel):
    touch_id: int
    affiliate_id: int
    ref_code: str
    created_at: datetime
    weight: float

    model_config = ConfigDict(from_attributes=True)


class AttributionResult(BaseModel):
    affiliate_id: int
    ref_code: str
    touch_id: Optional[int] = None
    model: str
    confidence: Confidence
    weight: float = 1.0
    touches: List[WeightedTouchOut] = Field(default_factory=list)


class IntakeAttributionOutcome(BaseModel):
    """
    Structured result of an intake attribution attempt.
    `retryable` is only ever true for DATABASE_ERROR.
    """

    success: bool
    result: Optional[AttributionResult] = None
    failure_reason: Optional[AttributionFailureReason] = None
    message: Optional[str] = None
    retryable: bool = False
    other_clinic_name: Optional[str] = None
