# affiliate_ledger/core/errors.py
from __future__ import annotations

import enum
from typing import Any


class AttributionFailureReason(str, enum.Enum):
    CODE_NOT_FOUND = "CODE_NOT_FOUND"
    CODE_INACTIVE = "CODE_INACTIVE"
    AFFILIATE_INACTIVE = "AFFILIATE_INACTIVE"
    CLINIC_MISMATCH = "CLINIC_MISMATCH"
    PATIENT_NOT_FOUND = "PATIENT_NOT_FOUND"
    ALREADY_ATTRIBUTED = "ALREADY_ATTRIBUTED"  # informational, the call still succeeded
    DATABASE_ERROR = "DATABASE_ERROR"
    INVALID_CODE = "INVALID_CODE"


class PayoutFailureReason(str, enum.Enum):
    PAYOUT_ALREADY_PENDING = "PAYOUT_ALREADY_PENDING"
    NO_VERIFIED_METHOD = "NO_VERIFIED_METHOD"
    AMOUNT_BELOW_MINIMUM = "AMOUNT_BELOW_MINIMUM"
    AMOUNT_EXCEEDS_BALANCE = "AMOUNT_EXCEEDS_BALANCE"
    AFFILIATE_NOT_FOUND = "AFFILIATE_NOT_FOUND"
    PAYOUT_RETRYABLE = "PAYOUT_RETRYABLE"
    PAYOUT_NOT_FOUND = "PAYOUT_NOT_FOUND"
    INVALID_PAYOUT_STATE = "INVALID_PAYOUT_STATE"


class PayoutError(Exception):
    """
    Business-rule rejection from the payout protocol.
    `message` is user-facing; `context` carries the numbers behind it.
    """

    def __init__(self, reason: PayoutFailureReason, message: str, **context: Any) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.context = context

    @property
    def retryable(self) -> bool:
        return self.reason == PayoutFailureReason.PAYOUT_RETRYABLE

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.reason.value, "message": self.message, **self.context}


def format_cents(amount_cents: int) -> str:
    return f"${amount_cents / 100:,.2f}"
