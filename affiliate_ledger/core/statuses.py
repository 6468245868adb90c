# affiliate_ledger/core/statuses.py
# Closed value sets stored as strings on the ledger tables.

import enum


class AffiliateStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING_APPROVAL = "PENDING_APPROVAL"


class TouchType(str, enum.Enum):
    CLICK = "CLICK"
    IMPRESSION = "IMPRESSION"
    POSTBACK = "POSTBACK"  # direct conversion (intake form promo code)


class AttributionModel(str, enum.Enum):
    FIRST_CLICK = "FIRST_CLICK"
    LAST_CLICK = "LAST_CLICK"
    LINEAR = "LINEAR"
    TIME_DECAY = "TIME_DECAY"
    POSITION = "POSITION"


class CommissionEventStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REVERSED = "REVERSED"


class PlanType(str, enum.Enum):
    FLAT = "FLAT"
    PERCENT = "PERCENT"


class PlanAppliesTo(str, enum.Enum):
    ALL_PAYMENTS = "ALL_PAYMENTS"
    FIRST_PAYMENT_ONLY = "FIRST_PAYMENT_ONLY"


class PayoutStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


IN_FLIGHT_PAYOUT_STATUSES = (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value)


class PayoutMethodType(str, enum.Enum):
    STRIPE_CONNECT = "STRIPE_CONNECT"
    PAYPAL = "PAYPAL"
    BANK_WIRE = "BANK_WIRE"
    CHECK = "CHECK"
    MANUAL = "MANUAL"
