# Import models here so Alembic can discover metadata.
from affiliate_ledger.models.clinic import Clinic  # noqa: F401
from affiliate_ledger.models.affiliate import Affiliate  # noqa: F401
from affiliate_ledger.models.patient import Patient  # noqa: F401

# Attribution
from affiliate_ledger.models.affiliate_ref_code import AffiliateRefCode  # noqa: F401
from affiliate_ledger.models.affiliate_touch import AffiliateTouch  # noqa: F401
from affiliate_ledger.models.affiliate_attribution_config import AffiliateAttributionConfig  # noqa: F401

# Commission ledger + payouts
from affiliate_ledger.models.commission_plan import (  # noqa: F401
    AffiliateCommissionPlan,
    AffiliateCommissionTier,
    AffiliatePlanAssignment,
)
from affiliate_ledger.models.affiliate_payout import AffiliatePayout  # noqa: F401
from affiliate_ledger.models.affiliate_payout_method import AffiliatePayoutMethod  # noqa: F401
from affiliate_ledger.models.affiliate_commission_event import AffiliateCommissionEvent  # noqa: F401
