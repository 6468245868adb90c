# affiliate_ledger/crud/attribution_config.py
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.config import settings
from affiliate_ledger.core.statuses import AttributionModel
from affiliate_ledger.models.affiliate_attribution_config import AffiliateAttributionConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributionSettings:
    new_patient_model: AttributionModel = AttributionModel.FIRST_CLICK
    returning_patient_model: AttributionModel = AttributionModel.LAST_CLICK
    window_days: int = 30
    enable_fingerprinting: bool = True

    def model_for(self, *, is_new_patient: bool) -> AttributionModel:
        return self.new_patient_model if is_new_patient else self.returning_patient_model


def _parse_model(value: str | None, fallback: AttributionModel, clinic_id: int) -> AttributionModel:
    try:
        return AttributionModel((value or "").strip().upper())
    except ValueError:
        logger.warning(
            "[Attribution] Unknown attribution model in clinic config, using %s",
            fallback.value,
            extra={"clinic_id": clinic_id, "configured_model": value},
        )
        return fallback


def default_attribution_settings() -> AttributionSettings:
    return AttributionSettings(window_days=settings.DEFAULT_ATTRIBUTION_WINDOW_DAYS)


async def get_attribution_config(db: AsyncSession, clinic_id: int) -> AttributionSettings:
    """
    Clinic attribution policy, or the defaults when the clinic never configured one
    (new patients FIRST_CLICK, returning patients LAST_CLICK, 30 day window).
    """
    row = (
        await db.execute(
            select(AffiliateAttributionConfig).where(AffiliateAttributionConfig.clinic_id == clinic_id)
        )
    ).scalar_one_or_none()

    if row is None:
        return default_attribution_settings()

    return AttributionSettings(
        new_patient_model=_parse_model(row.new_patient_model, AttributionModel.FIRST_CLICK, clinic_id),
        returning_patient_model=_parse_model(row.returning_patient_model, AttributionModel.LAST_CLICK, clinic_id),
        window_days=max(0, int(row.cookie_window_days)),
        enable_fingerprinting=bool(row.enable_fingerprinting),
    )
