# affiliate_ledger/models/affiliate_attribution_config.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from affiliate_ledger.db.base import Base


class AffiliateAttributionConfig(Base):
    """
    Per-clinic attribution policy. Written by clinic admin flows, read-only here.
    """

    __tablename__ = "affiliate_attribution_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # FIRST_CLICK | LAST_CLICK | LINEAR | TIME_DECAY | POSITION
    new_patient_model: Mapped[str] = mapped_column(String(20), nullable=False, default="FIRST_CLICK", server_default="FIRST_CLICK")
    returning_patient_model: Mapped[str] = mapped_column(String(20), nullable=False, default="LAST_CLICK", server_default="LAST_CLICK")

    cookie_window_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default="30")
    enable_fingerprinting: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
