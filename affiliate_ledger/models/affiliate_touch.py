# affiliate_ledger/models/affiliate_touch.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from affiliate_ledger.db.base import Base


class AffiliateTouch(Base):
    """
    Immutable record of a visitor's exposure to a ref code.

    The only post-insert write is the conversion linkage
    (converted_patient_id / converted_at), set once.
    """

    __tablename__ = "affiliate_touches"
    __table_args__ = (
        CheckConstraint(
            "visitor_fingerprint IS NOT NULL OR cookie_id IS NOT NULL",
            name="ck_affiliate_touches_identifier",
        ),
        Index("ix_affiliate_touches_clinic_fingerprint", "clinic_id", "visitor_fingerprint"),
        Index("ix_affiliate_touches_clinic_cookie", "clinic_id", "cookie_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
    )
    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    ref_code: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    visitor_fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cookie_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # CLICK | IMPRESSION | POSTBACK
    touch_type: Mapped[str] = mapped_column(String(20), nullable=False, default="CLICK", server_default="CLICK")

    landing_page: Mapped[str | None] = mapped_column(String(500), nullable=True)
    utm_source: Mapped[str | None] = mapped_column(String(200), nullable=True)
    utm_medium: Mapped[str | None] = mapped_column(String(200), nullable=True)
    utm_campaign: Mapped[str | None] = mapped_column(String(200), nullable=True)

    converted_patient_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("patients.id", ondelete="SET NULL"),
        nullable=True,
    )
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
