# affiliate_ledger/models/affiliate.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from affiliate_ledger.db.base import Base


class Affiliate(Base):
    """
    Referral partner.

    The affiliate row is also the serialization point for withdrawals:
    the payout protocol takes `SELECT ... FOR UPDATE` on it.
    """

    __tablename__ = "affiliates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    display_name: Mapped[str] = mapped_column(String(200), nullable=False)

    # ACTIVE | INACTIVE | SUSPENDED | PENDING_APPROVAL
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="ACTIVE", server_default="ACTIVE")

    # Incremented by attribution (conversions) and commission events (revenue).
    lifetime_conversions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_revenue_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
