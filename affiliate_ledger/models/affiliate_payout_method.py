# affiliate_ledger/models/affiliate_payout_method.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from affiliate_ledger.db.base import Base

_DEFAULT_VERIFIED = text("is_default AND is_verified")


class AffiliatePayoutMethod(Base):
    __tablename__ = "affiliate_payout_methods"
    __table_args__ = (
        UniqueConstraint("affiliate_id", "method_type", name="uq_affiliate_payout_methods_affiliate_type"),
        # exactly one usable destination per affiliate
        Index(
            "uq_affiliate_payout_methods_default_verified",
            "affiliate_id",
            unique=True,
            postgresql_where=_DEFAULT_VERIFIED,
            sqlite_where=_DEFAULT_VERIFIED,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    affiliate_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # STRIPE_CONNECT | PAYPAL | BANK_WIRE | CHECK | MANUAL
    method_type: Mapped[str] = mapped_column(String(30), nullable=False)

    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
