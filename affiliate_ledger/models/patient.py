# affiliate_ledger/models/patient.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from affiliate_ledger.db.base import Base


class Patient(Base):
    """
    Patient record as seen by the attribution core.

    Only the attribution columns are written here; everything else about a
    patient belongs to the patient-records collaborator.
    """

    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    clinic_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("clinics.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # First-attribution-wins: only ever set while NULL (conditional UPDATE).
    attribution_affiliate_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("affiliates.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    attribution_ref_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    attribution_first_touch_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # e.g. ["affiliate:SARAH10"]
    tags: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=list,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
