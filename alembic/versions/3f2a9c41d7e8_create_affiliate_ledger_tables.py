"""create affiliate ledger tables

Revision ID: 3f2a9c41d7e8
Revises:
Create Date: 2026-03-02
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3f2a9c41d7e8"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # -----------------------------------------------------
    # 1) Tenancy + people
    # -----------------------------------------------------
    op.create_table(
        "clinics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        _created_at(),
    )

    op.create_table(
        "affiliates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="ACTIVE"),
        sa.Column("lifetime_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lifetime_revenue_cents", sa.BigInteger(), nullable=False, server_default="0"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_affiliates_clinic_id", "affiliates", ["clinic_id"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "attribution_affiliate_id",
            sa.Integer(),
            sa.ForeignKey("affiliates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("attribution_ref_code", sa.String(length=64), nullable=True),
        sa.Column("attribution_first_touch_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tags", JSON_TYPE, nullable=False),
        _created_at(),
    )
    op.create_index("ix_patients_clinic_id", "patients", ["clinic_id"])
    op.create_index("ix_patients_attribution_affiliate_id", "patients", ["attribution_affiliate_id"])

    # -----------------------------------------------------
    # 2) Attribution
    # -----------------------------------------------------
    op.create_table(
        "affiliate_ref_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("ref_code", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("ref_code", "clinic_id", name="uq_affiliate_ref_codes_code_clinic"),
    )
    op.create_index("ix_affiliate_ref_codes_clinic_id", "affiliate_ref_codes", ["clinic_id"])
    op.create_index("ix_affiliate_ref_codes_affiliate_id", "affiliate_ref_codes", ["affiliate_id"])
    op.create_index("ix_affiliate_ref_codes_ref_code", "affiliate_ref_codes", ["ref_code"])

    op.create_table(
        "affiliate_touches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("ref_code", sa.String(length=64), nullable=False),
        sa.Column("visitor_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("cookie_id", sa.String(length=255), nullable=True),
        sa.Column("touch_type", sa.String(length=20), nullable=False, server_default="CLICK"),
        sa.Column("landing_page", sa.String(length=500), nullable=True),
        sa.Column("utm_source", sa.String(length=200), nullable=True),
        sa.Column("utm_medium", sa.String(length=200), nullable=True),
        sa.Column("utm_campaign", sa.String(length=200), nullable=True),
        sa.Column(
            "converted_patient_id",
            sa.Integer(),
            sa.ForeignKey("patients.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "visitor_fingerprint IS NOT NULL OR cookie_id IS NOT NULL",
            name="ck_affiliate_touches_identifier",
        ),
    )
    op.create_index("ix_affiliate_touches_affiliate_id", "affiliate_touches", ["affiliate_id"])
    op.create_index("ix_affiliate_touches_ref_code", "affiliate_touches", ["ref_code"])
    op.create_index("ix_affiliate_touches_created_at", "affiliate_touches", ["created_at"])
    op.create_index("ix_affiliate_touches_clinic_fingerprint", "affiliate_touches", ["clinic_id", "visitor_fingerprint"])
    op.create_index("ix_affiliate_touches_clinic_cookie", "affiliate_touches", ["clinic_id", "cookie_id"])

    op.create_table(
        "affiliate_attribution_configs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "clinic_id",
            sa.Integer(),
            sa.ForeignKey("clinics.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("new_patient_model", sa.String(length=20), nullable=False, server_default="FIRST_CLICK"),
        sa.Column("returning_patient_model", sa.String(length=20), nullable=False, server_default="LAST_CLICK"),
        sa.Column("cookie_window_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("enable_fingerprinting", sa.Boolean(), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # -----------------------------------------------------
    # 3) Commission plans
    # -----------------------------------------------------
    op.create_table(
        "affiliate_commission_plans",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("plan_type", sa.String(length=20), nullable=False),
        sa.Column("flat_amount_cents", sa.Integer(), nullable=True),
        sa.Column("percent_bps", sa.Integer(), nullable=True),
        sa.Column("initial_flat_amount_cents", sa.Integer(), nullable=True),
        sa.Column("initial_percent_bps", sa.Integer(), nullable=True),
        sa.Column("recurring_flat_amount_cents", sa.Integer(), nullable=True),
        sa.Column("recurring_percent_bps", sa.Integer(), nullable=True),
        sa.Column("recurring_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("recurring_months", sa.Integer(), nullable=True),
        sa.Column("recurring_decay_pct", sa.Integer(), nullable=True),
        sa.Column("tier_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("applies_to", sa.String(length=30), nullable=False, server_default="ALL_PAYMENTS"),
        sa.Column("hold_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("clawback_enabled", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_affiliate_commission_plans_clinic_id", "affiliate_commission_plans", ["clinic_id"])

    op.create_table(
        "affiliate_commission_tiers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "commission_plan_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_commission_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("min_conversions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_revenue_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("percent_bps", sa.Integer(), nullable=True),
        sa.Column("flat_amount_cents", sa.Integer(), nullable=True),
        sa.Column("bonus_cents", sa.Integer(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_affiliate_commission_tiers_plan_level",
        "affiliate_commission_tiers",
        ["commission_plan_id", "level"],
    )

    op.create_table(
        "affiliate_plan_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "commission_plan_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_commission_plans.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("effective_to", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_affiliate_plan_assignments_affiliate_from",
        "affiliate_plan_assignments",
        ["affiliate_id", "effective_from"],
    )

    # -----------------------------------------------------
    # 4) Payout methods + payouts
    # -----------------------------------------------------
    op.create_table(
        "affiliate_payout_methods",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False),
        sa.Column("method_type", sa.String(length=30), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("affiliate_id", "method_type", name="uq_affiliate_payout_methods_affiliate_type"),
    )
    op.create_index("ix_affiliate_payout_methods_affiliate_id", "affiliate_payout_methods", ["affiliate_id"])
    op.create_index(
        "uq_affiliate_payout_methods_default_verified",
        "affiliate_payout_methods",
        ["affiliate_id"],
        unique=True,
        postgresql_where=text("is_default AND is_verified"),
        sqlite_where=text("is_default AND is_verified"),
    )

    op.create_table(
        "affiliate_payouts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("requested_amount_cents", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("fee_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("method_type", sa.String(length=30), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(length=500), nullable=True),
        _created_at(),
    )
    op.create_index("ix_affiliate_payouts_affiliate_id", "affiliate_payouts", ["affiliate_id"])
    op.create_index("ix_affiliate_payouts_clinic_id", "affiliate_payouts", ["clinic_id"])
    op.create_index("ix_affiliate_payouts_status", "affiliate_payouts", ["status"])
    # at most one PENDING / PROCESSING payout per affiliate
    op.create_index(
        "uq_affiliate_payouts_in_flight",
        "affiliate_payouts",
        ["affiliate_id"],
        unique=True,
        postgresql_where=text("status IN ('PENDING', 'PROCESSING')"),
        sqlite_where=text("status IN ('PENDING', 'PROCESSING')"),
    )

    # -----------------------------------------------------
    # 5) Commission ledger
    # -----------------------------------------------------
    op.create_table(
        "affiliate_commission_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("affiliate_id", sa.Integer(), sa.ForeignKey("affiliates.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("clinic_id", sa.Integer(), sa.ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("stripe_event_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_object_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_event_type", sa.String(length=100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("event_amount_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column(
            "commission_plan_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_commission_plans.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hold_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reversal_reason", sa.String(length=100), nullable=True),
        sa.Column("clawback_flagged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clawback_reason", sa.String(length=100), nullable=True),
        sa.Column(
            "payout_id",
            sa.Integer(),
            sa.ForeignKey("affiliate_payouts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("calculation_details", JSON_TYPE, nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "affiliate_id",
            "stripe_event_id",
            name="uq_affiliate_commission_events_affiliate_stripe_event",
        ),
    )
    op.create_index("ix_affiliate_commission_events_clinic_id", "affiliate_commission_events", ["clinic_id"])
    op.create_index("ix_affiliate_commission_events_payout_id", "affiliate_commission_events", ["payout_id"])
    op.create_index(
        "ix_affiliate_commission_events_affiliate_status",
        "affiliate_commission_events",
        ["affiliate_id", "status"],
    )
    op.create_index(
        "ix_affiliate_commission_events_clinic_object",
        "affiliate_commission_events",
        ["clinic_id", "stripe_object_id"],
    )


def downgrade() -> None:
    op.drop_table("affiliate_commission_events")
    op.drop_index("uq_affiliate_payouts_in_flight", table_name="affiliate_payouts")
    op.drop_table("affiliate_payouts")
    op.drop_index("uq_affiliate_payout_methods_default_verified", table_name="affiliate_payout_methods")
    op.drop_table("affiliate_payout_methods")
    op.drop_table("affiliate_plan_assignments")
    op.drop_table("affiliate_commission_tiers")
    op.drop_table("affiliate_commission_plans")
    op.drop_table("affiliate_attribution_configs")
    op.drop_table("affiliate_touches")
    op.drop_table("affiliate_ref_codes")
    op.drop_table("patients")
    op.drop_table("affiliates")
    op.drop_table("clinics")
