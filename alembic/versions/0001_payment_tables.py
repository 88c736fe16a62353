"""Create jobs, provider_accounts and payouts tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("price_cents", sa.BigInteger(), nullable=False),
        sa.Column("original_price_cents", sa.BigInteger(), nullable=True),
        sa.Column("discount_applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("requester_ref", sa.String(255), nullable=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("payment_captured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "payment_capture_failed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "authorization_released", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "assigned_provider_ids",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        *_timestamps(),
    )
    op.create_index("ix_jobs_payment_intent_id", "jobs", ["payment_intent_id"])

    op.create_table(
        "provider_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("external_account_id", sa.String(255), nullable=True, unique=True),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("charges_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("details_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "pending_requirements",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("account_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "onboarding_complete", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )

    op.create_table(
        "payouts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("job_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("gross_amount", sa.BigInteger(), nullable=False),
        sa.Column("platform_fee", sa.BigInteger(), nullable=False),
        sa.Column("net_amount", sa.BigInteger(), nullable=False),
        sa.Column("provider_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("external_transfer_id", sa.String(255), nullable=True, unique=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transfer_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("job_id", "provider_id", name="uq_payouts_job_provider"),
        sa.CheckConstraint(
            "gross_amount = platform_fee + net_amount",
            name="ck_payouts_split_exact",
        ),
    )
    op.create_index("ix_payouts_job_id", "payouts", ["job_id"])
    op.create_index("ix_payouts_provider_id", "payouts", ["provider_id"])


def downgrade() -> None:
    op.drop_index("ix_payouts_provider_id", table_name="payouts")
    op.drop_index("ix_payouts_job_id", table_name="payouts")
    op.drop_table("payouts")
    op.drop_table("provider_accounts")
    op.drop_index("ix_jobs_payment_intent_id", table_name="jobs")
    op.drop_table("jobs")
