"""create metering tables

Revision ID: 0001
Revises:
Create Date: 2026-10-12

  - users and subscription_plans (read by the credit resolver)
  - api_keys (hashed, per user)
  - usage_events (append-only, source of truth for spend)
  - spending_limits (one row per user)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("stripe_price_id", sa.String(255), nullable=True),
        sa.Column("subscription_status", sa.String(50), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # ── 2. subscription_plans ───────────────────────────────
    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("included_ai_credits_eur", sa.Numeric(10, 2), nullable=True),
        sa.Column("stripe_price_monthly", sa.String(255), nullable=True),
        sa.Column("stripe_price_quarterly", sa.String(255), nullable=True),
        sa.Column("stripe_price_six_months", sa.String(255), nullable=True),
        sa.Column("stripe_price_yearly", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── 3. api_keys ─────────────────────────────────────────
    op.create_table(
        "api_keys",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("key_hash", sa.Text(), nullable=False),
        sa.Column("prefix", sa.String(12), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("key_hash", name="uq_api_keys_key_hash"),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    # ── 4. usage_events ─────────────────────────────────────
    op.create_table(
        "usage_events",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("tenant_id", sa.UUID(), nullable=True),
        sa.Column("timestamp", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("feature", sa.String(50), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("model_name", sa.String(100), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False),
        sa.Column("output_tokens", sa.Integer(), nullable=False),
        sa.Column("total_tokens", sa.Integer(), nullable=False),
        sa.Column("cost_usd", sa.Numeric(12, 8), nullable=False),
        sa.Column("success", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("input_tokens >= 0", name="ck_input_tokens_non_neg"),
        sa.CheckConstraint("output_tokens >= 0", name="ck_output_tokens_non_neg"),
        sa.CheckConstraint("total_tokens >= 0", name="ck_total_tokens_non_neg"),
        sa.CheckConstraint("cost_usd >= 0", name="ck_cost_usd_non_neg"),
    )
    # Backs the monthly spend aggregation (user, month range)
    op.create_index(
        "ix_usage_events_user_id_timestamp", "usage_events", ["user_id", "timestamp"],
    )
    op.create_index("ix_usage_events_feature", "usage_events", ["feature"])
    op.create_index("ix_usage_events_model_name", "usage_events", ["model_name"])

    # ── 5. spending_limits ──────────────────────────────────
    op.create_table(
        "spending_limits",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("monthly_limit_eur", sa.Numeric(10, 2), nullable=False),
        sa.Column("alert_threshold_percent", sa.Integer(), nullable=False),
        sa.Column("hard_limit", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("current_month_spent_eur", sa.Numeric(10, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("last_reset_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("alert_sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("limit_hit_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", name="uq_spending_limits_user_id"),
        sa.CheckConstraint(
            "monthly_limit_eur >= 0 AND monthly_limit_eur <= 10000",
            name="ck_monthly_limit_eur_range",
        ),
        sa.CheckConstraint(
            "alert_threshold_percent >= 0 AND alert_threshold_percent <= 100",
            name="ck_alert_threshold_percent_range",
        ),
        sa.CheckConstraint(
            "current_month_spent_eur >= 0",
            name="ck_current_month_spent_eur_non_neg",
        ),
    )


def downgrade() -> None:
    op.drop_table("spending_limits")
    op.drop_index("ix_usage_events_model_name", table_name="usage_events")
    op.drop_index("ix_usage_events_feature", table_name="usage_events")
    op.drop_index("ix_usage_events_user_id_timestamp", table_name="usage_events")
    op.drop_table("usage_events")
    op.drop_index("ix_api_keys_user_id", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_table("subscription_plans")
    op.drop_table("users")
