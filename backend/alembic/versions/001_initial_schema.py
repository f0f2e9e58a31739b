"""create ad sync tables

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates all tables for the Meta Ads sync:
- Structure: ad_accounts, campaigns, adsets, ads
- Metrics: daily_insights
- Operational: system_tokens, rate_limits, api_logs
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # ---- Structure ----

    op.create_table(
        "ad_accounts",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("account_status", sa.Integer, server_default="1"),
        sa.Column("currency", sa.String(10), nullable=False, server_default="USD"),
        sa.Column("timezone_name", sa.String(100)),
        sa.Column("business_id", sa.String(255), index=True),
        sa.Column("business_name", sa.String(500)),
        sa.Column("amount_spent", sa.Float, server_default="0"),
        sa.Column("balance", sa.Float, server_default="0"),
        sa.Column("spend_cap", sa.Float),
        sa.Column("created_time", sa.DateTime(timezone=True)),
        sa.Column("capabilities_json", sa.Text),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), index=True),
        *_timestamps(),
    )

    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("account_id", sa.String(255), sa.ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("objective", sa.String(100), index=True),
        sa.Column("status", sa.String(50), index=True),
        sa.Column("configured_status", sa.String(50)),
        sa.Column("effective_status", sa.String(50)),
        sa.Column("daily_budget", sa.Float),
        sa.Column("lifetime_budget", sa.Float),
        sa.Column("budget_remaining", sa.Float),
        sa.Column("bid_strategy", sa.String(100)),
        sa.Column("optimization_goal", sa.String(100)),
        sa.Column("spend_cap", sa.Float),
        sa.Column("start_time", sa.DateTime(timezone=True)),
        sa.Column("stop_time", sa.DateTime(timezone=True)),
        sa.Column("created_time", sa.DateTime(timezone=True)),
        sa.Column("updated_time", sa.DateTime(timezone=True)),
        sa.Column("issues_info_json", sa.Text),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), index=True),
        *_timestamps(),
    )

    op.create_table(
        "adsets",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("campaign_id", sa.String(255), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("account_id", sa.String(255), sa.ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("status", sa.String(50), index=True),
        sa.Column("configured_status", sa.String(50)),
        sa.Column("effective_status", sa.String(50)),
        sa.Column("daily_budget", sa.Float),
        sa.Column("lifetime_budget", sa.Float),
        sa.Column("budget_remaining", sa.Float),
        sa.Column("bid_amount", sa.Float),
        sa.Column("optimization_goal", sa.String(100)),
        sa.Column("billing_event", sa.String(100)),
        sa.Column("targeting_json", sa.Text),
        sa.Column("start_time", sa.DateTime(timezone=True)),
        sa.Column("end_time", sa.DateTime(timezone=True)),
        sa.Column("created_time", sa.DateTime(timezone=True)),
        sa.Column("updated_time", sa.DateTime(timezone=True)),
        sa.Column("issues_info_json", sa.Text),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), index=True),
        *_timestamps(),
    )

    op.create_table(
        "ads",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("adset_id", sa.String(255), sa.ForeignKey("adsets.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("campaign_id", sa.String(255), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("account_id", sa.String(255), sa.ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("status", sa.String(50), index=True),
        sa.Column("configured_status", sa.String(50)),
        sa.Column("effective_status", sa.String(50)),
        sa.Column("creative_json", sa.Text),
        sa.Column("preview_shareable_link", sa.Text),
        sa.Column("created_time", sa.DateTime(timezone=True)),
        sa.Column("updated_time", sa.DateTime(timezone=True)),
        sa.Column("issues_info_json", sa.Text),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), index=True),
        *_timestamps(),
    )

    # ---- Metrics ----

    op.create_table(
        "daily_insights",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("entity_name", sa.String(500)),
        sa.Column("account_id", sa.String(255), nullable=False),
        sa.Column("date_start", sa.Date, nullable=False),
        sa.Column("date_stop", sa.Date, nullable=False),
        sa.Column("spend", sa.Float, server_default="0"),
        sa.Column("impressions", sa.BigInteger, server_default="0"),
        sa.Column("clicks", sa.BigInteger, server_default="0"),
        sa.Column("reach", sa.BigInteger, server_default="0"),
        sa.Column("frequency", sa.Float, server_default="0"),
        sa.Column("ctr", sa.Float, server_default="0"),
        sa.Column("cpc", sa.Float, server_default="0"),
        sa.Column("cpm", sa.Float, server_default="0"),
        sa.Column("cpp", sa.Float, server_default="0"),
        sa.Column("actions_json", sa.Text),
        sa.Column("action_values_json", sa.Text),
        sa.Column("conversions_json", sa.Text),
        sa.Column("conversion_values_json", sa.Text),
        sa.Column("cost_per_action_type_json", sa.Text),
        sa.Column("video_metrics_json", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
        sa.UniqueConstraint("entity_type", "entity_id", "date_start", name="uq_daily_insight_entity_date"),
    )
    op.create_index("ix_daily_insights_account_date", "daily_insights", ["account_id", "date_start"])
    op.create_index("ix_daily_insights_type_date", "daily_insights", ["entity_type", "date_start"])

    # ---- Operational ----

    op.create_table(
        "system_tokens",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("token_type", sa.String(50), nullable=False, index=True),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), index=True),
        sa.Column("scope", sa.Text),
        sa.Column("system_user_id", sa.String(255)),
        *_timestamps(),
    )

    op.create_table(
        "rate_limits",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("endpoint", sa.String(255), nullable=False),
        sa.Column("requests_count", sa.Integer, server_default="1"),
        sa.Column("window_start", sa.DateTime(timezone=True), server_default=sa.func.now()),
        *_timestamps(),
    )
    op.create_index("ix_rate_limits_endpoint_window", "rate_limits", ["endpoint", "window_start"])

    op.create_table(
        "api_logs",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer, "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("endpoint", sa.String(500), nullable=False, index=True),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("status_code", sa.Integer, index=True),
        sa.Column("response_time_ms", sa.Integer),
        sa.Column("request_size_bytes", sa.Integer),
        sa.Column("response_size_bytes", sa.Integer),
        sa.Column("error_message", sa.Text),
        sa.Column("user_id", sa.String(255), index=True),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), index=True),
    )


def downgrade() -> None:
    op.drop_table("api_logs")
    op.drop_index("ix_rate_limits_endpoint_window", table_name="rate_limits")
    op.drop_table("rate_limits")
    op.drop_table("system_tokens")
    op.drop_index("ix_daily_insights_type_date", table_name="daily_insights")
    op.drop_index("ix_daily_insights_account_date", table_name="daily_insights")
    op.drop_table("daily_insights")
    op.drop_table("ads")
    op.drop_table("adsets")
    op.drop_table("campaigns")
    op.drop_table("ad_accounts")
