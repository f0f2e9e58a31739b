"""Synced advertising entities: ad accounts, campaigns, ad sets, ads, and the
daily insights fact table.

Primary keys are the external Graph ids. JSON blobs (targeting, creative,
action breakdowns) are stored as serialized text and never interpreted here.
"""

from datetime import date, datetime, timezone

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from adsync.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Account structure
# ---------------------------------------------------------------------------

class AdAccount(Base):
    """A Meta ad account. Created/updated on every sync pass, never deleted by sync."""

    __tablename__ = "ad_accounts"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)  # act_123456789
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    account_status: Mapped[int] = mapped_column(Integer, default=1)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="USD")
    timezone_name: Mapped[str | None] = mapped_column(String(100))
    business_id: Mapped[str | None] = mapped_column(String(255), index=True)
    business_name: Mapped[str | None] = mapped_column(String(500))
    amount_spent: Mapped[float] = mapped_column(Float, default=0)
    balance: Mapped[float] = mapped_column(Float, default=0)
    spend_cap: Mapped[float | None] = mapped_column(Float)
    created_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    capabilities_json: Mapped[str | None] = mapped_column(Text)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    campaigns = relationship("Campaign", back_populates="account", cascade="all, delete-orphan", passive_deletes=True)


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    account_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    objective: Mapped[str | None] = mapped_column(String(100), index=True)
    status: Mapped[str | None] = mapped_column(String(50), index=True)
    configured_status: Mapped[str | None] = mapped_column(String(50))
    effective_status: Mapped[str | None] = mapped_column(String(50))
    daily_budget: Mapped[float | None] = mapped_column(Float)
    lifetime_budget: Mapped[float | None] = mapped_column(Float)
    budget_remaining: Mapped[float | None] = mapped_column(Float)
    bid_strategy: Mapped[str | None] = mapped_column(String(100))
    optimization_goal: Mapped[str | None] = mapped_column(String(100))
    spend_cap: Mapped[float | None] = mapped_column(Float)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    stop_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    issues_info_json: Mapped[str | None] = mapped_column(Text)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    account = relationship("AdAccount", back_populates="campaigns")
    adsets = relationship("AdSet", back_populates="campaign", cascade="all, delete-orphan", passive_deletes=True)


class AdSet(Base):
    __tablename__ = "adsets"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    campaign_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    account_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str | None] = mapped_column(String(50), index=True)
    configured_status: Mapped[str | None] = mapped_column(String(50))
    effective_status: Mapped[str | None] = mapped_column(String(50))
    daily_budget: Mapped[float | None] = mapped_column(Float)
    lifetime_budget: Mapped[float | None] = mapped_column(Float)
    budget_remaining: Mapped[float | None] = mapped_column(Float)
    bid_amount: Mapped[float | None] = mapped_column(Float)
    optimization_goal: Mapped[str | None] = mapped_column(String(100))
    billing_event: Mapped[str | None] = mapped_column(String(100))
    targeting_json: Mapped[str | None] = mapped_column(Text)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    issues_info_json: Mapped[str | None] = mapped_column(Text)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    campaign = relationship("Campaign", back_populates="adsets")
    ads = relationship("Ad", back_populates="adset", cascade="all, delete-orphan", passive_deletes=True)


class Ad(Base):
    __tablename__ = "ads"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    adset_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("adsets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    campaign_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    account_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("ad_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[str | None] = mapped_column(String(50), index=True)
    configured_status: Mapped[str | None] = mapped_column(String(50))
    effective_status: Mapped[str | None] = mapped_column(String(50))
    creative_json: Mapped[str | None] = mapped_column(Text)
    preview_shareable_link: Mapped[str | None] = mapped_column(Text)
    created_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    issues_info_json: Mapped[str | None] = mapped_column(Text)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    adset = relationship("AdSet", back_populates="ads")


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class DailyInsight(Base):
    """One row of daily performance per (entity_type, entity_id, date_start)."""

    __tablename__ = "daily_insights"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "date_start", name="uq_daily_insight_entity_date"),
        Index("ix_daily_insights_account_date", "account_id", "date_start"),
        Index("ix_daily_insights_type_date", "entity_type", "date_start"),
    )

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # campaign | adset | ad
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_name: Mapped[str | None] = mapped_column(String(500))
    account_id: Mapped[str] = mapped_column(String(255), nullable=False)
    date_start: Mapped[date] = mapped_column(Date, nullable=False)
    date_stop: Mapped[date] = mapped_column(Date, nullable=False)

    spend: Mapped[float] = mapped_column(Float, default=0)
    impressions: Mapped[int] = mapped_column(BigInteger, default=0)
    clicks: Mapped[int] = mapped_column(BigInteger, default=0)
    reach: Mapped[int] = mapped_column(BigInteger, default=0)
    frequency: Mapped[float] = mapped_column(Float, default=0)
    ctr: Mapped[float] = mapped_column(Float, default=0)
    cpc: Mapped[float] = mapped_column(Float, default=0)
    cpm: Mapped[float] = mapped_column(Float, default=0)
    cpp: Mapped[float] = mapped_column(Float, default=0)

    actions_json: Mapped[str | None] = mapped_column(Text)
    action_values_json: Mapped[str | None] = mapped_column(Text)
    conversions_json: Mapped[str | None] = mapped_column(Text)
    conversion_values_json: Mapped[str | None] = mapped_column(Text)
    cost_per_action_type_json: Mapped[str | None] = mapped_column(Text)
    video_metrics_json: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, index=True)


INSIGHT_ENTITY_TYPES = ("campaign", "adset", "ad")
