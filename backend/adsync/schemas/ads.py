from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from adsync.services.normalizers import from_json


class AdAccountResponse(BaseModel):
    id: str
    name: str
    account_status: int
    currency: str
    timezone_name: str | None = None
    business_id: str | None = None
    business_name: str | None = None
    amount_spent: float = 0
    balance: float = 0
    spend_cap: float | None = None
    capabilities: Any = None
    last_sync_at: datetime | None = None

    @classmethod
    def from_row(cls, row) -> "AdAccountResponse":
        return cls(
            id=row.id,
            name=row.name,
            account_status=row.account_status,
            currency=row.currency,
            timezone_name=row.timezone_name,
            business_id=row.business_id,
            business_name=row.business_name,
            amount_spent=row.amount_spent or 0,
            balance=row.balance or 0,
            spend_cap=row.spend_cap,
            capabilities=from_json(row.capabilities_json),
            last_sync_at=row.last_sync_at,
        )


class CampaignResponse(BaseModel):
    id: str
    name: str
    account_id: str
    objective: str | None = None
    status: str | None = None
    configured_status: str | None = None
    effective_status: str | None = None
    daily_budget: float | None = None
    lifetime_budget: float | None = None
    budget_remaining: float | None = None
    bid_strategy: str | None = None
    optimization_goal: str | None = None
    spend_cap: float | None = None
    start_time: datetime | None = None
    stop_time: datetime | None = None
    created_time: datetime | None = None
    updated_time: datetime | None = None
    issues_info: Any = None
    last_sync_at: datetime | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_row(cls, row) -> "CampaignResponse":
        campaign = cls.model_validate(row)
        campaign.issues_info = from_json(row.issues_info_json)
        return campaign


class DailyInsightResponse(BaseModel):
    entity_type: str
    entity_id: str
    entity_name: str | None = None
    account_id: str
    date_start: date
    date_stop: date
    spend: float = 0
    impressions: int = 0
    clicks: int = 0
    reach: int = 0
    frequency: float = 0
    ctr: float = 0
    cpc: float = 0
    cpm: float = 0
    cpp: float = 0
    actions: Any = None
    action_values: Any = None
    conversions: Any = None
    conversion_values: Any = None
    cost_per_action_type: Any = None
    video_metrics: Any = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_row(cls, row) -> "DailyInsightResponse":
        insight = cls.model_validate(row)
        insight.actions = from_json(row.actions_json)
        insight.action_values = from_json(row.action_values_json)
        insight.conversions = from_json(row.conversions_json)
        insight.conversion_values = from_json(row.conversion_values_json)
        insight.cost_per_action_type = from_json(row.cost_per_action_type_json)
        insight.video_metrics = from_json(row.video_metrics_json)
        return insight


class DateRange(BaseModel):
    since: date
    until: date


class ListResponse(BaseModel):
    data: list[dict]
    total: int
    cached: bool = False
    updated_at: datetime


class InsightsListResponse(ListResponse):
    date_range: DateRange


class SyncRequest(BaseModel):
    type: Literal["accounts", "campaigns", "insights", "structure", "account"]
    account_id: str | None = None
    days: int = Field(default=7, ge=1, le=90)


class SyncResultResponse(BaseModel):
    success: bool
    processed: int
    errors: int
    duration_ms: int
    error_details: list[str] = []
    skipped: bool = False


class SyncStatusResponse(BaseModel):
    is_running: bool
    scheduled_jobs: list[str]
    last_runs: dict[str, dict]
