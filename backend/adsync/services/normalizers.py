"""Map Graph API payloads to store rows.

Typed parsing happens here, at the edge. Nested structures (targeting,
creative, action breakdowns) are serialized to JSON text unchanged.
"""

import json
from datetime import date, datetime

ACCOUNT_FIELDS = [
    "id", "name", "account_status", "currency", "timezone_name", "business",
    "amount_spent", "balance", "spend_cap", "created_time", "capabilities",
]
CAMPAIGN_FIELDS = [
    "id", "name", "account_id", "objective", "status", "configured_status",
    "effective_status", "daily_budget", "lifetime_budget", "budget_remaining",
    "bid_strategy", "optimization_goal", "spend_cap", "start_time", "stop_time",
    "created_time", "updated_time", "issues_info",
]
ADSET_FIELDS = [
    "id", "name", "campaign_id", "account_id", "status", "configured_status",
    "effective_status", "daily_budget", "lifetime_budget", "budget_remaining",
    "bid_amount", "optimization_goal", "billing_event", "targeting",
    "start_time", "end_time", "created_time", "updated_time", "issues_info",
]
AD_FIELDS = [
    "id", "name", "adset_id", "campaign_id", "account_id", "status",
    "configured_status", "effective_status", "creative{id,name,title,body,image_url,thumbnail_url}",
    "preview_shareable_link", "created_time", "updated_time", "issues_info",
]
INSIGHT_FIELDS = [
    "campaign_id", "campaign_name", "adset_id", "adset_name", "ad_id", "ad_name",
    "account_id", "date_start", "date_stop", "spend", "impressions", "clicks",
    "reach", "frequency", "ctr", "cpc", "cpm", "cpp", "actions", "action_values",
    "conversions", "conversion_values", "cost_per_action_type",
    "video_play_actions", "video_p25_watched_actions", "video_p50_watched_actions",
    "video_p75_watched_actions", "video_p100_watched_actions",
]
VIDEO_FIELDS = {
    "video_play_actions": "video_plays",
    "video_p25_watched_actions": "video_p25_watched",
    "video_p50_watched_actions": "video_p50_watched",
    "video_p75_watched_actions": "video_p75_watched",
    "video_p100_watched_actions": "video_p100_watched",
}


def with_act_prefix(account_id: str) -> str:
    account_id = str(account_id)
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


def to_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_int(value, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def to_datetime(value) -> datetime | None:
    """Parse Graph timestamps such as ``2024-01-15T10:00:00+0000``."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    # Python < 3.11 fromisoformat rejects "+0000"
    if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit():
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def to_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def to_json(value) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def from_json(value: str | None):
    if not value:
        return None
    return json.loads(value)


def normalize_account(data: dict) -> dict:
    business = data.get("business") or {}
    return {
        "id": str(data["id"]),
        "name": data.get("name") or data["id"],
        "account_status": to_int(data.get("account_status"), 1),
        "currency": data.get("currency") or "USD",
        "timezone_name": data.get("timezone_name"),
        "business_id": business.get("id"),
        "business_name": business.get("name"),
        "amount_spent": to_float(data.get("amount_spent")) or 0.0,
        "balance": to_float(data.get("balance")) or 0.0,
        "spend_cap": to_float(data.get("spend_cap")),
        "created_time": to_datetime(data.get("created_time")),
        "capabilities_json": to_json(data.get("capabilities")),
    }


def normalize_campaign(data: dict, account_id: str) -> dict:
    return {
        "id": str(data["id"]),
        "name": data.get("name") or str(data["id"]),
        "account_id": account_id,
        "objective": data.get("objective"),
        "status": data.get("status"),
        "configured_status": data.get("configured_status"),
        "effective_status": data.get("effective_status"),
        "daily_budget": to_float(data.get("daily_budget")),
        "lifetime_budget": to_float(data.get("lifetime_budget")),
        "budget_remaining": to_float(data.get("budget_remaining")),
        "bid_strategy": data.get("bid_strategy"),
        "optimization_goal": data.get("optimization_goal"),
        "spend_cap": to_float(data.get("spend_cap")),
        "start_time": to_datetime(data.get("start_time")),
        "stop_time": to_datetime(data.get("stop_time")),
        "created_time": to_datetime(data.get("created_time")),
        "updated_time": to_datetime(data.get("updated_time")),
        "issues_info_json": to_json(data.get("issues_info")),
    }


def normalize_adset(data: dict, account_id: str) -> dict:
    return {
        "id": str(data["id"]),
        "name": data.get("name") or str(data["id"]),
        "campaign_id": str(data["campaign_id"]),
        "account_id": account_id,
        "status": data.get("status"),
        "configured_status": data.get("configured_status"),
        "effective_status": data.get("effective_status"),
        "daily_budget": to_float(data.get("daily_budget")),
        "lifetime_budget": to_float(data.get("lifetime_budget")),
        "budget_remaining": to_float(data.get("budget_remaining")),
        "bid_amount": to_float(data.get("bid_amount")),
        "optimization_goal": data.get("optimization_goal"),
        "billing_event": data.get("billing_event"),
        "targeting_json": to_json(data.get("targeting")),
        "start_time": to_datetime(data.get("start_time")),
        "end_time": to_datetime(data.get("end_time")),
        "created_time": to_datetime(data.get("created_time")),
        "updated_time": to_datetime(data.get("updated_time")),
        "issues_info_json": to_json(data.get("issues_info")),
    }


def normalize_ad(data: dict, account_id: str) -> dict:
    return {
        "id": str(data["id"]),
        "name": data.get("name") or str(data["id"]),
        "adset_id": str(data["adset_id"]),
        "campaign_id": str(data["campaign_id"]),
        "account_id": account_id,
        "status": data.get("status"),
        "configured_status": data.get("configured_status"),
        "effective_status": data.get("effective_status"),
        "creative_json": to_json(data.get("creative")),
        "preview_shareable_link": data.get("preview_shareable_link"),
        "created_time": to_datetime(data.get("created_time")),
        "updated_time": to_datetime(data.get("updated_time")),
        "issues_info_json": to_json(data.get("issues_info")),
    }


def normalize_insight(data: dict, account_id: str, level: str = "campaign") -> dict:
    """One insight record → one ``daily_insights`` row.

    The entity id comes from the record's level (``campaign_id`` for campaign
    level, etc.).
    """
    if level not in ("campaign", "adset", "ad"):
        raise ValueError(f"Unsupported insight level: {level}")
    entity_type = level
    entity_id = data.get(f"{entity_type}_id") or account_id
    video = {name: data[field] for field, name in VIDEO_FIELDS.items() if data.get(field)}
    return {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "entity_name": data.get(f"{entity_type}_name"),
        "account_id": account_id,
        "date_start": to_date(data["date_start"]),
        "date_stop": to_date(data.get("date_stop") or data["date_start"]),
        "spend": to_float(data.get("spend")) or 0.0,
        "impressions": to_int(data.get("impressions")),
        "clicks": to_int(data.get("clicks")),
        "reach": to_int(data.get("reach")),
        "frequency": to_float(data.get("frequency")) or 0.0,
        "ctr": to_float(data.get("ctr")) or 0.0,
        "cpc": to_float(data.get("cpc")) or 0.0,
        "cpm": to_float(data.get("cpm")) or 0.0,
        "cpp": to_float(data.get("cpp")) or 0.0,
        "actions_json": to_json(data.get("actions")),
        "action_values_json": to_json(data.get("action_values")),
        "conversions_json": to_json(data.get("conversions")),
        "conversion_values_json": to_json(data.get("conversion_values")),
        "cost_per_action_type_json": to_json(data.get("cost_per_action_type")),
        "video_metrics_json": to_json(video) if video else None,
    }
