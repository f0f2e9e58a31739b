"""
Tests for configuration, logging helpers, payload normalization and the
scheduling backends (APScheduler in-process, Celery beat).
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from adsync.config import Settings, validate_settings
from adsync.core.errors import ConfigurationError
from adsync.core.logging import JSONFormatter, log_security_event
from adsync.services.normalizers import (
    normalize_account,
    normalize_adset,
    normalize_insight,
    to_datetime,
    with_act_prefix,
)
from adsync.services.scheduler import IntervalScheduler


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def test_async_database_url_rewrites_postgres_scheme():
    assert _settings(database_url="postgres://u:p@db/ads").async_database_url == "postgresql+asyncpg://u:p@db/ads"
    assert _settings(database_url="postgresql://u:p@db/ads").async_database_url == "postgresql+asyncpg://u:p@db/ads"
    assert _settings(database_url="sqlite+aiosqlite:///x.db").async_database_url == "sqlite+aiosqlite:///x.db"


def test_celery_urls_derive_from_redis_url():
    settings = _settings(redis_url="redis://cache:6379/0")
    assert settings.effective_celery_broker_url == "redis://cache:6379/1"
    assert settings.effective_celery_result_backend == "redis://cache:6379/2"
    assert _settings(celery_broker_url="amqp://mq").effective_celery_broker_url == "amqp://mq"


def test_development_rate_limit_is_relaxed():
    assert _settings(app_env="development", rate_limit_max=100).effective_rate_limit_max == 1000
    assert _settings(app_env="production", rate_limit_max=100).effective_rate_limit_max == 100


def test_list_settings_are_split_and_trimmed():
    settings = _settings(allowed_origins="https://a.example.com/, https://b.example.com", blocked_ips="")
    assert settings.allowed_origin_list == ["https://a.example.com", "https://b.example.com"]
    assert settings.blocked_ip_list == []


def test_validate_settings_missing_required():
    """Scheduled sync without Meta app credentials cannot start."""
    with pytest.raises(ConfigurationError) as exc_info:
        validate_settings(_settings(enable_scheduled_sync=True))
    assert "META_APP_ID" in str(exc_info.value)

    with pytest.raises(ConfigurationError):
        validate_settings(_settings(rate_limit_backend="memcached"))


def test_validate_settings_warns_on_optional_gaps():
    warnings = validate_settings(_settings(redis_url="", meta_access_token="tok"))
    assert any("REDIS_URL" in w for w in warnings)
    assert any("TOKEN_ENCRYPTION_KEY" in w for w in warnings)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("adsync.test", logging.INFO, __file__, 1, "synced %d rows", (3,), None)
    record.job = "sync_campaigns"
    record.duration_ms = 42

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "synced 3 rows"
    assert payload["level"] == "INFO"
    assert payload["job"] == "sync_campaigns"
    assert payload["duration_ms"] == 42


def test_security_event_severity_maps_to_level(caplog):
    with caplog.at_level(logging.INFO, logger="adsync.security"):
        log_security_event("Webhook signature validation failed", "critical", body_length=10)
        log_security_event("Suspicious user agent", "bogus")

    assert caplog.records[0].levelno == logging.ERROR
    assert caplog.records[0].details == {"body_length": 10}
    assert caplog.records[1].severity == "medium"


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------


def test_act_prefix_added_once():
    assert with_act_prefix("123") == "act_123"
    assert with_act_prefix("act_123") == "act_123"


def test_graph_timestamps_parsed():
    parsed = to_datetime("2026-01-15T10:00:00+0000")
    assert parsed == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
    assert to_datetime("not a date") is None
    assert to_datetime(None) is None


def test_normalize_account_parses_money_and_business():
    row = normalize_account({
        "id": "act_1", "name": "Main", "account_status": "1", "amount_spent": "1234",
        "business": {"id": "b1", "name": "Biz"}, "capabilities": ["CAN_CREATE_BRAND_LIFT_STUDY"],
    })
    assert row["amount_spent"] == 1234.0
    assert row["business_id"] == "b1"
    assert row["capabilities_json"] == '["CAN_CREATE_BRAND_LIFT_STUDY"]'
    assert row["currency"] == "USD"


def test_normalize_adset_keeps_targeting_opaque():
    row = normalize_adset({"id": "s1", "name": "S", "campaign_id": "c1", "targeting": {"age_min": 18}}, "act_1")
    assert row["targeting_json"] == '{"age_min": 18}'
    assert row["account_id"] == "act_1"


def test_normalize_insight_levels():
    data = {"adset_id": "s1", "adset_name": "Set", "date_start": "2026-10-01", "impressions": "10", "ctr": "1.5"}
    row = normalize_insight(data, "act_1", "adset")
    assert (row["entity_type"], row["entity_id"], row["entity_name"]) == ("adset", "s1", "Set")
    assert row["date_stop"] == date(2026, 10, 1)
    assert row["impressions"] == 10
    assert row["ctr"] == 1.5
    assert row["video_metrics_json"] is None

    with pytest.raises(ValueError):
        normalize_insight(data, "act_1", "account")


# ---------------------------------------------------------------------------
# Schedulers
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_interval_scheduler_registers_jobs():
    """Jobs are added once per name and the scheduler can start and stop on the running loop."""
    scheduler = IntervalScheduler()

    async def task():
        return None

    scheduler.every(timedelta(hours=1), task, "sync_insights")
    scheduler.every(timedelta(hours=2), task, "sync_campaigns", offset=timedelta(minutes=10))
    scheduler.every(timedelta(hours=2), task, "sync_campaigns", offset=timedelta(minutes=10))
    scheduler.start()
    try:
        assert sorted(scheduler.job_names()) == ["sync_campaigns", "sync_insights"]
        job = scheduler.scheduler.get_job("sync_campaigns")
        assert job.trigger.interval == timedelta(hours=2)
        assert job.max_instances == 1
    finally:
        scheduler.shutdown()


def test_celery_beat_schedule_matches_registered_tasks():
    """Every beat entry points at a task defined in adsync.tasks.sync_tasks."""
    from adsync.celery_app import celery_app
    import adsync.tasks.sync_tasks  # noqa: F401

    for entry in celery_app.conf.beat_schedule.values():
        assert entry["task"] in celery_app.tasks
    assert len(celery_app.conf.beat_schedule) == 5
