"""
Tests for the HTTP API: /api/v1/meta/*, /api/v1/sync, /api/v1/webhooks/meta
and /api/v1/health, with the Graph API served by a mock transport.
"""

from __future__ import annotations

import hashlib
import hmac
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from adsync.models import ApiLog
from adsync.services.normalizers import normalize_account


# ---------------------------------------------------------------------------
# GET /api/v1/meta/accounts/{id}
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_account_cold_then_cached(client: AsyncClient, graph_server):
    """The first read syncs from the Graph API; the second is served from cache."""
    first = await client.get("/api/v1/meta/accounts/act_123")
    assert first.status_code == 200
    body = first.json()
    assert body["cached"] is False
    assert body["data"]["id"] == "act_123"
    assert body["data"]["name"] == "Main Account"

    calls_before = len(graph_server.requests)
    second = await client.get("/api/v1/meta/accounts/act_123")
    assert second.json()["cached"] is True
    assert len(graph_server.requests) == calls_before


@pytest.mark.asyncio
async def test_get_account_unknown_returns_404(client: AsyncClient):
    response = await client.get("/api/v1/meta/accounts/act_999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_account_serves_stored_row_when_remote_fails(client: AsyncClient, services, graph_server):
    """A failed refresh falls back to the last persisted account."""
    await services.store.upsert_ad_account(normalize_account({"id": "act_777", "name": "Stored"}))

    response = await client.get("/api/v1/meta/accounts/act_777")

    assert response.status_code == 200
    assert response.json()["data"]["name"] == "Stored"


# ---------------------------------------------------------------------------
# GET /api/v1/meta/campaigns
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_campaigns_syncs_on_miss(client: AsyncClient):
    """A cold read syncs the account, returns both campaigns and caches them."""
    response = await client.get("/api/v1/meta/campaigns", params={"account_id": "act_123"})
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["cached"] is False
    assert {c["id"] for c in body["data"]} == {"c1", "c2"}

    filtered = await client.get(
        "/api/v1/meta/campaigns", params={"account_id": "act_123", "status": "PAUSED"}
    )
    assert filtered.json()["cached"] is True
    assert [c["id"] for c in filtered.json()["data"]] == ["c2"]


@pytest.mark.asyncio
async def test_reads_accept_bare_account_id(client: AsyncClient, graph_server):
    """A numeric id reads the same act_-prefixed rows and cache entries the sync wrote."""
    first = await client.get("/api/v1/meta/campaigns", params={"account_id": "123"})
    assert first.status_code == 200
    assert {c["id"] for c in first.json()["data"]} == {"c1", "c2"}

    calls_before = len(graph_server.requests)
    second = await client.get("/api/v1/meta/campaigns", params={"account_id": "123"})
    assert second.json()["cached"] is True
    assert len(graph_server.requests) == calls_before

    account = await client.get("/api/v1/meta/accounts/123")
    assert account.status_code == 200
    assert account.json()["data"]["id"] == "act_123"


@pytest.mark.asyncio
async def test_list_campaigns_requires_account_id(client: AsyncClient):
    response = await client.get("/api/v1/meta/campaigns")
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# GET /api/v1/meta/insights
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_insights(client: AsyncClient, graph_server):
    """Insights are fetched for the requested range and ordered by spend within a day."""
    params = {"account_id": "act_123", "date_start": "2026-10-01", "date_end": "2026-10-07"}
    response = await client.get("/api/v1/meta/insights", params=params)

    assert response.status_code == 200
    body = response.json()
    assert body["date_range"] == {"since": "2026-10-01", "until": "2026-10-07"}
    assert [row["entity_id"] for row in body["data"]] == ["c2", "c1"]
    assert body["data"][1]["spend"] == 12.5

    insights_request = [r for r in graph_server.requests if r.url.path.endswith("/insights")][0]
    assert json.loads(insights_request.url.params["time_range"]) == {"since": "2026-10-01", "until": "2026-10-07"}

    again = await client.get("/api/v1/meta/insights", params=params)
    assert again.json()["cached"] is True


@pytest.mark.asyncio
async def test_list_insights_validation(client: AsyncClient):
    """Unknown levels and reversed date ranges are rejected."""
    bad_level = await client.get("/api/v1/meta/insights", params={"account_id": "act_123", "level": "account"})
    assert bad_level.status_code == 400

    reversed_range = await client.get(
        "/api/v1/meta/insights",
        params={"account_id": "act_123", "date_start": "2026-10-07", "date_end": "2026-10-01"},
    )
    assert reversed_range.status_code == 400


# ---------------------------------------------------------------------------
# /api/v1/sync
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_trigger_account_list_sync(client: AsyncClient, services):
    response = await client.post("/api/v1/sync", json={"type": "accounts"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["processed"] == 1
    assert await services.store.list_active_account_ids() == ["act_123"]


@pytest.mark.asyncio
async def test_trigger_single_account_sync(client: AsyncClient, services):
    response = await client.post("/api/v1/sync", json={"type": "account", "account_id": "act_123"})
    assert response.status_code == 200
    assert response.json()["processed"] == 3
    assert len(await services.store.list_campaigns("act_123")) == 2


@pytest.mark.asyncio
async def test_trigger_sync_validation(client: AsyncClient):
    """account syncs need an id; unknown types and out-of-range days are refused."""
    assert (await client.post("/api/v1/sync", json={"type": "account"})).status_code == 400
    assert (await client.post("/api/v1/sync", json={"type": "everything"})).status_code == 422
    assert (await client.post("/api/v1/sync", json={"type": "insights", "days": 365})).status_code == 422


@pytest.mark.asyncio
async def test_trigger_sync_busy_returns_409(client: AsyncClient, services):
    """A manual run while another job holds the lock is refused."""
    await services.sync._busy.acquire()
    try:
        response = await client.post("/api/v1/sync", json={"type": "campaigns"})
    finally:
        services.sync._busy.release()
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_sync_status(client: AsyncClient):
    response = await client.get("/api/v1/sync")
    assert response.status_code == 200
    assert response.json() == {"is_running": False, "scheduled_jobs": [], "last_runs": {}}


@pytest.mark.asyncio
async def test_post_without_csrf_token_rejected(client: AsyncClient):
    response = await client.post("/api/v1/sync", json={"type": "accounts"}, headers={"X-CSRF-Token": ""})
    assert response.status_code == 403


# ---------------------------------------------------------------------------
# Request guard on the HTTP stack
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_script_user_agent_rejected(client: AsyncClient):
    response = await client.get("/api/v1/sync", headers={"User-Agent": "curl/8.4.0"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_rate_limit_headers_and_api_log(client: AsyncClient, session_factory):
    """Guarded responses carry rate-limit headers and every call is logged."""
    response = await client.get("/api/v1/sync")
    assert response.headers["X-RateLimit-Limit"] == "1000"
    assert response.headers["X-RateLimit-Remaining"] == "999"

    async with session_factory() as session:
        logs = (await session.execute(select(ApiLog))).scalars().all()
    assert [(log.endpoint, log.method, log.status_code) for log in logs] == [("/api/v1/sync", "GET", 200)]


# ---------------------------------------------------------------------------
# /api/v1/webhooks/meta
# ---------------------------------------------------------------------------


def _signed(body: bytes) -> dict[str, str]:
    digest = hmac.new(b"test-app-secret", body, hashlib.sha256).hexdigest()
    return {"X-Hub-Signature-256": f"sha256={digest}", "Content-Type": "application/json"}


@pytest.mark.asyncio
async def test_webhook_verification(client: AsyncClient):
    ok = await client.get("/api/v1/webhooks/meta", params={
        "hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "1158201444",
    })
    assert ok.status_code == 200
    assert ok.text == "1158201444"

    denied = await client.get("/api/v1/webhooks/meta", params={
        "hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "1",
    })
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_webhook_signature_required(client: AsyncClient):
    body = b'{"object": "campaign", "entry": []}'
    missing = await client.post("/api/v1/webhooks/meta", content=body, headers={"X-CSRF-Token": ""})
    assert missing.status_code == 400

    forged = await client.post(
        "/api/v1/webhooks/meta", content=body, headers={"X-Hub-Signature-256": "sha256=" + "0" * 64},
    )
    assert forged.status_code == 403


@pytest.mark.asyncio
async def test_webhook_invalid_json(client: AsyncClient):
    body = b"not json"
    response = await client.post("/api/v1/webhooks/meta", content=body, headers=_signed(body))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_campaign_change_refreshes_store(client: AsyncClient, services):
    """A signed campaign change re-fetches the campaign and writes it."""
    await services.store.upsert_ad_account(normalize_account({"id": "act_123", "name": "Main Account"}))
    body = json.dumps({
        "object": "campaign",
        "entry": [{"id": "c1", "time": 1760000000, "changes": [{"field": "status", "value": {"id": "c1"}}]}],
    }).encode()

    response = await client.post("/api/v1/webhooks/meta", content=body, headers=_signed(body))

    assert response.status_code == 200
    assert response.json() == {"received": True, "entries": 1, "changes": 1, "errors": 0}
    campaign = await services.store.get_campaign("c1")
    assert campaign.name == "Spring Sale v2"
    assert campaign.account_id == "act_123"


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health_report(client: AsyncClient):
    """Without Redis the cache is degraded, so the service reports degraded but stays up."""
    response = await client.get("/api/v1/health", params={"detailed": "true"}, headers={"User-Agent": ""})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["services"]["database"]["status"] == "healthy"
    assert body["services"]["cache"]["status"] == "degraded"
    assert body["services"]["meta_api"]["status"] == "healthy"
    assert body["sync"]["is_running"] is False


@pytest.mark.asyncio
async def test_liveness_probe(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
