"""
Tests for the Graph API client: retry and backoff policy, pagination,
parameter encoding and batch requests.
"""

from __future__ import annotations

import json

import httpx
import pytest

from adsync.core.errors import GraphAPIError
from adsync.services.graph_api import GraphAPIClient, _pin_api_version
from adsync.services.normalizers import normalize_campaign


def _client(handler, sleeps: list[float] | None = None, token: str | None = "tok", **kwargs) -> GraphAPIClient:
    async def fake_sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    async def token_provider():
        return token

    return GraphAPIClient(
        token_provider,
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
        **kwargs,
    )


def _error(status: int, code: int = 1, message: str = "boom") -> httpx.Response:
    return httpx.Response(status, json={"error": {"message": message, "type": "OAuthException", "code": code}})


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_server_errors_retry_with_growing_backoff():
    """max_retries=3 means 4 attempts in total, with strictly increasing delays."""
    attempts = []
    sleeps: list[float] = []

    def handler(request):
        attempts.append(request)
        return _error(500, code=2, message="Service temporarily unavailable")

    api = _client(handler, sleeps, max_retries=3, base_delay=1.0, max_delay=10.0)
    with pytest.raises(GraphAPIError) as exc_info:
        await api.get("act_1/campaigns")

    assert len(attempts) == 4
    assert sleeps == [1.0, 2.0, 4.0]
    assert exc_info.value.status == 500
    await api.close()


@pytest.mark.asyncio
async def test_backoff_is_capped():
    """Delays never exceed max_delay."""
    api = _client(lambda r: httpx.Response(200, json={}), base_delay=1.0, max_delay=3.0)
    assert [api.backoff_delay(n) for n in range(4)] == [1.0, 2.0, 3.0, 3.0]
    await api.close()


@pytest.mark.asyncio
async def test_not_found_is_not_retried():
    """A 404 fails on the first attempt."""
    attempts = []

    def handler(request):
        attempts.append(request)
        return _error(404, code=100, message="Unsupported get request")

    api = _client(handler, max_retries=3)
    with pytest.raises(GraphAPIError) as exc_info:
        await api.get("missing")

    assert len(attempts) == 1
    assert exc_info.value.is_not_found
    assert exc_info.value.code == 100
    await api.close()


@pytest.mark.parametrize("status", [408, 429])
@pytest.mark.asyncio
async def test_timeout_and_throttle_statuses_retry(status):
    """408 and 429 are retried even though they are 4xx."""
    responses = iter([_error(status, code=4), httpx.Response(200, json={"id": "1"})])
    sleeps: list[float] = []

    api = _client(lambda r: next(responses), sleeps, max_retries=3)
    assert await api.get("me") == {"id": "1"}
    assert sleeps == [1.0]
    await api.close()


@pytest.mark.asyncio
async def test_network_errors_report_status_zero():
    """Timeouts are retried and finally raised with status 0."""
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectTimeout("timed out", request=request)

    api = _client(handler, max_retries=2)
    with pytest.raises(GraphAPIError) as exc_info:
        await api.get("me")

    assert len(attempts) == 3
    assert exc_info.value.status == 0
    assert exc_info.value.is_retryable
    await api.close()


@pytest.mark.asyncio
async def test_missing_token_raises_auth_error():
    """Without a token no request is sent and an auth error is raised."""
    attempts = []
    api = _client(lambda r: attempts.append(r), token=None)

    with pytest.raises(GraphAPIError) as exc_info:
        await api.get("me")

    assert exc_info.value.is_auth_error
    assert attempts == []
    await api.close()


@pytest.mark.asyncio
async def test_bearer_token_sent():
    """The provider's token is sent as a bearer header."""
    seen = []

    def handler(request):
        seen.append(request.headers["authorization"])
        return httpx.Response(200, json={"id": "1"})

    api = _client(handler, token="secret-token")
    await api.get("me")
    assert seen == ["Bearer secret-token"]
    await api.close()


# ---------------------------------------------------------------------------
# Pagination & parameters
# ---------------------------------------------------------------------------


def test_pin_api_version_rewrites_next_url():
    """Cursor URLs pointing at another API version are pinned to ours."""
    url = "https://graph.facebook.com/v25.0/act_1/campaigns?after=abc"
    assert _pin_api_version(url, "v23.0") == "https://graph.facebook.com/v23.0/act_1/campaigns?after=abc"
    assert _pin_api_version(None, "v23.0") is None


@pytest.mark.asyncio
async def test_paginate_follows_cursors():
    """Every page is fetched and items are concatenated in order."""
    seen_urls = []

    def handler(request):
        seen_urls.append(str(request.url))
        if "after=page2" in str(request.url):
            return httpx.Response(200, json={"data": [{"id": "c3"}]})
        return httpx.Response(200, json={
            "data": [{"id": "c1"}, {"id": "c2"}],
            "paging": {"next": "https://graph.facebook.com/v25.0/act_1/campaigns?after=page2"},
        })

    api = _client(handler)
    campaigns = await api.get_campaigns("1")

    assert [c["id"] for c in campaigns] == ["c1", "c2", "c3"]
    assert "/v23.0/act_1/campaigns" in seen_urls[0]
    assert seen_urls[1].startswith("https://graph.facebook.com/v23.0/act_1/campaigns")
    await api.close()


@pytest.mark.asyncio
async def test_paginate_respects_max_pages():
    """Paging stops once max_pages pages have been read."""
    def handler(request):
        return httpx.Response(200, json={
            "data": [{"id": "x"}],
            "paging": {"next": "https://graph.facebook.com/v23.0/act_1/ads?after=more"},
        })

    api = _client(handler)
    assert len(await api.paginate("act_1/ads", max_pages=2)) == 2
    await api.close()


@pytest.mark.asyncio
async def test_insights_params_encoding():
    """time_range is JSON, fields are comma-joined, level and daily increment are sent."""
    captured = {}

    def handler(request):
        captured.update(dict(request.url.params))
        captured["path"] = request.url.path
        return httpx.Response(200, json={"data": []})

    api = _client(handler)
    await api.get_account_insights("act_9", "2026-10-01", "2026-10-07", level="adset", fields=["spend", "clicks"])

    assert captured["path"] == "/v23.0/act_9/insights"
    assert json.loads(captured["time_range"]) == {"since": "2026-10-01", "until": "2026-10-07"}
    assert captured["fields"] == "spend,clicks"
    assert captured["level"] == "adset"
    assert captured["time_increment"] == "1"
    assert "breakdowns" not in captured
    await api.close()


@pytest.mark.asyncio
async def test_campaign_fields_cover_normalized_columns():
    """The default campaign field list requests optimization_goal and it lands in the row."""
    captured = {}

    def handler(request):
        captured.update(dict(request.url.params))
        return httpx.Response(200, json={"data": [
            {"id": "c1", "name": "Sale", "optimization_goal": "LINK_CLICKS"},
        ]})

    api = _client(handler)
    campaigns = await api.get_campaigns("9")

    assert "optimization_goal" in captured["fields"].split(",")
    assert normalize_campaign(campaigns[0], "act_9")["optimization_goal"] == "LINK_CLICKS"
    await api.close()


# ---------------------------------------------------------------------------
# Batch & health
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_batch_splits_item_results():
    """Successful items decode to bodies; failed items become GraphAPIError values."""
    posted = {}

    def handler(request):
        posted["method"] = request.method
        posted["form"] = dict(httpx.QueryParams(request.content.decode()))
        return httpx.Response(200, json=[
            {"code": 200, "body": json.dumps({"id": "c1", "name": "A"})},
            {"code": 400, "body": json.dumps({"error": {"message": "Invalid parameter", "code": 100}})},
            None,
        ])

    api = _client(handler)
    results = await api.batch([
        {"relative_url": "c1?fields=id,name"},
        {"relative_url": "bad"},
        {"method": "POST", "relative_url": "c2", "body": {"status": "PAUSED"}},
    ])

    assert posted["method"] == "POST"
    envelope = json.loads(posted["form"]["batch"])
    assert envelope[2] == {"method": "POST", "relative_url": "c2", "body": "status=PAUSED"}
    assert results[0] == {"id": "c1", "name": "A"}
    assert isinstance(results[1], GraphAPIError) and results[1].status == 400
    assert isinstance(results[2], GraphAPIError) and results[2].status == 0
    await api.close()


@pytest.mark.asyncio
async def test_check_health_reports_throttling():
    """A throttling error code maps to a rate_limited probe result."""
    api = _client(lambda r: _error(400, code=17, message="User request limit reached"))
    assert (await api.check_health())["status"] == "rate_limited"
    await api.close()


def test_error_classification():
    """Auth, throttling and retryability follow status and Graph error codes."""
    assert GraphAPIError("expired", 400, code=190).is_auth_error
    assert GraphAPIError("forbidden", 403).is_auth_error
    assert GraphAPIError("slow down", 400, code=613).is_rate_limited
    assert GraphAPIError("bad", 400).is_retryable is False
    assert GraphAPIError("down", 503).is_retryable
    assert GraphAPIError("x", 500, code=2).to_dict()["code"] == 2
