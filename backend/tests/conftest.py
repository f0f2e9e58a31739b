"""
Shared test fixtures for the ad sync test suite.

Every test gets its own file-backed SQLite database (via ``aiosqlite``) so
ON DELETE CASCADE and ON CONFLICT upserts behave the way they do in
production, an in-memory cache driven by a fake clock, and a scripted
stand-in for the Graph API.
"""

from __future__ import annotations

from datetime import date
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from adsync.config import Settings
from adsync.core.errors import GraphAPIError
from adsync.database import build_engine, build_session_factory, init_db
from adsync.services.cache import CacheManager
from adsync.services.container import ServiceContainer, build_services
from adsync.services.store import AdStore
from adsync.services.sync_service import SyncOptions, SyncService

TODAY = date(2026, 10, 18)
BROWSER_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/128.0 Safari/537.36"
CSRF_TOKEN = "dGVzdC1jc3JmLXRva2VuLWZvci10aGUtYXBpLXN1aXRl"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_seconds: float) -> None:
    return None


class FakeGraphAPI:
    """Scripted replacement for ``GraphAPIClient`` used by sync tests.

    ``errors`` maps a call key such as ``"campaigns:A1"`` to the
    ``GraphAPIError`` that call should raise.
    """

    def __init__(self):
        self.accounts: list[dict] = []
        self.campaigns: dict[str, list[dict]] = {}
        self.adsets: dict[str, list[dict]] = {}
        self.ads: dict[str, list[dict]] = {}
        self.insights: dict[str, list[dict]] = {}
        self.objects: dict[str, dict] = {}
        self.errors: dict[str, GraphAPIError] = {}
        self.calls: list[str] = []

    def _call(self, key: str) -> None:
        self.calls.append(key)
        if key in self.errors:
            raise self.errors[key]

    async def get_ad_accounts(self, fields=None) -> list[dict]:
        self._call("accounts")
        return list(self.accounts)

    async def get_ad_account(self, account_id: str, fields=None) -> dict:
        self._call(f"account:{account_id}")
        for account in self.accounts:
            if account["id"] == account_id:
                return dict(account)
        raise GraphAPIError("Unsupported get request", 404, code=100)

    async def get_object(self, object_id: str, fields) -> dict:
        self._call(f"object:{object_id}")
        if object_id not in self.objects:
            raise GraphAPIError("Unsupported get request", 404, code=100)
        return dict(self.objects[object_id])

    async def get_campaigns(self, account_id: str, fields=None, limit: int = 100) -> list[dict]:
        self._call(f"campaigns:{account_id}")
        return list(self.campaigns.get(account_id, []))

    async def get_adsets(self, account_id: str, campaign_id=None, fields=None, limit: int = 100) -> list[dict]:
        self._call(f"adsets:{account_id}")
        return list(self.adsets.get(account_id, []))

    async def get_ads(self, account_id: str, adset_id=None, fields=None, limit: int = 100) -> list[dict]:
        self._call(f"ads:{account_id}")
        return list(self.ads.get(account_id, []))

    async def get_account_insights(self, account_id: str, since: str, until: str, level: str = "campaign", **kwargs):
        self._call(f"insights:{account_id}")
        return list(self.insights.get(account_id, []))

    async def check_health(self) -> dict:
        return {"status": "healthy", "id": "1"}

    async def close(self) -> None:
        return None


class FakeGraphServer:
    """``httpx.MockTransport`` handler answering Graph API paths from a route table."""

    def __init__(self, routes: dict[str, object] | None = None):
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        # strip the version segment: /v23.0/act_1/campaigns -> act_1/campaigns
        key = path.split("/", 2)[2] if path.count("/") >= 2 else path.lstrip("/")
        if key not in self.routes:
            return httpx.Response(
                404,
                json={"error": {"message": f"Unknown path {key}", "type": "GraphMethodException", "code": 100}},
            )
        return httpx.Response(200, json=self.routes[key])


# ---------------------------------------------------------------------------
# Database / store
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    """Fresh SQLite database per test, schema created with ``init_db``."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture()
async def store(session_factory) -> AdStore:
    return AdStore(session_factory)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock) -> CacheManager:
    """Cache running on its in-memory backend (no Redis configured)."""
    return CacheManager("", prefix="test:", clock=clock, today=lambda: TODAY.isoformat())


@pytest.fixture()
def fake_api() -> FakeGraphAPI:
    return FakeGraphAPI()


@pytest.fixture()
def sync(fake_api, store, cache) -> SyncService:
    return SyncService(
        fake_api,
        store,
        cache,
        SyncOptions(batch_size=50, delay_between_batches=0, insights_days=7),
        sleep=no_sleep,
        today=lambda: TODAY,
    )


# ---------------------------------------------------------------------------
# HTTP app
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="test",
        redis_url="",
        meta_access_token="test-session-token",
        meta_app_secret="test-app-secret",
        meta_webhook_verify_token="verify-me",
        allowed_origins="http://testserver",
        cors_origins="http://testserver",
        rate_limit_max=1000,
        enable_scheduled_sync=False,
    )


@pytest.fixture()
def graph_server() -> FakeGraphServer:
    return FakeGraphServer({
        "me": {"id": "1000"},
        "me/adaccounts": {"data": [
            {"id": "act_123", "name": "Main Account", "account_status": 1, "currency": "USD"},
        ]},
        "act_123": {"id": "act_123", "name": "Main Account", "account_status": 1, "currency": "USD"},
        "act_123/campaigns": {"data": [
            {"id": "c1", "name": "Spring Sale", "status": "ACTIVE", "objective": "OUTCOME_SALES"},
            {"id": "c2", "name": "Brand Awareness", "status": "PAUSED", "objective": "OUTCOME_AWARENESS"},
        ]},
        "act_123/insights": {"data": [
            {"campaign_id": "c1", "campaign_name": "Spring Sale", "date_start": "2026-10-05",
             "date_stop": "2026-10-05", "spend": "12.50", "impressions": "1000", "clicks": "40"},
            {"campaign_id": "c2", "campaign_name": "Brand Awareness", "date_start": "2026-10-05",
             "date_stop": "2026-10-05", "spend": "30.00", "impressions": "5000", "clicks": "20"},
        ]},
        "c1": {"id": "c1", "name": "Spring Sale v2", "account_id": "123", "status": "PAUSED"},
    })


@pytest_asyncio.fixture()
async def services(test_settings, session_factory, graph_server) -> AsyncGenerator[ServiceContainer, None]:
    container = await build_services(
        test_settings,
        session_factory=session_factory,
        transport=httpx.MockTransport(graph_server),
    )
    container.api._sleep = no_sleep
    yield container
    await container.close()


@pytest_asyncio.fixture()
async def client(services: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """
    FastAPI test client that uses ``httpx.AsyncClient`` with ``ASGITransport``.
    The lifespan is not run; the test service container is installed on
    ``app.state`` directly. Requests look like a browser on an allowed origin.
    """
    from adsync.main import app

    app.state.services = services
    transport = ASGITransport(app=app)
    headers = {
        "User-Agent": BROWSER_UA,
        "Origin": "http://testserver",
        "X-CSRF-Token": CSRF_TOKEN,
    }
    async with AsyncClient(transport=transport, base_url="http://testserver", headers=headers) as ac:
        yield ac

    app.state.services = None
