"""Explicit construction of the service graph for one process."""

import logging
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adsync.config import Settings, get_settings
from adsync.services.cache import CacheManager
from adsync.services.dashboard import DashboardReader
from adsync.services.graph_api import GraphAPIClient
from adsync.services.health import HealthService
from adsync.services.rate_limiter import RateLimiter
from adsync.services.request_guard import GuardConfig, RequestGuard
from adsync.services.store import AdStore
from adsync.services.sync_service import SyncOptions, SyncService
from adsync.services.tokens import SystemTokenManager
from adsync.services.webhooks import WebhookProcessor, WebhookValidator

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: AdStore
    cache: CacheManager
    tokens: SystemTokenManager
    api: GraphAPIClient
    sync: SyncService
    guard: RequestGuard
    webhook_validator: WebhookValidator
    webhooks: WebhookProcessor
    dashboard: DashboardReader
    health: HealthService

    async def close(self) -> None:
        self.sync.stop()
        await self.api.close()
        await self.cache.close()


async def build_services(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServiceContainer:
    """Wire every service together. The cache is connected (or falls back) before returning."""
    settings = settings or get_settings()
    if session_factory is None:
        from adsync.database import async_session as session_factory

    store = AdStore(session_factory)
    cache = CacheManager(settings.redis_url, prefix=settings.cache_key_prefix)
    await cache.connect()

    tokens = SystemTokenManager(
        app_id=settings.meta_app_id,
        app_secret=settings.meta_app_secret,
        system_user_id=settings.meta_system_user_id,
        base_url=settings.meta_graph_base_url,
        session_token=settings.meta_access_token,
        store=store,
        encryption_key=settings.token_encryption_key,
        ttl_hours=settings.system_token_ttl_hours,
        transport=transport,
    )
    api = GraphAPIClient(
        tokens.get_token,
        base_url=settings.meta_graph_base_url,
        timeout=settings.api_timeout_seconds,
        max_retries=settings.api_max_retries,
        base_delay=settings.api_retry_base_delay,
        max_delay=settings.api_retry_max_delay,
        transport=transport,
    )
    sync = SyncService(
        api,
        store,
        cache,
        SyncOptions(
            batch_size=settings.sync_batch_size,
            delay_between_batches=settings.sync_delay_between_batches,
            insights_days=settings.insights_sync_days,
        ),
    )
    limiter = RateLimiter(cache=cache, store=store, backend=settings.rate_limit_backend)

    return ServiceContainer(
        settings=settings,
        store=store,
        cache=cache,
        tokens=tokens,
        api=api,
        sync=sync,
        guard=RequestGuard(limiter, GuardConfig.from_settings(settings)),
        webhook_validator=WebhookValidator(settings.meta_app_secret, settings.meta_webhook_verify_token),
        webhooks=WebhookProcessor(sync, cache),
        dashboard=DashboardReader(store, cache, sync),
        health=HealthService(store, cache, api, sync),
    )
