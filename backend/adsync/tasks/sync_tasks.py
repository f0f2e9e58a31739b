"""Celery tasks for the scheduled sync jobs.

Used when beat drives the schedule instead of the in-process scheduler. Each
task builds its own engine and services on a fresh event loop and tears them
down before returning.
"""

import asyncio
import logging

from adsync.celery_app import celery_app
from adsync.config import get_settings
from adsync.database import build_engine, build_session_factory
from adsync.services.container import build_services

logger = logging.getLogger(__name__)


async def _run_job(job_name: str, **kwargs) -> dict:
    """Run one SyncService job against a task-local engine and return its result dict."""
    settings = get_settings()
    engine = build_engine(
        settings.async_database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        use_ssl=settings.db_ssl,
    )
    services = await build_services(settings, session_factory=build_session_factory(engine))
    try:
        job = getattr(services.sync, job_name)
        result = await job(**kwargs)
        logger.info("[celery-sync] %s done: %s", job_name, result.to_dict())
        return result.to_dict()
    finally:
        await services.close()
        await engine.dispose()


def _run(job_name: str, **kwargs) -> dict:
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(_run_job(job_name, **kwargs))
    finally:
        loop.close()


@celery_app.task(name="adsync.tasks.sync_tasks.sync_accounts")
def sync_accounts():
    """Celery beat task: refresh every active ad account."""
    return _run("sync_all_accounts")


@celery_app.task(name="adsync.tasks.sync_tasks.sync_campaigns")
def sync_campaigns():
    """Celery beat task: refresh campaigns for every active account."""
    return _run("sync_all_campaigns")


@celery_app.task(name="adsync.tasks.sync_tasks.sync_ad_structure")
def sync_ad_structure():
    """Celery beat task: refresh ad sets and ads for every active account."""
    return _run("sync_all_ad_structure")


@celery_app.task(name="adsync.tasks.sync_tasks.sync_insights")
def sync_insights(days: int | None = None):
    """Celery beat task: refresh the trailing insights window."""
    return _run("sync_all_accounts_insights", days=days)


@celery_app.task(name="adsync.tasks.sync_tasks.sync_account")
def sync_account(account_id: str):
    """Celery task: manual full sync of one account."""
    return _run("sync_account", account_id=account_id)


@celery_app.task(name="adsync.tasks.sync_tasks.cleanup_cache")
def cleanup_cache():
    """Celery beat task: drop expired cache entries and stale rate-limit windows."""
    return _run("cleanup_cache")
