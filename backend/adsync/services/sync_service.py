"""Sync orchestrator: the only writer of the ad tables.

Pulls from the Graph API, upserts row by row through :class:`AdStore`, and
invalidates the affected cache keys once an account's writes are done. Row
failures are captured as :class:`Err` outcomes and folded into a
:class:`SyncResult`; they never abort the batch.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable

from adsync.core.errors import GraphAPIError
from adsync.core.logging import log_sync_metric
from adsync.services.cache import CacheManager, account_key, campaigns_key
from adsync.services.graph_api import GraphAPIClient
from adsync.services.normalizers import (
    ADSET_FIELDS,
    AD_FIELDS,
    CAMPAIGN_FIELDS,
    normalize_account,
    normalize_ad,
    normalize_adset,
    normalize_campaign,
    normalize_insight,
    with_act_prefix,
)
from adsync.services.scheduler import Scheduler
from adsync.services.store import AdStore
from adsync.services.sync_result import Err, Ok, Outcome, SyncResult, attempt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    interval: timedelta
    offset: timedelta  # staggers first runs so exclusive jobs don't collide


SCHEDULED_JOBS = (
    ScheduledJob("sync_insights", timedelta(hours=1), timedelta(0)),
    ScheduledJob("sync_campaigns", timedelta(hours=2), timedelta(minutes=10)),
    ScheduledJob("sync_ad_structure", timedelta(hours=2), timedelta(minutes=20)),
    ScheduledJob("sync_accounts", timedelta(hours=6), timedelta(minutes=30)),
    ScheduledJob("cleanup_cache", timedelta(hours=4), timedelta(minutes=40)),
)


@dataclass
class SyncOptions:
    batch_size: int = 50
    delay_between_batches: float = 1.0
    insights_days: int = 7


def _today() -> date:
    return datetime.now(timezone.utc).date()


class SyncService:
    def __init__(
        self,
        api: GraphAPIClient,
        store: AdStore,
        cache: CacheManager,
        options: SyncOptions | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        today: Callable[[], date] = _today,
    ):
        self.api = api
        self.store = store
        self.cache = cache
        self.options = options or SyncOptions()
        self._sleep = sleep
        self._today = today
        self._busy = asyncio.Lock()
        self._scheduler: Scheduler | None = None
        self.last_runs: dict[str, dict] = {}

    @property
    def is_running(self) -> bool:
        return self._busy.locked()

    # -- Lifecycle -----------------------------------------------------------

    def start(self, scheduler: Scheduler) -> None:
        """Register the periodic jobs on ``scheduler`` and start it."""
        tasks = {
            "sync_insights": self.sync_all_accounts_insights,
            "sync_campaigns": self.sync_all_campaigns,
            "sync_ad_structure": self.sync_all_ad_structure,
            "sync_accounts": self.sync_all_accounts,
            "cleanup_cache": self.cleanup_cache,
        }
        for job in SCHEDULED_JOBS:
            scheduler.every(job.interval, tasks[job.name], job.name, offset=job.offset)
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Scheduled sync started (%d jobs)", len(SCHEDULED_JOBS))

    def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown()
            self._scheduler = None
            logger.info("Scheduled sync stopped")

    def status(self) -> dict:
        return {
            "is_running": self.is_running,
            "scheduled_jobs": self._scheduler.job_names() if self._scheduler else [],
            "last_runs": dict(self.last_runs),
        }

    async def _exclusive(self, job: str, run: Callable[[], Awaitable[SyncResult]]) -> SyncResult:
        """Run a full sync job unless another one is already in progress."""
        if self._busy.locked():
            logger.info("[sync] %s skipped, another sync is in progress", job)
            return SyncResult.busy()

        async with self._busy:
            started = time.monotonic()
            logger.info("[sync] %s started", job)
            try:
                result = await run()
            except Exception as e:
                logger.error("[sync] %s failed: %s", job, e, exc_info=True)
                result = SyncResult.failure(f"{type(e).__name__}: {e}")
            result.duration_ms = int((time.monotonic() - started) * 1000)

        self.last_runs[job] = {
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "success": result.success,
            "processed": result.processed,
            "errors": result.errors,
        }
        log_sync_metric(job, result.duration_ms, processed=result.processed, errors=result.errors)
        logger.info(
            "[sync] %s finished: processed=%d errors=%d in %dms",
            job, result.processed, result.errors, result.duration_ms,
        )
        return result

    @staticmethod
    def _must_stop(error: GraphAPIError) -> bool:
        """Auth failures and throttling end the whole job; anything else skips one entity."""
        return error.is_auth_error or error.is_rate_limited

    # -- Row writers ---------------------------------------------------------

    async def _store_account(self, data: dict) -> None:
        await self.store.upsert_ad_account(normalize_account(data))

    async def _store_campaign(self, data: dict, account_id: str) -> None:
        await self.store.upsert_campaign(normalize_campaign(data, account_id))

    async def _store_adset(self, data: dict, account_id: str) -> None:
        await self.store.upsert_adset(normalize_adset(data, account_id))

    async def _store_ad(self, data: dict, account_id: str) -> None:
        await self.store.upsert_ad(normalize_ad(data, account_id))

    async def _store_insight(self, data: dict, account_id: str, level: str) -> None:
        await self.store.upsert_daily_insight(normalize_insight(data, account_id, level))

    # -- Accounts ------------------------------------------------------------

    async def sync_all_accounts(self) -> SyncResult:
        return await self._exclusive("sync_accounts", self._sync_accounts)

    async def _sync_accounts(self) -> SyncResult:
        await self.store.ping()
        try:
            accounts = await self.api.get_ad_accounts()
        except GraphAPIError as e:
            logger.error("[sync] Could not list ad accounts: %r", e)
            return SyncResult.failure(f"Failed to list ad accounts: {e.message}")

        outcomes: list[Outcome] = []
        size = max(self.options.batch_size, 1)
        for start in range(0, len(accounts), size):
            if start:
                await self._sleep(self.options.delay_between_batches)
            for data in accounts[start:start + size]:
                account_id = str(data.get("id", "?"))
                outcome = await attempt(account_id, self._store_account(data))
                if isinstance(outcome, Ok):
                    await self.cache.delete(account_key(account_id))
                outcomes.append(outcome)
        return SyncResult.fold(outcomes)

    # -- Campaigns -----------------------------------------------------------

    async def sync_all_campaigns(self) -> SyncResult:
        return await self._exclusive("sync_campaigns", self._sync_campaigns)

    async def _sync_campaigns(self) -> SyncResult:
        return await self._for_each_account(self._sync_account_campaigns)

    async def _for_each_account(self, sync_one: Callable[[str], Awaitable[tuple[SyncResult, bool]]]) -> SyncResult:
        """Sequentially sync every active account, pausing between accounts."""
        account_ids = await self.store.list_active_account_ids()
        result = SyncResult()
        for index, account_id in enumerate(account_ids):
            if index:
                await self._sleep(self.options.delay_between_batches)
            account_result, stop = await sync_one(account_id)
            result.merge(account_result)
            if stop:
                logger.warning("[sync] Stopping after account %s: remote API refused further work", account_id)
                break
        return result

    async def _sync_account_campaigns(self, account_id: str) -> tuple[SyncResult, bool]:
        try:
            campaigns = await self.api.get_campaigns(account_id)
        except GraphAPIError as e:
            logger.warning("[sync] Could not fetch campaigns for %s: %r", account_id, e)
            return SyncResult.fold([Err(account_id, f"fetch campaigns: {e.message}")]), self._must_stop(e)

        outcomes = []
        for data in campaigns:
            outcomes.append(await attempt(str(data.get("id", "?")), self._store_campaign(data, account_id)))
        # Invalidate only after every write for the account has landed
        await self.cache.delete(campaigns_key(account_id))
        return SyncResult.fold(outcomes), False

    # -- Ad sets & ads -------------------------------------------------------

    async def sync_all_ad_structure(self) -> SyncResult:
        return await self._exclusive("sync_ad_structure", self._sync_ad_structure)

    async def _sync_ad_structure(self) -> SyncResult:
        return await self._for_each_account(self._sync_account_structure)

    async def _sync_account_structure(self, account_id: str) -> tuple[SyncResult, bool]:
        outcomes: list[Outcome] = []
        try:
            adsets = await self.api.get_adsets(account_id)
            for data in adsets:
                outcomes.append(await attempt(str(data.get("id", "?")), self._store_adset(data, account_id)))
            ads = await self.api.get_ads(account_id)
            for data in ads:
                outcomes.append(await attempt(str(data.get("id", "?")), self._store_ad(data, account_id)))
        except GraphAPIError as e:
            logger.warning("[sync] Could not fetch ad structure for %s: %r", account_id, e)
            outcomes.append(Err(account_id, f"fetch ad structure: {e.message}"))
            await self.cache.delete(campaigns_key(account_id))
            return SyncResult.fold(outcomes), self._must_stop(e)

        await self.cache.delete(campaigns_key(account_id))
        return SyncResult.fold(outcomes), False

    # -- Insights ------------------------------------------------------------

    def insights_window(self, days: int | None = None) -> tuple[date, date]:
        until = self._today()
        return until - timedelta(days=days or self.options.insights_days), until

    async def sync_all_accounts_insights(self, days: int | None = None) -> SyncResult:
        since, until = self.insights_window(days)

        async def _run() -> SyncResult:
            async def _one(account_id: str) -> tuple[SyncResult, bool]:
                return await self._sync_account_insights(account_id, since, until, "campaign")

            return await self._for_each_account(_one)

        return await self._exclusive("sync_insights", _run)

    async def _sync_account_insights(
        self, account_id: str, since: date, until: date, level: str
    ) -> tuple[SyncResult, bool]:
        try:
            records = await self.api.get_account_insights(
                account_id, since.isoformat(), until.isoformat(), level=level
            )
        except GraphAPIError as e:
            logger.warning("[sync] Could not fetch insights for %s: %r", account_id, e)
            return SyncResult.fold([Err(account_id, f"fetch insights: {e.message}")]), self._must_stop(e)

        outcomes = []
        for data in records:
            entity_id = data.get(f"{level}_id") or account_id
            key = f"{entity_id}@{data.get('date_start', '?')}"
            outcomes.append(await attempt(key, self._store_insight(data, account_id, level)))
        await self.cache.invalidate_insights(account_id, level)
        return SyncResult.fold(outcomes), False

    # -- Manual refresh (no busy guard, no scheduling) -----------------------

    async def sync_account(self, account_id: str) -> SyncResult:
        """Refresh one account and its campaigns right now."""
        started = time.monotonic()
        try:
            data = await self.api.get_ad_account(account_id)
        except GraphAPIError as e:
            logger.error("[sync] Manual sync of %s failed: %r", account_id, e)
            return SyncResult.failure(f"Failed to fetch account {account_id}: {e.message}")

        stored_id = str(data.get("id") or with_act_prefix(account_id))
        outcome = await attempt(stored_id, self._store_account(data))
        result = SyncResult.fold([outcome])
        if isinstance(outcome, Ok):
            campaigns_result, _ = await self._sync_account_campaigns(stored_id)
            result.merge(campaigns_result)
        await self.cache.invalidate_account(stored_id)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "[sync] Manual sync of %s: processed=%d errors=%d",
            stored_id, result.processed, result.errors,
        )
        return result

    async def sync_account_insights(
        self,
        account_id: str,
        since: date | None = None,
        until: date | None = None,
        level: str = "campaign",
    ) -> SyncResult:
        default_since, default_until = self.insights_window()
        started = time.monotonic()
        result, _ = await self._sync_account_insights(
            account_id, since or default_since, until or default_until, level
        )
        result.duration_ms = int((time.monotonic() - started) * 1000)
        return result

    async def refresh_entity(self, entity_type: str, entity_id: str) -> SyncResult:
        """Re-fetch a single account, campaign, ad set or ad (webhook driven)."""
        if entity_type == "ad_account":
            try:
                data = await self.api.get_ad_account(entity_id)
            except GraphAPIError as e:
                logger.warning("[sync] Could not refresh ad_account %s: %r", entity_id, e)
                return SyncResult.failure(f"Failed to fetch ad_account {entity_id}: {e.message}")
            stored_id = str(data.get("id") or with_act_prefix(entity_id))
            outcome = await attempt(stored_id, self._store_account(data))
            await self.cache.delete(account_key(stored_id))
            return SyncResult.fold([outcome])

        fields = {"campaign": CAMPAIGN_FIELDS, "adset": ADSET_FIELDS, "ad": AD_FIELDS}.get(entity_type)
        writers = {"campaign": self._store_campaign, "adset": self._store_adset, "ad": self._store_ad}
        if fields is None:
            raise ValueError(f"Unsupported entity type: {entity_type}")

        try:
            data = await self.api.get_object(entity_id, fields)
        except GraphAPIError as e:
            logger.warning("[sync] Could not refresh %s %s: %r", entity_type, entity_id, e)
            return SyncResult.failure(f"Failed to fetch {entity_type} {entity_id}: {e.message}")

        account_id = with_act_prefix(data.get("account_id", ""))
        outcome = await attempt(entity_id, writers[entity_type](data, account_id))
        await self.cache.delete(campaigns_key(account_id))
        return SyncResult.fold([outcome])

    # -- Housekeeping --------------------------------------------------------

    async def cleanup_cache(self) -> SyncResult:
        started = time.monotonic()
        result = SyncResult()
        try:
            result.processed += await self.cache.cleanup_expired_keys()
            result.processed += await self.store.prune_rate_limits()
        except Exception as e:
            logger.error("[sync] Cache cleanup failed: %s", e)
            result = SyncResult.failure(str(e))
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.last_runs["cleanup_cache"] = {
            "finished_at": datetime.now(timezone.utc).isoformat(),
            "success": result.success,
            "processed": result.processed,
            "errors": result.errors,
        }
        return result
