"""Dashboard read path: cache first, then the store.

Account ids are accepted with or without the `act_` prefix and are always
looked up in prefixed form. On a cache miss the sync service is asked to
refresh the data (it stays the only writer); whatever the store holds
afterwards is returned and cached. A failed refresh just means the last
successfully synced rows are served.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable

from adsync.schemas.ads import AdAccountResponse, CampaignResponse, DailyInsightResponse
from adsync.services.cache import CacheManager
from adsync.services.normalizers import with_act_prefix
from adsync.services.store import AdStore, InsightFilters
from adsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)

INSIGHT_LEVELS = ("campaign", "adset", "ad")


def _today() -> date:
    return datetime.now(timezone.utc).date()


class DashboardReader:
    def __init__(self, store: AdStore, cache: CacheManager, sync: SyncService, today: Callable[[], date] = _today):
        self.store = store
        self.cache = cache
        self.sync = sync
        self._today = today

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def _refresh(self, what: str, refresh) -> None:
        try:
            result = await refresh
        except Exception as e:
            logger.warning("Refresh of %s failed, serving stored data: %s", what, e)
            return
        if not result.success:
            logger.warning("Refresh of %s incomplete: %s", what, "; ".join(result.error_details[:3]))

    # -- Accounts ------------------------------------------------------------

    async def get_account(self, account_id: str) -> dict | None:
        account_id = with_act_prefix(account_id)
        cached = await self.cache.get_cached_account_data(account_id)
        if cached is not None:
            return {"data": cached, "cached": True, "updated_at": self._now()}

        await self._refresh(f"account {account_id}", self.sync.refresh_entity("ad_account", account_id))
        row = await self.store.get_ad_account(account_id)
        if row is None:
            return None
        data = AdAccountResponse.from_row(row).model_dump(mode="json")
        await self.cache.cache_account_data(account_id, data)
        return {"data": data, "cached": False, "updated_at": self._now()}

    # -- Campaigns -----------------------------------------------------------

    async def get_campaigns(
        self,
        account_id: str,
        status: str | None = None,
        objective: str | None = None,
        limit: int = 100,
    ) -> dict:
        account_id = with_act_prefix(account_id)
        campaigns = await self.cache.get_cached_campaigns(account_id)
        cached = campaigns is not None
        if not cached:
            await self._refresh(f"campaigns of {account_id}", self.sync.sync_account(account_id))
            rows = await self.store.list_campaigns(account_id)
            campaigns = [CampaignResponse.from_row(row).model_dump(mode="json") for row in rows]
            if campaigns:
                await self.cache.cache_campaigns(account_id, campaigns)

        if status:
            campaigns = [c for c in campaigns if c.get("status") == status]
        if objective:
            campaigns = [c for c in campaigns if c.get("objective") == objective]
        return {
            "data": campaigns[:limit],
            "total": len(campaigns),
            "cached": cached,
            "updated_at": self._now(),
        }

    # -- Insights ------------------------------------------------------------

    async def get_insights(
        self,
        account_id: str,
        level: str = "campaign",
        since: date | None = None,
        until: date | None = None,
        entity_id: str | None = None,
        limit: int = 1000,
        offset: int = 0,
    ) -> dict:
        if level not in INSIGHT_LEVELS:
            raise ValueError(f"level must be one of: {', '.join(INSIGHT_LEVELS)}")
        account_id = with_act_prefix(account_id)
        until = until or self._today()
        since = since or until - timedelta(days=7)
        date_range = {"since": since.isoformat(), "until": until.isoformat()}

        # The cached payload holds one account/level for one date range
        use_cache = entity_id is None and offset == 0
        if use_cache:
            cached = await self.cache.get_cached_insights(account_id, level)
            if cached and cached.get("date_range") == date_range:
                data = cached.get("data", [])
                return {
                    "data": data[:limit],
                    "total": len(data),
                    "cached": True,
                    "date_range": date_range,
                    "updated_at": self._now(),
                }

        await self._refresh(
            f"insights of {account_id}",
            self.sync.sync_account_insights(account_id, since, until, level),
        )
        rows = await self.store.get_daily_insights(InsightFilters(
            account_id=account_id,
            entity_type=level,
            entity_id=entity_id,
            date_start=since,
            date_end=until,
            limit=limit,
            offset=offset,
        ))
        data = [DailyInsightResponse.from_row(row).model_dump(mode="json") for row in rows]
        if use_cache and data:
            await self.cache.cache_insights(account_id, level, {"date_range": date_range, "data": data})
        return {
            "data": data,
            "total": len(data),
            "cached": False,
            "date_range": date_range,
            "updated_at": self._now(),
        }
