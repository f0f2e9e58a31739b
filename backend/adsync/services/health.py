import logging
import time

from adsync.services.cache import CacheManager
from adsync.services.graph_api import GraphAPIClient
from adsync.services.store import AdStore
from adsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class HealthService:
    """Rolls per-dependency checks up into healthy / degraded / unhealthy."""

    def __init__(self, store: AdStore, cache: CacheManager, api: GraphAPIClient, sync: SyncService):
        self.store = store
        self.cache = cache
        self.api = api
        self.sync = sync

    async def _timed(self, check) -> dict:
        started = time.monotonic()
        try:
            result = await check()
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            result = {"status": "unhealthy", "error": str(e)}
        result["response_time_ms"] = int((time.monotonic() - started) * 1000)
        return result

    async def _database(self) -> dict:
        await self.store.ping()
        return {"status": "healthy", "tables": await self.store.count_rows()}

    async def _cache(self) -> dict:
        ok = await self.cache.ping()
        stats = await self.cache.get_stats()
        if not ok:
            return {"status": "unhealthy", **stats}
        # Serving from the in-process fallback still works, just not shared
        return {"status": "healthy" if stats["connected"] else "degraded", **stats}

    async def _meta_api(self) -> dict:
        probe = await self.api.check_health()
        status = {"healthy": "healthy", "rate_limited": "degraded"}.get(probe["status"], "unhealthy")
        return {**probe, "status": status}

    async def check(self, detailed: bool = False) -> dict:
        services = {
            "database": await self._timed(self._database),
            "cache": await self._timed(self._cache),
            "meta_api": await self._timed(self._meta_api),
        }
        statuses = {s["status"] for s in services.values()}
        if "unhealthy" in statuses:
            overall = "unhealthy"
        elif "degraded" in statuses:
            overall = "degraded"
        else:
            overall = "healthy"

        report = {"status": overall, "services": services}
        if detailed:
            report["sync"] = self.sync.status()
        return report
