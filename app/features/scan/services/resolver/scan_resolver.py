from datetime import timedelta
from typing import Optional

from app.features.scan.models.url_scan import UrlScan
from app.features.scan.services.state.transitions import new_cached_scan, new_submitted_scan
from app.features.scan.services.store.scan_store import AsyncScanStore
from app.platform.config import settings
from app.platform.db.base import utcnow
from app.platform.logger import get_logger
from app.platform.metrics import ScanMetrics, get_metrics

logger = get_logger("scan_resolver")


class ScanResolver:
    """
    Decides at submission time whether a new provider scan is needed.

    Order of checks within the cache TTL window:
    1. the caller already has a scan for this exact URL -> return it as is
    2. anyone has a DONE scan for the URL -> copy its result into a new DONE scan
    3. otherwise -> new SUBMITTED scan for the worker to pick up
    """

    def __init__(
        self,
        store: AsyncScanStore,
        metrics: Optional[ScanMetrics] = None,
        cache_ttl_hours: Optional[int] = None,
    ):
        self.store = store
        self.metrics = metrics or get_metrics()
        self.cache_ttl_hours = (
            cache_ttl_hours if cache_ttl_hours is not None else settings.SCAN_CACHE_TTL_HOURS
        )

    async def create_scan(self, url: str, user_id: str) -> UrlScan:
        since = utcnow() - timedelta(hours=self.cache_ttl_hours)

        existing = await self.store.find_by_owner_and_url_since(user_id, url, since)
        if existing:
            self.metrics.increment("scans.cache.hit", type="user")
            logger.info(f"User {user_id} already has scan {existing.id} for {url}; reusing it")
            return existing

        cached = await self.store.find_global_cached_since(url, since)
        if cached:
            self.metrics.increment("scans.cache.hit", type="global")
            scan = await self.store.save(new_cached_scan(url, user_id, cached))
            logger.info(f"Global cache hit for {url}: scan {scan.id} copied from {cached.id}")
            return scan

        self.metrics.increment("scans.submitted", type="new")
        scan = await self.store.save(new_submitted_scan(url, user_id))
        logger.info(f"New scan {scan.id} queued for {url} (user {user_id})")
        return scan
