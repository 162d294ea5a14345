"""
Operational counters shared by the API and the Celery workers.

Counters live in a single Redis hash so every replica and worker adds to the
same numbers. Set FORCE_IN_MEMORY_METRICS to keep them process-local (tests,
local runs without Redis).
"""
from collections import Counter
from threading import Lock
from typing import Dict, Optional

import redis

from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger("metrics")

METRICS_HASH_KEY = "url_scanner:metrics"


def metric_key(name: str, **tags) -> str:
    """`scans.failed` + reason=x -> `scans.failed{reason=x}` (tags sorted)."""
    if not tags:
        return name
    tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{name}{{{tag_str}}}"


class ScanMetrics:
    def __init__(self, redis_client: Optional[redis.Redis] = None, in_memory: Optional[bool] = None):
        if in_memory is None:
            in_memory = settings.FORCE_IN_MEMORY_METRICS
        self.in_memory = in_memory and redis_client is None
        self._redis = redis_client
        self._counts: Counter = Counter()
        self._lock = Lock()

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        return self._redis

    def increment(self, name: str, amount: int = 1, **tags) -> None:
        key = metric_key(name, **tags)

        if self.in_memory:
            with self._lock:
                self._counts[key] += amount
            return

        try:
            self._client().hincrby(METRICS_HASH_KEY, key, amount)
        except redis.RedisError as e:
            # Losing a tick is fine; failing the request over it is not
            logger.warning(f"Could not record metric {key}: {e}")

    def snapshot(self) -> Dict[str, int]:
        if self.in_memory:
            with self._lock:
                return dict(self._counts)

        try:
            raw = self._client().hgetall(METRICS_HASH_KEY)
        except redis.RedisError as e:
            logger.warning(f"Could not read metrics: {e}")
            return {}
        return {k: int(v) for k, v in raw.items()}

    def reset(self) -> None:
        if self.in_memory:
            with self._lock:
                self._counts.clear()
            return
        self._client().delete(METRICS_HASH_KEY)


_metrics: Optional[ScanMetrics] = None


def get_metrics() -> ScanMetrics:
    global _metrics
    if _metrics is None:
        _metrics = ScanMetrics()
    return _metrics
