"""StatsAggregator: counts and success rate over the store, with a TTL cache."""

import threading
from datetime import datetime, timedelta
from typing import Optional

from notifier.domain.models import NotificationStatus
from notifier.logging import get_logger
from notifier.persistence.store import NotificationStore
from notifier.utils.clock import Clock, SystemClock

from .models import DeliveryStats, FailureSummary

logger = get_logger(__name__, component="stats")


def success_rate(sent: int, total: int) -> float:
    """Percentage of records delivered, two decimals; 0.0 with no records."""
    if total <= 0:
        return 0.0
    return round(sent / total * 100, 2)


class StatsAggregator:
    """Derives DeliveryStats from NotificationStore.aggregate().

    A cached result is served until it is ``ttl_seconds`` old or until
    ``invalidate()`` is called; after that the next call always computes a
    live aggregate. ``ttl_seconds=0`` disables caching.
    """

    def __init__(
        self,
        store: NotificationStore,
        ttl_seconds: float = 300,
        clock: Optional[Clock] = None,
        recent_failures_limit: int = 10,
    ):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or SystemClock()
        self.recent_failures_limit = recent_failures_limit

        self._lock = threading.Lock()
        self._cached: Optional[DeliveryStats] = None
        self._cached_at: Optional[datetime] = None
        self._generation = 0

    def get_stats(self) -> DeliveryStats:
        """Current statistics, from cache when fresh.

        Raises:
            StoreUnavailableError: If a live aggregate is needed and the store is down
        """
        now = self.clock.now()

        with self._lock:
            if self._is_fresh(now):
                return self._cached
            generation = self._generation

        stats = self._compute(now)

        with self._lock:
            # An invalidate() during the computation makes this result stale already
            if self.ttl > timedelta(0) and generation == self._generation:
                self._cached = stats
                self._cached_at = now

        logger.debug(
            "Statistics recomputed",
            extra={"event": "stats.recomputed", "total": stats.total, "success_rate": stats.success_rate},
        )
        return stats

    def invalidate(self) -> None:
        """Drop the cached result so the next call recomputes."""
        with self._lock:
            self._cached = None
            self._cached_at = None
            self._generation += 1

    def _is_fresh(self, now: datetime) -> bool:
        if self._cached is None or self._cached_at is None:
            return False
        return now - self._cached_at < self.ttl

    def _compute(self, now: datetime) -> DeliveryStats:
        aggregate = self.store.aggregate(now)
        failures = self.store.recent_failures(self.recent_failures_limit)

        sent = aggregate.count(NotificationStatus.SENT)
        return DeliveryStats(
            total=aggregate.total,
            sent=sent,
            pending=aggregate.count(NotificationStatus.PENDING),
            retrying=aggregate.count(NotificationStatus.RETRYING),
            processing=aggregate.count(NotificationStatus.PROCESSING),
            failed=aggregate.count(NotificationStatus.FAILED),
            today=aggregate.created_today,
            success_rate=success_rate(sent, aggregate.total),
            last_updated=now,
            recent_failures=[FailureSummary.from_record(record) for record in failures],
        )
