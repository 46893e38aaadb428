"""DeliveryQueue: priority-ordered view over records eligible for dispatch.

The store is the source of truth. An optional Redis accelerator keeps a
sorted set of eligible ids so claims can target specific records instead of
scanning; any accelerator failure degrades to claiming straight from the
store, which is slower but equally correct.
"""

from datetime import datetime
from typing import List, Optional

import redis

from notifier.domain.models import NotificationRecord
from notifier.logging import get_logger
from notifier.persistence.store import NotificationStore

from .accelerator import RedisQueueAccelerator

logger = get_logger(__name__, component="queue")


def dispatch_order_key(record: NotificationRecord):
    return (-record.priority_score, record.created_at, record.id)


class DeliveryQueue:
    """Claims eligible records in dispatch order.

    Attributes:
        store: Backing NotificationStore
        accelerator: Optional RedisQueueAccelerator
    """

    def __init__(
        self,
        store: NotificationStore,
        accelerator: Optional[RedisQueueAccelerator] = None,
    ):
        self.store = store
        self.accelerator = accelerator
        self._degraded = False

    @property
    def is_degraded(self) -> bool:
        """True while the accelerator is configured but unusable."""
        return self._degraded

    @property
    def is_accelerated(self) -> bool:
        return self.accelerator is not None and not self._degraded

    def enqueue(self, record: NotificationRecord) -> None:
        """Make a newly eligible record visible to the accelerator.

        The store already holds the record; this only mirrors it.
        """
        if not self.is_accelerated or not record.is_eligible:
            return
        try:
            self.accelerator.add(record)
        except redis.RedisError as e:
            self._degrade("enqueue", e)

    def claim(self, limit: int, now: datetime) -> List[NotificationRecord]:
        """Atomically claim up to ``limit`` records, highest priority first.

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        if limit <= 0:
            return []

        if not self.is_accelerated:
            return self.store.claim_eligible(limit, now)

        try:
            candidate_ids = self.accelerator.peek(limit)
        except redis.RedisError as e:
            self._degrade("peek", e)
            return self.store.claim_eligible(limit, now)

        claimed = self.store.claim_ids(candidate_ids, now) if candidate_ids else []

        # Claimed ids leave the set; unclaimable ones were stale entries
        if candidate_ids:
            try:
                self.accelerator.remove(candidate_ids)
            except redis.RedisError as e:
                self._degrade("remove", e)

        if len(claimed) < limit:
            # Records the mirror missed (e.g. inserted while degraded)
            claimed.extend(self.store.claim_eligible(limit - len(claimed), now))

        claimed.sort(key=dispatch_order_key)
        return claimed

    def resync(self) -> Optional[int]:
        """Rebuild the accelerator from the store.

        Returns:
            Number of mirrored records, or None without a usable accelerator

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        if self.accelerator is None:
            return None

        records = self.store.list_eligible()
        try:
            count = self.accelerator.replace(records)
        except redis.RedisError as e:
            self._degrade("resync", e)
            return None

        if self._degraded:
            logger.info(
                "Queue accelerator recovered",
                extra={"event": "queue.accelerator.recovered", "mirrored": count},
            )
        self._degraded = False
        logger.debug(
            "Queue accelerator resynced",
            extra={"event": "queue.accelerator.resynced", "mirrored": count},
        )
        return count

    def _degrade(self, operation: str, error: Exception) -> None:
        if not self._degraded:
            logger.warning(
                f"Queue accelerator unavailable, falling back to store: {error}",
                extra={
                    "event": "queue.accelerator.degraded",
                    "operation": operation,
                    "error_type": type(error).__name__,
                },
            )
        self._degraded = True

    def close(self) -> None:
        if self.accelerator is not None:
            self.accelerator.close()
