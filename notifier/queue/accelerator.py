"""Redis sorted-set mirror of the records eligible for dispatch.

The sorted set only holds record ids. Its score packs priority and creation
time into one number so that ZREVRANGE returns ids in dispatch order:
higher priority first, older records first within a priority tier.
"""

from typing import Iterable, List

import redis

from notifier.domain.models import NotificationRecord

# Milliseconds since the epoch stay below this until the year 2286
_TIME_SPAN_MS = 10**13


def queue_score(record: NotificationRecord) -> float:
    """Composite score: priority descending, then creation time ascending."""
    created_ms = int(record.created_at.timestamp() * 1000)
    return float(record.priority_score * _TIME_SPAN_MS + (_TIME_SPAN_MS - created_ms))


class RedisQueueAccelerator:
    """Thin wrapper around one Redis sorted set.

    Every method may raise ``redis.RedisError``; DeliveryQueue decides how
    to degrade.
    """

    def __init__(self, client: redis.Redis, key: str = "notifications:queue:email_processing"):
        self.client = client
        self.key = key

    @classmethod
    def from_url(
        cls, url: str, key: str = "notifications:queue:email_processing", timeout: float = 2.0
    ) -> "RedisQueueAccelerator":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        return cls(client, key)

    def add(self, record: NotificationRecord) -> None:
        self.client.zadd(self.key, {record.id: queue_score(record)})

    def peek(self, limit: int) -> List[str]:
        """Up to ``limit`` ids in dispatch order, without removing them."""
        if limit <= 0:
            return []
        return [_as_str(member) for member in self.client.zrevrange(self.key, 0, limit - 1)]

    def remove(self, notification_ids: Iterable[str]) -> None:
        ids = list(notification_ids)
        if ids:
            self.client.zrem(self.key, *ids)

    def replace(self, records: Iterable[NotificationRecord]) -> int:
        """Atomically replace the whole set with ``records``."""
        mapping = {record.id: queue_score(record) for record in records}
        pipe = self.client.pipeline(transaction=True)
        pipe.delete(self.key)
        if mapping:
            pipe.zadd(self.key, mapping)
        pipe.execute()
        return len(mapping)

    def size(self) -> int:
        return int(self.client.zcard(self.key))

    def close(self) -> None:
        self.client.close()


def _as_str(member) -> str:
    if isinstance(member, bytes):
        return member.decode("utf-8")
    return str(member)
