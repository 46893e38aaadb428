"""Delivery queue over the notification store, with optional Redis acceleration."""

from .accelerator import RedisQueueAccelerator, queue_score
from .delivery_queue import DeliveryQueue, dispatch_order_key

__all__ = [
    "DeliveryQueue",
    "RedisQueueAccelerator",
    "dispatch_order_key",
    "queue_score",
]
