"""Delivery-outcome event publishing."""

from .publisher import (
    NOTIFICATION_FAILED,
    NOTIFICATION_RETRY_SCHEDULED,
    NOTIFICATION_SENT,
    DeliveryEvent,
    DeliveryEventPublisher,
    LoggingEventPublisher,
)

__all__ = [
    "DeliveryEvent",
    "DeliveryEventPublisher",
    "LoggingEventPublisher",
    "NOTIFICATION_FAILED",
    "NOTIFICATION_RETRY_SCHEDULED",
    "NOTIFICATION_SENT",
]
