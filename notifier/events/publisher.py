"""Delivery-outcome events.

The engine emits one event per resolved attempt:
- notification.sent
- notification.retry_scheduled (failed, will be promoted after backoff)
- notification.failed (terminal)

Publishing is best effort: a failing publisher is logged and never changes
the recorded outcome.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from notifier.domain.models import NotificationRecord
from notifier.logging import get_logger
from notifier.utils.timestamps import format_timestamp

logger = get_logger(__name__, component="events")

NOTIFICATION_SENT = "notification.sent"
NOTIFICATION_RETRY_SCHEDULED = "notification.retry_scheduled"
NOTIFICATION_FAILED = "notification.failed"


@dataclass(frozen=True)
class DeliveryEvent:
    """Outcome of one delivery attempt, as seen by downstream consumers."""

    event_type: str
    notification_id: str
    recipient: str
    kind: str
    attempt_count: int
    max_attempts: int
    occurred_at: datetime
    provider_message_id: Optional[str] = None
    failure_reason: Optional[str] = None
    retry_due_at: Optional[datetime] = None

    @classmethod
    def from_record(
        cls,
        event_type: str,
        record: NotificationRecord,
        occurred_at: datetime,
        retry_due_at: Optional[datetime] = None,
    ) -> "DeliveryEvent":
        return cls(
            event_type=event_type,
            notification_id=record.id,
            recipient=record.recipient,
            kind=record.kind.value,
            attempt_count=record.attempt_count,
            max_attempts=record.max_attempts,
            occurred_at=occurred_at,
            provider_message_id=record.provider_message_id,
            failure_reason=record.failure_reason,
            retry_due_at=retry_due_at,
        )

    def to_message(self) -> Dict[str, Any]:
        """Envelope in the same shape the intake consumes (eventType + data)."""
        data = asdict(self)
        event_type = data.pop("event_type")
        data["occurred_at"] = format_timestamp(self.occurred_at)
        data["retry_due_at"] = format_timestamp(self.retry_due_at)
        return {
            "eventType": event_type,
            "service": "notification-delivery-engine",
            "timestamp": data["occurred_at"],
            "data": data,
        }


class DeliveryEventPublisher(ABC):
    """Destination for delivery-outcome events."""

    @abstractmethod
    def publish(self, event: DeliveryEvent) -> None:
        """Publish one event. May raise; the engine logs and continues."""


class LoggingEventPublisher(DeliveryEventPublisher):
    """Writes events to the structured log."""

    def publish(self, event: DeliveryEvent) -> None:
        logger.info(
            f"Delivery event {event.event_type}",
            extra={
                "event": event.event_type,
                "notification_id": event.notification_id,
                "kind": event.kind,
                "attempt_count": event.attempt_count,
                "provider_message_id": event.provider_message_id,
                "failure_reason": event.failure_reason,
            },
        )
