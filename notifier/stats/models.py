"""Statistics result types."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from notifier.domain.models import NotificationRecord
from notifier.utils.timestamps import format_timestamp


@dataclass(frozen=True)
class FailureSummary:
    """One terminally failed notification, as listed in the stats view."""

    id: str
    recipient: str
    kind: str
    attempt_count: int
    failure_reason: str
    failed_at: datetime

    @classmethod
    def from_record(cls, record: NotificationRecord) -> "FailureSummary":
        return cls(
            id=record.id,
            recipient=record.recipient,
            kind=record.kind.value,
            attempt_count=record.attempt_count,
            failure_reason=record.failure_reason or "",
            failed_at=record.last_attempt_at or record.updated_at,
        )


@dataclass(frozen=True)
class DeliveryStats:
    """Aggregate delivery statistics.

    Attributes:
        total: All records
        sent: Delivered records
        pending: Never attempted, waiting for dispatch
        retrying: Promoted after backoff, waiting for dispatch
        processing: Claimed, attempt in flight
        failed: Failed records (awaiting retry and terminal)
        today: Records created since UTC midnight
        success_rate: sent / total * 100, rounded to 2 decimals (0.0 when empty)
        recent_failures: Most recent terminal failures
        last_updated: When the counts were computed
    """

    total: int
    sent: int
    pending: int
    retrying: int
    processing: int
    failed: int
    today: int
    success_rate: float
    last_updated: datetime
    recent_failures: List[FailureSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "sent": self.sent,
            "pending": self.pending,
            "retrying": self.retrying,
            "processing": self.processing,
            "failed": self.failed,
            "today": self.today,
            "success_rate": self.success_rate,
            "last_updated": format_timestamp(self.last_updated),
            "recent_failures": [
                {
                    "id": failure.id,
                    "recipient": failure.recipient,
                    "kind": failure.kind,
                    "attempt_count": failure.attempt_count,
                    "failure_reason": failure.failure_reason,
                    "failed_at": format_timestamp(failure.failed_at),
                }
                for failure in self.recent_failures
            ],
        }
