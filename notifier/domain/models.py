"""Core domain models for notification records.

This module defines the data structures shared by every layer:
- NotificationKind: closed set of notification kinds
- Priority: coarse priority label with its ordering score
- NotificationStatus: lifecycle states, including the interim claim marker
- NotificationRecord: the persisted unit of work
- SendSucceeded / SendFailed: outcome of one delivery attempt
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from notifier.utils.timestamps import ensure_utc


class NotificationKind(str, Enum):
    """Notification kinds understood by the engine."""

    VERIFICATION_CODE = "verification-code"
    WELCOME = "welcome"
    CREDENTIAL_ISSUE = "credential-issue"
    PASSWORD_RESET = "password-reset"


class Priority(str, Enum):
    """Priority label. Only used to order dispatch, never to bypass attempt limits."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def score(self) -> int:
        return PRIORITY_SCORES[self]


PRIORITY_SCORES = {
    Priority.LOW: 25,
    Priority.NORMAL: 50,
    Priority.HIGH: 75,
    Priority.URGENT: 100,
}


class NotificationStatus(str, Enum):
    """Lifecycle states of a notification record."""

    PENDING = "pending"
    RETRYING = "retrying"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


ELIGIBLE_STATUSES = (NotificationStatus.PENDING, NotificationStatus.RETRYING)


def new_notification_id() -> str:
    """Generate an opaque record identifier."""
    return uuid4().hex


@dataclass(frozen=True)
class SendSucceeded:
    """The provider accepted the message."""

    provider_message_id: str


@dataclass(frozen=True)
class SendFailed:
    """The attempt failed; ``permanent`` marks a non-retryable failure."""

    reason: str
    permanent: bool = False


AttemptOutcome = Union[SendSucceeded, SendFailed]


class NotificationRecord(BaseModel):
    """One request to deliver a message to one recipient.

    Invariants enforced on construction:
    - 0 <= attempt_count <= max_attempts
    - status=sent implies sent_at and provider_message_id are set
    - last_attempt_at is set if and only if attempt_count >= 1
    - status=processing implies a claim token is held

    A ``failed`` record is terminal when ``failure_permanent`` is set or its
    attempts are exhausted; otherwise it is waiting for reconciliation.
    """

    id: str = Field(default_factory=new_notification_id)
    recipient: str = Field(..., description="Destination address, stored as given")
    kind: NotificationKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    status: NotificationStatus = NotificationStatus.PENDING
    attempt_count: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    created_at: datetime
    updated_at: datetime
    last_attempt_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    provider_message_id: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_permanent: bool = False
    claim_token: Optional[str] = None
    claimed_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at", "last_attempt_at", "sent_at", "claimed_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Ensure datetimes are timezone-aware and in UTC."""
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_invariants(self):
        if self.attempt_count > self.max_attempts:
            raise ValueError(
                f"attempt_count ({self.attempt_count}) exceeds max_attempts ({self.max_attempts})"
            )
        if self.status == NotificationStatus.SENT and (
            self.sent_at is None or not self.provider_message_id
        ):
            raise ValueError("sent records need sent_at and provider_message_id")
        if (self.last_attempt_at is not None) != (self.attempt_count >= 1):
            raise ValueError("last_attempt_at must be set exactly when an attempt was made")
        if self.status == NotificationStatus.PROCESSING and not self.claim_token:
            raise ValueError("processing records need a claim token")
        return self

    @property
    def priority_score(self) -> int:
        return self.priority.score

    @property
    def is_eligible(self) -> bool:
        """Whether the record may be claimed for dispatch right now."""
        return self.status in ELIGIBLE_STATUSES and self.attempt_count < self.max_attempts

    @property
    def is_awaiting_retry(self) -> bool:
        """Failed, but retryable: the reconciliation pass will promote it once due."""
        return (
            self.status == NotificationStatus.FAILED
            and not self.failure_permanent
            and self.attempt_count < self.max_attempts
        )

    @property
    def is_terminal(self) -> bool:
        if self.status == NotificationStatus.SENT:
            return True
        return self.status == NotificationStatus.FAILED and not self.is_awaiting_retry

    def retry_due_at(self, retry_delay_seconds: float) -> Optional[datetime]:
        """Earliest time the reconciliation pass may promote this record, if ever."""
        if not self.is_awaiting_retry:
            return None
        if self.last_attempt_at is None:
            return self.updated_at
        return self.last_attempt_at + timedelta(seconds=retry_delay_seconds)

    def is_retry_due(self, now: datetime, retry_delay_seconds: float) -> bool:
        due_at = self.retry_due_at(retry_delay_seconds)
        return due_at is not None and ensure_utc(now) >= due_at

    def with_outcome(self, outcome: AttemptOutcome, now: datetime) -> "NotificationRecord":
        """Return the record as it looks after resolving its claim with ``outcome``."""
        now = ensure_utc(now)
        attempts = min(self.attempt_count + 1, self.max_attempts)
        update: Dict[str, Any] = {
            "attempt_count": attempts,
            "last_attempt_at": now,
            "updated_at": now,
            "claim_token": None,
            "claimed_at": None,
        }

        if isinstance(outcome, SendSucceeded):
            update.update(
                status=NotificationStatus.SENT,
                sent_at=now,
                provider_message_id=outcome.provider_message_id,
                failure_reason=None,
                failure_permanent=False,
            )
        else:
            update.update(
                status=NotificationStatus.FAILED,
                failure_reason=outcome.reason,
                failure_permanent=outcome.permanent,
            )

        return self.model_copy(update=update)

    model_config = {"json_schema_extra": {"example": {
        "id": "6f1c0c3e0a9b4c7c9b0f2f1e8d6a5b4c",
        "recipient": "candidate@example.com",
        "kind": "verification-code",
        "payload": {"otp_code": "482913", "purpose": "account verification", "expiry_minutes": 10},
        "priority": "urgent",
        "status": "sent",
        "attempt_count": 1,
        "max_attempts": 3,
        "created_at": "2025-11-01T12:00:00Z",
        "updated_at": "2025-11-01T12:00:01Z",
        "last_attempt_at": "2025-11-01T12:00:01Z",
        "sent_at": "2025-11-01T12:00:01Z",
        "provider_message_id": "re_123",
    }}}
