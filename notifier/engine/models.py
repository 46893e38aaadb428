"""Result types for dispatch and reconciliation passes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from notifier.domain.models import NotificationRecord


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of one claimed delivery attempt."""

    notification_id: str


@dataclass(frozen=True)
class Delivered(AttemptResult):
    record: NotificationRecord


@dataclass(frozen=True)
class RetryableFailure(AttemptResult):
    """Failed, will be promoted to ``retrying`` once ``retry_due_at`` passes."""

    record: NotificationRecord
    retry_due_at: datetime


@dataclass(frozen=True)
class TerminalFailure(AttemptResult):
    """Failed permanently or out of attempts."""

    record: NotificationRecord


@dataclass(frozen=True)
class ClaimLost(AttemptResult):
    """The claim expired and was resolved elsewhere before this attempt finished."""


@dataclass(frozen=True)
class ClaimReleased(AttemptResult):
    """Handed back unattempted: too little of the claim was left to finish a send."""


@dataclass
class DispatchBatchResult:
    """
    Outcome of one dispatch_batch() call.

    Attributes:
        batch_id: Short id attached to every log line of the batch
        claimed: Records claimed for this batch
        attempts: Per-record outcomes, in dispatch order
        aborted: Whether a store failure stopped the batch early
        error: Store error message when aborted
    """

    batch_id: str
    claimed: int = 0
    attempts: List[AttemptResult] = field(default_factory=list)
    aborted: bool = False
    error: Optional[str] = None

    @property
    def sent(self) -> int:
        return sum(1 for a in self.attempts if isinstance(a, Delivered))

    @property
    def retry_scheduled(self) -> int:
        return sum(1 for a in self.attempts if isinstance(a, RetryableFailure))

    @property
    def failed(self) -> int:
        return sum(1 for a in self.attempts if isinstance(a, TerminalFailure))

    @property
    def claims_lost(self) -> int:
        return sum(1 for a in self.attempts if isinstance(a, ClaimLost))

    @property
    def released(self) -> int:
        return sum(1 for a in self.attempts if isinstance(a, ClaimReleased))

    @property
    def attempted_ids(self) -> List[str]:
        return [a.notification_id for a in self.attempts]


@dataclass
class DispatchPassResult:
    """Aggregate of the batches run by one dispatch pass."""

    batches: List[DispatchBatchResult] = field(default_factory=list)
    skipped: bool = False

    def add(self, batch: DispatchBatchResult) -> None:
        self.batches.append(batch)

    @property
    def claimed(self) -> int:
        return sum(b.claimed for b in self.batches)

    @property
    def sent(self) -> int:
        return sum(b.sent for b in self.batches)

    @property
    def retry_scheduled(self) -> int:
        return sum(b.retry_scheduled for b in self.batches)

    @property
    def failed(self) -> int:
        return sum(b.failed for b in self.batches)

    @property
    def aborted(self) -> bool:
        return any(b.aborted for b in self.batches)

    @property
    def attempted_ids(self) -> List[str]:
        return [nid for b in self.batches for nid in b.attempted_ids]


@dataclass
class ReconciliationResult:
    """
    Outcome of one reconciliation pass.

    Attributes:
        promoted_ids: Failed records moved to ``retrying``
        released_ids: Abandoned claims resolved as failed attempts
        resynced: Records mirrored into the queue accelerator, if any
        aborted: Whether a store failure stopped the pass
        error: Store error message when aborted
        skipped: Whether the pass did not run (an earlier run was still active)
    """

    promoted_ids: List[str] = field(default_factory=list)
    released_ids: List[str] = field(default_factory=list)
    resynced: Optional[int] = None
    aborted: bool = False
    error: Optional[str] = None
    skipped: bool = False

    @property
    def promoted(self) -> int:
        return len(self.promoted_ids)
