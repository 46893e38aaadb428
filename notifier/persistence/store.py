"""NotificationStore: the durable source of truth for notification records.

Each operation runs in its own session (one transaction). Database failures
of any kind surface as StoreUnavailableError so callers have one error to
handle; DataIntegrityError is left alone because it signals a bug, not an
outage.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, ContextManager, Dict, Iterable, Iterator, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.domain.models import (
    AttemptOutcome,
    NotificationRecord,
    NotificationStatus,
    SendFailed,
)
from notifier.logging import get_logger
from notifier.utils.timestamps import start_of_day

from .database import get_session
from .exceptions import DataIntegrityError, PersistenceError, StoreUnavailableError
from .repositories import NotificationRepository

logger = get_logger(__name__, component="store")

ABANDONED_CLAIM_REASON = "Delivery attempt abandoned: claim expired before the outcome was recorded"


@dataclass
class StoreAggregate:
    """Counts by status plus the number of records created since UTC midnight."""

    by_status: Dict[str, int] = field(default_factory=dict)
    created_today: int = 0

    @property
    def total(self) -> int:
        return sum(self.by_status.values())

    def count(self, status: NotificationStatus) -> int:
        return self.by_status.get(status.value, 0)


class NotificationStore:
    """Durable, queryable collection of notification records keyed by id."""

    def __init__(self, session_factory: Callable[[], ContextManager[Session]] = get_session):
        self._session_factory = session_factory

    @contextmanager
    def _repository(self, operation: str) -> Iterator[NotificationRepository]:
        try:
            with self._session_factory() as session:
                yield NotificationRepository(session)
        except (DataIntegrityError, StoreUnavailableError):
            raise
        except (PersistenceError, SQLAlchemyError) as e:
            logger.error(
                f"Store operation failed: {operation}",
                extra={
                    "event": "store.unavailable",
                    "operation": operation,
                    "error_type": type(e).__name__,
                },
            )
            raise StoreUnavailableError(f"Notification store unavailable during {operation}: {e}") from e

    def insert(self, record: NotificationRecord) -> NotificationRecord:
        with self._repository("insert") as repo:
            return repo.add(record)

    def get(self, notification_id: str) -> Optional[NotificationRecord]:
        with self._repository("get") as repo:
            return repo.get(notification_id)

    def find_by_recipient(self, recipient: str, limit: int) -> List[NotificationRecord]:
        """Records for ``recipient`` sorted by creation time, newest first."""
        if limit <= 0:
            return []
        with self._repository("find_by_recipient") as repo:
            return repo.find_by_recipient(recipient, limit)

    def list_eligible(self, limit: Optional[int] = None) -> List[NotificationRecord]:
        with self._repository("list_eligible") as repo:
            return repo.list_eligible(limit)

    def claim_eligible(self, limit: int, now: datetime) -> List[NotificationRecord]:
        """Atomically claim up to ``limit`` eligible records.

        Returns the claimed records in dispatch order (priority score
        descending, then creation time ascending), each in ``processing``
        with a fresh claim token.
        """
        if limit <= 0:
            return []
        with self._repository("claim_eligible") as repo:
            return repo.claim_eligible(limit, uuid4().hex, now)

    def claim_ids(self, notification_ids: Iterable[str], now: datetime) -> List[NotificationRecord]:
        """Atomically claim specific records; ids that are no longer eligible are skipped."""
        ids = list(dict.fromkeys(notification_ids))
        if not ids:
            return []
        with self._repository("claim_ids") as repo:
            return repo.claim_ids(ids, uuid4().hex, now)

    def complete_attempt(
        self,
        notification_id: str,
        claim_token: str,
        outcome: AttemptOutcome,
        now: datetime,
    ) -> Optional[NotificationRecord]:
        """Resolve a claim. Returns None when ``claim_token`` no longer holds it."""
        with self._repository("complete_attempt") as repo:
            return repo.complete_attempt(notification_id, claim_token, outcome, now)

    def release_claim(self, notification_id: str, claim_token: str, now: datetime) -> bool:
        """Hand an unattempted claim back; False when the token no longer holds it."""
        with self._repository("release_claim") as repo:
            return repo.release_claim(notification_id, claim_token, now)

    def promote_retryable(self, now: datetime, retry_delay_seconds: float) -> List[str]:
        """Move due failed records to ``retrying``; returns the promoted ids."""
        with self._repository("promote_retryable") as repo:
            return repo.promote_retryable(now, retry_delay_seconds)

    def release_stale_claims(self, cutoff: datetime, now: datetime) -> List[NotificationRecord]:
        """Resolve claims taken at or before ``cutoff`` as transient failed attempts.

        A process that crashed mid-send leaves its records in ``processing``;
        this turns each into an ordinary failed attempt so the usual retry
        policy applies.
        """
        released = []
        with self._repository("release_stale_claims") as repo:
            for record in repo.find_stale_claims(cutoff):
                resolved = repo.complete_attempt(
                    record.id,
                    record.claim_token,
                    SendFailed(reason=ABANDONED_CLAIM_REASON, permanent=False),
                    now,
                )
                if resolved is not None:
                    released.append(resolved)
        return released

    def recent_failures(self, limit: int) -> List[NotificationRecord]:
        if limit <= 0:
            return []
        with self._repository("recent_failures") as repo:
            return repo.recent_failures(limit)

    def aggregate(self, now: datetime) -> StoreAggregate:
        """Counts by status plus records created since the start of ``now``'s UTC day."""
        with self._repository("aggregate") as repo:
            return StoreAggregate(
                by_status=repo.count_by_status(),
                created_today=repo.count_created_since(start_of_day(now)),
            )
