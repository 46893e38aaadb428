"""Data access layer for notification records.

The repository works inside a caller-provided session (one transaction) and
returns domain models rather than ORM models. Every state transition is a
conditional UPDATE whose WHERE clause re-checks the expected current state,
so concurrent callers racing on the same record see exactly one winner.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from notifier.domain.models import (
    ELIGIBLE_STATUSES,
    AttemptOutcome,
    NotificationRecord,
    NotificationStatus,
)
from notifier.utils.timestamps import format_timestamp

from .exceptions import DataIntegrityError, PersistenceError
from .schema import NotificationModel, record_columns

logger = logging.getLogger(__name__)

_ELIGIBLE_VALUES = [status.value for status in ELIGIBLE_STATUSES]

# Dispatch order: priority score descending, then FIFO within a tier
_DISPATCH_ORDER = (NotificationModel.priority_score.desc(), NotificationModel.created_at.asc())


def _eligible_clause():
    return and_(
        NotificationModel.status.in_(_ELIGIBLE_VALUES),
        NotificationModel.attempt_count < NotificationModel.max_attempts,
    )


def _awaiting_retry_clause():
    return and_(
        NotificationModel.status == NotificationStatus.FAILED.value,
        NotificationModel.failure_permanent.is_(False),
        NotificationModel.attempt_count < NotificationModel.max_attempts,
    )


def _terminal_failure_clause():
    return and_(
        NotificationModel.status == NotificationStatus.FAILED.value,
        or_(
            NotificationModel.failure_permanent.is_(True),
            NotificationModel.attempt_count >= NotificationModel.max_attempts,
        ),
    )


class NotificationRepository:
    """Repository for notification record operations."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def add(self, record: NotificationRecord) -> NotificationRecord:
        """Insert a new record.

        Raises:
            DataIntegrityError: If a record with the same id exists
            PersistenceError: If database error occurs
        """
        try:
            self.session.add(NotificationModel.from_domain(record))
            self.session.flush()
            return record
        except IntegrityError as e:
            raise DataIntegrityError(f"Notification {record.id} already exists") from e
        except SQLAlchemyError as e:
            logger.error(f"Error inserting notification {record.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to insert notification: {e}") from e

    def get(self, notification_id: str) -> Optional[NotificationRecord]:
        """Retrieve a record by id, or None if it does not exist."""
        try:
            model = self.session.get(NotificationModel, notification_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving notification {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve notification: {e}") from e

    def find_by_recipient(self, recipient: str, limit: int) -> List[NotificationRecord]:
        """Records for a recipient, newest first."""
        stmt = (
            select(NotificationModel)
            .where(NotificationModel.recipient == recipient)
            .order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
            .limit(limit)
        )
        return self._fetch(stmt, "find notifications by recipient")

    def list_eligible(self, limit: int) -> List[NotificationRecord]:
        """Records eligible for dispatch, in dispatch order (read only)."""
        stmt = select(NotificationModel).where(_eligible_clause()).order_by(*_DISPATCH_ORDER)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._fetch(stmt, "list eligible notifications")

    def claim_eligible(self, limit: int, claim_token: str, now: datetime) -> List[NotificationRecord]:
        """Claim up to ``limit`` eligible records in dispatch order.

        Claimed records move to ``processing`` and carry ``claim_token``.
        """
        candidates = (
            select(NotificationModel.id)
            .where(_eligible_clause())
            .order_by(*_DISPATCH_ORDER)
            .limit(limit)
            .scalar_subquery()
        )
        return self._claim(NotificationModel.id.in_(candidates), claim_token, now)

    def claim_ids(
        self, notification_ids: Iterable[str], claim_token: str, now: datetime
    ) -> List[NotificationRecord]:
        """Claim the given records, skipping any that are no longer eligible."""
        ids = list(notification_ids)
        if not ids:
            return []
        return self._claim(NotificationModel.id.in_(ids), claim_token, now)

    def _claim(self, id_clause, claim_token: str, now: datetime) -> List[NotificationRecord]:
        timestamp = format_timestamp(now)
        try:
            self.session.execute(
                update(NotificationModel)
                .where(id_clause, _eligible_clause())
                .values(
                    status=NotificationStatus.PROCESSING.value,
                    claim_token=claim_token,
                    claimed_at=timestamp,
                    updated_at=timestamp,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error claiming notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to claim notifications: {e}") from e

        stmt = (
            select(NotificationModel)
            .where(NotificationModel.claim_token == claim_token)
            .order_by(*_DISPATCH_ORDER)
        )
        return self._fetch(stmt, "load claimed notifications")

    def complete_attempt(
        self,
        notification_id: str,
        claim_token: str,
        outcome: AttemptOutcome,
        now: datetime,
    ) -> Optional[NotificationRecord]:
        """Resolve a claim with the outcome of its delivery attempt.

        Returns:
            The updated record, or None when the claim is no longer held
            (already resolved, or released as abandoned).
        """
        try:
            model = self.session.execute(
                select(NotificationModel).where(
                    NotificationModel.id == notification_id,
                    NotificationModel.status == NotificationStatus.PROCESSING.value,
                    NotificationModel.claim_token == claim_token,
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error loading claim for {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to load claimed notification: {e}") from e

        if model is None:
            return None

        resolved = model.to_domain().with_outcome(outcome, now)
        if not self._apply_if_claimed(resolved, claim_token):
            return None
        return resolved

    def release_claim(self, notification_id: str, claim_token: str, now: datetime) -> bool:
        """Return an unattempted claim to the eligible pool without counting an attempt.

        Never-attempted records go back to ``pending``, others to ``retrying``.
        """
        try:
            result = self.session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.id == notification_id,
                    NotificationModel.status == NotificationStatus.PROCESSING.value,
                    NotificationModel.claim_token == claim_token,
                )
                .values(
                    status=case(
                        (NotificationModel.attempt_count == 0, NotificationStatus.PENDING.value),
                        else_=NotificationStatus.RETRYING.value,
                    ),
                    claim_token=None,
                    claimed_at=None,
                    updated_at=format_timestamp(now),
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error releasing claim on {notification_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to release claim: {e}") from e
        return result.rowcount == 1

    def promote_retryable(self, now: datetime, retry_delay_seconds: float) -> List[str]:
        """Move failed records whose backoff has elapsed to ``retrying``.

        Returns:
            Ids of the promoted records
        """
        cutoff = format_timestamp(now - timedelta(seconds=retry_delay_seconds))
        due_clause = and_(
            _awaiting_retry_clause(),
            or_(
                NotificationModel.last_attempt_at.is_(None),
                NotificationModel.last_attempt_at <= cutoff,
            ),
        )

        try:
            ids = list(self.session.execute(select(NotificationModel.id).where(due_clause)).scalars())
            if not ids:
                return []

            self.session.execute(
                update(NotificationModel)
                .where(NotificationModel.id.in_(ids), due_clause)
                .values(
                    status=NotificationStatus.RETRYING.value,
                    updated_at=format_timestamp(now),
                )
                .execution_options(synchronize_session=False)
            )
            return ids
        except SQLAlchemyError as e:
            logger.error(f"Error promoting retryable notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to promote retryable notifications: {e}") from e

    def find_stale_claims(self, cutoff: datetime) -> List[NotificationRecord]:
        """Records still ``processing`` whose claim was taken at or before ``cutoff``."""
        stmt = select(NotificationModel).where(
            NotificationModel.status == NotificationStatus.PROCESSING.value,
            NotificationModel.claimed_at <= format_timestamp(cutoff),
        )
        return self._fetch(stmt, "find stale claims")

    def recent_failures(self, limit: int) -> List[NotificationRecord]:
        """Terminally failed records, most recently updated first."""
        stmt = (
            select(NotificationModel)
            .where(_terminal_failure_clause())
            .order_by(NotificationModel.updated_at.desc())
            .limit(limit)
        )
        return self._fetch(stmt, "list recent failures")

    def count_by_status(self) -> Dict[str, int]:
        try:
            rows = self.session.execute(
                select(NotificationModel.status, func.count()).group_by(NotificationModel.status)
            ).all()
        except SQLAlchemyError as e:
            logger.error(f"Error counting notifications: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count notifications: {e}") from e
        return {status: count for status, count in rows}

    def count_created_since(self, since: datetime) -> int:
        try:
            return self.session.execute(
                select(func.count())
                .select_from(NotificationModel)
                .where(NotificationModel.created_at >= format_timestamp(since))
            ).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Error counting notifications created since {since}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to count notifications: {e}") from e

    def _apply_if_claimed(self, record: NotificationRecord, claim_token: str) -> bool:
        """Write ``record`` back only if ``claim_token`` still holds the claim."""
        try:
            result = self.session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.id == record.id,
                    NotificationModel.status == NotificationStatus.PROCESSING.value,
                    NotificationModel.claim_token == claim_token,
                )
                .values(**record_columns(record))
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error updating notification {record.id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to update notification: {e}") from e
        return result.rowcount == 1

    def _fetch(self, stmt, action: str) -> List[NotificationRecord]:
        try:
            return [model.to_domain() for model in self.session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to {action}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to {action}: {e}") from e
