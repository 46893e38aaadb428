"""Database schema definition and ORM models.

This module defines the SQLAlchemy ORM model for the notifications table and
the conversions between ORM rows and domain records.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, Column, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from notifier.domain.models import NotificationRecord
from notifier.utils.timestamps import format_timestamp

logger = logging.getLogger(__name__)

Base = declarative_base()


class NotificationModel(Base):
    """ORM model for the notifications table.

    Timestamps are stored as fixed-width ISO 8601 strings, so string
    comparison in SQL matches chronological order.
    """

    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True, nullable=False)

    # Request
    recipient = Column(String(320), nullable=False)
    kind = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    priority = Column(String(10), nullable=False)
    priority_score = Column(Integer, nullable=False)

    # Lifecycle
    status = Column(String(20), nullable=False)
    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    failure_reason = Column(Text, nullable=True)
    failure_permanent = Column(Boolean, nullable=False, default=False)
    provider_message_id = Column(String(255), nullable=True)

    # Claim held while status=processing
    claim_token = Column(String(32), nullable=True)
    claimed_at = Column(String(50), nullable=True)

    # Timestamps (stored as ISO 8601 strings)
    created_at = Column(String(50), nullable=False)
    updated_at = Column(String(50), nullable=False)
    last_attempt_at = Column(String(50), nullable=True)
    sent_at = Column(String(50), nullable=True)

    __table_args__ = (
        Index("idx_notifications_status", "status"),
        Index("idx_notifications_recipient", "recipient", "created_at"),
        Index("idx_notifications_priority", "priority_score", "created_at"),
        Index("idx_notifications_created", "created_at"),
    )

    def to_domain(self) -> NotificationRecord:
        """Convert ORM model to domain model."""
        return NotificationRecord(
            id=self.id,
            recipient=self.recipient,
            kind=self.kind,
            payload=self.payload or {},
            priority=self.priority,
            status=self.status,
            attempt_count=self.attempt_count,
            max_attempts=self.max_attempts,
            created_at=_parse_datetime(self.created_at),
            updated_at=_parse_datetime(self.updated_at),
            last_attempt_at=_parse_datetime(self.last_attempt_at),
            sent_at=_parse_datetime(self.sent_at),
            provider_message_id=self.provider_message_id,
            failure_reason=self.failure_reason,
            failure_permanent=bool(self.failure_permanent),
            claim_token=self.claim_token,
            claimed_at=_parse_datetime(self.claimed_at),
        )

    @classmethod
    def from_domain(cls, record: NotificationRecord) -> "NotificationModel":
        """Create ORM model from domain model."""
        return cls(id=record.id, **record_columns(record))


def record_columns(record: NotificationRecord) -> dict:
    """Column values for every mutable field of ``record``, keyed by column name."""
    return {
        "recipient": record.recipient,
        "kind": record.kind.value,
        "payload": record.payload,
        "priority": record.priority.value,
        "priority_score": record.priority_score,
        "status": record.status.value,
        "attempt_count": record.attempt_count,
        "max_attempts": record.max_attempts,
        "failure_reason": record.failure_reason,
        "failure_permanent": record.failure_permanent,
        "provider_message_id": record.provider_message_id,
        "claim_token": record.claim_token,
        "claimed_at": format_timestamp(record.claimed_at),
        "created_at": format_timestamp(record.created_at),
        "updated_at": format_timestamp(record.updated_at),
        "last_attempt_at": format_timestamp(record.last_attempt_at),
        "sent_at": format_timestamp(record.sent_at),
    }


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO 8601 string (with or without microseconds)."""
    if not dt_str:
        return None

    dt_str = dt_str.rstrip("Z")
    try:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S.%f")
    except ValueError:
        dt = datetime.strptime(dt_str, "%Y-%m-%dT%H:%M:%S")

    return dt.replace(tzinfo=timezone.utc)


def create_schema(engine: Engine) -> None:
    """Create all tables and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
