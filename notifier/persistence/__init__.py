"""Persistence layer for notification records using SQLAlchemy.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Store and repository
    - NotificationStore: operations used by the engine, queue and stats
    - NotificationRepository: session-scoped queries behind the store

Example usage:
    >>> from notifier.persistence import init_database, NotificationStore
    >>> init_database("sqlite:///./data/notifications.db")
    >>> store = NotificationStore()
    >>> store.find_by_recipient("candidate@example.com", limit=10)
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
    StoreUnavailableError,
)
from .repositories import NotificationRepository
from .store import NotificationStore, StoreAggregate

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Store
    "NotificationStore",
    "NotificationRepository",
    "StoreAggregate",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
    "StoreUnavailableError",
]
