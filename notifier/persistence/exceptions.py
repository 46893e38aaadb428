"""Persistence layer exceptions.

This module defines custom exceptions for database and persistence operations.
All persistence exceptions inherit from PersistenceError for easy catching.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - init_database() was never called
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when a required database record is not found.

    For optional lookups, methods return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a database constraint is violated (e.g. duplicate id)."""

    pass


class StoreUnavailableError(PersistenceError):
    """Raised when the notification store cannot be reached or a query fails.

    Callers of submit() must retry later; scheduled passes log it and skip
    the cycle.
    """

    pass
