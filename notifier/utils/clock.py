"""Clock abstraction so time-dependent policy can be driven deterministically."""

from abc import ABC, abstractmethod
from datetime import datetime

from .timestamps import utc_now


class Clock(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""


class SystemClock(Clock):
    """Wall clock backed by the system time."""

    def now(self) -> datetime:
        return utc_now()
