"""Inbound event intake."""

from .handlers import (
    EVENT_ROUTES,
    EventIntake,
    EventRoute,
    IntakeOutcome,
    IntakeSummary,
    MalformedEventError,
)

__all__ = [
    "EVENT_ROUTES",
    "EventIntake",
    "EventRoute",
    "IntakeOutcome",
    "IntakeSummary",
    "MalformedEventError",
]
