"""Notification engine: intake, dispatch, retry policy and queries."""

from .models import (
    AttemptResult,
    ClaimLost,
    ClaimReleased,
    Delivered,
    DispatchBatchResult,
    DispatchPassResult,
    ReconciliationResult,
    RetryableFailure,
    TerminalFailure,
)
from .service import NotificationEngine

__all__ = [
    "AttemptResult",
    "ClaimLost",
    "ClaimReleased",
    "Delivered",
    "DispatchBatchResult",
    "DispatchPassResult",
    "NotificationEngine",
    "ReconciliationResult",
    "RetryableFailure",
    "TerminalFailure",
]
