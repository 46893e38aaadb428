"""Additional validation utilities for configuration."""

import warnings
from typing import List

from .models import AppConfig


def check_for_warnings(config: AppConfig) -> List[str]:
    """
    Check a validated configuration for settings that are legal but risky.

    Args:
        config: Validated configuration

    Returns:
        List of warning messages
    """
    warning_messages = []

    delivery = config.delivery
    scheduler = config.scheduler

    if delivery.max_attempts == 1:
        warning_messages.append(
            "delivery.max_attempts is 1: transient provider errors will never be retried"
        )

    if delivery.retry_delay_seconds >= scheduler.reconciliation_interval_seconds * 10:
        warning_messages.append(
            f"retry_delay ({delivery.retry_delay}) is far longer than the reconciliation "
            f"interval ({scheduler.reconciliation_interval}); most reconciliation passes "
            "will find nothing to retry"
        )

    if delivery.batch_size * delivery.send_timeout_seconds > delivery.claim_timeout_seconds:
        warning_messages.append(
            f"A full batch of {delivery.batch_size} sends at the {delivery.send_timeout} timeout "
            f"outlasts claim_timeout ({delivery.claim_timeout}); the tail of a slow batch will be "
            "handed back unattempted"
        )

    if config.gateway.provider == "log":
        warning_messages.append(
            "gateway.provider is 'log': notifications are recorded as sent without being delivered"
        )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit warning messages using Python's warnings module."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
