"""Domain models and exceptions for the notification delivery engine."""

from .exceptions import (
    DeliveryError,
    NotificationError,
    NotificationTemplateError,
    NotificationValidationError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from .models import (
    ELIGIBLE_STATUSES,
    PRIORITY_SCORES,
    AttemptOutcome,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    Priority,
    SendFailed,
    SendSucceeded,
    new_notification_id,
)

__all__ = [
    "AttemptOutcome",
    "DeliveryError",
    "ELIGIBLE_STATUSES",
    "NotificationError",
    "NotificationKind",
    "NotificationRecord",
    "NotificationStatus",
    "NotificationTemplateError",
    "NotificationValidationError",
    "PRIORITY_SCORES",
    "PermanentDeliveryError",
    "Priority",
    "SendFailed",
    "SendSucceeded",
    "TransientDeliveryError",
    "new_notification_id",
]
