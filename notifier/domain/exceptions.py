"""Domain exceptions for notification intake and delivery.

Persistence errors live in ``notifier.persistence.exceptions``; everything a
caller of the engine or a gateway implementation can raise lives here.
"""


class NotificationError(Exception):
    """Base exception for notification-related errors."""

    pass


class NotificationValidationError(NotificationError):
    """Raised at submit time for requests that can never be delivered.

    Examples:
    - Unknown notification kind
    - Payload missing a field the kind's template needs
    - Blank recipient

    No record is created when this is raised.
    """

    pass


class DeliveryError(NotificationError):
    """Base class for failures reported by an email gateway."""

    pass


class TransientDeliveryError(DeliveryError):
    """Retryable failure: provider timeout, 5xx-equivalent, network failure."""

    pass


class PermanentDeliveryError(DeliveryError):
    """Non-retryable failure: rejected recipient, unsupported content."""

    pass


class NotificationTemplateError(NotificationError):
    """Raised when template rendering fails due to configuration or missing variables."""

    pass
