"""Email gateway contract shared by every delivery provider.

A gateway performs the actual send. It reports the outcome either as a
SendResult or by raising TransientDeliveryError / PermanentDeliveryError;
the engine handles both forms the same way.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from notifier.domain.models import NotificationKind
from notifier.rendering.templates import RenderedMessage


class ErrorClass(str, Enum):
    """Failure classification driving the retry policy."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class SendResult:
    """Outcome of one EmailGateway.send call.

    Attributes:
        success: Whether the provider accepted the message
        provider_message_id: Provider's id for the accepted message
        error_class: Transient or permanent, for failures
        error_message: Provider error description, for failures
    """

    success: bool
    provider_message_id: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    error_message: Optional[str] = None

    @classmethod
    def delivered(cls, provider_message_id: str) -> "SendResult":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def transient(cls, error_message: str) -> "SendResult":
        return cls(success=False, error_class=ErrorClass.TRANSIENT, error_message=error_message)

    @classmethod
    def permanent(cls, error_message: str) -> "SendResult":
        return cls(success=False, error_class=ErrorClass.PERMANENT, error_message=error_message)

    @property
    def is_permanent(self) -> bool:
        return not self.success and self.error_class == ErrorClass.PERMANENT


class EmailGateway(ABC):
    """Base class for delivery providers."""

    name = "base"

    @abstractmethod
    def send(self, recipient: str, kind: NotificationKind, message: RenderedMessage) -> SendResult:
        """Deliver one rendered message to one recipient.

        Must not block indefinitely; the engine also bounds each call with
        its own timeout.

        Raises:
            TransientDeliveryError: Retryable failure (alternative to returning a result)
            PermanentDeliveryError: Non-retryable failure
        """

    def close(self) -> None:
        """Release provider resources. Default: nothing to release."""
