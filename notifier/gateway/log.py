"""Log-only delivery provider for local development."""

from uuid import uuid4

from notifier.domain.models import NotificationKind
from notifier.logging import get_logger
from notifier.rendering.templates import RenderedMessage

from .base import EmailGateway, SendResult

logger = get_logger(__name__, component="gateway")


class LoggingEmailGateway(EmailGateway):
    """Accepts every message and logs it instead of delivering it."""

    name = "log"

    def send(self, recipient: str, kind: NotificationKind, message: RenderedMessage) -> SendResult:
        message_id = f"log-{uuid4().hex}"
        logger.info(
            f"Email not delivered (log provider): {message.subject}",
            extra={
                "event": "gateway.log.sent",
                "recipient": recipient,
                "kind": kind.value,
                "provider_message_id": message_id,
            },
        )
        return SendResult.delivered(message_id)
