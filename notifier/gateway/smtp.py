"""SMTP delivery provider.

Thin wrapper around smtplib with support for TLS/SSL, authentication and
proper connection lifecycle management. SMTP replies are classified for the
retry policy: 5xx replies and refused recipients are permanent, 4xx replies
and network errors are transient.
"""

import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Callable, Optional

from email_validator import EmailNotValidError, validate_email

from notifier.config.environment import EnvironmentConfig
from notifier.domain.models import NotificationKind
from notifier.logging import get_logger
from notifier.rendering.templates import RenderedMessage

from .base import EmailGateway, SendResult

logger = get_logger(__name__, component="gateway")


class SMTPEmailGateway(EmailGateway):
    """Sends notifications through an SMTP relay.

    A new connection is opened per message and always closed afterwards.
    The smtplib factories are injectable so tests never open sockets.
    """

    name = "smtp"

    def __init__(
        self,
        env_config: EnvironmentConfig,
        use_tls: bool = True,
        timeout: float = 30,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
    ):
        """Initialize SMTP gateway.

        Args:
            env_config: Environment configuration with SMTP settings
            use_tls: Whether to upgrade plain connections with STARTTLS
            timeout: Socket timeout in seconds
            smtp_factory: Factory for SMTP instances (for mocking)
            smtp_ssl_factory: Factory for SMTP_SSL instances (for mocking)
        """
        self.env_config = env_config
        self.use_tls = use_tls
        self.timeout = timeout
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL
        self.sender = build_sender_address(env_config)

    def send(self, recipient: str, kind: NotificationKind, message: RenderedMessage) -> SendResult:
        try:
            address = validate_email(recipient, check_deliverability=False).normalized
        except EmailNotValidError as e:
            return SendResult.permanent(f"Invalid recipient address '{recipient}': {e}")

        email = self._build_message(address, kind, message)

        smtp = None
        try:
            smtp = self._connect()

            if self.env_config.smtp_user and self.env_config.smtp_pass:
                smtp.login(self.env_config.smtp_user, self.env_config.smtp_pass)

            refused = smtp.send_message(email)
            if refused:
                return SendResult.permanent(f"Recipient refused: {refused}")

            logger.debug(
                f"Message sent to {address}",
                extra={"event": "gateway.smtp.sent", "kind": kind.value},
            )
            return SendResult.delivered(email["Message-ID"])

        except smtplib.SMTPRecipientsRefused as e:
            return SendResult.permanent(f"Recipient refused: {e.recipients}")
        except (smtplib.SMTPAuthenticationError, smtplib.SMTPConnectError) as e:
            # Relay configuration or availability problem, not the message's fault
            return SendResult.transient(f"SMTP {e.smtp_code}: {_reply_text(e)}")
        except smtplib.SMTPResponseException as e:
            if 500 <= e.smtp_code < 600:
                return SendResult.permanent(f"SMTP {e.smtp_code}: {_reply_text(e)}")
            return SendResult.transient(f"SMTP {e.smtp_code}: {_reply_text(e)}")
        except smtplib.SMTPException as e:
            return SendResult.transient(f"SMTP error during message delivery: {e}")
        except OSError as e:
            return SendResult.transient(f"Network error during SMTP connection: {e}")
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError) as e:
                    logger.warning(f"Error closing SMTP connection: {e}")

    def _connect(self):
        host, port = self.env_config.smtp_host, self.env_config.smtp_port

        if port == 465:
            logger.debug(f"Connecting to {host}:{port} with implicit TLS")
            return self.smtp_ssl_factory(
                host, port, timeout=self.timeout, context=ssl.create_default_context()
            )

        logger.debug(f"Connecting to {host}:{port}")
        smtp = self.smtp_factory(host, port, timeout=self.timeout)
        if self.use_tls:
            smtp.starttls(context=ssl.create_default_context())
        return smtp

    def _build_message(
        self, recipient: str, kind: NotificationKind, message: RenderedMessage
    ) -> EmailMessage:
        email = EmailMessage()
        email["Subject"] = message.subject
        email["From"] = self.sender
        email["To"] = recipient
        email["Message-ID"] = make_msgid(domain=self.sender.rsplit("@", 1)[-1].rstrip(">"))
        email["X-Notification-Kind"] = kind.value
        email.set_content(message.text_body)
        email.add_alternative(message.html_body, subtype="html")
        return email


def build_sender_address(env_config: EnvironmentConfig) -> str:
    """Build the 'From' address for outgoing emails.

    Uses SMTP_FROM_EMAIL (or SMTP_USER) with SMTP_SENDER_NAME, falling back
    to a noreply address at the SMTP host.

    Returns:
        Formatted sender address (e.g., "CBA Platform <no-reply@example.com>")
    """
    sender_email = env_config.smtp_from_email or f"noreply@{env_config.smtp_host}"
    return formataddr((env_config.smtp_sender_name, sender_email))


def _reply_text(error: smtplib.SMTPResponseException) -> str:
    reply = error.smtp_error
    if isinstance(reply, bytes):
        return reply.decode("utf-8", errors="replace")
    return str(reply)
