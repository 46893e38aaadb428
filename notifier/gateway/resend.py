"""Resend HTTP API delivery provider."""

import logging
from typing import Optional

import requests

from notifier.domain.models import NotificationKind
from notifier.logging import get_logger
from notifier.rendering.templates import RenderedMessage

from .base import EmailGateway, SendResult

logger = get_logger(__name__, component="gateway")

RESEND_API_URL = "https://api.resend.com"


class ResendEmailGateway(EmailGateway):
    """Sends notifications through the Resend ``POST /emails`` endpoint.

    Classification:
    - 2xx: delivered, the response ``id`` is the provider message id
    - 429, 5xx, timeouts, connection errors: transient
    - any other 4xx (validation, unverified domain, bad key): permanent
    """

    name = "resend"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str = "CBA Platform",
        timeout: int = 20,
        user_agent: str = "NotificationDeliveryEngine/1.0",
        base_url: str = RESEND_API_URL,
        session: Optional[requests.Session] = None,
    ):
        self.sender = f"{from_name} <{from_email}>"
        self.timeout = timeout
        self.url = f"{base_url.rstrip('/')}/emails"

        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "User-Agent": user_agent,
                "Content-Type": "application/json",
            }
        )

    def send(self, recipient: str, kind: NotificationKind, message: RenderedMessage) -> SendResult:
        body = {
            "from": self.sender,
            "to": [recipient],
            "subject": message.subject,
            "html": message.html_body,
            "text": message.text_body,
            "tags": [{"name": "kind", "value": kind.value.replace("-", "_")}],
        }

        try:
            response = self._session.post(self.url, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout:
            return SendResult.transient(f"Resend request timed out after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            return SendResult.transient(f"Resend request failed: {e}")

        if response.status_code >= 400:
            is_retryable = response.status_code == 429 or response.status_code >= 500
            logger.log(
                logging.WARNING if is_retryable else logging.ERROR,
                f"HTTP {response.status_code} error from Resend",
                extra={
                    "event": "gateway.resend.retryable_error" if is_retryable else "gateway.resend.error",
                    "status_code": response.status_code,
                    "kind": kind.value,
                },
            )
            detail = f"Resend HTTP {response.status_code}: {_error_message(response)}"
            return SendResult.transient(detail) if is_retryable else SendResult.permanent(detail)

        try:
            message_id = response.json().get("id")
        except ValueError:
            message_id = None

        if not message_id:
            # Accepted but unidentifiable; retrying could send a duplicate
            return SendResult.delivered(response.headers.get("x-request-id") or "resend-unknown")

        return SendResult.delivered(message_id)

    def close(self) -> None:
        self._session.close()


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason or "no response body"
    if isinstance(data, dict):
        return str(data.get("message") or data.get("name") or data)
    return str(data)
