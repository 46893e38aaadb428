"""EventIntake: translates inbound domain events into notification requests.

Messages are JSON envelopes ``{"eventType": ..., "data": {...}, ...}`` as
published by the platform's user and auth services. Some producers put the
event fields under ``userData`` instead of ``data``; both are accepted.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from notifier.domain.exceptions import NotificationValidationError
from notifier.domain.models import NotificationKind, Priority
from notifier.engine import NotificationEngine
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.utils.clock import Clock, SystemClock
from notifier.utils.timestamps import parse_iso_datetime

logger = get_logger(__name__, component="intake")

SUBMITTED = "submitted"
IGNORED = "ignored"
REJECTED = "rejected"


class MalformedEventError(ValueError):
    """Raised when a message cannot be turned into a notification request."""


@dataclass(frozen=True)
class EventRoute:
    """How one event type becomes a notification request."""

    kind: NotificationKind
    priority: Priority
    inline: bool = False
    payload_builder: Optional[Callable[[Mapping[str, Any], "EventIntake"], Dict[str, Any]]] = None


@dataclass(frozen=True)
class IntakeOutcome:
    event_type: Optional[str]
    status: str
    notification_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class IntakeSummary:
    """Counts from one consume() call."""

    submitted: int = 0
    ignored: int = 0
    rejected: int = 0

    def record(self, outcome: IntakeOutcome) -> None:
        if outcome.status == SUBMITTED:
            self.submitted += 1
        elif outcome.status == IGNORED:
            self.ignored += 1
        else:
            self.rejected += 1

    @property
    def total(self) -> int:
        return self.submitted + self.ignored + self.rejected


def _verification_payload(data: Mapping[str, Any], intake: "EventIntake") -> Dict[str, Any]:
    payload: Dict[str, Any] = {"otpCode": data.get("otpCode") or data.get("code")}
    if data.get("purpose"):
        payload["purpose"] = data["purpose"]

    expires_at = data.get("expiresAt")
    if expires_at:
        expiry = parse_iso_datetime(str(expires_at))
        if expiry is None:
            raise MalformedEventError(f"Invalid expiresAt: {expires_at!r}")
        remaining = (expiry - intake.clock.now()).total_seconds()
        payload["expiryMinutes"] = max(1, math.ceil(remaining / 60))

    return payload


def _passthrough_payload(data: Mapping[str, Any], intake: "EventIntake") -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key != "email"}


EVENT_ROUTES: Dict[str, EventRoute] = {
    "user.created": EventRoute(NotificationKind.CREDENTIAL_ISSUE, Priority.HIGH),
    "otp.generated": EventRoute(
        NotificationKind.VERIFICATION_CODE,
        Priority.HIGH,
        inline=True,
        payload_builder=_verification_payload,
    ),
    "user.password_changed": EventRoute(NotificationKind.PASSWORD_RESET, Priority.HIGH),
    "user.registered": EventRoute(NotificationKind.WELCOME, Priority.NORMAL),
}


class EventIntake:
    """Message-bus consumer front end for the NotificationEngine.

    Unknown event types are logged and ignored. Malformed messages and
    requests the engine rejects as invalid are logged and reported as
    rejected; they never stop consumption. StoreUnavailableError from the
    engine propagates so the caller can leave the message unacknowledged.
    """

    def __init__(
        self,
        engine: NotificationEngine,
        routes: Optional[Mapping[str, EventRoute]] = None,
        clock: Optional[Clock] = None,
    ):
        self.engine = engine
        self.routes = dict(routes if routes is not None else EVENT_ROUTES)
        self.clock = clock or engine.clock or SystemClock()

    def handle_message(self, raw: Union[str, bytes, Mapping[str, Any]]) -> IntakeOutcome:
        """Handle one raw bus message.

        Raises:
            StoreUnavailableError: If the request could not be persisted
        """
        try:
            envelope = _decode(raw)
        except MalformedEventError as e:
            return self._reject(None, str(e))

        event_type = envelope.get("eventType")
        if not isinstance(event_type, str) or not event_type:
            return self._reject(None, "Missing eventType")

        route = self.routes.get(event_type)
        if route is None:
            logger.info(
                f"Ignoring unhandled event type: {event_type}",
                extra={"event": "intake.event.ignored", "event_type": event_type},
            )
            return IntakeOutcome(event_type=event_type, status=IGNORED)

        with log_context(event_type=event_type):
            try:
                data = _event_data(envelope)
                recipient = data.get("email")
                if not isinstance(recipient, str) or not recipient.strip():
                    raise MalformedEventError("Event data has no recipient email")

                builder = route.payload_builder or _passthrough_payload
                notification_id = self.engine.submit(
                    recipient=recipient,
                    kind=route.kind,
                    payload=builder(data, self),
                    priority=route.priority,
                    dispatch_inline=route.inline,
                )
            except (MalformedEventError, NotificationValidationError) as e:
                return self._reject(event_type, str(e))

            logger.info(
                f"Event accepted as {route.kind.value} notification",
                extra={
                    "event": "intake.event.accepted",
                    "notification_id": notification_id,
                    "kind": route.kind.value,
                },
            )
            return IntakeOutcome(
                event_type=event_type, status=SUBMITTED, notification_id=notification_id
            )

    def consume(self, messages: Iterable[Union[str, bytes, Mapping[str, Any]]]) -> IntakeSummary:
        """Handle every message from ``messages`` in order."""
        summary = IntakeSummary()
        for raw in messages:
            summary.record(self.handle_message(raw))

        logger.info(
            f"Consumed {summary.total} events: {summary.submitted} submitted, "
            f"{summary.ignored} ignored, {summary.rejected} rejected",
            extra={
                "event": "intake.consume.completed",
                "submitted": summary.submitted,
                "ignored": summary.ignored,
                "rejected": summary.rejected,
            },
        )
        return summary

    def _reject(self, event_type: Optional[str], reason: str) -> IntakeOutcome:
        logger.warning(
            f"Rejected event: {reason}",
            extra={"event": "intake.event.rejected", "event_type": event_type},
        )
        return IntakeOutcome(event_type=event_type, status=REJECTED, error=reason)


def _decode(raw: Union[str, bytes, Mapping[str, Any]]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"Message is not valid JSON: {e}") from e
    if not isinstance(envelope, dict):
        raise MalformedEventError("Message must be a JSON object")
    return envelope


def _event_data(envelope: Mapping[str, Any]) -> Mapping[str, Any]:
    data = envelope.get("data")
    if data is None:
        data = envelope.get("userData")
    if not isinstance(data, Mapping):
        raise MalformedEventError("Event has no data object")
    return data
