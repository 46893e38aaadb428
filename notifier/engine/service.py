"""NotificationEngine: intake, claiming, delivery attempts and retry policy.

Flow for one record:
1. submit() validates the request and inserts a pending record
2. a dispatch pass claims it (pending/retrying -> processing)
3. the gateway is called on a worker thread, bounded by send_timeout
4. the claim is resolved: sent, failed awaiting retry, or failed terminally
5. the reconciliation pass promotes due failed records to retrying

No in-process lock is held across store or gateway calls. Record-level
exclusivity comes from the store's conditional claim and claim-token
checked completion.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import timedelta
from typing import Any, List, Mapping, Optional, Union
from uuid import uuid4

from notifier.domain.exceptions import (
    NotificationTemplateError,
    NotificationValidationError,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from notifier.domain.models import (
    AttemptOutcome,
    NotificationKind,
    NotificationRecord,
    NotificationStatus,
    Priority,
    SendFailed,
    SendSucceeded,
)
from notifier.events.publisher import (
    NOTIFICATION_FAILED,
    NOTIFICATION_RETRY_SCHEDULED,
    NOTIFICATION_SENT,
    DeliveryEvent,
    DeliveryEventPublisher,
    LoggingEventPublisher,
)
from notifier.gateway.base import EmailGateway
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.persistence.exceptions import RecordNotFoundError, StoreUnavailableError
from notifier.persistence.store import NotificationStore
from notifier.queue.delivery_queue import DeliveryQueue
from notifier.rendering.registry import parse_kind, validate_payload
from notifier.rendering.templates import RenderedMessage, TemplateRenderer
from notifier.stats.aggregator import StatsAggregator
from notifier.stats.models import DeliveryStats
from notifier.utils.clock import Clock, SystemClock

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

logger = get_logger(__name__, component="engine")


class NotificationEngine:
    """Orchestrates notification intake and delivery.

    Thread-safe: the scheduler's passes, administrative triggers and inline
    urgent submissions may all call into one engine concurrently.
    """

    def __init__(
        self,
        store: NotificationStore,
        gateway: EmailGateway,
        queue: Optional[DeliveryQueue] = None,
        renderer: Optional[TemplateRenderer] = None,
        stats: Optional[StatsAggregator] = None,
        publisher: Optional[DeliveryEventPublisher] = None,
        clock: Optional[Clock] = None,
        max_attempts: int = 3,
        retry_delay_seconds: float = 5,
        batch_size: int = 50,
        max_batches_per_pass: int = 20,
        send_timeout_seconds: float = 30,
        claim_timeout_seconds: float = 1800,
        send_workers: int = 4,
    ):
        """Initialize the engine.

        Args:
            store: Durable notification store
            gateway: Delivery provider
            queue: Delivery queue (a store-only queue when None)
            renderer: Template renderer (default templates when None)
            stats: Statistics aggregator, invalidated after state changes
            publisher: Destination for delivery-outcome events
            clock: Time source (system clock when None)
            max_attempts: Attempt ceiling stamped on new records
            retry_delay_seconds: Minimum backoff after a failed attempt
            batch_size: Default claim size for dispatch batches
            max_batches_per_pass: Cap on batches in one dispatch pass
            send_timeout_seconds: Bound on a single gateway call
            claim_timeout_seconds: Age after which a claim counts as abandoned
            send_workers: Threads available for gateway calls
        """
        if claim_timeout_seconds <= send_timeout_seconds:
            raise ValueError("claim_timeout_seconds must exceed send_timeout_seconds")

        self.store = store
        self.gateway = gateway
        self.queue = queue or DeliveryQueue(store)
        self.renderer = renderer or TemplateRenderer()
        self.clock = clock or SystemClock()
        self.stats = stats or StatsAggregator(store, clock=self.clock)
        self.publisher = publisher or LoggingEventPublisher()

        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.batch_size = batch_size
        self.max_batches_per_pass = max_batches_per_pass
        self.send_timeout_seconds = send_timeout_seconds
        self.claim_timeout_seconds = claim_timeout_seconds

        self._executor = ThreadPoolExecutor(
            max_workers=send_workers, thread_name_prefix="notifier-send"
        )
        self._closed = False

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit(
        self,
        recipient: str,
        kind: Union[NotificationKind, str],
        payload: Optional[Mapping[str, Any]] = None,
        priority: Union[Priority, str] = Priority.NORMAL,
        dispatch_inline: Optional[bool] = None,
    ) -> str:
        """Accept a notification request and return its id.

        Urgent requests (or ``dispatch_inline=True``) are attempted before
        this returns, so the returned id already reflects the delivery
        outcome. The record is tracked exactly like a queued one.

        Raises:
            NotificationValidationError: Unknown kind, bad payload, blank recipient
            StoreUnavailableError: The store could not persist the record
        """
        notification_kind = parse_kind(kind)
        notification_priority = _parse_priority(priority)

        if not isinstance(recipient, str) or not recipient.strip():
            raise NotificationValidationError("Recipient must be a non-empty string")

        normalized_payload = validate_payload(notification_kind, payload)

        now = self.clock.now()
        record = NotificationRecord(
            recipient=recipient.strip(),
            kind=notification_kind,
            payload=normalized_payload,
            priority=notification_priority,
            max_attempts=self.max_attempts,
            created_at=now,
            updated_at=now,
        )

        self.store.insert(record)
        self.stats.invalidate()

        inline = (
            dispatch_inline
            if dispatch_inline is not None
            else notification_priority == Priority.URGENT
        )

        with log_context(notification_id=record.id):
            logger.info(
                f"Notification submitted ({notification_kind.value}, {notification_priority.value})",
                extra={
                    "event": "notification.submitted",
                    "kind": notification_kind.value,
                    "priority": notification_priority.value,
                    "inline": inline,
                },
            )

            if inline:
                self._dispatch_inline(record)
            else:
                self.queue.enqueue(record)

        return record.id

    def _dispatch_inline(self, record: NotificationRecord) -> Optional[AttemptResult]:
        try:
            claimed = self.store.claim_ids([record.id], self.clock.now())
            if not claimed:
                return None
            result = self._attempt(claimed[0])
        except StoreUnavailableError as e:
            # The record is durable; the next dispatch pass (or claim expiry) picks it up
            logger.warning(
                f"Inline dispatch interrupted by store failure: {e}",
                extra={"event": "notification.inline.interrupted"},
            )
            return None

        self.stats.invalidate()
        return result

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch_batch(self, limit: Optional[int] = None) -> DispatchBatchResult:
        """Claim up to ``limit`` eligible records and attempt each, in dispatch order.

        Gateway errors become record state; a store error aborts the batch
        and is reported in the result, never raised.
        """
        limit = self.batch_size if limit is None else limit
        result = DispatchBatchResult(batch_id=uuid4().hex[:12])

        with log_context(batch_id=result.batch_id):
            try:
                claimed = self.queue.claim(limit, self.clock.now())
            except StoreUnavailableError as e:
                self._abort_batch(result, e, "claim")
                return result

            result.claimed = len(claimed)
            if claimed:
                logger.info(
                    f"Claimed {len(claimed)} notifications",
                    extra={"event": "dispatch.batch.claimed", "claimed": len(claimed), "limit": limit},
                )

            for record in claimed:
                try:
                    result.attempts.append(self._attempt(record))
                except StoreUnavailableError as e:
                    # Unresolved claims are released by reconciliation after claim_timeout
                    self._abort_batch(result, e, "complete_attempt")
                    break

            if result.attempts:
                self.stats.invalidate()
                logger.info(
                    f"Batch finished: {result.sent} sent, {result.retry_scheduled} to retry, "
                    f"{result.failed} failed",
                    extra={
                        "event": "dispatch.batch.completed",
                        "sent": result.sent,
                        "retry_scheduled": result.retry_scheduled,
                        "failed": result.failed,
                        "claims_lost": result.claims_lost,
                        "released": result.released,
                    },
                )

        return result

    def process_queue_now(self) -> DispatchPassResult:
        """Run one dispatch pass: batches until a short batch, capped by max_batches_per_pass."""
        pass_result = DispatchPassResult()

        for _ in range(self.max_batches_per_pass):
            batch = self.dispatch_batch(self.batch_size)
            pass_result.add(batch)
            if batch.aborted or batch.claimed < self.batch_size:
                break

        return pass_result

    def _abort_batch(self, result: DispatchBatchResult, error: Exception, stage: str) -> None:
        result.aborted = True
        result.error = str(error)
        logger.error(
            f"Dispatch batch aborted, store unavailable: {error}",
            extra={"event": "dispatch.batch.aborted", "stage": stage},
        )

    def _attempt(self, record: NotificationRecord) -> AttemptResult:
        """Attempt delivery of one claimed record and resolve its claim.

        Raises:
            StoreUnavailableError: If the outcome cannot be recorded
        """
        with log_context(notification_id=record.id):
            if self._closed:
                return self._release(record, "Engine closed before the send, handing the claim back")
            if not self._claim_has_room(record):
                return self._release(
                    record, "Claim too close to expiry for a bounded send, handing it back"
                )

            try:
                message = self.renderer.render(record.kind, record.payload, record.recipient)
            except NotificationTemplateError as e:
                outcome: Optional[AttemptOutcome] = SendFailed(reason=str(e), permanent=True)
            else:
                outcome = self._send(record, message)
                if outcome is None:
                    return self._release(
                        record, "Send workers stopped before the send, handing the claim back"
                    )

            now = self.clock.now()
            resolved = self.store.complete_attempt(record.id, record.claim_token, outcome, now)

            if resolved is None:
                logger.warning(
                    "Claim no longer held when recording the attempt outcome",
                    extra={"event": "notification.attempt.claim_lost"},
                )
                return ClaimLost(notification_id=record.id)

            return self._report(resolved, now)

    def _release(self, record: NotificationRecord, message: str) -> ClaimReleased:
        """Hand an unattempted claim back and re-mirror the record for the next pass."""
        released = self.store.release_claim(record.id, record.claim_token, self.clock.now())
        logger.warning(
            message,
            extra={"event": "notification.attempt.claim_released", "released": released},
        )
        if released:
            current = self.store.get(record.id)
            if current is not None:
                self.queue.enqueue(current)
        return ClaimReleased(notification_id=record.id)

    def _claim_has_room(self, record: NotificationRecord) -> bool:
        """Whether a full send can finish before the claim could be released as abandoned."""
        if record.claimed_at is None:
            return True
        deadline = record.claimed_at + timedelta(
            seconds=self.claim_timeout_seconds - self.send_timeout_seconds
        )
        return self.clock.now() < deadline

    def _send(self, record: NotificationRecord, message: RenderedMessage) -> Optional[AttemptOutcome]:
        """Call the gateway on a worker thread, translating every failure into an outcome.

        Returns None when the send workers are already shut down; the gateway
        was not called.
        """
        try:
            future = self._executor.submit(self.gateway.send, record.recipient, record.kind, message)
        except RuntimeError as e:
            logger.warning(
                f"Send workers unavailable: {e}",
                extra={"event": "notification.attempt.not_started"},
            )
            return None

        try:
            result = future.result(timeout=self.send_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            return SendFailed(
                reason=f"Gateway call timed out after {self.send_timeout_seconds}s",
                permanent=False,
            )
        except TransientDeliveryError as e:
            return SendFailed(reason=str(e) or type(e).__name__, permanent=False)
        except PermanentDeliveryError as e:
            return SendFailed(reason=str(e) or type(e).__name__, permanent=True)
        except Exception as e:
            logger.error(
                f"Unexpected gateway error: {e}",
                exc_info=True,
                extra={"event": "notification.attempt.gateway_error", "error_type": type(e).__name__},
            )
            return SendFailed(reason=f"Unexpected gateway error: {e}", permanent=False)

        if result.success:
            return SendSucceeded(
                provider_message_id=result.provider_message_id or f"{self.gateway.name}-{record.id}"
            )
        return SendFailed(
            reason=result.error_message or "Delivery failed",
            permanent=result.is_permanent,
        )

    def _report(self, record: NotificationRecord, now) -> AttemptResult:
        """Classify a resolved record, log it and publish its delivery event."""
        if record.status == NotificationStatus.SENT:
            logger.info(
                f"Notification sent (attempt {record.attempt_count}/{record.max_attempts})",
                extra={
                    "event": "notification.attempt.succeeded",
                    "attempt": record.attempt_count,
                    "provider_message_id": record.provider_message_id,
                },
            )
            self._publish(DeliveryEvent.from_record(NOTIFICATION_SENT, record, now))
            return Delivered(notification_id=record.id, record=record)

        if record.is_awaiting_retry:
            retry_due_at = record.retry_due_at(self.retry_delay_seconds)
            logger.warning(
                f"Delivery failed (attempt {record.attempt_count}/{record.max_attempts}), "
                f"will retry: {record.failure_reason}",
                extra={
                    "event": "notification.attempt.failed",
                    "attempt": record.attempt_count,
                    "retry_remaining": True,
                },
            )
            self._publish(
                DeliveryEvent.from_record(NOTIFICATION_RETRY_SCHEDULED, record, now, retry_due_at)
            )
            return RetryableFailure(notification_id=record.id, record=record, retry_due_at=retry_due_at)

        logger.error(
            f"Delivery failed terminally after {record.attempt_count} attempt(s): "
            f"{record.failure_reason}",
            extra={
                "event": "notification.attempt.exhausted",
                "attempt": record.attempt_count,
                "permanent": record.failure_permanent,
                "retry_remaining": False,
            },
        )
        self._publish(DeliveryEvent.from_record(NOTIFICATION_FAILED, record, now))
        return TerminalFailure(notification_id=record.id, record=record)

    def _publish(self, event: DeliveryEvent) -> None:
        try:
            self.publisher.publish(event)
        except Exception as e:
            logger.warning(
                f"Failed to publish {event.event_type}: {e}",
                extra={"event": "notification.event.publish_failed", "error_type": type(e).__name__},
            )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self) -> ReconciliationResult:
        """Run one reconciliation pass.

        1. Abandoned claims (processing longer than claim_timeout) are
           resolved as transient failed attempts
        2. Failed records whose backoff has elapsed move to retrying
        3. The queue accelerator, if any, is rebuilt from the store
        """
        result = ReconciliationResult()
        now = self.clock.now()

        try:
            cutoff = now - timedelta(seconds=self.claim_timeout_seconds)
            for record in self.store.release_stale_claims(cutoff, now):
                result.released_ids.append(record.id)
                with log_context(notification_id=record.id):
                    self._report(record, now)

            result.promoted_ids = self.store.promote_retryable(now, self.retry_delay_seconds)
            result.resynced = self.queue.resync()
        except StoreUnavailableError as e:
            result.aborted = True
            result.error = str(e)
            logger.error(
                f"Reconciliation aborted, store unavailable: {e}",
                extra={"event": "reconciliation.aborted"},
            )

        if result.promoted_ids or result.released_ids:
            self.stats.invalidate()
            logger.info(
                f"Reconciliation promoted {result.promoted} notifications to retrying",
                extra={
                    "event": "reconciliation.completed",
                    "promoted": result.promoted,
                    "released": len(result.released_ids),
                },
            )

        return result

    def retry_failed_now(self) -> ReconciliationResult:
        """Trigger an immediate reconciliation pass."""
        return self.reconcile()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, notification_id: str) -> NotificationRecord:
        """Last durable state of one record.

        Raises:
            RecordNotFoundError: If no record has this id
            StoreUnavailableError: If the store cannot be reached
        """
        record = self.store.get(notification_id)
        if record is None:
            raise RecordNotFoundError(f"Notification not found: {notification_id}")
        return record

    def get_history(self, recipient: str, limit: int = 20) -> List[NotificationRecord]:
        """Records for ``recipient``, newest first, at most ``limit``."""
        return self.store.find_by_recipient(recipient, limit)

    def get_stats(self) -> DeliveryStats:
        return self.stats.get_stats()

    def close(self) -> None:
        """Stop the send workers and release gateway and queue resources.

        A batch still in flight hands its remaining claims back instead of
        sending them.
        """
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.gateway.close()
        self.queue.close()


def _parse_priority(priority: Union[Priority, str]) -> Priority:
    if isinstance(priority, Priority):
        return priority
    try:
        return Priority(str(priority).lower())
    except ValueError:
        valid = ", ".join(p.value for p in Priority)
        raise NotificationValidationError(
            f"Unknown priority: {priority!r}. Must be one of: {valid}"
        ) from None
