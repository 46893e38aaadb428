"""Scheduler service driving the dispatch and reconciliation passes."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from notifier.engine import DispatchPassResult, NotificationEngine, ReconciliationResult
from notifier.logging import get_logger
from notifier.logging.context import log_context
from notifier.utils.clock import Clock, SystemClock

logger = get_logger(__name__, component="scheduler")

DISPATCH_JOB_ID = "notifications-dispatch"
RECONCILIATION_JOB_ID = "notifications-reconciliation"


class DeliveryScheduler:
    """
    Runs the engine's two periodic passes on independent timers.

    In production the timers are APScheduler interval jobs on a
    BackgroundScheduler. Tests drive the same passes deterministically with
    run_due() and an injected clock instead of starting the scheduler.

    Each pass holds its own non-blocking lock, so a pass never overlaps
    itself (a second trigger while one is running is skipped and logged).
    The two passes may run concurrently with each other.
    """

    def __init__(
        self,
        engine: NotificationEngine,
        dispatch_interval_seconds: int = 30,
        reconciliation_interval_seconds: int = 300,
        clock: Optional[Clock] = None,
        run_on_start: bool = True,
        shutdown_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the scheduler service.

        Args:
            engine: Engine whose passes are scheduled
            dispatch_interval_seconds: Interval between dispatch passes
            reconciliation_interval_seconds: Interval between reconciliation passes
            clock: Time source for run_due() (system clock when None)
            run_on_start: Whether both passes are due immediately
            shutdown_event: Optional event to set on shutdown for coordination
        """
        if dispatch_interval_seconds <= 0 or reconciliation_interval_seconds <= 0:
            raise ValueError("Scheduler intervals must be positive")

        self.engine = engine
        self.dispatch_interval_seconds = dispatch_interval_seconds
        self.reconciliation_interval_seconds = reconciliation_interval_seconds
        self.clock = clock or SystemClock()
        self.run_on_start = run_on_start
        self.shutdown_event = shutdown_event

        self._dispatch_lock = threading.Lock()
        self._reconciliation_lock = threading.Lock()

        now = self.clock.now()
        self._next_dispatch_at = now if run_on_start else now + self._dispatch_interval
        self._next_reconciliation_at = (
            now if run_on_start else now + self._reconciliation_interval
        )

        self.scheduler = BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": dispatch_interval_seconds,
            },
            timezone=timezone.utc,
        )

    @property
    def _dispatch_interval(self) -> timedelta:
        return timedelta(seconds=self.dispatch_interval_seconds)

    @property
    def _reconciliation_interval(self) -> timedelta:
        return timedelta(seconds=self.reconciliation_interval_seconds)

    def start(self) -> None:
        """
        Register both jobs and start the background scheduler.

        With run_on_start, the first run of each pass happens immediately;
        later runs follow the configured intervals.
        """
        first_run = datetime.now(timezone.utc) if self.run_on_start else None

        self.scheduler.add_job(
            func=self.run_dispatch_pass,
            trigger=IntervalTrigger(seconds=self.dispatch_interval_seconds, timezone=timezone.utc),
            id=DISPATCH_JOB_ID,
            name="Notification dispatch pass",
            replace_existing=True,
            **({"next_run_time": first_run} if first_run else {}),
        )
        self.scheduler.add_job(
            func=self.run_reconciliation_pass,
            trigger=IntervalTrigger(
                seconds=self.reconciliation_interval_seconds, timezone=timezone.utc
            ),
            id=RECONCILIATION_JOB_ID,
            name="Notification reconciliation pass",
            replace_existing=True,
            misfire_grace_time=self.reconciliation_interval_seconds,
            **({"next_run_time": first_run} if first_run else {}),
        )

        self.scheduler.start()

        logger.info(
            f"Scheduler started: dispatch every {self.dispatch_interval_seconds}s, "
            f"reconciliation every {self.reconciliation_interval_seconds}s",
            extra={
                "event": "scheduler.started",
                "dispatch_interval_seconds": self.dispatch_interval_seconds,
                "reconciliation_interval_seconds": self.reconciliation_interval_seconds,
                "run_on_start": self.run_on_start,
            },
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Stop both timers.

        Args:
            wait: If True, wait for running passes to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )

        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)

        if self.shutdown_event:
            self.shutdown_event.set()

        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running

    def get_next_run_times(self) -> Dict[str, Optional[datetime]]:
        """Next scheduled run of each pass, or None for a pass that is not scheduled."""
        times = {}
        for name, job_id in (("dispatch", DISPATCH_JOB_ID), ("reconciliation", RECONCILIATION_JOB_ID)):
            job = self.scheduler.get_job(job_id)
            times[name] = job.next_run_time if job else None
        return times

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def run_dispatch_pass(self) -> DispatchPassResult:
        """Run one dispatch pass unless one is already running."""
        if not self._dispatch_lock.acquire(blocking=False):
            self._log_skipped("dispatch")
            return DispatchPassResult(skipped=True)

        try:
            with log_context(pass_name="dispatch"):
                result = self.engine.process_queue_now()
                logger.debug(
                    "Dispatch pass finished",
                    extra={
                        "event": "scheduler.dispatch.completed",
                        "claimed": result.claimed,
                        "sent": result.sent,
                        "aborted": result.aborted,
                    },
                )
                return result
        finally:
            self._dispatch_lock.release()

    def run_reconciliation_pass(self) -> ReconciliationResult:
        """Run one reconciliation pass unless one is already running."""
        if not self._reconciliation_lock.acquire(blocking=False):
            self._log_skipped("reconciliation")
            return ReconciliationResult(skipped=True)

        try:
            with log_context(pass_name="reconciliation"):
                return self.engine.reconcile()
        finally:
            self._reconciliation_lock.release()

    def trigger_dispatch_now(self) -> DispatchPassResult:
        """Run a dispatch pass synchronously in the calling thread."""
        logger.info(
            "Triggering immediate dispatch pass",
            extra={"event": "scheduler.trigger_now", "pass_name": "dispatch"},
        )
        return self.run_dispatch_pass()

    def trigger_reconciliation_now(self) -> ReconciliationResult:
        """Run a reconciliation pass synchronously in the calling thread."""
        logger.info(
            "Triggering immediate reconciliation pass",
            extra={"event": "scheduler.trigger_now", "pass_name": "reconciliation"},
        )
        return self.run_reconciliation_pass()

    def run_due(self) -> Dict[str, object]:
        """
        Run every pass whose time has come according to the injected clock.

        Returns:
            Mapping of pass name to its result, for the passes that ran
        """
        now = self.clock.now()
        results: Dict[str, object] = {}

        if now >= self._next_dispatch_at:
            results["dispatch"] = self.run_dispatch_pass()
            self._next_dispatch_at = now + self._dispatch_interval

        if now >= self._next_reconciliation_at:
            results["reconciliation"] = self.run_reconciliation_pass()
            self._next_reconciliation_at = now + self._reconciliation_interval

        return results

    def _log_skipped(self, pass_name: str) -> None:
        logger.warning(
            f"Skipping {pass_name} pass: previous run still active",
            extra={"event": "scheduler.pass.skipped", "pass_name": pass_name},
        )
