"""Unit tests for the DeliveryScheduler.

Tests cover:
- Job registration with max_instances=1 and coalescing
- Clock-driven run_due() timing for both passes
- Skipping a pass that is still running
- Start/shutdown lifecycle and trigger-now helpers
"""

import threading
from unittest.mock import Mock

import pytest

from notifier.domain.models import NotificationKind, NotificationStatus
from notifier.engine import DispatchPassResult, ReconciliationResult
from notifier.gateway.base import SendResult
from notifier.scheduler import DeliveryScheduler
from notifier.scheduler.service import DISPATCH_JOB_ID, RECONCILIATION_JOB_ID
from tests.helpers import VALID_PAYLOADS, FakeClock, ScriptedGateway, make_engine


@pytest.fixture
def mock_engine():
    engine = Mock()
    engine.process_queue_now.return_value = DispatchPassResult()
    engine.reconcile.return_value = ReconciliationResult()
    return engine


class TestSchedulerLifecycle:
    """Tests for APScheduler job registration and lifecycle."""

    def test_initialization(self, mock_engine):
        shutdown_event = threading.Event()

        scheduler = DeliveryScheduler(
            mock_engine,
            dispatch_interval_seconds=60,
            reconciliation_interval_seconds=600,
            shutdown_event=shutdown_event,
        )

        assert scheduler.dispatch_interval_seconds == 60
        assert scheduler.reconciliation_interval_seconds == 600
        assert not scheduler.is_running()
        assert scheduler.get_next_run_times() == {"dispatch": None, "reconciliation": None}

    @pytest.mark.parametrize("dispatch,reconciliation", [(0, 300), (30, 0), (-1, 300)])
    def test_rejects_non_positive_intervals(self, mock_engine, dispatch, reconciliation):
        with pytest.raises(ValueError):
            DeliveryScheduler(mock_engine, dispatch, reconciliation)

    def test_start_registers_both_jobs(self, mock_engine):
        shutdown_event = threading.Event()
        scheduler = DeliveryScheduler(
            mock_engine,
            dispatch_interval_seconds=3600,
            reconciliation_interval_seconds=7200,
            run_on_start=False,
            shutdown_event=shutdown_event,
        )

        scheduler.start()
        try:
            assert scheduler.is_running()
            dispatch_job = scheduler.scheduler.get_job(DISPATCH_JOB_ID)
            reconciliation_job = scheduler.scheduler.get_job(RECONCILIATION_JOB_ID)
            assert dispatch_job.max_instances == 1
            assert dispatch_job.coalesce is True
            assert reconciliation_job.max_instances == 1
            assert reconciliation_job.misfire_grace_time == 7200

            next_runs = scheduler.get_next_run_times()
            assert next_runs["reconciliation"] > next_runs["dispatch"]
        finally:
            scheduler.shutdown(wait=True)

        assert not scheduler.is_running()
        assert shutdown_event.is_set()
        mock_engine.process_queue_now.assert_not_called()

    def test_run_on_start_runs_both_passes_immediately(self, mock_engine):
        dispatched = threading.Event()
        reconciled = threading.Event()
        mock_engine.process_queue_now.side_effect = lambda: dispatched.set() or DispatchPassResult()
        mock_engine.reconcile.side_effect = lambda: reconciled.set() or ReconciliationResult()

        scheduler = DeliveryScheduler(mock_engine, 3600, 3600, run_on_start=True)
        scheduler.start()
        try:
            assert dispatched.wait(timeout=5)
            assert reconciled.wait(timeout=5)
        finally:
            scheduler.shutdown(wait=True)

    def test_shutdown_without_start(self, mock_engine):
        shutdown_event = threading.Event()
        scheduler = DeliveryScheduler(mock_engine, shutdown_event=shutdown_event)

        scheduler.shutdown()

        assert shutdown_event.is_set()


class TestPasses:
    """Tests for pass execution and overlap protection."""

    def test_trigger_now_runs_synchronously(self, mock_engine):
        scheduler = DeliveryScheduler(mock_engine)

        dispatch = scheduler.trigger_dispatch_now()
        reconciliation = scheduler.trigger_reconciliation_now()

        assert dispatch is mock_engine.process_queue_now.return_value
        assert reconciliation is mock_engine.reconcile.return_value

    def test_overlapping_dispatch_is_skipped(self, mock_engine):
        started = threading.Event()
        release = threading.Event()

        def slow_pass():
            started.set()
            release.wait(timeout=5)
            return DispatchPassResult()

        mock_engine.process_queue_now.side_effect = slow_pass
        scheduler = DeliveryScheduler(mock_engine)

        worker = threading.Thread(target=scheduler.run_dispatch_pass)
        worker.start()
        try:
            assert started.wait(timeout=5)

            skipped = scheduler.run_dispatch_pass()
            reconciliation = scheduler.run_reconciliation_pass()
        finally:
            release.set()
            worker.join()

        assert skipped.skipped
        assert not reconciliation.skipped
        assert mock_engine.process_queue_now.call_count == 1

    def test_lock_released_after_error(self, mock_engine):
        mock_engine.reconcile.side_effect = [RuntimeError("boom"), ReconciliationResult()]
        scheduler = DeliveryScheduler(mock_engine)

        with pytest.raises(RuntimeError):
            scheduler.run_reconciliation_pass()

        assert not scheduler.run_reconciliation_pass().skipped


class TestRunDue:
    """Tests for the clock-driven pass timing."""

    def test_both_passes_due_on_start(self, mock_engine):
        clock = FakeClock()
        scheduler = DeliveryScheduler(mock_engine, 30, 300, clock=clock)

        assert set(scheduler.run_due()) == {"dispatch", "reconciliation"}
        assert scheduler.run_due() == {}

    def test_independent_intervals(self, mock_engine):
        clock = FakeClock()
        scheduler = DeliveryScheduler(mock_engine, 30, 90, clock=clock, run_on_start=False)

        ran = []
        for _ in range(6):
            clock.advance(30)
            ran.append(sorted(scheduler.run_due()))

        assert ran == [
            ["dispatch"],
            ["dispatch"],
            ["dispatch", "reconciliation"],
            ["dispatch"],
            ["dispatch"],
            ["dispatch", "reconciliation"],
        ]
        assert mock_engine.process_queue_now.call_count == 6
        assert mock_engine.reconcile.call_count == 2

    def test_drives_real_engine_through_retry(self, store, clock):
        gateway = ScriptedGateway([SendResult.transient("busy")])
        engine = make_engine(store, gateway=gateway, clock=clock)
        scheduler = DeliveryScheduler(engine, 1, 5, clock=clock)
        try:
            notification_id = engine.submit(
                "ada@example.com", "welcome", VALID_PAYLOADS[NotificationKind.WELCOME]
            )

            scheduler.run_due()
            assert engine.get_status(notification_id).status == NotificationStatus.FAILED

            for _ in range(6):
                clock.advance(1)
                scheduler.run_due()

            record = engine.get_status(notification_id)
            assert record.status == NotificationStatus.SENT
            assert record.attempt_count == 2
        finally:
            engine.close()
