"""End-to-end delivery flow: intake -> accelerated queue -> scheduler -> stats.

Runs against a real SQLite file, the in-memory sorted-set client and
scripted gateway outcomes; time only moves through the fake clock.
"""

import json

import pytest

from notifier.domain.models import NotificationStatus
from notifier.gateway.base import SendResult
from notifier.intake import EventIntake
from notifier.queue import DeliveryQueue, RedisQueueAccelerator
from notifier.scheduler import DeliveryScheduler
from tests.helpers import FakeSortedSetClient, ScriptedGateway, make_engine

KEY = "it:queue"


def _event(event_type, **data):
    return json.dumps({"eventType": event_type, "data": data})


@pytest.fixture
def redis_client():
    return FakeSortedSetClient()


@pytest.fixture
def flow(store, clock, publisher, redis_client):
    gateway = ScriptedGateway(
        [
            SendResult.delivered("re_otp"),
            SendResult.transient("Resend HTTP 503: unavailable"),
            SendResult.permanent("Resend HTTP 422: invalid recipient"),
        ]
    )
    queue = DeliveryQueue(store, RedisQueueAccelerator(redis_client, key=KEY))
    engine = make_engine(store, gateway=gateway, clock=clock, publisher=publisher, queue=queue)
    scheduler = DeliveryScheduler(engine, dispatch_interval_seconds=1, reconciliation_interval_seconds=5, clock=clock)
    yield engine, gateway, scheduler
    engine.close()


class TestDeliveryFlow:
    def test_mixed_outcomes_settle(self, flow, clock, redis_client, publisher):
        engine, gateway, scheduler = flow
        intake = EventIntake(engine)

        summary = intake.consume(
            [
                _event("otp.generated", email="otp@example.com", otpCode="482913"),
                _event("user.created", email="flaky@example.com", firstName="Ada", temporaryPassword="T-1"),
                _event("user.registered", email="bounce@example.com", firstName="Bob"),
                _event("user.deleted", email="gone@example.com"),
            ]
        )
        assert (summary.submitted, summary.ignored, summary.rejected) == (3, 1, 0)

        # OTP went out inline; the other two wait in the mirror, high priority first
        assert gateway.recipients == ["otp@example.com"]
        assert len(redis_client.members(KEY)) == 2

        scheduler.run_due()
        assert gateway.recipients == ["otp@example.com", "flaky@example.com", "bounce@example.com"]
        assert redis_client.members(KEY) == []

        for _ in range(6):
            clock.advance(1)
            scheduler.run_due()

        assert gateway.recipients[-1] == "flaky@example.com"
        history = {r.recipient: r for r in engine.get_history("otp@example.com", 5)}
        assert history["otp@example.com"].status == NotificationStatus.SENT

        flaky = engine.get_history("flaky@example.com", 1)[0]
        bounce = engine.get_history("bounce@example.com", 1)[0]
        assert flaky.status == NotificationStatus.SENT
        assert flaky.attempt_count == 2
        assert bounce.status == NotificationStatus.FAILED
        assert bounce.failure_permanent

        stats = engine.get_stats()
        assert (stats.total, stats.sent, stats.failed) == (3, 2, 1)
        assert stats.success_rate == 66.67
        assert [f.recipient for f in stats.recent_failures] == ["bounce@example.com"]

    def test_redis_outage_does_not_stop_delivery(self, flow, clock, redis_client):
        engine, gateway, scheduler = flow
        redis_client.fail = True

        engine.submit("a@example.com", "welcome", {"firstName": "Ada"})
        scheduler.run_due()

        assert engine.queue.is_degraded
        assert gateway.recipients == ["a@example.com"]

        redis_client.fail = False
        clock.advance(5)
        scheduler.run_due()

        assert not engine.queue.is_degraded
