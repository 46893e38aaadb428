"""Unit tests for the persistence layer: database lifecycle and NotificationStore."""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import text

from notifier.domain.models import (
    NotificationKind,
    NotificationStatus,
    Priority,
    SendFailed,
    SendSucceeded,
)
from notifier.persistence import (
    DatabaseConnectionError,
    DataIntegrityError,
    NotificationStore,
    StoreUnavailableError,
    close_database,
    get_engine,
    get_session,
    init_database,
)
from notifier.persistence.schema import NotificationModel
from notifier.persistence.store import ABANDONED_CLAIM_REASON
from tests.helpers import DEFAULT_START, STORED_PAYLOADS, make_record

LATER = DEFAULT_START + timedelta(minutes=1)


class TestDatabaseInitialization:
    """Tests for database initialization and teardown."""

    def test_init_creates_file_and_parent_directories(self, tmp_path):
        db_file = tmp_path / "nested" / "dir" / "notifications.db"

        init_database(f"sqlite:///{db_file}")
        try:
            assert db_file.exists()
            with get_session() as session:
                assert session.execute(text("SELECT COUNT(*) FROM notifications")).scalar() == 0
        finally:
            close_database()

    def test_sqlite_runs_in_wal_mode(self, database):
        with get_engine().connect() as conn:
            assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"

    def test_schema_creation_is_idempotent(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'notifications.db'}"
        init_database(url)
        close_database()
        init_database(url)
        close_database()

    @pytest.mark.parametrize("url", ["", None])
    def test_invalid_url(self, url):
        with pytest.raises(DatabaseConnectionError):
            init_database(url)

    def test_session_requires_initialization(self):
        close_database()
        with pytest.raises(DatabaseConnectionError, match="not initialized"):
            with get_session():
                pass

    def test_session_rolls_back_on_error(self, database, store):
        record = make_record()

        with pytest.raises(RuntimeError):
            with get_session() as session:
                session.add(NotificationModel.from_domain(record))
                session.flush()
                raise RuntimeError("abort")

        assert store.get(record.id) is None


class TestNotificationStoreBasics:
    """Tests for insert and read operations."""

    def test_insert_and_get_round_trip(self, store):
        record = make_record(kind=NotificationKind.CREDENTIAL_ISSUE, priority=Priority.HIGH)

        store.insert(record)
        loaded = store.get(record.id)

        assert loaded == record
        assert loaded.payload == STORED_PAYLOADS[NotificationKind.CREDENTIAL_ISSUE]

    def test_get_missing_returns_none(self, store):
        assert store.get("does-not-exist") is None

    def test_duplicate_id_is_integrity_error(self, store):
        record = make_record()
        store.insert(record)

        with pytest.raises(DataIntegrityError):
            store.insert(record)

    def test_find_by_recipient_newest_first_with_limit(self, store):
        for offset in range(5):
            store.insert(make_record(recipient="ada@example.com", offset_seconds=offset))
        store.insert(make_record(recipient="other@example.com", offset_seconds=10))

        history = store.find_by_recipient("ada@example.com", limit=3)

        assert len(history) == 3
        assert [r.created_at for r in history] == sorted(
            (r.created_at for r in history), reverse=True
        )
        assert history[0].created_at == DEFAULT_START + timedelta(seconds=4)
        assert store.find_by_recipient("ada@example.com", limit=0) == []
        assert store.find_by_recipient("nobody@example.com", limit=5) == []

    def test_list_eligible_in_dispatch_order(self, store):
        low = make_record(priority=Priority.LOW, offset_seconds=0)
        normal_old = make_record(priority=Priority.NORMAL, offset_seconds=1)
        normal_new = make_record(priority=Priority.NORMAL, offset_seconds=2)
        urgent = make_record(priority=Priority.URGENT, offset_seconds=3)
        for record in (low, normal_new, urgent, normal_old):
            store.insert(record)

        ordered = [r.id for r in store.list_eligible()]

        assert ordered == [urgent.id, normal_old.id, normal_new.id, low.id]
        assert len(store.list_eligible(limit=2)) == 2


class TestClaims:
    """Tests for conditional claims and claim resolution."""

    def test_claim_eligible_marks_processing(self, store):
        record = make_record()
        store.insert(record)

        claimed = store.claim_eligible(10, LATER)

        assert [r.id for r in claimed] == [record.id]
        assert claimed[0].status == NotificationStatus.PROCESSING
        assert claimed[0].claim_token
        assert claimed[0].claimed_at == LATER
        assert store.claim_eligible(10, LATER) == []

    def test_claim_respects_limit_and_order(self, store):
        records = [make_record(priority=Priority.LOW, offset_seconds=i) for i in range(3)]
        high = make_record(priority=Priority.HIGH, offset_seconds=10)
        for record in records + [high]:
            store.insert(record)

        claimed = store.claim_eligible(2, LATER)

        assert [r.id for r in claimed] == [high.id, records[0].id]

    def test_claim_skips_terminal_and_exhausted(self, store):
        sent = make_record(
            status=NotificationStatus.SENT,
            attempt_count=1,
            last_attempt_at=DEFAULT_START,
            sent_at=DEFAULT_START,
            provider_message_id="id",
        )
        failed = make_record(
            status=NotificationStatus.FAILED,
            attempt_count=1,
            last_attempt_at=DEFAULT_START,
            failure_reason="x",
        )
        exhausted = make_record(
            status=NotificationStatus.RETRYING,
            attempt_count=3,
            last_attempt_at=DEFAULT_START,
        )
        for record in (sent, failed, exhausted):
            store.insert(record)

        assert store.claim_eligible(10, LATER) == []

    def test_claim_ids_skips_ineligible(self, store):
        first, second = make_record(), make_record(offset_seconds=1)
        store.insert(first)
        store.insert(second)
        store.claim_ids([first.id], LATER)

        claimed = store.claim_ids([first.id, second.id, "missing"], LATER)

        assert [r.id for r in claimed] == [second.id]
        assert store.claim_ids([], LATER) == []

    def test_complete_attempt_success(self, store):
        store.insert(make_record())
        claimed = store.claim_eligible(1, LATER)[0]

        resolved = store.complete_attempt(claimed.id, claimed.claim_token, SendSucceeded("re_1"), LATER)

        assert resolved.status == NotificationStatus.SENT
        assert store.get(claimed.id) == resolved
        assert resolved.claim_token is None

    def test_complete_attempt_with_stale_token_is_noop(self, store):
        store.insert(make_record())
        claimed = store.claim_eligible(1, LATER)[0]
        store.complete_attempt(claimed.id, claimed.claim_token, SendFailed("timeout"), LATER)

        again = store.complete_attempt(claimed.id, claimed.claim_token, SendSucceeded("dup"), LATER)
        wrong_token = store.complete_attempt(claimed.id, "not-the-token", SendSucceeded("x"), LATER)

        assert again is None
        assert wrong_token is None
        stored = store.get(claimed.id)
        assert stored.status == NotificationStatus.FAILED
        assert stored.attempt_count == 1

    def test_release_claim_returns_record_unattempted(self, store):
        fresh = make_record()
        retried = make_record(
            status=NotificationStatus.RETRYING,
            attempt_count=1,
            last_attempt_at=DEFAULT_START,
            offset_seconds=1,
        )
        store.insert(fresh)
        store.insert(retried)
        claimed = {r.id: r for r in store.claim_eligible(2, LATER)}

        assert store.release_claim(fresh.id, claimed[fresh.id].claim_token, LATER) is True
        assert store.release_claim(retried.id, claimed[retried.id].claim_token, LATER) is True
        assert store.release_claim(fresh.id, claimed[fresh.id].claim_token, LATER) is False

        assert store.get(fresh.id).status == NotificationStatus.PENDING
        assert store.get(fresh.id).attempt_count == 0
        assert store.get(retried.id).status == NotificationStatus.RETRYING
        assert store.get(retried.id).claim_token is None

    def test_concurrent_claimers_never_share_a_record(self, store):
        for offset in range(40):
            store.insert(make_record(offset_seconds=offset))

        results = []
        errors = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def claimer():
            try:
                barrier.wait()
                for _ in range(3):
                    batch = store.claim_eligible(4, LATER)
                    with lock:
                        results.extend(r.id for r in batch)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=claimer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == len(set(results))
        assert len(results) == 40


class TestRetryPromotion:
    """Tests for the reconciliation-side store operations."""

    def _failed(self, store, attempts=1, permanent=False, last_attempt=DEFAULT_START):
        record = make_record(
            status=NotificationStatus.FAILED,
            attempt_count=attempts,
            last_attempt_at=last_attempt,
            failure_reason="boom",
            failure_permanent=permanent,
        )
        store.insert(record)
        return record

    def test_promotes_only_due_retryable_records(self, store):
        due = self._failed(store)
        not_due = self._failed(store, last_attempt=DEFAULT_START + timedelta(seconds=3))
        permanent = self._failed(store, permanent=True)
        exhausted = self._failed(store, attempts=3)

        promoted = store.promote_retryable(DEFAULT_START + timedelta(seconds=5), 5)

        assert promoted == [due.id]
        assert store.get(due.id).status == NotificationStatus.RETRYING
        assert store.get(not_due.id).status == NotificationStatus.FAILED
        assert store.get(permanent.id).status == NotificationStatus.FAILED
        assert store.get(exhausted.id).status == NotificationStatus.FAILED

    def test_promotion_does_not_change_attempt_count(self, store):
        record = self._failed(store)

        store.promote_retryable(LATER, 5)

        assert store.get(record.id).attempt_count == 1

    def test_release_stale_claims(self, store):
        store.insert(make_record())
        store.insert(make_record(offset_seconds=1))
        old = store.claim_eligible(1, DEFAULT_START)[0]
        recent = store.claim_eligible(1, DEFAULT_START + timedelta(minutes=20))[0]

        released = store.release_stale_claims(
            cutoff=DEFAULT_START + timedelta(minutes=10),
            now=DEFAULT_START + timedelta(minutes=30),
        )

        assert [r.id for r in released] == [old.id]
        assert released[0].status == NotificationStatus.FAILED
        assert released[0].attempt_count == 1
        assert released[0].failure_reason == ABANDONED_CLAIM_REASON
        assert released[0].is_awaiting_retry
        assert store.get(recent.id).status == NotificationStatus.PROCESSING

    def test_recent_failures_lists_terminal_only(self, store):
        self._failed(store)
        terminal = self._failed(store, permanent=True)

        failures = store.recent_failures(10)

        assert [r.id for r in failures] == [terminal.id]
        assert store.recent_failures(0) == []


class TestAggregate:
    def test_counts_by_status_and_today(self, store):
        store.insert(make_record(created_at=DEFAULT_START - timedelta(days=1)))
        store.insert(make_record())
        store.insert(
            make_record(
                status=NotificationStatus.SENT,
                attempt_count=1,
                last_attempt_at=DEFAULT_START,
                sent_at=DEFAULT_START,
                provider_message_id="id",
            )
        )

        aggregate = store.aggregate(DEFAULT_START + timedelta(hours=1))

        assert aggregate.total == 3
        assert aggregate.count(NotificationStatus.PENDING) == 2
        assert aggregate.count(NotificationStatus.SENT) == 1
        assert aggregate.count(NotificationStatus.FAILED) == 0
        assert aggregate.created_today == 2


class TestStoreUnavailable:
    def test_operations_raise_store_unavailable_when_database_closed(self, tmp_path):
        init_database(f"sqlite:///{tmp_path / 'notifications.db'}")
        store = NotificationStore()
        close_database()

        with pytest.raises(StoreUnavailableError):
            store.insert(make_record())
        with pytest.raises(StoreUnavailableError):
            store.claim_eligible(5, LATER)
        with pytest.raises(StoreUnavailableError):
            store.aggregate(LATER)
