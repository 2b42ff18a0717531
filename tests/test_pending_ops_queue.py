from datetime import datetime, timedelta, timezone

import pytest

from core.errors import OperationInFlightError
from core.operations import OperationKind, OperationState
from core.settings import SYNC, SyncSettings
from services.event_ids import mint_event_id
from services.pending_ops_queue import PendingOperation, PendingOpsQueue, backoff_delay
from storage.db import create_sqlite_engine, init_client_db


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _clock_in(now=NOW, **kwargs):
    params = dict(job_id="job-1", lat=37.7793, lng=-122.4193, accuracy_m=10.0, owner_user_id="u1", now=now)
    params.update(kwargs)
    return PendingOperation.clock_in(**params)


def test_backoff_schedule_triples_up_to_cap():
    delays = [backoff_delay(n).total_seconds() for n in range(0, 8)]
    assert delays == [0, 5, 15, 45, 135, 300, 300, 300]


def test_backoff_is_monotonic_and_bounded():
    previous = timedelta(0)
    for attempt in range(0, 200):
        delay = backoff_delay(attempt)
        assert delay >= previous
        assert delay <= timedelta(seconds=SYNC.backoff_cap_sec)
        previous = delay


def test_clock_in_requires_job():
    with pytest.raises(ValueError):
        PendingOperation.clock_in(job_id="", lat=0, lng=0, owner_user_id="u1")


def test_enqueue_is_deduplicated_by_event_id(client_session_factory):
    queue = PendingOpsQueue(client_session_factory)
    op = _clock_in()
    queue.enqueue(op)
    queue.enqueue(op)
    queue.enqueue(PendingOperation.from_record(op.to_record()))
    assert queue.count() == 1


def test_queue_survives_reopen(tmp_path):
    db_path = tmp_path / "queue.db"
    first = PendingOpsQueue(init_client_db(create_sqlite_engine(db_path)))
    op = _clock_in()
    first.enqueue(op)
    first.record_failure(op.event_id, "timeout", reason="transport", now=NOW)

    reopened = PendingOpsQueue(init_client_db(create_sqlite_engine(db_path)))
    restored = reopened.get(op.event_id)
    assert restored is not None
    assert restored.operation_kind is OperationKind.CLOCK_IN
    assert restored.job_id == "job-1"
    assert restored.lat == op.lat and restored.lng == op.lng
    assert restored.accuracy_m == 10.0
    assert restored.owner_user_id == "u1"
    assert restored.created_at == op.created_at
    assert restored.retry_count == 1
    assert restored.last_attempt_at == NOW
    assert restored.last_error == "timeout"


def test_list_ready_is_fifo_and_honours_backoff(client_session_factory):
    queue = PendingOpsQueue(client_session_factory)
    older = _clock_in(now=NOW - timedelta(minutes=2))
    newer = PendingOperation.clock_out(lat=1.0, lng=2.0, owner_user_id="u1", now=NOW - timedelta(minutes=1))
    queue.enqueue(newer)
    queue.enqueue(older)

    assert [op.event_id for op in queue.list_ready(NOW)] == [older.event_id, newer.event_id]

    queue.record_failure(older.event_id, "boom", reason="internal", now=NOW)
    assert [op.event_id for op in queue.list_ready(NOW + timedelta(seconds=4))] == [newer.event_id]
    ready_later = queue.list_ready(NOW + timedelta(seconds=5))
    assert [op.event_id for op in ready_later] == [older.event_id, newer.event_id]
    assert len(queue.list_ready(NOW + timedelta(seconds=5), limit=1)) == 1


def test_retryable_failures_park_after_max_retries(client_session_factory):
    settings = SyncSettings(max_retries=3)
    queue = PendingOpsQueue(client_session_factory, settings=settings)
    op = queue.enqueue(_clock_in())

    for attempt in range(1, 4):
        updated = queue.record_failure(op.event_id, "timeout", reason="transport", now=NOW)
        assert updated.retry_count == attempt

    assert updated.state is OperationState.NEEDS_ATTENTION
    assert updated.needs_manual_action
    assert queue.list_ready(NOW + timedelta(days=1)) == []

    assert queue.retry(op.event_id) is True
    revived = queue.get(op.event_id)
    assert revived.state is OperationState.PENDING
    assert revived.retry_count == 0
    assert queue.list_ready(NOW) != []


def test_rejection_keeps_operation_for_inspection(client_session_factory):
    queue = PendingOpsQueue(client_session_factory)
    op = queue.enqueue(_clock_in())
    queue.record_rejection(op.event_id, "outside fence", reason="geofence-violation", now=NOW)

    stored = queue.get(op.event_id)
    assert stored.state is OperationState.REJECTED
    assert stored.last_error_reason == "geofence-violation"
    assert stored.retry_count == 0
    assert queue.list_ready(NOW + timedelta(days=1)) == []
    assert queue.count_by_state()["rejected"] == 1


def test_cancel_refused_while_in_flight(client_session_factory):
    queue = PendingOpsQueue(client_session_factory)
    op = queue.enqueue(_clock_in())
    assert queue.mark_in_flight(op.event_id) is True
    assert queue.mark_in_flight(op.event_id) is False

    with pytest.raises(OperationInFlightError):
        queue.cancel(op.event_id)
    assert queue.count() == 1

    assert queue.recover_in_flight() == 1
    assert queue.cancel(op.event_id) is True
    assert queue.cancel(op.event_id) is False
    assert queue.count() == 0


def test_record_success_removes_operation(client_session_factory):
    queue = PendingOpsQueue(client_session_factory)
    op = queue.enqueue(_clock_in())
    queue.record_success(op.event_id)
    assert queue.get(op.event_id) is None
    queue.record_success(op.event_id)


def test_export_import_uses_camel_case_records(client_session_factory, tmp_path):
    queue = PendingOpsQueue(client_session_factory)
    op = queue.enqueue(_clock_in(device_id="DEV-1"))
    records = queue.export_records()
    assert records[0]["eventId"] == op.event_id
    assert records[0]["operationKind"] == "clockIn"
    assert records[0]["accuracyMeters"] == 10.0
    assert records[0]["deviceId"] == "DEV-1"
    assert records[0]["createdAt"].endswith("Z")

    other = PendingOpsQueue(init_client_db(create_sqlite_engine(tmp_path / "other.db")))
    assert other.import_records(records) == 1
    assert other.import_records(records) == 0
    assert other.get(op.event_id).device_id == "DEV-1"


def test_explicit_event_id_is_kept():
    event_id = mint_event_id(NOW)
    op = _clock_in(event_id=event_id)
    assert op.event_id == event_id
