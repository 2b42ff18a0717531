import logging
import threading
from datetime import datetime, timedelta, timezone

from core.errors import TransportError
from core.operations import OperationState
from core.settings import SyncSettings
from services.connectivity import ConnectivityMonitor
from services.pending_ops_queue import PendingOperation, PendingOpsQueue
from services.sync_coordinator import SyncCoordinator
from services.wire import SubmitResponse
from storage.db import create_sqlite_engine, init_client_db


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
LOGGER = logging.getLogger("fieldclock.tests.sync")


class FakeTransport:
    """Replays scripted answers; an exception instance is raised instead of returned."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.sent = []

    def send(self, request):
        self.sent.append(request)
        answer = self.answers.pop(0) if self.answers else SubmitResponse.success(f"entry-{len(self.sent)}")
        if isinstance(answer, Exception):
            raise answer
        return answer


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def _op(now=NOW, **kwargs):
    params = dict(job_id="job-1", lat=37.7793, lng=-122.4193, accuracy_m=10.0, owner_user_id="u1", now=now)
    params.update(kwargs)
    return PendingOperation.clock_in(**params)


def _coordinator(session_factory, transport, *, online=True, settings=None, clock=None):
    queue = PendingOpsQueue(session_factory, settings=settings or SyncSettings())
    monitor = ConnectivityMonitor(initial_online=online)
    coordinator = SyncCoordinator(
        queue,
        transport,
        monitor,
        settings=settings or SyncSettings(),
        clock=clock or Clock(),
        logger=LOGGER,
    )
    return coordinator, queue, monitor


def test_offline_enqueue_waits_for_connectivity(client_session_factory):
    transport = FakeTransport()
    coordinator, queue, monitor = _coordinator(client_session_factory, transport, online=False)

    coordinator.enqueue(_op())
    assert transport.sent == []
    assert coordinator.drain().skipped == "offline"
    assert queue.count() == 1

    monitor.set_online(True)
    assert len(transport.sent) == 1
    assert queue.count() == 0


def test_success_removes_operation_and_notifies_listeners(client_session_factory):
    transport = FakeTransport(SubmitResponse.success("entry-1", {"status": "active", "jobId": "job-1"}))
    coordinator, queue, _ = _coordinator(client_session_factory, transport, online=False)
    outcomes = []
    coordinator.add_commit_listener(outcomes.append)

    op = coordinator.enqueue(_op())
    coordinator.monitor.set_online(True)

    assert queue.count() == 0
    assert len(outcomes) == 1
    assert outcomes[0].operation.event_id == op.event_id
    assert outcomes[0].response.entity_id == "entry-1"
    assert outcomes[0].resolution.value["entityId"] == "entry-1"
    assert outcomes[0].resolution.needs_manual is False


def test_fatal_rejection_stays_queued_without_retry(client_session_factory):
    transport = FakeTransport(SubmitResponse(ok=False, reason="geofence-violation", message="too far"))
    clock = Clock()
    coordinator, queue, _ = _coordinator(client_session_factory, transport, clock=clock)

    op = coordinator.enqueue(_op())
    stored = queue.get(op.event_id)
    assert stored.state is OperationState.REJECTED
    assert stored.last_error == "too far"
    assert stored.last_error_reason == "geofence-violation"

    clock.now = NOW + timedelta(days=1)
    assert coordinator.drain().attempted == 0
    assert len(transport.sent) == 1


def test_retryable_failure_backs_off_then_succeeds(client_session_factory):
    transport = FakeTransport(TransportError("timeout"), SubmitResponse(ok=False, reason="internal"))
    clock = Clock()
    coordinator, queue, _ = _coordinator(client_session_factory, transport, clock=clock)

    op = coordinator.enqueue(_op())
    assert queue.get(op.event_id).retry_count == 1
    assert queue.get(op.event_id).state is OperationState.PENDING

    clock.now = NOW + timedelta(seconds=4)
    assert coordinator.drain().attempted == 0

    clock.now = NOW + timedelta(seconds=5)
    result = coordinator.drain()
    assert result.retried == 1
    assert queue.get(op.event_id).retry_count == 2

    clock.now += timedelta(seconds=15)
    assert coordinator.drain().committed == 1
    assert queue.count() == 0
    assert [r.event_id for r in transport.sent] == [op.event_id] * 3


def test_unexpected_transport_crash_is_retryable(client_session_factory):
    transport = FakeTransport(RuntimeError("bug"))
    coordinator, queue, _ = _coordinator(client_session_factory, transport)
    op = coordinator.enqueue(_op())
    stored = queue.get(op.event_id)
    assert stored.state is OperationState.PENDING
    assert stored.last_error_reason == "internal"


def test_exhausted_retries_need_attention(client_session_factory):
    settings = SyncSettings(max_retries=2, backoff_base_sec=0)
    transport = FakeTransport(TransportError("a"), TransportError("b"))
    coordinator, queue, _ = _coordinator(client_session_factory, transport, settings=settings)

    op = coordinator.enqueue(_op())
    coordinator.drain()
    assert queue.get(op.event_id).state is OperationState.NEEDS_ATTENTION
    assert coordinator.drain().attempted == 0


def test_never_reports_success_without_the_server(client_session_factory):
    transport = FakeTransport(TransportError("down"))
    coordinator, queue, _ = _coordinator(client_session_factory, transport)
    outcomes = []
    coordinator.add_commit_listener(outcomes.append)

    result = coordinator.enqueue(_op())
    assert outcomes == []
    assert queue.get(result.event_id) is not None


def test_only_one_drain_runs_at_a_time(client_session_factory):
    entered = threading.Event()
    release = threading.Event()

    class BlockingTransport(FakeTransport):
        def send(self, request):
            entered.set()
            release.wait(5)
            return super().send(request)

    transport = BlockingTransport()
    coordinator, queue, _ = _coordinator(client_session_factory, transport)
    queue.enqueue(_op())

    results = []
    worker = threading.Thread(target=lambda: results.append(coordinator.drain()))
    worker.start()
    assert entered.wait(5)
    assert coordinator.drain().skipped == "busy"
    assert coordinator.status()["draining"] is True
    release.set()
    worker.join(5)

    assert results[0].committed == 1
    assert len(transport.sent) == 1


def test_interrupted_submissions_are_recovered(client_session_factory):
    queue = PendingOpsQueue(client_session_factory)
    op = queue.enqueue(_op())
    queue.mark_in_flight(op.event_id)

    transport = FakeTransport()
    _coordinator(client_session_factory, transport, online=False)
    assert queue.get(op.event_id).state is OperationState.PENDING


def test_drain_preserves_creation_order(client_session_factory):
    transport = FakeTransport()
    coordinator, queue, monitor = _coordinator(client_session_factory, transport, online=False)
    second = _op(now=NOW - timedelta(minutes=1))
    first = _op(now=NOW - timedelta(minutes=2))
    coordinator.enqueue(second)
    coordinator.enqueue(first)
    monitor.set_online(True)
    assert [r.event_id for r in transport.sent] == [first.event_id, second.event_id]


def test_periodic_timer_starts_and_stops(tmp_path):
    session_factory = init_client_db(create_sqlite_engine(tmp_path / "queue.db"))
    transport = FakeTransport()
    coordinator, queue, _ = _coordinator(session_factory, transport)
    queue.enqueue(_op())

    coordinator.start(0.01)
    try:
        for _ in range(500):
            if queue.count() == 0:
                break
            threading.Event().wait(0.01)
    finally:
        coordinator.close()
    assert queue.count() == 0
    assert coordinator.status()["queue"]["pending"] == 0
