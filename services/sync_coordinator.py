from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from core.errors import FieldClockError, InternalError, error_from_reason
from core.operations import OperationState
from core.settings import SYNC, SyncSettings
from datetime_utils import to_rfc3339_utc, utc_now
from helpers.logs import sync_logger
from services.conflict import Resolution, resolve, strategy_for
from services.connectivity import ConnectivityMonitor
from services.pending_ops_queue import PendingOperation, PendingOpsQueue
from services.transport import Transport
from services.wire import SubmitRequest, SubmitResponse


@dataclass
class DrainResult:
    attempted: int = 0
    committed: int = 0
    retried: int = 0
    rejected: int = 0
    skipped: Optional[str] = None


@dataclass(frozen=True)
class CommitOutcome:
    operation: PendingOperation
    response: SubmitResponse
    resolution: Resolution


CommitListener = Callable[[CommitOutcome], None]


class SyncCoordinator:
    """Single drain worker for one device's queue.

    Submissions are strictly sequential and only one drain pass runs at a
    time, so the same queued operation is never in flight twice. Create one
    coordinator per queue database.
    """

    def __init__(
        self,
        queue: PendingOpsQueue,
        transport: Transport,
        monitor: ConnectivityMonitor,
        *,
        settings: SyncSettings = SYNC,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.queue = queue
        self.transport = transport
        self.monitor = monitor
        self.settings = settings
        self.clock = clock
        self.logger = logger or sync_logger()
        self.last_drain_at: Optional[datetime] = None
        self._drain_lock = threading.Lock()
        self._listeners: List[CommitListener] = []
        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None

        recovered = self.queue.recover_in_flight()
        if recovered:
            self.logger.warning("Recovered %s operation(s) interrupted mid-submission", recovered)
        self._unsubscribe = self.monitor.subscribe(self._on_online)

    # ------------------------------------------------------------------
    # Public API
    def add_commit_listener(self, listener: CommitListener) -> None:
        self._listeners.append(listener)

    def enqueue(self, op: PendingOperation) -> PendingOperation:
        stored = self.queue.enqueue(op)
        self.logger.info("Queued %s %s", stored.operation_kind.value, stored.event_id)
        self.trigger("enqueue")
        return stored

    def trigger(self, reason: str = "manual") -> DrainResult:
        self.logger.debug("Drain triggered by %s", reason)
        return self.drain()

    def drain(self) -> DrainResult:
        if not self.monitor.is_online:
            return DrainResult(skipped="offline")
        if not self._drain_lock.acquire(blocking=False):
            return DrainResult(skipped="busy")
        result = DrainResult()
        try:
            ready = self.queue.list_ready(self.clock(), limit=self.settings.drain_batch_limit)
            for op in ready:
                if not self.monitor.is_online:
                    self.logger.info("Went offline mid-drain; %s left for later", op.event_id)
                    break
                self._submit(op, result)
            self.last_drain_at = self.clock()
        finally:
            self._drain_lock.release()
        if result.attempted:
            self.logger.info(
                "Drain finished: %s attempted, %s committed, %s retrying, %s rejected",
                result.attempted,
                result.committed,
                result.retried,
                result.rejected,
            )
        return result

    def start(self, interval_sec: Optional[float] = None) -> None:
        """Drain periodically on a background thread until :meth:`stop`."""
        if self._timer and self._timer.is_alive():
            return
        interval = float(interval_sec or self.settings.periodic_interval_sec)
        self._stop.clear()

        def _loop() -> None:
            while not self._stop.wait(interval):
                try:
                    self.monitor.check()
                    self.trigger("timer")
                except Exception as exc:  # pragma: no cover - keep the timer alive
                    self.logger.error("Periodic sync error: %s", exc)

        self._timer = threading.Thread(target=_loop, name="fieldclock-sync", daemon=True)
        self._timer.start()

    def stop(self) -> None:
        self._stop.set()
        if self._timer:
            self._timer.join(timeout=5)
        self._timer = None

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    def status(self) -> dict:
        return {
            "online": self.monitor.is_online,
            "draining": self._drain_lock.locked(),
            "lastDrainAt": to_rfc3339_utc(self.last_drain_at),
            "queue": self.queue.count_by_state(),
        }

    # ------------------------------------------------------------------
    def _on_online(self) -> None:
        self.trigger("connectivity")

    def _submit(self, op: PendingOperation, result: DrainResult) -> None:
        if not self.queue.mark_in_flight(op.event_id):
            # Cancelled or already handled since listing.
            return
        result.attempted += 1
        request = SubmitRequest.from_operation(op)
        try:
            response = self.transport.send(request)
        except FieldClockError as exc:
            error = exc
        except Exception as exc:
            self.logger.error("Transport crashed for %s: %s", op.event_id, exc)
            error = InternalError(str(exc))
        else:
            if response.ok:
                self._on_committed(op, response)
                result.committed += 1
                return
            error = error_from_reason(response.reason, response.message or "")

        if error.retryable:
            updated = self.queue.record_failure(
                op.event_id, error.message, reason=error.reason, now=self.clock()
            )
            result.retried += 1
            if updated and updated.state is OperationState.NEEDS_ATTENTION:
                self.logger.error(
                    "%s %s needs attention after %s attempts: %s",
                    op.operation_kind.value,
                    op.event_id,
                    updated.retry_count,
                    error.message,
                )
            else:
                self.logger.warning(
                    "Push %s %s failed (%s), will retry: %s",
                    op.operation_kind.value,
                    op.event_id,
                    error.reason,
                    error.message,
                )
            return

        self.queue.record_rejection(op.event_id, error.message, reason=error.reason, now=self.clock())
        result.rejected += 1
        self.logger.warning(
            "Server rejected %s %s (%s): %s",
            op.operation_kind.value,
            op.event_id,
            error.reason,
            error.message,
        )

    def _on_committed(self, op: PendingOperation, response: SubmitResponse) -> None:
        self.queue.record_success(op.event_id)
        local = {
            "eventId": op.event_id,
            "operationKind": op.operation_kind.value,
            "jobId": op.job_id,
        }
        remote = dict(response.result)
        remote.setdefault("entityId", response.entity_id)
        resolution = resolve(local, remote, strategy_for(op.operation_kind))
        if resolution.needs_manual:
            self.logger.warning(
                "Commit of %s differs from device copy on %s",
                op.event_id,
                ", ".join(resolution.conflicting_keys),
            )
        self.logger.info("Committed %s %s -> %s", op.operation_kind.value, op.event_id, response.entity_id)
        outcome = CommitOutcome(operation=op, response=response, resolution=resolution)
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception:  # pragma: no cover - listener bugs must not requeue a commit
                self.logger.exception("Commit listener failed for %s", op.event_id)


__all__ = ["SyncCoordinator", "DrainResult", "CommitOutcome"]
