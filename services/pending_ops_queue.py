from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from sqlmodel import Session, select
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from core.errors import OperationInFlightError
from core.operations import OperationKind, OperationState, parse_kind
from core.settings import SYNC, SyncSettings
from datetime_utils import ensure_utc, parse_rfc3339, to_rfc3339_utc, utc_now
from models.pending_op import PendingOp
from services.event_ids import mint_event_id


def backoff_delay(retry_count: int, settings: SyncSettings = SYNC) -> timedelta:
    """Wait required after ``retry_count`` failed attempts.

    Geometric x3 growth from the base, capped: 0, 5s, 15s, 45s, 135s, 300s, 300s...
    """
    if retry_count <= 0:
        return timedelta(0)
    # Exponent is bounded so huge retry counts cannot overflow.
    exponent = min(retry_count - 1, 32)
    seconds = settings.backoff_base_sec * settings.backoff_factor ** exponent
    return timedelta(seconds=min(seconds, settings.backoff_cap_sec))


@dataclass
class PendingOperation:
    operation_kind: OperationKind
    lat: float
    lng: float
    owner_user_id: str
    event_id: str
    job_id: Optional[str] = None
    accuracy_m: Optional[float] = None
    device_id: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    retry_count: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_reason: Optional[str] = None
    state: OperationState = OperationState.PENDING

    @classmethod
    def clock_in(
        cls,
        *,
        job_id: str,
        lat: float,
        lng: float,
        owner_user_id: str,
        accuracy_m: Optional[float] = None,
        device_id: Optional[str] = None,
        event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "PendingOperation":
        if not job_id:
            raise ValueError("clockIn requires a job id")
        moment = now or utc_now()
        return cls(
            operation_kind=OperationKind.CLOCK_IN,
            job_id=job_id,
            lat=lat,
            lng=lng,
            accuracy_m=accuracy_m,
            owner_user_id=owner_user_id,
            device_id=device_id,
            event_id=event_id or mint_event_id(moment),
            created_at=moment,
        )

    @classmethod
    def clock_out(
        cls,
        *,
        lat: float,
        lng: float,
        owner_user_id: str,
        job_id: Optional[str] = None,
        accuracy_m: Optional[float] = None,
        device_id: Optional[str] = None,
        event_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "PendingOperation":
        moment = now or utc_now()
        return cls(
            operation_kind=OperationKind.CLOCK_OUT,
            job_id=job_id,
            lat=lat,
            lng=lng,
            accuracy_m=accuracy_m,
            owner_user_id=owner_user_id,
            device_id=device_id,
            event_id=event_id or mint_event_id(moment),
            created_at=moment,
        )

    @property
    def needs_manual_action(self) -> bool:
        return self.state in (OperationState.REJECTED, OperationState.NEEDS_ATTENTION)

    def to_record(self) -> Dict[str, object]:
        """Serialize to the persisted queue record layout."""
        return {
            "operationKind": self.operation_kind.value,
            "jobId": self.job_id,
            "lat": self.lat,
            "lng": self.lng,
            "accuracyMeters": self.accuracy_m,
            "eventId": self.event_id,
            "createdAt": to_rfc3339_utc(self.created_at),
            "ownerUserId": self.owner_user_id,
            "deviceId": self.device_id,
            "retryCount": self.retry_count,
            "lastAttemptAt": to_rfc3339_utc(self.last_attempt_at),
            "lastError": self.last_error,
            "lastErrorReason": self.last_error_reason,
            "state": self.state.value,
        }

    @classmethod
    def from_record(cls, data: Dict[str, object]) -> "PendingOperation":
        kind = parse_kind(data.get("operationKind"))
        if kind is None:
            raise ValueError(f"Unsupported operation kind: {data.get('operationKind')!r}")
        accuracy = data.get("accuracyMeters")
        return cls(
            operation_kind=kind,
            job_id=data.get("jobId"),
            lat=float(data["lat"]),
            lng=float(data["lng"]),
            accuracy_m=None if accuracy is None else float(accuracy),
            event_id=str(data["eventId"]),
            created_at=parse_rfc3339(data.get("createdAt")) or utc_now(),
            owner_user_id=str(data["ownerUserId"]),
            device_id=data.get("deviceId"),
            retry_count=int(data.get("retryCount") or 0),
            last_attempt_at=parse_rfc3339(data.get("lastAttemptAt")),
            last_error=data.get("lastError"),
            last_error_reason=data.get("lastErrorReason"),
            state=OperationState(data.get("state") or OperationState.PENDING.value),
        )


def _to_row(op: PendingOperation) -> PendingOp:
    return PendingOp(
        operation_kind=op.operation_kind.value,
        job_id=op.job_id,
        lat=op.lat,
        lng=op.lng,
        accuracy_m=op.accuracy_m,
        event_id=op.event_id,
        created_at=ensure_utc(op.created_at),
        owner_user_id=op.owner_user_id,
        device_id=op.device_id,
        retry_count=op.retry_count,
        last_attempt_at=ensure_utc(op.last_attempt_at),
        last_error=op.last_error,
        last_error_reason=op.last_error_reason,
        state=op.state.value,
    )


def _from_row(row: PendingOp) -> PendingOperation:
    return PendingOperation(
        operation_kind=OperationKind(row.operation_kind),
        job_id=row.job_id,
        lat=row.lat,
        lng=row.lng,
        accuracy_m=row.accuracy_m,
        event_id=row.event_id,
        # SQLite drops tzinfo on the way back.
        created_at=ensure_utc(row.created_at),
        owner_user_id=row.owner_user_id,
        device_id=row.device_id,
        retry_count=row.retry_count,
        last_attempt_at=ensure_utc(row.last_attempt_at),
        last_error=row.last_error,
        last_error_reason=row.last_error_reason,
        state=OperationState(row.state),
    )


class PendingOpsQueue:
    """Durable FIFO of clock operations, deduplicated by ``event_id``.

    Every mutation commits before returning so a crash never loses or
    duplicates an accepted operation.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        settings: SyncSettings = SYNC,
    ) -> None:
        self._session_factory = session_factory
        self.settings = settings

    def _row(self, session: Session, event_id: str) -> Optional[PendingOp]:
        stmt = select(PendingOp).where(PendingOp.event_id == event_id)
        return session.exec(stmt).first()

    # ------------------------------------------------------------------
    def enqueue(self, op: PendingOperation) -> PendingOperation:
        """Persist ``op``; an already queued ``event_id`` is a no-op."""
        if op.operation_kind is OperationKind.CLOCK_IN and not op.job_id:
            raise ValueError("clockIn requires a job id")
        with self._session_factory() as session:
            existing = self._row(session, op.event_id)
            if existing is not None:
                return _from_row(existing)
            row = _to_row(op)
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return _from_row(self._row(session, op.event_id))
            session.refresh(row)
            return _from_row(row)

    def list_ready(
        self, now: Optional[datetime] = None, limit: Optional[int] = None
    ) -> List[PendingOperation]:
        moment = ensure_utc(now) or utc_now()
        with self._session_factory() as session:
            stmt = (
                select(PendingOp)
                .where(PendingOp.state == OperationState.PENDING.value)
                .order_by(PendingOp.created_at.asc(), PendingOp.id.asc())
            )
            rows = list(session.exec(stmt))

        ready: List[PendingOperation] = []
        for row in rows:
            op = _from_row(row)
            if op.last_attempt_at is None or moment - op.last_attempt_at >= backoff_delay(
                op.retry_count, self.settings
            ):
                ready.append(op)
                if limit is not None and len(ready) >= limit:
                    break
        return ready

    def record_success(self, event_id: str) -> None:
        with self._session_factory() as session:
            row = self._row(session, event_id)
            if row:
                session.delete(row)
                session.commit()

    def record_failure(
        self,
        event_id: str,
        error: str,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[PendingOperation]:
        """Retryable failure: bump bookkeeping, park after ``max_retries``."""
        with self._session_factory() as session:
            row = self._row(session, event_id)
            if not row:
                return None
            row.retry_count += 1
            row.last_attempt_at = ensure_utc(now) or utc_now()
            row.last_error = error[:1000]
            row.last_error_reason = reason
            if row.retry_count >= self.settings.max_retries:
                row.state = OperationState.NEEDS_ATTENTION.value
            else:
                row.state = OperationState.PENDING.value
            session.add(row)
            session.commit()
            session.refresh(row)
            return _from_row(row)

    def record_rejection(
        self,
        event_id: str,
        error: str,
        *,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Optional[PendingOperation]:
        """Fatal failure: keep the operation but stop retrying it."""
        with self._session_factory() as session:
            row = self._row(session, event_id)
            if not row:
                return None
            row.last_attempt_at = ensure_utc(now) or utc_now()
            row.last_error = error[:1000]
            row.last_error_reason = reason
            row.state = OperationState.REJECTED.value
            session.add(row)
            session.commit()
            session.refresh(row)
            return _from_row(row)

    def mark_in_flight(self, event_id: str) -> bool:
        with self._session_factory() as session:
            row = self._row(session, event_id)
            if not row or row.state != OperationState.PENDING.value:
                return False
            row.state = OperationState.IN_FLIGHT.value
            session.add(row)
            session.commit()
            return True

    def cancel(self, event_id: str) -> bool:
        with self._session_factory() as session:
            row = self._row(session, event_id)
            if not row:
                return False
            if row.state == OperationState.IN_FLIGHT.value:
                raise OperationInFlightError(f"Operation {event_id} is being submitted")
            session.delete(row)
            session.commit()
            return True

    def retry(self, event_id: str) -> bool:
        """Put a parked operation back on the automatic schedule."""
        with self._session_factory() as session:
            row = self._row(session, event_id)
            if not row or row.state == OperationState.IN_FLIGHT.value:
                return False
            row.state = OperationState.PENDING.value
            row.retry_count = 0
            row.last_attempt_at = None
            row.last_error = None
            row.last_error_reason = None
            session.add(row)
            session.commit()
            return True

    def recover_in_flight(self) -> int:
        """Return operations interrupted mid-submission to the pending state."""
        with self._session_factory() as session:
            stmt = select(PendingOp).where(PendingOp.state == OperationState.IN_FLIGHT.value)
            rows = list(session.exec(stmt))
            for row in rows:
                row.state = OperationState.PENDING.value
                session.add(row)
            session.commit()
            return len(rows)

    # ------------------------------------------------------------------
    def get(self, event_id: str) -> Optional[PendingOperation]:
        with self._session_factory() as session:
            row = self._row(session, event_id)
            return _from_row(row) if row else None

    def all(self) -> List[PendingOperation]:
        with self._session_factory() as session:
            stmt = select(PendingOp).order_by(PendingOp.created_at.asc(), PendingOp.id.asc())
            return [_from_row(row) for row in session.exec(stmt)]

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.exec(select(func.count()).select_from(PendingOp)).one())

    def count_by_state(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in OperationState}
        with self._session_factory() as session:
            stmt = select(PendingOp.state, func.count()).group_by(PendingOp.state)
            for state, total in session.exec(stmt):
                counts[state] = int(total)
        return counts

    def export_records(self) -> List[Dict[str, object]]:
        return [op.to_record() for op in self.all()]

    def import_records(self, records: Iterable[Dict[str, object]]) -> int:
        """Restore exported records; returns how many were new."""
        added = 0
        for record in records:
            op = PendingOperation.from_record(record)
            if self.get(op.event_id) is None:
                self.enqueue(op)
                added += 1
        return added


__all__ = ["PendingOpsQueue", "PendingOperation", "backoff_delay"]
