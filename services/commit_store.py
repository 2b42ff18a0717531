"""Idempotency ledger: at most one committed effect per ``event_id``."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.settings import ADMISSION
from datetime_utils import utc_now
from models.commit_record import CommitRecord


Mutation = Callable[[Session], Tuple[str, Dict[str, Any]]]


@dataclass(frozen=True)
class CommitResult:
    event_id: str
    entity_id: str
    result: Dict[str, Any] = field(default_factory=dict)
    replayed: bool = False


def _from_record(record: CommitRecord, *, replayed: bool) -> CommitResult:
    try:
        payload = json.loads(record.result or "{}")
    except json.JSONDecodeError:
        payload = {}
    return CommitResult(
        event_id=record.event_id,
        entity_id=record.entity_id,
        result=payload,
        replayed=replayed,
    )


class CommitStore:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        retention: timedelta = ADMISSION.ledger_retention,
        ttl: timedelta = ADMISSION.event_ttl,
    ) -> None:
        # Rows must outlive the replay window.
        if retention < ttl:
            raise ValueError(f"Ledger retention {retention} is shorter than the event TTL {ttl}.")
        self._session_factory = session_factory
        self.retention = retention

    def get(self, event_id: str) -> Optional[CommitResult]:
        with self._session_factory() as session:
            record = session.get(CommitRecord, event_id)
            return _from_record(record, replayed=True) if record else None

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.exec(select(func.count()).select_from(CommitRecord)).one())

    def commit_once(
        self,
        event_id: str,
        *,
        operation_kind: str,
        user_id: str,
        mutation: Mutation,
        now: Optional[datetime] = None,
    ) -> CommitResult:
        """Run ``mutation`` and write the ledger row in one transaction.

        If the row already exists the stored result is returned and the
        mutation is not called. A concurrent duplicate that loses the insert
        race on the primary key, or whose mutation fails once the winner has
        committed, is rolled back and gets the winner's result.
        """

        now = now or utc_now()
        with self._session_factory() as session:
            existing = session.get(CommitRecord, event_id)
            if existing is not None:
                return _from_record(existing, replayed=True)

            try:
                entity_id, payload = mutation(session)
            except Exception:
                # The mutation may have seen a concurrent duplicate's effects.
                session.rollback()
                winner = session.get(CommitRecord, event_id)
                if winner is None:
                    raise
                return _from_record(winner, replayed=True)
            record = CommitRecord(
                event_id=event_id,
                operation_kind=operation_kind,
                user_id=user_id,
                entity_id=entity_id,
                result=json.dumps(payload, ensure_ascii=False, sort_keys=True),
                created_at=now,
                expires_at=now + self.retention,
            )
            session.add(record)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                winner = session.get(CommitRecord, event_id)
                if winner is None:
                    raise
                return _from_record(winner, replayed=True)
            return CommitResult(event_id=event_id, entity_id=entity_id, result=payload)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete ledger rows whose retention has run out; returns the count."""
        now = now or utc_now()
        with self._session_factory() as session:
            expired = session.exec(select(CommitRecord).where(CommitRecord.expires_at <= now)).all()
            for record in expired:
                session.delete(record)
            session.commit()
            return len(expired)


__all__ = ["CommitStore", "CommitResult", "Mutation"]
