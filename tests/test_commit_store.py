from datetime import datetime, timedelta, timezone

import pytest

from models import TimeEntry
from services.commit_store import CommitStore
from storage.db import create_sqlite_engine, init_server_db


def _entry(session, entry_id="entry-1"):
    session.add(
        TimeEntry(
            id=entry_id,
            user_id="u1",
            job_id="job-1",
            clock_in_lat=0.0,
            clock_in_lng=0.0,
            clock_in_event_id="1717243200000-abc",
        )
    )
    return entry_id, {"status": "active"}


def test_mutation_runs_once_per_event(server_session_factory):
    store = CommitStore(server_session_factory)
    calls = []

    def mutation(session):
        calls.append(1)
        return _entry(session)

    first = store.commit_once("1717243200000-abc", operation_kind="clockIn", user_id="u1", mutation=mutation)
    second = store.commit_once("1717243200000-abc", operation_kind="clockIn", user_id="u1", mutation=mutation)

    assert calls == [1]
    assert first.replayed is False
    assert second.replayed is True
    assert second.entity_id == first.entity_id == "entry-1"
    assert second.result == {"status": "active"}
    assert store.count() == 1


def test_failed_mutation_leaves_no_ledger_row(server_session_factory):
    store = CommitStore(server_session_factory)

    def mutation(session):
        _entry(session)
        raise ValueError("nope")

    with pytest.raises(ValueError):
        store.commit_once("1717243200000-abc", operation_kind="clockIn", user_id="u1", mutation=mutation)

    assert store.get("1717243200000-abc") is None
    with server_session_factory() as session:
        assert session.get(TimeEntry, "entry-1") is None


def test_losing_insert_race_returns_winner(tmp_path):
    server_session_factory = init_server_db(create_sqlite_engine(tmp_path / "ledger.db"))
    store = CommitStore(server_session_factory)
    rival = CommitStore(server_session_factory)

    def mutation(session):
        # The rival commits the same event while this transaction is still open.
        rival.commit_once(
            "1717243200000-abc",
            operation_kind="clockIn",
            user_id="u1",
            mutation=lambda s: _entry(s, "entry-winner"),
        )
        return _entry(session, "entry-loser")

    outcome = store.commit_once("1717243200000-abc", operation_kind="clockIn", user_id="u1", mutation=mutation)

    assert outcome.replayed is True
    assert outcome.entity_id == "entry-winner"
    with server_session_factory() as session:
        assert session.get(TimeEntry, "entry-loser") is None


def test_purge_keeps_rows_inside_retention(server_session_factory):
    store = CommitStore(server_session_factory, retention=timedelta(days=7), ttl=timedelta(hours=24))
    committed_at = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    store.commit_once(
        "1748779200000-old",
        operation_kind="clockIn",
        user_id="u1",
        mutation=lambda s: _entry(s, "entry-old"),
        now=committed_at,
    )
    store.commit_once(
        "1749211200000-new",
        operation_kind="clockIn",
        user_id="u2",
        mutation=lambda s: _entry(s, "entry-new"),
        now=committed_at + timedelta(days=5),
    )

    # A day after the first commit its id is still inside the replay window.
    assert store.purge_expired(committed_at + timedelta(days=1)) == 0
    assert store.purge_expired(committed_at + timedelta(days=7, seconds=1)) == 1

    assert store.get("1748779200000-old") is None
    assert store.get("1749211200000-new") is not None
    with server_session_factory() as session:
        assert session.get(TimeEntry, "entry-old") is not None


def test_retention_shorter_than_ttl_is_rejected(server_session_factory):
    with pytest.raises(ValueError):
        CommitStore(server_session_factory, retention=timedelta(hours=1), ttl=timedelta(hours=24))
