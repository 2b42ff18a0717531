from datetime import datetime, timezone

from sqlalchemy import text

from datetime_utils import ensure_utc
from models.commit_record import CommitRecord
from storage.db import create_sqlite_engine, init_client_db, init_server_db


def test_ledger_without_expiry_is_upgraded(tmp_path):
    db_path = tmp_path / "ledger.db"
    engine = create_sqlite_engine(db_path)
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE commitrecord ("
                "event_id VARCHAR NOT NULL PRIMARY KEY, operation_kind VARCHAR NOT NULL, "
                "user_id VARCHAR NOT NULL, entity_id VARCHAR NOT NULL, result VARCHAR NOT NULL, "
                "created_at DATETIME NOT NULL)"
            )
        )
        conn.execute(
            text(
                "INSERT INTO commitrecord (event_id, operation_kind, user_id, entity_id, result, created_at) "
                "VALUES ('1717243200000-old', 'clockIn', 'u1', 'entry-1', '{}', '2024-06-01 12:00:00.000000')"
            )
        )

    factory = init_server_db(engine)
    init_server_db(engine)

    with factory() as session:
        record = session.get(CommitRecord, "1717243200000-old")
    assert ensure_utc(record.expires_at) == datetime(2024, 6, 8, 12, 0, tzinfo=timezone.utc)


def test_queue_event_ids_are_unique(tmp_path):
    engine = create_sqlite_engine(tmp_path / "queue.db")
    init_client_db(engine)
    init_client_db(engine)
    with engine.connect() as conn:
        indexes = {row[1]: row[2] for row in conn.execute(text("PRAGMA index_list('pendingop')"))}
    assert indexes.get("ux_pendingop_event_id") == 1


def test_server_and_client_tables_are_separate(tmp_path):
    engine = create_sqlite_engine(tmp_path / "ledger.db")
    init_server_db(engine)
    with engine.connect() as conn:
        tables = {row[0] for row in conn.execute(text("SELECT name FROM sqlite_master WHERE type='table'"))}
    assert {"commitrecord", "timeentry"} <= tables
    assert "pendingop" not in tables
