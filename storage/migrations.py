"""Ad-hoc database migrations run after ``create_all``."""

from __future__ import annotations

from sqlalchemy import text

from core.settings import ADMISSION


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_pending_op_indexes(conn) -> None:
    conn.execute(
        text("CREATE UNIQUE INDEX IF NOT EXISTS ux_pendingop_event_id ON pendingop (event_id)")
    )
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_pendingop_state_created ON pendingop (state, created_at)")
    )


def ensure_commit_record_expiry(conn, retention_days: int) -> None:
    # Ledgers created before rows carried an expiry.
    if not _column_exists(conn, "commitrecord", "expires_at"):
        conn.execute(text("ALTER TABLE commitrecord ADD COLUMN expires_at DATETIME"))
    conn.execute(
        text(
            "UPDATE commitrecord SET expires_at = datetime(created_at, :shift) "
            "WHERE expires_at IS NULL"
        ),
        {"shift": f"+{retention_days} days"},
    )
    conn.execute(
        text("CREATE INDEX IF NOT EXISTS ix_commitrecord_expires_at ON commitrecord (expires_at)")
    )


def run_client(engine) -> None:
    with engine.begin() as conn:
        ensure_pending_op_indexes(conn)


def run_server(engine, retention_days: int = ADMISSION.ledger_retention.days) -> None:
    with engine.begin() as conn:
        ensure_commit_record_expiry(conn, retention_days)


__all__ = ["run_client", "run_server"]
