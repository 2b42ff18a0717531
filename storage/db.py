# fieldclock/storage/db.py
from pathlib import Path
from typing import Callable, Sequence

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from core.settings import QUEUE_DB_PATH, LEDGER_DB_PATH
from models.commit_record import CommitRecord
from models.pending_op import PendingOp
from models.time_entry import TimeEntry
from storage import migrations


SessionFactory = Callable[[], Session]

CLIENT_TABLES = (PendingOp.__table__,)
SERVER_TABLES = (CommitRecord.__table__, TimeEntry.__table__)


def _sqlite_pragmas(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=FULL")
    cursor.close()


def create_sqlite_engine(path: Path | str | None) -> Engine:
    """``None`` or ``":memory:"`` gives a private in-memory database."""
    if path is None or str(path) == ":memory:":
        return create_engine(
            "sqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    db_path = Path(path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path.as_posix()}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _sqlite_pragmas)
    return engine


def _init(engine: Engine, tables: Sequence) -> SessionFactory:
    SQLModel.metadata.create_all(engine, tables=list(tables))

    def factory() -> Session:
        return Session(engine)

    return factory


def init_client_db(engine: Engine | None = None) -> SessionFactory:
    engine = engine or create_sqlite_engine(QUEUE_DB_PATH)
    factory = _init(engine, CLIENT_TABLES)
    migrations.run_client(engine)
    return factory


def init_server_db(engine: Engine | None = None) -> SessionFactory:
    engine = engine or create_sqlite_engine(LEDGER_DB_PATH)
    factory = _init(engine, SERVER_TABLES)
    migrations.run_server(engine)
    return factory


__all__ = [
    "SessionFactory",
    "create_sqlite_engine",
    "init_client_db",
    "init_server_db",
]
