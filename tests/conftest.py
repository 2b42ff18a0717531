import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Keep test runs out of the real user data directory.
os.environ.setdefault("FIELDCLOCK_DATA_DIR", tempfile.mkdtemp(prefix="fieldclock-tests-"))

import pytest

from storage.db import create_sqlite_engine, init_client_db, init_server_db


@pytest.fixture()
def client_session_factory():
    return init_client_db(create_sqlite_engine(None))


@pytest.fixture()
def server_session_factory():
    return init_server_db(create_sqlite_engine(None))
