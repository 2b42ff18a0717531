"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``.

    ``FIELDCLOCK_DATA_DIR`` overrides the platform default, which keeps
    test runs and containerised deployments out of the user's home.
    """

    platform_id = (platform or sys.platform).lower()
    environ = dict(os.environ if env is None else env)
    override = environ.get("FIELDCLOCK_DATA_DIR")
    if override:
        return Path(override).expanduser()

    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "FieldClock"


DATA_DIR = get_default_data_dir(APP_NAME)
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


QUEUE_DB_PATH = DATA_DIR / "queue.db"
LEDGER_DB_PATH = DATA_DIR / "ledger.db"
CONFIG_PATH = DATA_DIR / "config.json"
DEVICE_ID_PATH = DATA_DIR / "device_id.txt"


@dataclass(frozen=True)
class SyncSettings:
    backoff_base_sec: int = 5
    backoff_factor: int = 3
    backoff_cap_sec: int = 300
    # TransportError/InternalError attempts before "needs attention".
    max_retries: int = 8
    periodic_interval_sec: int = 30
    drain_batch_limit: int = 100


SYNC = SyncSettings()


@dataclass(frozen=True)
class AdmissionSettings:
    event_ttl: timedelta = timedelta(hours=24)
    future_skew_tolerance: timedelta = timedelta(0)
    max_accuracy_m: float = 2000.0
    usable_accuracy_m: float = 200.0
    # Longest accepted event id; it becomes the ledger primary key.
    max_event_id_length: int = 64
    # How long ledger rows are kept; must cover event_ttl.
    ledger_retention: timedelta = timedelta(days=7)


ADMISSION = AdmissionSettings()


@dataclass(frozen=True)
class GeofenceSettings:
    min_radius_m: float = 75.0
    max_radius_m: float = 250.0
    default_radius_m: float = 100.0
    min_accuracy_buffer_m: float = 15.0
    earth_radius_m: float = 6_371_000.0


GEOFENCE = GeofenceSettings()


@dataclass(frozen=True)
class TransportSettings:
    request_timeout_sec: float = 10.0
    submit_path: str = "/timeclock/submit"
    health_path: str = "/health"


TRANSPORT = TransportSettings()


@dataclass(frozen=True)
class LogSettings:
    sync_log_path: Path = LOG_DIR / "sync.log"
    admission_log_path: Path = LOG_DIR / "admission.log"
    max_bytes: int = 1_000_000
    backup_count: int = 3


LOGS = LogSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "LOG_DIR",
    "QUEUE_DB_PATH",
    "LEDGER_DB_PATH",
    "CONFIG_PATH",
    "DEVICE_ID_PATH",
    "SYNC",
    "ADMISSION",
    "GEOFENCE",
    "TRANSPORT",
    "LOGS",
    "SyncSettings",
    "AdmissionSettings",
    "GeofenceSettings",
    "TransportSettings",
    "LogSettings",
    "get_default_data_dir",
]
