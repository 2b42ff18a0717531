"""Helpers for generating and storing a stable device identifier."""
from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Optional

from core.settings import DEVICE_ID_PATH


def _read_existing(path: Path) -> str | None:
    try:
        value = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return value or None


def _write_value(path: Path, value: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    try:
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink(missing_ok=True)


def get_device_id(path: Optional[Path] = None) -> str:
    """Return the identifier of this installation, creating it on first use.

    The id travels with every submission so server logs can tell devices
    apart; it is not part of the idempotency key.
    """

    target = Path(path or DEVICE_ID_PATH)
    existing = _read_existing(target)
    if existing:
        return existing

    new_id = uuid.uuid4().hex.upper()
    try:
        _write_value(target, new_id)
    except OSError:
        # Not persisted; a new identifier is generated next time.
        return new_id
    return new_id


__all__ = ["get_device_id"]
