"""Per-device client settings kept in ``config.json``."""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from core.settings import CONFIG_PATH, TRANSPORT


@dataclass(frozen=True)
class ClientConfig:
    base_url: Optional[str] = None
    user_id: Optional[str] = None
    auth_token: Optional[str] = None
    request_timeout_sec: float = TRANSPORT.request_timeout_sec


_KNOWN = frozenset(f.name for f in fields(ClientConfig))


def _read(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    if not isinstance(data, dict):
        return {}
    return {key: value for key, value in data.items() if key in _KNOWN}


def load_config(path: Optional[Path] = None) -> ClientConfig:
    return ClientConfig(**_read(Path(path or CONFIG_PATH)))


def update_config(path: Optional[Path] = None, **changes: Any) -> ClientConfig:
    """Merge ``changes`` into the stored config and write it back.

    Unknown keys are dropped. ``base_url`` loses trailing slashes so
    endpoint paths can be appended directly.
    """

    target = Path(path or CONFIG_PATH)
    known = {key: value for key, value in changes.items() if key in _KNOWN}
    if known.get("base_url"):
        known["base_url"] = known["base_url"].rstrip("/")
    if known.get("request_timeout_sec") is not None:
        known["request_timeout_sec"] = float(known["request_timeout_sec"])
    cfg = replace(load_config(target), **known)

    target.parent.mkdir(parents=True, exist_ok=True)
    staging = target.with_name(target.name + ".partial")
    try:
        staging.write_text(json.dumps(asdict(cfg), indent=2, sort_keys=True), encoding="utf-8")
        os.replace(staging, target)
    finally:
        staging.unlink(missing_ok=True)
    return cfg


__all__ = ["ClientConfig", "load_config", "update_config"]
