from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.settings import LOGS


def ensure_logger(name: str, path: Path | str, level: int = logging.INFO) -> logging.Logger:
    """Return ``name`` with a rotating file handler attached exactly once."""

    logger = logging.getLogger(name)
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        log_path = Path(path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                log_path,
                maxBytes=LOGS.max_bytes,
                backupCount=LOGS.backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            # Read-only data dir: keep logging through the root handlers.
            logger.warning("File logging disabled for %s: %s", name, exc)
        else:
            formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def sync_logger() -> logging.Logger:
    return ensure_logger("fieldclock.sync", LOGS.sync_log_path)


def admission_logger() -> logging.Logger:
    return ensure_logger("fieldclock.admission", LOGS.admission_log_path)


__all__ = ["ensure_logger", "sync_logger", "admission_logger"]
