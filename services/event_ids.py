"""Time-embedded event identifiers: ``<unixMillis>-<randomSuffix>``.

The identifier is both the idempotency key and the freshness oracle for a
clock event, so the server never has to trust a separate "created at" field.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from core.errors import InvalidEventIdFormat
from datetime_utils import to_millis, utc_now


TIMESTAMP_DIGITS = 13


@dataclass(frozen=True)
class ParsedEventId:
    timestamp_ms: int
    suffix: str


def mint_event_id(now: Optional[datetime] = None) -> str:
    moment = now or utc_now()
    return f"{to_millis(moment)}-{uuid.uuid4().hex[:12]}"


def parse_event_id(event_id: object) -> ParsedEventId:
    if not isinstance(event_id, str) or "-" not in event_id:
        raise InvalidEventIdFormat(f"Invalid event ID format: {event_id!r}")
    prefix, suffix = event_id.split("-", 1)
    # str.isdigit() accepts non-ASCII digits; the prefix must be plain 0-9.
    if len(prefix) != TIMESTAMP_DIGITS or not prefix.isascii() or not prefix.isdigit():
        raise InvalidEventIdFormat(
            "Invalid event ID format. Must include timestamp: "
            f'"{{unixMillis}}-{{suffix}}", got {event_id!r}'
        )
    return ParsedEventId(timestamp_ms=int(prefix), suffix=suffix)


def event_age_ms(event_id: str, now: Optional[datetime] = None) -> int:
    parsed = parse_event_id(event_id)
    return to_millis(now or utc_now()) - parsed.timestamp_ms


__all__ = ["ParsedEventId", "mint_event_id", "parse_event_id", "event_age_ms", "TIMESTAMP_DIGITS"]
