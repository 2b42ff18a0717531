"""Offline-capable operation kinds and queue states."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class OperationKind(str, Enum):
    CLOCK_IN = "clockIn"
    CLOCK_OUT = "clockOut"


class OperationState(str, Enum):
    # Waiting for (re)submission; retried automatically.
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    # Fatal rejection from the server; kept for inspection or cancellation.
    REJECTED = "rejected"
    # Retryable failures exhausted the retry budget.
    NEEDS_ATTENTION = "needs_attention"


MANUAL_STATES = frozenset({OperationState.REJECTED, OperationState.NEEDS_ATTENTION})


def parse_kind(value: object) -> Optional[OperationKind]:
    """Return the matching kind, or ``None`` for anything unsupported."""
    if isinstance(value, OperationKind):
        return value
    try:
        return OperationKind(str(value))
    except ValueError:
        return None


def state_label(state: OperationState | str) -> str:
    value = OperationState(state)
    if value in MANUAL_STATES:
        return "needs manual action"
    if value is OperationState.IN_FLIGHT:
        return "sending"
    return "will retry automatically"


__all__ = ["OperationKind", "OperationState", "MANUAL_STATES", "parse_kind", "state_label"]
