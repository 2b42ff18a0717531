"""Reconciling a device's view of an operation with the server's record.

Kept apart from the retry loop: the coordinator asks for a resolution only
after the server answered, and the answer never changes retry bookkeeping.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping

from core.operations import OperationKind


class ConflictResolution(str, Enum):
    SERVER_WINS = "server_wins"
    CLIENT_WINS = "client_wins"
    MERGE = "merge"
    MANUAL = "manual"


# The server ledger is the source of truth for clock events.
RESOLUTION_BY_KIND: Dict[OperationKind, ConflictResolution] = {
    OperationKind.CLOCK_IN: ConflictResolution.SERVER_WINS,
    OperationKind.CLOCK_OUT: ConflictResolution.SERVER_WINS,
}


@dataclass(frozen=True)
class Resolution:
    value: Dict[str, Any]
    strategy: ConflictResolution
    needs_manual: bool = False
    conflicting_keys: tuple = ()


def resolve(
    local: Mapping[str, Any],
    remote: Mapping[str, Any],
    strategy: ConflictResolution,
) -> Resolution:
    conflicting = tuple(
        sorted(key for key in local.keys() & remote.keys() if local[key] != remote[key])
    )
    if strategy is ConflictResolution.SERVER_WINS:
        return Resolution(dict(remote), strategy, conflicting_keys=conflicting)
    if strategy is ConflictResolution.CLIENT_WINS:
        return Resolution(dict(local), strategy, conflicting_keys=conflicting)
    if strategy is ConflictResolution.MERGE:
        # Remote fills in what the device never knew; device values win on overlap.
        merged = dict(remote)
        merged.update(local)
        return Resolution(merged, strategy, conflicting_keys=conflicting)
    if conflicting:
        return Resolution(dict(local), strategy, needs_manual=True, conflicting_keys=conflicting)
    merged = dict(remote)
    merged.update(local)
    return Resolution(merged, strategy)


def strategy_for(kind: OperationKind) -> ConflictResolution:
    return RESOLUTION_BY_KIND.get(kind, ConflictResolution.MANUAL)


__all__ = ["ConflictResolution", "RESOLUTION_BY_KIND", "Resolution", "resolve", "strategy_for"]
