"""Interfaces the admission pipeline consumes but does not own."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Protocol, Set, Tuple

from services.geofence import GeofencePolicy


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str = ""


class Authorizer(Protocol):
    def check(self, user_id: str, job_id: Optional[str]) -> AuthorizationDecision:
        ...


class GeofencePolicyLookup(Protocol):
    def get(self, job_id: str) -> Optional[GeofencePolicy]:
        ...


class StaticAuthorizer:
    """Allows the listed ``(user_id, job_id)`` assignments.

    A ``job_id`` of ``None`` (clock-out without a job) is allowed for any
    user that has at least one assignment.
    """

    def __init__(self, assignments: Iterable[Tuple[str, str]] = ()) -> None:
        self._assignments: Set[Tuple[str, str]] = set(assignments)

    def assign(self, user_id: str, job_id: str) -> None:
        self._assignments.add((user_id, job_id))

    def check(self, user_id: str, job_id: Optional[str]) -> AuthorizationDecision:
        if job_id is None:
            if any(user == user_id for user, _ in self._assignments):
                return AuthorizationDecision(True)
            return AuthorizationDecision(False, "No job assignments")
        if (user_id, job_id) in self._assignments:
            return AuthorizationDecision(True)
        return AuthorizationDecision(False, "Not assigned to this job")


class StaticPolicyLookup:
    def __init__(self, policies: Optional[Mapping[str, GeofencePolicy]] = None) -> None:
        self._policies: Dict[str, GeofencePolicy] = dict(policies or {})

    def put(self, job_id: str, policy: GeofencePolicy) -> None:
        self._policies[job_id] = policy

    def get(self, job_id: str) -> Optional[GeofencePolicy]:
        return self._policies.get(job_id)


__all__ = [
    "AuthorizationDecision",
    "Authorizer",
    "GeofencePolicyLookup",
    "StaticAuthorizer",
    "StaticPolicyLookup",
]
