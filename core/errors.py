"""Error taxonomy shared by the device queue and the admission pipeline.

Every error maps to one of the reason codes that cross the wire, and says
whether the sync loop may retry it on its own. Fatal errors park the queued
operation for manual action; retryable ones drive the backoff schedule.
"""
from __future__ import annotations

from typing import Dict, Optional, Type


REASON_INVALID_FORMAT = "invalid-event-id-format"
REASON_EXPIRED = "event-expired"
REASON_FUTURE = "event-timestamp-in-future"
REASON_GEOFENCE = "geofence-violation"
REASON_VALIDATION = "validation-failed"
REASON_UNAUTHENTICATED = "unauthenticated"
REASON_PERMISSION_DENIED = "permission-denied"
REASON_INTERNAL = "internal"
REASON_TRANSPORT = "transport"


class FieldClockError(Exception):
    reason: str = REASON_INTERNAL
    retryable: bool = False

    def __init__(self, message: str = "", *, reason: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        if reason:
            self.reason = reason

    @property
    def message(self) -> str:
        return str(self)


class FormatError(FieldClockError):
    """Malformed event identifier."""

    reason = REASON_INVALID_FORMAT


class InvalidEventIdFormat(FormatError):
    """Event id is not `<13-digit unix millis>-<suffix>`."""


class ExpiredError(FieldClockError):
    reason = REASON_EXPIRED

    def __init__(self, message: str = "", *, age_hours: Optional[int] = None) -> None:
        super().__init__(message)
        self.age_hours = age_hours


class FutureSkewError(FieldClockError):
    """Identifier minted after the server's "now" (device clock is ahead)."""

    reason = REASON_FUTURE


class GeofenceError(FieldClockError):
    reason = REASON_GEOFENCE

    def __init__(
        self,
        message: str = "",
        *,
        distance_m: Optional[float] = None,
        effective_radius_m: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.distance_m = distance_m
        self.effective_radius_m = effective_radius_m


class ValidationError(FieldClockError):
    reason = REASON_VALIDATION


class AuthError(FieldClockError):
    reason = REASON_PERMISSION_DENIED


class TransportError(FieldClockError):
    """Network failure or timeout before a response was received."""

    reason = REASON_TRANSPORT
    retryable = True


class InternalError(FieldClockError):
    reason = REASON_INTERNAL
    retryable = True


class OperationInFlightError(FieldClockError):
    """Raised when cancelling an operation that is currently being submitted."""


_BY_REASON: Dict[str, Type[FieldClockError]] = {
    REASON_INVALID_FORMAT: InvalidEventIdFormat,
    REASON_EXPIRED: ExpiredError,
    REASON_FUTURE: FutureSkewError,
    REASON_GEOFENCE: GeofenceError,
    REASON_VALIDATION: ValidationError,
    REASON_UNAUTHENTICATED: AuthError,
    REASON_PERMISSION_DENIED: AuthError,
    REASON_INTERNAL: InternalError,
    REASON_TRANSPORT: TransportError,
}


def error_from_reason(reason: Optional[str], message: str = "") -> FieldClockError:
    """Rebuild an exception from a wire ``reason`` code.

    Unknown codes are treated as internal faults so they stay retryable
    instead of silently parking the operation.
    """

    cls = _BY_REASON.get(reason or "", InternalError)
    if cls is AuthError:
        return AuthError(message, reason=reason)
    return cls(message)


__all__ = [
    "FieldClockError",
    "FormatError",
    "InvalidEventIdFormat",
    "ExpiredError",
    "FutureSkewError",
    "GeofenceError",
    "ValidationError",
    "AuthError",
    "TransportError",
    "InternalError",
    "OperationInFlightError",
    "error_from_reason",
    "REASON_INVALID_FORMAT",
    "REASON_EXPIRED",
    "REASON_FUTURE",
    "REASON_GEOFENCE",
    "REASON_VALIDATION",
    "REASON_UNAUTHENTICATED",
    "REASON_PERMISSION_DENIED",
    "REASON_INTERNAL",
    "REASON_TRANSPORT",
]
