"""Request/response shapes exchanged between devices and the server."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from core.errors import FieldClockError
from datetime_utils import to_millis


@dataclass(frozen=True)
class SubmitRequest:
    operation_kind: str
    lat: float
    lng: float
    event_id: str
    client_timestamp: int
    job_id: Optional[str] = None
    accuracy_m: Optional[float] = None
    device_id: Optional[str] = None

    @classmethod
    def from_operation(cls, op) -> "SubmitRequest":
        return cls(
            operation_kind=op.operation_kind.value,
            job_id=op.job_id,
            lat=op.lat,
            lng=op.lng,
            accuracy_m=op.accuracy_m,
            event_id=op.event_id,
            client_timestamp=to_millis(op.created_at),
            device_id=op.device_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "operationKind": self.operation_kind,
            "lat": self.lat,
            "lng": self.lng,
            "eventId": self.event_id,
            "clientTimestamp": self.client_timestamp,
        }
        if self.job_id is not None:
            payload["jobId"] = self.job_id
        if self.accuracy_m is not None:
            payload["accuracyMeters"] = self.accuracy_m
        if self.device_id is not None:
            payload["deviceId"] = self.device_id
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmitRequest":
        """Lenient decode; the admission pipeline validates the values."""
        return cls(
            operation_kind=data.get("operationKind"),
            job_id=data.get("jobId"),
            lat=data.get("lat"),
            lng=data.get("lng"),
            accuracy_m=data.get("accuracyMeters"),
            event_id=data.get("eventId"),
            client_timestamp=data.get("clientTimestamp"),
            device_id=data.get("deviceId"),
        )


@dataclass(frozen=True)
class SubmitResponse:
    ok: bool
    entity_id: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, entity_id: str, result: Optional[Dict[str, Any]] = None) -> "SubmitResponse":
        return cls(ok=True, entity_id=entity_id, result=dict(result or {}))

    @classmethod
    def failure(cls, error: FieldClockError) -> "SubmitResponse":
        return cls(ok=False, reason=error.reason, message=error.message)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "entityId": self.entity_id, "result": self.result}
        payload: Dict[str, Any] = {"ok": False, "reason": self.reason}
        if self.message:
            payload["message"] = self.message
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmitResponse":
        if data.get("ok"):
            result = data.get("result")
            return cls(
                ok=True,
                entity_id=data.get("entityId"),
                result=result if isinstance(result, dict) else {},
            )
        return cls(ok=False, reason=data.get("reason"), message=data.get("message"))


__all__ = ["SubmitRequest", "SubmitResponse"]
