"""Time-entry mutations run inside the admission transaction."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlmodel import Session, select

from core.errors import ValidationError
from datetime_utils import to_rfc3339_utc
from models.time_entry import TimeEntry
from services.geofence import GeofenceDecision, GeofencePolicy, evaluate

TAG_GEOFENCE_OUT = "geofence_out"

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"


def find_active_entry(
    session: Session, user_id: str, job_id: Optional[str] = None
) -> Optional[TimeEntry]:
    stmt = select(TimeEntry).where(TimeEntry.user_id == user_id, TimeEntry.status == STATUS_ACTIVE)
    if job_id is not None:
        stmt = stmt.where(TimeEntry.job_id == job_id)
    stmt = stmt.order_by(TimeEntry.clock_in_at.desc())
    return session.exec(stmt).first()


def clock_in(
    session: Session,
    *,
    user_id: str,
    job_id: str,
    lat: float,
    lng: float,
    accuracy_m: Optional[float],
    event_id: str,
    decision: GeofenceDecision,
    now: datetime,
    device_id: Optional[str] = None,
) -> Tuple[str, Dict[str, Any]]:
    if find_active_entry(session, user_id) is not None:
        raise ValidationError("User is already clocked in. Clock out first.")

    entry = TimeEntry(
        id=uuid.uuid4().hex,
        user_id=user_id,
        job_id=job_id,
        status=STATUS_ACTIVE,
        device_id=device_id,
        clock_in_at=now,
        clock_in_lat=lat,
        clock_in_lng=lng,
        clock_in_accuracy_m=accuracy_m,
        clock_in_distance_m=round(decision.distance_m, 1),
        clock_in_event_id=event_id,
        radius_used_m=decision.effective_radius_m,
    )
    session.add(entry)
    return entry.id, {
        "status": STATUS_ACTIVE,
        "jobId": job_id,
        "clockInAt": to_rfc3339_utc(now),
        "distanceMeters": round(decision.distance_m, 1),
        "effectiveRadiusMeters": decision.effective_radius_m,
    }


def clock_out(
    session: Session,
    *,
    user_id: str,
    job_id: Optional[str],
    lat: float,
    lng: float,
    accuracy_m: Optional[float],
    event_id: str,
    policy_for,
    now: datetime,
) -> Tuple[str, Dict[str, Any]]:
    """Close the active entry; a clock-out outside the fence is tagged, not refused."""

    entry = find_active_entry(session, user_id, job_id)
    if entry is None:
        raise ValidationError("No active time entry to clock out of.")

    entry.status = STATUS_COMPLETED
    entry.clock_out_at = now
    entry.clock_out_lat = lat
    entry.clock_out_lng = lng
    entry.clock_out_accuracy_m = accuracy_m
    entry.clock_out_event_id = event_id

    result: Dict[str, Any] = {
        "status": STATUS_COMPLETED,
        "jobId": entry.job_id,
        "clockOutAt": to_rfc3339_utc(now),
    }
    policy: Optional[GeofencePolicy] = policy_for(entry.job_id)
    if policy is not None:
        decision = evaluate((lat, lng), policy, accuracy_m)
        entry.clock_out_distance_m = round(decision.distance_m, 1)
        entry.clock_out_geofence_valid = decision.allowed
        result["distanceMeters"] = entry.clock_out_distance_m
        result["geofenceValid"] = decision.allowed
        if not decision.allowed:
            entry.add_tag(TAG_GEOFENCE_OUT)
            result["warning"] = (
                f"Clocked out {decision.distance_m:.0f}m from the job site "
                f"(allowed {decision.effective_radius_m:.0f}m)."
            )
    result["exceptionTags"] = entry.tags()
    session.add(entry)
    return entry.id, result


__all__ = [
    "TAG_GEOFENCE_OUT",
    "STATUS_ACTIVE",
    "STATUS_COMPLETED",
    "find_active_entry",
    "clock_in",
    "clock_out",
]
