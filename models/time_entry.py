from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


def _new_entry_id() -> str:
    return uuid.uuid4().hex


class TimeEntry(SQLModel, table=True):
    id: str = Field(default_factory=_new_entry_id, primary_key=True)
    user_id: str = Field(index=True)
    job_id: str = Field(index=True)
    status: str = Field(default="active", index=True)  # active | completed
    device_id: Optional[str] = None

    clock_in_at: datetime = Field(default_factory=utc_now)
    clock_in_lat: float
    clock_in_lng: float
    clock_in_accuracy_m: Optional[float] = None
    clock_in_distance_m: Optional[float] = None
    clock_in_event_id: str = Field(index=True)
    radius_used_m: Optional[float] = None

    clock_out_at: Optional[datetime] = None
    clock_out_lat: Optional[float] = None
    clock_out_lng: Optional[float] = None
    clock_out_accuracy_m: Optional[float] = None
    clock_out_distance_m: Optional[float] = None
    clock_out_event_id: Optional[str] = Field(default=None, index=True)
    clock_out_geofence_valid: Optional[bool] = None

    # Comma separated review tags, e.g. "geofence_out".
    exception_tags: str = Field(default="")

    def tags(self) -> list[str]:
        return [tag for tag in self.exception_tags.split(",") if tag]

    def add_tag(self, tag: str) -> None:
        tags = self.tags()
        if tag not in tags:
            tags.append(tag)
        self.exception_tags = ",".join(tags)


__all__ = ["TimeEntry"]
