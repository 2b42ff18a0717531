"""SQLModel table for clock operations waiting to reach the server."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from core.operations import OperationState
from datetime_utils import utc_now


class PendingOp(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    operation_kind: str = Field(index=True)
    job_id: Optional[str] = None
    lat: float
    lng: float
    accuracy_m: Optional[float] = None
    event_id: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=utc_now, index=True)
    owner_user_id: str
    device_id: Optional[str] = None
    retry_count: int = Field(default=0)
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_reason: Optional[str] = None
    state: str = Field(default=OperationState.PENDING.value, index=True)


__all__ = ["PendingOp"]
