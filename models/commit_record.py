"""Server-side idempotency ledger."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class CommitRecord(SQLModel, table=True):
    """One row per committed ``event_id``; never rewritten once inserted."""

    event_id: str = Field(primary_key=True)
    operation_kind: str
    user_id: str = Field(index=True)
    entity_id: str
    result: str = Field(default="{}")
    created_at: datetime = Field(default_factory=utc_now)
    # Past this point the replay guard rejects the event id anyway.
    expires_at: Optional[datetime] = Field(default=None, index=True)


__all__ = ["CommitRecord"]
