from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from core.errors import ExpiredError, FutureSkewError
from core.settings import ADMISSION
from services.event_ids import event_age_ms


def check_replay(
    event_id: str,
    operation: str,
    now: Optional[datetime] = None,
    *,
    ttl: timedelta = ADMISSION.event_ttl,
    future_tolerance: timedelta = ADMISSION.future_skew_tolerance,
) -> int:
    """Admit ``event_id`` or raise; returns the event age in milliseconds.

    Pure and side-effect free, so the pipeline can run it before touching
    any state.
    """

    age_ms = event_age_ms(event_id, now)
    tolerance_ms = int(future_tolerance.total_seconds() * 1000)
    if age_ms < -tolerance_ms:
        raise FutureSkewError(
            f"Event ID timestamp is in the future ({-age_ms} ms ahead). Clock skew detected."
        )

    ttl_ms = int(ttl.total_seconds() * 1000)
    if age_ms >= ttl_ms:
        age_hours = age_ms // 3_600_000
        raise ExpiredError(
            f"Event ID expired. {operation} must use an event ID created within the last "
            f"{ttl_ms // 3_600_000} hours. Current age: {age_hours} hours.",
            age_hours=age_hours,
        )
    return age_ms


__all__ = ["check_replay"]
