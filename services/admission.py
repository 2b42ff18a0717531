"""Server-side admission of clock submissions.

Checks run in a fixed order and the first failure wins: authentication and
authorization, request validation, the replay guard, the clock-in geofence,
and finally the idempotent commit. Every outcome is returned as a
:class:`SubmitResponse`; nothing escapes :meth:`AdmissionPipeline.submit`.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from sqlmodel import Session

from core.errors import (
    REASON_UNAUTHENTICATED,
    AuthError,
    FieldClockError,
    GeofenceError,
    InternalError,
    ValidationError,
)
from core.operations import OperationKind, parse_kind
from core.settings import ADMISSION, AdmissionSettings
from datetime_utils import utc_now
from helpers.logs import admission_logger
from services import timeclock
from services.collaborators import Authorizer, GeofencePolicyLookup
from services.commit_store import CommitStore
from services.geofence import GeofenceDecision, evaluate
from services.replay_guard import check_replay
from services.wire import SubmitRequest, SubmitResponse


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class AdmissionPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        authorizer: Authorizer,
        policies: GeofencePolicyLookup,
        *,
        settings: AdmissionSettings = ADMISSION,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = CommitStore(
            session_factory, retention=settings.ledger_retention, ttl=settings.event_ttl
        )
        self.authorizer = authorizer
        self.policies = policies
        self.settings = settings
        self.clock = clock
        self.logger = logger or admission_logger()

    def submit(
        self,
        request: Union[SubmitRequest, Dict[str, Any]],
        user_id: Optional[str],
    ) -> SubmitResponse:
        if isinstance(request, dict):
            request = SubmitRequest.from_dict(request)
        try:
            response = self._admit(request, user_id)
        except FieldClockError as exc:
            self.logger.warning(
                "Rejected %s %s for %s: %s (%s)",
                request.operation_kind,
                request.event_id,
                user_id,
                exc.reason,
                exc.message,
            )
            return SubmitResponse.failure(exc)
        except Exception:
            self.logger.exception("Admission failed for %s", request.event_id)
            return SubmitResponse.failure(InternalError("Internal error while admitting the event."))
        return response

    # ------------------------------------------------------------------
    def _admit(self, request: SubmitRequest, user_id: Optional[str]) -> SubmitResponse:
        if not user_id:
            raise AuthError("User must be authenticated.", reason=REASON_UNAUTHENTICATED)
        if request.job_id is not None and not isinstance(request.job_id, str):
            raise ValidationError("jobId must be a string.")
        decision = self.authorizer.check(user_id, request.job_id)
        if not decision.allowed:
            raise AuthError(decision.reason or "Not authorized for this job.")

        kind = self._validate(request)
        now = self.clock()
        check_replay(
            request.event_id,
            kind.value,
            now,
            ttl=self.settings.event_ttl,
            future_tolerance=self.settings.future_skew_tolerance,
        )

        if kind is OperationKind.CLOCK_IN:
            fence = self._check_clock_in_fence(request)

            def mutation(session: Session):
                return timeclock.clock_in(
                    session,
                    user_id=user_id,
                    job_id=request.job_id,
                    lat=request.lat,
                    lng=request.lng,
                    accuracy_m=request.accuracy_m,
                    event_id=request.event_id,
                    decision=fence,
                    now=now,
                    device_id=request.device_id,
                )

        else:

            def mutation(session: Session):
                return timeclock.clock_out(
                    session,
                    user_id=user_id,
                    job_id=request.job_id,
                    lat=request.lat,
                    lng=request.lng,
                    accuracy_m=request.accuracy_m,
                    event_id=request.event_id,
                    policy_for=self.policies.get,
                    now=now,
                )

        committed = self.store.commit_once(
            request.event_id,
            operation_kind=kind.value,
            user_id=user_id,
            mutation=mutation,
            now=now,
        )
        if committed.replayed:
            self.logger.info("Duplicate %s %s answered from ledger", kind.value, request.event_id)
        else:
            self.logger.info(
                "Committed %s %s for %s -> %s", kind.value, request.event_id, user_id, committed.entity_id
            )
        return SubmitResponse.success(committed.entity_id, committed.result)

    def purge_ledger(self, now: Optional[datetime] = None) -> int:
        removed = self.store.purge_expired(now or self.clock())
        if removed:
            self.logger.info("Purged %d expired ledger row(s)", removed)
        return removed

    def _validate(self, request: SubmitRequest) -> OperationKind:
        kind = parse_kind(request.operation_kind)
        if kind is None:
            raise ValidationError(f"Unsupported operation kind: {request.operation_kind!r}")
        if not _is_number(request.lat) or not -90 <= request.lat <= 90:
            raise ValidationError("Latitude must be a number between -90 and 90.")
        if not _is_number(request.lng) or not -180 <= request.lng <= 180:
            raise ValidationError("Longitude must be a number between -180 and 180.")
        if request.accuracy_m is not None:
            if not _is_number(request.accuracy_m) or not (
                0 <= request.accuracy_m <= self.settings.max_accuracy_m
            ):
                raise ValidationError(
                    f"Accuracy must be between 0 and {self.settings.max_accuracy_m:g} meters."
                )
            if request.accuracy_m > self.settings.usable_accuracy_m:
                raise ValidationError(
                    f"GPS accuracy too low ({request.accuracy_m:.0f}m). Move to an open area "
                    f"and try again (need under {self.settings.usable_accuracy_m:.0f}m)."
                )
        if kind is OperationKind.CLOCK_IN and not request.job_id:
            raise ValidationError("jobId is required to clock in.")
        if not isinstance(request.client_timestamp, int) or isinstance(request.client_timestamp, bool):
            raise ValidationError("clientTimestamp must be an integer (epoch milliseconds).")
        if not isinstance(request.event_id, str) or not request.event_id:
            raise ValidationError("eventId is required.")
        if len(request.event_id) > self.settings.max_event_id_length:
            raise ValidationError(
                f"eventId must be at most {self.settings.max_event_id_length} characters."
            )
        return kind

    def _check_clock_in_fence(self, request: SubmitRequest) -> GeofenceDecision:
        policy = self.policies.get(request.job_id)
        if policy is None:
            raise ValidationError(f"Unknown job: {request.job_id}")
        fence = evaluate((request.lat, request.lng), policy, request.accuracy_m)
        if not fence.allowed:
            raise GeofenceError(
                f"You are {fence.distance_m:.0f}m from the job site. Must be within "
                f"{fence.effective_radius_m:.0f}m to clock in.",
                distance_m=fence.distance_m,
                effective_radius_m=fence.effective_radius_m,
            )
        return fence


__all__ = ["AdmissionPipeline"]
