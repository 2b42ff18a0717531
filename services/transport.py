from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import requests

from core.errors import (
    REASON_INTERNAL,
    REASON_PERMISSION_DENIED,
    REASON_UNAUTHENTICATED,
    REASON_VALIDATION,
    TransportError,
)
from core.settings import TRANSPORT
from services.wire import SubmitRequest, SubmitResponse


LOGGER = logging.getLogger("fieldclock.transport")

# Answers that mean "try again later" rather than "the request is wrong".
RETRYABLE_STATUS = {408, 425, 429}

_STATUS_REASONS = {
    400: REASON_VALIDATION,
    401: REASON_UNAUTHENTICATED,
    403: REASON_PERMISSION_DENIED,
    422: REASON_VALIDATION,
}


class Transport(Protocol):
    def send(self, request: SubmitRequest) -> SubmitResponse:
        """Deliver ``request``; raise :class:`TransportError` when no answer arrived."""
        ...


class HttpTransport:
    """POSTs submissions as JSON to ``<base_url><submit_path>``."""

    def __init__(
        self,
        base_url: str,
        *,
        auth_token: Optional[str] = None,
        timeout: float = TRANSPORT.request_timeout_sec,
        submit_path: str = TRANSPORT.submit_path,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("HTTP transport requires a base URL")
        self.url = base_url.rstrip("/") + submit_path
        self.timeout = float(timeout)
        self._session = session or requests.Session()
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self._session.headers.update(headers)

    def send(self, request: SubmitRequest) -> SubmitResponse:
        try:
            response = self._session.post(self.url, json=request.to_dict(), timeout=self.timeout)
        except requests.Timeout as exc:
            raise TransportError(f"Submission timed out after {self.timeout:g}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Submission failed: {exc}") from exc

        status = response.status_code
        if status in RETRYABLE_STATUS:
            raise TransportError(f"Server asked to retry later (HTTP {status})")

        body = self._json_body(response)
        if body is not None and "ok" in body:
            return SubmitResponse.from_dict(body)
        if 200 <= status < 300:
            LOGGER.warning("Unexpected success body for %s: %r", request.event_id, response.text[:200])
            return SubmitResponse(ok=False, reason=REASON_INTERNAL, message="Malformed server response")
        reason = _STATUS_REASONS.get(status, REASON_INTERNAL if status >= 500 else REASON_VALIDATION)
        return SubmitResponse(ok=False, reason=reason, message=f"HTTP {status}")

    @staticmethod
    def _json_body(response: requests.Response) -> Optional[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def close(self) -> None:
        self._session.close()


class LocalTransport:
    """Calls an in-process admission pipeline, as an authenticated ``user_id``."""

    def __init__(self, pipeline, user_id: Optional[str]) -> None:
        self.pipeline = pipeline
        self.user_id = user_id

    def send(self, request: SubmitRequest) -> SubmitResponse:
        return self.pipeline.submit(request, self.user_id)


__all__ = ["Transport", "HttpTransport", "LocalTransport", "RETRYABLE_STATUS"]
