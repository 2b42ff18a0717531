"""Network reachability observer.

Exposes the current online/offline level and an edge-triggered
"became online" notification. It never retries anything itself.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

import requests


LOGGER = logging.getLogger("fieldclock.connectivity")

Listener = Callable[[], None]
Probe = Callable[[], bool]


class ConnectivityMonitor:
    def __init__(self, initial_online: bool = False, probe: Optional[Probe] = None) -> None:
        self._online = bool(initial_online)
        self._probe = probe
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for offline->online edges; returns an unsubscribe."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def set_online(self, online: bool) -> bool:
        """Record a platform transition; returns True when it was an online edge."""
        with self._lock:
            was_online = self._online
            self._online = bool(online)
            listeners = list(self._listeners)
        if was_online == self._online:
            return False
        LOGGER.info("Network status: %s", "ONLINE" if self._online else "OFFLINE")
        if not self._online:
            return False
        for listener in listeners:
            try:
                listener()
            except Exception:  # pragma: no cover - listener bugs must not break the monitor
                LOGGER.exception("Connectivity listener failed")
        return True

    def check(self) -> bool:
        """Run the probe (if any) and feed the result into :meth:`set_online`."""
        if self._probe is None:
            return self._online
        try:
            online = bool(self._probe())
        except Exception as exc:
            LOGGER.warning("Connectivity probe failed: %s", exc)
            online = False
        self.set_online(online)
        return online


def http_probe(url: str, timeout: float = 3.0, session: Optional[requests.Session] = None) -> Probe:
    """Build a probe that treats any 2xx/3xx answer from ``url`` as online."""

    client = session or requests.Session()

    def _probe() -> bool:
        try:
            response = client.head(url, timeout=timeout, allow_redirects=True)
        except requests.RequestException:
            return False
        return response.status_code < 400

    return _probe


__all__ = ["ConnectivityMonitor", "http_probe"]
