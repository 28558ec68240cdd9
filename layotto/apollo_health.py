"""Readiness and liveness indicators of the Apollo configuration store."""

from __future__ import annotations

import threading
from typing import Any

from layotto.actuators import (
    ComponentsIndicator,
    Indicator,
    Status,
    set_components_actuators,
)

REASON_KEY = "reason"


class HealthIndicator(Indicator):
    """Tracks whether the store has started and the first error it met."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started = False
        self._is_err = False
        self._err_reason = ""

    def report(self) -> tuple[Status, dict[str, Any]]:
        with self._lock:
            details: dict[str, Any] = {}
            status = Status.INIT
            if self._is_err:
                status = Status.DOWN
                details[REASON_KEY] = self._err_reason
            if self._started:
                status = Status.UP
            return status, details

    def report_error(self, reason: str) -> None:
        """Record an error; only the first one is kept."""
        with self._lock:
            if self._is_err:
                return
            self._is_err = True
            self._err_reason = reason

    def set_started(self) -> None:
        """Mark the store as started."""
        with self._lock:
            self._started = True


_readiness_indicator = HealthIndicator()
_liveness_indicator = HealthIndicator()

set_components_actuators(
    "apollo",
    ComponentsIndicator(
        readiness_indicator=_readiness_indicator,
        liveness_indicator=_liveness_indicator,
    ),
)


def get_readiness_indicator() -> HealthIndicator:
    """Return the readiness indicator of the Apollo store."""
    return _readiness_indicator


def get_liveness_indicator() -> HealthIndicator:
    """Return the liveness indicator of the Apollo store."""
    return _liveness_indicator