"""Health indicators of components and a registry to look them up by name."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any


class Status(str, Enum):
    """Health status of a component."""

    INIT = "INIT"
    UP = "UP"
    DOWN = "DOWN"


class Indicator(ABC):
    """Something that can report a health status with details."""

    @abstractmethod
    def report(self) -> tuple[Status, dict[str, Any]]:
        """Return the current status and a mapping of details."""


@dataclass
class ComponentsIndicator:
    """The readiness and liveness indicators of one component."""

    readiness_indicator: Indicator | None = None
    liveness_indicator: Indicator | None = None


_indicators: dict[str, ComponentsIndicator] = {}
_indicators_lock = threading.Lock()


def get_indicator_with_name(name: str) -> ComponentsIndicator | None:
    """Return the indicators registered under ``name``, or None."""
    with _indicators_lock:
        return _indicators.get(name)


def set_components_actuators(name: str, indicator: ComponentsIndicator) -> None:
    """Register the indicators of a component under ``name``."""
    with _indicators_lock:
        _indicators[name] = indicator