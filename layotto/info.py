"""Runtime bookkeeping of which components are registered and loaded."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ComponentInfo:
    """Names of the components registered for a service and those loaded."""

    registered: list[str] = field(default_factory=list)
    loaded: list[str] = field(default_factory=list)


@dataclass
class RuntimeInfo:
    """Component information for every service known to the runtime."""

    services: dict[str, ComponentInfo] = field(default_factory=dict)

    def add_service(self, service: str) -> None:
        """Start tracking a service, discarding anything known about it."""
        self.services[service] = ComponentInfo()

    def register_component(self, service: str, name: str) -> None:
        """Record that a component was registered; unknown services are ignored."""
        info = self.services.get(service)
        if info is not None:
            info.registered.append(name)

    def load_component(self, service: str, name: str) -> None:
        """Record that a component was loaded; unknown services are ignored."""
        info = self.services.get(service)
        if info is not None:
            info.loaded.append(name)