"""Configuration store interface, request types and the store registry."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from layotto.info import RuntimeInfo

SERVICE_NAME = "configStore"
ALL = "*"

# Positions of the parts of a hierarchical configuration key.
APP_ID = 0
GROUP = 1
LABEL = 2
KEY = 3
TAG = 4


@dataclass
class StoreConfig:
    """Configuration of a store implementation."""

    store_name: str = ""
    address: list[str] = field(default_factory=list)
    timeout: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class GetRequest:
    """A request to read configuration."""

    app_id: str = ""
    group: str = ""
    label: str = ""
    keys: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ConfigurationItem:
    """A configuration item with its key, content and other information."""

    key: str = ""
    content: str = ""
    group: str = ""
    label: str = ""
    tags: Optional[dict[str, str]] = None
    metadata: Optional[dict[str, str]] = None


@dataclass
class SetRequest:
    """A request to save configuration items."""

    store_name: str = ""
    app_id: str = ""
    items: list[ConfigurationItem] = field(default_factory=list)


@dataclass
class DeleteRequest:
    """A request to delete configuration."""

    app_id: str = ""
    group: str = ""
    label: str = ""
    keys: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class SubscribeRequest:
    """A request to subscribe to configuration updates."""

    app_id: str = ""
    group: str = ""
    label: str = ""
    keys: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class SubscribeResponse:
    """A notification of changed configuration items."""

    store_name: str = ""
    app_id: str = ""
    items: list[ConfigurationItem] = field(default_factory=list)


class ChannelClosedError(Exception):
    """Raised when using a channel that has been closed."""


class _Envelope:
    __slots__ = ("value", "taken")

    def __init__(self, value: Any) -> None:
        self.value = value
        self.taken = False


class ResponseChannel:
    """An unbuffered channel: a send completes only when a receiver takes it."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._pending: deque[_Envelope] = deque()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def send(self, item: Any, timeout: float | None = None) -> bool:
        """Hand ``item`` to a receiver.

        Returns False if no receiver took it within ``timeout`` seconds.
        Raises ChannelClosedError if the channel is or becomes closed.
        """
        with self._cond:
            if self._closed:
                raise ChannelClosedError("send on closed channel")
            envelope = _Envelope(item)
            self._pending.append(envelope)
            self._cond.notify_all()
            self._cond.wait_for(lambda: envelope.taken or self._closed, timeout)
            if envelope.taken:
                return True
            self._pending.remove(envelope)
            if self._closed:
                raise ChannelClosedError("send on closed channel")
            return False

    def receive(self, timeout: float | None = None) -> Any:
        """Take the next item from a sender.

        Raises ChannelClosedError once the channel is closed and
        TimeoutError if nothing arrived within ``timeout`` seconds.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    raise ChannelClosedError("receive on closed channel")
                if self._pending:
                    envelope = self._pending.popleft()
                    envelope.taken = True
                    self._cond.notify_all()
                    return envelope.value
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise TimeoutError("no item received before timeout")
                self._cond.wait(remaining)

    def close(self) -> None:
        """Close the channel; closing twice raises ChannelClosedError."""
        with self._cond:
            if self._closed:
                raise ChannelClosedError("close of closed channel")
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[Any]:
        while True:
            try:
                yield self.receive()
            except ChannelClosedError:
                return


class Store(ABC):
    """Operations of a configuration store."""

    @abstractmethod
    def init(self, config: StoreConfig) -> None:
        """Initialise the store from its configuration."""

    @abstractmethod
    def get(self, request: GetRequest) -> list[ConfigurationItem]:
        """Return the configuration items matching the request."""

    @abstractmethod
    def set(self, request: SetRequest) -> None:
        """Save configuration items."""

    @abstractmethod
    def delete(self, request: DeleteRequest) -> None:
        """Delete configuration."""

    @abstractmethod
    def subscribe(self, request: SubscribeRequest, channel: ResponseChannel) -> None:
        """Send updates of the requested configuration to ``channel``."""

    @abstractmethod
    def stop_subscribe(self) -> None:
        """Stop all subscriptions."""

    @abstractmethod
    def default_group(self) -> str:
        """Group used when a request names none."""

    @abstractmethod
    def default_label(self) -> str:
        """Label used when a request names none."""


class ComponentNotRegisteredError(LookupError):
    """Raised when creating a component whose name was never registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"service component {name} is not regsitered")
        self.name = name


@dataclass
class StoreFactory:
    """A named constructor of configuration stores."""

    name: str
    factory_method: Callable[[], Store]


class StoreRegistry:
    """Creates configuration stores by name from registered factories."""

    def __init__(self, info: RuntimeInfo) -> None:
        info.add_service(SERVICE_NAME)
        self._stores: dict[str, Callable[[], Store]] = {}
        self._info = info

    def register(self, *factories: StoreFactory) -> None:
        for factory in factories:
            self._stores[factory.name] = factory.factory_method
            self._info.register_component(SERVICE_NAME, factory.name)

    def create(self, name: str) -> Store:
        try:
            factory = self._stores[name]
        except KeyError:
            raise ComponentNotRegisteredError(name) from None
        self._info.load_component(SERVICE_NAME, name)
        return factory()