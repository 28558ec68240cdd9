"""The hello service, its registry and the helloworld implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from layotto.configstore import ComponentNotRegisteredError
from layotto.info import RuntimeInfo

SERVICE_NAME = "hello"


@dataclass
class HelloConfig:
    """Configuration of a hello service."""

    hello_string: str = ""


@dataclass
class HelloRequest:
    """A request to greet someone."""

    name: str = ""


@dataclass
class HelloResponse:
    """The greeting produced by a hello service."""

    hello_string: str = ""


class HelloService(ABC):
    """A service that greets."""

    @abstractmethod
    def init(self, config: HelloConfig) -> None:
        """Initialise the service."""

    @abstractmethod
    def hello(self, request: HelloRequest) -> HelloResponse:
        """Return a greeting for the request."""


@dataclass
class HelloFactory:
    """A named constructor of hello services."""

    name: str
    factory_method: Callable[[], HelloService]


class HelloRegistry:
    """Creates hello services by name from registered factories."""

    def __init__(self, info: RuntimeInfo) -> None:
        info.add_service(SERVICE_NAME)
        self._services: dict[str, Callable[[], HelloService]] = {}
        self._info = info

    def register(self, *factories: HelloFactory) -> None:
        for factory in factories:
            self._services[factory.name] = factory.factory_method
            self._info.register_component(SERVICE_NAME, factory.name)

    def create(self, name: str) -> HelloService:
        try:
            factory = self._services[name]
        except KeyError:
            raise ComponentNotRegisteredError(name) from None
        self._info.load_component(SERVICE_NAME, name)
        return factory()


class HelloWorld(HelloService):
    """Greets with the configured word followed by the requested name."""

    def __init__(self) -> None:
        self.say = ""

    def init(self, config: HelloConfig) -> None:
        self.say = config.hello_string

    def hello(self, request: HelloRequest) -> HelloResponse:
        return HelloResponse(hello_string=f"{self.say}, {request.name}")