import pytest

from layotto.configstore import ComponentNotRegisteredError
from layotto.hello import (
    SERVICE_NAME,
    HelloConfig,
    HelloFactory,
    HelloRegistry,
    HelloRequest,
    HelloService,
    HelloWorld,
)
from layotto.info import RuntimeInfo


def test_new_registry():
    registry = HelloRegistry(RuntimeInfo())
    registry.register(HelloFactory("mock", lambda: None))
    assert registry.create("mock") is None
    with pytest.raises(ComponentNotRegisteredError) as excinfo:
        registry.create("not exists")
    assert "not regsitered" in str(excinfo.value)


def test_registry_records_runtime_info():
    info = RuntimeInfo()
    registry = HelloRegistry(info)
    registry.register(HelloFactory("helloworld", HelloWorld))
    service = registry.create("helloworld")
    assert isinstance(service, HelloWorld)
    assert info.services[SERVICE_NAME].registered == ["helloworld"]
    assert info.services[SERVICE_NAME].loaded == ["helloworld"]


def test_hello_world():
    service = HelloWorld()
    service.init(HelloConfig(hello_string="Hi"))
    response = service.hello(HelloRequest(name="Layotto"))
    assert response.hello_string == "Hi, Layotto"


def test_hello_world_uninitialised_greeting():
    response = HelloWorld().hello(HelloRequest(name="Layotto"))
    assert response.hello_string == ", Layotto"


def test_hello_service_is_abstract():
    with pytest.raises(TypeError):
        HelloService()