# layotto

Components for an application runtime that runs next to a service:

- **Component registries** that record which components were registered and
  which were loaded (`layotto.info.RuntimeInfo`,
  `layotto.configstore.StoreRegistry`, `layotto.hello.HelloRegistry`).
- **Configuration stores** behind one interface (`layotto.configstore.Store`):
  an Apollo store (`layotto.apollo_store.ApolloConfigStore`) and an etcd store
  (`layotto.etcd_store.EtcdConfigStore`). Subscriptions deliver updates through
  a `ResponseChannel`.
- **Distributed locks** behind one interface (`layotto.lock.LockStore`), with
  an etcd implementation (`layotto.etcd_lock.EtcdLock`).
- **Health indicators** that report `Status.INIT`, `Status.UP` or
  `Status.DOWN` (`layotto.actuators`, `layotto.apollo_health`).

The only runtime dependency is `requests`.

## Registries

A registry maps component names to factories and records what happens in a
`RuntimeInfo`. Creating a name that was never registered raises
`ComponentNotRegisteredError` (a `LookupError`).

```python
from layotto.info import RuntimeInfo
from layotto.hello import HelloRegistry, HelloFactory, HelloWorld, HelloConfig, HelloRequest

info = RuntimeInfo()
registry = HelloRegistry(info)
registry.register(HelloFactory("helloworld", HelloWorld))

service = registry.create("helloworld")
service.init(HelloConfig(hello_string="Hi"))
print(service.hello(HelloRequest(name="Layotto")).hello_string)  # Hi, Layotto
```

`info.services["hello"]` now lists `helloworld` under both `registered` and
`loaded`. `StoreRegistry` and `StoreFactory` do the same for configuration
stores under the `configStore` service.

## Configuration stores

Every store implements `init`, `get`, `set`, `delete`, `subscribe`,
`stop_subscribe`, `default_group` and `default_label`. Requests and results
are dataclasses: `StoreConfig`, `GetRequest`, `SetRequest`, `DeleteRequest`,
`SubscribeRequest`, `SubscribeResponse` and `ConfigurationItem`.

### Channels

`ResponseChannel` is unbuffered: `send(item, timeout)` returns `True` only
once a receiver has taken the item, and `False` if none did in time.
`receive(timeout)` raises `TimeoutError` when nothing arrives and
`ChannelClosedError` once the channel is closed. Iterating over a channel
yields items until it is closed.

### Apollo

`ApolloConfigStore` reads items through a `Repository` (by default an
`HttpRepository` talking to the config service) and writes, deletes and
releases through the Apollo open API. Tags of an item are stored as JSON in
the `sidecar_config_tags` namespace.

```python
from layotto.configstore import StoreConfig, GetRequest, ResponseChannel, SubscribeRequest
from layotto.apollo_repository import HttpRepository
from layotto.apollo_store import ApolloConfigStore

kv_repo = HttpRepository(backup_dir="apollo-backup")
store = ApolloConfigStore(kv_repo=kv_repo)
store.init(StoreConfig(
    store_name="apollo",
    address=["http://localhost:8080"],
    metadata={
        "app_id": "demo",
        "cluster": "default",
        "namespace_name": "application",
        "open_api_token": "token",
        "open_api_address": "http://localhost:8070",
        "open_api_user": "apollo",
    },
))

for item in store.get(GetRequest(app_id="demo", group="application", keys=["timeout"])):
    print(item.key, item.content, item.tags)

channel = ResponseChannel()
store.subscribe(SubscribeRequest(app_id="demo", group="application", keys=["timeout"]), channel)
kv_repo.refresh()  # fetch again and notify subscribers of what changed
```

`init` requires the metadata keys `app_id`, `open_api_token`,
`open_api_address` and `open_api_user` and an address; a missing one raises
`ApolloConfigError`. `is_backup_config`, `cluster`, `namespace_name` and
`secret` are optional. The outcome of `init` is recorded in the indicators
returned by `get_readiness_indicator()` and `get_liveness_indicator()`.

A subscriber that does not take an update within two seconds is removed and
its channel is closed.

`HttpRepository` saves fetched namespaces to `backup_dir` when backups are
enabled, and falls back to them when the config service cannot be reached.
`ApolloLogger` adapts printf-style log calls to a standard `logging.Logger`.

### etcd

`EtcdConfigStore` keeps items under `/<app_id>/<group>/<label>/<key>`, with
one extra key below an item per tag value. It talks to etcd through
`EtcdGatewayClient`, which uses the etcd HTTP/JSON gateway (`/v3/...`).
`StoreConfig.timeout` is a number of seconds; a value that is not an integer
falls back to 10. `subscribe` starts a background watch on `/<app_id>`;
`stop_subscribe` ends it and closes the channel.

## Distributed locks

```python
from layotto.lock import LockMetadata, TryLockRequest, UnlockRequest, LockStatus
from layotto.etcd_lock import EtcdLock

lock = EtcdLock()
lock.init(LockMetadata(properties={"endpoints": "localhost:2379", "dialTimeout": "5"}))

if lock.try_lock(TryLockRequest(resource_id="orders", lock_owner="worker-1", expire=10)).success:
    status = lock.unlock(UnlockRequest(resource_id="orders", lock_owner="worker-1")).status
    assert status is LockStatus.SUCCESS
lock.close()
```

`endpoints` is required and may list several addresses separated by `;`.
Metadata may also set `dialTimeout` (default 5), `keyPrefix` (default
`/layotto/`), `username`, `password` and the TLS paths `tlsCa`, `tlsCert` and
`tlsCertKey`. Invalid metadata raises `ValueError`; an unreachable etcd raises
`EtcdError`. `unlock` answers `SUCCESS`, `LOCK_UNEXIST` or
`LOCK_BELONG_TO_OTHERS`, and raises `EtcdError` when etcd fails.

## Health

`HealthIndicator.report()` returns a status and details: `INIT` before
start, `DOWN` with a `reason` after an error, and `UP` once started. Any
component's indicators can be registered with `set_components_actuators` and
looked up with `get_indicator_with_name(name)`; the Apollo indicators are
registered under `apollo`.

## What is not included

This package is a library of components. It has no command-line program, no
server that exposes the components to other processes, and no pub/sub, state
or RPC components. The only lock implementation is the etcd one, and Apollo
updates reach subscribers only when `HttpRepository.refresh()` is called:
there is no background polling of the config service.

## Running the tests

Install the `test` extra and run `pytest` from the project root.