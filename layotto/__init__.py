"""Runtime components: Apollo and etcd configuration stores, an etcd lock, health indicators and registries."""

__version__ = "0.1.0"