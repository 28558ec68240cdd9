"""Access to the configuration held by an Apollo config service."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

import requests

from layotto.apollo_common import DEFAULT_IS_BACKUP_CONFIG, DEFAULT_NAMESPACE
from layotto.apollo_listener import ChangeEvent, ChangeListener, ChangeType, ConfigChange

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER = "default"


@dataclass
class RepoConfig:
    """Where and how to read the configuration of one application."""

    addr: str = ""
    app_id: str = ""
    env: str = ""
    cluster: str = ""
    namespace_name: str = ""
    is_backup_config: bool = DEFAULT_IS_BACKUP_CONFIG
    secret: str = ""


class Repository(ABC):
    """A source of configuration items grouped by namespace."""

    @abstractmethod
    def set_config(self, config: RepoConfig) -> None:
        """Set where to read from."""

    @abstractmethod
    def get_config(self) -> Optional[RepoConfig]:
        """Return the configuration that was set."""

    @abstractmethod
    def connect(self) -> None:
        """Load the configured namespaces."""

    @abstractmethod
    def add_change_listener(self, listener: ChangeListener) -> None:
        """Have ``listener`` told about changes."""

    @abstractmethod
    def get(self, namespace: str, key: str) -> Any:
        """Return the value of a key; raise LookupError if there is none."""

    @abstractmethod
    def items(self, namespace: str) -> list[tuple[str, Any]]:
        """Return every (key, value) of a namespace."""


class HttpRepository(Repository):
    """Reads configuration from the config service over HTTP.

    When ``backup_dir`` is given and the config asks for backups, fetched
    namespaces are saved there and used when the service cannot be reached.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        backup_dir: Optional[str | Path] = None,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout
        self._backup_dir = Path(backup_dir) if backup_dir is not None else None
        self._config: Optional[RepoConfig] = None
        self._cache: dict[str, dict[str, Any]] = {}
        self._listeners: list[ChangeListener] = []
        self._lock = threading.RLock()

    def set_config(self, config: RepoConfig) -> None:
        self._config = config

    def get_config(self) -> Optional[RepoConfig]:
        return self._config

    def connect(self) -> None:
        loaded = {namespace: self._load(namespace) for namespace in self._namespaces()}
        with self._lock:
            self._cache = loaded

    def refresh(self) -> list[ChangeEvent]:
        """Fetch every namespace again and tell listeners what changed."""
        events = []
        for namespace in self._namespaces():
            fresh = self._load(namespace)
            with self._lock:
                old = self._cache.get(namespace, {})
                self._cache[namespace] = fresh
            changes = _diff(old, fresh)
            if changes:
                events.append(ChangeEvent(namespace=namespace, changes=changes))
        with self._lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                listener.on_change(event)
        return events

    def add_change_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def get(self, namespace: str, key: str) -> Any:
        values = self._namespace_cache(namespace)
        try:
            return values[key]
        except KeyError:
            raise LookupError(f"no value for key:{key}") from None

    def items(self, namespace: str) -> list[tuple[str, Any]]:
        return list(self._namespace_cache(namespace).items())

    def _namespace_cache(self, namespace: str) -> dict[str, Any]:
        with self._lock:
            values = self._cache.get(namespace)
        if values is None:
            raise LookupError(f"no cache for namespace:{namespace}")
        return values

    def _require_config(self) -> RepoConfig:
        if self._config is None:
            raise ValueError("repository has no config")
        return self._config

    def _namespaces(self) -> list[str]:
        config = self._require_config()
        names = [name.strip() for name in config.namespace_name.split(",")]
        return [name for name in names if name] or [DEFAULT_NAMESPACE]

    def _load(self, namespace: str) -> dict[str, Any]:
        config = self._require_config()
        backup = self._backup_path(namespace)
        try:
            values = self._fetch(namespace)
        except requests.RequestException:
            if backup is not None and backup.exists():
                logger.warning("using backup of namespace %s", namespace)
                return json.loads(backup.read_text(encoding="utf-8"))
            raise
        if backup is not None and config.is_backup_config:
            backup.parent.mkdir(parents=True, exist_ok=True)
            backup.write_text(json.dumps(values), encoding="utf-8")
        return values

    def _backup_path(self, namespace: str) -> Optional[Path]:
        if self._backup_dir is None:
            return None
        return self._backup_dir / f"{namespace}.json"

    def _fetch(self, namespace: str) -> dict[str, Any]:
        config = self._require_config()
        addr = config.addr.rstrip("/")
        if "://" not in addr:
            addr = f"http://{addr}"
        cluster = config.cluster or DEFAULT_CLUSTER
        url = f"{addr}/configs/{config.app_id}/{cluster}/{namespace}"
        headers = _signature_headers(url, config.app_id, config.secret) if config.secret else {}
        response = self._session.get(url, headers=headers, timeout=self._timeout)
        response.raise_for_status()
        configurations = response.json().get("configurations") or {}
        return {str(key): value for key, value in configurations.items()}


def _signature_headers(url: str, app_id: str, secret: str) -> dict[str, str]:
    timestamp = str(int(time.time() * 1000))
    parts = urlsplit(url)
    path = f"{parts.path}?{parts.query}" if parts.query else parts.path
    digest = hmac.new(
        secret.encode(), f"{timestamp}\n{path}".encode(), hashlib.sha1
    ).digest()
    signature = base64.b64encode(digest).decode()
    return {"Authorization": f"Apollo {app_id}:{signature}", "Timestamp": timestamp}


def _diff(old: dict[str, Any], new: dict[str, Any]) -> dict[str, ConfigChange]:
    changes: dict[str, ConfigChange] = {}
    for key, value in new.items():
        if key not in old:
            changes[key] = ConfigChange(new_value=value, change_type=ChangeType.ADDED)
        elif old[key] != value:
            changes[key] = ConfigChange(
                old_value=old[key], new_value=value, change_type=ChangeType.MODIFIED
            )
    for key, value in old.items():
        if key not in new:
            changes[key] = ConfigChange(old_value=value, change_type=ChangeType.DELETED)
    return changes