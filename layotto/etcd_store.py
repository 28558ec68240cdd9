"""Configuration store kept in etcd under /app/group/label/key[/tag]."""

from __future__ import annotations

import logging
import re
import threading
from typing import Optional, Sequence

import requests

from layotto.configstore import (
    ALL,
    GROUP,
    KEY,
    LABEL,
    TAG,
    ChannelClosedError,
    ConfigurationItem,
    DeleteRequest,
    GetRequest,
    ResponseChannel,
    SetRequest,
    Store,
    StoreConfig,
    SubscribeRequest,
    SubscribeResponse,
)
from layotto.etcd_gateway import EtcdError, EtcdGatewayClient, KeyValue, WatchEvent

logger = logging.getLogger(__name__)

STORE_NAME = "etcd"
DEFAULT_TIMEOUT = 10

_INTEGER = re.compile(r"[+-]?\d+")


def _parse_timeout(text: str) -> int:
    if _INTEGER.fullmatch(text):
        return int(text)
    logger.error(
        "wrong configuration for time out configuration: %s, set default value(10s)", text
    )
    return DEFAULT_TIMEOUT


def _item_path(app_id: str, group: str, label: str, key: str) -> str:
    return f"/{app_id}/{group}/{label}/{key}"


class EtcdConfigStore(Store):
    """Configuration items in etcd; tags are stored as extra keys below an item."""

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self._session = session
        self._client: Optional[EtcdGatewayClient] = None
        self._lock = threading.RLock()
        self._subscribe_keys: dict[str, str] = {}
        self._app_id_key = ""
        self._stop = threading.Event()
        self._watch_started = False
        self._channel = ResponseChannel()

    def default_group(self) -> str:
        return "default"

    def default_label(self) -> str:
        return "default"

    def init(self, config: StoreConfig) -> None:
        """Create the client; a timeout that is not an integer falls back to 10 seconds."""
        timeout = _parse_timeout(config.timeout)
        self._client = EtcdGatewayClient(config.address, timeout=timeout, session=self._session)

    def _require_client(self) -> EtcdGatewayClient:
        if self._client is None:
            raise RuntimeError("store is not initialised")
        return self._client

    def get_primary_key_without_tag(self, key: str) -> str:
        """Strip the tag part off a stored key."""
        if key.count("/") == TAG:
            return key
        cut = key.rfind("/")
        return key[:cut] if cut >= 0 else key

    def get_items_from_all_keys(
        self, kvs: Sequence[KeyValue], target: Sequence[str]
    ) -> list[ConfigurationItem]:
        """Collect the items matching ``target`` (app, group, label, key; "*" matches anything)."""
        result: list[ConfigurationItem] = []
        positions: dict[str, int] = {}
        for kv in kvs:
            parts = kv.key.split("/")[1:]
            if len(parts) < TAG:
                continue
            if not all(
                wanted in (part, ALL) for wanted, part in zip(target[:TAG], parts[:TAG])
            ):
                continue
            primary = self.get_primary_key_without_tag(kv.key)
            position = positions.get(primary)
            if position is None:
                positions[primary] = len(result)
                result.append(
                    ConfigurationItem(
                        group=parts[GROUP],
                        label=parts[LABEL],
                        key=parts[KEY],
                        content=kv.value,
                        tags={},
                    )
                )
            else:
                tags = result[position].tags
                if tags is not None:
                    tags[parts[TAG]] = kv.value
        return result

    def get(self, request: GetRequest) -> list[ConfigurationItem]:
        kvs = self._require_client().get_prefix(f"/{request.app_id}")
        target = [request.app_id, request.group, request.label, ALL]
        if not request.keys:
            return self.get_items_from_all_keys(kvs, target)
        result: list[ConfigurationItem] = []
        for key in request.keys:
            target[KEY] = key
            result.extend(self.get_items_from_all_keys(kvs, target))
        return result

    def set(self, request: SetRequest) -> None:
        client = self._require_client()
        for item in request.items:
            for key in self.parse_key(request.app_id, item):
                try:
                    client.put(key, item.content)
                except EtcdError as exc:
                    logger.error("set key[%s] failed with error: %s", key, exc)
                    raise

    def delete(self, request: DeleteRequest) -> None:
        client = self._require_client()
        for key in request.keys:
            path = _item_path(request.app_id, request.group, request.label, key)
            try:
                client.delete_prefix(path)
            except EtcdError as exc:
                logger.error("delete key[%s] failed with error: %s", key, exc)
                raise

    def subscribe(self, request: SubscribeRequest, channel: ResponseChannel) -> None:
        client = self._require_client()
        with self._lock:
            self._app_id_key = request.app_id
            self._channel = channel
            for key in request.keys:
                path = _item_path(request.app_id, request.group, request.label, key)
                self._subscribe_keys[path] = key
            if self._watch_started:
                return
            self._stop = threading.Event()
            thread = threading.Thread(
                target=self._watch,
                args=(client, request.app_id, self._stop),
                daemon=True,
            )
            self._watch_started = True
        thread.start()

    def stop_subscribe(self) -> None:
        with self._lock:
            if not self._watch_started:
                return
            self._watch_started = False
            self._stop.set()
            channel = self._channel
        try:
            channel.close()
        except ChannelClosedError:
            pass

    def parse_key(self, app_id: str, item: ConfigurationItem) -> list[str]:
        """Return the key of an item followed by one key per tag value."""
        base = _item_path(app_id, item.group, item.label, item.key)
        tags = item.tags or {}
        return [base, *(f"{base}/{tag}" for tag in tags.values())]

    def _watch(self, client: EtcdGatewayClient, app_id: str, stop: threading.Event) -> None:
        try:
            for events in client.watch_prefix(f"/{app_id}", stop):
                self._process_watch_events(events)
        except EtcdError as exc:
            logger.error("watch on /%s ended: %s", app_id, exc)

    def _process_watch_events(self, events: list[WatchEvent]) -> None:
        if not events:
            return
        with self._lock:
            if not self._watch_started:
                return
            channel = self._channel
            app_id = self._app_id_key
            items = []
            for event in events:
                key = self._subscribe_keys.get(event.kv.key)
                if key is None:
                    continue
                parts = event.kv.key.split("/")[1:]
                items.append(
                    ConfigurationItem(
                        group=parts[GROUP],
                        label=parts[LABEL],
                        key=key,
                        content=event.kv.value,
                    )
                )
        response = SubscribeResponse(store_name=STORE_NAME, app_id=app_id, items=items)
        try:
            channel.send(response)
        except ChannelClosedError:
            logger.debug("subscription channel closed, dropping update")