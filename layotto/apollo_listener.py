"""Forwards Apollo configuration changes to subscribed channels."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import chain
from typing import Any, Optional

from layotto.apollo_common import DEFAULT_TIMEOUT_WHEN_RESPONSE, STORE_NAME
from layotto.apollo_subscribers import Subscriber, SubscriberHolder
from layotto.configstore import (
    ChannelClosedError,
    ConfigurationItem,
    ResponseChannel,
    SubscribeResponse,
)

logger = logging.getLogger(__name__)


class ChangeType(IntEnum):
    """Kind of change made to a configuration item."""

    ADDED = 0
    MODIFIED = 1
    DELETED = 2


@dataclass
class ConfigChange:
    """The old and new value of a changed configuration item."""

    old_value: Any = None
    new_value: Any = None
    change_type: ChangeType = ChangeType.MODIFIED


@dataclass
class ChangeEvent:
    """Changes made to items of one namespace, keyed by key with label."""

    namespace: str = ""
    changes: dict[str, ConfigChange] = field(default_factory=dict)


class RepoForListener(ABC):
    """What the listener needs from the store."""

    @abstractmethod
    def split_key(self, key_with_label: str) -> tuple[str, str]:
        """Split a stored key into its key and label."""

    @abstractmethod
    def get_all_tags(self, group: str, key_with_label: str) -> Optional[dict[str, str]]:
        """Return the tags of an item."""

    @abstractmethod
    def app_id(self) -> str:
        """Return the application id of the store."""


class ChangeListener:
    """Sends a response to every subscriber of a changed item.

    A subscriber that does not take a response within ``timeout`` seconds
    is removed and its channel is closed.
    """

    def __init__(
        self,
        store: RepoForListener,
        timeout: float = DEFAULT_TIMEOUT_WHEN_RESPONSE / 1000,
    ) -> None:
        self.subscribers = SubscriberHolder()
        self.timeout = timeout
        self._store = store

    def on_change(self, event: ChangeEvent) -> None:
        namespace = event.namespace
        group_level = self.subscribers.find_by_topic(namespace, "")
        for key, change in event.changes.items():
            key_level = self.subscribers.find_by_topic(namespace, key)
            for subscriber in chain(group_level, key_level):
                self._notify(subscriber, key, change)

    def on_newest_change(self, event: Any) -> None:
        """Ignore full snapshots; subscribers are notified through on_change."""

    def add_by_topic(
        self, namespace: str, key_with_label: str, channel: ResponseChannel
    ) -> Subscriber:
        return self.subscribers.add_by_topic(namespace, key_with_label, channel)

    def reset(self) -> None:
        self.subscribers.reset()

    def _notify(
        self,
        subscriber: Optional[Subscriber],
        key_with_label: str,
        change: Optional[ConfigChange],
    ) -> None:
        if subscriber is None or subscriber.channel is None or change is None:
            return
        key, label = self._store.split_key(key_with_label)
        item = ConfigurationItem(key=key, label=label, group=subscriber.group)
        if change.change_type is not ChangeType.DELETED:
            item.content = "" if change.new_value is None else str(change.new_value)
            try:
                item.tags = self._store.get_all_tags(subscriber.group, key_with_label)
            except Exception as exc:  # tags are optional; log and go on
                logger.error("Error when querying tags in change_listener: %s", exc)
        response = SubscribeResponse(
            store_name=STORE_NAME, app_id=self._store.app_id(), items=[item]
        )
        try:
            if subscriber.channel.send(response, self.timeout):
                return
            self.subscribers.remove(subscriber)
            subscriber.channel.close()
        except ChannelClosedError as exc:
            logger.error("failed to notify subscriber: %s", exc)
            self.subscribers.remove(subscriber)