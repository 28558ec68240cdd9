"""Bookkeeping of the channels subscribed to Apollo namespaces and keys."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from layotto.apollo_common import params_missing_field
from layotto.configstore import ResponseChannel


@dataclass(frozen=True)
class SubscriberKey:
    """A topic: a namespace, and a key with label or "" for the whole namespace."""

    group: str
    key_with_label: str


@dataclass(eq=False)
class Subscriber:
    """A channel subscribed to one topic."""

    channel: ResponseChannel
    group: str
    subscriber_key: Optional[SubscriberKey] = None


class SubscriberHolder:
    """Holds subscribers grouped by topic."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._subscribers: dict[SubscriberKey, list[Subscriber]] = {}

    def find_by_topic(self, namespace: str, key_with_label: str) -> list[Subscriber]:
        """Return the subscribers of a topic."""
        with self._lock:
            return list(self._subscribers.get(SubscriberKey(namespace, key_with_label), ()))

    def add_by_topic(
        self, namespace: str, key_with_label: str, channel: ResponseChannel
    ) -> Subscriber:
        """Subscribe ``channel`` to a topic and return the new subscriber."""
        if channel is None:
            raise params_missing_field("respChan")
        key = SubscriberKey(namespace, key_with_label)
        subscriber = Subscriber(channel=channel, group=namespace, subscriber_key=key)
        with self._lock:
            self._subscribers.setdefault(key, []).append(subscriber)
        return subscriber

    def remove(self, subscriber: Optional[Subscriber]) -> None:
        """Remove a subscriber; unknown subscribers are ignored."""
        if subscriber is None or subscriber.subscriber_key is None:
            return
        with self._lock:
            subscribers = self._subscribers.get(subscriber.subscriber_key)
            if subscribers is None:
                return
            for position, candidate in enumerate(subscribers):
                if candidate is subscriber:
                    del subscribers[position]
                    return

    def reset(self) -> None:
        """Forget every subscriber."""
        with self._lock:
            self._subscribers = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)