import threading

import pytest

from layotto.apollo_listener import (
    ChangeEvent,
    ChangeListener,
    ChangeType,
    ConfigChange,
    RepoForListener,
)
from layotto.configstore import ChannelClosedError, ResponseChannel

TEST_APP_ID = "test_app"
NS = "application"


class MockRepo(RepoForListener):
    def split_key(self, key_with_label):
        parts = key_with_label.split("@$")
        return parts[0], parts[1] if len(parts) > 1 else ""

    def get_all_tags(self, group, key_with_label):
        return None

    def app_id(self):
        return TEST_APP_ID


class FailingTagsRepo(MockRepo):
    def get_all_tags(self, group, key_with_label):
        raise RuntimeError("tags unavailable")


def _event(key, change):
    return ChangeEvent(namespace=NS, changes={key: change})


def _modified():
    return ConfigChange(old_value="v1", new_value="v2", change_type=ChangeType.MODIFIED)


def _receive_in_background(channel, received):
    def consume():
        try:
            received.append(channel.receive(timeout=2))
        except (TimeoutError, ChannelClosedError) as exc:
            received.append(exc)

    thread = threading.Thread(target=consume)
    thread.start()
    return thread


def test_on_change_modified():
    lis = ChangeListener(MockRepo())
    ch = ResponseChannel()
    lis.add_by_topic(NS, "key1", ch)
    received = []
    thread = _receive_in_background(ch, received)
    lis.on_change(_event("key1", _modified()))
    thread.join(3)
    lis.reset()
    assert lis.subscribers.find_by_topic(NS, "key1") == []
    assert len(lis.subscribers) == 0

    resp = received[0]
    assert resp.store_name == "apollo"
    assert resp.app_id == TEST_APP_ID
    assert len(resp.items) == 1
    assert resp.items[0].key == "key1"
    assert resp.items[0].content == "v2"


def test_timeout_closes_channel_and_removes_subscriber():
    lis = ChangeListener(MockRepo(), timeout=0.05)
    ch = ResponseChannel()
    lis.add_by_topic(NS, "key1", ch)
    lis.on_change(_event("key1", _modified()))
    with pytest.raises(ChannelClosedError):
        ch.receive(timeout=1)
    assert lis.subscribers.find_by_topic(NS, "key1") == []


def test_write_to_closed_channel_removes_subscriber():
    lis = ChangeListener(MockRepo())
    ch = ResponseChannel()
    lis.add_by_topic(NS, "key1", ch)
    ch.close()
    lis.on_change(_event("key1", _modified()))
    assert lis.subscribers.find_by_topic(NS, "key1") == []


def test_group_level_subscriber_gets_deleted_item_with_label():
    lis = ChangeListener(MockRepo())
    ch = ResponseChannel()
    lis.add_by_topic(NS, "", ch)
    received = []
    thread = _receive_in_background(ch, received)
    change = ConfigChange(old_value="v1", change_type=ChangeType.DELETED)
    lis.on_change(_event("key1@$blue", change))
    thread.join(3)
    item = received[0].items[0]
    assert (item.key, item.label, item.group) == ("key1", "blue", NS)
    assert item.content == ""
    assert item.tags is None


def test_tag_errors_are_ignored():
    lis = ChangeListener(FailingTagsRepo())
    ch = ResponseChannel()
    lis.add_by_topic(NS, "key1", ch)
    thread = threading.Thread(target=lis.on_change, args=(_event("key1", _modified()),))
    thread.start()
    resp = ch.receive(timeout=2)
    thread.join(3)
    assert resp.items[0].content == "v2"
    assert resp.items[0].tags is None
    assert len(lis.subscribers.find_by_topic(NS, "key1")) == 1


def test_other_namespace_is_not_notified():
    lis = ChangeListener(MockRepo(), timeout=0.05)
    ch = ResponseChannel()
    lis.add_by_topic("other", "key1", ch)
    lis.on_change(_event("key1", _modified()))
    with pytest.raises(TimeoutError):
        ch.receive(timeout=0.05)
    assert len(lis.subscribers.find_by_topic("other", "key1")) == 1


def test_on_newest_change_sends_nothing():
    lis = ChangeListener(MockRepo())
    ch = ResponseChannel()
    lis.add_by_topic(NS, "", ch)
    lis.on_newest_change(object())
    with pytest.raises(TimeoutError):
        ch.receive(timeout=0.05)