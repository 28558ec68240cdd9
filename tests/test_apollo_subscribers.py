import pytest

from layotto.apollo_common import ApolloConfigError
from layotto.apollo_subscribers import SubscriberHolder, SubscriberKey
from layotto.configstore import ResponseChannel


def test_subscriber_holder_crud():
    h = SubscriberHolder()
    ch = ResponseChannel()
    h.add_by_topic("application", "key1", ch)
    assert len(h) == 1
    topic = h.find_by_topic("application", "key1")
    assert len(topic) == 1
    assert topic[0].channel is ch
    assert topic[0].subscriber_key == SubscriberKey("application", "key1")
    assert topic[0].group == "application"

    ch2 = ResponseChannel()
    h.add_by_topic("application", "key2", ch2)
    topic = h.find_by_topic("application", "key2")
    assert len(topic) == 1
    assert topic[0].channel is ch2
    s = topic[0]

    h.remove(None)
    assert len(h.find_by_topic("application", "key2")) == 1

    h.remove(s)
    assert len(h.find_by_topic("application", "key2")) == 0

    s.subscriber_key = SubscriberKey("asdasddasda", "key2")
    h.remove(s)

    topic = h.find_by_topic("application", "key1")
    assert len(topic) == 1
    assert topic[0].channel is ch
    h.reset()
    assert len(h.find_by_topic("application", "key1")) == 0
    assert len(h) == 0


def test_find_when_key_not_exist_returns_empty():
    h = SubscriberHolder()
    h.add_by_topic("application", "key1", ResponseChannel())
    assert h.find_by_topic("application", "key2") == []


def test_add_with_no_channel_raises():
    h = SubscriberHolder()
    with pytest.raises(ApolloConfigError) as info:
        h.add_by_topic("application", "key1", None)
    assert str(info.value) != ""
    assert h.find_by_topic("application", "key1") == []


def test_remove_only_the_given_subscriber():
    h = SubscriberHolder()
    ch = ResponseChannel()
    first = h.add_by_topic("application", "key1", ch)
    second = h.add_by_topic("application", "key1", ch)
    h.remove(first)
    remaining = h.find_by_topic("application", "key1")
    assert len(remaining) == 1
    assert remaining[0] is second