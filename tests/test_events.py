"""
Unit tests for the typed event channels.
"""

import threading

import pytest

from livesession.core.events import EVENT_CHANNELS, Channel, Event, EventHub, EventType


@pytest.fixture
def hub():
    return EventHub()


def test_every_event_type_has_a_channel():
    assert set(EVENT_CHANNELS) == set(EventType)


def test_channel_subscriber_receives_only_its_channel(hub):
    received = []
    hub.subscribe(Channel.CONTENT, received.append)

    hub.emit(EventType.TEXT, "hello")
    hub.emit(EventType.ERROR, RuntimeError("x"))
    hub.emit(EventType.TURN_COMPLETE)

    assert [e.type for e in received] == [EventType.TEXT, EventType.TURN_COMPLETE]
    assert received[0].payload == "hello"
    assert received[0].channel is Channel.CONTENT


def test_multiple_subscribers(hub):
    first, second = [], []
    hub.subscribe(Channel.TOOL, first.append)
    hub.subscribe(Channel.TOOL, second.append)
    hub.emit(EventType.TOOL_CALL_CANCELLATION, "call-1")
    assert len(first) == 1
    assert len(second) == 1
    assert hub.subscriber_count(Channel.TOOL) == 2


def test_type_subscriber(hub):
    received = []
    hub.on(EventType.DISCONNECTED, received.append)
    hub.emit(EventType.CONNECTED)
    hub.emit(EventType.DISCONNECTED, "user requested")
    assert [e.payload for e in received] == ["user requested"]


def test_unsubscribe(hub):
    received = []
    remove = hub.subscribe(Channel.AUDIO, received.append)
    remove_type = hub.on(EventType.PLAYBACK_STARTED, received.append)
    remove()
    remove_type()
    remove()  # second removal is harmless
    hub.emit(EventType.PLAYBACK_STARTED)
    assert received == []


def test_unsubscribe_by_channel(hub):
    received = []
    hub.subscribe(Channel.DIAGNOSTIC, received.append)
    hub.unsubscribe(Channel.DIAGNOSTIC, received.append)
    hub.emit(EventType.GO_AWAY)
    assert received == []


def test_failing_subscriber_isolated(hub):
    received = []

    def broken(event):
        raise RuntimeError("subscriber bug")

    hub.subscribe(Channel.CONNECTION, broken)
    hub.subscribe(Channel.CONNECTION, received.append)
    hub.emit(EventType.CONNECTED)

    assert len(received) == 1
    assert hub.get_stats()["subscriber_errors"] == 1


def test_subscribe_during_dispatch(hub):
    late = []

    def subscribe_more(event):
        hub.subscribe(Channel.CONTENT, late.append)

    hub.subscribe(Channel.CONTENT, subscribe_more)
    hub.emit(EventType.TEXT, "first")
    assert late == []  # added after the snapshot was taken
    hub.emit(EventType.TEXT, "second")
    assert [e.payload for e in late] == ["second"]


def test_publish_from_another_thread(hub):
    received = []
    hub.subscribe(Channel.AUDIO, received.append)
    thread = threading.Thread(target=hub.emit, args=(EventType.PLAYBACK_COMPLETED,))
    thread.start()
    thread.join()
    assert [e.type for e in received] == [EventType.PLAYBACK_COMPLETED]


def test_published_counts(hub):
    hub.publish(Event(type=EventType.TEXT, payload="a"))
    hub.emit(EventType.TOOL_CALL)
    stats = hub.get_stats()
    assert stats["published"]["content"] == 1
    assert stats["published"]["tool"] == 1
    assert stats["published"]["audio"] == 0
