import logging

from adaptive_handtracker.event_bus import EventBus, EventType


def test_publish_reaches_subscribers():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.PERFORMANCE, received.append)
    bus.publish(EventType.PERFORMANCE, {"fps": 30})
    bus.publish(EventType.ROI, "ignored")
    assert received == [{"fps": 30}]


def test_latest_value_per_key():
    bus = EventBus()
    bus.publish(EventType.LANDMARKS, "left-1", key=0)
    bus.publish(EventType.LANDMARKS, "right-1", key=1)
    bus.publish(EventType.LANDMARKS, "left-2", key=0)

    assert bus.latest(EventType.LANDMARKS, 0) == "left-2"
    assert bus.latest(EventType.LANDMARKS, 1) == "right-1"
    assert bus.latest(EventType.LANDMARKS) is None

    bus.discard(EventType.LANDMARKS, 1)
    assert bus.latest(EventType.LANDMARKS, 1) is None


def test_failing_listener_is_isolated(caplog):
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError("boom")

    bus.subscribe(EventType.LOG, broken)
    bus.subscribe(EventType.LOG, received.append)

    with caplog.at_level(logging.ERROR):
        bus.publish(EventType.LOG, "hello")

    assert received == ["hello"]
    assert "boom" in caplog.text


def test_unsubscribe():
    bus = EventBus()
    received = []
    sub = bus.subscribe(EventType.ROI, received.append)
    assert bus.listener_count(EventType.ROI) == 1

    sub.remove()
    bus.publish(EventType.ROI, 1)
    assert received == []
    assert bus.listener_count(EventType.ROI) == 0


def test_remove_all_listeners():
    bus = EventBus()
    bus.subscribe(EventType.ROI, lambda p: None)
    bus.subscribe(EventType.LOG, lambda p: None)

    bus.remove_all_listeners(EventType.ROI)
    assert bus.listener_count(EventType.ROI) == 0
    assert bus.listener_count(EventType.LOG) == 1

    bus.remove_all_listeners()
    assert bus.listener_count(EventType.LOG) == 0
