"""
Publish/subscribe channel from the pipeline to its consumers.

Every event type behaves as "latest value wins": the bus remembers the last
payload per type (and per key, e.g. hand slot or region id) so a consumer
that subscribes late or polls can read the current state.
"""

import itertools
import threading
from enum import Enum
from typing import Any, Callable, Hashable, Optional

from .logger import get_logger

logger = get_logger("EventBus")

EventCallback = Callable[[Any], None]


class EventType(Enum):
    """Events published by the pipeline."""
    LANDMARKS = "landmarks"
    ROI = "roi"
    REGION_TRACKING = "region-tracking"
    PERFORMANCE = "performance"
    PIPELINE_STATUS = "pipeline-status"
    LOG = "log"


class Subscription:
    """Handle returned by EventBus.subscribe()."""

    def __init__(self, bus: "EventBus", event_type: EventType, listener_id: int):
        self._bus = bus
        self.event_type = event_type
        self.listener_id = listener_id

    def remove(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """
    Dispatches events synchronously to listeners.

    A failing listener is logged and skipped; it never affects the
    publisher or the other listeners.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: dict[EventType, dict[int, EventCallback]] = {t: {} for t in EventType}
        self._latest: dict[tuple[EventType, Optional[Hashable]], Any] = {}
        self._ids = itertools.count(1)

    def subscribe(self, event_type: EventType, callback: EventCallback) -> Subscription:
        with self._lock:
            listener_id = next(self._ids)
            self._listeners[event_type][listener_id] = callback
        return Subscription(self, event_type, listener_id)

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._listeners[subscription.event_type].pop(subscription.listener_id, None)

    def remove_all_listeners(self, event_type: Optional[EventType] = None) -> None:
        with self._lock:
            types = [event_type] if event_type else list(EventType)
            for t in types:
                self._listeners[t].clear()

    def publish(self, event_type: EventType, payload: Any, key: Optional[Hashable] = None) -> None:
        """
        Store the payload as the latest value and deliver it to listeners.

        Args:
            event_type: Kind of event.
            payload: Event data, treated as immutable by consumers.
            key: Optional sub-key (hand slot, region id) for latest-value lookup.
        """
        with self._lock:
            self._latest[(event_type, key)] = payload
            callbacks = list(self._listeners[event_type].values())

        for callback in callbacks:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Error in event listener for {event_type.value}: {e}", exc_info=True)

    def latest(self, event_type: EventType, key: Optional[Hashable] = None) -> Any:
        """Most recent payload for an event type and key, or None."""
        with self._lock:
            return self._latest.get((event_type, key))

    def discard(self, event_type: EventType, key: Optional[Hashable] = None) -> None:
        """Forget the latest value (e.g. when a hand slot or region goes away)."""
        with self._lock:
            self._latest.pop((event_type, key), None)

    def listener_count(self, event_type: EventType) -> int:
        with self._lock:
            return len(self._listeners[event_type])
