import logging
import queue
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class Event:
    """Plain listener list; a failing listener is logged and skipped."""

    def __init__(self):
        self._listeners = []

    def add_listener(self, listener):
        if not callable(listener):
            raise ValueError("Listener must be callable")
        self._listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, *args, **kwargs):
        for listener in list(self._listeners):
            try:
                listener(*args, **kwargs)
            except Exception:
                logger.exception("Error in event listener")


# ── Timer change notifications ────────────────────────────────────────────────

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    kind: str
    user_id: str
    timer_id: str


class Subscription:
    """A feed subscription with its own message channel.

    Published events wait on the channel until :meth:`dispatch` is called by
    the owner, so delivery always happens on the owner's thread of control.
    """

    def __init__(self, predicate, callback):
        self.predicate = predicate
        self.callback = callback
        self.active = True
        self._channel = queue.SimpleQueue()

    def offer(self, event: ChangeEvent) -> bool:
        if not self.active or not self.predicate(event):
            return False
        self._channel.put(event)
        return True

    def drain(self) -> list:
        events = []
        while True:
            try:
                events.append(self._channel.get_nowait())
            except queue.Empty:
                return events

    def dispatch(self) -> int:
        """Deliver pending events to the callback as one batch; returns the batch size."""
        events = self.drain()
        if events and self.active:
            self.callback(events)
        return len(events) if self.active else 0

    def close(self):
        self.active = False
        self.drain()


class ChangeFeed:
    """In-process publish/subscribe hub for timer row changes."""

    def __init__(self):
        self._subscriptions = []
        self._lock = threading.Lock()

    def subscribe(self, predicate, callback) -> Subscription:
        subscription = Subscription(predicate, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscription.close()
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> int:
        with self._lock:
            targets = list(self._subscriptions)
        delivered = sum(1 for s in targets if s.offer(event))
        logger.debug("Published %s for timer %s to %d subscriber(s)", event.kind, event.timer_id, delivered)
        return delivered

    def __len__(self):
        with self._lock:
            return len(self._subscriptions)
