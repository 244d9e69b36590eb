"""In-process broker.

Delivery semantics:
- Asynchronous: `publish()` only enqueues; a background dispatcher thread
  invokes the callback, never the publisher's own thread.
- At-most-once, no retry: a message published to a topic with no subscriber
  is dropped immediately, and a message whose topic is unsubscribed before
  the dispatcher reaches it is dropped too.
- FIFO: one queue and one dispatcher, so messages are delivered in publish
  order.
- `disconnect()` discards anything still queued.
"""

from __future__ import annotations

import logging
import queue
import threading

from .broker import MessageCallback
from .errors import NotConnected

_LOGGER = logging.getLogger(__name__)

BACKEND = "memory"

# Put on the queue by disconnect() to stop the dispatcher.
_STOP = object()


class MemoryBroker:
    """Topic -> single callback registry with a deferred dispatcher thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, MessageCallback] = {}
        self._connected = False

        self._inbox: "queue.Queue[object] | None" = None
        self._dispatcher: threading.Thread | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        with self._lock:
            if self._connected:
                return
            inbox: "queue.Queue[object]" = queue.Queue()
            dispatcher = threading.Thread(
                target=self._dispatch_loop,
                args=(inbox,),
                name="memory-broker-dispatch",
                daemon=True,
            )
            dispatcher.start()
            self._inbox = inbox
            self._dispatcher = dispatcher
            self._connected = True
        _LOGGER.info("Connected to in-memory broker")

    def disconnect(self) -> None:
        with self._lock:
            if not self._connected:
                return
            self._connected = False
            self._subscriptions.clear()
            inbox, dispatcher = self._inbox, self._dispatcher
            self._inbox = None
            self._dispatcher = None

        if inbox is not None:
            inbox.put(_STOP)
        if dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join(timeout=1.0)
        _LOGGER.info("Disconnected from in-memory broker")

    def publish(self, topic: str, payload: str) -> None:
        with self._lock:
            self._require_connected()
            if topic not in self._subscriptions:
                _LOGGER.debug("No subscriber on %s, dropping message", topic)
                return
            inbox = self._inbox
            if inbox is None:
                raise NotConnected("in-memory broker not connected", backend=BACKEND)
        inbox.put((topic, payload))

    def subscribe(self, topic: str, callback: MessageCallback) -> None:
        with self._lock:
            self._require_connected()
            self._subscriptions[topic] = callback

    def unsubscribe(self, topic: str) -> None:
        with self._lock:
            self._require_connected()
            self._subscriptions.pop(topic, None)

    # -------------------- internal --------------------

    def _require_connected(self) -> None:
        if not self._connected:
            raise NotConnected("in-memory broker not connected", backend=BACKEND)

    def _dispatch_loop(self, inbox: "queue.Queue[object]") -> None:
        while True:
            item = inbox.get()
            if item is _STOP:
                return
            topic, payload = item  # type: ignore[misc]

            # Look the callback up at delivery time so unsubscribe wins over
            # messages that are still queued.
            with self._lock:
                callback = self._subscriptions.get(topic) if self._inbox is inbox else None
            if callback is None:
                continue

            try:
                callback(payload)
            except Exception:
                _LOGGER.exception("Subscriber callback for %s failed", topic)
