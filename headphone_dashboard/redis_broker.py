"""Redis pub/sub broker adapter built on top of redis-py.

Design:
- Two connections: a publisher client and a dedicated subscriber `PubSub`
  connection, so outbound publishes never queue behind inbound deliveries.
- The subscriber connection is serviced by redis-py's worker thread, started
  on the first `subscribe()`. Callbacks run on that thread. If the worker dies
  on a connection error, the next `subscribe()` opens a fresh PubSub, renews
  every registered channel and starts a new worker.
- Every channel is registered with the same internal handler, which routes by
  channel name through the local topic -> callback registry. Removing a topic
  from the registry stops delivery immediately, even before Redis confirms
  the UNSUBSCRIBE.

Delivery semantics:
- Redis pub/sub is fire-and-forget (at-most-once). A message published while
  no connection is subscribed to the channel is lost, and so is anything in
  flight when the subscriber connection drops.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import redis
from redis.exceptions import RedisError

from .broker import MessageCallback
from .errors import BackendOperationFailure, ConnectionFailure, NotConnected

_LOGGER = logging.getLogger(__name__)

BACKEND = "redis"


class RedisBroker:
    """Broker contract over Redis PUBLISH/SUBSCRIBE."""

    def __init__(
        self,
        *,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        connect_timeout: float = 5.0,
        operation_timeout: float = 5.0,
        poll_interval: float = 0.1,
    ) -> None:
        if operation_timeout <= 0:
            raise ValueError("operation_timeout must be > 0")

        self.host = host
        self.port = port
        self.db = db
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout
        self.poll_interval = poll_interval

        self._publisher: redis.Redis | None = None
        self._subscriber: redis.Redis | None = None
        self._pubsub: Any = None
        self._worker: Any = None
        self._connected = False

        self._subscriptions: dict[str, MessageCallback] = {}
        self._lock = threading.Lock()
        # Guards _pubsub and _worker.
        self._worker_lock = threading.Lock()

    @property
    def url(self) -> str:
        return f"redis://{self.host}:{self.port}/{self.db}"

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        if self._connected:
            return

        publisher = self._new_client()
        subscriber = self._new_client()
        try:
            publisher.ping()
            subscriber.ping()
        except RedisError as e:
            _close_quietly(publisher)
            _close_quietly(subscriber)
            raise ConnectionFailure(f"Failed to connect to Redis at {self.url}: {e}", backend=BACKEND) from e

        self._publisher = publisher
        self._subscriber = subscriber
        self._pubsub = subscriber.pubsub(ignore_subscribe_messages=True)
        self._connected = True
        _LOGGER.info("Connected to Redis broker at %s", self.url)

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False

        with self._lock:
            self._subscriptions.clear()

        with self._worker_lock:
            worker, pubsub = self._worker, self._pubsub
            self._worker = self._pubsub = None
        publisher, subscriber = self._publisher, self._subscriber
        self._publisher = self._subscriber = None

        try:
            if worker is not None:
                worker.stop()
                if worker is not threading.current_thread():
                    worker.join(timeout=1.0)
            if pubsub is not None:
                pubsub.close()
        except RedisError:
            _LOGGER.warning("Error while closing Redis subscriber connection", exc_info=True)
        finally:
            _close_quietly(publisher)
            _close_quietly(subscriber)
        _LOGGER.info("Disconnected from Redis broker at %s", self.url)

    def publish(self, topic: str, payload: str) -> None:
        publisher = self._publisher
        if not self._connected or publisher is None:
            raise NotConnected("Redis broker not connected", backend=BACKEND)
        try:
            receivers = publisher.publish(topic, payload)
        except RedisError as e:
            raise BackendOperationFailure(f"Redis publish to {topic} failed: {e}", backend=BACKEND) from e
        if not receivers:
            _LOGGER.debug("No subscriber on %s, message dropped by Redis", topic)

    def subscribe(self, topic: str, callback: MessageCallback) -> None:
        self._require_connected()

        with self._lock:
            previous = self._subscriptions.get(topic)
            self._subscriptions[topic] = callback

        try:
            # An already subscribed channel only changes its local slot.
            self._listen(topic, new=previous is None)
        except RedisError as e:
            self._restore(topic, previous)
            raise BackendOperationFailure(f"Redis subscribe to {topic} failed: {e}", backend=BACKEND) from e

    def unsubscribe(self, topic: str) -> None:
        self._require_connected()

        with self._lock:
            known = self._subscriptions.pop(topic, None) is not None
        if not known:
            return

        with self._worker_lock:
            pubsub = self._pubsub
        if pubsub is None:
            # The listener connection died and took the server-side subscription with it.
            return
        try:
            pubsub.unsubscribe(topic)
        except RedisError as e:
            raise BackendOperationFailure(f"Redis unsubscribe from {topic} failed: {e}", backend=BACKEND) from e

    # -------------------- internal helpers --------------------

    def _new_client(self) -> redis.Redis:
        return redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            socket_connect_timeout=self.connect_timeout,
            socket_timeout=self.operation_timeout,
            decode_responses=True,
        )

    def _listen(self, topic: str, *, new: bool) -> None:
        with self._worker_lock:
            if self._pubsub is None:
                # The previous worker died and closed its connection: start over
                # and renew every registered channel.
                pubsub = self._subscriber.pubsub(ignore_subscribe_messages=True)
                with self._lock:
                    topics = list(self._subscriptions)
                try:
                    if topics:
                        pubsub.subscribe(**{t: self._on_message for t in topics})
                except RedisError:
                    _close_quietly(pubsub)
                    raise
                self._pubsub = pubsub
                _LOGGER.info("Renewed %d Redis subscriptions on a new connection", len(topics))
            elif new:
                self._pubsub.subscribe(**{topic: self._on_message})

            if self._worker is None:
                self._worker = self._pubsub.run_in_thread(
                    sleep_time=self.poll_interval,
                    daemon=True,
                    exception_handler=self._on_worker_error,
                )

    def _restore(self, topic: str, previous: MessageCallback | None) -> None:
        with self._lock:
            if previous is None:
                self._subscriptions.pop(topic, None)
            else:
                self._subscriptions[topic] = previous

    def _require_connected(self) -> None:
        if not self._connected:
            raise NotConnected("Redis broker not connected", backend=BACKEND)

    def _on_message(self, message: dict[str, Any]) -> None:
        channel = message.get("channel")
        data = message.get("data")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8", errors="replace")
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")

        with self._lock:
            callback = self._subscriptions.get(str(channel))
        if callback is None:
            return

        try:
            callback(str(data))
        except Exception:
            _LOGGER.exception("Subscriber callback for %s failed", channel)

    def _on_worker_error(self, exc: BaseException, pubsub: Any, worker: Any) -> None:
        _LOGGER.error("Redis subscriber connection failed, delivery paused until the next subscribe: %s", exc)
        worker.stop()
        # The worker closes its PubSub on the way out; both are rebuilt by _listen.
        with self._worker_lock:
            if self._worker is worker:
                self._worker = None
                self._pubsub = None


def _close_quietly(client: Any) -> None:
    if client is None:
        return
    try:
        client.close()
    except RedisError:
        _LOGGER.debug("Ignoring error while closing Redis client", exc_info=True)
