"""MQTT broker adapter built on top of paho-mqtt.

Why this exists:
- paho-mqtt is callback-based and delivers every topic through one
  `on_message` stream.
- The generator and dashboard want the plain five-method broker contract.

Design:
- `connect()` opens the socket, starts paho's background network loop and
  blocks until CONNACK (bounded by `connect_timeout`).
- `subscribe()`/`unsubscribe()` block until the server's SUBACK/UNSUBACK and
  QoS >= 1 `publish()` blocks until the message is acknowledged, each bounded
  by `operation_timeout`. The acknowledgement is correlated by packet `mid`,
  the same way a request is matched to its response by `corr_id`.
- One `on_message` listener routes each message to the single callback whose
  topic filter matches it (MQTT `+`/`#` wildcards are honoured).
- Callbacks run on paho's network thread.

Delivery semantics:
- QoS 1 by default: at-least-once, so a callback may see duplicates.
- Sessions are clean, so the MQTT server does not keep messages for a
  subscriber that is not attached. Messages published while nobody is
  subscribed are lost.
- After an unexpected disconnect paho reconnects on its own; subscriptions
  are re-issued from the local registry once CONNACK arrives.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any

import paho.mqtt.client as mqtt

from .broker import MessageCallback
from .errors import BackendOperationFailure, ConnectionFailure, NotConnected

_LOGGER = logging.getLogger(__name__)

BACKEND = "mqtt"

# SUBACK/UNSUBACK reason codes >= 0x80 are failures.
_FAILURE_THRESHOLD = 0x80


@dataclass(frozen=True)
class PendingAck:
    mid: int
    q: "queue.Queue[str | None]"


class MqttBroker:
    """Broker contract over a single paho-mqtt client connection."""

    def __init__(
        self,
        *,
        host: str = "localhost",
        port: int = 1883,
        client_id: str | None = None,
        keepalive: int = 60,
        qos: int = 1,
        connect_timeout: float = 5.0,
        operation_timeout: float = 5.0,
    ) -> None:
        if qos not in (0, 1, 2):
            raise ValueError("qos must be 0, 1 or 2")
        if operation_timeout <= 0:
            raise ValueError("operation_timeout must be > 0")

        self.host = host
        self.port = port
        self.client_id = client_id or f"headphone-{int(time.time() * 1000)}"
        self.keepalive = keepalive
        self.qos = qos
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout

        self._client: mqtt.Client | None = None
        self._connected = False

        # Topic filter -> callback. One slot per topic.
        self._subscriptions: dict[str, MessageCallback] = {}
        self._lock = threading.Lock()

        # mid -> waiter for SUBACK/UNSUBACK. Held while sending, so the
        # network thread cannot look a mid up before it is registered.
        self._pending: dict[int, PendingAck] = {}
        self._pending_lock = threading.Lock()

        # Set by _on_connect once the server answers.
        self._connack = threading.Event()
        self._connack_failure: str | None = None

    @property
    def url(self) -> str:
        return f"mqtt://{self.host}:{self.port}"

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """Connect and start the background network loop."""
        if self._connected:
            return

        _LOGGER.info("Connecting to MQTT broker at %s", self.url)
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        client.connect_timeout = self.connect_timeout
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        client.on_unsubscribe = self._on_unsubscribe

        self._connack.clear()
        self._connack_failure = None

        try:
            client.connect(self.host, self.port, keepalive=self.keepalive)
        except (OSError, ValueError) as e:
            raise ConnectionFailure(
                f"Failed to connect to MQTT broker at {self.url}: {e}", backend=BACKEND
            ) from e

        client.loop_start()

        if not self._connack.wait(self.connect_timeout):
            self._teardown(client)
            raise ConnectionFailure(
                f"Timed out after {self.connect_timeout}s waiting for MQTT broker at {self.url}",
                backend=BACKEND,
            )
        if self._connack_failure is not None:
            self._teardown(client)
            raise ConnectionFailure(
                f"MQTT broker at {self.url} refused connection: {self._connack_failure}",
                backend=BACKEND,
            )

        self._client = client
        self._connected = True
        _LOGGER.info("Connected to MQTT broker at %s", self.url)

    def disconnect(self) -> None:
        """Stop the network loop and disconnect. No-op when not connected."""
        client = self._client
        self._client = None
        self._connected = False
        with self._lock:
            self._subscriptions.clear()

        if client is None:
            return
        self._teardown(client)
        _LOGGER.info("Disconnected from MQTT broker at %s", self.url)

    def publish(self, topic: str, payload: str) -> None:
        client = self._require_client()
        try:
            info = client.publish(topic, payload=payload.encode("utf-8"), qos=self.qos)
        except ValueError as e:
            raise BackendOperationFailure(f"MQTT publish to {topic} rejected: {e}", backend=BACKEND) from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise BackendOperationFailure(
                f"MQTT publish to {topic} failed: {mqtt.error_string(info.rc)}", backend=BACKEND
            )
        if self.qos == 0:
            return

        try:
            info.wait_for_publish(self.operation_timeout)
        except (RuntimeError, ValueError) as e:
            raise BackendOperationFailure(f"MQTT publish to {topic} failed: {e}", backend=BACKEND) from e
        if not info.is_published():
            raise BackendOperationFailure(
                f"Timed out after {self.operation_timeout}s waiting for MQTT publish to {topic}",
                backend=BACKEND,
            )

    def subscribe(self, topic: str, callback: MessageCallback) -> None:
        client = self._require_client()

        # Register first so messages arriving right after SUBACK are routed.
        with self._lock:
            previous = self._subscriptions.get(topic)
            self._subscriptions[topic] = callback

        try:
            with self._pending_lock:
                try:
                    result, mid = client.subscribe(topic, qos=self.qos)
                except ValueError as e:
                    raise BackendOperationFailure(
                        f"MQTT subscribe to {topic} rejected: {e}", backend=BACKEND
                    ) from e
                if result != mqtt.MQTT_ERR_SUCCESS:
                    raise BackendOperationFailure(
                        f"MQTT subscribe to {topic} failed: {mqtt.error_string(result)}", backend=BACKEND
                    )
                pending = self._expect_ack(mid)
            self._await_ack(pending, f"subscribe to {topic}")
        except BackendOperationFailure:
            self._restore(topic, previous)
            raise

    def unsubscribe(self, topic: str) -> None:
        client = self._require_client()

        # Delivery stops as soon as the slot is gone, before UNSUBACK.
        with self._lock:
            known = self._subscriptions.pop(topic, None) is not None
        if not known:
            return

        with self._pending_lock:
            try:
                result, mid = client.unsubscribe(topic)
            except ValueError as e:
                raise BackendOperationFailure(
                    f"MQTT unsubscribe from {topic} rejected: {e}", backend=BACKEND
                ) from e
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise BackendOperationFailure(
                    f"MQTT unsubscribe from {topic} failed: {mqtt.error_string(result)}", backend=BACKEND
                )
            pending = self._expect_ack(mid)
        self._await_ack(pending, f"unsubscribe from {topic}")

    # -------------------- internal helpers --------------------

    def _expect_ack(self, mid: int) -> PendingAck:
        # Caller holds self._pending_lock.
        pending = PendingAck(mid=mid, q=queue.Queue(maxsize=1))
        self._pending[mid] = pending
        return pending

    def _await_ack(self, pending: PendingAck, what: str) -> None:
        try:
            failure = pending.q.get(timeout=self.operation_timeout)
        except queue.Empty as e:
            raise BackendOperationFailure(
                f"Timed out after {self.operation_timeout}s waiting for MQTT {what}", backend=BACKEND
            ) from e
        finally:
            with self._pending_lock:
                self._pending.pop(pending.mid, None)
        if failure is not None:
            raise BackendOperationFailure(f"MQTT broker rejected {what}: {failure}", backend=BACKEND)

    def _resolve_ack(self, mid: int, reason_codes: list[Any]) -> None:
        with self._pending_lock:
            pending = self._pending.get(mid)
        if pending is None:
            # Renewed subscriptions after a reconnect, or a waiter that gave up.
            return
        failed = [str(rc) for rc in reason_codes if rc.value >= _FAILURE_THRESHOLD]
        try:
            pending.q.put_nowait(", ".join(failed) if failed else None)
        except queue.Full:
            pass

    def _require_client(self) -> mqtt.Client:
        client = self._client
        if not self._connected or client is None:
            raise NotConnected("MQTT broker not connected", backend=BACKEND)
        return client

    def _restore(self, topic: str, previous: MessageCallback | None) -> None:
        with self._lock:
            if previous is None:
                self._subscriptions.pop(topic, None)
            else:
                self._subscriptions[topic] = previous

    def _teardown(self, client: mqtt.Client) -> None:
        try:
            client.disconnect()
        finally:
            client.loop_stop()

    def _matching_callbacks(self, topic: str) -> list[MessageCallback]:
        with self._lock:
            exact = self._subscriptions.get(topic)
            if exact is not None:
                return [exact]
            return [cb for sub, cb in self._subscriptions.items() if mqtt.topic_matches_sub(sub, topic)]

    # -------------------- paho callbacks (network thread) --------------------

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.value != 0:
            self._connack_failure = str(reason_code)
            self._connack.set()
            return

        if self._connack.is_set():
            # Automatic reconnect: clean session, so subscriptions must be renewed.
            with self._lock:
                topics = list(self._subscriptions)
            for topic in topics:
                client.subscribe(topic, qos=self.qos)
            _LOGGER.info("Reconnected to MQTT broker at %s, renewed %d subscriptions", self.url, len(topics))
        self._connack.set()

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if self._connected and reason_code.value != 0:
            _LOGGER.warning("Lost connection to MQTT broker at %s: %s", self.url, reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        # Depending on paho-mqtt version / type stubs, msg.payload may be `bytes`
        # (typical) or a `str`. We normalize to text before handing it on.
        raw = msg.payload
        payload = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)

        for callback in self._matching_callbacks(msg.topic):
            try:
                callback(payload)
            except Exception:
                _LOGGER.exception("Subscriber callback for %s failed", msg.topic)

    def _on_subscribe(self, client: mqtt.Client, userdata: Any, mid: int, reason_codes: Any, properties: Any) -> None:
        self._resolve_ack(mid, list(reason_codes))

    def _on_unsubscribe(self, client: mqtt.Client, userdata: Any, mid: int, reason_codes: Any, properties: Any) -> None:
        self._resolve_ack(mid, list(reason_codes))
