"""Broker contract shared by every pub/sub backend.

Any object providing these five methods can be handed to the generator and
the dashboard; there is no base class to inherit from.

Contract (all backends):
- `connect()` raises ConnectionFailure and leaves the broker disconnected
  if the backend is unreachable.
- `disconnect()` releases resources and clears subscriptions; calling it when
  already disconnected is a no-op.
- `publish`, `subscribe` and `unsubscribe` raise NotConnected before a
  successful `connect()` and after `disconnect()`.
- One callback per topic: subscribing again replaces the previous callback.
- Unsubscribing an unknown topic is not an error.

What happens to a message published while nobody is subscribed depends on
the backend and is documented on each adapter.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

MessageCallback = Callable[[str], None]

BROKER_TYPES = ("memory", "mqtt", "redis")


class MessageBroker(Protocol):
    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def publish(self, topic: str, payload: str) -> None: ...

    def subscribe(self, topic: str, callback: MessageCallback) -> None: ...

    def unsubscribe(self, topic: str) -> None: ...


def create_broker(kind: str, **params: Any) -> MessageBroker:
    """Build a broker by backend name.

    `params` are passed to the adapter constructor unchanged (host, port,
    client_id, ...). Backend client libraries are imported only when the
    matching backend is requested.
    """
    name = kind.strip().lower()

    if name == "memory":
        from .memory_broker import MemoryBroker

        return MemoryBroker(**params)

    if name == "mqtt":
        from .mqtt_broker import MqttBroker

        return MqttBroker(**params)

    if name == "redis":
        from .redis_broker import RedisBroker

        return RedisBroker(**params)

    raise ValueError(f"unknown broker type {kind!r} (expected one of {', '.join(BROKER_TYPES)})")
