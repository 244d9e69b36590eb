import threading
import time

import pytest

from headphone_dashboard.broker import create_broker
from headphone_dashboard.errors import NotConnected
from headphone_dashboard.memory_broker import MemoryBroker


def _wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def test_connects_and_disconnects():
    broker = MemoryBroker()
    broker.connect()
    assert broker.is_connected
    broker.disconnect()
    assert not broker.is_connected
    # Second disconnect is a no-op.
    broker.disconnect()


def test_publish_before_connect_fails():
    broker = MemoryBroker()
    with pytest.raises(NotConnected):
        broker.publish("test", "msg")


def test_operations_after_disconnect_fail():
    broker = MemoryBroker()
    broker.connect()
    broker.disconnect()
    with pytest.raises(NotConnected):
        broker.publish("test", "msg")
    with pytest.raises(NotConnected):
        broker.subscribe("test", lambda m: None)
    with pytest.raises(NotConnected):
        broker.unsubscribe("test")


def test_publishes_to_subscriber():
    broker = MemoryBroker()
    broker.connect()
    received = []
    done = threading.Event()

    def on_message(msg):
        received.append(msg)
        done.set()

    broker.subscribe("test", on_message)
    broker.publish("test", '{"hello": "wörld"}')

    assert done.wait(2.0)
    assert received == ['{"hello": "wörld"}']
    broker.disconnect()


def test_delivery_is_deferred_to_another_thread():
    broker = MemoryBroker()
    broker.connect()
    threads = []
    done = threading.Event()

    def on_message(msg):
        threads.append(threading.current_thread())
        done.set()

    broker.subscribe("test", on_message)
    broker.publish("test", "x")
    assert done.wait(2.0)
    assert threads[0] is not threading.current_thread()
    broker.disconnect()


def test_preserves_publish_order():
    broker = MemoryBroker()
    broker.connect()
    received = []
    broker.subscribe("test", received.append)

    for i in range(500):
        broker.publish("test", f"message-{i}")

    assert _wait_for(lambda: len(received) == 500)
    assert received == [f"message-{i}" for i in range(500)]
    broker.disconnect()


def test_resubscribe_replaces_callback():
    broker = MemoryBroker()
    broker.connect()
    first, second = [], []
    broker.subscribe("test", first.append)
    broker.subscribe("test", second.append)

    broker.publish("test", "x")
    assert _wait_for(lambda: second == ["x"])
    assert first == []
    broker.disconnect()


def test_no_delivery_after_unsubscribe():
    broker = MemoryBroker()
    broker.connect()
    received = []
    broker.subscribe("test", received.append)
    broker.unsubscribe("test")
    broker.publish("test", "x")

    # A marker on another topic proves the dispatcher has drained the queue.
    marker = threading.Event()
    broker.subscribe("marker", lambda m: marker.set())
    broker.publish("marker", "m")
    assert marker.wait(2.0)
    assert received == []
    broker.disconnect()


def test_unsubscribe_unknown_topic_is_not_an_error():
    broker = MemoryBroker()
    broker.connect()
    broker.unsubscribe("never-subscribed")
    broker.disconnect()


def test_publish_without_subscriber_is_dropped():
    broker = MemoryBroker()
    broker.connect()
    broker.publish("nobody", "x")

    received = []
    broker.subscribe("nobody", received.append)
    marker = threading.Event()
    broker.subscribe("marker", lambda m: marker.set())
    broker.publish("marker", "m")
    assert marker.wait(2.0)
    assert received == []
    broker.disconnect()


def test_failing_callback_does_not_stop_delivery():
    broker = MemoryBroker()
    broker.connect()
    received = []

    def flaky(msg):
        if msg == "boom":
            raise RuntimeError("subscriber bug")
        received.append(msg)

    broker.subscribe("test", flaky)
    broker.publish("test", "boom")
    broker.publish("test", "ok")
    assert _wait_for(lambda: received == ["ok"])
    broker.disconnect()


def test_disconnect_clears_subscriptions():
    broker = MemoryBroker()
    broker.connect()
    received = []
    broker.subscribe("test", received.append)
    broker.disconnect()

    broker.connect()
    broker.publish("test", "x")
    marker = threading.Event()
    broker.subscribe("marker", lambda m: marker.set())
    broker.publish("marker", "m")
    assert marker.wait(2.0)
    assert received == []
    broker.disconnect()


def test_factory_builds_memory_broker():
    assert isinstance(create_broker("Memory"), MemoryBroker)


def test_factory_rejects_unknown_backend():
    with pytest.raises(ValueError):
        create_broker("carrier-pigeon")
