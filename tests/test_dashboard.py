import logging
import threading
import time

import pytest

from headphone_dashboard import generator as generator_module
from headphone_dashboard.dashboard import StereoDashboard
from headphone_dashboard.errors import BackendOperationFailure, NotConnected
from headphone_dashboard.events import EventKind, HeadphoneEvent
from headphone_dashboard.generator import HeadphoneEventGenerator
from headphone_dashboard.memory_broker import MemoryBroker
from headphone_dashboard.state import StereoStatus


def _wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class FlakyBroker(MemoryBroker):
    """MemoryBroker whose subscribe/unsubscribe fail on chosen topics."""

    def __init__(self, *, fail_subscribe=(), fail_unsubscribe=()):
        super().__init__()
        self.fail_subscribe = set(fail_subscribe)
        self.fail_unsubscribe = set(fail_unsubscribe)
        self.unsubscribe_calls = []

    def subscribe(self, topic, callback):
        if topic in self.fail_subscribe:
            raise BackendOperationFailure(f"subscribe to {topic} refused", backend="memory")
        super().subscribe(topic, callback)

    def unsubscribe(self, topic):
        self.unsubscribe_calls.append(topic)
        if topic in self.fail_unsubscribe:
            raise BackendOperationFailure(f"unsubscribe from {topic} refused", backend="memory")
        super().unsubscribe(topic)


@pytest.fixture
def broker():
    b = MemoryBroker()
    b.connect()
    yield b
    b.disconnect()


def _publish(broker, kind, device_id=1, ts=1_000):
    ev = HeadphoneEvent(device_id=device_id, kind=kind, timestamp=ts)
    broker.publish(f"headphone/{device_id}", ev.to_json())


def test_start_initializes_every_device(broker):
    dash = StereoDashboard(broker, 3, clock=lambda: 500)
    dash.start()
    try:
        snap = dash.snapshot()
        assert sorted(snap) == [1, 2, 3]
        for device_id, st in snap.items():
            assert st.device_id == device_id
            assert st.volume == 5
            assert st.status is StereoStatus.STOPPED
            assert st.last_update == 500
    finally:
        dash.stop()


def test_volume_scenario(broker):
    dash = StereoDashboard(broker, 1)
    dash.start()
    try:
        for _ in range(3):
            _publish(broker, EventKind.VOLUME_UP)
        assert _wait_for(lambda: dash.processed_count == 3)
        assert dash.state(1).volume == 8

        for _ in range(5):
            _publish(broker, EventKind.VOLUME_DOWN)
        assert _wait_for(lambda: dash.processed_count == 8)
        assert dash.state(1).volume == 3

        _publish(broker, EventKind.STOP)
        assert _wait_for(lambda: dash.processed_count == 9)
        st = dash.state(1)
        assert st.status is StereoStatus.STOPPED
        assert st.volume == 3
    finally:
        dash.stop()


def test_play_then_pause_ends_paused(broker):
    dash = StereoDashboard(broker, 1)
    dash.start()
    try:
        _publish(broker, EventKind.PLAY, ts=10)
        _publish(broker, EventKind.PAUSE, ts=20)
        assert _wait_for(lambda: dash.processed_count == 2)
        st = dash.state(1)
        assert st.status is StereoStatus.PAUSED
        assert st.last_update == 20
    finally:
        dash.stop()


def test_malformed_message_leaves_state_unchanged(broker):
    dash = StereoDashboard(broker, 2)
    dash.start()
    try:
        before = dash.snapshot()
        broker.publish("headphone/1", "this is not json")
        assert _wait_for(lambda: dash.dropped_count == 1)
        assert dash.snapshot() == before
        assert dash.processed_count == 0
    finally:
        dash.stop()


def test_unknown_device_is_ignored(broker):
    dash = StereoDashboard(broker, 2)
    dash.start()
    try:
        before = dash.snapshot()
        dash.handle_message(HeadphoneEvent(device_id=9, kind=EventKind.PLAY, timestamp=1).to_json())
        assert dash.snapshot() == before
        assert dash.dropped_count == 1
    finally:
        dash.stop()


def test_snapshot_is_a_copy(broker):
    dash = StereoDashboard(broker, 1)
    dash.start()
    try:
        snap = dash.snapshot()
        snap.clear()
        assert 1 in dash.snapshot()
    finally:
        dash.stop()


def test_stop_unsubscribes_every_topic(broker):
    dash = StereoDashboard(broker, 3)
    dash.start()
    dash.stop()
    assert not dash.is_running

    before = dash.snapshot()
    for device_id in (1, 2, 3):
        _publish(broker, EventKind.VOLUME_UP, device_id=device_id)
    time.sleep(0.05)
    assert dash.snapshot() == before
    assert dash.processed_count == 0

    # Idempotent.
    dash.stop()


def test_stop_keeps_unsubscribing_after_a_failure():
    broker = FlakyBroker(fail_unsubscribe={"headphone/2"})
    broker.connect()
    try:
        dash = StereoDashboard(broker, 3)
        dash.start()
        dash.stop()

        assert not dash.is_running
        assert broker.unsubscribe_calls == ["headphone/1", "headphone/2", "headphone/3"]
        _publish(broker, EventKind.VOLUME_UP, device_id=3)
        time.sleep(0.05)
        assert dash.processed_count == 0
    finally:
        broker.disconnect()


def test_failed_start_releases_subscribed_topics():
    broker = FlakyBroker(fail_subscribe={"headphone/3"})
    broker.connect()
    try:
        dash = StereoDashboard(broker, 4)
        with pytest.raises(BackendOperationFailure):
            dash.start()

        assert not dash.is_running
        assert broker.unsubscribe_calls == ["headphone/1", "headphone/2"]
        _publish(broker, EventKind.PLAY, device_id=1)
        time.sleep(0.05)
        assert dash.processed_count == 0
    finally:
        broker.disconnect()


def test_event_on_wrong_topic_is_applied_by_device_id_and_logged(broker, caplog):
    dash = StereoDashboard(broker, 2)
    dash.start()
    try:
        ev = HeadphoneEvent(device_id=2, kind=EventKind.PLAY, timestamp=7)
        with caplog.at_level(logging.WARNING, logger="headphone_dashboard.dashboard"):
            broker.publish("headphone/1", ev.to_json())
            assert _wait_for(lambda: dash.processed_count == 1)

        assert dash.state(2).status is StereoStatus.PLAYING
        assert dash.state(1).status is StereoStatus.STOPPED
        assert "arrived on headphone/1" in caplog.text
    finally:
        dash.stop()


def test_event_on_matching_topic_is_not_logged(broker, caplog):
    dash = StereoDashboard(broker, 1)
    dash.start()
    try:
        with caplog.at_level(logging.WARNING, logger="headphone_dashboard.dashboard"):
            _publish(broker, EventKind.PLAY, device_id=1)
            assert _wait_for(lambda: dash.processed_count == 1)
        assert "arrived on" not in caplog.text
    finally:
        dash.stop()


def test_start_requires_connected_broker():
    dash = StereoDashboard(MemoryBroker(), 2)
    with pytest.raises(NotConnected):
        dash.start()
    assert not dash.is_running


def test_render_callback_gets_snapshots(broker):
    rendered = []
    got_two = threading.Event()

    def render(snapshot):
        rendered.append(snapshot)
        if len(rendered) >= 2:
            got_two.set()

    dash = StereoDashboard(broker, 2, render=render, render_interval=0.01)
    dash.start()
    try:
        assert got_two.wait(2.0)
    finally:
        dash.stop()

    count = len(rendered)
    time.sleep(0.05)
    assert len(rendered) == count
    assert sorted(rendered[0]) == [1, 2]


def test_render_failure_does_not_stop_ticking(broker):
    calls = []
    two_calls = threading.Event()

    def render(snapshot):
        calls.append(1)
        if len(calls) >= 2:
            two_calls.set()
        raise RuntimeError("terminal gone")

    dash = StereoDashboard(broker, 1, render=render, render_interval=0.01)
    dash.start()
    try:
        assert two_calls.wait(2.0)
    finally:
        dash.stop()


def test_generator_feeds_dashboard_end_to_end(broker, monkeypatch):
    monkeypatch.setattr(generator_module, "sample_initial_delay", lambda rng=None: 0.0)
    monkeypatch.setattr(generator_module, "sample_next_delay", lambda rng=None: 0.005)

    dash = StereoDashboard(broker, 4)
    gen = HeadphoneEventGenerator(broker, 4)
    dash.start()
    gen.start()
    try:
        assert _wait_for(lambda: dash.processed_count >= 40)
    finally:
        gen.stop()
        dash.stop()

    for device_id, st in dash.snapshot().items():
        assert st.device_id == device_id
        assert 0 <= st.volume <= 10
        assert st.status in set(StereoStatus)
    assert dash.dropped_count == 0
