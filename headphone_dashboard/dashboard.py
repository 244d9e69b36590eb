from __future__ import annotations

# The stereo dashboard is the only owner of per-device stereo state.
#
# It subscribes to every device topic, folds incoming events into a
# StereoState per device, and on a fixed tick hands a snapshot to a render
# callback. Broker callbacks and the render tick run on different threads,
# so the state map is guarded by a lock and readers only ever get copies.

import argparse
import functools
import logging
import sys
import threading
import time
from typing import Callable

from .broker import MessageBroker
from .errors import BrokerError, ConnectionFailure, MalformedPayload
from .events import HeadphoneEvent, now_ms
from .state import StereoState, apply_event, initial_state
from .topics import device_topic, parse_device_topic

_LOGGER = logging.getLogger(__name__)

RENDER_INTERVAL = 1.0

Snapshot = dict[int, StereoState]
RenderCallback = Callable[[Snapshot], None]


class StereoDashboard:
    """Derives per-device stereo state from the headphone event stream."""

    def __init__(
        self,
        broker: MessageBroker,
        device_count: int = 10,
        *,
        render: RenderCallback | None = None,
        render_interval: float = RENDER_INTERVAL,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if device_count < 1:
            raise ValueError("device_count must be >= 1")
        if render_interval <= 0:
            raise ValueError("render_interval must be > 0")

        self.broker = broker
        self.device_count = device_count
        self.render_interval = render_interval
        self._render = render
        self._clock = clock

        self._lock = threading.Lock()
        self._stereos: dict[int, StereoState] = {}
        self._running = False
        self._processed = 0
        self._dropped = 0

        # Render thread control.
        self._stop_event = threading.Event()
        self._render_thread: threading.Thread | None = None

    # -------------------- lifecycle --------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Reset state, subscribe to every device topic and start the render tick.

        Broker errors propagate; on failure the topics subscribed so far are
        released again and the dashboard stays stopped.
        """
        if self._running:
            return

        now = self._clock()
        with self._lock:
            self._stereos = {
                device_id: initial_state(device_id, now=now)
                for device_id in range(1, self.device_count + 1)
            }

        subscribed: list[str] = []
        try:
            for device_id in range(1, self.device_count + 1):
                topic = device_topic(device_id)
                self.broker.subscribe(topic, functools.partial(self.handle_message, topic=topic))
                subscribed.append(topic)
        except BrokerError:
            self._unsubscribe_all(subscribed)
            raise

        self._running = True
        self._stop_event.clear()
        self._render_thread = threading.Thread(
            target=self._render_loop,
            name="stereo-dashboard-render",
            daemon=True,
        )
        self._render_thread.start()
        _LOGGER.info("Started stereo dashboard for %d devices", self.device_count)

    def stop(self) -> None:
        """Unsubscribe every device topic and stop the render tick."""
        if not self._running:
            return
        self._running = False

        self._unsubscribe_all([device_topic(i) for i in range(1, self.device_count + 1)])

        self._stop_event.set()
        t = self._render_thread
        self._render_thread = None
        if t and t.is_alive() and t is not threading.current_thread():
            t.join(timeout=self.render_interval + 1.0)
        _LOGGER.info("Stopped stereo dashboard")

    # -------------------- state access --------------------

    def snapshot(self) -> Snapshot:
        """Return a copy of the current per-device state."""
        with self._lock:
            return dict(self._stereos)

    def state(self, device_id: int) -> StereoState | None:
        with self._lock:
            return self._stereos.get(device_id)

    @property
    def processed_count(self) -> int:
        return self._processed

    @property
    def dropped_count(self) -> int:
        return self._dropped

    # -------------------- event handling --------------------

    def handle_message(self, payload: str, topic: str | None = None) -> None:
        """Decode one broker message and fold it into the device's state.

        Malformed payloads and events for unknown devices are logged and
        dropped; they never change any state. The event's own deviceId wins
        over the topic it arrived on, but a disagreement is logged.
        """
        try:
            event = HeadphoneEvent.from_json(payload)
        except MalformedPayload as e:
            _LOGGER.warning("Failed to parse headphone event: %s", e)
            with self._lock:
                self._dropped += 1
            return

        if topic is not None:
            topic_device = parse_device_topic(topic)
            if topic_device != event.device_id:
                _LOGGER.warning(
                    "Event for device %d arrived on %s, applying it to device %d",
                    event.device_id,
                    topic,
                    event.device_id,
                )

        with self._lock:
            current = self._stereos.get(event.device_id)
            if current is None:
                self._dropped += 1
                _LOGGER.debug("Ignoring event for unknown device %d", event.device_id)
                return
            self._stereos[event.device_id] = apply_event(current, event)
            self._processed += 1

    # -------------------- internal --------------------

    def _unsubscribe_all(self, topics: list[str]) -> None:
        # Keep going on failure so no topic is left subscribed behind a bad one.
        for topic in topics:
            try:
                self.broker.unsubscribe(topic)
            except BrokerError as e:
                _LOGGER.warning("Failed to unsubscribe from %s: %s", topic, e)

    def _render_loop(self) -> None:
        while not self._stop_event.is_set():
            if self._render is not None:
                try:
                    self._render(self.snapshot())
                except Exception:
                    # Keep ticking even if one render fails.
                    _LOGGER.exception("Dashboard render failed")
            self._stop_event.wait(self.render_interval)


def run_dashboard(*, broker: MessageBroker, device_count: int, render: RenderCallback) -> None:
    """Connect, render until Ctrl+C, then stop and disconnect."""
    broker.connect()
    dashboard = StereoDashboard(broker, device_count, render=render)
    try:
        dashboard.start()
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        dashboard.stop()
        broker.disconnect()
        print(f"[dashboard] stopped after {dashboard.processed_count} events")


def main() -> None:
    from .config import Settings, add_broker_args, broker_from_args, configure_logging
    from .render import print_dashboard

    parser = argparse.ArgumentParser(description="Stereo dashboard")
    add_broker_args(parser, Settings.from_env())
    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        run_dashboard(broker=broker_from_args(args), device_count=args.devices, render=print_dashboard)
    except ConnectionFailure as e:
        print(f"[dashboard] {e}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
