from __future__ import annotations

# Headphone event generator.
#
# Simulates `device_count` headphones. Every device runs its own schedule:
# - wait an initial jitter (so devices don't fire in lockstep)
# - publish one random control event to `headphone/<device_id>`
# - re-arm itself after a random 3-10 s delay
#
# Each pending wait is a `threading.Timer` kept in `_timers`, one per device,
# so `stop()` can cancel every schedule.

import argparse
import logging
import random
import sys
import threading
import time
from typing import Callable

from .broker import MessageBroker
from .errors import BrokerError, ConnectionFailure
from .events import EventKind, HeadphoneEvent, now_ms
from .schedule import sample_initial_delay, sample_next_delay
from .topics import device_topic

_LOGGER = logging.getLogger(__name__)

EVENT_KINDS: tuple[EventKind, ...] = tuple(EventKind)


class HeadphoneEventGenerator:
    """Publishes random headphone events for N devices until stopped."""

    def __init__(
        self,
        broker: MessageBroker,
        device_count: int = 10,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if device_count < 1:
            raise ValueError("device_count must be >= 1")

        self.broker = broker
        self.device_count = device_count
        self._rng = rng or random.Random()
        self._clock = clock

        self._lock = threading.Lock()
        self._timers: dict[int, threading.Timer] = {}
        self._running = False
        self._published = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def published_count(self) -> int:
        return self._published

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            for device_id in range(1, self.device_count + 1):
                self._schedule(device_id, sample_initial_delay(self._rng))
        _LOGGER.info("Started %d headphone simulators", self.device_count)

    def stop(self) -> None:
        """Cancel every device schedule.

        Timers that are already publishing are joined, so once this returns
        the generator will not publish again.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            timers = list(self._timers.values())
            self._timers.clear()

        for t in timers:
            t.cancel()
        current = threading.current_thread()
        for t in timers:
            if t is not current and t.is_alive():
                t.join()
        _LOGGER.info("Stopped all headphone simulators")

    def make_event(self, device_id: int) -> HeadphoneEvent:
        """Build one random event for `device_id` stamped with the current time."""
        return HeadphoneEvent(
            device_id=device_id,
            kind=self._rng.choice(EVENT_KINDS),
            timestamp=self._clock(),
        )

    # -------------------- internal --------------------

    def _schedule(self, device_id: int, delay: float) -> None:
        # Caller holds self._lock.
        timer = threading.Timer(delay, self._fire, args=(device_id,))
        timer.name = f"headphone-{device_id}"
        timer.daemon = True
        self._timers[device_id] = timer
        timer.start()

    def _fire(self, device_id: int) -> None:
        if not self._running:
            return

        event = self.make_event(device_id)
        topic = device_topic(device_id)
        try:
            self.broker.publish(topic, event.to_json())
        except BrokerError as e:
            # A failed publish never stops this device's schedule.
            _LOGGER.error("Failed to publish event for device %d: %s", device_id, e)
        else:
            with self._lock:
                self._published += 1
            _LOGGER.debug("Device %d -> %s", device_id, event.kind.value)

        with self._lock:
            if self._running:
                self._schedule(device_id, sample_next_delay(self._rng))


def run_generator(*, broker: MessageBroker, device_count: int, seed: int | None = None) -> None:
    """Connect, generate events until Ctrl+C, then stop and disconnect."""
    rng = random.Random(seed) if seed is not None else None

    broker.connect()
    generator = HeadphoneEventGenerator(broker, device_count, rng=rng)
    generator.start()
    print(f"[generator] simulating {device_count} headphones, press Ctrl+C to stop")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        generator.stop()
        broker.disconnect()
        print(f"[generator] stopped after {generator.published_count} events")


def main() -> None:
    from .config import Settings, add_broker_args, broker_from_args, configure_logging

    parser = argparse.ArgumentParser(description="Headphone event generator")
    add_broker_args(parser, Settings.from_env())
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()
    configure_logging(args.log_level)

    try:
        run_generator(broker=broker_from_args(args), device_count=args.devices, seed=args.seed)
    except ConnectionFailure as e:
        print(f"[generator] {e}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
