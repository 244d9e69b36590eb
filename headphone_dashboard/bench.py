from __future__ import annotations

# Broker benchmark.
#
# Runs the same workload against any MessageBroker and reports one
# BenchResult per backend:
#   - connection time
#   - parallel throughput (publishes fanned out over a thread pool)
#   - sequential throughput (one publish after the other)
#   - end-to-end latency (avg / p95 / max) measured inside this process
#   - error rate of publishes to topics nobody listens on
#
# Throughput and latency count a message as done when the subscriber callback
# has seen it, not when publish() returns.

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from .broker import MessageBroker
from .errors import BrokerError

_LOGGER = logging.getLogger(__name__)

MESSAGE_COUNT = 10_000
LATENCY_ITERATIONS = 1_000
ERROR_OPERATIONS = 1_000
PARALLEL_WORKERS = 8
DELIVERY_TIMEOUT = 60.0


@dataclass(frozen=True)
class BenchResult:
    broker_type: str
    connection_ms: float
    # msg/s; None when not every message arrived within the delivery timeout.
    parallel_throughput: float | None
    sequential_throughput: float
    avg_latency_ms: float
    p95_latency_ms: float
    max_latency_ms: float
    error_rate: float  # percent


class _Counter:
    """Counts deliveries and signals once `target` is reached."""

    def __init__(self, target: int) -> None:
        self.target = target
        self.count = 0
        self.done = threading.Event()
        self._lock = threading.Lock()

    def __call__(self, message: str) -> None:
        with self._lock:
            self.count += 1
            if self.count >= self.target:
                self.done.set()


def run_benchmark(
    broker: MessageBroker,
    broker_type: str,
    *,
    message_count: int = MESSAGE_COUNT,
    latency_iterations: int = LATENCY_ITERATIONS,
    error_operations: int = ERROR_OPERATIONS,
    parallel_workers: int = PARALLEL_WORKERS,
    delivery_timeout: float = DELIVERY_TIMEOUT,
) -> BenchResult:
    """Connect, run every phase and disconnect.

    Connection failures propagate. The sequential and latency phases raise
    `TimeoutError` if their messages do not all arrive in time; the parallel
    phase reports an incomplete run as `parallel_throughput=None` instead.
    """
    if message_count < 1 or latency_iterations < 1 or error_operations < 1:
        raise ValueError("message_count, latency_iterations and error_operations must be >= 1")

    start = time.perf_counter()
    broker.connect()
    connection_ms = (time.perf_counter() - start) * 1000
    _LOGGER.info("%s: connected in %.2f ms", broker_type, connection_ms)

    try:
        parallel = _parallel_throughput(broker, message_count, parallel_workers, delivery_timeout)
        sequential = _sequential_throughput(broker, message_count, delivery_timeout)
        latencies = _latencies(broker, latency_iterations, delivery_timeout)
        error_rate = _error_rate(broker, error_operations)
    finally:
        broker.disconnect()

    return BenchResult(
        broker_type=broker_type,
        connection_ms=connection_ms,
        parallel_throughput=parallel,
        sequential_throughput=sequential,
        avg_latency_ms=sum(latencies) / len(latencies),
        p95_latency_ms=latencies[min(int(len(latencies) * 0.95), len(latencies) - 1)],
        max_latency_ms=latencies[-1],
        error_rate=error_rate,
    )


# -------------------- phases --------------------


def _parallel_throughput(broker: MessageBroker, n: int, workers: int, timeout: float) -> float | None:
    topic = "bench/parallel"
    counter = _Counter(n)
    broker.subscribe(topic, counter)
    try:
        start = time.perf_counter()
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bench-publish") as pool:
            # list() re-raises the first publish error, if any.
            list(pool.map(lambda i: broker.publish(topic, f"message-{i}"), range(n)))
        if not counter.done.wait(timeout):
            _LOGGER.warning("Parallel phase timed out: received %d/%d", counter.count, n)
            return None
        return n / (time.perf_counter() - start)
    finally:
        broker.unsubscribe(topic)


def _sequential_throughput(broker: MessageBroker, n: int, timeout: float) -> float:
    topic = "bench/sequential"
    counter = _Counter(n)
    broker.subscribe(topic, counter)
    try:
        start = time.perf_counter()
        for i in range(n):
            broker.publish(topic, f"message-{i}")
        if not counter.done.wait(timeout):
            raise TimeoutError(f"Sequential phase timed out after {timeout}s: received {counter.count}/{n}")
        return n / (time.perf_counter() - start)
    finally:
        broker.unsubscribe(topic)


def _latencies(broker: MessageBroker, iterations: int, timeout: float) -> list[float]:
    """Return sorted end-to-end latencies in ms."""
    topic = "bench/latency"
    latencies: list[float] = []
    lock = threading.Lock()
    done = threading.Event()

    def on_message(message: str) -> None:
        sent = json.loads(message)["sent"]
        with lock:
            latencies.append((time.perf_counter() - sent) * 1000)
            if len(latencies) >= iterations:
                done.set()

    broker.subscribe(topic, on_message)
    try:
        for i in range(iterations):
            broker.publish(topic, json.dumps({"id": i, "sent": time.perf_counter()}))
            if i % 100 == 0:
                # Let deliveries catch up so queueing does not dominate.
                time.sleep(0.001)
        if not done.wait(timeout):
            raise TimeoutError(f"Latency phase timed out after {timeout}s: received {len(latencies)}/{iterations}")
    finally:
        broker.unsubscribe(topic)

    with lock:
        return sorted(latencies)


def _error_rate(broker: MessageBroker, n: int) -> float:
    errors = 0
    for i in range(n):
        try:
            broker.publish(f"bench/error-{i}", f"message-{i}")
        except BrokerError as e:
            errors += 1
            _LOGGER.debug("Publish %d failed: %s", i, e)
    return errors / n * 100


# -------------------- report --------------------


def format_results(results: list[BenchResult]) -> str:
    """Plain-text comparison table plus the best backend per metric."""
    lines = [
        f"{'broker':<10} {'parallel msg/s':>15} {'sequential msg/s':>17} {'avg ms':>9} "
        f"{'p95 ms':>9} {'max ms':>9} {'connect ms':>11} {'errors %':>9}",
        "-" * 96,
    ]
    for r in results:
        parallel = "INCOMPLETE" if r.parallel_throughput is None else f"{r.parallel_throughput:.0f}"
        lines.append(
            f"{r.broker_type:<10} {parallel:>15} {r.sequential_throughput:>17.0f} {r.avg_latency_ms:>9.2f} "
            f"{r.p95_latency_ms:>9.2f} {r.max_latency_ms:>9.2f} {r.connection_ms:>11.2f} {r.error_rate:>9.2f}"
        )
    if not results:
        return "\n".join(lines)

    lines.append("")
    completed = [r for r in results if r.parallel_throughput is not None]
    if completed:
        best = max(completed, key=lambda r: r.parallel_throughput or 0.0)
        lines.append(f"fastest parallel:   {best.broker_type} ({best.parallel_throughput:.0f} msg/s)")
    else:
        lines.append("fastest parallel:   no run completed")
    best = max(results, key=lambda r: r.sequential_throughput)
    lines.append(f"fastest sequential: {best.broker_type} ({best.sequential_throughput:.0f} msg/s)")
    best = min(results, key=lambda r: r.avg_latency_ms)
    lines.append(f"lowest latency:     {best.broker_type} ({best.avg_latency_ms:.2f} ms)")
    best = min(results, key=lambda r: r.error_rate)
    lines.append(f"most reliable:      {best.broker_type} ({best.error_rate:.2f}% errors)")
    return "\n".join(lines)


def run_bench(
    brokers: list[tuple[str, MessageBroker]],
    *,
    message_count: int = MESSAGE_COUNT,
    latency_iterations: int = LATENCY_ITERATIONS,
) -> list[BenchResult]:
    """Benchmark each broker in turn; one that is not available is skipped."""
    results: list[BenchResult] = []
    for name, broker in brokers:
        print(f"[bench] testing {name} broker")
        try:
            result = run_benchmark(
                broker,
                name,
                message_count=message_count,
                latency_iterations=latency_iterations,
            )
        except (BrokerError, TimeoutError) as e:
            print(f"[bench] {name} broker not available: {e}")
            continue
        results.append(result)
    print(format_results(results))
    return results
