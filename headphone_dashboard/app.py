from __future__ import annotations

# Single-entrypoint runner.
#
# The primary way to run the project is:
#     python -m headphone_dashboard.app run --broker mqtt --devices 10
#
# `run` wires one broker, the dashboard and the generator in this process.
# `generate` and `dashboard` start one side only, so the two halves can run
# as separate processes against an external broker.
# `bench` measures throughput and latency of one or every broker backend.

import argparse
import dataclasses
import sys
import time

from .broker import BROKER_TYPES
from .config import Settings, add_broker_args, broker_from_args, configure_logging, settings_from_args
from .errors import ConnectionFailure


def run_all(*, settings_args: argparse.Namespace, seed: int | None) -> None:
    import random

    from .dashboard import StereoDashboard
    from .generator import HeadphoneEventGenerator
    from .render import print_dashboard

    broker = broker_from_args(settings_args)
    broker.connect()
    print(f"[run] connected to {settings_args.broker} broker")

    dashboard = StereoDashboard(broker, settings_args.devices, render=print_dashboard)
    generator = HeadphoneEventGenerator(
        broker,
        settings_args.devices,
        rng=random.Random(seed) if seed is not None else None,
    )

    try:
        # Dashboard first so the first events have a subscriber.
        dashboard.start()
        generator.start()
        print("[run] started, press Ctrl+C to stop")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n[run] shutdown requested")
    finally:
        # Reverse order of startup.
        generator.stop()
        dashboard.stop()
        broker.disconnect()
        print(
            f"[run] stopped: published={generator.published_count} "
            f"processed={dashboard.processed_count} dropped={dashboard.dropped_count}"
        )


def run_bench_cmd(args: argparse.Namespace) -> None:
    from .bench import run_bench

    if args.messages < 1 or args.latency_iterations < 1:
        raise SystemExit("[bench] --messages and --latency-iterations must be >= 1")

    settings = settings_from_args(args)
    kinds = BROKER_TYPES if args.all else (settings.broker_type,)
    brokers = [(kind, dataclasses.replace(settings, broker_type=kind).create_broker()) for kind in kinds]
    results = run_bench(brokers, message_count=args.messages, latency_iterations=args.latency_iterations)
    if not results:
        sys.exit(1)


def main() -> None:
    parser = argparse.ArgumentParser(description="Headphone stereo dashboard - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    try:
        defaults = Settings.from_env()
    except ValueError as e:
        parser.error(str(e))

    p_run = sub.add_parser("run", help="Start dashboard + generator on one broker")
    add_broker_args(p_run, defaults)
    p_run.add_argument("--seed", type=int, default=None)

    p_gen = sub.add_parser("generate", help="Start the headphone event generator only")
    add_broker_args(p_gen, defaults)
    p_gen.add_argument("--seed", type=int, default=None)

    p_dash = sub.add_parser("dashboard", help="Start the stereo dashboard only")
    add_broker_args(p_dash, defaults)

    p_bench = sub.add_parser("bench", help="Benchmark broker throughput and latency")
    add_broker_args(p_bench, defaults)
    p_bench.add_argument("--all", action="store_true", help="benchmark every broker type, skipping unavailable ones")
    p_bench.add_argument("--messages", type=int, default=10_000, help="messages per throughput phase")
    p_bench.add_argument("--latency-iterations", type=int, default=1_000)

    args = parser.parse_args()
    if args.devices < 1:
        parser.error("--devices must be >= 1")
    configure_logging(args.log_level)

    try:
        if args.cmd == "run":
            run_all(settings_args=args, seed=args.seed)
        elif args.cmd == "generate":
            from .generator import run_generator

            run_generator(broker=broker_from_args(args), device_count=args.devices, seed=args.seed)
        elif args.cmd == "dashboard":
            from .dashboard import run_dashboard
            from .render import print_dashboard

            run_dashboard(broker=broker_from_args(args), device_count=args.devices, render=print_dashboard)
        elif args.cmd == "bench":
            run_bench_cmd(args)
    except ConnectionFailure as e:
        print(f"[{args.cmd}] {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
