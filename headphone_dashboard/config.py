"""Runtime settings.

Defaults can be overridden from the environment:

- `BROKER_TYPE`    memory | mqtt | redis (default: mqtt)
- `DEVICE_COUNT`   number of simulated headphones (default: 10)
- `MQTT_HOST`, `MQTT_PORT`, `MQTT_CLIENT_ID`
- `REDIS_HOST`, `REDIS_PORT`

Command line flags (see `add_broker_args`) take precedence over both.
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

from .broker import BROKER_TYPES, MessageBroker, create_broker


@dataclass(frozen=True)
class Settings:
    broker_type: str = "mqtt"
    device_count: int = 10
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_client_id: str | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        defaults = cls()
        broker_type = env.get("BROKER_TYPE", defaults.broker_type).strip().lower()
        if broker_type not in BROKER_TYPES:
            raise ValueError(f"BROKER_TYPE must be one of {', '.join(BROKER_TYPES)}, got {broker_type!r}")
        return cls(
            broker_type=broker_type,
            device_count=_int_var(env, "DEVICE_COUNT", defaults.device_count),
            mqtt_host=env.get("MQTT_HOST", defaults.mqtt_host),
            mqtt_port=_int_var(env, "MQTT_PORT", defaults.mqtt_port),
            mqtt_client_id=env.get("MQTT_CLIENT_ID") or None,
            redis_host=env.get("REDIS_HOST", defaults.redis_host),
            redis_port=_int_var(env, "REDIS_PORT", defaults.redis_port),
        )

    def broker_params(self) -> dict[str, Any]:
        """Constructor keyword arguments for the selected broker type."""
        if self.broker_type == "mqtt":
            return {"host": self.mqtt_host, "port": self.mqtt_port, "client_id": self.mqtt_client_id}
        if self.broker_type == "redis":
            return {"host": self.redis_host, "port": self.redis_port}
        return {}

    def create_broker(self) -> MessageBroker:
        return create_broker(self.broker_type, **self.broker_params())


def _int_var(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


# -------------------- command line helpers --------------------


def add_broker_args(p: argparse.ArgumentParser, defaults: Settings) -> None:
    p.add_argument("--broker", choices=BROKER_TYPES, default=defaults.broker_type)
    p.add_argument("--devices", type=int, default=defaults.device_count, help="number of simulated headphones")
    p.add_argument("--mqtt-host", default=defaults.mqtt_host)
    p.add_argument("--mqtt-port", type=int, default=defaults.mqtt_port)
    p.add_argument("--mqtt-client-id", default=defaults.mqtt_client_id)
    p.add_argument("--redis-host", default=defaults.redis_host)
    p.add_argument("--redis-port", type=int, default=defaults.redis_port)
    p.add_argument("--log-level", default="WARNING", help="logging level (DEBUG, INFO, WARNING, ...)")


def settings_from_args(args: argparse.Namespace) -> Settings:
    return Settings(
        broker_type=args.broker,
        device_count=args.devices,
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        mqtt_client_id=args.mqtt_client_id,
        redis_host=args.redis_host,
        redis_port=args.redis_port,
    )


def broker_from_args(args: argparse.Namespace) -> MessageBroker:
    return settings_from_args(args).create_broker()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
