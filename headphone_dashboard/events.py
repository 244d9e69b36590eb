"""Headphone control events and their JSON wire format.

Wire payload (one JSON object per message):

    {"deviceId": 3, "event": "VOLUMEUP", "timestamp": 1718000000000}

`timestamp` is milliseconds since the epoch, set by the emitting device.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import MalformedPayload


class EventKind(str, Enum):
    VOLUME_UP = "VOLUMEUP"
    VOLUME_DOWN = "VOLUMEDOWN"
    PLAY = "PLAY"
    PAUSE = "PAUSE"
    STOP = "STOP"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class HeadphoneEvent:
    """One control event emitted by a simulated headphone."""

    device_id: int
    kind: EventKind
    timestamp: int

    def to_message(self) -> dict[str, Any]:
        return {"deviceId": self.device_id, "event": self.kind.value, "timestamp": self.timestamp}

    def to_json(self) -> str:
        return json.dumps(self.to_message(), separators=(",", ":"))

    @classmethod
    def from_json(cls, payload: str | bytes) -> HeadphoneEvent:
        """Decode a wire payload.

        Raises:
            MalformedPayload: if the payload is not JSON, not an object, or any
                field is missing or has the wrong type.
        """
        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
            data = json.loads(text)
        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedPayload(f"payload is not valid JSON: {e}", payload=payload) from e

        if not isinstance(data, dict):
            raise MalformedPayload("payload is not a JSON object", payload=payload)

        device_id = data.get("deviceId")
        # bool is a subclass of int; reject it explicitly.
        if not isinstance(device_id, int) or isinstance(device_id, bool) or device_id < 1:
            raise MalformedPayload(f"invalid deviceId: {device_id!r}", payload=payload)

        try:
            kind = EventKind(data.get("event"))
        except ValueError as e:
            raise MalformedPayload(f"unknown event: {data.get('event')!r}", payload=payload) from e

        timestamp = data.get("timestamp")
        if not isinstance(timestamp, int) or isinstance(timestamp, bool):
            raise MalformedPayload(f"invalid timestamp: {timestamp!r}", payload=payload)

        return cls(device_id=device_id, kind=kind, timestamp=timestamp)
