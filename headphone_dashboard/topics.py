"""Topic helpers.

We keep topic construction in one place so generator and dashboard agree on naming.

Topic layout: `headphone/<device_id>` where device ids start at 1.
"""

from __future__ import annotations

TOPIC_PREFIX = "headphone"


def device_topic(device_id: int) -> str:
    if device_id < 1:
        raise ValueError("device_id must be >= 1")
    return f"{TOPIC_PREFIX}/{device_id}"


def parse_device_topic(topic: str) -> int | None:
    """Return the device id encoded in `topic`, or None if it is not a device topic."""
    prefix, sep, rest = topic.partition("/")
    if prefix != TOPIC_PREFIX or not sep or not rest.isdigit():
        return None
    device_id = int(rest)
    return device_id if device_id >= 1 else None
