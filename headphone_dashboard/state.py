from __future__ import annotations

# Stereo state and the reducer that folds headphone events into it.
#
# `apply_event` is pure: it never mutates its input and returns a new
# StereoState. The dashboard owns the map of states and is the only caller.

from dataclasses import dataclass, replace
from enum import Enum

from .events import EventKind, HeadphoneEvent

MIN_VOLUME = 0
MAX_VOLUME = 10
DEFAULT_VOLUME = 5


class StereoStatus(str, Enum):
    PLAYING = "Playing"
    PAUSED = "Paused"
    STOPPED = "Stopped"


@dataclass(frozen=True)
class StereoState:
    device_id: int
    volume: int
    status: StereoStatus
    last_update: int  # ms since epoch


def initial_state(device_id: int, *, now: int) -> StereoState:
    return StereoState(
        device_id=device_id,
        volume=DEFAULT_VOLUME,
        status=StereoStatus.STOPPED,
        last_update=now,
    )


_STATUS_BY_KIND = {
    EventKind.PLAY: StereoStatus.PLAYING,
    EventKind.PAUSE: StereoStatus.PAUSED,
    EventKind.STOP: StereoStatus.STOPPED,
}


def apply_event(state: StereoState, event: HeadphoneEvent) -> StereoState:
    """Return the state after applying `event`.

    Volume is clamped to [MIN_VOLUME, MAX_VOLUME]; transport events set the
    status regardless of the previous one. `last_update` takes the event's own
    timestamp, not the processing time.
    """
    if event.device_id != state.device_id:
        raise ValueError(f"event for device {event.device_id} applied to device {state.device_id}")

    volume = state.volume
    status = state.status
    if event.kind is EventKind.VOLUME_UP:
        volume = min(volume + 1, MAX_VOLUME)
    elif event.kind is EventKind.VOLUME_DOWN:
        volume = max(volume - 1, MIN_VOLUME)
    else:
        status = _STATUS_BY_KIND[event.kind]

    return replace(state, volume=volume, status=status, last_update=event.timestamp)
