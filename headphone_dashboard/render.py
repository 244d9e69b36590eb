from __future__ import annotations

# Plain-text dashboard table.
#
# Produces the same rows on every tick:
#   device | volume bar (10 cells) | status | seconds since last update
# Screen handling is left to the caller; `print_dashboard` just prints.

from typing import Mapping

from .events import now_ms
from .state import MAX_VOLUME, StereoState

WIDTH = 60


def volume_bar(volume: int) -> str:
    filled = max(0, min(volume, MAX_VOLUME))
    return "█" * filled + "░" * (MAX_VOLUME - filled)


def format_dashboard(snapshot: Mapping[int, StereoState], *, now: int) -> str:
    lines = [
        "STEREO DASHBOARD",
        "═" * WIDTH,
        "Device | Volume     | Status      | Last Update",
        "─" * WIDTH,
    ]
    for device_id in sorted(snapshot):
        st = snapshot[device_id]
        age = max(0, (now - st.last_update) // 1000)
        lines.append(f"  {device_id:>2}   | {volume_bar(st.volume)} | {st.status.value:<11} | {age}s ago")
    lines.append("─" * WIDTH)
    return "\n".join(lines)


def print_dashboard(snapshot: Mapping[int, StereoState]) -> None:
    print(format_dashboard(snapshot, now=now_ms()), end="\n\n", flush=True)
