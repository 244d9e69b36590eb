from headphone_dashboard.render import format_dashboard, volume_bar
from headphone_dashboard.state import StereoState, StereoStatus


def test_volume_bar_has_ten_cells():
    assert volume_bar(0) == "░" * 10
    assert volume_bar(3) == "███" + "░" * 7
    assert volume_bar(10) == "█" * 10


def test_format_dashboard_rows_sorted_by_device():
    snapshot = {
        2: StereoState(device_id=2, volume=7, status=StereoStatus.PLAYING, last_update=0),
        1: StereoState(device_id=1, volume=5, status=StereoStatus.STOPPED, last_update=9_000),
    }
    text = format_dashboard(snapshot, now=10_500)
    rows = [line for line in text.splitlines() if "ago" in line]
    assert len(rows) == 2
    assert rows[0].startswith("   1")
    assert "Stopped" in rows[0] and "1s ago" in rows[0]
    assert "Playing" in rows[1] and "10s ago" in rows[1]
