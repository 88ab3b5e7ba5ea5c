from earbud_intel.graph import _date_format, render_history
from earbud_intel.models import BatteryEvent, BatteryEventType

NOW = 1_700_000_000.0


def _event(ts: float, left, right, case) -> BatteryEvent:
    return BatteryEvent(
        timestamp=ts,
        event_type=BatteryEventType.DISCHARGE,
        left_battery=left,
        right_battery=right,
        case_battery=case,
        left_charging=False,
        right_charging=False,
        case_charging=False,
        left_in_ear=True,
        right_in_ear=True,
    )


def test_date_format_widens_with_window():
    assert _date_format([_event(NOW, 1, 1, 1), _event(NOW + 600, 1, 1, 1)]) == (
        "%m-%d %H:%M"
    )
    assert _date_format([_event(NOW, 1, 1, 1), _event(NOW + 2 * 86400, 1, 1, 1)]) == (
        "%m-%d %H:00"
    )
    assert _date_format([_event(NOW, 1, 1, 1), _event(NOW + 9 * 86400, 1, 1, 1)]) == (
        "%m-%d"
    )


def test_render_history_writes_image(tmp_path):
    output = tmp_path / "plots" / "history.png"
    events = [_event(NOW, 90, 88, None), _event(NOW + 1800, 80, None, 70)]

    render_history(events, title="Buds", show=False, output=output)

    assert output.exists()
    assert output.stat().st_size > 0
