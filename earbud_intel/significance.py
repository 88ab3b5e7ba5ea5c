from __future__ import annotations

from typing import TYPE_CHECKING

from .models import CRITICAL_LEVEL, BatteryEventType, BatteryReading, Component
from .settings import IntelligenceSettings

if TYPE_CHECKING:
    from .profile import DeviceBatteryProfile

SIGNIFICANT_BATTERY_DROP = 10
RECONNECT_GAP_SECONDS = 5 * 60


def _level_pairs(profile: DeviceBatteryProfile, reading: BatteryReading):
    for target in Component:
        new = reading.level(target)
        old = profile.current_level(target)
        if new is not None and old is not None:
            yield old, new


def _charging_changed(profile: DeviceBatteryProfile, reading: BatteryReading) -> bool:
    return any(
        reading.charging(target) != profile.is_charging(target)
        for target in Component
    )


def _in_ear_changed(profile: DeviceBatteryProfile, reading: BatteryReading) -> bool:
    return (
        reading.left_in_ear != profile.left_in_ear
        or reading.right_in_ear != profile.right_in_ear
    )


def is_significant_update(
    profile: DeviceBatteryProfile,
    reading: BatteryReading,
    settings: IntelligenceSettings,
    *,
    now: float,
) -> bool:
    """Decide whether a reading deserves a slot in the event log.

    Current-state fields are refreshed on every reading regardless; only the
    event log and the discharge models depend on this decision.
    """
    if profile.last_update is None:
        return True

    # Any change of min_battery_change or more after the gap is already
    # covered here, since the gap alone qualifies.
    elapsed = max(0.0, now - profile.last_update)
    if elapsed >= settings.min_time_gap_seconds:
        return True

    for old, new in _level_pairs(profile, reading):
        if old - new >= SIGNIFICANT_BATTERY_DROP:
            return True

    if _charging_changed(profile, reading):
        return True

    return _in_ear_changed(profile, reading)


def classify_event_type(
    profile: DeviceBatteryProfile, reading: BatteryReading, *, now: float
) -> BatteryEventType:
    if any(
        reading.charging(target) and not profile.is_charging(target)
        for target in Component
    ):
        return BatteryEventType.CHARGING_STARTED
    if any(
        not reading.charging(target) and profile.is_charging(target)
        for target in Component
    ):
        return BatteryEventType.CHARGING_STOPPED

    if (reading.left_in_ear and not profile.left_in_ear) or (
        reading.right_in_ear and not profile.right_in_ear
    ):
        return BatteryEventType.USAGE_STARTED
    if (not reading.left_in_ear and profile.left_in_ear) or (
        not reading.right_in_ear and profile.right_in_ear
    ):
        return BatteryEventType.USAGE_STOPPED

    for level in (reading.left, reading.right):
        if level is not None and level <= CRITICAL_LEVEL:
            return BatteryEventType.CRITICAL_BATTERY

    if profile.last_update is not None:
        if now - profile.last_update >= RECONNECT_GAP_SECONDS:
            return BatteryEventType.RECONNECTED_AFTER_GAP

    return BatteryEventType.DISCHARGE
