from __future__ import annotations

import json
import logging
import math
import os
from collections import deque
from pathlib import Path
from typing import Any, Optional

from .depletion import DepletionRateBuffer
from .models import (
    BatteryEvent,
    BatteryEventType,
    BatteryHealthMetrics,
    Component,
    DepletionRateSample,
    DischargeModel,
    MAX_HISTORICAL_RATES,
    SessionType,
    UsagePattern,
    UsageSession,
    clamp_level,
)
from .profile import DeviceBatteryProfile
from .settings import MAX_DEPLETION_SAMPLES, MAX_EVENTS, PROFILE_FILENAME

log = logging.getLogger(__name__)

LEGACY_PREFIX = "device_"
LEGACY_SUFFIX = "_profile.json"


class StorageError(Exception):
    """Reading, writing or decoding persisted profile data failed."""


def profile_path(storage_dir: Path) -> Path:
    return storage_dir / PROFILE_FILENAME


def _level(value: Any) -> Optional[int]:
    if value is None:
        return None
    return clamp_level(int(value))


def _finite(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Non-finite value: {value!r}")
    return number


def _optional_finite(value: Any) -> Optional[float]:
    return _finite(value) if value is not None else None


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _event_to_dict(event: BatteryEvent) -> dict[str, Any]:
    return {
        "timestamp": event.timestamp,
        "event_type": event.event_type.value,
        "left_battery": event.left_battery,
        "right_battery": event.right_battery,
        "case_battery": event.case_battery,
        "left_charging": event.left_charging,
        "right_charging": event.right_charging,
        "case_charging": event.case_charging,
        "left_in_ear": event.left_in_ear,
        "right_in_ear": event.right_in_ear,
        "rssi": event.rssi,
        "session_duration": event.session_duration,
    }


def _event_from_dict(data: dict[str, Any]) -> BatteryEvent:
    return BatteryEvent(
        timestamp=_finite(data["timestamp"]),
        event_type=BatteryEventType(data["event_type"]),
        left_battery=_level(data.get("left_battery")),
        right_battery=_level(data.get("right_battery")),
        case_battery=_level(data.get("case_battery")),
        left_charging=bool(data.get("left_charging", False)),
        right_charging=bool(data.get("right_charging", False)),
        case_charging=bool(data.get("case_charging", False)),
        left_in_ear=bool(data.get("left_in_ear", False)),
        right_in_ear=bool(data.get("right_in_ear", False)),
        rssi=_optional_int(data.get("rssi")),
        session_duration=_optional_finite(data.get("session_duration")),
    )


def _sample_to_dict(sample: DepletionRateSample) -> dict[str, Any]:
    return {
        "timestamp": sample.timestamp,
        "minutes_per_percent": sample.minutes_per_percent,
        "target": sample.target.value,
        "start_percent": sample.start_percent,
        "end_percent": sample.end_percent,
    }


def _sample_from_dict(data: dict[str, Any]) -> DepletionRateSample:
    return DepletionRateSample(
        timestamp=_finite(data["timestamp"]),
        minutes_per_percent=_finite(data["minutes_per_percent"]),
        target=Component(data["target"]),
        start_percent=clamp_level(int(data["start_percent"])),
        end_percent=clamp_level(int(data["end_percent"])),
    )


def _model_to_dict(model: DischargeModel) -> dict[str, Any]:
    return {
        "discharge_rate_per_hour": model.discharge_rate_per_hour,
        "confidence": model.confidence,
        "sample_count": model.sample_count,
        "last_updated": model.last_updated,
        "rate_variance": model.rate_variance,
    }


def _model_from_dict(data: dict[str, Any]) -> DischargeModel:
    return DischargeModel(
        discharge_rate_per_hour=float(data["discharge_rate_per_hour"]),
        confidence=float(data["confidence"]),
        sample_count=int(data["sample_count"]),
        last_updated=float(data["last_updated"]),
        rate_variance=float(data["rate_variance"]),
    )


def _session_to_dict(session: Optional[UsageSession]) -> Optional[dict[str, Any]]:
    if session is None:
        return None
    return {
        "start_time": session.start_time,
        "start_left": session.start_left,
        "start_right": session.start_right,
        "start_case": session.start_case,
        "session_type": session.session_type.value,
        "usage_pattern": session.usage_pattern.value,
    }


def _session_from_dict(data: Optional[dict[str, Any]]) -> Optional[UsageSession]:
    if data is None:
        return None
    return UsageSession(
        start_time=_finite(data["start_time"]),
        start_left=_level(data.get("start_left")),
        start_right=_level(data.get("start_right")),
        start_case=_level(data.get("start_case")),
        session_type=SessionType(data.get("session_type", SessionType.UNKNOWN.value)),
        usage_pattern=UsagePattern(
            data.get("usage_pattern", UsagePattern.MODERATE.value)
        ),
    )


def _health_to_dict(health: BatteryHealthMetrics) -> dict[str, Any]:
    return {
        "max_observed_left": health.max_observed_left,
        "max_observed_right": health.max_observed_right,
        "max_observed_case": health.max_observed_case,
        "historical_discharge_rates": list(health.historical_discharge_rates),
        "charging_efficiency": health.charging_efficiency,
        "estimated_cycles": health.estimated_cycles,
        "health_score": health.health_score,
    }


def _health_from_dict(data: dict[str, Any]) -> BatteryHealthMetrics:
    return BatteryHealthMetrics(
        max_observed_left=clamp_level(int(data.get("max_observed_left", 0))),
        max_observed_right=clamp_level(int(data.get("max_observed_right", 0))),
        max_observed_case=clamp_level(int(data.get("max_observed_case", 0))),
        historical_discharge_rates=deque(
            (_finite(rate) for rate in data.get("historical_discharge_rates", [])),
            maxlen=MAX_HISTORICAL_RATES,
        ),
        charging_efficiency=float(data.get("charging_efficiency", 1.0)),
        estimated_cycles=int(data.get("estimated_cycles", 0)),
        health_score=float(data.get("health_score", 1.0)),
    )


def profile_to_dict(profile: DeviceBatteryProfile) -> dict[str, Any]:
    buffer = profile.depletion_rates
    return {
        "device_name": profile.device_name,
        "device_address": profile.device_address,
        "current_left": profile.current_left,
        "current_right": profile.current_right,
        "current_case": profile.current_case,
        "last_update": profile.last_update,
        "left_charging": profile.left_charging,
        "right_charging": profile.right_charging,
        "case_charging": profile.case_charging,
        "left_in_ear": profile.left_in_ear,
        "right_in_ear": profile.right_in_ear,
        "events": [_event_to_dict(event) for event in profile.events],
        "discharge_models": {
            pattern.value: _model_to_dict(model)
            for pattern, model in profile.discharge_models.items()
        },
        "current_session": _session_to_dict(profile.current_session),
        "health_metrics": _health_to_dict(profile.health_metrics),
        "depletion_rates": {
            "max_samples": buffer.max_samples,
            **{
                target.value: [_sample_to_dict(s) for s in buffer.samples(target)]
                for target in Component
            },
        },
        "last_levels": {
            target.value: list(tracked) if tracked is not None else None
            for target, tracked in profile.last_levels.items()
        },
    }


def profile_from_dict(
    data: dict[str, Any], *, max_events: int = MAX_EVENTS
) -> DeviceBatteryProfile:
    rates = data.get("depletion_rates", {})
    buffer = DepletionRateBuffer(int(rates.get("max_samples", MAX_DEPLETION_SAMPLES)))
    for target in Component:
        buffer.extend(_sample_from_dict(item) for item in rates.get(target.value, []))

    last_levels = {}
    for target in Component:
        tracked = data.get("last_levels", {}).get(target.value)
        if tracked is None:
            last_levels[target] = None
        else:
            last_levels[target] = (clamp_level(int(tracked[0])), _finite(tracked[1]))

    return DeviceBatteryProfile(
        device_name=str(data["device_name"]),
        device_address=str(data["device_address"]),
        current_left=_level(data.get("current_left")),
        current_right=_level(data.get("current_right")),
        current_case=_level(data.get("current_case")),
        last_update=_optional_finite(data.get("last_update")),
        left_charging=bool(data.get("left_charging", False)),
        right_charging=bool(data.get("right_charging", False)),
        case_charging=bool(data.get("case_charging", False)),
        left_in_ear=bool(data.get("left_in_ear", False)),
        right_in_ear=bool(data.get("right_in_ear", False)),
        events=deque(
            (_event_from_dict(item) for item in data.get("events", [])),
            maxlen=max_events,
        ),
        discharge_models={
            UsagePattern(key): _model_from_dict(value)
            for key, value in data.get("discharge_models", {}).items()
        },
        current_session=_session_from_dict(data.get("current_session")),
        health_metrics=_health_from_dict(data.get("health_metrics", {})),
        depletion_rates=buffer,
        last_levels=last_levels,
    )


def _read_profile(path: Path, max_events: int) -> DeviceBatteryProfile:
    try:
        data = json.loads(path.read_text())
        return profile_from_dict(data, max_events=max_events)
    except (
        OSError,
        ValueError,
        KeyError,
        TypeError,
        IndexError,
        AttributeError,
        OverflowError,
    ) as exc:
        raise StorageError(f"Cannot read profile {path}: {exc}") from exc


def save_profile(storage_dir: Path, profile: DeviceBatteryProfile) -> Path:
    path = profile_path(storage_dir)
    # The stored copy is only ever swapped in whole.
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        storage_dir.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(json.dumps(profile_to_dict(profile), indent=2))
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as exc:
        tmp_path.unlink(missing_ok=True)
        raise StorageError(f"Cannot write profile {path}: {exc}") from exc
    log.debug("Saved profile for %s to %s", profile.device_address, path)
    return path


def _legacy_profiles(storage_dir: Path) -> list[Path]:
    try:
        return sorted(
            path
            for path in storage_dir.iterdir()
            if path.is_file()
            and path.name.startswith(LEGACY_PREFIX)
            and path.name.endswith(LEGACY_SUFFIX)
        )
    except OSError as exc:
        raise StorageError(f"Cannot list {storage_dir}: {exc}") from exc


def _migrate_legacy(storage_dir: Path, max_events: int) -> Optional[DeviceBatteryProfile]:
    for legacy in _legacy_profiles(storage_dir):
        try:
            profile = _read_profile(legacy, max_events)
        except StorageError as exc:
            log.warning("Skipping unreadable legacy profile %s: %s", legacy.name, exc)
            continue
        save_profile(storage_dir, profile)
        try:
            legacy.unlink()
        except OSError as exc:
            raise StorageError(f"Cannot remove legacy profile {legacy}: {exc}") from exc
        log.info("Migrated legacy profile %s to %s", legacy.name, PROFILE_FILENAME)
        return profile
    return None


def load_profile(
    storage_dir: Path, *, max_events: int = MAX_EVENTS
) -> Optional[DeviceBatteryProfile]:
    path = profile_path(storage_dir)
    if path.exists():
        return _read_profile(path, max_events)
    if not storage_dir.is_dir():
        return None
    return _migrate_legacy(storage_dir, max_events)


def purge_profiles(storage_dir: Path) -> int:
    if not storage_dir.is_dir():
        return 0
    removed = 0
    try:
        for path in storage_dir.iterdir():
            if path.is_file() and path.suffix == ".json" and "profile" in path.name:
                path.unlink()
                removed += 1
    except OSError as exc:
        raise StorageError(f"Cannot purge profiles in {storage_dir}: {exc}") from exc
    log.info("Purged %d profile files from %s", removed, storage_dir)
    return removed
