from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .intelligence import BatteryIntelligence
from .models import BatteryReading
from .settings import IntelligenceSettings
from .storage import StorageError

log = logging.getLogger(__name__)


@dataclass
class ReplayResult:
    applied: int = 0
    significant: int = 0
    skipped: int = 0


def record_reading(
    reading: BatteryReading,
    storage_dir: Optional[Path] = None,
    settings: Optional[IntelligenceSettings] = None,
    *,
    now: Optional[float] = None,
) -> BatteryIntelligence:
    intelligence = BatteryIntelligence(storage_dir, settings)
    intelligence.load()
    event = intelligence.update(reading, now=now if now is not None else time.time())
    intelligence.save()
    if event is not None:
        log.info(
            "Logged %s event for %s: left=%s right=%s case=%s",
            event.event_type.value,
            reading.device_address,
            reading.left,
            reading.right,
            reading.case,
        )
    else:
        log.debug("Reading for %s updated current state only", reading.device_address)
    return intelligence


def _parse_timestamp(raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValueError(f"Invalid timestamp: {raw!r}")
    if isinstance(raw, (int, float)):
        if not math.isfinite(raw):
            raise ValueError(f"Invalid timestamp: {raw!r}")
        return float(raw)
    if isinstance(raw, str):
        return datetime.fromisoformat(raw).timestamp()
    raise ValueError(f"Invalid timestamp: {raw!r}")


def _parse_level(entry: dict[str, Any], key: str) -> Optional[int]:
    raw = entry[key]
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValueError(f"Invalid {key}: {raw!r}")
    if not math.isfinite(raw):
        raise ValueError(f"Invalid {key}: {raw!r}")
    # Captured logs mark missing components with negative levels.
    return int(raw) if raw >= 0 else None


def _parse_rssi(raw: Any) -> Optional[int]:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"Invalid rssi: {raw!r}")
    return raw


def _entry_to_reading(
    entry: dict[str, Any], device_address: str, device_name: str
) -> tuple[float, BatteryReading]:
    ts = _parse_timestamp(entry["timestamp"])
    reading = BatteryReading(
        device_address=device_address,
        device_name=device_name,
        left=_parse_level(entry, "left_battery"),
        right=_parse_level(entry, "right_battery"),
        case=_parse_level(entry, "case_battery"),
        left_charging=bool(entry.get("left_charging", False)),
        right_charging=bool(entry.get("right_charging", False)),
        case_charging=bool(entry.get("case_charging", False)),
        left_in_ear=bool(entry.get("left_in_ear", False)),
        right_in_ear=bool(entry.get("right_in_ear", False)),
        rssi=_parse_rssi(entry.get("rssi")),
    )
    return ts, reading


def replay_readings(
    intelligence: BatteryIntelligence,
    log_path: Path,
    *,
    device_address: str,
    device_name: str,
) -> ReplayResult:
    """Feed a captured readings log through the estimator in timestamp order.

    Malformed entries are skipped with a warning; they never abort the batch.
    """
    try:
        data = json.loads(log_path.read_text())
    except (OSError, ValueError) as exc:
        raise StorageError(f"Cannot read readings log {log_path}: {exc}") from exc

    entries = data.get("entries") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise StorageError(f"Readings log {log_path} has no entries list")

    result = ReplayResult()
    parsed: list[tuple[float, BatteryReading]] = []
    for index, entry in enumerate(entries):
        try:
            if not isinstance(entry, dict):
                raise ValueError("entry is not an object")
            parsed.append(_entry_to_reading(entry, device_address, device_name))
        except (KeyError, ValueError, TypeError, OverflowError) as exc:
            log.warning("Skipping entry %d in %s: %s", index, log_path.name, exc)
            result.skipped += 1

    parsed.sort(key=lambda item: item[0])
    for ts, reading in parsed:
        if intelligence.update(reading, now=ts) is not None:
            result.significant += 1
        result.applied += 1

    log.info(
        "Replayed %d entries from %s (%d significant, %d skipped)",
        result.applied,
        log_path,
        result.significant,
        result.skipped,
    )
    return result
