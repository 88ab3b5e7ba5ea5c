from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_STORAGE_DIR = Path.home() / ".local" / "share" / "earbud-intel"
STORAGE_DIR_ENV = "EARBUD_INTEL_DIR"
PROFILE_FILENAME = "battery_profile.json"

MAX_EVENTS = 200
MAX_DEPLETION_SAMPLES = 100


@dataclass(frozen=True)
class IntelligenceSettings:
    learning_enabled: bool = True
    high_confidence_minutes: int = 5
    medium_confidence_minutes: int = 30
    low_confidence_minutes: int = 60
    min_battery_change: int = 5
    min_time_gap_minutes: int = 5
    max_events: int = MAX_EVENTS

    @property
    def min_time_gap_seconds(self) -> float:
        return self.min_time_gap_minutes * 60.0


def confidence_band(age_minutes: float, settings: IntelligenceSettings) -> str:
    """Label how trustworthy a reading of the given age is."""
    if age_minutes < settings.high_confidence_minutes:
        return "high"
    if age_minutes < settings.medium_confidence_minutes:
        return "medium"
    if age_minutes < settings.low_confidence_minutes:
        return "low"
    return "stale"


def resolve_storage_dir(storage_dir: Optional[Path | os.PathLike | str]) -> Path:
    if isinstance(storage_dir, (str, os.PathLike)):
        return Path(storage_dir).expanduser()
    env = os.environ.get(STORAGE_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return DEFAULT_STORAGE_DIR
