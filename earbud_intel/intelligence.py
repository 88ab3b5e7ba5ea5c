from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import learner, storage
from .estimator import estimate_component
from .models import BatteryEstimate, BatteryEvent, BatteryReading, Component
from .profile import DeviceBatteryProfile
from .settings import IntelligenceSettings, resolve_storage_dir
from .significance import classify_event_type, is_significant_update

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateStatistics:
    target: Component
    sample_count: int
    median_minutes_per_percent: Optional[float]
    mean_minutes_per_percent: Optional[float]
    confidence: Optional[float]


class BatteryIntelligence:
    """Owns the single tracked device profile and routes readings through it.

    Not thread-safe: callers serialize access themselves. Only ``save``,
    ``load`` and ``purge_all`` touch the disk and only they can raise
    (:class:`~earbud_intel.storage.StorageError`).
    """

    def __init__(
        self,
        storage_dir: Optional[Path | os.PathLike | str] = None,
        settings: Optional[IntelligenceSettings] = None,
    ) -> None:
        self.storage_dir = resolve_storage_dir(storage_dir)
        self.settings = settings or IntelligenceSettings()
        self.profile: Optional[DeviceBatteryProfile] = None

    def ensure_profile(self, device_address: str, device_name: str) -> bool:
        """Track the given device; returns True when a new profile was created."""
        if self.profile is None:
            log.debug("Creating profile for %s (%s)", device_name, device_address)
            self.profile = DeviceBatteryProfile.create(
                device_name, device_address, max_events=self.settings.max_events
            )
            return True

        if (
            self.profile.device_name != device_name
            or self.profile.device_address != device_address
        ):
            log.debug(
                "Retargeting profile from %s (%s) to %s (%s)",
                self.profile.device_name,
                self.profile.device_address,
                device_name,
                device_address,
            )
            self.profile.device_name = device_name
            self.profile.device_address = device_address
        return False

    def update(
        self, reading: BatteryReading, *, now: Optional[float] = None
    ) -> Optional[BatteryEvent]:
        """Apply one raw reading; returns the logged event when it was significant."""
        now = now if now is not None else time.time()
        reading = reading.normalized()
        self.ensure_profile(reading.device_address, reading.device_name)
        profile = self.profile

        event = None
        if is_significant_update(profile, reading, self.settings, now=now):
            event = BatteryEvent(
                timestamp=now,
                event_type=classify_event_type(profile, reading, now=now),
                left_battery=reading.left,
                right_battery=reading.right,
                case_battery=reading.case,
                left_charging=reading.left_charging,
                right_charging=reading.right_charging,
                case_charging=reading.case_charging,
                left_in_ear=reading.left_in_ear,
                right_in_ear=reading.right_in_ear,
                rssi=reading.rssi,
                session_duration=profile.session_duration(now),
            )
            profile.add_event(event)
            log.debug("Logged %s event", event.event_type.value)
            if self.settings.learning_enabled:
                learner.update_models(
                    profile.events, profile.discharge_models, now=now
                )

        profile.update_current_state(reading, now=now)
        return event

    def get_estimates(
        self, *, now: Optional[float] = None
    ) -> Optional[tuple[BatteryEstimate, BatteryEstimate, BatteryEstimate]]:
        if self.profile is None:
            return None
        now = now if now is not None else time.time()
        left, right, case = (
            estimate_component(self.profile, target, now=now) for target in Component
        )
        return left, right, case

    def get_display_levels(
        self, *, now: Optional[float] = None
    ) -> Optional[tuple[Optional[int], Optional[int], Optional[int]]]:
        estimates = self.get_estimates(now=now)
        if estimates is None:
            return None
        left, right, case = (
            estimate.display_level if self._has_reported(target) else None
            for target, estimate in zip(Component, estimates)
        )
        return left, right, case

    def _has_reported(self, target: Component) -> bool:
        return (
            self.profile.current_level(target) is not None
            or self.profile.last_level(target) is not None
        )

    def rate_statistics(self) -> list[RateStatistics]:
        if self.profile is None:
            return []
        buffer = self.profile.depletion_rates
        return [
            RateStatistics(
                target=target,
                sample_count=buffer.sample_count(target),
                median_minutes_per_percent=buffer.median_rate(target),
                mean_minutes_per_percent=buffer.mean_rate(target),
                confidence=buffer.confidence(target),
            )
            for target in Component
        ]

    def save(self) -> None:
        if self.profile is None:
            return
        storage.save_profile(self.storage_dir, self.profile)

    def load(self) -> bool:
        """Load the persisted profile; returns False when nothing is stored."""
        profile = storage.load_profile(
            self.storage_dir, max_events=self.settings.max_events
        )
        if profile is None:
            return False
        self.profile = profile
        log.debug(
            "Loaded profile for %s with %d events",
            profile.device_address,
            len(profile.events),
        )
        return True

    def purge_all(self) -> int:
        """Forget the tracked device and delete its stored data."""
        self.profile = None
        return storage.purge_profiles(self.storage_dir)
