from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from .depletion import DepletionRateBuffer
from .models import (
    BatteryEvent,
    BatteryEventType,
    BatteryHealthMetrics,
    BatteryReading,
    Component,
    DepletionRateSample,
    DischargeModel,
    UsagePattern,
    UsageSession,
)
from .settings import MAX_EVENTS
from .significance import SIGNIFICANT_BATTERY_DROP

log = logging.getLogger(__name__)


def _empty_trackers() -> dict[Component, Optional[tuple[int, float]]]:
    return {target: None for target in Component}


@dataclass
class DeviceBatteryProfile:
    device_name: str
    device_address: str
    current_left: Optional[int] = None
    current_right: Optional[int] = None
    current_case: Optional[int] = None
    last_update: Optional[float] = None
    left_charging: bool = False
    right_charging: bool = False
    case_charging: bool = False
    left_in_ear: bool = False
    right_in_ear: bool = False
    events: deque = field(default_factory=lambda: deque(maxlen=MAX_EVENTS))
    discharge_models: dict[UsagePattern, DischargeModel] = field(default_factory=dict)
    current_session: Optional[UsageSession] = None
    health_metrics: BatteryHealthMetrics = field(default_factory=BatteryHealthMetrics)
    depletion_rates: DepletionRateBuffer = field(default_factory=DepletionRateBuffer)
    last_levels: dict[Component, Optional[tuple[int, float]]] = field(
        default_factory=_empty_trackers
    )

    @classmethod
    def create(
        cls, device_name: str, device_address: str, *, max_events: int = MAX_EVENTS
    ) -> DeviceBatteryProfile:
        return cls(
            device_name=device_name,
            device_address=device_address,
            events=deque(maxlen=max_events),
        )

    def current_level(self, target: Component) -> Optional[int]:
        return getattr(self, f"current_{target.value}")

    def last_level(self, target: Component) -> Optional[tuple[int, float]]:
        return self.last_levels.get(target)

    def is_charging(self, target: Component) -> bool:
        return getattr(self, f"{target.value}_charging")

    def is_in_use(self, target: Component) -> bool:
        if target is Component.LEFT:
            return self.left_in_ear
        if target is Component.RIGHT:
            return self.right_in_ear
        # The case works while at least one earbud sits in it.
        return not self.left_in_ear or not self.right_in_ear

    def add_event(self, event: BatteryEvent) -> None:
        self.events.append(event)
        if event.event_type is BatteryEventType.CHARGING_STARTED:
            self.health_metrics.estimated_cycles += 1

    def session_duration(self, now: float) -> Optional[float]:
        if self.current_session is None:
            return None
        return max(0.0, now - self.current_session.start_time)

    def update_current_state(
        self, reading: BatteryReading, *, now: float
    ) -> list[DepletionRateSample]:
        """Refresh the cheap state fields; runs for every reading."""
        samples = []
        for target in Component:
            sample = self._track_depletion(target, reading, now)
            if sample is not None:
                samples.append(sample)

        self.current_left = reading.left
        self.current_right = reading.right
        self.current_case = reading.case
        self.left_charging = reading.left_charging
        self.right_charging = reading.right_charging
        self.case_charging = reading.case_charging
        self.left_in_ear = reading.left_in_ear
        self.right_in_ear = reading.right_in_ear
        self.last_update = now

        if reading.left_in_ear or reading.right_in_ear:
            if self.current_session is None:
                self.current_session = UsageSession(
                    start_time=now,
                    start_left=reading.left,
                    start_right=reading.right,
                    start_case=reading.case,
                )
                log.debug("Usage session started")
        elif self.current_session is not None:
            log.debug(
                "Usage session ended after %.1f minutes",
                (now - self.current_session.start_time) / 60.0,
            )
            self.current_session = None

        for target in Component:
            level = reading.level(target)
            if level is not None and not reading.charging(target):
                self.health_metrics.observe(target, level)

        return samples

    def _track_depletion(
        self, target: Component, reading: BatteryReading, now: float
    ) -> Optional[DepletionRateSample]:
        level = reading.level(target)
        if level is None:
            return None

        if reading.charging(target):
            # A charge cycle invalidates the discharge trend.
            self.last_levels[target] = None
            return None

        tracked = self.last_levels.get(target)
        if tracked is None:
            self.last_levels[target] = (level, now)
            return None

        last_level, last_time = tracked
        dropped = last_level - level
        if dropped < SIGNIFICANT_BATTERY_DROP:
            return None

        minutes = max(0.0, now - last_time) / 60.0
        sample = DepletionRateSample(
            timestamp=now,
            minutes_per_percent=minutes / dropped,
            target=target,
            start_percent=last_level,
            end_percent=level,
        )
        self.depletion_rates.add_sample(sample)
        if sample.minutes_per_percent > 0:
            self.health_metrics.historical_discharge_rates.append(
                60.0 / sample.minutes_per_percent
            )
        self.last_levels[target] = (level, now)
        log.debug(
            "%s depletion sample: %d%% -> %d%% at %.2f minutes per 1%%",
            target.value,
            last_level,
            level,
            sample.minutes_per_percent,
        )
        return sample
