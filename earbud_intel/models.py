from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional

CRITICAL_LEVEL = 10
MAX_HISTORICAL_RATES = 50


class Component(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    CASE = "case"

    @property
    def is_earbud(self) -> bool:
        return self is not Component.CASE


class BatteryEventType(str, Enum):
    DISCHARGE = "discharge"
    CHARGING_STARTED = "charging_started"
    CHARGING_STOPPED = "charging_stopped"
    USAGE_STARTED = "usage_started"
    USAGE_STOPPED = "usage_stopped"
    RECONNECTED_AFTER_GAP = "reconnected_after_gap"
    CRITICAL_BATTERY = "critical_battery"
    HEALTH_DEGRADATION = "health_degradation"


class UsagePattern(str, Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    EXTREME = "extreme"
    IDLE = "idle"
    CHARGING = "charging"


class SessionType(str, Enum):
    MUSIC = "music"
    CALLS = "calls"
    MIXED = "mixed"
    GAMING = "gaming"
    WORKOUT = "workout"
    UNKNOWN = "unknown"


def clamp_level(value: Optional[float]) -> Optional[int]:
    if value is None:
        return None
    return int(max(0, min(100, round(value))))


@dataclass
class BatteryReading:
    """One raw scan result handed over by the scanning side."""

    device_address: str
    device_name: str
    left: Optional[int] = None
    right: Optional[int] = None
    case: Optional[int] = None
    left_charging: bool = False
    right_charging: bool = False
    case_charging: bool = False
    left_in_ear: bool = False
    right_in_ear: bool = False
    rssi: Optional[int] = None

    def level(self, target: Component) -> Optional[int]:
        return getattr(self, target.value)

    def charging(self, target: Component) -> bool:
        return getattr(self, f"{target.value}_charging")

    def normalized(self) -> BatteryReading:
        return BatteryReading(
            device_address=self.device_address,
            device_name=self.device_name,
            left=clamp_level(self.left),
            right=clamp_level(self.right),
            case=clamp_level(self.case),
            left_charging=bool(self.left_charging),
            right_charging=bool(self.right_charging),
            case_charging=bool(self.case_charging),
            left_in_ear=bool(self.left_in_ear),
            right_in_ear=bool(self.right_in_ear),
            rssi=self.rssi,
        )


@dataclass(frozen=True)
class BatteryEvent:
    timestamp: float
    event_type: BatteryEventType
    left_battery: Optional[int]
    right_battery: Optional[int]
    case_battery: Optional[int]
    left_charging: bool
    right_charging: bool
    case_charging: bool
    left_in_ear: bool
    right_in_ear: bool
    rssi: Optional[int] = None
    session_duration: Optional[float] = None

    def level(self, target: Component) -> Optional[int]:
        return getattr(self, f"{target.value}_battery")


@dataclass(frozen=True)
class DepletionRateSample:
    timestamp: float
    minutes_per_percent: float
    target: Component
    start_percent: int
    end_percent: int


@dataclass
class DischargeModel:
    discharge_rate_per_hour: float
    confidence: float
    sample_count: int
    last_updated: float
    rate_variance: float


@dataclass
class UsageSession:
    start_time: float
    start_left: Optional[int]
    start_right: Optional[int]
    start_case: Optional[int]
    session_type: SessionType = SessionType.UNKNOWN
    usage_pattern: UsagePattern = UsagePattern.MODERATE


@dataclass
class BatteryHealthMetrics:
    max_observed_left: int = 0
    max_observed_right: int = 0
    max_observed_case: int = 0
    historical_discharge_rates: deque = field(
        default_factory=lambda: deque(maxlen=MAX_HISTORICAL_RATES)
    )
    charging_efficiency: float = 1.0
    estimated_cycles: int = 0
    health_score: float = 1.0

    def max_observed(self, target: Component) -> int:
        return getattr(self, f"max_observed_{target.value}")

    def observe(self, target: Component, level: int) -> None:
        attr = f"max_observed_{target.value}"
        if level > getattr(self, attr):
            setattr(self, attr, level)
        self.health_score = self._health_score()

    def _health_score(self) -> float:
        # A component that never reported keeps its maximum at zero.
        maxima = [self.max_observed(target) for target in Component]
        observed = [value for value in maxima if value > 0]
        if not observed:
            return 1.0
        return sum(observed) / len(observed) / 100.0


@dataclass
class BatteryEstimate:
    level: float
    is_real_data: bool
    confidence: float
    time_to_next_10_percent: Optional[timedelta] = None
    time_to_critical: Optional[timedelta] = None
    usage_pattern: Optional[UsagePattern] = None

    @property
    def display_level(self) -> int:
        return int(max(0, min(100, round(self.level))))
