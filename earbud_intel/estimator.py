"""Recursive (Kalman-style) battery level estimation.

Estimators are transient: every query seeds a fresh one from the profile and
runs a single predict/correct cycle, so nothing here is ever persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .models import BatteryEstimate, Component, UsagePattern
from .prediction import time_to_critical, time_to_next_drop
from .profile import DeviceBatteryProfile

PROCESS_NOISE_VARIANCE = 0.01
MEASUREMENT_NOISE_VARIANCE = 1.0
INITIAL_ESTIMATE_UNCERTAINTY = 2.0
INITIAL_CONFIDENCE = 0.8
MIN_CONFIDENCE = 0.1
MIN_UNCERTAINTY = 0.1

FRESH_READING_SECONDS = 30.0
DEFAULT_LEVEL = 50

# percent per minute
DEFAULT_EARBUD_DISCHARGE_RATE = 0.05
DEFAULT_CASE_DISCHARGE_RATE = 0.01
FALLBACK_DISCHARGE_RATE = 0.001
EARBUD_CHARGING_RATE = 1.0
CASE_CHARGING_RATE = 0.3

CHARGING_UNCERTAINTY_PER_MINUTE = 0.02
CHARGING_SWITCH_UNCERTAINTY = 1.0
MISSING_MEASUREMENT_UNCERTAINTY = 0.5
MISSING_MEASUREMENT_DECAY = 0.95
RATE_SMOOTHING = 0.3


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _usage_factor(target: Component, in_use: bool) -> float:
    if target.is_earbud:
        return 1.0 if in_use else 0.3
    return 0.3 if in_use else 0.1


@dataclass
class KalmanBatteryEstimator:
    state_estimate: float
    estimate_uncertainty: float
    process_noise: float
    measurement_noise: float
    discharge_rate: float
    last_update: float
    target: Component
    is_charging: bool
    confidence: float

    def step(
        self,
        measurement: Optional[float],
        *,
        is_charging: bool,
        in_use: bool,
        now: float,
    ) -> None:
        """Run one predict/correct cycle; the correction is skipped without a measurement."""
        if self.is_charging != is_charging:
            self.is_charging = is_charging
            self.estimate_uncertainty += CHARGING_SWITCH_UNCERTAINTY

        minutes_elapsed = max(0.0, now - self.last_update) / 60.0
        self._predict(minutes_elapsed, in_use)

        if measurement is not None:
            self._correct(float(measurement), minutes_elapsed)
        else:
            self.estimate_uncertainty += MISSING_MEASUREMENT_UNCERTAINTY
            staleness = 1.0 / (1.0 + minutes_elapsed / 60.0)
            self.confidence *= MISSING_MEASUREMENT_DECAY * staleness

        self.state_estimate = _clamp(self.state_estimate, 0.0, 100.0)
        self.estimate_uncertainty = max(self.estimate_uncertainty, MIN_UNCERTAINTY)
        self.confidence = _clamp(self.confidence, MIN_CONFIDENCE, 1.0)
        self.last_update = now

    def _predict(self, minutes_elapsed: float, in_use: bool) -> None:
        if self.is_charging:
            rate = (
                EARBUD_CHARGING_RATE if self.target.is_earbud else CASE_CHARGING_RATE
            )
            self.state_estimate += rate * minutes_elapsed
            self.estimate_uncertainty += (
                CHARGING_UNCERTAINTY_PER_MINUTE * minutes_elapsed
            )
        else:
            factor = _usage_factor(self.target, in_use)
            self.state_estimate -= self.discharge_rate * minutes_elapsed * factor
        self.state_estimate = _clamp(self.state_estimate, 0.0, 100.0)
        self.estimate_uncertainty += self.process_noise * minutes_elapsed

    def _correct(self, measured: float, minutes_elapsed: float) -> None:
        gain = self.estimate_uncertainty / (
            self.estimate_uncertainty + self.measurement_noise
        )
        innovation = measured - self.state_estimate
        self.state_estimate += gain * innovation
        self.estimate_uncertainty *= 1.0 - gain
        self.confidence = min(1.0 / (1.0 + self.estimate_uncertainty), 1.0)

        if not self.is_charging and innovation < -1.0 and minutes_elapsed > 5.0:
            observed_rate = -innovation / minutes_elapsed
            # Rates outside (0, 1) %/min are sensor glitches, not drain.
            if 0.0 < observed_rate < 1.0:
                self.discharge_rate = (
                    1.0 - RATE_SMOOTHING
                ) * self.discharge_rate + RATE_SMOOTHING * observed_rate


def _seed_level(profile: DeviceBatteryProfile, target: Component) -> float:
    level = profile.current_level(target)
    if level is not None:
        return float(level)
    tracked = profile.last_level(target)
    if tracked is not None:
        return float(tracked[0])
    return float(DEFAULT_LEVEL)


def _discharge_prior(profile: DeviceBatteryProfile, target: Component) -> float:
    minutes_per_percent = profile.depletion_rates.median_rate(target)
    if minutes_per_percent is None:
        if target.is_earbud:
            return DEFAULT_EARBUD_DISCHARGE_RATE
        return DEFAULT_CASE_DISCHARGE_RATE
    if minutes_per_percent <= 0:
        return FALLBACK_DISCHARGE_RATE
    return 1.0 / minutes_per_percent


def create_estimator(
    profile: DeviceBatteryProfile,
    target: Component,
    *,
    now: float,
    initial_level: Optional[float] = None,
) -> KalmanBatteryEstimator:
    level = initial_level if initial_level is not None else _seed_level(profile, target)
    return KalmanBatteryEstimator(
        state_estimate=_clamp(level, 0.0, 100.0),
        estimate_uncertainty=INITIAL_ESTIMATE_UNCERTAINTY,
        process_noise=PROCESS_NOISE_VARIANCE,
        measurement_noise=MEASUREMENT_NOISE_VARIANCE,
        discharge_rate=_discharge_prior(profile, target),
        last_update=profile.last_update if profile.last_update is not None else now,
        target=target,
        is_charging=profile.is_charging(target),
        confidence=INITIAL_CONFIDENCE,
    )


def _usage_pattern(profile: DeviceBatteryProfile, target: Component) -> UsagePattern:
    if profile.is_charging(target):
        return UsagePattern.CHARGING
    if target.is_earbud and profile.is_in_use(target):
        if profile.current_session is not None:
            return profile.current_session.usage_pattern
        return UsagePattern.MODERATE
    return UsagePattern.IDLE


def _build_estimate(
    profile: DeviceBatteryProfile,
    target: Component,
    level: float,
    *,
    is_real_data: bool,
    confidence: float,
) -> BatteryEstimate:
    whole = int(level)
    buffer = profile.depletion_rates
    return BatteryEstimate(
        level=level,
        is_real_data=is_real_data,
        confidence=confidence,
        time_to_next_10_percent=time_to_next_drop(buffer, whole, 10, target),
        time_to_critical=time_to_critical(buffer, whole, target),
        usage_pattern=_usage_pattern(profile, target),
    )


def estimate_component(
    profile: DeviceBatteryProfile, target: Component, *, now: float
) -> BatteryEstimate:
    measured = profile.current_level(target)
    if measured is not None and profile.last_update is not None:
        if now - profile.last_update < FRESH_READING_SECONDS:
            return _build_estimate(
                profile, target, float(measured), is_real_data=True, confidence=1.0
            )

    estimator = create_estimator(profile, target, now=now)
    estimator.step(
        None,
        is_charging=profile.is_charging(target),
        in_use=profile.is_in_use(target),
        now=now,
    )
    return _build_estimate(
        profile,
        target,
        estimator.state_estimate,
        is_real_data=False,
        confidence=estimator.confidence,
    )
