import pytest

from earbud_intel.estimator import (
    DEFAULT_CASE_DISCHARGE_RATE,
    DEFAULT_EARBUD_DISCHARGE_RATE,
    create_estimator,
    estimate_component,
)
from earbud_intel.models import BatteryReading, Component, DepletionRateSample, UsagePattern
from earbud_intel.profile import DeviceBatteryProfile

NOW = 1_700_000_000.0


def _profile(**reading_kwargs) -> DeviceBatteryProfile:
    reading = BatteryReading(device_address="aa:bb", device_name="Buds", **reading_kwargs)
    profile = DeviceBatteryProfile.create("Buds", "aa:bb")
    profile.update_current_state(reading, now=NOW)
    return profile


def _add_rate(profile: DeviceBatteryProfile, target: Component, minutes: float) -> None:
    profile.depletion_rates.add_sample(
        DepletionRateSample(
            timestamp=NOW,
            minutes_per_percent=minutes,
            target=target,
            start_percent=80,
            end_percent=70,
        )
    )


def test_fresh_reading_is_returned_verbatim():
    profile = _profile(left=80, right=75, case=90)

    estimate = estimate_component(profile, Component.LEFT, now=NOW + 29)

    assert estimate.level == 80.0
    assert estimate.is_real_data
    assert estimate.confidence == 1.0


def test_seed_prefers_reading_then_tracker_then_default():
    profile = _profile(left=80, right=None, case=90)
    profile.current_case = None

    assert create_estimator(profile, Component.LEFT, now=NOW).state_estimate == 80.0
    assert create_estimator(profile, Component.CASE, now=NOW).state_estimate == 90.0
    assert create_estimator(profile, Component.RIGHT, now=NOW).state_estimate == 50.0


def test_discharge_prior_from_median_or_defaults():
    profile = _profile(left=80, right=75, case=90)
    _add_rate(profile, Component.LEFT, 4.0)

    assert create_estimator(profile, Component.LEFT, now=NOW).discharge_rate == 0.25
    assert create_estimator(profile, Component.RIGHT, now=NOW).discharge_rate == (
        DEFAULT_EARBUD_DISCHARGE_RATE
    )
    assert create_estimator(profile, Component.CASE, now=NOW).discharge_rate == (
        DEFAULT_CASE_DISCHARGE_RATE
    )


def test_one_percent_precision_from_learned_rate():
    profile = _profile(left=70, right=70, left_in_ear=True, right_in_ear=True)
    _add_rate(profile, Component.LEFT, 10.0)

    estimate = estimate_component(profile, Component.LEFT, now=NOW + 30 * 60)

    # 10 minutes per 1% over half an hour
    assert estimate.level == pytest.approx(67.0)
    assert not estimate.is_real_data
    assert 0.1 <= estimate.confidence < 1.0
    assert estimate.usage_pattern is UsagePattern.MODERATE


def test_idle_earbud_drains_slower_than_worn_one():
    profile = _profile(left=80, right=80, left_in_ear=True)

    later = NOW + 2 * 3600
    worn = estimate_component(profile, Component.LEFT, now=later)
    idle = estimate_component(profile, Component.RIGHT, now=later)

    assert worn.level < idle.level < 80.0
    assert idle.usage_pattern is UsagePattern.IDLE


def test_charging_estimate_rises_and_caps():
    profile = _profile(left=50, left_charging=True)

    half_hour = estimate_component(profile, Component.LEFT, now=NOW + 30 * 60)
    day = estimate_component(profile, Component.LEFT, now=NOW + 24 * 3600)

    assert half_hour.level == pytest.approx(80.0)
    assert half_hour.usage_pattern is UsagePattern.CHARGING
    assert day.level == 100.0


def test_long_absence_is_clamped():
    profile = _profile(left=5, right=5, case=5, left_in_ear=True, right_in_ear=True)
    _add_rate(profile, Component.LEFT, 0.5)

    estimate = estimate_component(profile, Component.LEFT, now=NOW + 30 * 24 * 3600)

    assert estimate.level == 0.0
    assert estimate.confidence == 0.1


def test_predict_step_drops_and_correction_pulls_toward_measurement():
    profile = _profile(left=80, left_in_ear=True)
    estimator = create_estimator(profile, Component.LEFT, now=NOW)

    estimator.step(None, is_charging=False, in_use=True, now=NOW + 30 * 60)
    assert estimator.state_estimate < 80.0
    assert estimator.confidence < 0.8

    estimator.step(75, is_charging=False, in_use=True, now=NOW + 30 * 60)
    assert 74.0 <= estimator.state_estimate <= 76.0
    assert estimator.confidence > 0.5


def test_correction_learns_faster_discharge():
    profile = _profile(left=80, left_in_ear=True)
    estimator = create_estimator(profile, Component.LEFT, now=NOW)
    prior = estimator.discharge_rate

    estimator.step(60, is_charging=False, in_use=True, now=NOW + 20 * 60)

    assert estimator.discharge_rate > prior
    assert estimator.discharge_rate < 1.0


def test_charging_switch_adds_uncertainty():
    profile = _profile(left=50)
    estimator = create_estimator(profile, Component.LEFT, now=NOW)
    before = estimator.estimate_uncertainty

    estimator.step(None, is_charging=True, in_use=False, now=NOW)

    assert estimator.is_charging
    assert estimator.estimate_uncertainty == pytest.approx(before + 1.0 + 0.5)


def test_predictions_use_truncated_estimate():
    profile = _profile(left=30, left_in_ear=True)
    _add_rate(profile, Component.LEFT, 5.0)

    estimate = estimate_component(profile, Component.LEFT, now=NOW + 10)

    assert estimate.time_to_next_10_percent.total_seconds() == 50 * 60
    assert estimate.time_to_critical.total_seconds() == 100 * 60
