from pathlib import Path

import pytest

from earbud_intel.intelligence import BatteryIntelligence
from earbud_intel.models import BatteryEventType, BatteryReading, Component
from earbud_intel.settings import PROFILE_FILENAME, IntelligenceSettings
from earbud_intel.storage import StorageError

NOW = 1_700_000_000.0


def _reading(left=80, right=75, case=90, *, in_ear=True, **flags) -> BatteryReading:
    flags.setdefault("left_in_ear", in_ear)
    flags.setdefault("right_in_ear", in_ear)
    return BatteryReading(
        device_address="test_device",
        device_name="Test Buds",
        left=left,
        right=right,
        case=case,
        rssi=-45,
        **flags,
    )


def test_no_profile_means_no_estimates(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)

    assert intelligence.get_estimates(now=NOW) is None
    assert intelligence.get_display_levels(now=NOW) is None
    assert intelligence.rate_statistics() == []


def test_ensure_profile_creates_then_retargets(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)

    assert intelligence.ensure_profile("635a3f0e3d1d", "Buds Pro 2")
    assert not intelligence.ensure_profile("635a3f0e3d1d", "Jay's Buds")
    assert intelligence.profile.device_name == "Jay's Buds"

    assert not intelligence.ensure_profile("aa:bb:cc:dd:ee:ff", "Other Buds")
    assert intelligence.profile.device_address == "aa:bb:cc:dd:ee:ff"


def test_identical_updates_log_one_event(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)

    first = intelligence.update(_reading(), now=NOW)
    second = intelligence.update(_reading(), now=NOW + 5)

    assert first is not None
    assert second is None
    assert len(intelligence.profile.events) == 1


def test_ten_point_drop_logs_event_immediately(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(), now=NOW)

    event = intelligence.update(_reading(left=70, right=65, case=80), now=NOW + 1)

    assert event is not None
    assert event.event_type is BatteryEventType.DISCHARGE
    assert event.session_duration == 1.0
    assert len(intelligence.profile.events) == 2


def test_small_drop_is_suppressed_but_state_updates(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(), now=NOW)

    assert intelligence.update(_reading(left=76), now=NOW + 60) is None

    profile = intelligence.profile
    assert len(profile.events) == 1
    assert profile.current_left == 76
    assert profile.last_update == NOW + 60
    assert profile.depletion_rates.sample_count(Component.LEFT) == 0


def test_first_charging_update_is_charging_started(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)

    event = intelligence.update(
        _reading(50, 50, 50, in_ear=False, left_charging=True, case_charging=True),
        now=NOW,
    )

    assert event.event_type is BatteryEventType.CHARGING_STARTED
    assert intelligence.profile.health_metrics.estimated_cycles == 1


def test_out_of_range_levels_are_clamped(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)

    intelligence.update(_reading(left=140, right=-5), now=NOW)

    assert intelligence.profile.current_left == 100
    assert intelligence.profile.current_right == 0


def test_estimates_are_real_then_decay(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(), now=NOW)

    left, right, case = intelligence.get_estimates(now=NOW)
    assert (round(left.level), round(right.level), round(case.level)) == (80, 75, 90)
    assert left.is_real_data and right.is_real_data and case.is_real_data

    intelligence.profile.last_update = NOW - 3600
    left, right, case = intelligence.get_estimates(now=NOW)
    assert left.level < 80
    assert right.level < 75
    assert case.level < 90
    assert not left.is_real_data
    assert not case.is_real_data


def test_estimates_stay_in_bounds(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    readings = [
        (_reading(100, 100, 100), 0),
        (_reading(90, 60, 100, left_charging=True), 120),
        (_reading(20, 5, 30), 3600),
        (_reading(0, 0, 0, in_ear=False), 7200),
    ]
    for reading, offset in readings:
        intelligence.update(reading, now=NOW + offset)
        for elapsed in (0, 45, 600, 86400, 90 * 86400):
            for estimate in intelligence.get_estimates(now=NOW + offset + elapsed):
                assert 0.0 <= estimate.level <= 100.0
                assert 0.1 <= estimate.confidence <= 1.0


def test_display_levels_hide_unreported_components(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(left=80, right=75, case=None), now=NOW)

    assert intelligence.get_display_levels(now=NOW + 1) == (80, 75, None)


def test_rate_statistics_after_depletion(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(left=80), now=NOW)
    intelligence.update(_reading(left=60), now=NOW + 15 * 60)

    left = intelligence.rate_statistics()[0]
    assert left.target is Component.LEFT
    assert left.sample_count == 1
    assert left.median_minutes_per_percent == pytest.approx(0.75)
    assert left.confidence == pytest.approx(0.1)


def test_learning_disabled_skips_models(tmp_path: Path):
    intelligence = BatteryIntelligence(
        tmp_path, IntelligenceSettings(learning_enabled=False)
    )
    for i, level in enumerate((90, 80, 70, 60)):
        intelligence.update(_reading(left=level, right=level), now=NOW + i * 600)

    assert intelligence.profile.discharge_models == {}


def test_models_learned_from_discharge_events(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    for i, level in enumerate((90, 80, 70, 60)):
        intelligence.update(_reading(left=level, right=level), now=NOW + i * 60)

    models = intelligence.profile.discharge_models
    assert models
    assert all(model.discharge_rate_per_hour > 0 for model in models.values())


def test_save_load_roundtrip(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(), now=NOW)
    intelligence.save()

    restored = BatteryIntelligence(tmp_path)
    assert restored.load()
    assert restored.profile.device_address == "test_device"
    assert restored.get_display_levels(now=NOW + 1) == (80, 75, 90)


def test_save_without_profile_writes_nothing(tmp_path: Path):
    BatteryIntelligence(tmp_path).save()

    assert not (tmp_path / PROFILE_FILENAME).exists()


def test_failed_load_leaves_memory_usable(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(), now=NOW)
    (tmp_path / PROFILE_FILENAME).write_text("garbage")

    with pytest.raises(StorageError):
        intelligence.load()

    assert intelligence.get_estimates(now=NOW) is not None


def test_purge_all(tmp_path: Path):
    intelligence = BatteryIntelligence(tmp_path)
    intelligence.update(_reading(), now=NOW)
    intelligence.save()

    assert intelligence.purge_all() == 1
    assert intelligence.profile is None
    assert not (tmp_path / PROFILE_FILENAME).exists()


def test_storage_dir_from_environment(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("EARBUD_INTEL_DIR", str(tmp_path / "env"))

    assert BatteryIntelligence().storage_dir == tmp_path / "env"
    assert BatteryIntelligence(tmp_path).storage_dir == tmp_path
