import pytest

from earbud_intel.depletion import DepletionRateBuffer
from earbud_intel.models import Component, DepletionRateSample


def _sample(minutes_per_percent: float, *, ts: float = 0.0, target=Component.LEFT):
    return DepletionRateSample(
        timestamp=ts,
        minutes_per_percent=minutes_per_percent,
        target=target,
        start_percent=80,
        end_percent=70,
    )


def test_empty_buffer_reports_no_data():
    buffer = DepletionRateBuffer()

    assert buffer.median_rate(Component.LEFT) is None
    assert buffer.mean_rate(Component.LEFT) is None
    assert buffer.confidence(Component.LEFT) is None
    assert buffer.sample_count(Component.LEFT) == 0


def test_median_odd_count_is_middle_value():
    buffer = DepletionRateBuffer()
    buffer.extend(_sample(rate) for rate in (2.5, 3.0, 2.0))

    assert buffer.median_rate(Component.LEFT) == 2.5
    assert buffer.mean_rate(Component.LEFT) == pytest.approx(2.5)


def test_median_even_count_averages_middle_values():
    buffer = DepletionRateBuffer()
    buffer.extend(_sample(rate) for rate in (4.0, 1.0, 3.0, 2.0))

    assert buffer.median_rate(Component.LEFT) == 2.5


def test_components_are_tracked_separately():
    buffer = DepletionRateBuffer()
    buffer.add_sample(_sample(2.0, target=Component.CASE))

    assert buffer.sample_count(Component.CASE) == 1
    assert buffer.sample_count(Component.LEFT) == 0
    assert buffer.median_rate(Component.RIGHT) is None


def test_buffer_keeps_most_recent_hundred():
    buffer = DepletionRateBuffer()
    for i in range(150):
        buffer.add_sample(_sample(float(i), ts=float(i)))

    kept = buffer.samples(Component.LEFT)
    assert len(kept) == 100
    assert [s.timestamp for s in kept] == [float(i) for i in range(50, 150)]


def test_confidence_grows_with_sample_count():
    buffer = DepletionRateBuffer()
    buffer.extend(_sample(1.0) for _ in range(3))
    assert buffer.confidence(Component.LEFT) == pytest.approx(0.3)

    buffer.extend(_sample(1.0) for _ in range(20))
    assert buffer.confidence(Component.LEFT) == 1.0
