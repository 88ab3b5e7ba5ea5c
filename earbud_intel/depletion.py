from __future__ import annotations

from collections import deque
from typing import Iterable, Optional

from .models import Component, DepletionRateSample
from .settings import MAX_DEPLETION_SAMPLES


class DepletionRateBuffer:
    """Rolling "minutes per 1% drop" samples, one bounded deque per component."""

    def __init__(self, max_samples: int = MAX_DEPLETION_SAMPLES) -> None:
        self.max_samples = max_samples
        self._samples: dict[Component, deque[DepletionRateSample]] = {
            target: deque(maxlen=max_samples) for target in Component
        }

    def add_sample(self, sample: DepletionRateSample) -> None:
        self._samples[sample.target].append(sample)

    def extend(self, samples: Iterable[DepletionRateSample]) -> None:
        for sample in samples:
            self.add_sample(sample)

    def samples(self, target: Component) -> list[DepletionRateSample]:
        return list(self._samples[target])

    def median_rate(self, target: Component) -> Optional[float]:
        rates = sorted(s.minutes_per_percent for s in self._samples[target])
        if not rates:
            return None
        mid = len(rates) // 2
        if len(rates) % 2 == 0:
            return (rates[mid - 1] + rates[mid]) / 2.0
        return rates[mid]

    def mean_rate(self, target: Component) -> Optional[float]:
        samples = self._samples[target]
        if not samples:
            return None
        return sum(s.minutes_per_percent for s in samples) / len(samples)

    def sample_count(self, target: Component) -> int:
        return len(self._samples[target])

    def confidence(self, target: Component) -> Optional[float]:
        count = self.sample_count(target)
        if not count:
            return None
        # 10 samples or more is full confidence
        return min(count / 10.0, 1.0)
