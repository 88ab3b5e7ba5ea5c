from __future__ import annotations

from typing import Iterable

from .models import BatteryEvent, Component

RAMP = ".:-=+*#%@"
FLAT = "="


def level_history(events: Iterable[BatteryEvent], target: Component) -> list[float]:
    return [
        float(level)
        for level in (event.level(target) for event in events)
        if level is not None
    ]


def _bucket_means(values: list[float], width: int) -> list[float]:
    if len(values) <= width:
        return list(values)
    size = len(values) / width
    means = []
    for bucket in range(width):
        chunk = values[int(bucket * size) : int((bucket + 1) * size)]
        means.append(sum(chunk) / len(chunk))
    return means


def sparkline(values: list[float], *, width: int = 40) -> str:
    """One-line level history; each character averages a bucket of readings."""
    if not values:
        return "--"
    points = _bucket_means(values, width)
    low = min(points)
    high = max(points)
    if high - low < 1e-9:
        return f"{low:.0f}% {FLAT * len(points)} {high:.0f}%"

    top = len(RAMP) - 1
    line = "".join(
        RAMP[min(top, int((point - low) / (high - low) * top))] for point in points
    )
    return f"{low:.0f}% {line} {high:.0f}%"
