from __future__ import annotations

from datetime import timedelta
from typing import Optional

from .depletion import DepletionRateBuffer
from .models import CRITICAL_LEVEL, Component


def time_to_next_drop(
    buffer: DepletionRateBuffer, current: int, drop_amount: int, target: Component
) -> Optional[timedelta]:
    if current <= drop_amount:
        return None
    minutes_per_percent = buffer.median_rate(target)
    if minutes_per_percent is None:
        return None
    return timedelta(minutes=minutes_per_percent * drop_amount)


def time_to_critical(
    buffer: DepletionRateBuffer, current: int, target: Component
) -> Optional[timedelta]:
    if current <= CRITICAL_LEVEL:
        return None
    return time_to_next_drop(buffer, current, current - CRITICAL_LEVEL, target)
