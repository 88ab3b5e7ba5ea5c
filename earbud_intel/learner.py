"""Historical discharge models per usage pattern.

The models are rebuilt from scratch out of the event log every time a
significant update lands. They are diagnostic: estimates and predictions read
the depletion-rate buffer instead.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .models import BatteryEvent, BatteryEventType, DischargeModel, UsagePattern

log = logging.getLogger(__name__)

LEARNED_PATTERNS = (UsagePattern.LIGHT, UsagePattern.MODERATE, UsagePattern.HEAVY)
MODERATE_SESSION_SECONDS = 0.1 * 3600


def classify_usage_pattern(event: BatteryEvent) -> UsagePattern:
    if event.left_charging or event.right_charging or event.case_charging:
        return UsagePattern.CHARGING
    if not event.left_in_ear and not event.right_in_ear:
        return UsagePattern.IDLE
    if (
        event.session_duration is not None
        and event.session_duration > MODERATE_SESSION_SECONDS
    ):
        return UsagePattern.MODERATE
    return UsagePattern.LIGHT


def _pair_levels(
    prev: BatteryEvent, curr: BatteryEvent
) -> tuple[Optional[int], Optional[int]]:
    if prev.left_battery is not None and curr.left_battery is not None:
        return prev.left_battery, curr.left_battery
    return prev.right_battery, curr.right_battery


def _hourly_rates(events: list[BatteryEvent]) -> list[float]:
    rates: list[float] = []
    for prev, curr in zip(events, events[1:]):
        start, end = _pair_levels(prev, curr)
        if start is None or end is None:
            continue
        hours = (curr.timestamp - prev.timestamp) / 3600.0
        if hours > 0 and start > end:
            rates.append((start - end) / hours)
    return rates


def calculate_discharge_model(
    events: Iterable[BatteryEvent], pattern: UsagePattern, *, now: float
) -> Optional[DischargeModel]:
    relevant = [
        event
        for event in events
        if event.event_type is BatteryEventType.DISCHARGE
        and classify_usage_pattern(event) is pattern
    ]
    if len(relevant) < 2:
        return None

    # Two events of the pattern are required; a single usable pair of them
    # is enough to store a model (with zero variance).
    rates = _hourly_rates(relevant)
    if not rates:
        return None

    avg_rate = sum(rates) / len(rates)
    variance = sum((rate - avg_rate) ** 2 for rate in rates) / len(rates)
    return DischargeModel(
        discharge_rate_per_hour=avg_rate,
        confidence=min(1.0 / (1.0 + variance), 1.0),
        sample_count=len(rates),
        last_updated=now,
        rate_variance=variance,
    )


def update_models(
    events: Iterable[BatteryEvent],
    models: dict[UsagePattern, DischargeModel],
    *,
    now: float,
) -> None:
    events = list(events)
    discharge_count = sum(
        1 for event in events if event.event_type is BatteryEventType.DISCHARGE
    )
    if discharge_count < 2:
        return

    for pattern in LEARNED_PATTERNS:
        model = calculate_discharge_model(events, pattern, now=now)
        if model is None:
            continue
        models[pattern] = model
        log.debug(
            "Discharge model %s: %.2f%%/h over %d pairs (confidence %.2f)",
            pattern.value,
            model.discharge_rate_per_hour,
            model.sample_count,
            model.confidence,
        )
