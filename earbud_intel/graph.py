from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .models import BatteryEvent, Component

log = logging.getLogger(__name__)

COLORS = {
    Component.LEFT: "tab:blue",
    Component.RIGHT: "tab:orange",
    Component.CASE: "tab:green",
}


def render_history(
    events: Iterable[BatteryEvent],
    *,
    title: str,
    show: bool,
    output: Optional[Path],
) -> None:
    import matplotlib

    # Skip GUI backends when we only need file output; it shortens import time.
    if not show:
        matplotlib.use("Agg", force=True)

    import matplotlib.dates as mdates
    import matplotlib.pyplot as plt

    events = list(events)
    if not events:
        log.warning("No events to plot")
        return

    fig, ax = plt.subplots()
    for target in Component:
        points = [
            (datetime.fromtimestamp(event.timestamp, tz=timezone.utc), event.level(target))
            for event in events
            if event.level(target) is not None
        ]
        if not points:
            continue
        times, values = zip(*points)
        ax.plot(
            times,
            values,
            "-o",
            label=target.value.title(),
            color=COLORS[target],
            markersize=3,
        )

    ax.set_title(title)
    ax.set_xlabel("Time")
    ax.set_ylabel("Battery %")
    ax.set_ylim(0, 105)
    ax.xaxis.set_major_formatter(mdates.DateFormatter(_date_format(events)))
    fig.autofmt_xdate()
    ax.grid(True, linestyle="--", alpha=0.4)
    ax.legend()
    fig.tight_layout()

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output)
        log.info("Saved plot to %s", output)
    if show:
        plt.show()
    else:
        plt.close(fig)


def _date_format(events: list[BatteryEvent]) -> str:
    window = events[-1].timestamp - events[0].timestamp
    if window > 7 * 24 * 3600:
        return "%m-%d"
    if window > 24 * 3600:
        return "%m-%d %H:00"
    return "%m-%d %H:%M"
