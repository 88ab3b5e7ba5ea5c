from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .collector import record_reading, replay_readings
from .intelligence import BatteryIntelligence, RateStatistics
from .models import BatteryEstimate, BatteryEvent, BatteryReading, Component
from .profile import DeviceBatteryProfile
from .settings import STORAGE_DIR_ENV, confidence_band
from .sparkline import level_history, sparkline
from .storage import StorageError

app = typer.Typer(
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()

DIR_HELP = f"Profile storage directory (or set {STORAGE_DIR_ENV})"


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format="%(message)s"
    )


def _sanitize_component(value: str) -> str:
    return "".join(ch if ch.isalnum() or ch in {"-", "_"} else "_" for ch in value)


def _default_graph_path(
    device_name: str,
    *,
    base_dir: Optional[Path] = None,
    now: Optional[datetime] = None,
) -> Path:
    """Generate an informative, safe graph filename."""
    current = now or datetime.now().astimezone()
    tz_name = _sanitize_component(current.tzname() or "local")
    device_label = _sanitize_component(device_name.strip().lower()) or "device"
    timestamp = current.strftime("%Y-%m-%d_%H-%M-%S")
    filename = f"earbud_intel_{device_label}_{timestamp}_{tz_name}.png"
    return (base_dir or Path.cwd()) / filename


def _open(storage_dir: Optional[Path]) -> BatteryIntelligence:
    intelligence = BatteryIntelligence(storage_dir)
    try:
        intelligence.load()
    except StorageError as exc:
        console.print(f"Failed to load profile: {exc}")
        raise typer.Exit(code=1)
    return intelligence


def _save(intelligence: BatteryIntelligence) -> None:
    try:
        intelligence.save()
    except StorageError as exc:
        console.print(f"Failed to save profile: {exc}")
        raise typer.Exit(code=1)


@app.command("record")
def record_command(
    address: str = typer.Option(..., "--address", help="Device address"),
    name: str = typer.Option("Earbuds", "--name", help="Device display name"),
    left: Optional[int] = typer.Option(None, min=0, max=100, help="Left earbud %"),
    right: Optional[int] = typer.Option(None, min=0, max=100, help="Right earbud %"),
    case: Optional[int] = typer.Option(None, min=0, max=100, help="Case %"),
    left_charging: bool = typer.Option(False, "--left-charging"),
    right_charging: bool = typer.Option(False, "--right-charging"),
    case_charging: bool = typer.Option(False, "--case-charging"),
    left_in_ear: bool = typer.Option(False, "--left-in-ear"),
    right_in_ear: bool = typer.Option(False, "--right-in-ear"),
    rssi: Optional[int] = typer.Option(None, help="Signal strength (dBm)"),
    storage_dir: Optional[Path] = typer.Option(None, "--dir", help=DIR_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Feed one battery reading into the estimator and store the result."""
    configure_logging(verbose)
    reading = BatteryReading(
        device_address=address,
        device_name=name,
        left=left,
        right=right,
        case=case,
        left_charging=left_charging,
        right_charging=right_charging,
        case_charging=case_charging,
        left_in_ear=left_in_ear,
        right_in_ear=right_in_ear,
        rssi=rssi,
    )
    now = time.time()
    try:
        intelligence = record_reading(reading, storage_dir, now=now)
    except StorageError as exc:
        console.print(f"Failed to record reading: {exc}")
        raise typer.Exit(code=1)
    console.print(_estimates_table(intelligence, now=now))


@app.command("status")
def status_command(
    storage_dir: Optional[Path] = typer.Option(None, "--dir", help=DIR_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Show current estimates, depletion statistics and learned models."""
    configure_logging(verbose)
    intelligence = _open(storage_dir)
    profile = intelligence.profile
    if profile is None:
        console.print("No tracked device; record a reading first.")
        raise typer.Exit(code=1)

    now = time.time()
    console.print(_device_table(intelligence, now=now))
    console.print(_estimates_table(intelligence, now=now))
    console.print(_rates_table(intelligence.rate_statistics()))
    console.print(_models_table(profile))
    for target in Component:
        history = level_history(profile.events, target)
        console.print(f"{target.value:>5} {sparkline(history)}")


@app.command("report")
def report_command(
    limit: int = typer.Option(10, "--limit", min=1, help="Number of recent events"),
    storage_dir: Optional[Path] = typer.Option(None, "--dir", help=DIR_HELP),
    graph: bool = typer.Option(
        False, "--graph", "-g", help="Save a graph image with an auto-generated name"
    ),
    graph_path: Optional[Path] = typer.Option(
        None,
        "--graph-path",
        help="Custom path for the graph image (png/pdf/etc); overrides --graph name",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """List recent significant events (optionally save a graph image)."""
    configure_logging(verbose)
    intelligence = _open(storage_dir)
    profile = intelligence.profile
    if profile is None or not profile.events:
        console.print("No events recorded; record readings first.")
        raise typer.Exit(code=1)

    output_path: Optional[Path]
    if graph_path:
        output_path = graph_path
    elif graph:
        output_path = _default_graph_path(profile.device_name)
    else:
        output_path = None

    if output_path:
        # Import matplotlib lazily only when we actually render a graph.
        from .graph import render_history

        render_history(
            profile.events,
            title=f"{profile.device_name} battery history",
            show=False,
            output=output_path,
        )

    events = list(profile.events)[-limit:]
    console.print(_events_table(events))


@app.command("replay")
def replay_command(
    log_path: Path = typer.Argument(..., help="Captured readings log (JSON)"),
    address: str = typer.Option(..., "--address", help="Device address"),
    name: str = typer.Option("Earbuds", "--name", help="Device display name"),
    storage_dir: Optional[Path] = typer.Option(None, "--dir", help=DIR_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Consolidate a captured readings log into the stored profile."""
    configure_logging(verbose)
    intelligence = _open(storage_dir)
    try:
        result = replay_readings(
            intelligence, log_path, device_address=address, device_name=name
        )
    except StorageError as exc:
        console.print(f"Failed to replay readings: {exc}")
        raise typer.Exit(code=1)
    _save(intelligence)
    console.print(
        f"Applied {result.applied} readings "
        f"({result.significant} significant, {result.skipped} skipped)"
    )


@app.command("purge")
def purge_command(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    storage_dir: Optional[Path] = typer.Option(None, "--dir", help=DIR_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Delete all stored battery history for the tracked device."""
    configure_logging(verbose)
    if not yes:
        typer.confirm("Delete all stored battery history?", abort=True)
    intelligence = BatteryIntelligence(storage_dir)
    try:
        removed = intelligence.purge_all()
    except StorageError as exc:
        console.print(f"Failed to purge profiles: {exc}")
        raise typer.Exit(code=1)
    console.print(f"Removed {removed} profile file(s) from {intelligence.storage_dir}")


def _format_timestamp(ts: Optional[float]) -> str:
    if ts is None:
        return "--"
    dt = datetime.fromtimestamp(ts).astimezone()
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")


def _format_pct(value: Optional[float]) -> str:
    return f"{value:.1f}%" if value is not None else "--"


def _format_level(value: Optional[int]) -> str:
    return f"{value}%" if value is not None else "--"


def _format_duration(value: Optional[timedelta]) -> str:
    if value is None:
        return "--"
    minutes = int(value.total_seconds() // 60)
    hrs, mins = divmod(minutes, 60)
    return f"{hrs}h{mins:02d}m"


def _format_rate(value: Optional[float]) -> str:
    return f"{value:.2f}" if value is not None else "--"


def _device_table(intelligence: BatteryIntelligence, *, now: float) -> Table:
    profile = intelligence.profile
    health = profile.health_metrics
    device = Table(
        title="Tracked device",
        show_lines=False,
        box=box.SIMPLE,
        header_style="bold",
    )
    device.add_column("Field")
    device.add_column("Value")
    device.add_row("Name", profile.device_name)
    device.add_row("Address", profile.device_address)
    device.add_row("Last reading", _format_timestamp(profile.last_update))
    if profile.last_update is not None:
        age_minutes = max(0.0, now - profile.last_update) / 60.0
        device.add_row(
            "Data freshness", confidence_band(age_minutes, intelligence.settings)
        )
    device.add_row("Events logged", str(len(profile.events)))
    device.add_row("In session", "yes" if profile.current_session else "no")
    device.add_row("Est. charge cycles", str(health.estimated_cycles))
    device.add_row("Health score", f"{health.health_score:.2f}")
    return device


def _estimates_table(intelligence: BatteryIntelligence, *, now: float) -> Table:
    estimates = intelligence.get_estimates(now=now)
    levels = intelligence.get_display_levels(now=now)
    table = Table(
        title="Battery estimates",
        show_lines=False,
        box=box.SIMPLE,
        header_style="bold",
    )
    table.add_column("Component")
    table.add_column("Level", justify="right")
    table.add_column("Estimate", justify="right")
    table.add_column("Source")
    table.add_column("Confidence", justify="right")
    table.add_column("Next -10%", justify="right")
    table.add_column("To critical", justify="right")
    table.add_column("Usage")
    if estimates is None:
        return table

    for target, estimate, level in zip(Component, estimates, levels):
        table.add_row(*_estimate_row(target, estimate, level))
    return table


def _estimate_row(
    target: Component, estimate: BatteryEstimate, level: Optional[int]
) -> list[str]:
    if level is None:
        return [target.value, "--", "--", "no data", "--", "--", "--", "--"]
    return [
        target.value,
        _format_level(level),
        _format_pct(estimate.level),
        "reading" if estimate.is_real_data else "estimated",
        f"{estimate.confidence:.2f}",
        _format_duration(estimate.time_to_next_10_percent),
        _format_duration(estimate.time_to_critical),
        estimate.usage_pattern.value if estimate.usage_pattern else "--",
    ]


def _rates_table(stats: list[RateStatistics]) -> Table:
    rates = Table(
        title="Depletion rates (minutes per 1%)",
        show_lines=False,
        box=box.SIMPLE,
        header_style="bold",
    )
    rates.add_column("Component")
    rates.add_column("Samples", justify="right")
    rates.add_column("Median", justify="right")
    rates.add_column("Mean", justify="right")
    rates.add_column("Confidence", justify="right")
    for stat in stats:
        rates.add_row(
            stat.target.value,
            str(stat.sample_count),
            _format_rate(stat.median_minutes_per_percent),
            _format_rate(stat.mean_minutes_per_percent),
            _format_rate(stat.confidence),
        )
    return rates


def _models_table(profile: DeviceBatteryProfile) -> Table:
    models = Table(
        title="Discharge models",
        show_lines=False,
        box=box.SIMPLE,
        header_style="bold",
    )
    models.add_column("Pattern")
    models.add_column("%/hour", justify="right")
    models.add_column("Variance", justify="right")
    models.add_column("Pairs", justify="right")
    models.add_column("Confidence", justify="right")
    for pattern, model in sorted(
        profile.discharge_models.items(), key=lambda item: item[0].value
    ):
        models.add_row(
            pattern.value,
            f"{model.discharge_rate_per_hour:.2f}",
            f"{model.rate_variance:.2f}",
            str(model.sample_count),
            f"{model.confidence:.2f}",
        )
    return models


def _events_table(events: list[BatteryEvent]) -> Table:
    recent = Table(
        title="Recent events",
        show_lines=False,
        box=box.SIMPLE,
        header_style="bold",
    )
    recent.add_column("When", no_wrap=True)
    recent.add_column("Event", no_wrap=True)
    recent.add_column("Left", justify="right")
    recent.add_column("Right", justify="right")
    recent.add_column("Case", justify="right")
    recent.add_column("Charging")
    recent.add_column("In ear")

    for event in events:
        charging = "".join(
            flag
            for flag, on in (
                ("L", event.left_charging),
                ("R", event.right_charging),
                ("C", event.case_charging),
            )
            if on
        )
        in_ear = "".join(
            flag
            for flag, on in (("L", event.left_in_ear), ("R", event.right_in_ear))
            if on
        )
        recent.add_row(
            datetime.fromtimestamp(event.timestamp).strftime("%m-%d %H:%M"),
            event.event_type.value,
            _format_level(event.left_battery),
            _format_level(event.right_battery),
            _format_level(event.case_battery),
            charging or "-",
            in_ear or "-",
        )
    return recent


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
