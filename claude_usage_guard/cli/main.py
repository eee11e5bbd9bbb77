"""
CLI interface for Claude Usage Guard.

Provides command-line access to all tool functionality.
"""

import json
import logging
import sys
from dataclasses import replace
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape

from claude_usage_guard.config.loader import MonitorConfig, load_monitor_config
from claude_usage_guard.core.monitor import UsageMonitor
from claude_usage_guard.core.tiers import TierCatalog
from claude_usage_guard.storage.documents import LoadStatus
from .display import advice_lines, history_table, status_lines, threshold_lines

app = typer.Typer(help="Monitor Claude usage to avoid downgrades.")
console = Console()
logger = logging.getLogger(__name__)

# Exit codes - warnings are non-failing (0)
EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def get_monitor(ctx: typer.Context) -> UsageMonitor:
    """Build the usage monitor from the configuration loaded by the callback."""
    config: MonitorConfig = ctx.obj
    monitor = UsageMonitor(config)
    if monitor.usage_load.status == LoadStatus.REJECTED:
        console.print(f"[yellow]Warning: Could not load usage data:[/] {escape(monitor.usage_load.error or '')}")
    if monitor.threshold_load.status == LoadStatus.REJECTED:
        console.print(f"[yellow]Warning: Could not load threshold data:[/] {escape(monitor.threshold_load.error or '')}")
    return monitor


def _report_persistence(monitor: UsageMonitor) -> None:
    if not monitor.persisted:
        console.print("[yellow]Warning: changes could not be saved; see the log for details[/]")


def _show_status(monitor: UsageMonitor) -> None:
    report = monitor.status()
    console.print("\n[blue]=== Claude Usage Monitor ===[/blue]")
    for line in status_lines(report):
        console.print(line)
    console.print()
    for line in advice_lines(report):
        console.print(line)
    _report_persistence(monitor)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """Claude Usage Guard CLI."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
    try:
        ctx.obj = load_monitor_config(config_path)
        TierCatalog(ctx.obj.tier_overrides)
    except (FileNotFoundError, TypeError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        _show_status(get_monitor(ctx))


@app.command()
def status(ctx: typer.Context):
    """Show current usage status."""
    _show_status(get_monitor(ctx))


@app.command()
def record(
    ctx: typer.Context,
    count: int = typer.Argument(1, help="Number of messages sent")
):
    """Record message(s) sent to Claude."""
    if count < 1:
        console.print("[red]Error:[/] count must be at least 1")
        sys.exit(EXIT_CODE_FAIL)
    monitor = get_monitor(ctx)
    monitor.record(count)
    console.print(f"[green]✓[/] Recorded {count} message{'s' if count != 1 else ''}")
    _show_status(monitor)


@app.command("set-subscription")
def set_subscription(
    ctx: typer.Context,
    tier: str = typer.Argument(..., help="Subscription tier (free, pro, max)")
):
    """Set subscription tier (free, pro, max)."""
    monitor = get_monitor(ctx)
    try:
        monitor.set_subscription(tier)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Subscription set to: {monitor.catalog.resolve(tier).name}")
    _show_status(monitor)


@app.command()
def history(
    ctx: typer.Context,
    days: int = typer.Argument(7, help="Number of days to show")
):
    """Show usage history."""
    entries = get_monitor(ctx).history(days)
    console.print(f"\n[blue]=== Usage History (Last {days} days) ===[/blue]")
    if not entries:
        console.print("No historical data available")
        return
    console.print(history_table(entries))


@app.command()
def clear(ctx: typer.Context):
    """Clear all usage data."""
    monitor = get_monitor(ctx)
    if monitor.clear():
        console.print("[green]✓[/] Usage data cleared")
    else:
        _report_persistence(monitor)


@app.command()
def prune(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(
        None,
        "--days",
        "-d",
        help="Keep history of the last N days (defaults to the configured retention)"
    )
):
    """Remove old periods from the usage history."""
    if days is not None and days < 1:
        console.print("[red]Error:[/] days must be at least 1")
        sys.exit(EXIT_CODE_FAIL)
    monitor = get_monitor(ctx)
    removed = monitor.prune_history(days)
    console.print(f"[green]✓[/] Removed {removed} historical period{'s' if removed != 1 else ''}")
    _report_persistence(monitor)


@app.command("process-sessions")
def process_sessions(ctx: typer.Context):
    """Process session files (called automatically by the claude wrapper)."""
    monitor = get_monitor(ctx)
    monitor.store.check_and_reset()
    snapshot = monitor.process_sessions()
    console.print(
        f"Sessions: {snapshot.session_count} this period, {snapshot.active_sessions} active, "
        f"{snapshot.total_tokens} tokens"
    )
    _report_persistence(monitor)


@app.command("export-current")
def export_current(ctx: typer.Context):
    """Export current usage data as JSON (used by the claude wrapper)."""
    typer.echo(json.dumps(get_monitor(ctx).export_current()))


@app.command("analyze-thresholds")
def analyze_thresholds(ctx: typer.Context):
    """Analyze throttle events and adapt limits."""
    monitor = get_monitor(ctx)
    result = monitor.analyze_thresholds()
    if not result.event_count:
        console.print("[yellow]No throttle events found[/]")
        return
    console.print(f"\n[green]✓ Analyzed {result.event_count} throttle events[/green]")
    if monitor.learner.is_adaptive:
        console.print("[green]Thresholds have been adapted based on actual usage patterns[/green]")
    _report_persistence(monitor)


@app.command("threshold-report")
def threshold_report(ctx: typer.Context):
    """Show threshold learning report."""
    report = get_monitor(ctx).threshold_report()
    console.print("\n[blue]=== Threshold Learning Report ===[/blue]")
    for line in threshold_lines(report):
        console.print(line)


@app.command()
def live(
    ctx: typer.Context,
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Update interval in seconds"
    ),
    reset_hours: Optional[float] = typer.Option(
        None,
        "--reset-hours",
        "-r",
        help="Period length shown as time-to-reset, in hours (default: configured period)"
    )
):
    """Show a live-updating usage dashboard."""
    from .live import LiveMonitor

    config: MonitorConfig = ctx.obj
    try:
        if interval is not None:
            config = replace(config, refresh_interval=interval)
        ctx.obj = config
        live_monitor = LiveMonitor(get_monitor(ctx), console=console, reset_hours=reset_hours)
    except ValueError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("[blue]Starting Claude Live Monitor...[/blue]")
    console.print(f"[dim]Reset period: {live_monitor.reset_hours:g} hours[/dim]")
    console.print(f"[dim]Update interval: {live_monitor.interval:g} seconds[/dim]")
    live_monitor.run()


if __name__ == "__main__":
    app()
