"""
Terminal rendering of monitor results.

Helpers return rich markup lines so the one-shot commands and the live
dashboard present the same numbers the same way.
"""

from datetime import datetime
from typing import Iterable, List

from rich.markup import escape
from rich.table import Table

from claude_usage_guard.core.alerts import Alert
from claude_usage_guard.core.analyzer import RateBand, Severity, format_duration, format_tokens
from claude_usage_guard.core.monitor import HistoryEntry, StatusReport, ThresholdReport
from claude_usage_guard.storage.models import LearningMode

SEVERITY_STYLES = {
    Severity.OK: "green",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "red",
}

RATE_STYLES = {
    RateBand.SAFE: "green",
    RateBand.CAUTION: "yellow",
    RateBand.EXCEEDING: "red",
}

RATE_LABELS = {
    RateBand.SAFE: "SAFE",
    RateBand.CAUTION: "CAUTION",
    RateBand.EXCEEDING: "EXCEEDING!",
}


def usage_bar(percentage: float, width: int = 30) -> str:
    filled = max(0, min(width, round(percentage / 100 * width)))
    return "█" * filled + "░" * (width - filled)


def rate_bar(rate_ratio: float, width: int = 20) -> str:
    filled = max(0, min(width, round(rate_ratio * width)))
    return "▓" * filled + "░" * (width - filled)


def status_lines(report: StatusReport) -> List[str]:
    """Markup lines describing current usage."""
    metrics = report.metrics
    limits = report.limits
    combined_style = SEVERITY_STYLES[metrics.combined_severity]
    rate_style = RATE_STYLES[metrics.rate_band]

    if limits.is_adapted:
        badge = f"[green]{escape('[ADAPTED]')}[/green]"
        events = report.throttle_event_count
        learning = f"[green]Limits based on {events} throttle event{'s' if events != 1 else ''}[/green]"
    else:
        badge = f"[yellow]{escape('[ESTIMATED]')}[/yellow]"
        learning = "[yellow]Using initial estimates - will adapt based on actual throttle events[/yellow]"

    lines = [
        f"[bold]Subscription:[/bold] [cyan]{escape(limits.name)}[/cyan] {badge}",
        learning,
        f"Messages: {metrics.message_count} / {limits.daily_messages} ({metrics.message_pct:.1f}%)",
        f"Tokens: {format_tokens(metrics.token_count)} / {format_tokens(limits.daily_tokens)} "
        f"({metrics.token_pct:.1f}%)",
    ]
    if metrics.active_sessions > 0:
        session_style = SEVERITY_STYLES[Severity.CRITICAL if metrics.session_overflow else metrics.session_severity]
        lines.append(
            f"Active Sessions: [{session_style}]{metrics.active_sessions}[/{session_style}] "
            f"/ {limits.concurrent_sessions} concurrent"
        )
    lines.extend([
        f"Combined Usage: [{combined_style}]{usage_bar(metrics.combined_pct)}[/{combined_style}] "
        f"{metrics.combined_pct:.1f}%",
        f"Reset in: [cyan]{format_duration(metrics.hours_until_reset)}[/cyan]",
        f"Current rate: [{rate_style}]{metrics.current_rate:.1f} msg/hr[/{rate_style}]",
        f"Safe rate: {metrics.safe_rate:.1f} msg/hr",
        f"Rate: [{rate_style}]{rate_bar(metrics.rate_ratio)} {RATE_LABELS[metrics.rate_band]}[/{rate_style}]",
    ])
    return lines


def advice_lines(report: StatusReport) -> List[str]:
    """Warnings and recommendations that follow the status block."""
    metrics = report.metrics
    limits = report.limits
    reset_in = format_duration(metrics.hours_until_reset)
    lines = []

    if metrics.combined_severity == Severity.CRITICAL:
        lines.append("[bold red]CRITICAL: You are very close to the usage limit![/bold red]")
        lines.append("[red]You may be downgraded to a lower model soon.[/red]")
    elif metrics.combined_severity == Severity.WARNING:
        lines.append("[bold yellow]WARNING: Approaching usage limit[/bold yellow]")
        lines.append(f"[yellow]Consider spacing out usage over the next {reset_in}[/yellow]")
    else:
        lines.append("[green]✓ Usage is within safe limits[/green]")

    if metrics.session_overflow:
        lines.append("[bold red]TOO MANY CONCURRENT SESSIONS![/bold red]")
        lines.append(
            f"[red]Running {metrics.active_sessions} sessions but safe limit is "
            f"{limits.concurrent_sessions}[/red]"
        )

    if metrics.remaining_messages > 0:
        lines.append(f"Remaining messages: {metrics.remaining_messages}")
        lines.append(f"Safe usage rate: {metrics.safe_rate:.1f} messages/hour")
    return lines


def session_lines(report: StatusReport, now: datetime, limit: int = 4) -> List[str]:
    sessions = report.sessions
    lines = [
        f"[bold]Active:[/bold] {sessions.active_sessions} / {report.limits.concurrent_sessions}",
        f"[bold]This period:[/bold] {sessions.session_count} total",
        "",
        "[bold]Current Sessions:[/bold]",
    ]
    longest_first = sorted(sessions.active_records, key=lambda record: record.start_time)
    for record in longest_first[:limit]:
        hours = max(0.0, (now - record.start_time).total_seconds() / 3600)
        pid = record.pid if record.pid is not None else "?"
        lines.append(f"  • {pid} - {format_duration(hours)}")
    return lines


def alert_lines(alerts: Iterable[Alert]) -> List[str]:
    lines = []
    for alert in alerts:
        style = SEVERITY_STYLES[alert.severity]
        stamp = alert.fired_at.astimezone().strftime("%H:%M:%S")
        lines.append(f"[{style}]{escape(f'[{stamp}]')} {escape(alert.message)}[/{style}]")
    return lines


def history_table(entries: List[HistoryEntry]) -> Table:
    table = Table(title="Usage History")
    table.add_column("Date")
    table.add_column("Messages", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Peak Sessions", justify="right")
    table.add_column("Usage", justify="right")
    for entry in entries:
        style = SEVERITY_STYLES[entry.severity]
        period = entry.period.period
        table.add_row(
            entry.period.start_date.astimezone().strftime("%Y-%m-%d"),
            f"[{style}]{period.message_count} messages[/{style}]",
            format_tokens(period.token_count),
            str(period.peak_concurrent_sessions),
            f"[{style}]{entry.message_pct:.1f}%[/{style}]",
        )
    return table


def threshold_lines(report: ThresholdReport) -> List[str]:
    adaptive = report.learning_mode == LearningMode.ADAPTIVE
    lines = [
        f"Mode: {'[green]ADAPTIVE[/green]' if adaptive else '[yellow]ESTIMATES[/yellow]'}",
        f"Last Updated: {report.last_updated.astimezone().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Throttle Events: {report.event_count}",
    ]
    if not adaptive:
        lines.append("")
        lines.append("[yellow]Not enough throttle events to adapt thresholds yet.[/yellow]")
        lines.append("[yellow]Continue using the tool - limits will adapt automatically.[/yellow]")
        return lines

    lines.append("")
    lines.append("[green]Adapted Limits:[/green]")
    for subscription in sorted(report.adapted_limits):
        limits = report.adapted_limits[subscription]
        lines.append(f"[cyan]{escape(subscription)}[/cyan]:")
        if limits.daily_messages is not None:
            lines.append(f"  Messages: {limits.daily_messages}/day")
        if limits.daily_tokens is not None:
            lines.append(f"  Tokens: {format_tokens(limits.daily_tokens)}/day")
        if limits.concurrent_sessions is not None:
            lines.append(f"  Concurrent Sessions: {limits.concurrent_sessions}")

    lines.append("")
    lines.append("[green]Confidence Levels:[/green]")
    lines.append(f"  Messages: {report.confidence.messages}%")
    lines.append(f"  Tokens: {report.confidence.tokens}%")
    lines.append(f"  Sessions: {report.confidence.sessions}%")
    return lines
