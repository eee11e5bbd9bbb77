"""
Live usage dashboard.

Refreshes on a fixed interval, feeds every tick through the alert gate
and stops immediately on Ctrl-C or SIGTERM.
"""

import logging
import signal
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.text import Text

from claude_usage_guard.core.alerts import Alert, AlertGate, evaluate_alerts
from claude_usage_guard.core.monitor import StatusReport, UsageMonitor
from claude_usage_guard.storage.models import utc_now
from .display import SEVERITY_STYLES, alert_lines, session_lines, status_lines

logger = logging.getLogger(__name__)

MAX_ALERTS = 50


class LiveMonitor:
    """Periodic refresh loop around a UsageMonitor."""

    def __init__(
        self,
        monitor: UsageMonitor,
        interval: Optional[float] = None,
        console: Optional[Console] = None,
        reset_hours: Optional[float] = None
    ):
        """Initialize the live view.

        Args:
            monitor: Monitor to refresh
            interval: Seconds between refreshes (default: configured interval)
            console: Console to render to
            reset_hours: Period length shown as time-to-reset; the stored
                period still rolls over at the configured length
        """
        if reset_hours is not None and reset_hours <= 0:
            raise ValueError("reset_hours must be > 0")
        self.monitor = monitor
        self.interval = interval or monitor.config.refresh_interval
        self.reset_hours = reset_hours or monitor.config.period_hours
        self.display_period = timedelta(hours=reset_hours) if reset_hours else None
        self.console = console or Console()
        self.gate = AlertGate(monitor.config.cooldowns)
        self.alerts: Deque[Alert] = deque(maxlen=MAX_ALERTS)
        self._stop = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()

    def tick(self, now: Optional[datetime] = None) -> StatusReport:
        """Refresh usage once and collect the alerts that pass the gate."""
        now = now or utc_now()
        report = self.monitor.status(now, display_period=self.display_period)
        fired = evaluate_alerts(report.metrics, self.gate, now)
        for alert in fired:
            logger.info("Alert %s: %s", alert.category.value, alert.message)
        self.alerts.extend(fired)
        return report

    def render(self, report: StatusReport, now: datetime) -> Group:
        metrics = report.metrics
        style = SEVERITY_STYLES[metrics.combined_severity]
        bar = ProgressBar(
            total=100,
            completed=min(100.0, metrics.combined_pct),
            complete_style=style,
            finished_style=style,
        )
        alerts = alert_lines(self.alerts) or ["[dim]No alerts[/dim]"]
        return Group(
            Panel(Text.from_markup("\n".join(status_lines(report))), title="Current Usage", border_style="green"),
            Panel(Text.from_markup("\n".join(session_lines(report, now))), title="Active Sessions", border_style="blue"),
            Panel(
                Group(bar, Text(f"{metrics.combined_pct:.1f}%", style=style)),
                title="Combined Usage",
                border_style=style,
            ),
            Panel(Text.from_markup("\n".join(alerts[-8:])), title="Alerts", border_style="yellow"),
            Text(f"Press Ctrl-C to quit | Updates every {self.interval:g}s", style="dim"),
        )

    def run(self) -> None:
        """Run until stopped.

        The wait between ticks is interruptible, so a stop request never
        waits for the rest of the interval and never lands mid-write.
        """
        previous_handler = self._install_sigterm_handler()
        try:
            now = utc_now()
            with Live(self.render(self.tick(now), now), console=self.console, auto_refresh=False) as live:
                while not self._stop.wait(self.interval):
                    now = utc_now()
                    live.update(self.render(self.tick(now), now), refresh=True)
        except KeyboardInterrupt:
            self.stop()
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGTERM, previous_handler)

    def _install_sigterm_handler(self):
        if threading.current_thread() is not threading.main_thread():
            return None

        def _handle(signum, frame):
            logger.debug("Received signal %s, stopping", signum)
            self.stop()

        return signal.signal(signal.SIGTERM, _handle)

    def recent_alerts(self) -> List[Alert]:
        return list(self.alerts)
