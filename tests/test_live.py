"""
Tests for the live dashboard loop.
"""
import io
import signal
from datetime import datetime, timedelta, timezone

import pytest
from rich.console import Console

from claude_usage_guard.cli.live import LiveMonitor
from claude_usage_guard.config.loader import MonitorConfig
from claude_usage_guard.core.alerts import AlertCategory
from claude_usage_guard.core.monitor import UsageMonitor
from claude_usage_guard.storage.documents import read_json

T0 = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def console():
    return Console(file=io.StringIO(), width=100)


@pytest.fixture
def monitor(tmp_path):
    monitor = UsageMonitor(MonitorConfig(storage_dir=tmp_path, refresh_interval=0.01))
    monitor.clear(T0)
    return monitor


class TestLiveMonitor:
    """Test ticks, alert collection and shutdown."""

    def test_interval_defaults_to_config(self, monitor, console):
        assert LiveMonitor(monitor, console=console).interval == 0.01
        assert LiveMonitor(monitor, interval=3, console=console).interval == 3

    def test_quiet_tick_has_no_alerts(self, monitor, console):
        live = LiveMonitor(monitor, console=console)

        report = live.tick(T0 + timedelta(hours=1))

        assert report.metrics.message_pct == 0.0
        assert live.recent_alerts() == []

    def test_critical_alert_fires_once_per_cooldown(self, monitor, console):
        """Test a persistent critical condition alerts once per window."""
        monitor.set_subscription("free")
        monitor.record(36, T0 + timedelta(minutes=30))
        live = LiveMonitor(monitor, console=console)

        live.tick(T0 + timedelta(hours=1))
        live.tick(T0 + timedelta(hours=1, seconds=5))
        live.tick(T0 + timedelta(hours=1, minutes=1))
        assert [alert.category for alert in live.recent_alerts()] == [AlertCategory.CRITICAL_COMBINED]

        live.tick(T0 + timedelta(hours=1, minutes=5, seconds=1))
        assert len(live.recent_alerts()) == 2

    def test_render_shows_usage_and_alerts(self, monitor, console):
        """Test the dashboard renders usage figures and alert text."""
        monitor.set_subscription("free")
        monitor.record(36, T0 + timedelta(minutes=30))
        live = LiveMonitor(monitor, console=console)
        now = T0 + timedelta(hours=1)

        console.print(live.render(live.tick(now), now))
        output = console.file.getvalue()

        assert "Current Usage" in output
        assert "Messages: 36 / 40 (90.0%)" in output
        assert "CRITICAL: Usage at 90.0%" in output
        assert "Updates every 0.01s" in output

    def test_render_without_alerts(self, monitor, console):
        live = LiveMonitor(monitor, console=console)
        now = T0 + timedelta(hours=1)

        console.print(live.render(live.tick(now), now))

        assert "No alerts" in console.file.getvalue()

    def test_reset_hours_only_changes_display(self, monitor, console):
        """Test a shorter displayed period never rolls over the stored period."""
        monitor.record(5, T0)
        live = LiveMonitor(monitor, console=console, reset_hours=6)

        report = live.tick(T0 + timedelta(hours=7))

        assert not report.period_reset
        assert report.period.message_count == 5
        assert report.metrics.hours_until_reset == 0.0
        saved = read_json(monitor.config.usage_file)
        assert saved["history"] == []
        assert saved["currentPeriod"]["messageCount"] == 5

    def test_reset_hours_shortens_time_to_reset(self, monitor, console):
        live = LiveMonitor(monitor, console=console, reset_hours=6)

        report = live.tick(T0 + timedelta(hours=2))

        assert report.metrics.hours_until_reset == pytest.approx(4.0)
        assert live.reset_hours == 6

    def test_invalid_reset_hours_raises_error(self, monitor, console):
        with pytest.raises(ValueError, match="reset_hours must be > 0"):
            LiveMonitor(monitor, console=console, reset_hours=0)

    def test_stop_before_run_returns_immediately(self, monitor, console):
        """Test a stop request ends the loop without waiting for a tick."""
        live = LiveMonitor(monitor, interval=60, console=console)
        live.stop()

        live.run()

        assert live.stopped

    def test_run_restores_sigterm_handler(self, monitor, console):
        """Test the previous SIGTERM handler is restored after the loop."""
        before = signal.getsignal(signal.SIGTERM)
        live = LiveMonitor(monitor, console=console)
        live.stop()

        live.run()

        assert signal.getsignal(signal.SIGTERM) == before
