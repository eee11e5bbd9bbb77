"""
Unit tests for the alert gate.

Tests cooldown per category and the alerts derived from metrics.
"""

from datetime import datetime, timedelta, timezone

from claude_usage_guard.config.loader import AlertCooldowns
from claude_usage_guard.core.alerts import AlertCategory, AlertGate, evaluate_alerts
from claude_usage_guard.core.analyzer import Severity, compute_metrics
from claude_usage_guard.core.learner import EffectiveLimits
from claude_usage_guard.core.tiers import DEFAULT_TIERS
from claude_usage_guard.storage.models import UsagePeriod

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def metrics_for(messages=0, active_sessions=0, hours_in=1, tier="free"):
    """Compute metrics for a period started ``hours_in`` hours before T0."""
    period = UsagePeriod(start_date=T0 - timedelta(hours=hours_in), message_count=messages)
    limits = EffectiveLimits.from_tier(DEFAULT_TIERS[tier])
    return compute_metrics(period, limits, active_sessions, T0)


class TestAlertGate:
    """Test cooldown behaviour of the gate."""

    def test_first_occurrence_fires(self):
        """Test a category that never fired fires immediately."""
        gate = AlertGate()

        assert gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0)

    def test_false_condition_never_fires(self):
        """Test a false condition neither fires nor starts a cooldown."""
        gate = AlertGate()

        assert not gate.should_fire(AlertCategory.CRITICAL_COMBINED, False, T0)
        assert AlertCategory.CRITICAL_COMBINED not in gate.last_fired

    def test_critical_cooldown(self):
        """Test critical alerts are suppressed for five minutes."""
        gate = AlertGate()

        assert gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0)
        assert not gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0 + timedelta(seconds=60))
        assert not gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0 + timedelta(seconds=299))
        assert gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0 + timedelta(seconds=301))

    def test_cooldown_boundary_is_inclusive(self):
        """Test an alert fires again once exactly the cooldown has elapsed."""
        gate = AlertGate()
        gate.should_fire(AlertCategory.SESSION_OVERFLOW, True, T0)

        assert gate.should_fire(AlertCategory.SESSION_OVERFLOW, True, T0 + timedelta(minutes=1))

    def test_suppressed_attempt_does_not_extend_cooldown(self):
        """Test suppressed alerts don't reset the last fire time."""
        gate = AlertGate()
        gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0)
        gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0 + timedelta(minutes=4))

        assert gate.last_fired[AlertCategory.CRITICAL_COMBINED] == T0
        assert gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0 + timedelta(minutes=5))

    def test_categories_are_independent(self):
        """Test one category's cooldown does not affect another."""
        gate = AlertGate()
        gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0)

        assert gate.should_fire(AlertCategory.RATE_EXCEEDING, True, T0)
        assert gate.should_fire(AlertCategory.SESSION_OVERFLOW, True, T0)

    def test_warning_cooldown_is_ten_minutes(self):
        """Test warning alerts use the longer cooldown."""
        gate = AlertGate()
        gate.should_fire(AlertCategory.WARNING_COMBINED, True, T0)

        assert not gate.should_fire(AlertCategory.WARNING_COMBINED, True, T0 + timedelta(minutes=9))
        assert gate.should_fire(AlertCategory.WARNING_COMBINED, True, T0 + timedelta(minutes=10))

    def test_custom_cooldowns(self):
        """Test cooldowns come from configuration."""
        gate = AlertGate(AlertCooldowns(rate=timedelta(seconds=10)))
        gate.should_fire(AlertCategory.RATE_EXCEEDING, True, T0)

        assert gate.should_fire(AlertCategory.RATE_EXCEEDING, True, T0 + timedelta(seconds=10))

    def test_reset_clears_history(self):
        """Test reset lets every category fire again."""
        gate = AlertGate()
        gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0)

        gate.reset()

        assert gate.should_fire(AlertCategory.CRITICAL_COMBINED, True, T0 + timedelta(seconds=1))


class TestEvaluateAlerts:
    """Test alerts derived from metrics."""

    def test_nothing_fires_when_safe(self):
        """Test low usage produces no alerts."""
        assert evaluate_alerts(metrics_for(messages=5), AlertGate(), T0) == []

    def test_critical_usage_fires_critical_only(self):
        """Test critical usage does not also fire the warning alert."""
        alerts = evaluate_alerts(metrics_for(messages=36), AlertGate(), T0)

        categories = [alert.category for alert in alerts]
        assert AlertCategory.CRITICAL_COMBINED in categories
        assert AlertCategory.WARNING_COMBINED not in categories
        assert alerts[0].severity == Severity.CRITICAL
        assert "90.0%" in alerts[0].message

    def test_critical_cooldown_does_not_fall_back_to_warning(self):
        """Test suppressed critical usage does not fire the warning alert instead."""
        gate = AlertGate()
        evaluate_alerts(metrics_for(messages=36), gate, T0)

        alerts = evaluate_alerts(metrics_for(messages=36), gate, T0 + timedelta(minutes=1))

        assert alerts == []
        assert AlertCategory.WARNING_COMBINED not in gate.last_fired

    def test_warning_usage_fires_warning(self):
        """Test warning-level usage fires the warning alert."""
        alerts = evaluate_alerts(metrics_for(messages=33), AlertGate(), T0)

        assert [alert.category for alert in alerts] == [AlertCategory.WARNING_COMBINED]
        assert alerts[0].fired_at == T0

    def test_session_overflow_fires(self):
        """Test too many concurrent sessions fire an overflow alert."""
        alerts = evaluate_alerts(metrics_for(messages=0, active_sessions=5, tier="pro"), AlertGate(), T0)

        assert AlertCategory.SESSION_OVERFLOW in [alert.category for alert in alerts]
        assert "5/4 concurrent" in [a for a in alerts if a.category == AlertCategory.SESSION_OVERFLOW][0].message

    def test_rate_exceeding_fires(self):
        """Test a current rate above the safe rate fires a rate alert."""
        # 20 messages left over 10 hours against one session at 10 msg/hr
        alerts = evaluate_alerts(metrics_for(messages=380, active_sessions=1, hours_in=14, tier="pro"), AlertGate(), T0)

        assert AlertCategory.RATE_EXCEEDING in [alert.category for alert in alerts]

    def test_repeated_ticks_are_suppressed(self):
        """Test a persistent condition alerts once per cooldown window."""
        gate = AlertGate()
        metrics = metrics_for(messages=36)

        first = evaluate_alerts(metrics, gate, T0)
        second = evaluate_alerts(metrics, gate, T0 + timedelta(seconds=5))
        later = evaluate_alerts(metrics, gate, T0 + timedelta(minutes=6))

        assert len(first) == 1
        assert second == []
        assert len(later) == 1
