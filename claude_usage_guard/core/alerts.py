"""
Alert de-duplication and cooldown.

A condition that stays true produces one alert per cooldown window instead
of one alert per refresh tick.

Evaluation Order:
1. Combined usage critical
2. Combined usage warning (only when not critical)
3. Concurrent session overflow
4. Message rate exceeding the safe rate
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from claude_usage_guard.config.loader import AlertCooldowns
from .analyzer import RateBand, Severity, UsageMetrics


class AlertCategory(Enum):
    """Independent alert streams, each with its own cooldown."""
    CRITICAL_COMBINED = "critical-combined"
    WARNING_COMBINED = "warning-combined"
    SESSION_OVERFLOW = "session-overflow"
    RATE_EXCEEDING = "rate-exceeding"


@dataclass(frozen=True)
class Alert:
    """An alert that passed the gate."""
    category: AlertCategory
    severity: Severity
    message: str
    fired_at: datetime


class AlertGate:
    """Tracks when each alert category last fired."""

    def __init__(self, cooldowns: Optional[AlertCooldowns] = None):
        cooldowns = cooldowns or AlertCooldowns()
        self.cooldowns: Dict[AlertCategory, timedelta] = {
            AlertCategory.CRITICAL_COMBINED: cooldowns.critical,
            AlertCategory.WARNING_COMBINED: cooldowns.warning,
            AlertCategory.SESSION_OVERFLOW: cooldowns.session,
            AlertCategory.RATE_EXCEEDING: cooldowns.rate,
        }
        self.last_fired: Dict[AlertCategory, datetime] = {}

    def should_fire(self, category: AlertCategory, condition: bool, now: datetime) -> bool:
        """Decide whether a condition fires an alert now.

        Returns True, and records ``now`` as the last fire time, only if the
        condition holds and the category never fired or its cooldown has
        fully elapsed.
        """
        if not condition:
            return False
        last = self.last_fired.get(category)
        if last is not None and now - last < self.cooldowns[category]:
            return False
        self.last_fired[category] = now
        return True

    def reset(self) -> None:
        self.last_fired.clear()


def evaluate_alerts(metrics: UsageMetrics, gate: AlertGate, now: datetime) -> List[Alert]:
    """Turn metrics into the alerts that should be emitted now.

    The warning alert fires only while combined usage is in the warning band.
    Critical usage never falls back to a warning alert, even while the
    critical alert is in its cooldown.

    Args:
        metrics: Metrics computed for this tick
        gate: Alert gate holding the cooldown state
        now: Current time

    Returns:
        Alerts that passed the gate, in evaluation order
    """
    alerts = []
    limits = metrics.limits

    critical = metrics.combined_severity == Severity.CRITICAL
    if gate.should_fire(AlertCategory.CRITICAL_COMBINED, critical, now):
        alerts.append(Alert(
            category=AlertCategory.CRITICAL_COMBINED,
            severity=Severity.CRITICAL,
            message=(
                f"CRITICAL: Usage at {metrics.combined_pct:.1f}% "
                f"(critical at {limits.critical_threshold * 100:.0f}%). Risk of immediate downgrade!"
            ),
            fired_at=now,
        ))

    warning = metrics.combined_severity == Severity.WARNING
    if gate.should_fire(AlertCategory.WARNING_COMBINED, warning, now):
        alerts.append(Alert(
            category=AlertCategory.WARNING_COMBINED,
            severity=Severity.WARNING,
            message=(
                f"WARNING: Usage at {metrics.combined_pct:.1f}% "
                f"(warning at {limits.warning_threshold * 100:.0f}%). Slow down to avoid downgrade."
            ),
            fired_at=now,
        ))

    if gate.should_fire(AlertCategory.SESSION_OVERFLOW, metrics.session_overflow, now):
        alerts.append(Alert(
            category=AlertCategory.SESSION_OVERFLOW,
            severity=Severity.CRITICAL,
            message=f"Too many sessions! {metrics.active_sessions}/{limits.concurrent_sessions} concurrent",
            fired_at=now,
        ))

    exceeding = metrics.rate_band == RateBand.EXCEEDING
    if gate.should_fire(AlertCategory.RATE_EXCEEDING, exceeding, now):
        alerts.append(Alert(
            category=AlertCategory.RATE_EXCEEDING,
            severity=Severity.WARNING,
            message=(
                f"Current rate ({metrics.current_rate:.1f} msg/hr) exceeds "
                f"safe rate ({metrics.safe_rate:.1f} msg/hr)"
            ),
            fired_at=now,
        ))

    return alerts
