"""
Usage analysis against effective limits.

Derives percentages, safe rate, time-to-reset and severity from the
current period. Everything here is a pure function of its inputs.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from claude_usage_guard.storage.models import UsagePeriod
from .learner import EffectiveLimits

# Heuristic, not a measurement: messages per hour per active session
DEFAULT_MESSAGES_PER_SESSION_HOUR = 10.0
DEFAULT_PERIOD_LENGTH = timedelta(hours=24)

CAUTION_RATIO = 0.8
EXCEEDING_RATIO = 1.0

# Absorbs float noise so that e.g. 36/40 lands exactly on a 90% threshold
_EPSILON = 1e-9


class Severity(Enum):
    """Severity of a usage percentage relative to tier thresholds."""
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class RateBand(Enum):
    """Current message rate relative to the safe rate."""
    SAFE = "safe"
    CAUTION = "caution"
    EXCEEDING = "exceeding"


@dataclass(frozen=True)
class UsageMetrics:
    """Derived usage metrics for one point in time."""
    limits: EffectiveLimits
    message_count: int
    token_count: int
    active_sessions: int
    message_pct: float
    token_pct: float
    session_pct: float
    combined_pct: float
    hours_until_reset: float
    safe_rate: float
    current_rate: float
    rate_ratio: float
    rate_band: RateBand
    combined_severity: Severity
    session_severity: Severity

    @property
    def remaining_messages(self) -> int:
        return max(0, self.limits.daily_messages - self.message_count)

    @property
    def session_overflow(self) -> bool:
        """More sessions are active than the tier tolerates."""
        return self.active_sessions > self.limits.concurrent_sessions

    def to_dict(self) -> dict:
        return {
            "messagePct": round(self.message_pct, 2),
            "tokenPct": round(self.token_pct, 2),
            "sessionPct": round(self.session_pct, 2),
            "combinedPct": round(self.combined_pct, 2),
            "hoursUntilReset": round(self.hours_until_reset, 4),
            "safeRate": round(self.safe_rate, 2),
            "currentRate": round(self.current_rate, 2),
            "rateRatio": round(self.rate_ratio, 4),
            "rateBand": self.rate_band.value,
            "combinedSeverity": self.combined_severity.value,
            "sessionSeverity": self.session_severity.value,
            "activeSessions": self.active_sessions,
            "isAdapted": self.limits.is_adapted,
        }


def compute_metrics(
    period: UsagePeriod,
    limits: EffectiveLimits,
    active_sessions: int,
    now: datetime,
    period_length: timedelta = DEFAULT_PERIOD_LENGTH,
    messages_per_session_hour: float = DEFAULT_MESSAGES_PER_SESSION_HOUR,
) -> UsageMetrics:
    """Compute usage metrics for the current period.

    The combined percentage is the most exhausted dimension. The safe rate
    is the hourly message rate that uses up the remaining daily messages
    exactly at reset; it is never negative and is 0 once the period is over.

    Args:
        period: Current usage period
        limits: Effective limits for the tracked subscription
        active_sessions: Number of currently active sessions
        now: Point in time to evaluate at
        period_length: Length of a usage period
        messages_per_session_hour: Estimated message rate per active session

    Returns:
        UsageMetrics for the period at ``now``
    """
    message_pct = percent_of(period.message_count, limits.daily_messages)
    token_pct = percent_of(period.token_count, limits.daily_tokens)
    session_pct = percent_of(active_sessions, limits.concurrent_sessions)
    combined_pct = max(message_pct, token_pct, session_pct)

    reset_at = period.start_date + period_length
    hours_until_reset = max(0.0, (reset_at - now).total_seconds() / 3600)

    if hours_until_reset > 0:
        safe_rate = max(0.0, (limits.daily_messages - period.message_count) / hours_until_reset)
    else:
        safe_rate = 0.0

    current_rate = active_sessions * messages_per_session_hour
    rate_ratio = current_rate / safe_rate if safe_rate > 0 else 0.0

    return UsageMetrics(
        limits=limits,
        message_count=period.message_count,
        token_count=period.token_count,
        active_sessions=active_sessions,
        message_pct=message_pct,
        token_pct=token_pct,
        session_pct=session_pct,
        combined_pct=combined_pct,
        hours_until_reset=hours_until_reset,
        safe_rate=safe_rate,
        current_rate=current_rate,
        rate_ratio=rate_ratio,
        rate_band=classify_rate(rate_ratio),
        combined_severity=classify_severity(combined_pct, limits.warning_threshold, limits.critical_threshold),
        session_severity=classify_severity(session_pct, limits.warning_threshold, limits.critical_threshold),
    )


def classify_severity(percentage: float, warning_threshold: float, critical_threshold: float) -> Severity:
    """Classify a percentage; both thresholds are inclusive lower bounds."""
    if percentage + _EPSILON >= critical_threshold * 100:
        return Severity.CRITICAL
    if percentage + _EPSILON >= warning_threshold * 100:
        return Severity.WARNING
    return Severity.OK


def classify_rate(rate_ratio: float) -> RateBand:
    if rate_ratio > EXCEEDING_RATIO:
        return RateBand.EXCEEDING
    if rate_ratio > CAUTION_RATIO:
        return RateBand.CAUTION
    return RateBand.SAFE


def format_duration(hours: float) -> str:
    """Format a duration in hours as ``"5h 30m"`` or ``"12m"``."""
    whole_hours = int(hours)
    minutes = int(round((hours - whole_hours) * 60))
    if minutes == 60:
        whole_hours, minutes = whole_hours + 1, 0
    if whole_hours > 0:
        return f"{whole_hours}h {minutes}m"
    return f"{minutes}m"


def format_tokens(count: int) -> str:
    """Format a token count as ``"1.5M"``, ``"12.3K"`` or the plain number."""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def percent_of(value: int, limit: int) -> float:
    """Percentage of a limit; 0 for a non-positive limit."""
    if limit <= 0:
        return 0.0
    return value / limit * 100
