"""
Usage monitor service.

Wires the period store, tier catalog, threshold learner and analyzer
together and implements the operations exposed to the CLI.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from claude_usage_guard.config.loader import MonitorConfig
from claude_usage_guard.storage.documents import LoadResult
from claude_usage_guard.storage.models import (
    AdaptedLimits,
    ClosedPeriod,
    ConfidenceScore,
    LearningMode,
    ThresholdState,
    UsagePeriod,
    UsageState,
    utc_now,
)
from claude_usage_guard.storage.repository import (
    PeriodStore,
    SessionSnapshot,
    ThresholdRepository,
    read_session_records,
    read_throttle_events,
)
from .analyzer import Severity, UsageMetrics, classify_severity, compute_metrics, percent_of
from .learner import EffectiveLimits, LearningResult, ThresholdLearner
from .tiers import TierCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusReport:
    """Everything the status display needs."""
    subscription: str
    limits: EffectiveLimits
    period: UsagePeriod
    sessions: SessionSnapshot
    metrics: UsageMetrics
    learning_mode: LearningMode
    throttle_event_count: int
    period_reset: bool = False


@dataclass(frozen=True)
class HistoryEntry:
    """A closed period rated against the current message limit."""
    period: ClosedPeriod
    message_pct: float
    severity: Severity


@dataclass(frozen=True)
class ThresholdReport:
    """Snapshot of the threshold learner state."""
    learning_mode: LearningMode
    last_updated: datetime
    event_count: int
    adapted_limits: Dict[str, AdaptedLimits]
    confidence: ConfidenceScore


class UsageMonitor:
    """Caller-facing operations over the usage and threshold documents.

    Both documents are loaded once on construction. Loading never fails;
    ``usage_load`` and ``threshold_load`` tell whether stored data was used.
    """

    def __init__(self, config: MonitorConfig, catalog: Optional[TierCatalog] = None):
        """Initialize the monitor.

        Args:
            config: Monitor configuration
            catalog: Tier catalog (built from the config overrides if omitted)
        """
        self.config = config
        self.catalog = catalog or TierCatalog(config.tier_overrides)
        self.store = PeriodStore(config)
        self.thresholds = ThresholdRepository(config)

        self.usage_load: LoadResult[UsageState] = self.store.load()
        self.threshold_load: LoadResult[ThresholdState] = self.thresholds.load()
        self.learner = ThresholdLearner(config.learning, self.threshold_load.value)

    @property
    def subscription(self) -> str:
        return self.store.state.subscription

    @property
    def persisted(self) -> bool:
        """False if the most recent write of either document failed."""
        return self.store.last_write_ok and self.thresholds.last_write_ok

    def current_limits(self) -> EffectiveLimits:
        """Effective limits for the tracked subscription."""
        tier = self.catalog.resolve(self.subscription)
        return self.learner.effective_limits(tier, self.subscription)

    def status(self, now: Optional[datetime] = None, display_period: Optional[timedelta] = None) -> StatusReport:
        """Check for rollover, aggregate sessions and compute metrics.

        Args:
            now: Current time
            display_period: Period length used for time-to-reset and safe
                rate only; rollover always uses the configured period length
        """
        now = now or utc_now()
        period_reset = self.store.check_and_reset(now)
        sessions = self.process_sessions()
        limits = self.current_limits()
        metrics = compute_metrics(
            self.store.current_period,
            limits,
            sessions.active_sessions,
            now,
            period_length=display_period or self.config.period_length,
            messages_per_session_hour=self.config.messages_per_session_hour,
        )
        return StatusReport(
            subscription=self.subscription,
            limits=limits,
            period=self.store.current_period,
            sessions=sessions,
            metrics=metrics,
            learning_mode=self.learner.mode,
            throttle_event_count=len(self.learner.state.throttle_events),
            period_reset=period_reset,
        )

    def record(self, count: int = 1, now: Optional[datetime] = None) -> StatusReport:
        """Record sent messages, then report the resulting status.

        Raises:
            ValueError: If count is less than 1
        """
        now = now or utc_now()
        self.store.record_messages(count, now)
        return self.status(now)

    def set_subscription(self, tier: str) -> bool:
        """Switch the tracked subscription.

        Returns:
            Whether the change was persisted

        Raises:
            ValueError: If tier is not a known tier name
        """
        if tier not in self.catalog:
            raise ValueError(
                f"Invalid subscription tier '{tier}'. Choose from: {', '.join(self.catalog.names())}"
            )
        return self.store.set_subscription(tier.strip().lower())

    def history(self, days: int = 7, now: Optional[datetime] = None) -> List[HistoryEntry]:
        """Closed periods of the last ``days`` days, newest first."""
        limits = self.current_limits()
        entries = []
        for period in self.store.history_since(days, now):
            message_pct = percent_of(period.message_count, limits.daily_messages)
            entries.append(HistoryEntry(
                period=period,
                message_pct=message_pct,
                severity=classify_severity(message_pct, limits.warning_threshold, limits.critical_threshold),
            ))
        return entries

    def clear(self, now: Optional[datetime] = None) -> bool:
        """Reset the current period and wipe history, keeping the subscription."""
        return self.store.clear(now)

    def prune_history(self, days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Drop history older than ``days`` (default: configured retention)."""
        return self.store.prune_history(days or self.config.history_retention_days, now)

    def process_sessions(self) -> SessionSnapshot:
        """Aggregate the session directory into the current period."""
        records = read_session_records(self.config.session_dir)
        return self.store.aggregate_from_sessions(records)

    def export_current(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Serializable snapshot of current usage, for throttle-event logging."""
        report = self.status(now)
        return {
            "subscription": report.subscription,
            "currentPeriod": report.period.to_dict(),
            "hoursIntoPeriod": round(self.config.period_hours - report.metrics.hours_until_reset, 4),
            "metrics": report.metrics.to_dict(),
        }

    def analyze_thresholds(self, now: Optional[datetime] = None) -> LearningResult:
        """Re-learn adapted limits from every logged throttle event."""
        events = read_throttle_events(self.config.throttle_dir)
        result = self.learner.learn(events, now)
        if result.event_count:
            self.thresholds.save(self.learner.state)
            logger.info("Analyzed %d throttle events", result.event_count)
        return result

    def threshold_report(self) -> ThresholdReport:
        state = self.learner.state
        return ThresholdReport(
            learning_mode=state.learning_mode,
            last_updated=state.last_updated,
            event_count=len(state.throttle_events),
            adapted_limits=dict(state.adapted_limits),
            confidence=state.confidence,
        )
