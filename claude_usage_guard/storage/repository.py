"""
Repository pattern for data access.

Handles the usage-state and threshold-learning documents and the
externally produced session and throttle-event records.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from claude_usage_guard.config.loader import MonitorConfig
from .documents import DocumentError, LoadResult, LoadStatus, read_json, write_json
from .models import (
    AdaptedLimits,
    ClosedPeriod,
    ConfidenceScore,
    LearningMode,
    SessionRecord,
    ThresholdState,
    ThrottleEvent,
    UsagePeriod,
    UsageState,
    parse_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

SESSION_FILE_PATTERN = "session-*.json"
THROTTLE_FILE_PATTERN = "throttle-*.json"


@dataclass(frozen=True)
class SessionSnapshot:
    """Aggregate of the session records that belong to the current period."""
    active_sessions: int = 0
    total_tokens: int = 0
    total_messages: int = 0
    session_count: int = 0
    active_records: Tuple[SessionRecord, ...] = field(default_factory=tuple)


class PeriodStore:
    """Owner of the current usage period and the period history.

    Every mutation replaces the whole usage-state document. Load and write
    failures never reach the caller: loads fall back to a fresh state and
    write failures are logged and reflected in ``last_write_ok``.
    """

    def __init__(self, config: MonitorConfig):
        """Initialize the store.

        Args:
            config: Monitor configuration providing the document path,
                period length and default subscription
        """
        self.path = config.usage_file
        self.period_length = config.period_length
        self.default_subscription = config.subscription
        self.last_write_ok = True
        self._state: Optional[UsageState] = None

    @property
    def state(self) -> UsageState:
        if self._state is None:
            self.load()
        return self._state

    @property
    def current_period(self) -> UsagePeriod:
        return self.state.current_period

    def load(self, now: Optional[datetime] = None) -> LoadResult[UsageState]:
        """Load the usage-state document.

        Args:
            now: Start time for a fresh period if nothing usable is stored

        Returns:
            LoadResult holding the state in use from now on
        """
        now = now or utc_now()
        try:
            raw = read_json(self.path)
            if raw is None:
                result = LoadResult(UsageState.fresh(self.default_subscription, now), LoadStatus.MISSING)
            else:
                state, partial = _parse_usage_state(raw, self.default_subscription, now)
                result = LoadResult(state, LoadStatus.PARTIAL if partial else LoadStatus.LOADED)
        except (DocumentError, ValueError) as e:
            logger.warning("Could not load usage data, starting fresh: %s", e)
            result = LoadResult(
                UsageState.fresh(self.default_subscription, now), LoadStatus.REJECTED, str(e)
            )
        self._state = result.value
        return result

    def save(self) -> bool:
        """Write the full usage-state document."""
        self.last_write_ok = write_json(self.path, self.state.to_dict())
        return self.last_write_ok

    def check_and_reset(self, now: Optional[datetime] = None) -> bool:
        """Roll the current period over once it has aged out.

        Args:
            now: Current time

        Returns:
            True if the period was archived and a new one started; False if
            the period is still live, in which case nothing is written
        """
        now = now or utc_now()
        state = self.state
        if now - state.current_period.start_date < self.period_length:
            return False

        state.history.append(ClosedPeriod(period=state.current_period, end_date=now))
        state.current_period = UsagePeriod.fresh(now)
        logger.info("Usage period rolled over at %s", now.isoformat())
        self.save()
        return True

    def record_messages(self, count: int = 1, now: Optional[datetime] = None) -> UsagePeriod:
        """Add messages to the current period.

        Args:
            count: Number of messages sent (>= 1)
            now: Current time

        Returns:
            The updated current period

        Raises:
            ValueError: If count is less than 1
        """
        if count < 1:
            raise ValueError("count must be >= 1")
        now = now or utc_now()
        self.check_and_reset(now)

        period = self.state.current_period
        self.state.current_period = replace(
            period,
            message_count=period.message_count + count,
            last_updated=max(now, period.start_date),
        )
        self.save()
        return self.state.current_period

    def aggregate_from_sessions(self, records: List[SessionRecord]) -> SessionSnapshot:
        """Recompute token and session counts from session records.

        Only records started within the current period count. Token and
        session counts are overwritten and the peak is a running max, so
        repeating the call with the same records changes nothing.

        Args:
            records: Session records read from the session directory

        Returns:
            SessionSnapshot for the current period
        """
        period = self.state.current_period
        in_period = [record for record in records if record.start_time >= period.start_date]
        active = sorted(
            (record for record in in_period if record.active),
            key=lambda record: record.start_time
        )

        snapshot = SessionSnapshot(
            active_sessions=len(active),
            total_tokens=sum(record.estimated_tokens for record in in_period),
            total_messages=sum(record.message_count for record in in_period),
            session_count=len(in_period),
            active_records=tuple(active),
        )

        updated = replace(
            period,
            token_count=snapshot.total_tokens,
            session_count=snapshot.session_count,
            peak_concurrent_sessions=max(period.peak_concurrent_sessions, snapshot.active_sessions),
        )
        if updated != period:
            self.state.current_period = updated
            self.save()
        return snapshot

    def set_subscription(self, subscription: str) -> bool:
        """Switch the tracked subscription and persist it."""
        self.state.subscription = subscription
        return self.save()

    def clear(self, now: Optional[datetime] = None) -> bool:
        """Start a fresh period and drop history, keeping the subscription."""
        now = now or utc_now()
        self._state = UsageState.fresh(self.state.subscription, now)
        return self.save()

    def history_since(self, days: int, now: Optional[datetime] = None) -> List[ClosedPeriod]:
        """Closed periods started within the last ``days`` days, newest first."""
        now = now or utc_now()
        cutoff = now - timedelta(days=days)
        relevant = [period for period in self.state.history if period.start_date >= cutoff]
        return sorted(relevant, key=lambda period: period.start_date, reverse=True)

    def prune_history(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Drop closed periods that ended before the retention window.

        Returns:
            Number of periods removed
        """
        now = now or utc_now()
        cutoff = now - timedelta(days=retention_days)
        kept = [period for period in self.state.history if period.end_date >= cutoff]
        removed = len(self.state.history) - len(kept)
        if removed:
            self.state.history = kept
            self.save()
        return removed


class ThresholdRepository:
    """Access to the threshold-learning document."""

    def __init__(self, config: MonitorConfig):
        self.path = config.threshold_file
        self.last_write_ok = True

    def load(self, now: Optional[datetime] = None) -> LoadResult[ThresholdState]:
        """Load the threshold-learning document, falling back to a fresh state."""
        now = now or utc_now()
        try:
            raw = read_json(self.path)
            if raw is None:
                return LoadResult(ThresholdState.fresh(now), LoadStatus.MISSING)
            state, partial = _parse_threshold_state(raw, now)
            return LoadResult(state, LoadStatus.PARTIAL if partial else LoadStatus.LOADED)
        except (DocumentError, ValueError) as e:
            logger.warning("Could not load threshold data, starting fresh: %s", e)
            return LoadResult(ThresholdState.fresh(now), LoadStatus.REJECTED, str(e))

    def save(self, state: ThresholdState) -> bool:
        self.last_write_ok = write_json(self.path, state.to_dict())
        return self.last_write_ok


def read_session_records(session_dir: Path) -> List[SessionRecord]:
    """Read every session record in the session directory.

    Unreadable or malformed records are logged and skipped; a missing
    directory yields an empty list.
    """
    return _read_records(session_dir, SESSION_FILE_PATTERN, SessionRecord.from_dict)


def read_throttle_events(throttle_dir: Path) -> List[ThrottleEvent]:
    """Read every throttle event in the throttle-event directory.

    Unreadable or malformed records are logged and skipped; a missing
    directory yields an empty list.
    """
    return _read_records(throttle_dir, THROTTLE_FILE_PATTERN, ThrottleEvent.from_dict)


def _read_records(directory: Path, pattern: str, parse: Callable[[Dict[str, Any]], R]) -> List[R]:
    if not directory.is_dir():
        return []

    try:
        paths = sorted(directory.glob(pattern))
    except OSError as e:
        logger.warning("Could not list %s: %s", directory, e)
        return []

    records = []
    for path in paths:
        try:
            raw = read_json(path)
            if raw is None:
                # Removed between listing and reading
                continue
            records.append(parse(raw))
        except (DocumentError, ValueError) as e:
            logger.warning("Skipping unreadable record %s: %s", path.name, e)
    return records


def _parse_usage_state(raw: Any, default_subscription: str, now: datetime) -> Tuple[UsageState, bool]:
    """Parse the usage-state document.

    Returns:
        The state and whether any field had to be defaulted

    Raises:
        ValueError: If the document is not an object or its period is invalid
    """
    if not isinstance(raw, dict):
        raise ValueError("usage data must be a JSON object")
    partial = False

    subscription = raw.get('subscription')
    if not isinstance(subscription, str) or not subscription.strip():
        subscription = default_subscription
        partial = True

    if 'currentPeriod' in raw:
        current_period = UsagePeriod.from_dict(raw['currentPeriod'])
    else:
        current_period = UsagePeriod.fresh(now)
        partial = True

    history: List[ClosedPeriod] = []
    raw_history = raw.get('history')
    if not isinstance(raw_history, list):
        partial = True
        raw_history = []
    for index, entry in enumerate(raw_history):
        try:
            history.append(ClosedPeriod.from_dict(entry))
        except ValueError as e:
            logger.warning("Skipping malformed history entry %d: %s", index, e)
            partial = True

    return UsageState(subscription=subscription.lower(), current_period=current_period, history=history), partial


def _parse_threshold_state(raw: Any, now: datetime) -> Tuple[ThresholdState, bool]:
    """Parse the threshold-learning document.

    Returns:
        The state and whether any field had to be defaulted

    Raises:
        ValueError: If the document is not an object
    """
    if not isinstance(raw, dict):
        raise ValueError("threshold data must be a JSON object")
    partial = False

    try:
        learning_mode = LearningMode(raw.get('learningMode'))
    except ValueError:
        learning_mode = LearningMode.ESTIMATES
        partial = True

    try:
        last_updated = parse_timestamp(raw.get('lastUpdated'))
    except ValueError:
        last_updated = now
        partial = True

    events: List[ThrottleEvent] = []
    raw_events = raw.get('throttleEvents')
    if not isinstance(raw_events, list):
        raw_events = []
        partial = True
    for index, entry in enumerate(raw_events):
        try:
            events.append(ThrottleEvent.from_dict(entry))
        except ValueError as e:
            logger.warning("Skipping malformed throttle event %d: %s", index, e)
            partial = True

    adapted: Dict[str, AdaptedLimits] = {}
    raw_adapted = raw.get('adaptedLimits')
    if not isinstance(raw_adapted, dict):
        raw_adapted = {}
        partial = True
    for name, entry in raw_adapted.items():
        try:
            limits = AdaptedLimits.from_dict(entry)
        except ValueError as e:
            logger.warning("Skipping malformed adapted limits for %s: %s", name, e)
            partial = True
            continue
        if not limits.is_empty():
            adapted[str(name).lower()] = limits

    try:
        confidence = ConfidenceScore.from_dict(raw.get('confidence'))
    except ValueError:
        confidence = ConfidenceScore()
        partial = True

    state = ThresholdState(
        learning_mode=learning_mode,
        last_updated=last_updated,
        throttle_events=events,
        adapted_limits=adapted,
        confidence=confidence,
    )
    return state, partial
