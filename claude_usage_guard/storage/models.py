"""
Data models for storage layer.

Defines the persisted documents and the externally produced records,
together with their JSON field mapping.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp written by us or by an external producer.

    A trailing ``Z`` and naive timestamps are read as UTC.

    Raises:
        ValueError: If value is not a valid ISO-8601 string
    """
    if not isinstance(value, str):
        raise ValueError(f"Timestamp must be a string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.isoformat()


def _count(data: Dict[str, Any], key: str) -> int:
    """Read a non-negative integer field, treating absent or null as 0."""
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number")
    return max(0, int(value))


@dataclass(frozen=True)
class UsagePeriod:
    """Usage counters for one rolling accounting window.

    Invariant: start_date <= last_updated.
    """
    start_date: datetime
    message_count: int = 0
    token_count: int = 0
    session_count: int = 0
    peak_concurrent_sessions: int = 0
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        """Validate counters and the timestamp ordering."""
        if self.last_updated is None:
            object.__setattr__(self, 'last_updated', self.start_date)
        for name in ('message_count', 'token_count', 'session_count', 'peak_concurrent_sessions'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.start_date > self.last_updated:
            raise ValueError("start_date must not be after last_updated")

    @classmethod
    def fresh(cls, now: datetime) -> "UsagePeriod":
        """A new period starting at ``now`` with all counters at zero."""
        return cls(start_date=now, last_updated=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startDate": format_timestamp(self.start_date),
            "messageCount": self.message_count,
            "tokenCount": self.token_count,
            "sessionCount": self.session_count,
            "peakConcurrentSessions": self.peak_concurrent_sessions,
            "lastUpdated": format_timestamp(self.last_updated),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsagePeriod":
        """Build a period from its JSON form.

        Raises:
            ValueError: If startDate is missing or a field is invalid
        """
        if not isinstance(data, dict):
            raise ValueError("period must be an object")
        if 'startDate' not in data:
            raise ValueError("period is missing 'startDate'")
        start_date = parse_timestamp(data['startDate'])
        last_updated = parse_timestamp(data['lastUpdated']) if data.get('lastUpdated') else start_date
        return cls(
            start_date=start_date,
            message_count=_count(data, 'messageCount'),
            token_count=_count(data, 'tokenCount'),
            session_count=_count(data, 'sessionCount'),
            peak_concurrent_sessions=_count(data, 'peakConcurrentSessions'),
            last_updated=max(start_date, last_updated),
        )


@dataclass(frozen=True)
class ClosedPeriod:
    """A period archived into history on rollover."""
    period: UsagePeriod
    end_date: datetime

    @property
    def start_date(self) -> datetime:
        return self.period.start_date

    @property
    def message_count(self) -> int:
        return self.period.message_count

    def to_dict(self) -> Dict[str, Any]:
        data = self.period.to_dict()
        data["endDate"] = format_timestamp(self.end_date)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosedPeriod":
        period = UsagePeriod.from_dict(data)
        end_date = parse_timestamp(data['endDate']) if data.get('endDate') else period.last_updated
        return cls(period=period, end_date=end_date)


@dataclass
class UsageState:
    """Contents of the usage-state document."""
    subscription: str
    current_period: UsagePeriod
    history: List[ClosedPeriod] = field(default_factory=list)

    @classmethod
    def fresh(cls, subscription: str, now: datetime) -> "UsageState":
        return cls(subscription=subscription, current_period=UsagePeriod.fresh(now))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscription": self.subscription,
            "currentPeriod": self.current_period.to_dict(),
            "history": [period.to_dict() for period in self.history],
        }


@dataclass(frozen=True)
class SessionRecord:
    """Session written by the external session logger. Read-only here."""
    start_time: datetime
    pid: Optional[int] = None
    active: bool = False
    estimated_tokens: int = 0
    message_count: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        """Build a session record from its JSON form.

        Raises:
            ValueError: If startTime is missing or a field is invalid
        """
        if not isinstance(data, dict):
            raise ValueError("session record must be an object")
        if 'startTime' not in data:
            raise ValueError("session record is missing 'startTime'")
        pid = data.get('pid')
        return cls(
            start_time=parse_timestamp(data['startTime']),
            pid=int(pid) if isinstance(pid, (int, str)) and str(pid).isdigit() else None,
            active=bool(data.get('active', False)),
            estimated_tokens=_count(data, 'estimatedTokens'),
            message_count=_count(data, 'messageCount'),
        )


@dataclass(frozen=True)
class ThrottleEvent:
    """Observed usage at the moment the service throttled.

    Immutable once recorded; equal events are the same observation.
    """
    subscription: str
    message_count: int
    token_count: int
    active_sessions: int
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subscription": self.subscription,
            "messageCount": self.message_count,
            "tokenCount": self.token_count,
            "activeSessions": self.active_sessions,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThrottleEvent":
        """Build a throttle event from its JSON form.

        Raises:
            ValueError: If timestamp is missing or a field is invalid
        """
        if not isinstance(data, dict):
            raise ValueError("throttle event must be an object")
        if 'timestamp' not in data:
            raise ValueError("throttle event is missing 'timestamp'")
        subscription = data.get('subscription') or 'unknown'
        return cls(
            subscription=str(subscription).lower(),
            message_count=_count(data, 'messageCount'),
            token_count=_count(data, 'tokenCount'),
            active_sessions=_count(data, 'activeSessions'),
            timestamp=parse_timestamp(data['timestamp']),
        )


class LearningMode(Enum):
    """Whether limits come from estimates or from throttle observations."""
    ESTIMATES = "estimates"
    ADAPTIVE = "adaptive"


@dataclass(frozen=True)
class AdaptedLimits:
    """Learned overrides for a subscription. None means use the tier default."""
    daily_messages: Optional[int] = None
    daily_tokens: Optional[int] = None
    concurrent_sessions: Optional[int] = None

    def is_empty(self) -> bool:
        return self.daily_messages is None and self.daily_tokens is None and self.concurrent_sessions is None

    def merged_over(self, previous: Optional["AdaptedLimits"]) -> "AdaptedLimits":
        """Fill dimensions this result did not observe from ``previous``."""
        if previous is None:
            return self
        return replace(
            self,
            daily_messages=self.daily_messages if self.daily_messages is not None else previous.daily_messages,
            daily_tokens=self.daily_tokens if self.daily_tokens is not None else previous.daily_tokens,
            concurrent_sessions=(
                self.concurrent_sessions if self.concurrent_sessions is not None
                else previous.concurrent_sessions
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.daily_messages is not None:
            data["dailyMessages"] = self.daily_messages
        if self.daily_tokens is not None:
            data["dailyTokens"] = self.daily_tokens
        if self.concurrent_sessions is not None:
            data["concurrentSessions"] = self.concurrent_sessions
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdaptedLimits":
        if not isinstance(data, dict):
            raise ValueError("adapted limits must be an object")

        def _optional(key: str) -> Optional[int]:
            # Non-positive limits mean the tier default
            if data.get(key) is None:
                return None
            return _count(data, key) or None

        return cls(
            daily_messages=_optional('dailyMessages'),
            daily_tokens=_optional('dailyTokens'),
            concurrent_sessions=_optional('concurrentSessions'),
        )


@dataclass(frozen=True)
class ConfidenceScore:
    """Per-dimension confidence in [0, 100]."""
    messages: int = 0
    tokens: int = 0
    sessions: int = 0

    def __post_init__(self):
        """Validate scores are within range."""
        for name in ('messages', 'tokens', 'sessions'):
            if not 0 <= getattr(self, name) <= 100:
                raise ValueError(f"{name} confidence must be between 0 and 100")

    def to_dict(self) -> Dict[str, int]:
        return {"messages": self.messages, "tokens": self.tokens, "sessions": self.sessions}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfidenceScore":
        if not isinstance(data, dict):
            raise ValueError("confidence must be an object")
        return cls(
            messages=min(100, _count(data, 'messages')),
            tokens=min(100, _count(data, 'tokens')),
            sessions=min(100, _count(data, 'sessions')),
        )


@dataclass
class ThresholdState:
    """Contents of the threshold-learning document."""
    learning_mode: LearningMode
    last_updated: datetime
    throttle_events: List[ThrottleEvent] = field(default_factory=list)
    adapted_limits: Dict[str, AdaptedLimits] = field(default_factory=dict)
    confidence: ConfidenceScore = field(default_factory=ConfidenceScore)

    @classmethod
    def fresh(cls, now: datetime) -> "ThresholdState":
        return cls(learning_mode=LearningMode.ESTIMATES, last_updated=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "learningMode": self.learning_mode.value,
            "lastUpdated": format_timestamp(self.last_updated),
            "throttleEvents": [event.to_dict() for event in self.throttle_events],
            "adaptedLimits": {name: limits.to_dict() for name, limits in self.adapted_limits.items()},
            "confidence": self.confidence.to_dict(),
        }
