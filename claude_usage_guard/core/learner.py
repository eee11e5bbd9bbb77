"""
Threshold learning from throttle events.

Turns externally logged throttle events into conservative per-subscription
limits. The estimator is min-based: the lowest usage at which the service
ever throttled, scaled down, becomes the working limit.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional

from claude_usage_guard.config.loader import LearningConfig
from claude_usage_guard.storage.models import (
    AdaptedLimits,
    ConfidenceScore,
    LearningMode,
    ThresholdState,
    ThrottleEvent,
    utc_now,
)
from .tiers import Tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectiveLimits:
    """Tier limits with any learned overrides applied."""
    name: str
    daily_messages: int
    daily_tokens: int
    concurrent_sessions: int
    warning_threshold: float
    critical_threshold: float
    is_adapted: bool = False

    @classmethod
    def from_tier(cls, tier: Tier, adapted: Optional[AdaptedLimits] = None) -> "EffectiveLimits":
        """Overlay adapted fields onto the tier defaults, field by field."""
        if adapted is None:
            return cls(
                name=tier.name,
                daily_messages=tier.daily_messages,
                daily_tokens=tier.daily_tokens,
                concurrent_sessions=tier.concurrent_sessions,
                warning_threshold=tier.warning_threshold,
                critical_threshold=tier.critical_threshold,
            )
        return cls(
            name=tier.name,
            daily_messages=_pick(adapted.daily_messages, tier.daily_messages),
            daily_tokens=_pick(adapted.daily_tokens, tier.daily_tokens),
            concurrent_sessions=_pick(adapted.concurrent_sessions, tier.concurrent_sessions),
            warning_threshold=tier.warning_threshold,
            critical_threshold=tier.critical_threshold,
            is_adapted=True,
        )


@dataclass(frozen=True)
class LearningResult:
    """Outcome of analyzing a set of throttle events."""
    event_count: int
    adapted_limits: Dict[str, AdaptedLimits] = field(default_factory=dict)
    confidence: Dict[str, ConfidenceScore] = field(default_factory=dict)
    overall_confidence: ConfidenceScore = field(default_factory=ConfidenceScore)


class ThresholdLearner:
    """Learning-mode state machine plus the adaptation rule.

    The mode starts at ESTIMATES and moves to ADAPTIVE once enough distinct
    throttle events have been seen. It never moves back.
    """

    def __init__(self, config: LearningConfig, state: Optional[ThresholdState] = None):
        self.config = config
        self.state = state if state is not None else ThresholdState.fresh(utc_now())

    @property
    def mode(self) -> LearningMode:
        return self.state.learning_mode

    @property
    def is_adaptive(self) -> bool:
        return self.state.learning_mode == LearningMode.ADAPTIVE

    def analyze(
        self,
        events: Iterable[ThrottleEvent],
        previous: Optional[Mapping[str, AdaptedLimits]] = None
    ) -> LearningResult:
        """Derive adapted limits and confidence from throttle events.

        For every subscription and every dimension independently, the
        strictly positive observed values are collected. Messages and tokens
        adapt to ``floor(min * adaptation_factor)``; sessions adapt to
        ``max(1, min - session_margin)``. A dimension with no observation
        keeps its value from ``previous`` or stays unset.

        The result depends only on the set of events, not their order.

        Args:
            events: Throttle events; duplicates count once
            previous: Adapted limits from an earlier pass

        Returns:
            LearningResult for the given events
        """
        distinct = set(events)
        previous = previous or {}

        by_subscription: Dict[str, List[ThrottleEvent]] = {}
        for event in distinct:
            by_subscription.setdefault(event.subscription, []).append(event)

        adapted: Dict[str, AdaptedLimits] = {}
        confidence: Dict[str, ConfidenceScore] = {}
        for subscription, group in by_subscription.items():
            limits = self._adapt(group).merged_over(previous.get(subscription))
            if not limits.is_empty():
                adapted[subscription] = limits
            confidence[subscription] = self._confidence(group)

        # Subscriptions without events in this pass keep what they had
        for subscription, limits in previous.items():
            adapted.setdefault(subscription, limits)

        return LearningResult(
            event_count=len(distinct),
            adapted_limits=adapted,
            confidence=confidence,
            overall_confidence=self._confidence(distinct),
        )

    def learn(self, events: Iterable[ThrottleEvent], now: Optional[datetime] = None) -> LearningResult:
        """Run a learning pass and fold the result into the learner state.

        Adapted limits are recomputed from the full event log each pass.
        With no events at all the state is left untouched.
        """
        now = now or utc_now()
        distinct = sorted(set(events), key=_event_sort_key)
        result = self.analyze(distinct, previous=self.state.adapted_limits)
        if not distinct:
            return result

        self.state.throttle_events = distinct
        self.state.adapted_limits = result.adapted_limits
        self.state.confidence = result.overall_confidence
        self.state.last_updated = now

        if (self.state.learning_mode == LearningMode.ESTIMATES
                and len(distinct) >= self.config.adaptive_event_threshold):
            self.state.learning_mode = LearningMode.ADAPTIVE
            logger.info("Switched to adaptive limits after %d throttle events", len(distinct))

        return result

    def effective_limits(self, tier: Tier, subscription: str) -> EffectiveLimits:
        """Tier limits, overlaid with adapted limits once in adaptive mode."""
        adapted = self.state.adapted_limits.get((subscription or "").lower())
        if self.is_adaptive and adapted is not None:
            return EffectiveLimits.from_tier(tier, adapted)
        return EffectiveLimits.from_tier(tier)

    def _adapt(self, events: List[ThrottleEvent]) -> AdaptedLimits:
        messages = _positive(event.message_count for event in events)
        tokens = _positive(event.token_count for event in events)
        sessions = _positive(event.active_sessions for event in events)

        factor = self.config.adaptation_factor
        # A limit of zero would make every percentage undefined
        return AdaptedLimits(
            daily_messages=max(1, math.floor(min(messages) * factor)) if messages else None,
            daily_tokens=max(1, math.floor(min(tokens) * factor)) if tokens else None,
            concurrent_sessions=max(1, min(sessions) - self.config.session_margin) if sessions else None,
        )

    def _confidence(self, events: Iterable[ThrottleEvent]) -> ConfidenceScore:
        events = list(events)
        messages = len(_positive(event.message_count for event in events))
        tokens = len(_positive(event.token_count for event in events))
        sessions = len(_positive(event.active_sessions for event in events))
        return ConfidenceScore(
            messages=min(100, messages * self.config.message_confidence_step),
            tokens=min(100, tokens * self.config.token_confidence_step),
            sessions=min(100, sessions * self.config.session_confidence_step),
        )


def _positive(values: Iterable[int]) -> List[int]:
    return [value for value in values if value > 0]


def _pick(adapted: Optional[int], default: int) -> int:
    return adapted if adapted is not None else default


def _event_sort_key(event: ThrottleEvent):
    return (event.timestamp, event.subscription, event.message_count, event.token_count, event.active_sessions)
