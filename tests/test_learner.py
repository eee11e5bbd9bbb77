"""
Unit tests for threshold learning.

Tests the adaptation rule, confidence scores and the learning-mode
state machine.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from claude_usage_guard.config.loader import LearningConfig
from claude_usage_guard.core.learner import EffectiveLimits, ThresholdLearner
from claude_usage_guard.core.tiers import DEFAULT_TIERS
from claude_usage_guard.storage.models import AdaptedLimits, ConfidenceScore, LearningMode, ThrottleEvent

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_event(subscription="max", messages=0, tokens=0, sessions=0, minutes=0) -> ThrottleEvent:
    """Create a test throttle event."""
    return ThrottleEvent(
        subscription=subscription,
        message_count=messages,
        token_count=tokens,
        active_sessions=sessions,
        timestamp=T0 + timedelta(minutes=minutes),
    )


class TestAdaptationRule:
    """Test adapted limits derived from throttle events."""

    def setup_method(self):
        self.learner = ThresholdLearner(LearningConfig())

    def test_messages_use_ninety_percent_of_minimum(self):
        """Test pro events [420, 380, 450] adapt dailyMessages to 342."""
        events = [
            make_event("pro", messages=420, minutes=0),
            make_event("pro", messages=380, minutes=1),
            make_event("pro", messages=450, minutes=2),
        ]

        result = self.learner.analyze(events)

        assert result.adapted_limits["pro"].daily_messages == 342

    def test_tokens_use_floor_of_scaled_minimum(self):
        """Test token limits are floored after scaling."""
        result = self.learner.analyze([make_event(tokens=1_000_005), make_event(tokens=2_000_000, minutes=1)])

        assert result.adapted_limits["max"].daily_tokens == 900_004

    def test_sessions_subtract_one(self):
        """Test session limits subtract one unit instead of scaling."""
        result = self.learner.analyze([make_event(sessions=5), make_event(sessions=3, minutes=1)])

        assert result.adapted_limits["max"].concurrent_sessions == 2

    def test_sessions_never_drop_below_one(self):
        """Test the session limit is floored at one."""
        result = self.learner.analyze([make_event(sessions=1)])

        assert result.adapted_limits["max"].concurrent_sessions == 1

    def test_unobserved_dimensions_stay_unset(self):
        """Test dimensions without positive observations are not adapted."""
        result = self.learner.analyze([make_event(messages=100)])

        limits = result.adapted_limits["max"]
        assert limits.daily_messages == 90
        assert limits.daily_tokens is None
        assert limits.concurrent_sessions is None

    def test_unobserved_dimensions_keep_previous_value(self):
        """Test previous adapted values survive when a dimension has no observation."""
        previous = {"max": AdaptedLimits(daily_tokens=5_000_000, concurrent_sessions=4)}

        result = self.learner.analyze([make_event(messages=100)], previous=previous)

        assert result.adapted_limits["max"] == AdaptedLimits(
            daily_messages=90, daily_tokens=5_000_000, concurrent_sessions=4
        )

    def test_events_grouped_by_subscription(self):
        """Test each subscription is adapted from its own events only."""
        result = self.learner.analyze([
            make_event("pro", messages=300),
            make_event("max", messages=1000, minutes=1),
        ])

        assert result.adapted_limits["pro"].daily_messages == 270
        assert result.adapted_limits["max"].daily_messages == 900

    def test_event_without_positive_values_adapts_nothing(self):
        """Test that all-zero events produce no adapted entry."""
        result = self.learner.analyze([make_event("free")])

        assert "free" not in result.adapted_limits
        assert result.event_count == 1

    def test_analysis_is_order_independent(self):
        """Test every permutation of the events gives the same result."""
        events = [
            make_event("pro", messages=420, tokens=1_500_000, sessions=4, minutes=0),
            make_event("pro", messages=380, tokens=0, sessions=3, minutes=1),
            make_event("max", messages=1200, tokens=8_000_000, sessions=0, minutes=2),
            make_event("pro", messages=450, tokens=1_700_000, sessions=0, minutes=3),
        ]

        expected = self.learner.analyze(events)
        for permutation in itertools.permutations(events):
            assert self.learner.analyze(list(permutation)) == expected

    def test_lower_observation_lowers_limit(self):
        """Test a new lower throttle point lowers the adapted message limit."""
        events = [make_event("pro", messages=400), make_event("pro", messages=380, minutes=1)]
        before = self.learner.analyze(events).adapted_limits["pro"].daily_messages

        lower = self.learner.analyze(events + [make_event("pro", messages=200, minutes=2)])
        higher = self.learner.analyze(events + [make_event("pro", messages=900, minutes=3)])

        assert lower.adapted_limits["pro"].daily_messages < before
        assert higher.adapted_limits["pro"].daily_messages == before

    def test_duplicate_events_count_once(self):
        """Test identical events are treated as one observation."""
        event = make_event(messages=100)

        result = self.learner.analyze([event, event, event])

        assert result.event_count == 1
        assert result.overall_confidence.messages == 20


class TestConfidence:
    """Test confidence scores."""

    def setup_method(self):
        self.learner = ThresholdLearner(LearningConfig())

    def test_confidence_steps(self):
        """Test confidence grows by 20 per message/token and 25 per session observation."""
        events = [
            make_event(messages=100, tokens=1000, sessions=2, minutes=0),
            make_event(messages=120, tokens=0, sessions=3, minutes=1),
        ]

        result = self.learner.analyze(events)

        assert result.overall_confidence == ConfidenceScore(messages=40, tokens=20, sessions=50)
        assert result.confidence["max"] == ConfidenceScore(messages=40, tokens=20, sessions=50)

    def test_confidence_saturates_at_hundred(self):
        """Test confidence never exceeds 100."""
        events = [make_event(messages=100 + i, sessions=2 + i, minutes=i) for i in range(8)]

        result = self.learner.analyze(events)

        assert result.overall_confidence.messages == 100
        assert result.overall_confidence.sessions == 100


class TestLearningMode:
    """Test the estimates -> adaptive state machine."""

    def setup_method(self):
        self.learner = ThresholdLearner(LearningConfig())

    def test_starts_in_estimates_mode(self):
        """Test a fresh learner uses estimates."""
        assert self.learner.mode == LearningMode.ESTIMATES

    def test_two_events_stay_in_estimates(self):
        """Test two distinct events do not switch to adaptive."""
        self.learner.learn([make_event(messages=1000), make_event(messages=1100, minutes=1)], now=T0)

        assert self.learner.mode == LearningMode.ESTIMATES

    def test_duplicates_do_not_count_towards_transition(self):
        """Test three copies of two events are still two distinct events."""
        a = make_event(messages=1000)
        b = make_event(messages=1100, minutes=1)

        self.learner.learn([a, b, a], now=T0)

        assert self.learner.mode == LearningMode.ESTIMATES

    def test_third_event_switches_to_adaptive(self):
        """Test the third distinct event switches to adaptive mode."""
        events = [make_event(messages=1000 + i, minutes=i) for i in range(3)]

        self.learner.learn(events, now=T0)

        assert self.learner.mode == LearningMode.ADAPTIVE
        assert self.learner.state.last_updated == T0
        assert len(self.learner.state.throttle_events) == 3

    def test_adaptive_mode_is_sticky(self):
        """Test adaptive mode survives later passes with fewer events."""
        self.learner.learn([make_event(messages=1000 + i, minutes=i) for i in range(3)], now=T0)

        self.learner.learn([make_event(messages=1000)], now=T0 + timedelta(hours=1))
        self.learner.learn([], now=T0 + timedelta(hours=2))

        assert self.learner.mode == LearningMode.ADAPTIVE

    def test_empty_pass_leaves_state_untouched(self):
        """Test a pass without events changes nothing."""
        self.learner.learn([make_event(messages=1000)], now=T0)
        before = self.learner.state.adapted_limits.copy()

        self.learner.learn([], now=T0 + timedelta(hours=1))

        assert self.learner.state.adapted_limits == before
        assert self.learner.state.last_updated == T0

    def test_custom_threshold_from_config(self):
        """Test the event threshold is configurable."""
        learner = ThresholdLearner(LearningConfig(adaptive_event_threshold=1))

        learner.learn([make_event(messages=10)], now=T0)

        assert learner.is_adaptive


class TestEffectiveLimits:
    """Test overlay of adapted limits on tier defaults."""

    def setup_method(self):
        self.learner = ThresholdLearner(LearningConfig())
        self.tier = DEFAULT_TIERS["pro"]

    def test_estimates_mode_uses_tier_defaults(self):
        """Test adapted limits are ignored until adaptive mode."""
        self.learner.learn([make_event("pro", messages=300)], now=T0)

        limits = self.learner.effective_limits(self.tier, "pro")

        assert limits == EffectiveLimits.from_tier(self.tier)
        assert not limits.is_adapted

    def test_adaptive_mode_overlays_adapted_fields(self):
        """Test adapted fields replace tier defaults field by field."""
        events = [make_event("pro", messages=300 + i, minutes=i) for i in range(3)]
        self.learner.learn(events, now=T0)

        limits = self.learner.effective_limits(self.tier, "pro")

        assert limits.is_adapted
        assert limits.daily_messages == 270
        assert limits.daily_tokens == self.tier.daily_tokens
        assert limits.concurrent_sessions == self.tier.concurrent_sessions
        assert limits.warning_threshold == self.tier.warning_threshold

    def test_adaptive_mode_without_entry_uses_defaults(self):
        """Test subscriptions without adapted limits keep tier defaults."""
        events = [make_event("max", messages=1000 + i, minutes=i) for i in range(3)]
        self.learner.learn(events, now=T0)

        limits = self.learner.effective_limits(self.tier, "pro")

        assert not limits.is_adapted
        assert limits.daily_messages == self.tier.daily_messages


def test_minimum_message_limit_is_one():
    """Test a throttle at a single message never produces a zero limit."""
    result = ThresholdLearner(LearningConfig()).analyze([make_event(messages=1)])

    assert result.adapted_limits["max"].daily_messages == 1


@pytest.mark.parametrize("factor,expected", [(0.9, 342), (0.5, 190), (1.0, 380)])
def test_adaptation_factor_is_configurable(factor, expected):
    """Test the adaptation factor comes from configuration."""
    learner = ThresholdLearner(LearningConfig(adaptation_factor=factor))

    result = learner.analyze([make_event("pro", messages=380)])

    assert result.adapted_limits["pro"].daily_messages == expected
