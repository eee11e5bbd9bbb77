"""
Subscription tiers and their resource limits.

Defaults are initial community estimates; they are refined at runtime
from throttle events by the threshold learner.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Iterator, Mapping, Optional

DEFAULT_TIER = "max"


@dataclass(frozen=True)
class Tier:
    """Resource limits for one subscription plan."""
    name: str
    daily_messages: int
    daily_tokens: int
    concurrent_sessions: int
    warning_threshold: float
    critical_threshold: float

    def __post_init__(self):
        """Validate limits and threshold ordering."""
        if self.daily_messages <= 0:
            raise ValueError("daily_messages must be > 0")
        if self.daily_tokens <= 0:
            raise ValueError("daily_tokens must be > 0")
        if self.concurrent_sessions <= 0:
            raise ValueError("concurrent_sessions must be > 0")
        if not 0 < self.warning_threshold <= 1:
            raise ValueError("warning_threshold must be in (0, 1]")
        if not 0 < self.critical_threshold <= 1:
            raise ValueError("critical_threshold must be in (0, 1]")
        if self.warning_threshold >= self.critical_threshold:
            raise ValueError("warning_threshold must be below critical_threshold")


# Community observations: free 30-50 msgs/day, pro 300-500, max 1000-2000
DEFAULT_TIERS: Dict[str, Tier] = {
    "free": Tier(
        name="Free",
        daily_messages=40,
        daily_tokens=150_000,
        concurrent_sessions=1,
        warning_threshold=0.8,
        critical_threshold=0.9,
    ),
    "pro": Tier(
        name="Professional",
        daily_messages=400,
        daily_tokens=2_000_000,
        concurrent_sessions=4,
        warning_threshold=0.8,
        critical_threshold=0.9,
    ),
    "max": Tier(
        name="Max",
        daily_messages=1500,
        daily_tokens=10_000_000,
        concurrent_sessions=7,
        warning_threshold=0.7,  # Earlier warning for heavy users
        critical_threshold=0.85,
    ),
}


class TierCatalog:
    """Named tiers, with unknown names resolving to the default tier."""

    def __init__(self, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None):
        """Build the catalog from the compiled-in tiers.

        Args:
            overrides: Per-tier field overrides, e.g. ``{"pro": {"daily_messages": 300}}``

        Raises:
            ValueError: If an override names an unknown tier or field, or
                produces an invalid tier
        """
        self._tiers = dict(DEFAULT_TIERS)
        for key, values in (overrides or {}).items():
            key = key.lower()
            if key not in self._tiers:
                raise ValueError(f"Unknown tier in overrides: {key}")
            allowed = {f.name for f in fields(Tier)}
            unknown = set(values) - allowed
            if unknown:
                raise ValueError(f"Unknown keys in tiers.{key}: {unknown}")
            self._tiers[key] = replace(self._tiers[key], **dict(values))

    def resolve(self, subscription: Optional[str]) -> Tier:
        """Get the tier for a subscription name.

        Unknown or empty names resolve to the ``max`` tier rather than failing.
        """
        key = (subscription or "").strip().lower()
        return self._tiers.get(key, self._tiers[DEFAULT_TIER])

    def names(self):
        return list(self._tiers)

    def __contains__(self, subscription: object) -> bool:
        return isinstance(subscription, str) and subscription.strip().lower() in self._tiers

    def __iter__(self) -> Iterator[str]:
        return iter(self._tiers)
