"""
Tests for the tier catalog.
"""
import pytest

from claude_usage_guard.core.tiers import DEFAULT_TIERS, Tier, TierCatalog


class TestTierCatalog:
    """Test tier resolution and overrides."""

    def test_resolve_known_tiers(self):
        """Test that each compiled-in tier resolves by name."""
        catalog = TierCatalog()

        assert catalog.resolve("free").daily_messages == 40
        assert catalog.resolve("pro").daily_messages == 400
        assert catalog.resolve("max").daily_messages == 1500

    def test_resolve_is_case_insensitive(self):
        """Test that tier names are matched case-insensitively."""
        assert TierCatalog().resolve(" PRO ").name == "Professional"

    def test_unknown_tier_falls_back_to_max(self):
        """Test that an unknown name resolves to the max tier, not an error."""
        catalog = TierCatalog()

        assert catalog.resolve("ultra") == DEFAULT_TIERS["max"]
        assert catalog.resolve("") == DEFAULT_TIERS["max"]
        assert catalog.resolve(None) == DEFAULT_TIERS["max"]

    def test_membership(self):
        """Test membership checks used to validate subscription changes."""
        catalog = TierCatalog()

        assert "pro" in catalog
        assert "Max" in catalog
        assert "ultra" not in catalog
        assert catalog.names() == ["free", "pro", "max"]

    def test_overrides_replace_single_fields(self):
        """Test that overrides change only the named fields."""
        catalog = TierCatalog({"pro": {"daily_messages": 300, "warning_threshold": 0.75}})

        pro = catalog.resolve("pro")
        assert pro.daily_messages == 300
        assert pro.warning_threshold == 0.75
        assert pro.daily_tokens == DEFAULT_TIERS["pro"].daily_tokens
        assert catalog.resolve("free") == DEFAULT_TIERS["free"]

    def test_override_of_unknown_tier_raises_error(self):
        """Test that overriding a tier that doesn't exist is rejected."""
        with pytest.raises(ValueError, match="Unknown tier in overrides"):
            TierCatalog({"enterprise": {"daily_messages": 10}})

    def test_override_with_invalid_thresholds_raises_error(self):
        """Test that overrides are validated like compiled-in tiers."""
        with pytest.raises(ValueError, match="warning_threshold must be below critical_threshold"):
            TierCatalog({"free": {"warning_threshold": 0.95}})


class TestTierValidation:
    """Test tier invariants."""

    def test_non_positive_limit_raises_error(self):
        """Test that limits must be positive."""
        with pytest.raises(ValueError, match="daily_messages must be > 0"):
            Tier("Broken", 0, 100, 1, 0.8, 0.9)

    def test_threshold_out_of_range_raises_error(self):
        """Test that thresholds must lie in (0, 1]."""
        with pytest.raises(ValueError, match="critical_threshold must be in"):
            Tier("Broken", 10, 100, 1, 0.8, 1.2)
