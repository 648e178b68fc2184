"""Tests for configuration."""

import json

import pytest

from governor.config import (
    DEFAULT_LEVEL_CUTOFFS,
    DEFAULT_TIERS,
    BudgetConfig,
    GovernorConfig,
    LearningConfig,
    get_tiers,
    load_config,
    set_tiers,
)
from governor.schemas import ModelTier, OptimizationLevel
from governor.validation import ValidationError


class TestDefaults:
    """Test default configuration values."""

    def test_budget_defaults(self):
        """Default limits and thresholds."""
        config = BudgetConfig()

        assert config.hourly_limit == 50_000
        assert config.daily_limit == 500_000
        assert config.weekly_limit == 3_000_000
        assert config.project_limit == 1_000_000
        assert config.session_limit is None
        assert (config.warning_threshold, config.aggressive_threshold) == (0.70, 0.85)
        assert config.alert_cooldown_seconds == 300
        assert config.maintenance_interval_seconds == 60

    def test_learning_defaults(self):
        """Default learning settings."""
        config = LearningConfig()

        assert config.exploration_rate == 0.10
        assert config.min_samples_for_tuning == 20
        assert config.max_selection_history == 1000

    def test_default_tiers(self):
        """Three tiers priced per million tokens."""
        assert [t.tier_id for t in DEFAULT_TIERS] == [
            "claude-3-haiku", "claude-3-5-sonnet", "claude-3-opus",
        ]
        assert [(t.input_rate, t.output_rate) for t in DEFAULT_TIERS] == [
            (0.25, 1.25), (3.00, 15.00), (15.00, 75.00),
        ]

    def test_level_cutoffs(self):
        """Cutoffs loosen as the level rises."""
        assert DEFAULT_LEVEL_CUTOFFS[OptimizationLevel.STANDARD] == (2.0, 7.0)
        assert DEFAULT_LEVEL_CUTOFFS[OptimizationLevel.MODERATE] == (2.5, 7.5)
        assert DEFAULT_LEVEL_CUTOFFS[OptimizationLevel.AGGRESSIVE] == (3.0, 8.0)


class TestConfigValidation:
    """Test that bad configuration is rejected."""

    def test_non_positive_limit(self):
        """Limits must be positive integers."""
        with pytest.raises(ValidationError, match="hourly_limit"):
            BudgetConfig(hourly_limit=0)

    def test_inverted_thresholds(self):
        """The warning threshold cannot exceed the aggressive one."""
        with pytest.raises(ValidationError):
            BudgetConfig(warning_threshold=0.9, aggressive_threshold=0.8)

    def test_exploration_rate_range(self):
        """Exploration is a probability."""
        with pytest.raises(ValidationError):
            LearningConfig(exploration_rate=2.0)

    def test_cutoffs_must_match_tiers(self):
        """Two tiers with three-tier cutoffs are rejected."""
        with pytest.raises(ValidationError):
            GovernorConfig(tiers=list(DEFAULT_TIERS[:2]))


class TestTierOverrides:
    """Test get_tiers / set_tiers and env overrides."""

    def setup_method(self):
        self._saved = get_tiers()

    def teardown_method(self):
        set_tiers(self._saved)

    def test_set_tiers(self):
        """Runtime tiers replace the defaults."""
        tiers = [
            ModelTier("small", "Small", 1, 0.1, 0.2, 5),
            ModelTier("large", "Large", 2, 1.0, 2.0, 10),
        ]
        set_tiers(tiers)

        assert [t.tier_id for t in get_tiers()] == ["small", "large"]

    def test_set_tiers_rejects_empty(self):
        """An empty ladder is refused."""
        with pytest.raises(ValueError):
            set_tiers([])

    def test_env_tiers(self, monkeypatch):
        """GOVERNOR_TIERS_JSON defines tiers cheapest first."""
        monkeypatch.setenv("GOVERNOR_TIERS_JSON", json.dumps({
            "mini": {"input": 0.1, "output": 0.4, "ceiling": 4},
            "maxi": {"input": 5, "output": 15},
        }))

        tiers = get_tiers()

        assert [(t.tier_id, t.rank) for t in tiers] == [("mini", 1), ("maxi", 2)]
        assert tiers[0].complexity_ceiling == 4

    def test_invalid_env_is_ignored(self, monkeypatch):
        """Malformed JSON falls back to the configured tiers."""
        monkeypatch.setenv("GOVERNOR_TIERS_JSON", "{not json")

        assert get_tiers() == self._saved


class TestLoadConfig:
    """Test load_config."""

    def test_defaults_without_env(self, monkeypatch):
        """Without overrides the defaults are used."""
        monkeypatch.delenv("GOVERNOR_CONFIG_JSON", raising=False)
        monkeypatch.delenv("GOVERNOR_TIERS_JSON", raising=False)

        config = load_config()

        assert config.budget == BudgetConfig()
        assert config.learning == LearningConfig()
        assert len(config.tiers) == 3

    def test_env_overrides(self, monkeypatch):
        """Known keys are overridden, unknown keys ignored."""
        monkeypatch.delenv("GOVERNOR_TIERS_JSON", raising=False)
        monkeypatch.setenv("GOVERNOR_CONFIG_JSON", json.dumps({
            "budget": {"hourly_limit": 10_000, "bogus": 1},
            "learning": {"exploration_rate": 0.0},
        }))

        config = load_config()

        assert config.budget.hourly_limit == 10_000
        assert config.budget.daily_limit == 500_000
        assert config.learning.exploration_rate == 0.0

    def test_env_two_tier_setup(self, monkeypatch):
        """Custom tiers come with matching cutoffs."""
        monkeypatch.setenv("GOVERNOR_TIERS_JSON", json.dumps({
            "mini": {"input": 0.1, "output": 0.4},
            "maxi": {"input": 5, "output": 15},
        }))
        monkeypatch.setenv("GOVERNOR_CONFIG_JSON", json.dumps({
            "level_cutoffs": {"standard": [4], "moderate": [5], "aggressive": [6]},
        }))

        config = load_config()

        assert len(config.tiers) == 2
        assert config.level_cutoffs[OptimizationLevel.MODERATE] == (5.0,)

    def test_invalid_override_value(self, monkeypatch):
        """Overrides go through the same validation as code."""
        monkeypatch.delenv("GOVERNOR_TIERS_JSON", raising=False)
        monkeypatch.setenv("GOVERNOR_CONFIG_JSON", json.dumps({"budget": {"hourly_limit": -5}}))

        with pytest.raises(ValidationError):
            load_config()
