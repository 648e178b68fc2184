"""Global configuration for Governor."""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

from governor.schemas import ModelTier, OptimizationLevel
from governor.validation import (
    ValidationError,
    validate_cutoffs,
    validate_probability,
    validate_tiers,
)


DEFAULT_TIERS: List[ModelTier] = [
    ModelTier(
        tier_id="claude-3-haiku",
        name="Claude 3 Haiku",
        rank=1,
        input_rate=0.25,
        output_rate=1.25,
        complexity_ceiling=2,
        capabilities=("routing", "formatting", "simple_queries", "status", "matching"),
    ),
    ModelTier(
        tier_id="claude-3-5-sonnet",
        name="Claude 3.5 Sonnet",
        rank=2,
        input_rate=3.00,
        output_rate=15.00,
        complexity_ceiling=7,
        capabilities=("code_gen", "debug", "review", "implementation", "testing", "refactoring"),
    ),
    ModelTier(
        tier_id="claude-3-opus",
        name="Claude 3 Opus",
        rank=3,
        input_rate=15.00,
        output_rate=75.00,
        complexity_ceiling=10,
        capabilities=("architecture", "security", "complex_reasoning", "critical_decisions"),
    ),
]

# Upper (inclusive) score bound of every tier but the top one, per level.
DEFAULT_LEVEL_CUTOFFS: Dict[OptimizationLevel, tuple[float, ...]] = {
    OptimizationLevel.STANDARD: (2.0, 7.0),
    OptimizationLevel.MODERATE: (2.5, 7.5),
    OptimizationLevel.AGGRESSIVE: (3.0, 8.0),
}


@dataclass
class BudgetConfig:
    """Budget limits and alerting for the BudgetTracker."""
    hourly_limit: int = 50_000
    daily_limit: int = 500_000
    weekly_limit: int = 3_000_000
    project_limit: int = 1_000_000
    session_limit: Optional[int] = None  # tracked, never gates admission
    warning_threshold: float = 0.70
    aggressive_threshold: float = 0.85
    alert_cooldown_seconds: float = 300.0
    maintenance_interval_seconds: float = 60.0
    context_trim_fraction: float = 0.10
    usage_history_size: int = 1000

    def __post_init__(self):
        for name in ("hourly_limit", "daily_limit", "weekly_limit", "project_limit"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError(f"{name} must be a positive integer, got {value!r}")
        validate_probability(self.warning_threshold, "warning_threshold")
        validate_probability(self.aggressive_threshold, "aggressive_threshold")
        if self.warning_threshold > self.aggressive_threshold:
            raise ValidationError(
                "warning_threshold must not exceed aggressive_threshold "
                f"({self.warning_threshold} > {self.aggressive_threshold})"
            )
        if self.maintenance_interval_seconds <= 0:
            raise ValidationError("maintenance_interval_seconds must be positive")
        size = self.usage_history_size
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValidationError(f"usage_history_size must be a non-negative integer, got {size!r}")


@dataclass
class LearningConfig:
    """Feedback learning, exploration and auto-tuning settings."""
    learning_enabled: bool = True
    auto_tuning_enabled: bool = True
    exploration_rate: float = 0.10
    tuning_interval: int = 50
    min_samples_for_tuning: int = 20
    min_samples_per_type: int = 10
    min_accuracy_samples: int = 10
    max_selection_history: int = 1000
    conservative_mode: bool = False

    def __post_init__(self):
        validate_probability(self.exploration_rate, "exploration_rate")
        for name in ("tuning_interval", "max_selection_history"):
            if getattr(self, name) < 1:
                raise ValidationError(f"{name} must be at least 1")


@dataclass
class GovernorConfig:
    """Everything needed to build a Governor."""
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    tiers: List[ModelTier] = field(default_factory=lambda: list(DEFAULT_TIERS))
    level_cutoffs: Dict[OptimizationLevel, tuple[float, ...]] = field(
        default_factory=lambda: dict(DEFAULT_LEVEL_CUTOFFS)
    )

    def __post_init__(self):
        validate_tiers(self.tiers)
        for level in OptimizationLevel:
            if level not in self.level_cutoffs:
                raise ValidationError(f"missing cutoffs for level '{level.value}'")
            validate_cutoffs(self.level_cutoffs[level], len(self.tiers), level.value)


_tiers: List[ModelTier] = copy.deepcopy(DEFAULT_TIERS)


def _parse_json_env(var_name: str) -> Dict[str, Any] | None:
    value = os.getenv(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def _apply_overrides(target: Any, overrides: Dict[str, Any]) -> Any:
    known = {f.name for f in fields(target)}
    updates = {k: v for k, v in overrides.items() if k in known}
    return replace(target, **updates)


def _tier_from_dict(tier_id: str, rank: int, data: Dict[str, Any]) -> ModelTier:
    if "input" not in data or "output" not in data:
        raise ValueError(f"tier {tier_id} must include 'input' and 'output' rates")
    return ModelTier(
        tier_id=tier_id,
        name=data.get("name", tier_id),
        rank=rank,
        input_rate=float(data["input"]),
        output_rate=float(data["output"]),
        complexity_ceiling=float(data.get("ceiling", 10)),
        capabilities=tuple(data.get("capabilities", ())),
    )


def get_tiers() -> List[ModelTier]:
    """
    Return the tier ladder, with optional env override.

    GOVERNOR_TIERS_JSON maps tier ids, cheapest first, to
    {"input": rate, "output": rate, "ceiling": score}.
    """
    parsed = _parse_json_env("GOVERNOR_TIERS_JSON")
    if parsed:
        return [
            _tier_from_dict(tier_id, rank, data)
            for rank, (tier_id, data) in enumerate(parsed.items(), start=1)
        ]
    return list(_tiers)


def set_tiers(tiers: List[ModelTier]) -> None:
    """Set the tier ladder at runtime."""
    if not isinstance(tiers, list) or not tiers:
        raise ValueError("tiers must be a non-empty list")
    validate_tiers(tiers)
    global _tiers
    _tiers = copy.deepcopy(tiers)


def load_config() -> GovernorConfig:
    """
    Build a GovernorConfig from defaults plus GOVERNOR_CONFIG_JSON.

    The override looks like {"budget": {...}, "learning": {...}}; unknown
    keys are ignored and invalid JSON falls back to defaults.
    """
    budget = BudgetConfig()
    learning = LearningConfig()
    cutoffs = dict(DEFAULT_LEVEL_CUTOFFS)

    parsed = _parse_json_env("GOVERNOR_CONFIG_JSON")
    if parsed:
        if isinstance(parsed.get("budget"), dict):
            budget = _apply_overrides(budget, parsed["budget"])
        if isinstance(parsed.get("learning"), dict):
            learning = _apply_overrides(learning, parsed["learning"])
        if isinstance(parsed.get("level_cutoffs"), dict):
            for level_name, values in parsed["level_cutoffs"].items():
                cutoffs[OptimizationLevel(level_name)] = tuple(float(v) for v in values)

    return GovernorConfig(
        budget=budget,
        learning=learning,
        tiers=get_tiers(),
        level_cutoffs=cutoffs,
    )
