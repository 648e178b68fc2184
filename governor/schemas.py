"""
Data schemas for Governor.

Tasks, tiers, budget windows, selection records and learning outcomes.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional

from governor.validation import ValidationError


class OptimizationLevel(str, Enum):
    """Degradation levels derived from budget utilization."""
    STANDARD = "standard"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"

    @property
    def rank(self) -> int:
        """Position in the Standard < Moderate < Aggressive ordering."""
        return _LEVEL_RANKS[self]


_LEVEL_RANKS = {
    OptimizationLevel.STANDARD: 0,
    OptimizationLevel.MODERATE: 1,
    OptimizationLevel.AGGRESSIVE: 2,
}


class BudgetPeriod(str, Enum):
    """Scopes of budget windows."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    SESSION = "session"
    PROJECT = "project"


# Rolling durations in seconds. Session and project windows never roll over.
PERIOD_SECONDS: dict[BudgetPeriod, int] = {
    BudgetPeriod.HOUR: 3600,
    BudgetPeriod.DAY: 86400,
    BudgetPeriod.WEEK: 604800,
}


@dataclass
class BudgetWindow:
    """
    A time-scoped consumption counter.

    Windows roll over on elapsed time since ``window_start``, not on
    calendar boundaries.
    """
    period: BudgetPeriod
    limit: Optional[int]
    consumed: int = 0
    window_start: float = 0.0
    project_id: Optional[str] = None

    @property
    def key(self) -> str:
        """Name used in decisions, alerts and statistics."""
        if self.period == BudgetPeriod.PROJECT:
            return f"project:{self.project_id}"
        return self.period.value

    @property
    def duration(self) -> Optional[int]:
        return PERIOD_SECONDS.get(self.period)

    @property
    def available(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.consumed)

    @property
    def utilization(self) -> float:
        if not self.limit:
            return 0.0
        return self.consumed / self.limit

    def is_expired(self, now: float) -> bool:
        return self.duration is not None and now - self.window_start >= self.duration

    def reset(self, now: float) -> int:
        """Zero the counter and restart the window. Returns the old count."""
        used = self.consumed
        self.consumed = 0
        self.window_start = now
        return used


@dataclass
class ContextFlags:
    """Hints about how a task's context could be shrunk under budget pressure."""
    can_compress_context: bool = False
    has_cacheable_content: bool = False


@dataclass
class Task:
    """
    A unit of work to be admitted, scored and routed.

    ``characteristics`` holds feature names asserted by the caller; the
    scorer also detects features from ``description`` keywords.
    """
    task_id: str
    description: str
    task_type: str
    characteristics: frozenset[str] = field(default_factory=frozenset)
    complexity_hint: Optional[float] = None
    context_flags: ContextFlags = field(default_factory=ContextFlags)

    def __post_init__(self):
        if isinstance(self.characteristics, (str, bytes)):
            raise ValidationError(
                "characteristics must be a collection of feature names, not a single string"
            )
        if not isinstance(self.characteristics, frozenset):
            self.characteristics = frozenset(self.characteristics or ())


@dataclass(frozen=True)
class ModelTier:
    """
    A service tier.

    Rates are USD per million tokens. ``rank`` runs from 1 (cheapest)
    to K (most capable).
    """
    tier_id: str
    name: str
    rank: int
    input_rate: float
    output_rate: float
    complexity_ceiling: float
    capabilities: tuple[str, ...] = ()


@dataclass(frozen=True)
class CostEstimate:
    """Linear cost estimate for one tier, compared with the top tier."""
    tier_id: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float
    total_cost: float
    top_tier_cost: float
    savings: float
    savings_pct: float


@dataclass(frozen=True)
class Outcome:
    """Execution feedback attached to a selection."""
    success: bool
    corrected_tier: Optional[str] = None
    metrics: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class SelectionRecord:
    """
    Immutable record of one routing decision.

    A copy with ``outcome`` set replaces the original when feedback
    arrives; that happens at most once per selection.
    """
    selection_id: str
    task_id: str
    task_type: str
    tier_id: str
    complexity_score: float
    level: OptimizationLevel
    features: frozenset[str] = frozenset()
    exploratory: bool = False
    confidence: Optional[float] = None
    description: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    outcome: Optional[Outcome] = None


@dataclass
class Selection:
    """
    The routing decision returned to the caller.

    ``selection_id`` is handed back to ``FeedbackLearner.record_outcome``.
    """
    selection_id: str
    task_id: str
    task_type: str
    tier: ModelTier
    complexity_score: float
    level: OptimizationLevel
    confidence: float
    rationale: str
    cost_estimate: CostEstimate
    fallback_tier: ModelTier
    exploratory: bool = False
    rule_tier_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def tier_id(self) -> str:
        return self.tier.tier_id


@dataclass(frozen=True)
class Correction:
    """A selection that should have gone to a different tier."""
    task_type: str
    selected_tier: str
    corrected_tier: str
    complexity_score: float
    adjustment: int


@dataclass
class TuningEvent:
    """One auto-tuning pass over the feature weights."""
    timestamp: datetime
    samples_analyzed: int
    adjustment_count: int
    changes: dict[str, tuple[int, int]] = field(default_factory=dict)
