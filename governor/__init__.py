"""
Governor - Budget-aware model tier routing that learns from outcomes.

Simple usage:
    from governor import Governor, Task

    governor = Governor()
    task = Task("t-1", "Fix the failing login test", "bugfix")

    result = governor.route(task, estimated_input_tokens=4_000)
    if result.admitted:
        print(result.tier.tier_id)                   # "claude-3-5-sonnet"
        print(result.selection.cost_estimate.total_cost)
        governor.record_outcome(result.selection.selection_id, success=True)

Components on their own:
    from governor import BudgetTracker, ComplexityScorer, TierRouter, LearningState

    state = LearningState()
    tracker = BudgetTracker()
    scorer = ComplexityScorer(state)
    router = TierRouter(state)

    if tracker.request_allowance(5_000).allowed:
        selection = router.select(task, scorer.score(task), tracker.current_level())

Snapshots:
    blob = governor.export_snapshot()
    Governor(state=LearningState.from_snapshot(blob))
"""

from governor.budget import (
    AllowanceDecision,
    BudgetMaintenance,
    BudgetTracker,
    DegradeResult,
    UsageRecord,
)
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
from governor.events import (
    BudgetAlert,
    BudgetExceeded,
    EventBus,
    GovernorEvent,
    LevelChanged,
    OutcomeIgnored,
    OutcomeRecorded,
    RequestDegraded,
    SelectionMade,
    TuningApplied,
    UsageRecorded,
    WindowReset,
)
from governor.features import DEFAULT_WEIGHTS, FeatureDetector, KeywordFeatureDetector
from governor.governor import Governor, RoutingResult
from governor.learner import AutoTuner, FeedbackLearner
from governor.router import TierRouter
from governor.schemas import (
    BudgetPeriod,
    BudgetWindow,
    ContextFlags,
    CostEstimate,
    ModelTier,
    OptimizationLevel,
    Selection,
    SelectionRecord,
    Task,
    TuningEvent,
)
from governor.scorer import ComplexityScorer, ScoreBreakdown
from governor.snapshot import SnapshotError
from governor.state import LearningState
from governor.validation import ValidationError


__version__ = "1.0.0"

__all__ = [
    "AllowanceDecision",
    "AutoTuner",
    "BudgetAlert",
    "BudgetConfig",
    "BudgetExceeded",
    "BudgetMaintenance",
    "BudgetPeriod",
    "BudgetTracker",
    "BudgetWindow",
    "ComplexityScorer",
    "ContextFlags",
    "CostEstimate",
    "DEFAULT_LEVEL_CUTOFFS",
    "DEFAULT_TIERS",
    "DEFAULT_WEIGHTS",
    "DegradeResult",
    "EventBus",
    "FeatureDetector",
    "FeedbackLearner",
    "Governor",
    "GovernorConfig",
    "GovernorEvent",
    "KeywordFeatureDetector",
    "LearningConfig",
    "LearningState",
    "LevelChanged",
    "ModelTier",
    "OptimizationLevel",
    "OutcomeIgnored",
    "OutcomeRecorded",
    "RequestDegraded",
    "RoutingResult",
    "ScoreBreakdown",
    "Selection",
    "SelectionMade",
    "SelectionRecord",
    "SnapshotError",
    "Task",
    "TierRouter",
    "TuningApplied",
    "TuningEvent",
    "UsageRecord",
    "UsageRecorded",
    "ValidationError",
    "WindowReset",
    "get_tiers",
    "load_config",
    "set_tiers",
]
