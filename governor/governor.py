"""
Governor facade.

Wires the budget tracker, scorer, router and learner around one shared
learning state and one event bus, and runs the per-task control loop:
admit, score, route, and later learn from the outcome.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union
import logging
import random
import time

from governor.budget import AllowanceDecision, BudgetTracker, DegradeResult
from governor.config import GovernorConfig
from governor.events import EventBus
from governor.features import FeatureDetector
from governor.learner import AutoTuner, FeedbackLearner
from governor.router import DEFAULT_OUTPUT_RATIO, TierRouter
from governor.schemas import ModelTier, OptimizationLevel, Selection, Task
from governor.scorer import ComplexityScorer
from governor.state import LearningState
from governor.validation import validate_amount, validate_task


logger = logging.getLogger("governor")


@dataclass
class RoutingResult:
    """What happened to one task on its way through the governor."""
    admitted: bool
    decision: AllowanceDecision
    degraded: Optional[DegradeResult] = None
    selection: Optional[Selection] = None

    @property
    def tier(self) -> Optional[ModelTier]:
        return self.selection.tier if self.selection else None


class Governor:
    """
    Budget-aware model tier governor.

    Example:
        ```python
        governor = Governor()

        result = governor.route(task, estimated_input_tokens=4_000)
        if result.admitted:
            run(task, result.tier)
            governor.record_outcome(result.selection.selection_id, success=True)
        ```
    """

    def __init__(
        self,
        config: Optional[GovernorConfig] = None,
        state: Optional[LearningState] = None,
        events: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        detector: Optional[FeatureDetector] = None,
    ):
        self.config = config or GovernorConfig()
        learning = self.config.learning
        self.events = events or EventBus()
        self.state = state or LearningState(max_selection_history=learning.max_selection_history)

        self.budget = BudgetTracker(
            self.config.budget,
            events=self.events,
            clock=clock,
            tier_count=len(self.config.tiers),
        )
        self.scorer = ComplexityScorer(self.state, detector=detector)
        self.router = TierRouter(
            self.state,
            tiers=self.config.tiers,
            level_cutoffs=self.config.level_cutoffs,
            exploration_rate=learning.exploration_rate,
            conservative_mode=learning.conservative_mode,
            min_accuracy_samples=learning.min_accuracy_samples,
            rng=rng,
            events=self.events,
            detector=self.scorer.detector,
        )
        self.tuner = AutoTuner(self.state, learning, self.events)
        self.learner = FeedbackLearner(
            self.state,
            tiers=self.config.tiers,
            config=learning,
            events=self.events,
            tuner=self.tuner,
        )

    # =========================================================================
    # Control loop
    # =========================================================================

    def route(
        self,
        task: Task,
        estimated_input_tokens: int,
        estimated_output_tokens: Optional[int] = None,
        project_id: Optional[str] = None,
        assumed_tier: Optional[Union[ModelTier, str]] = None,
    ) -> RoutingResult:
        """
        Admit, score and route one task.

        A rejected request is degraded once and resubmitted; if it still
        does not fit, the result is not admitted and nothing is routed.

        Args:
            task: The task to route.
            estimated_input_tokens: Expected input size.
            estimated_output_tokens: Expected output size (default 30% of input).
            project_id: Optional project budget scope.
            assumed_tier: Tier the caller expects to use, which lets
                degradation consider a downgrade.

        Raises:
            ValidationError: If the task or token estimates are malformed.
        """
        validate_task(task)
        validate_amount(estimated_input_tokens, "estimated_input_tokens")
        if estimated_output_tokens is None:
            estimated_output_tokens = int(estimated_input_tokens * DEFAULT_OUTPUT_RATIO)
        validate_amount(estimated_output_tokens, "estimated_output_tokens")
        if assumed_tier is not None:
            assumed_tier = self.router.resolve_tier(assumed_tier)

        requested = estimated_input_tokens + estimated_output_tokens
        usage_context = {"task": task.task_id, "task_type": task.task_type, "optimized": False}
        decision = self.budget.request_allowance(requested, project_id, context=usage_context)
        degraded = None

        if not decision.allowed:
            degraded = self.budget.degrade(requested, task.context_flags, assumed_tier)
            if degraded.reduction <= 0:
                return RoutingResult(admitted=False, decision=decision, degraded=degraded)

            logger.info(
                "Resubmitting %s with %d tokens (was %d)",
                task.task_id, degraded.amount, requested,
            )
            decision = self.budget.request_allowance(
                degraded.amount,
                project_id,
                context={**usage_context, "optimized": True, "strategies": list(degraded.strategies)},
            )
            if not decision.allowed:
                return RoutingResult(admitted=False, decision=decision, degraded=degraded)

            ratio = degraded.amount / requested
            estimated_input_tokens = int(estimated_input_tokens * ratio)
            estimated_output_tokens = int(estimated_output_tokens * ratio)

        breakdown = self.scorer.analyze(task)
        selection = self.router.select(
            task,
            breakdown.score,
            self.budget.current_level(),
            input_tokens=estimated_input_tokens,
            output_tokens=estimated_output_tokens,
            features=breakdown.features,
        )
        return RoutingResult(
            admitted=True,
            decision=decision,
            degraded=degraded,
            selection=selection,
        )

    def record_outcome(
        self,
        selection_id: str,
        success: bool,
        corrected_tier: Optional[Union[ModelTier, str]] = None,
        metrics: Optional[dict[str, Any]] = None,
    ) -> bool:
        return self.learner.record_outcome(selection_id, success, corrected_tier, metrics)

    def record_consumption(
        self,
        amount: int,
        project_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.budget.record_consumption(amount, project_id, context)

    def current_level(self) -> OptimizationLevel:
        return self.budget.current_level()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> "Governor":
        """Start background window maintenance."""
        self.budget.start_maintenance()
        return self

    def stop(self) -> None:
        """Stop background window maintenance. Safe to call repeatedly."""
        self.budget.stop_maintenance()

    def __enter__(self) -> "Governor":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()

    # =========================================================================
    # Snapshot and statistics
    # =========================================================================

    def export_snapshot(self) -> bytes:
        return self.state.export_snapshot()

    def restore_snapshot(self, blob: Union[bytes, str]) -> None:
        self.state.restore_snapshot(blob)

    def get_statistics(self) -> dict[str, Any]:
        return {
            "budget": self.budget.get_statistics(),
            "learning": self.learner.get_statistics(),
            "insights": self.tuner.get_pattern_insights(),
            "events": self.events.get_stats(),
        }
