"""
Tier router for Governor.

Maps a complexity score and the current optimization level to a tier,
with a confidence estimate, a cost estimate and a fallback tier.
"""

from typing import Iterable, Mapping, Optional, Sequence, Union
import logging
import random
import uuid

from governor.config import DEFAULT_LEVEL_CUTOFFS, DEFAULT_TIERS
from governor.events import EventBus, SelectionMade
from governor.features import FeatureDetector, KeywordFeatureDetector
from governor.schemas import (
    CostEstimate,
    ModelTier,
    OptimizationLevel,
    Selection,
    SelectionRecord,
    Task,
)
from governor.scorer import MAX_SCORE, MIN_SCORE, clamp_score
from governor.state import LearningState
from governor.validation import (
    ValidationError,
    validate_cutoffs,
    validate_probability,
    validate_task,
    validate_tiers,
)


logger = logging.getLogger("governor.router")

TOKENS_PER_MILLION = 1_000_000
DEFAULT_INPUT_TOKENS = 5000
DEFAULT_OUTPUT_RATIO = 0.3

# Exploration only moves away from the rule tier at the score extremes.
EXPLORE_UP_BELOW = 3.0
EXPLORE_DOWN_ABOVE = 7.0

BASE_CONFIDENCE = 0.5
DISTANCE_PENALTY = 0.2
HISTORY_BONUS = 0.1
ACCURACY_BONUS = 0.3

TierRef = Union[ModelTier, str]


class TierRouter:
    """
    Routes scored tasks to tiers.

    The routing algorithm:
    1. Look up the level's cutoffs; the first tier whose (inclusive)
       upper bound holds the score wins, else the top tier
    2. With probability ``exploration_rate``, move one rank up (score < 3)
       or down (score > 7) to gather comparative outcomes
    3. Record an immutable SelectionRecord and hand back its id
    """

    def __init__(
        self,
        state: Optional[LearningState] = None,
        tiers: Optional[Sequence[ModelTier]] = None,
        level_cutoffs: Optional[Mapping[OptimizationLevel, Sequence[float]]] = None,
        exploration_rate: float = 0.10,
        conservative_mode: bool = False,
        min_accuracy_samples: int = 10,
        rng: Optional[random.Random] = None,
        events: Optional[EventBus] = None,
        detector: Optional[FeatureDetector] = None,
    ):
        self.state = state or LearningState()
        self.tiers: list[ModelTier] = sorted(tiers or DEFAULT_TIERS, key=lambda t: t.rank)
        validate_tiers(self.tiers)

        cutoffs = level_cutoffs or DEFAULT_LEVEL_CUTOFFS
        self.level_cutoffs: dict[OptimizationLevel, tuple[float, ...]] = {}
        for level in OptimizationLevel:
            if level not in cutoffs:
                raise ValidationError(f"missing cutoffs for level '{level.value}'")
            validate_cutoffs(cutoffs[level], len(self.tiers), level.value)
            self.level_cutoffs[level] = tuple(cutoffs[level])

        validate_probability(exploration_rate, "exploration_rate")
        self.exploration_rate = exploration_rate
        self.conservative_mode = conservative_mode
        self.min_accuracy_samples = min_accuracy_samples
        self._rng = rng or random.Random()
        self.events = events or EventBus(enable_logging=False)
        self.detector = detector or KeywordFeatureDetector()
        self._by_id = {tier.tier_id: tier for tier in self.tiers}

    @property
    def top_tier(self) -> ModelTier:
        return self.tiers[-1]

    def resolve_tier(self, tier: TierRef) -> ModelTier:
        """Accept a ModelTier or a tier id and return the configured tier."""
        tier_id = tier.tier_id if isinstance(tier, ModelTier) else tier
        if tier_id not in self._by_id:
            raise ValidationError(f"unknown tier '{tier_id}'")
        return self._by_id[tier_id]

    # =========================================================================
    # Selection
    # =========================================================================

    def _cutoffs(self, level: OptimizationLevel) -> tuple[float, ...]:
        cutoffs = self.level_cutoffs[level]
        if self.conservative_mode and level == OptimizationLevel.STANDARD:
            return tuple(c + 1 for c in cutoffs)
        return cutoffs

    def rule_tier(self, score: float, level: OptimizationLevel) -> ModelTier:
        """The tier the threshold table implies, with no exploration."""
        score = clamp_score(score)
        for tier, upper in zip(self.tiers, self._cutoffs(level)):
            if score <= upper:
                return tier
        return self.top_tier

    def _explore(self, score: float, rule_tier: ModelTier) -> Optional[ModelTier]:
        if self.exploration_rate <= 0 or self._rng.random() >= self.exploration_rate:
            return None

        index = rule_tier.rank - 1
        if score < EXPLORE_UP_BELOW and index + 1 < len(self.tiers):
            return self.tiers[index + 1]
        if score > EXPLORE_DOWN_ABOVE and index > 0:
            return self.tiers[index - 1]
        return None

    def select(
        self,
        task: Task,
        score: float,
        level: OptimizationLevel,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        features: Optional[Iterable[str]] = None,
    ) -> Selection:
        """
        Route a scored task.

        Args:
            task: The task being routed.
            score: Its complexity score.
            level: Current optimization level from the BudgetTracker.
            input_tokens: Estimated input tokens for the cost estimate.
            output_tokens: Estimated output tokens (default 30% of input).
            features: Features the scorer detected, kept for auto-tuning.

        Returns:
            Selection with tier, confidence, cost estimate and selection_id.
        """
        validate_task(task)
        score = clamp_score(score)
        rule_tier = self.rule_tier(score, level)
        explored = self._explore(score, rule_tier)
        tier = explored or rule_tier

        if features is None:
            features = self.detector.detect(task, self.state.get_weights().keys())

        if input_tokens is None:
            input_tokens = DEFAULT_INPUT_TOKENS
        if output_tokens is None:
            output_tokens = int(input_tokens * DEFAULT_OUTPUT_RATIO)

        selection_id = f"sel_{uuid.uuid4().hex[:16]}"
        confidence = self.confidence(task, tier, score)
        record = SelectionRecord(
            selection_id=selection_id,
            task_id=task.task_id,
            task_type=task.task_type,
            tier_id=tier.tier_id,
            complexity_score=score,
            level=level,
            features=frozenset(features),
            exploratory=explored is not None,
            confidence=confidence,
            description=task.description,
        )
        self.state.add_selection(record)

        selection = Selection(
            selection_id=selection_id,
            task_id=task.task_id,
            task_type=task.task_type,
            tier=tier,
            complexity_score=score,
            level=level,
            confidence=confidence,
            rationale=self.explain(score, tier, level, exploratory=explored is not None),
            cost_estimate=self.estimate_cost(input_tokens, output_tokens, tier),
            fallback_tier=self.fallback(tier),
            exploratory=explored is not None,
            rule_tier_id=rule_tier.tier_id,
            timestamp=record.timestamp,
        )

        logger.debug(
            "Selected %s for %s (score %.1f, level %s%s)",
            tier.tier_id, task.task_id, score, level.value,
            ", exploratory" if selection.exploratory else "",
        )
        self.events.publish(SelectionMade(
            selection_id=selection_id,
            task_type=task.task_type,
            tier_id=tier.tier_id,
            complexity_score=score,
            level=level.value,
            confidence=selection.confidence,
            exploratory=selection.exploratory,
        ))
        return selection

    # =========================================================================
    # Confidence
    # =========================================================================

    def tier_center(self, tier: TierRef) -> float:
        """Midpoint of the tier's score range under the standard cutoffs."""
        tier = self.resolve_tier(tier)
        bounds = (MIN_SCORE, *self.level_cutoffs[OptimizationLevel.STANDARD], MAX_SCORE)
        index = tier.rank - 1
        return (bounds[index] + bounds[index + 1]) / 2

    def confidence(self, task: Task, tier: TierRef, score: float) -> float:
        """
        Estimate how likely the routing is right, in [0, 1].

        Starts at 0.5, loses up to 0.2 for distance from the tier's centre,
        gains 0.1 when the type has history, up to 0.3 from the tier's
        accuracy (after enough samples) and 0.1/0.2 for >20/>50 outcomes
        of this type.
        """
        tier = self.resolve_tier(tier)
        confidence = BASE_CONFIDENCE

        distance = abs(clamp_score(score) - self.tier_center(tier))
        confidence -= (distance / MAX_SCORE) * DISTANCE_PENALTY

        with self.state.lock:
            has_history = self.state.get_historical(task.task_type) is not None
            accuracy = self.state.get_tier_accuracy(tier.tier_id)
            samples = self.state.task_type_samples(task.task_type)

        if has_history:
            confidence += HISTORY_BONUS

        if accuracy.total >= self.min_accuracy_samples:
            confidence += ACCURACY_BONUS * accuracy.rate

        if samples > 50:
            confidence += 0.2
        elif samples > 20:
            confidence += 0.1

        return max(0.0, min(1.0, confidence))

    # =========================================================================
    # Cost and fallback
    # =========================================================================

    def estimate_cost(
        self,
        input_tokens: int,
        output_tokens: int,
        tier: TierRef,
    ) -> CostEstimate:
        """Linear cost for ``tier``, and savings versus the top tier."""
        tier = self.resolve_tier(tier)

        def cost_for(t: ModelTier) -> tuple[float, float]:
            return (
                input_tokens / TOKENS_PER_MILLION * t.input_rate,
                output_tokens / TOKENS_PER_MILLION * t.output_rate,
            )

        input_cost, output_cost = cost_for(tier)
        total = input_cost + output_cost
        top_input, top_output = cost_for(self.top_tier)
        top_total = top_input + top_output
        savings = top_total - total

        return CostEstimate(
            tier_id=tier.tier_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=input_cost,
            output_cost=output_cost,
            total_cost=total,
            top_tier_cost=top_total,
            savings=savings,
            savings_pct=(savings / top_total) * 100 if top_total > 0 else 0.0,
        )

    def fallback(self, tier: TierRef) -> ModelTier:
        """Escalate exactly one rank; the top tier falls back to itself."""
        tier = self.resolve_tier(tier)
        return self.tiers[min(tier.rank, len(self.tiers) - 1)]

    def explain(
        self,
        score: float,
        tier: ModelTier,
        level: OptimizationLevel,
        exploratory: bool = False,
    ) -> str:
        """Human-readable reason for a selection."""
        reasons = [f"Complexity score: {score:.1f}/10"]

        if exploratory:
            reasons.append(f"Exploratory selection: testing {tier.name} for learning")
        elif tier.rank == 1:
            reasons.append(f"Task is simple enough for {tier.name} (cheapest tier)")
        elif tier.rank == len(self.tiers):
            reasons.append(f"Task complexity requires {tier.name} for best results")
        else:
            reasons.append(f"Task needs {tier.name} for quality at moderate cost")

        if level == OptimizationLevel.AGGRESSIVE:
            reasons.append("Budget constraints: using most cost-effective option")
        elif level == OptimizationLevel.MODERATE:
            reasons.append("Budget awareness: balancing cost and quality")

        return ". ".join(reasons)
