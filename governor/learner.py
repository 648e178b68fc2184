"""
Feedback learner and auto-tuner for Governor.

Turns execution outcomes into corrected per-type complexity, tier
accuracy and, every few dozen outcomes, adjusted feature weights.
"""

from collections import Counter
from dataclasses import replace
from datetime import datetime, UTC
from typing import Any, Optional, Sequence, Union
import logging
import math

from governor.config import DEFAULT_TIERS, LearningConfig
from governor.events import EventBus, OutcomeIgnored, OutcomeRecorded, TuningApplied
from governor.schemas import Correction, ModelTier, Outcome, TuningEvent
from governor.state import (
    LearningState,
    TaskTypeStats,
    TierAccuracy,
    TierPerformance,
)
from governor.validation import QUALITY_SCORES, ValidationError, validate_metrics


logger = logging.getLogger("governor.learner")

UNDER_PROVISIONED_RATE = 0.7
OVER_PROVISIONED_RATE = 0.95
UNDER_PROVISIONED_FACTOR = 1.1
OVER_PROVISIONED_FACTOR = 0.95
COMMON_FEATURE_SHARE = 0.5
INSIGHT_MIN_SAMPLES = 5
CONFIDENCE_WINDOW = 100


def _scale_weight(weight: int, factor: float) -> int:
    """Scale a signed weight, rounding half away from zero, keeping |w| >= 1."""
    if weight == 0:
        return 0
    magnitude = max(1, math.floor(abs(weight) * factor + 0.5))
    return magnitude if weight > 0 else -magnitude


class AutoTuner:
    """
    Adjusts feature weights from per-type success rates.

    For every task type with enough samples:
    - success rate < 0.7: features seen in more than half of its samples
      are under-weighted, scale them by 1.1
    - success rate > 0.95: the same features are over-weighted, scale by 0.95

    Factors from different types compound. The whole pass is applied
    under the state lock, so scorers see either the old or the new table.
    """

    def __init__(
        self,
        state: LearningState,
        config: Optional[LearningConfig] = None,
        events: Optional[EventBus] = None,
    ):
        self.state = state
        self.config = config or LearningConfig()
        self.events = events or EventBus(enable_logging=False)

    def should_tune(self) -> bool:
        if not self.config.auto_tuning_enabled:
            return False
        with self.state.lock:
            return (
                self.state.outcomes_since_tuning >= self.config.tuning_interval
                and self.state.outcomes_recorded >= self.config.min_samples_for_tuning
            )

    def _factors(self) -> dict[str, float]:
        factors: dict[str, float] = {}
        for stats in self.state.task_types.values():
            if stats.total < self.config.min_samples_per_type:
                continue

            if stats.success_rate < UNDER_PROVISIONED_RATE:
                factor = UNDER_PROVISIONED_FACTOR
            elif stats.success_rate > OVER_PROVISIONED_RATE:
                factor = OVER_PROVISIONED_FACTOR
            else:
                continue

            for feature, count in stats.characteristic_counts.items():
                if count / stats.total > COMMON_FEATURE_SHARE:
                    factors[feature] = factors.get(feature, 1.0) * factor
        return factors

    def tune(self) -> TuningEvent:
        """
        Run one tuning pass.

        Returns:
            TuningEvent with the number of qualifying features and the
            (old, new) weight of every feature whose weight changed.
        """
        with self.state.lock:
            factors = self._factors()
            changes: dict[str, tuple[int, int]] = {}

            for feature, factor in factors.items():
                if feature not in self.state.weights:
                    continue
                old = self.state.weights[feature]
                new = _scale_weight(old, factor)
                if new != old:
                    self.state.weights[feature] = new
                    self.state.weight_adjustments[feature] = (
                        self.state.weight_adjustments.get(feature, 1.0) * factor
                    )
                    changes[feature] = (old, new)

            event = TuningEvent(
                timestamp=datetime.now(UTC),
                samples_analyzed=self.state.outcomes_recorded,
                adjustment_count=len(factors),
                changes=changes,
            )
            self.state.tuning_history.append(event)
            self.state.outcomes_since_tuning = 0

        for feature, (old, new) in changes.items():
            logger.info("Adjusted weight %s: %d -> %d", feature, old, new)

        self.events.publish(TuningApplied(
            samples_analyzed=event.samples_analyzed,
            adjustment_count=event.adjustment_count,
            changes=dict(changes),
        ))
        return event

    def get_pattern_insights(self) -> dict[str, Any]:
        """Per-type outcome patterns, tier recommendations and feature weight impact."""
        with self.state.lock:
            task_patterns = {}
            recommendations = {}
            for task_type, stats in self.state.task_types.items():
                if stats.total < INSIGHT_MIN_SAMPLES:
                    continue
                distribution = Counter(stats.tier_distribution)
                task_patterns[task_type] = {
                    "success_rate": stats.success_rate,
                    "avg_complexity": round(stats.avg_complexity, 1),
                    "most_used_tier": distribution.most_common(1)[0][0] if distribution else None,
                    "sample_size": stats.total,
                }
                if stats.total >= self.config.min_samples_per_type and distribution:
                    recommendations[task_type] = {
                        "recommended_tier": distribution.most_common(1)[0][0],
                        "success_rate": stats.success_rate,
                        "avg_response_time": (
                            stats.avg_response_time if stats.response_samples else None
                        ),
                        "avg_quality": stats.avg_quality if stats.quality_samples else None,
                    }

            feature_impacts = {}
            for feature, weight in self.state.weights.items():
                if abs(weight) > 3:
                    impact = "high"
                elif abs(weight) > 1:
                    impact = "medium"
                else:
                    impact = "low"
                feature_impacts[feature] = {
                    "current_weight": weight,
                    "adjustment": self.state.weight_adjustments.get(feature, 1.0),
                    "impact": impact,
                }

            return {
                "task_patterns": task_patterns,
                "tier_recommendations": recommendations,
                "feature_impacts": feature_impacts,
                "tuning_runs": len(self.state.tuning_history),
            }


class FeedbackLearner:
    """
    Applies outcome feedback to shared learning state.

    Each selection accepts feedback once. Repeated or unknown ids are
    reported through ``OutcomeIgnored`` and leave statistics untouched.
    """

    def __init__(
        self,
        state: LearningState,
        tiers: Optional[Sequence[ModelTier]] = None,
        config: Optional[LearningConfig] = None,
        events: Optional[EventBus] = None,
        tuner: Optional[AutoTuner] = None,
    ):
        self.state = state
        self.tiers = sorted(tiers or DEFAULT_TIERS, key=lambda t: t.rank)
        self.config = config or LearningConfig()
        self.events = events or EventBus(enable_logging=False)
        self.tuner = tuner or AutoTuner(state, self.config, self.events)
        self._by_id = {tier.tier_id: tier for tier in self.tiers}

    def _ignore(self, selection_id: str, reason: str) -> bool:
        logger.warning("Ignoring outcome for %s: %s", selection_id, reason)
        self.events.publish(OutcomeIgnored(selection_id=selection_id, reason=reason))
        return False

    def record_outcome(
        self,
        selection_id: str,
        success: bool,
        corrected_tier: Optional[Union[ModelTier, str]] = None,
        metrics: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Record how a routed task went.

        Args:
            selection_id: Id returned by TierRouter.select.
            success: Whether the work succeeded at the chosen tier.
            corrected_tier: Tier (or tier id) that should have been used.
            metrics: Optional measurements; ``response_time`` (seconds)
                and ``quality`` (high, medium or low) feed the running means.

        Returns:
            True if the outcome was applied, False if it was ignored.

        Raises:
            ValidationError: If corrected_tier is not a configured tier or
                metrics are malformed.
        """
        corrected: Optional[ModelTier] = None
        if corrected_tier is not None:
            tier_id = corrected_tier.tier_id if isinstance(corrected_tier, ModelTier) else corrected_tier
            if tier_id not in self._by_id:
                raise ValidationError(f"unknown corrected tier '{tier_id}'")
            corrected = self._by_id[tier_id]

        if not self.config.learning_enabled:
            logger.debug("Learning disabled, outcome for %s not applied", selection_id)
            return False

        validate_metrics(metrics)
        metrics = dict(metrics or {})
        response_time = metrics.get("response_time")
        quality = metrics.get("quality")

        with self.state.lock:
            record = self.state.get_selection(selection_id)
            if record is None:
                reason = "unknown selection"
            elif record.outcome is not None:
                reason = "outcome already recorded"
            else:
                reason = None

            if reason is None:
                outcome = Outcome(
                    success=success,
                    corrected_tier=corrected.tier_id if corrected else None,
                    metrics=metrics,
                )
                self.state.replace_selection(replace(record, outcome=outcome))

                accuracy = self.state.tier_accuracy.setdefault(record.tier_id, TierAccuracy())
                accuracy.total += 1
                if success and corrected is None:
                    accuracy.correct += 1

                if not success and corrected is not None:
                    selected = self._by_id.get(record.tier_id)
                    self.state.corrections.append(Correction(
                        task_type=record.task_type,
                        selected_tier=record.tier_id,
                        corrected_tier=corrected.tier_id,
                        complexity_score=record.complexity_score,
                        adjustment=corrected.rank - selected.rank if selected else 1,
                    ))
                    current = self.state.historical_complexity.get(
                        record.task_type, record.complexity_score
                    )
                    # Additive and unbounded; only the blended score is clamped.
                    self.state.historical_complexity[record.task_type] = current + corrected.rank

                performance = self.state.tier_performance.setdefault(
                    record.tier_id, TierPerformance()
                )
                performance.total_tasks += 1
                if success:
                    performance.successful += 1
                else:
                    performance.failed += 1
                if response_time:
                    n = performance.total_tasks
                    performance.avg_response_time = (
                        performance.avg_response_time * (n - 1) + response_time
                    ) / n

                stats = self.state.task_types.setdefault(record.task_type, TaskTypeStats())
                stats.total += 1
                if success:
                    stats.successful += 1
                stats.avg_complexity += (record.complexity_score - stats.avg_complexity) / stats.total
                stats.tier_distribution[record.tier_id] = (
                    stats.tier_distribution.get(record.tier_id, 0) + 1
                )
                for feature in record.features:
                    stats.characteristic_counts[feature] = (
                        stats.characteristic_counts.get(feature, 0) + 1
                    )
                if response_time:
                    stats.response_samples += 1
                    stats.avg_response_time += (
                        (response_time - stats.avg_response_time) / stats.response_samples
                    )
                if quality is not None:
                    stats.quality_samples += 1
                    stats.avg_quality += (
                        (QUALITY_SCORES[quality] - stats.avg_quality) / stats.quality_samples
                    )

                if record.confidence is not None:
                    self.state.confidence_history.append((record.confidence, success))

                self.state.outcomes_recorded += 1
                self.state.outcomes_since_tuning += 1
                if success:
                    self.state.successful_outcomes += 1
                else:
                    self.state.failed_outcomes += 1

        if reason is not None:
            return self._ignore(selection_id, reason)

        if corrected is not None and not success:
            logger.info(
                "Learning: %s is more complex than estimated, adjusting future selections",
                record.task_type,
            )

        self.events.publish(OutcomeRecorded(
            selection_id=selection_id,
            task_type=record.task_type,
            tier_id=record.tier_id,
            success=success,
            corrected_tier=corrected.tier_id if corrected else None,
        ))

        if self.tuner.should_tune():
            self.tuner.tune()

        return True

    def get_statistics(self) -> dict[str, Any]:
        """Accuracy, performance and correction counters."""
        with self.state.lock:
            accuracy = {
                tier_id: {
                    "correct": a.correct,
                    "total": a.total,
                    "rate": a.rate,
                }
                for tier_id, a in self.state.tier_accuracy.items()
            }
            performance = {
                tier_id: {
                    "total_tasks": p.total_tasks,
                    "successful": p.successful,
                    "failed": p.failed,
                    "success_rate": p.success_rate,
                    "avg_response_time": p.avg_response_time,
                }
                for tier_id, p in self.state.tier_performance.items()
            }
            confidence_samples = len(self.state.confidence_history)
            task_types = len(self.state.historical_complexity)
            return {
                "selections_tracked": self.state.selection_count,
                "outcomes_recorded": self.state.outcomes_recorded,
                "successful_outcomes": self.state.successful_outcomes,
                "failed_outcomes": self.state.failed_outcomes,
                "tier_accuracy": accuracy,
                "tier_performance": performance,
                "corrections": len(self.state.corrections),
                "learned_task_types": task_types,
                "avg_corrections_per_type": len(self.state.corrections) / max(1, task_types),
                "tuning_runs": len(self.state.tuning_history),
                "avg_confidence": self.get_average_confidence(),
                "confidence_samples": confidence_samples,
            }

    def get_average_confidence(self, window: int = CONFIDENCE_WINDOW) -> float:
        """Mean selection confidence over the last ``window`` outcomes, 0.0 if none."""
        with self.state.lock:
            recent = list(self.state.confidence_history)[-window:] if window > 0 else []
        if not recent:
            return 0.0
        return sum(confidence for confidence, _ in recent) / len(recent)

    def reset_learning(self) -> None:
        """Forget everything learned, including tuned weights."""
        self.state.reset()
        logger.info("Learning data reset")
