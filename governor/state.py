"""
Shared learning state for Governor.

Holds the feature weight table, per-task-type historical complexity and
per-tier accuracy/performance. Scorer and router read it; the feedback
learner and auto-tuner write it. Every read and every batch of writes
goes through one re-entrant lock, so readers never see a half-applied
tuning pass.
"""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional
import threading

from pydantic import ValidationError as PydanticValidationError

from governor.features import DEFAULT_WEIGHTS
from governor.schemas import Correction, SelectionRecord, TuningEvent
from governor.snapshot import (
    SNAPSHOT_VERSION,
    CorrectionModel,
    LearningSnapshot,
    SnapshotError,
    TaskTypeStatsModel,
    TierAccuracyModel,
    TierPerformanceModel,
)


CONFIDENCE_HISTORY_SIZE = 1000


@dataclass
class TierAccuracy:
    """Selections judged right (success, no correction) out of all answered."""
    correct: int = 0
    total: int = 0

    @property
    def rate(self) -> float:
        return self.correct / self.total if self.total else 0.0


@dataclass
class TierPerformance:
    total_tasks: int = 0
    successful: int = 0
    failed: int = 0
    avg_response_time: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successful / self.total_tasks if self.total_tasks else 0.0


@dataclass
class TaskTypeStats:
    """Outcome pattern for one task type."""
    total: int = 0
    successful: int = 0
    avg_complexity: float = 0.0
    avg_response_time: float = 0.0
    response_samples: int = 0
    avg_quality: float = 0.0
    quality_samples: int = 0
    tier_distribution: dict[str, int] = field(default_factory=dict)
    characteristic_counts: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        return self.successful / self.total if self.total else 0.0


class LearningState:
    """
    Lock-guarded container for everything the feedback loop learns.

    Use ``with state.lock:`` to group several reads or writes into one
    atomic step.
    """

    def __init__(
        self,
        weights: Optional[Mapping[str, int]] = None,
        max_selection_history: int = 1000,
    ):
        self.lock = threading.RLock()
        self.max_selection_history = max_selection_history

        self.weights: dict[str, int] = dict(DEFAULT_WEIGHTS if weights is None else weights)
        self.weight_adjustments: dict[str, float] = {}
        self.historical_complexity: dict[str, float] = {}
        self.tier_accuracy: dict[str, TierAccuracy] = {}
        self.tier_performance: dict[str, TierPerformance] = {}
        self.task_types: dict[str, TaskTypeStats] = {}
        self.corrections: list[Correction] = []
        self.tuning_history: list[TuningEvent] = []
        # (confidence at selection time, success) for the most recent outcomes
        self.confidence_history: deque[tuple[float, bool]] = deque(maxlen=CONFIDENCE_HISTORY_SIZE)

        self.outcomes_recorded = 0
        self.outcomes_since_tuning = 0
        self.successful_outcomes = 0
        self.failed_outcomes = 0

        self._selections: OrderedDict[str, SelectionRecord] = OrderedDict()

    # =========================================================================
    # Reads
    # =========================================================================

    def scoring_view(self, task_type: str) -> tuple[dict[str, int], Optional[float]]:
        """Consistent copy of the weight table plus this type's history."""
        with self.lock:
            return dict(self.weights), self.historical_complexity.get(task_type)

    def get_weights(self) -> dict[str, int]:
        with self.lock:
            return dict(self.weights)

    def get_historical(self, task_type: str) -> Optional[float]:
        with self.lock:
            return self.historical_complexity.get(task_type)

    def get_tier_accuracy(self, tier_id: str) -> TierAccuracy:
        with self.lock:
            return replace(self.tier_accuracy.get(tier_id, TierAccuracy()))

    def task_type_samples(self, task_type: str) -> int:
        with self.lock:
            stats = self.task_types.get(task_type)
            return stats.total if stats else 0

    # =========================================================================
    # Selection records
    # =========================================================================

    def add_selection(self, record: SelectionRecord) -> None:
        """Store a selection, evicting the oldest beyond the history cap."""
        with self.lock:
            self._selections[record.selection_id] = record
            while len(self._selections) > self.max_selection_history:
                self._selections.popitem(last=False)

    def get_selection(self, selection_id: str) -> Optional[SelectionRecord]:
        with self.lock:
            return self._selections.get(selection_id)

    def replace_selection(self, record: SelectionRecord) -> None:
        with self.lock:
            if record.selection_id in self._selections:
                self._selections[record.selection_id] = record

    @property
    def selection_count(self) -> int:
        with self.lock:
            return len(self._selections)

    # =========================================================================
    # Snapshot / restore
    # =========================================================================

    def to_snapshot(self) -> LearningSnapshot:
        with self.lock:
            return LearningSnapshot(
                version=SNAPSHOT_VERSION,
                weights=dict(self.weights),
                weight_adjustments=dict(self.weight_adjustments),
                historical_complexity=dict(self.historical_complexity),
                tier_accuracy={
                    tier_id: TierAccuracyModel(correct=a.correct, total=a.total)
                    for tier_id, a in self.tier_accuracy.items()
                },
                tier_performance={
                    tier_id: TierPerformanceModel(
                        total_tasks=p.total_tasks,
                        successful=p.successful,
                        failed=p.failed,
                        avg_response_time=p.avg_response_time,
                    )
                    for tier_id, p in self.tier_performance.items()
                },
                task_types={
                    task_type: TaskTypeStatsModel(
                        total=s.total,
                        successful=s.successful,
                        avg_complexity=s.avg_complexity,
                        avg_response_time=s.avg_response_time,
                        response_samples=s.response_samples,
                        avg_quality=s.avg_quality,
                        quality_samples=s.quality_samples,
                        tier_distribution=dict(s.tier_distribution),
                        characteristic_counts=dict(s.characteristic_counts),
                    )
                    for task_type, s in self.task_types.items()
                },
                corrections=[
                    CorrectionModel(
                        task_type=c.task_type,
                        selected_tier=c.selected_tier,
                        corrected_tier=c.corrected_tier,
                        complexity_score=c.complexity_score,
                        adjustment=c.adjustment,
                    )
                    for c in self.corrections
                ],
                outcomes_recorded=self.outcomes_recorded,
                outcomes_since_tuning=self.outcomes_since_tuning,
                successful_outcomes=self.successful_outcomes,
                failed_outcomes=self.failed_outcomes,
            )

    def export_snapshot(self) -> bytes:
        """Serialize learned state to an opaque JSON blob."""
        return self.to_snapshot().model_dump_json().encode("utf-8")

    def restore_snapshot(self, blob: bytes | str) -> None:
        """
        Replace learned state with the contents of a snapshot blob.

        Selection records are not part of a snapshot and are cleared.

        Raises:
            SnapshotError: If the blob is malformed. State is left untouched.
        """
        try:
            snapshot = LearningSnapshot.model_validate_json(blob)
        except PydanticValidationError as exc:
            raise SnapshotError(f"invalid snapshot: {exc}") from exc

        if snapshot.version != SNAPSHOT_VERSION:
            raise SnapshotError(
                f"unsupported snapshot version {snapshot.version} "
                f"(expected {SNAPSHOT_VERSION})"
            )

        with self.lock:
            self.weights = dict(snapshot.weights)
            self.weight_adjustments = dict(snapshot.weight_adjustments)
            self.historical_complexity = dict(snapshot.historical_complexity)
            self.tier_accuracy = {
                tier_id: TierAccuracy(correct=a.correct, total=a.total)
                for tier_id, a in snapshot.tier_accuracy.items()
            }
            self.tier_performance = {
                tier_id: TierPerformance(**p.model_dump())
                for tier_id, p in snapshot.tier_performance.items()
            }
            self.task_types = {
                task_type: TaskTypeStats(**s.model_dump())
                for task_type, s in snapshot.task_types.items()
            }
            self.corrections = [Correction(**c.model_dump()) for c in snapshot.corrections]
            self.outcomes_recorded = snapshot.outcomes_recorded
            self.outcomes_since_tuning = snapshot.outcomes_since_tuning
            self.successful_outcomes = snapshot.successful_outcomes
            self.failed_outcomes = snapshot.failed_outcomes
            self.tuning_history = []
            self.confidence_history.clear()
            self._selections.clear()

    @classmethod
    def from_snapshot(
        cls,
        blob: bytes | str,
        max_selection_history: int = 1000,
    ) -> "LearningState":
        state = cls(max_selection_history=max_selection_history)
        state.restore_snapshot(blob)
        return state

    def reset(self, weights: Optional[Mapping[str, int]] = None) -> None:
        """Forget everything learned; optionally reload a weight table."""
        with self.lock:
            self.weights = dict(DEFAULT_WEIGHTS if weights is None else weights)
            self.weight_adjustments.clear()
            self.historical_complexity.clear()
            self.tier_accuracy.clear()
            self.tier_performance.clear()
            self.task_types.clear()
            self.corrections.clear()
            self.tuning_history.clear()
            self.confidence_history.clear()
            self.outcomes_recorded = 0
            self.outcomes_since_tuning = 0
            self.successful_outcomes = 0
            self.failed_outcomes = 0
