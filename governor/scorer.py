"""
Complexity scorer for Governor.

Turns a task into a 0-10 difficulty estimate from weighted features,
learned per-type history and an optional caller hint.
"""

from dataclasses import dataclass
from typing import Optional

from governor.features import FeatureDetector, KeywordFeatureDetector
from governor.schemas import Task
from governor.state import LearningState
from governor.validation import validate_task


MIN_SCORE = 0.0
MAX_SCORE = 10.0
BASE_SCORE = 5.0
HISTORY_WEIGHT = 0.3
HINT_WEIGHT = 0.2


def clamp_score(value: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, value))


@dataclass(frozen=True)
class ScoreBreakdown:
    """How a score was reached."""
    score: float
    feature_score: float
    features: frozenset[str]
    historical: Optional[float]
    hint: Optional[float]


class ComplexityScorer:
    """
    Scores task complexity on a 0-10 scale.

    The algorithm:
    1. Start at 5.0
    2. Add the signed weight of every feature the task exhibits
    3. Blend 70/30 with the task type's historical complexity, if any
    4. Blend 80/20 with the clamped complexity hint, if any
    5. Clamp to [0, 10]

    Given fixed weights and history the result is deterministic.
    """

    def __init__(
        self,
        state: Optional[LearningState] = None,
        detector: Optional[FeatureDetector] = None,
    ):
        self.state = state or LearningState()
        self.detector = detector or KeywordFeatureDetector()

    def score(self, task: Task) -> float:
        """
        Score a task.

        Raises:
            ValidationError: If the task is malformed.
        """
        return self.analyze(task).score

    def analyze(self, task: Task) -> ScoreBreakdown:
        """Score a task and report which inputs contributed."""
        validate_task(task)

        weights, historical = self.state.scoring_view(task.task_type)
        features = self.detector.detect(task, weights.keys())

        score = BASE_SCORE + sum(weights[name] for name in features)
        feature_score = score

        if historical is not None:
            score = score * (1 - HISTORY_WEIGHT) + historical * HISTORY_WEIGHT

        hint = None
        if task.complexity_hint is not None:
            hint = clamp_score(float(task.complexity_hint))
            score = score * (1 - HINT_WEIGHT) + hint * HINT_WEIGHT

        return ScoreBreakdown(
            score=clamp_score(score),
            feature_score=feature_score,
            features=features,
            historical=historical,
            hint=hint,
        )
