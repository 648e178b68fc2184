"""Tests for complexity scoring and feature detection."""

import pytest

from governor.features import DEFAULT_WEIGHTS, KeywordFeatureDetector
from governor.schemas import Task
from governor.scorer import ComplexityScorer
from governor.state import LearningState
from governor.validation import ValidationError


NEUTRAL = "Rename variable foo to bar"


class TestComplexityScorer:
    """Test ComplexityScorer.score."""

    def setup_method(self):
        self.state = LearningState()
        self.scorer = ComplexityScorer(self.state)

    def test_neutral_task_scores_base(self):
        """No features, history or hint gives exactly 5.0."""
        task = Task("t-1", NEUTRAL, "rename")
        assert self.scorer.score(task) == 5.0

    def test_architecture_and_security_score_high(self):
        """Two heavy features push the score to the ceiling."""
        task = Task(
            "t-2",
            NEUTRAL,
            "design",
            characteristics={"requiresArchitecture", "securityCritical"},
        )
        assert self.scorer.score(task) >= 9.0

    def test_score_clamped_at_zero(self):
        """Stacked negative weights never go below zero."""
        task = Task(
            "t-3",
            NEUTRAL,
            "chore",
            characteristics={"formattingOnly", "simpleQuery", "statusCheck"},
        )
        assert self.scorer.score(task) == 0.0

    def test_keywords_detect_features(self):
        """Description keywords count as features, once per feature."""
        task = Task("t-4", "Harden the security of the secure login", "auth")

        breakdown = self.scorer.analyze(task)

        assert breakdown.features == frozenset({"securityCritical"})
        assert breakdown.score == pytest.approx(5.0 + DEFAULT_WEIGHTS["securityCritical"])

    def test_history_blends_thirty_percent(self):
        """Historical complexity for the task type is blended 70/30."""
        self.state.historical_complexity["rename"] = 8.0
        task = Task("t-5", NEUTRAL, "rename")

        assert self.scorer.score(task) == pytest.approx(5.0 * 0.7 + 8.0 * 0.3)

    def test_unbounded_history_is_clamped_on_read(self):
        """History above 10 still yields a score within range."""
        self.state.historical_complexity["rename"] = 40.0
        task = Task("t-6", NEUTRAL, "rename")

        assert self.scorer.score(task) == 10.0

    def test_raw_history_is_blended_before_clamping(self):
        """Only the final score is clamped; history above 10 is blended as stored."""
        self.state.historical_complexity["rename"] = 12.0
        task = Task("t-6", NEUTRAL, "rename")

        breakdown = self.scorer.analyze(task)
        assert breakdown.historical == 12.0
        assert breakdown.score == pytest.approx(5.0 * 0.7 + 12.0 * 0.3)
        assert self.state.get_historical("rename") == 12.0

    def test_hint_blends_twenty_percent(self):
        """A complexity hint is blended 80/20."""
        task = Task("t-7", NEUTRAL, "rename", complexity_hint=10)
        assert self.scorer.score(task) == pytest.approx(6.0)

    def test_extreme_hints_are_clamped(self):
        """Out-of-range hints are clamped to [0, 10] before blending."""
        low = Task("t-8", NEUTRAL, "rename", complexity_hint=-1_000)
        high = Task("t-9", NEUTRAL, "rename", complexity_hint=1e9)

        assert self.scorer.score(low) == pytest.approx(4.0)
        assert self.scorer.score(high) == pytest.approx(6.0)

    def test_zero_hint_is_used(self):
        """A hint of zero is a real hint, not a missing one."""
        task = Task("t-10", NEUTRAL, "rename", complexity_hint=0)
        assert self.scorer.analyze(task).hint == 0.0
        assert self.scorer.score(task) == pytest.approx(4.0)

    def test_scores_follow_weight_table(self):
        """Changed weights change the next score."""
        task = Task("t-11", NEUTRAL, "rename", characteristics={"novelProblem"})
        before = self.scorer.score(task)

        with self.state.lock:
            self.state.weights["novelProblem"] = 1

        assert self.scorer.score(task) == pytest.approx(before - 2)

    def test_deterministic(self):
        """Same task and state give the same score."""
        task = Task("t-12", "Refactor the payment algorithm", "refactor")
        assert self.scorer.score(task) == self.scorer.score(task)


class TestScorerValidation:
    """Test that malformed tasks are rejected."""

    def setup_method(self):
        self.scorer = ComplexityScorer()

    def test_empty_description(self):
        """Blank descriptions are rejected."""
        with pytest.raises(ValidationError, match="description"):
            self.scorer.score(Task("t-1", "   ", "misc"))

    def test_missing_task_type(self):
        """An empty task type is rejected."""
        with pytest.raises(ValidationError, match="task_type"):
            self.scorer.score(Task("t-1", NEUTRAL, ""))

    def test_nan_hint(self):
        """NaN hints are rejected."""
        with pytest.raises(ValidationError, match="NaN"):
            self.scorer.score(Task("t-1", NEUTRAL, "misc", complexity_hint=float("nan")))

    def test_bool_hint(self):
        """Booleans are not numeric hints."""
        with pytest.raises(ValidationError):
            self.scorer.score(Task("t-1", NEUTRAL, "misc", complexity_hint=True))


class TestKeywordFeatureDetector:
    """Test keyword-based feature detection."""

    def test_case_insensitive(self):
        """Keywords match regardless of case."""
        detector = KeywordFeatureDetector()
        task = Task("t-1", "GDPR review", "legal")

        assert detector.has_feature(task, "complianceRequired")

    def test_characteristics_count(self):
        """Explicit characteristics are detected without keywords."""
        detector = KeywordFeatureDetector()
        task = Task("t-1", NEUTRAL, "misc", characteristics={"dataIntensive"})

        assert detector.detect(task, DEFAULT_WEIGHTS) == frozenset({"dataIntensive"})

    def test_only_requested_features(self):
        """Detection is limited to the features asked about."""
        detector = KeywordFeatureDetector()
        task = Task("t-1", "Encrypt the template output", "misc")

        assert detector.detect(task, ["securityCritical"]) == frozenset({"securityCritical"})

    def test_custom_keywords(self):
        """A custom keyword table replaces the default one."""
        detector = KeywordFeatureDetector({"dataIntensive": ["terabyte"]})
        task = Task("t-1", "Process a Terabyte of logs", "etl")

        assert detector.detect(task, DEFAULT_WEIGHTS) == frozenset({"dataIntensive"})
