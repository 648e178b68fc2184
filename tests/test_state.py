"""Tests for learning state snapshots."""

import json

import pytest

from governor.config import LearningConfig
from governor.events import EventBus
from governor.learner import FeedbackLearner
from governor.router import TierRouter
from governor.schemas import OptimizationLevel, SelectionRecord, Task
from governor.scorer import ComplexityScorer
from governor.snapshot import SnapshotError
from governor.state import LearningState, TierAccuracy


def trained_state() -> LearningState:
    state = LearningState()
    state.weights["novelProblem"] = 4
    scorer = ComplexityScorer(state)
    router = TierRouter(state, exploration_rate=0.0)
    learner = FeedbackLearner(
        state,
        config=LearningConfig(auto_tuning_enabled=False),
        events=EventBus(enable_logging=False),
    )
    task = Task("t-1", "Rename variable foo to bar", "migration")
    for success in (False, True, False):
        selection = router.select(task, scorer.score(task), OptimizationLevel.STANDARD)
        learner.record_outcome(
            selection.selection_id,
            success,
            corrected_tier=None if success else "claude-3-opus",
            metrics={"response_time": 250, "quality": "medium"},
        )
    return state


class TestSnapshot:
    """Test export_snapshot / restore_snapshot."""

    def setup_method(self):
        self.state = trained_state()

    def test_round_trip_preserves_decisions(self):
        """A restored state scores and routes exactly like the original."""
        restored = LearningState.from_snapshot(self.state.export_snapshot())

        tasks = [
            Task("a", "Rename variable foo to bar", "migration"),
            Task("b", "Novel approach to caching", "migration"),
            Task("c", "Prettify output", "formatting", complexity_hint=3),
        ]
        for task in tasks:
            original_score = ComplexityScorer(self.state).score(task)
            restored_score = ComplexityScorer(restored).score(task)
            assert original_score == restored_score

            for level in OptimizationLevel:
                assert (
                    TierRouter(self.state, exploration_rate=0.0).rule_tier(original_score, level)
                    == TierRouter(restored, exploration_rate=0.0).rule_tier(restored_score, level)
                )

    def test_round_trip_preserves_counters(self):
        """Accuracy, performance and pattern stats survive a round trip."""
        restored = LearningState.from_snapshot(self.state.export_snapshot())

        assert restored.weights == self.state.weights
        assert restored.historical_complexity == self.state.historical_complexity
        assert restored.tier_accuracy == self.state.tier_accuracy
        assert restored.tier_performance == self.state.tier_performance
        assert restored.task_types == self.state.task_types
        assert restored.corrections == self.state.corrections
        assert restored.outcomes_recorded == 3
        assert restored.task_types["migration"].quality_samples == 3
        assert restored.task_types["migration"].avg_quality == pytest.approx(0.7)

    def test_snapshot_without_quality_fields_loads(self):
        """Blobs written before quality tracking restore with empty quality stats."""
        data = json.loads(self.state.export_snapshot())
        for stats in data["task_types"].values():
            del stats["avg_quality"]
            del stats["quality_samples"]

        restored = LearningState.from_snapshot(json.dumps(data).encode("utf-8"))

        assert restored.task_types["migration"].total == 3
        assert restored.task_types["migration"].quality_samples == 0
        assert restored.task_types["migration"].avg_quality == 0.0

    def test_confidence_history_is_not_persisted(self):
        """Per-outcome confidence is session data and starts empty after a restore."""
        assert len(self.state.confidence_history) == 3

        restored = LearningState.from_snapshot(self.state.export_snapshot())
        assert len(restored.confidence_history) == 0

    def test_snapshot_is_json(self):
        """The blob is plain JSON the host can store anywhere."""
        data = json.loads(self.state.export_snapshot())

        assert data["version"] == 1
        assert data["weights"]["novelProblem"] == 4
        assert "migration" in data["historical_complexity"]

    def test_restore_clears_selections(self):
        """Selection records are not part of a snapshot."""
        blob = self.state.export_snapshot()
        assert self.state.selection_count == 3

        self.state.restore_snapshot(blob)
        assert self.state.selection_count == 0

    def test_malformed_blob(self):
        """Garbage raises SnapshotError and leaves state alone."""
        before = dict(self.state.weights)

        with pytest.raises(SnapshotError):
            self.state.restore_snapshot(b"not json")
        with pytest.raises(SnapshotError):
            self.state.restore_snapshot(json.dumps({"weights": {"x": "heavy"}}))

        assert self.state.weights == before
        assert self.state.selection_count == 3

    def test_version_mismatch(self):
        """Snapshots from another format version are refused."""
        data = json.loads(self.state.export_snapshot())
        data["version"] = 99

        with pytest.raises(SnapshotError, match="version"):
            self.state.restore_snapshot(json.dumps(data))

    def test_snapshot_error_is_value_error(self):
        """Callers can catch SnapshotError as ValueError."""
        with pytest.raises(ValueError):
            LearningState.from_snapshot("{}")


class TestLearningState:
    """Test state accessors."""

    def test_tier_accuracy_is_a_copy(self):
        """Reads hand out copies, not live counters."""
        state = LearningState()
        state.tier_accuracy["a"] = TierAccuracy(correct=1, total=2)

        copy = state.get_tier_accuracy("a")
        copy.total = 100

        assert state.tier_accuracy["a"].total == 2
        assert state.get_tier_accuracy("missing").total == 0

    def test_history_cap(self):
        """The oldest selections are evicted first."""
        state = LearningState(max_selection_history=2)
        for i in range(3):
            state.add_selection(SelectionRecord(
                selection_id=f"sel_{i}",
                task_id="t",
                task_type="x",
                tier_id="claude-3-haiku",
                complexity_score=1.0,
                level=OptimizationLevel.STANDARD,
            ))

        assert state.get_selection("sel_0") is None
        assert state.get_selection("sel_2") is not None

    def test_reset_with_weights(self):
        """reset() can load a replacement weight table."""
        state = trained_state()
        state.reset(weights={"dataIntensive": 2})

        assert state.weights == {"dataIntensive": 2}
        assert state.historical_complexity == {}
        assert state.outcomes_recorded == 0
