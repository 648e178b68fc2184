"""Integration tests for the Governor control loop."""

import random

import pytest

from governor import (
    BudgetConfig,
    ContextFlags,
    EventBus,
    Governor,
    GovernorConfig,
    LearningConfig,
    LearningState,
    OptimizationLevel,
    SelectionMade,
    Task,
    ValidationError,
)
from governor.schemas import BudgetPeriod


NEUTRAL = "Rename variable foo to bar"


def make_governor(hourly_limit: int = 50_000, **learning) -> Governor:
    learning.setdefault("exploration_rate", 0.0)
    config = GovernorConfig(
        budget=BudgetConfig(hourly_limit=hourly_limit),
        learning=LearningConfig(**learning),
    )
    return Governor(config, events=EventBus(enable_logging=False), rng=random.Random(0))


class TestRoute:
    """Test Governor.route."""

    def test_admits_scores_and_routes(self):
        """An affordable task is admitted and routed."""
        governor = make_governor()
        task = Task("t-1", NEUTRAL, "rename")

        result = governor.route(task, estimated_input_tokens=1_000)

        assert result.admitted is True
        assert result.tier.tier_id == "claude-3-5-sonnet"
        assert result.selection.cost_estimate.output_tokens == 300
        assert governor.budget.get_window(BudgetPeriod.HOUR).consumed == 1_300
        assert len(governor.events.recent(SelectionMade)) == 1

    def test_level_loosens_routing(self):
        """Under aggressive budget pressure a borderline task goes cheaper."""
        task = Task("t-2", NEUTRAL, "algo", characteristics={"complexAlgorithm"})

        relaxed = make_governor(hourly_limit=10_000)
        assert relaxed.route(task, 100, 0).tier.tier_id == "claude-3-opus"

        pressured = make_governor(hourly_limit=10_000)
        pressured.record_consumption(8_600)
        assert pressured.current_level() == OptimizationLevel.AGGRESSIVE
        assert pressured.route(task, 100, 0).tier.tier_id == "claude-3-5-sonnet"

    def test_rejected_request_is_degraded_and_resubmitted(self):
        """A too-large request is shrunk once and then admitted."""
        governor = make_governor(hourly_limit=10_000)
        task = Task(
            "t-3",
            NEUTRAL,
            "summary",
            context_flags=ContextFlags(can_compress_context=True, has_cacheable_content=True),
        )

        result = governor.route(task, estimated_input_tokens=20_000, estimated_output_tokens=0)

        assert result.admitted is True
        assert result.degraded is not None
        assert result.degraded.strategies[:2] == ("compress-context", "aggressive-caching")
        assert governor.budget.get_window(BudgetPeriod.HOUR).consumed == result.degraded.amount
        assert result.selection.cost_estimate.input_tokens <= result.degraded.amount

        (usage,) = governor.budget.get_usage_history()
        assert usage.amount == result.degraded.amount
        assert usage.optimized is True
        assert usage.context["task"] == "t-3"
        assert usage.context["task_type"] == "summary"
        assert usage.context["strategies"] == list(result.degraded.strategies)

    def test_still_too_large_is_not_admitted(self):
        """If degradation is not enough nothing is routed or consumed."""
        governor = make_governor(hourly_limit=10_000)
        task = Task("t-4", NEUTRAL, "bulk")

        result = governor.route(task, estimated_input_tokens=100_000, estimated_output_tokens=0)

        assert result.admitted is False
        assert result.selection is None
        assert result.tier is None
        assert result.decision.limiting_window == "hour"
        assert governor.budget.get_window(BudgetPeriod.HOUR).consumed == 0
        assert governor.state.selection_count == 0

    def test_assumed_tier_enables_downgrade(self):
        """An assumed top tier lets degradation halve the estimate."""
        governor = make_governor(hourly_limit=10_000)
        task = Task("t-5", NEUTRAL, "bulk")

        result = governor.route(
            task,
            estimated_input_tokens=12_000,
            estimated_output_tokens=0,
            assumed_tier="claude-3-opus",
        )

        assert result.admitted is True
        assert result.degraded.strategies[0] == "downgrade-tier"

    def test_invalid_task_touches_nothing(self):
        """Malformed tasks fail before any budget is used."""
        governor = make_governor()

        with pytest.raises(ValidationError):
            governor.route(Task("t-6", "", "misc"), estimated_input_tokens=1_000)
        with pytest.raises(ValidationError):
            governor.route(Task("t-7", NEUTRAL, "misc"), estimated_input_tokens=-1)

        assert governor.budget.get_window(BudgetPeriod.HOUR).consumed == 0
        assert governor.budget.get_statistics()["stats"]["total_requests"] == 0

    def test_project_budget(self):
        """Project ids get their own window."""
        governor = make_governor()
        task = Task("t-8", NEUTRAL, "misc")

        governor.route(task, 1_000, 0, project_id="alpha")

        assert governor.budget.get_window(BudgetPeriod.PROJECT, "alpha").consumed == 1_000


class TestFeedbackLoop:
    """Test outcomes flowing back into routing."""

    def test_corrections_shift_future_routing(self):
        """Five top-tier corrections move a neutral type to the top tier."""
        governor = make_governor()
        task = Task("t-1", NEUTRAL, "X")

        first = governor.route(task, 1_000).selection
        assert first.tier_id == "claude-3-5-sonnet"

        selection = first
        for _ in range(5):
            governor.record_outcome(selection.selection_id, False, corrected_tier="claude-3-opus")
            selection = governor.route(task, 1_000).selection

        assert selection.complexity_score > 5.0
        assert selection.tier_id == "claude-3-opus"

    def test_snapshot_round_trip(self):
        """A governor restored from a snapshot routes identically."""
        governor = make_governor()
        task = Task("t-1", NEUTRAL, "X")
        selection = governor.route(task, 1_000).selection
        governor.record_outcome(selection.selection_id, False, corrected_tier="claude-3-opus")

        restored = Governor(
            GovernorConfig(learning=LearningConfig(exploration_rate=0.0)),
            state=LearningState.from_snapshot(governor.export_snapshot()),
            events=EventBus(enable_logging=False),
        )

        original = governor.route(task, 1_000).selection
        again = restored.route(task, 1_000).selection
        assert original.complexity_score == again.complexity_score
        assert original.tier == again.tier

    def test_statistics(self):
        """Statistics cover budget, learning, insights and events."""
        governor = make_governor()
        selection = governor.route(Task("t-1", NEUTRAL, "X"), 1_000).selection
        governor.record_outcome(selection.selection_id, True)

        stats = governor.get_statistics()

        assert set(stats) == {"budget", "learning", "insights", "events"}
        assert stats["learning"]["outcomes_recorded"] == 1
        assert stats["budget"]["stats"]["total_requests"] == 1


class TestLifecycle:
    """Test start/stop of background maintenance."""

    def test_context_manager(self):
        """The context manager starts and stops maintenance."""
        config = GovernorConfig(budget=BudgetConfig(maintenance_interval_seconds=0.01))
        governor = Governor(config, events=EventBus(enable_logging=False))

        with governor:
            assert governor.budget.start_maintenance().running is True

        governor.stop()
        assert governor.budget.start_maintenance().running is True
        governor.stop()
