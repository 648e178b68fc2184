"""
Basic usage examples for Governor.

Demonstrates admission, routing, feedback and snapshots.
"""

import random

from governor import (
    BudgetConfig,
    ContextFlags,
    EventBus,
    Governor,
    GovernorConfig,
    LearningConfig,
    LearningState,
    Task,
    ValidationError,
)


def example_basic():
    """Route a few tasks of different difficulty."""
    print("=" * 60)
    print("Example 1: Basic Routing")
    print("=" * 60)

    governor = Governor(rng=random.Random(7))

    tasks = [
        Task("t-1", "Prettify this JSON payload", "formatting"),
        Task("t-2", "Fix the failing login test", "bugfix"),
        Task("t-3", "Design system architecture with security review", "architecture"),
    ]

    for task in tasks:
        result = governor.route(task, estimated_input_tokens=2_000)
        selection = result.selection
        print(f"{task.task_id}: {selection.tier.name}")
        print(f"  Score: {selection.complexity_score:.1f}  Confidence: {selection.confidence:.2f}")
        print(f"  Cost: ${selection.cost_estimate.total_cost:.4f} "
              f"({selection.cost_estimate.savings_pct:.0f}% below top tier)")
        print(f"  Why: {selection.rationale}")
    print()


def example_budget_pressure():
    """Watch the optimization level rise as the hourly budget fills."""
    print("=" * 60)
    print("Example 2: Budget Pressure")
    print("=" * 60)

    events = EventBus(enable_logging=False)
    events.subscribe(lambda e: print(f"  event: {e.describe()}"))

    config = GovernorConfig(budget=BudgetConfig(hourly_limit=10_000))
    governor = Governor(config, events=events, rng=random.Random(7))

    task = Task(
        "t-big",
        "Summarize the design notes",
        "summary",
        context_flags=ContextFlags(can_compress_context=True, has_cacheable_content=True),
    )

    for i in range(4):
        result = governor.route(task, estimated_input_tokens=2_500, estimated_output_tokens=0)
        print(f"Request {i + 1}: admitted={result.admitted} level={result.decision.level.value}")
        if result.degraded:
            print(f"  degraded {result.degraded.original} -> {result.degraded.amount} "
                  f"via {', '.join(result.degraded.strategies)}")
    print()


def example_learning():
    """Feed back corrections and watch a task type move up a tier."""
    print("=" * 60)
    print("Example 3: Learning From Outcomes")
    print("=" * 60)

    governor = Governor(
        GovernorConfig(learning=LearningConfig(exploration_rate=0.0)),
        events=EventBus(enable_logging=False),
    )
    task = Task("t-mig", "Rename variable foo to bar", "migration")

    before = governor.route(task, estimated_input_tokens=1_000).selection
    print(f"Before: {before.tier_id} (score {before.complexity_score:.1f})")

    selection = before
    for _ in range(5):
        governor.record_outcome(selection.selection_id, success=False, corrected_tier="claude-3-opus")
        selection = governor.route(task, estimated_input_tokens=1_000).selection

    after = governor.route(task, estimated_input_tokens=1_000).selection
    print(f"After:  {after.tier_id} (score {after.complexity_score:.1f})")

    blob = governor.export_snapshot()
    restored = Governor(state=LearningState.from_snapshot(blob), events=EventBus(enable_logging=False))
    print(f"Restored score: {restored.scorer.score(task):.1f}")
    print()


def example_validation():
    """Malformed tasks are rejected before any budget is used."""
    print("=" * 60)
    print("Example 4: Input Validation")
    print("=" * 60)

    governor = Governor(events=EventBus(enable_logging=False))
    try:
        governor.route(Task("t-bad", "   ", "misc"), estimated_input_tokens=100)
    except ValidationError as e:
        print(f"Rejected: {e}")
    print()


if __name__ == "__main__":
    example_basic()
    example_budget_pressure()
    example_learning()
    example_validation()
