"""
Event stream for Governor.

Typed events for alerts, level changes, selections and tuning, delivered
to host subscribers and mirrored to structured logging.
"""

import logging
import threading
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, UTC
from typing import Any, Callable, ClassVar, Optional


@dataclass
class GovernorEvent:
    """Base class for every published event."""
    log_level: ClassVar[int] = logging.DEBUG

    def describe(self) -> str:
        return f"{type(self).__name__}: {self.to_dict()}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BudgetAlert(GovernorEvent):
    """A window's utilization crossed a threshold upward."""
    window: str
    threshold: float
    severity: str  # warning, aggressive, limit
    utilization: float
    consumed: int
    limit: int
    timestamp: float
    log_level: ClassVar[int] = logging.WARNING

    def describe(self) -> str:
        return (
            f"Budget alert ({self.severity}): {self.utilization:.0%} of {self.window} "
            f"budget used ({self.consumed:,}/{self.limit:,} tokens)"
        )


@dataclass
class LevelChanged(GovernorEvent):
    """The derived optimization level changed."""
    previous: str
    current: str
    utilization: float
    reason: str
    timestamp: float
    log_level: ClassVar[int] = logging.INFO

    def describe(self) -> str:
        return (
            f"Optimization level changed: {self.previous} -> {self.current} "
            f"({self.utilization:.0%} usage)"
        )


@dataclass
class BudgetExceeded(GovernorEvent):
    """A request was rejected by a budget window."""
    requested: int
    available: int
    window: str
    timestamp: float
    log_level: ClassVar[int] = logging.WARNING


@dataclass
class UsageRecorded(GovernorEvent):
    """Tokens were charged against the budget windows."""
    amount: int
    total: int
    project_id: Optional[str]
    level: str
    context: dict[str, Any]
    timestamp: float

    def describe(self) -> str:
        return f"Recorded {self.amount:,} tokens (session total: {self.total:,})"


@dataclass
class RequestDegraded(GovernorEvent):
    """A rejected request was shrunk by degradation strategies."""
    original: int
    reduced: int
    strategies: tuple[str, ...]
    timestamp: float
    log_level: ClassVar[int] = logging.INFO

    def describe(self) -> str:
        pct = (1 - self.reduced / self.original) * 100 if self.original else 0
        return f"Budget optimization: {self.original} -> {self.reduced} tokens ({pct:.0f}% reduction)"


@dataclass
class WindowReset(GovernorEvent):
    """A budget window rolled over."""
    window: str
    consumed: int
    timestamp: float
    log_level: ClassVar[int] = logging.INFO

    def describe(self) -> str:
        return f"Resetting {self.window} budget (used: {self.consumed:,} tokens)"


@dataclass
class SelectionMade(GovernorEvent):
    """A task was routed to a tier."""
    selection_id: str
    task_type: str
    tier_id: str
    complexity_score: float
    level: str
    confidence: float
    exploratory: bool


@dataclass
class OutcomeRecorded(GovernorEvent):
    """Feedback was applied to a selection."""
    selection_id: str
    task_type: str
    tier_id: str
    success: bool
    corrected_tier: Optional[str]


@dataclass
class OutcomeIgnored(GovernorEvent):
    """Feedback was dropped (unknown or already-answered selection)."""
    selection_id: str
    reason: str
    log_level: ClassVar[int] = logging.WARNING


@dataclass
class TuningApplied(GovernorEvent):
    """An auto-tuning pass finished."""
    samples_analyzed: int
    adjustment_count: int
    changes: dict[str, tuple[int, int]] = field(default_factory=dict)
    log_level: ClassVar[int] = logging.INFO

    def describe(self) -> str:
        return (
            f"Auto-tuning complete ({self.adjustment_count} adjustments, "
            f"{len(self.changes)} weights changed)"
        )


Handler = Callable[[GovernorEvent], None]


@dataclass
class _Subscription:
    handler: Handler
    event_types: tuple[type, ...]

    def matches(self, event: GovernorEvent) -> bool:
        return not self.event_types or isinstance(event, self.event_types)


class EventBus:
    """
    Observer hub for Governor events.

    Keeps a bounded list of recent events and per-type counters, and
    optionally logs every event.
    """

    def __init__(
        self,
        enable_logging: bool = True,
        max_events: int = 1000,
    ):
        """
        Initialize event bus.

        Args:
            enable_logging: Whether to mirror events to the "governor.events" logger
            max_events: How many recent events to keep in memory
        """
        self.enable_logging = enable_logging

        self.logger = logging.getLogger("governor.events")
        if enable_logging and not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
                )
            )
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

        self._lock = threading.Lock()
        self._subscriptions: list[_Subscription] = []
        self._events: deque[tuple[str, GovernorEvent]] = deque(maxlen=max_events)
        self._counters: dict[str, int] = defaultdict(int)

    def subscribe(self, handler: Handler, *event_types: type) -> Callable[[], None]:
        """
        Register a handler.

        Args:
            handler: Called with each matching event
            *event_types: Event classes to receive. None means all events.

        Returns:
            A callable that removes the subscription.
        """
        subscription = _Subscription(handler=handler, event_types=tuple(event_types))
        with self._lock:
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def publish(self, event: GovernorEvent) -> None:
        """Record an event and deliver it to matching subscribers."""
        with self._lock:
            self._events.append((datetime.now(UTC).isoformat(), event))
            self._counters[type(event).__name__] += 1
            subscribers = [s for s in self._subscriptions if s.matches(event)]

        if self.enable_logging:
            self.logger.log(event.log_level, event.describe())

        for subscription in subscribers:
            try:
                subscription.handler(event)
            except Exception:
                # Subscriber failures must not break admission or routing.
                self.logger.exception(
                    "Event handler %r failed on %s", subscription.handler, type(event).__name__
                )

    def publish_all(self, events: list[GovernorEvent]) -> None:
        for event in events:
            self.publish(event)

    def recent(
        self,
        event_type: Optional[type] = None,
        limit: Optional[int] = None,
    ) -> list[GovernorEvent]:
        """Return recent events, oldest first, optionally filtered by type."""
        with self._lock:
            events = [e for _, e in self._events if event_type is None or isinstance(e, event_type)]
        if limit is not None:
            events = events[-limit:]
        return events

    def get_stats(self) -> dict:
        """
        Get aggregated statistics.

        Returns:
            Dictionary with per-event-type counters
        """
        with self._lock:
            return {
                "counters": dict(self._counters),
                "subscribers": len(self._subscriptions),
                "total_events": sum(self._counters.values()),
            }

    def reset(self) -> None:
        """Clear recorded events and counters. Subscriptions stay."""
        with self._lock:
            self._events.clear()
            self._counters.clear()
