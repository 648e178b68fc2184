"""
Budget tracking for Governor.

"Shed load before the bill arrives."

Features:
- Multi-window token budgets (hour, day, week, session, per-project)
- Atomic check-and-consume admission control
- Per-request usage history with caller context
- Optimization level derived from live utilization
- Threshold alerts with per-window cooldown
- Degradation of rejected requests before giving up
- Background window rollover
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional
from collections import deque
import logging
import math
import threading
import time

from governor.config import BudgetConfig
from governor.events import (
    BudgetAlert,
    BudgetExceeded,
    EventBus,
    GovernorEvent,
    LevelChanged,
    RequestDegraded,
    UsageRecorded,
    WindowReset,
)
from governor.schemas import (
    BudgetPeriod,
    BudgetWindow,
    ContextFlags,
    ModelTier,
    OptimizationLevel,
)
from governor.validation import validate_amount


logger = logging.getLogger("governor.budget")

# Windows checked, in order, before a request is admitted.
GATED_PERIODS = (BudgetPeriod.HOUR, BudgetPeriod.DAY, BudgetPeriod.WEEK)

ALERT_SEVERITIES = ("warning", "aggressive", "limit")

# Multipliers applied by degrade(), in order.
TOP_TIER_DOWNGRADE = 0.5
MIDDLE_TIER_DOWNGRADE = 0.2
COMPRESS_CONTEXT_FACTOR = 0.7
CACHEABLE_CONTENT_FACTOR = 0.5
CONTEXT_TRIM_FACTOR = 0.8

_SUGGESTIONS = {
    "downgrade-tier": {
        "type": "model-downgrade",
        "message": "Consider using a cheaper tier for this task",
        "impact": "high",
        "savings": "50-80%",
    },
    "compress-context": {
        "type": "context-compression",
        "message": "Context can be compressed or summarized",
        "impact": "medium",
        "savings": "20-40%",
    },
    "aggressive-caching": {
        "type": "caching",
        "message": "More content can be cached to reduce repeat costs",
        "impact": "high",
        "savings": "50-90%",
    },
    "reduce-context-window": {
        "type": "context-reduction",
        "message": "Load only essential context, not the full project",
        "impact": "medium",
        "savings": "20-30%",
    },
}


@dataclass
class AllowanceDecision:
    """Result of an admission check. Rejection is an outcome, not an error."""
    allowed: bool
    requested: int
    level: OptimizationLevel
    remaining: dict[str, int] = field(default_factory=dict)
    limiting_window: Optional[str] = None
    available: Optional[int] = None
    suggestions: list[str] = field(default_factory=list)


@dataclass
class UsageRecord:
    """One charge against the budget windows."""
    timestamp: float
    amount: int
    project_id: Optional[str]
    level: OptimizationLevel
    optimized: bool = False
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "amount": self.amount,
            "project_id": self.project_id,
            "level": self.level.value,
            "optimized": self.optimized,
            "context": dict(self.context),
        }


@dataclass
class DegradeResult:
    """A reduced token estimate for a rejected request."""
    original: int
    amount: int
    strategies: tuple[str, ...] = ()
    suggestions: list[dict] = field(default_factory=list)

    @property
    def reduction(self) -> int:
        return self.original - self.amount


class BudgetTracker:
    """
    Admission control over multi-window token budgets.

    The tracker owns every window counter and is the only component that
    emits alerts and level changes. All mutation happens under one lock,
    so two callers can never both be admitted into room for one.

    Example:
        ```python
        tracker = BudgetTracker(BudgetConfig(hourly_limit=10_000))

        decision = tracker.request_allowance(3_500)
        if not decision.allowed:
            smaller = tracker.degrade(3_500, task.context_flags)
            decision = tracker.request_allowance(smaller.amount)

        level = tracker.current_level()
        ```
    """

    def __init__(
        self,
        config: Optional[BudgetConfig] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
        tier_count: int = 3,
    ):
        """
        Args:
            config: Limits and thresholds. Uses defaults if not provided.
            events: Event bus for alerts and level changes.
            clock: Returns the current time in seconds.
            tier_count: Number of tiers, used to pick downgrade multipliers.
        """
        self.config = config or BudgetConfig()
        self.events = events or EventBus(enable_logging=False)
        self._clock = clock
        self.tier_count = tier_count
        self._lock = threading.RLock()

        now = self._clock()
        self._windows: dict[BudgetPeriod, BudgetWindow] = {
            BudgetPeriod.HOUR: BudgetWindow(BudgetPeriod.HOUR, self.config.hourly_limit, 0, now),
            BudgetPeriod.DAY: BudgetWindow(BudgetPeriod.DAY, self.config.daily_limit, 0, now),
            BudgetPeriod.WEEK: BudgetWindow(BudgetPeriod.WEEK, self.config.weekly_limit, 0, now),
            BudgetPeriod.SESSION: BudgetWindow(BudgetPeriod.SESSION, self.config.session_limit, 0, now),
        }
        self._projects: dict[str, BudgetWindow] = {}

        self._level = OptimizationLevel.STANDARD
        self._last_utilization: dict[str, float] = {}
        self._last_alerted: dict[tuple[str, float], float] = {}
        self._alerts: deque[BudgetAlert] = deque(maxlen=100)
        self._history: deque[UsageRecord] = deque(maxlen=self.config.usage_history_size)

        self._stats = {
            "total_requests": 0,
            "blocked_requests": 0,
            "optimized_requests": 0,
            "tokens_saved": 0,
        }

        self._maintenance: Optional[BudgetMaintenance] = None

    # =========================================================================
    # Admission
    # =========================================================================

    def request_allowance(
        self,
        amount: int,
        project_id: Optional[str] = None,
        consume: bool = True,
        context: Optional[dict[str, Any]] = None,
    ) -> AllowanceDecision:
        """
        Check whether ``amount`` tokens fit every window, and reserve them.

        Windows are checked hour, day, week, then project. The first one
        that cannot hold the request is reported; nothing is consumed on
        rejection.

        Args:
            amount: Tokens requested.
            project_id: Optional project scope with its own window.
            consume: If False, only check; do not reserve.
            context: Caller details stored with the usage record, e.g.
                task id, task type and whether the request was degraded.

        Returns:
            AllowanceDecision describing the outcome.
        """
        validate_amount(amount)
        pending: list[GovernorEvent] = []

        with self._lock:
            now = self._clock()
            self._stats["total_requests"] += 1
            pending.extend(self._rollover(now))

            limiting = self._find_limiting_window(amount, project_id)

            if limiting is not None:
                self._stats["blocked_requests"] += 1
                available = limiting.available or 0
                pending.append(BudgetExceeded(
                    requested=amount,
                    available=available,
                    window=limiting.key,
                    timestamp=now,
                ))
                decision = AllowanceDecision(
                    allowed=False,
                    requested=amount,
                    level=self._level,
                    remaining=self._remaining(project_id),
                    limiting_window=limiting.period.value,
                    available=available,
                )
            else:
                if consume:
                    pending.extend(self._consume(amount, project_id, now, context))
                decision = AllowanceDecision(
                    allowed=True,
                    requested=amount,
                    level=self._level,
                    remaining=self._remaining(project_id),
                    suggestions=self._usage_suggestions(),
                )

        self.events.publish_all(pending)
        return decision

    def record_consumption(
        self,
        amount: int,
        project_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Add ``amount`` to every active window.

        Unlike request_allowance this does not check limits; use it to
        reconcile actual usage after the work ran.
        """
        validate_amount(amount)
        pending: list[GovernorEvent] = []

        with self._lock:
            now = self._clock()
            pending.extend(self._rollover(now))
            pending.extend(self._consume(amount, project_id, now, context))

        self.events.publish_all(pending)

    def _find_limiting_window(
        self,
        amount: int,
        project_id: Optional[str],
    ) -> Optional[BudgetWindow]:
        for period in GATED_PERIODS:
            window = self._windows[period]
            if amount > window.limit - window.consumed:
                return window

        if project_id is not None:
            window = self._project_window(project_id)
            if amount > window.limit - window.consumed:
                return window

        return None

    def _project_window(self, project_id: str) -> BudgetWindow:
        window = self._projects.get(project_id)
        if window is None:
            window = BudgetWindow(
                BudgetPeriod.PROJECT,
                self.config.project_limit,
                0,
                self._clock(),
                project_id=project_id,
            )
            self._projects[project_id] = window
        return window

    def _consume(
        self,
        amount: int,
        project_id: Optional[str],
        now: float,
        context: Optional[dict[str, Any]] = None,
    ) -> list[GovernorEvent]:
        touched = list(self._windows.values())
        if project_id is not None:
            touched.append(self._project_window(project_id))

        for window in touched:
            window.consumed += amount

        events: list[GovernorEvent] = []
        events.extend(self._check_thresholds(touched, now))
        events.extend(self._update_level(now))

        context = dict(context or {})
        self._history.append(UsageRecord(
            timestamp=now,
            amount=amount,
            project_id=project_id,
            level=self._level,
            optimized=bool(context.get("optimized", False)),
            context=context,
        ))
        events.append(UsageRecorded(
            amount=amount,
            total=self._windows[BudgetPeriod.SESSION].consumed,
            project_id=project_id,
            level=self._level.value,
            context=dict(context),
            timestamp=now,
        ))
        return events

    # =========================================================================
    # Optimization level
    # =========================================================================

    def current_level(self) -> OptimizationLevel:
        """Derive the optimization level from live window state."""
        with self._lock:
            return self._level_for(self._max_utilization())

    def _max_utilization(self) -> float:
        return max(self._windows[p].utilization for p in GATED_PERIODS)

    def _level_for(self, utilization: float) -> OptimizationLevel:
        if utilization >= self.config.aggressive_threshold:
            return OptimizationLevel.AGGRESSIVE
        if utilization >= self.config.warning_threshold:
            return OptimizationLevel.MODERATE
        return OptimizationLevel.STANDARD

    def _update_level(self, now: float) -> list[GovernorEvent]:
        utilization = self._max_utilization()
        level = self._level_for(utilization)
        if level == self._level:
            return []

        previous = self._level
        self._level = level

        if level == OptimizationLevel.AGGRESSIVE:
            reason = "approaching-limit"
        elif level == OptimizationLevel.MODERATE:
            reason = "moderate-usage"
        else:
            reason = "normal-usage"

        return [LevelChanged(
            previous=previous.value,
            current=level.value,
            utilization=utilization,
            reason=reason,
            timestamp=now,
        )]

    # =========================================================================
    # Alerts
    # =========================================================================

    def _check_thresholds(
        self,
        windows: list[BudgetWindow],
        now: float,
    ) -> list[GovernorEvent]:
        """Raise an alert for each threshold a window just crossed upward."""
        thresholds = (
            self.config.warning_threshold,
            self.config.aggressive_threshold,
            1.0,
        )
        events: list[GovernorEvent] = []

        for window in windows:
            if window.limit is None or window.period == BudgetPeriod.SESSION:
                continue

            utilization = window.utilization
            previous = self._last_utilization.get(window.key, 0.0)
            self._last_utilization[window.key] = utilization

            for threshold, severity in zip(thresholds, ALERT_SEVERITIES):
                if not previous < threshold <= utilization:
                    continue

                last = self._last_alerted.get((window.key, threshold))
                if last is not None and now - last < self.config.alert_cooldown_seconds:
                    continue

                self._last_alerted[(window.key, threshold)] = now
                alert = BudgetAlert(
                    window=window.key,
                    threshold=threshold,
                    severity=severity,
                    utilization=utilization,
                    consumed=window.consumed,
                    limit=window.limit,
                    timestamp=now,
                )
                self._alerts.append(alert)
                events.append(alert)

        return events

    def get_alerts(self, limit: int = 10) -> list[BudgetAlert]:
        """Return the most recent alerts, oldest first."""
        with self._lock:
            return list(self._alerts)[-limit:]

    # =========================================================================
    # Degradation
    # =========================================================================

    def degrade(
        self,
        amount: int,
        context_flags: Optional[ContextFlags] = None,
        assumed_tier: Optional[ModelTier] = None,
    ) -> DegradeResult:
        """
        Shrink a rejected request's estimate.

        Reductions apply in order, each only if its precondition holds:
        tier downgrade (x0.5 from the top tier, x0.2 from a middle tier),
        context compression (x0.7), caching (x0.5), then a context-window
        trim (x0.8) if the result is still above a tenth of the hourly limit.

        The caller resubmits the reduced amount once; this method never
        loops on its own output.
        """
        validate_amount(amount)
        flags = context_flags or ContextFlags()
        strategies: list[str] = []
        reduced = float(amount)

        if assumed_tier is not None:
            if assumed_tier.rank >= self.tier_count:
                strategies.append("downgrade-tier")
                reduced *= TOP_TIER_DOWNGRADE
            elif assumed_tier.rank > 1:
                strategies.append("downgrade-tier")
                reduced *= MIDDLE_TIER_DOWNGRADE

        if flags.can_compress_context:
            strategies.append("compress-context")
            reduced *= COMPRESS_CONTEXT_FACTOR

        if flags.has_cacheable_content:
            strategies.append("aggressive-caching")
            reduced *= CACHEABLE_CONTENT_FACTOR

        if reduced > self.config.hourly_limit * self.config.context_trim_fraction:
            strategies.append("reduce-context-window")
            reduced *= CONTEXT_TRIM_FACTOR

        result = DegradeResult(
            original=amount,
            amount=math.floor(reduced),
            strategies=tuple(strategies),
            suggestions=[dict(_SUGGESTIONS[s]) for s in strategies],
        )

        if result.reduction > 0:
            with self._lock:
                self._stats["optimized_requests"] += 1
                self._stats["tokens_saved"] += result.reduction
            self.events.publish(RequestDegraded(
                original=amount,
                reduced=result.amount,
                strategies=result.strategies,
                timestamp=self._clock(),
            ))

        return result

    # =========================================================================
    # Window maintenance
    # =========================================================================

    def tick(self) -> list[str]:
        """
        Roll over every window whose period has elapsed.

        Returns:
            Keys of the windows that were reset.
        """
        with self._lock:
            events = self._rollover(self._clock())
        self.events.publish_all(events)
        return [e.window for e in events if isinstance(e, WindowReset)]

    def _rollover(self, now: float) -> list[GovernorEvent]:
        events: list[GovernorEvent] = []
        for period in GATED_PERIODS:
            window = self._windows[period]
            if window.is_expired(now):
                used = window.reset(now)
                self._last_utilization[window.key] = 0.0
                logger.debug("Reset %s window after %s tokens", window.key, used)
                events.append(WindowReset(window=window.key, consumed=used, timestamp=now))

        if events:
            events.extend(self._update_level(now))
        return events

    def start_maintenance(self) -> "BudgetMaintenance":
        """Start the background rollover tick (idempotent)."""
        with self._lock:
            if self._maintenance is None:
                self._maintenance = BudgetMaintenance(
                    self, self.config.maintenance_interval_seconds
                )
            maintenance = self._maintenance
        maintenance.start()
        return maintenance

    def stop_maintenance(self) -> None:
        """Stop the background tick. Safe to call repeatedly."""
        with self._lock:
            maintenance = self._maintenance
        if maintenance is not None:
            maintenance.stop()

    def reset_session(self) -> None:
        """Zero the session window."""
        with self._lock:
            self._windows[BudgetPeriod.SESSION].reset(self._clock())

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_window(
        self,
        period: BudgetPeriod,
        project_id: Optional[str] = None,
    ) -> Optional[BudgetWindow]:
        """Return a copy of one window, or None for an unseen project."""
        with self._lock:
            if period == BudgetPeriod.PROJECT:
                window = self._projects.get(project_id)
            else:
                window = self._windows.get(period)
            return replace(window) if window is not None else None

    def get_remaining(self, project_id: Optional[str] = None) -> dict[str, int]:
        """Remaining tokens per gated window."""
        with self._lock:
            return self._remaining(project_id)

    def _remaining(self, project_id: Optional[str]) -> dict[str, int]:
        remaining = {p.value: self._windows[p].available for p in GATED_PERIODS}
        if project_id is not None and project_id in self._projects:
            remaining[BudgetPeriod.PROJECT.value] = self._projects[project_id].available
        return remaining

    def _usage_suggestions(self) -> list[str]:
        suggestions = []
        usage = self._windows[BudgetPeriod.HOUR].utilization
        if usage > 0.5:
            suggestions.append("Consider enabling cache warming for frequently used tasks")
        if usage > 0.7:
            suggestions.append("Review recent operations for optimization opportunities")
        return suggestions

    def get_usage_history(self, limit: Optional[int] = None) -> list[UsageRecord]:
        """Return recorded usage, oldest first; ``limit`` keeps only the newest entries."""
        with self._lock:
            history = list(self._history)
        if limit is not None:
            history = history[-limit:] if limit > 0 else []
        return history

    def get_statistics(self) -> dict:
        """
        Get usage statistics.

        Returns:
            Dict with usage, limits, remaining, level, counters and recent alerts.
        """
        with self._lock:
            total = self._stats["total_requests"]
            return {
                "usage": {p.value: w.consumed for p, w in self._windows.items()},
                "limits": {p.value: w.limit for p, w in self._windows.items()},
                "projects": {
                    project_id: {"consumed": w.consumed, "limit": w.limit}
                    for project_id, w in self._projects.items()
                },
                "remaining": self._remaining(None),
                "optimization_level": self._level_for(self._max_utilization()).value,
                "stats": {
                    **self._stats,
                    "block_rate": self._stats["blocked_requests"] / total if total else 0.0,
                    "optimization_rate": self._stats["optimized_requests"] / total if total else 0.0,
                },
                "alerts": [a.to_dict() for a in list(self._alerts)[-10:]],
                "history_size": len(self._history),
            }


class BudgetMaintenance:
    """
    Background thread that calls ``BudgetTracker.tick`` on an interval.

    start() and stop() are both idempotent; a stopped instance can be
    started again.
    """

    def __init__(self, tracker: BudgetTracker, interval_seconds: float = 60.0):
        self.tracker = tracker
        self.interval_seconds = interval_seconds
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="governor-budget-maintenance",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_seconds):
            try:
                self.tracker.tick()
            except Exception:
                logger.exception("Budget maintenance tick failed")
