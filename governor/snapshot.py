"""
Snapshot schema for Governor's learned state.

The host stores the JSON blob wherever it likes; these models only
define and validate its shape.
"""

from datetime import datetime, UTC

from pydantic import BaseModel, Field


SNAPSHOT_VERSION = 1


class SnapshotError(ValueError):
    """Raised when a snapshot blob cannot be restored."""
    pass


class TierAccuracyModel(BaseModel):
    correct: int = Field(0, ge=0)
    total: int = Field(0, ge=0)


class TierPerformanceModel(BaseModel):
    total_tasks: int = Field(0, ge=0)
    successful: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    avg_response_time: float = 0.0


class TaskTypeStatsModel(BaseModel):
    total: int = Field(0, ge=0)
    successful: int = Field(0, ge=0)
    avg_complexity: float = 0.0
    avg_response_time: float = 0.0
    response_samples: int = Field(0, ge=0)
    avg_quality: float = Field(0.0, ge=0.0, le=1.0)
    quality_samples: int = Field(0, ge=0)
    tier_distribution: dict[str, int] = Field(default_factory=dict)
    characteristic_counts: dict[str, int] = Field(default_factory=dict)


class CorrectionModel(BaseModel):
    task_type: str
    selected_tier: str
    corrected_tier: str
    complexity_score: float
    adjustment: int


class LearningSnapshot(BaseModel):
    """Everything that influences future scoring and routing."""
    version: int = SNAPSHOT_VERSION
    saved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    weights: dict[str, int]
    weight_adjustments: dict[str, float] = Field(default_factory=dict)
    historical_complexity: dict[str, float] = Field(default_factory=dict)
    tier_accuracy: dict[str, TierAccuracyModel] = Field(default_factory=dict)
    tier_performance: dict[str, TierPerformanceModel] = Field(default_factory=dict)
    task_types: dict[str, TaskTypeStatsModel] = Field(default_factory=dict)
    corrections: list[CorrectionModel] = Field(default_factory=list)
    outcomes_recorded: int = Field(0, ge=0)
    outcomes_since_tuning: int = Field(0, ge=0)
    successful_outcomes: int = Field(0, ge=0)
    failed_outcomes: int = Field(0, ge=0)
