"""
Input validation for Governor.

Rejects malformed tasks and amounts before any state is touched.
"""

import math
from typing import Any, Sequence


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


MAX_DESCRIPTION_LENGTH = 1_000_000  # characters


def _require_text(value: Any, field_name: str) -> None:
    if not isinstance(value, str):
        raise ValidationError(
            f"{field_name} must be a string, got {type(value).__name__}"
        )
    if not value.strip():
        raise ValidationError(f"{field_name} cannot be empty or whitespace-only")


def validate_task(task: Any) -> None:
    """
    Validate a task before it is scored or routed.

    Args:
        task: Task instance (or any object with the same attributes)

    Raises:
        ValidationError: If an identity field is missing or a hint is malformed
    """
    if task is None:
        raise ValidationError("task is required")

    for field_name in ("task_id", "description", "task_type"):
        if not hasattr(task, field_name):
            raise ValidationError(f"task is missing required field '{field_name}'")
        _require_text(getattr(task, field_name), field_name)

    if len(task.description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"description too long: {len(task.description):,} characters "
            f"(max: {MAX_DESCRIPTION_LENGTH:,})"
        )

    characteristics = getattr(task, "characteristics", ())
    if isinstance(characteristics, (str, bytes)):
        raise ValidationError(
            "characteristics must be a collection of feature names, not a single string"
        )
    for name in characteristics or ():
        if not isinstance(name, str):
            raise ValidationError(
                f"characteristics must be strings, got {type(name).__name__}"
            )

    hint = getattr(task, "complexity_hint", None)
    if hint is not None:
        if isinstance(hint, bool) or not isinstance(hint, (int, float)):
            raise ValidationError(
                f"complexity_hint must be a number, got {type(hint).__name__}"
            )
        if math.isnan(hint):
            raise ValidationError("complexity_hint cannot be NaN")


QUALITY_SCORES = {"high": 1.0, "medium": 0.7, "low": 0.4}


def validate_metrics(metrics: Any) -> None:
    """
    Validate outcome metrics before any learning state is touched.

    Args:
        metrics: None or a dict. ``response_time`` must be a non-negative
            number; ``quality`` must be one of "high", "medium", "low".

    Raises:
        ValidationError: If metrics or a known metric is malformed
    """
    if metrics is None:
        return
    if not isinstance(metrics, dict):
        raise ValidationError(f"metrics must be a dict, got {type(metrics).__name__}")

    response_time = metrics.get("response_time")
    if response_time is not None:
        if isinstance(response_time, bool) or not isinstance(response_time, (int, float)):
            raise ValidationError(
                f"response_time must be a number, got {type(response_time).__name__}"
            )
        if math.isnan(response_time) or math.isinf(response_time) or response_time < 0:
            raise ValidationError(
                f"response_time must be a finite non-negative number, got {response_time}"
            )

    quality = metrics.get("quality")
    if quality is not None and (not isinstance(quality, str) or quality not in QUALITY_SCORES):
        raise ValidationError(
            f"quality must be one of {sorted(QUALITY_SCORES)}, got {quality!r}"
        )


def validate_amount(amount: Any, field_name: str = "amount") -> None:
    """
    Validate a token amount.

    Raises:
        ValidationError: If amount is not a non-negative integer
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(
            f"{field_name} must be an integer, got {type(amount).__name__}"
        )
    if amount < 0:
        raise ValidationError(f"{field_name} cannot be negative, got {amount}")


def validate_probability(value: Any, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"{field_name} must be a number, got {type(value).__name__}"
        )
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{field_name} must be between 0 and 1, got {value}")


def validate_tiers(tiers: Sequence[Any]) -> None:
    """
    Validate an ordered tier list.

    Raises:
        ValidationError: If fewer than two tiers are given or ranks are not 1..K
    """
    if len(tiers) < 2:
        raise ValidationError(f"at least 2 tiers are required, got {len(tiers)}")

    ranks = [tier.rank for tier in tiers]
    if ranks != list(range(1, len(tiers) + 1)):
        raise ValidationError(f"tier ranks must be 1..{len(tiers)} in order, got {ranks}")

    ids = [tier.tier_id for tier in tiers]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"tier ids must be unique, got {ids}")


def validate_cutoffs(cutoffs: Sequence[float], tier_count: int, level: str) -> None:
    """
    Validate one level's score cutoffs.

    Raises:
        ValidationError: If the cutoffs do not partition [0, 10] into tier_count ranges
    """
    if len(cutoffs) != tier_count - 1:
        raise ValidationError(
            f"{level} needs {tier_count - 1} cutoffs for {tier_count} tiers, "
            f"got {len(cutoffs)}"
        )
    previous = 0.0
    for cutoff in cutoffs:
        if not previous <= cutoff <= 10.0:
            raise ValidationError(
                f"{level} cutoffs must be ascending within [0, 10], got {list(cutoffs)}"
            )
        previous = cutoff
