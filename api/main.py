"""FastAPI server for Governor."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException, Header, Depends, Request
from pydantic import BaseModel, Field

from governor import (
    ContextFlags,
    Governor,
    SnapshotError,
    Task,
    ValidationError,
    load_config,
)


def _get_api_key() -> Optional[str]:
    return os.getenv("GOVERNOR_API_KEY")


def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    api_key = _get_api_key()
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@lru_cache(maxsize=1)
def _governor() -> Governor:
    return Governor(load_config())


app = FastAPI(title="Governor API", version="1.0.0")


class RouteRequest(BaseModel):
    task_id: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    task_type: str = Field(..., min_length=1)
    characteristics: List[str] = Field(default_factory=list)
    complexity_hint: Optional[float] = None
    can_compress_context: bool = False
    has_cacheable_content: bool = False
    estimated_input_tokens: int = Field(5000, ge=0)
    estimated_output_tokens: Optional[int] = Field(None, ge=0)
    project_id: Optional[str] = None
    assumed_tier: Optional[str] = None


class OutcomeRequest(BaseModel):
    selection_id: str = Field(..., min_length=1)
    success: bool
    corrected_tier: Optional[str] = None
    metrics: Dict[str, Any] = Field(default_factory=dict)


class ConsumptionRequest(BaseModel):
    amount: int = Field(..., ge=0)
    project_id: Optional[str] = None


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/route", dependencies=[Depends(_require_api_key)])
def route(req: RouteRequest, governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    task = Task(
        task_id=req.task_id,
        description=req.description,
        task_type=req.task_type,
        characteristics=frozenset(req.characteristics),
        complexity_hint=req.complexity_hint,
        context_flags=ContextFlags(
            can_compress_context=req.can_compress_context,
            has_cacheable_content=req.has_cacheable_content,
        ),
    )
    try:
        result = governor.route(
            task,
            estimated_input_tokens=req.estimated_input_tokens,
            estimated_output_tokens=req.estimated_output_tokens,
            project_id=req.project_id,
            assumed_tier=req.assumed_tier,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    response: Dict[str, Any] = {
        "admitted": result.admitted,
        "level": result.decision.level.value,
        "remaining": result.decision.remaining,
        "limiting_window": result.decision.limiting_window,
        "degraded_amount": result.degraded.amount if result.degraded else None,
        "strategies": list(result.degraded.strategies) if result.degraded else [],
    }
    if result.selection is not None:
        selection = result.selection
        response.update({
            "selection_id": selection.selection_id,
            "tier": selection.tier_id,
            "complexity_score": selection.complexity_score,
            "confidence": selection.confidence,
            "rationale": selection.rationale,
            "fallback_tier": selection.fallback_tier.tier_id,
            "exploratory": selection.exploratory,
            "estimated_cost": selection.cost_estimate.total_cost,
            "savings_pct": selection.cost_estimate.savings_pct,
        })
    return response


@app.post("/outcomes", dependencies=[Depends(_require_api_key)])
def outcomes(req: OutcomeRequest, governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    try:
        applied = governor.record_outcome(
            req.selection_id,
            req.success,
            corrected_tier=req.corrected_tier,
            metrics=req.metrics,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"applied": applied}


@app.get("/budget", dependencies=[Depends(_require_api_key)])
def budget(governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    return governor.budget.get_statistics()


@app.get("/budget/history", dependencies=[Depends(_require_api_key)])
def budget_history(limit: int = 50, governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    return {"history": [r.to_dict() for r in governor.budget.get_usage_history(limit)]}


@app.post("/budget/consumption", dependencies=[Depends(_require_api_key)])
def consumption(req: ConsumptionRequest, governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    governor.record_consumption(req.amount, req.project_id)
    return {
        "level": governor.current_level().value,
        "remaining": governor.budget.get_remaining(req.project_id),
    }


@app.get("/stats", dependencies=[Depends(_require_api_key)])
def stats(governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    return governor.get_statistics()


@app.get("/snapshot", dependencies=[Depends(_require_api_key)])
def export_snapshot(governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    return {"snapshot": governor.export_snapshot().decode("utf-8")}


@app.put("/snapshot", dependencies=[Depends(_require_api_key)])
async def restore_snapshot(request: Request, governor: Governor = Depends(_governor)) -> Dict[str, Any]:
    blob = await request.body()
    try:
        governor.restore_snapshot(blob)
    except SnapshotError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"restored": True}
