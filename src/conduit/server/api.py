"""API route handlers for pipelines, runs and approvals."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, ValidationError

from conduit.exceptions import InvalidDefinitionError, PipelineNotFoundError
from conduit.workflow.definition import PipelineDefinition
from conduit.workflow.engine import WorkflowEngine

router = APIRouter(tags=["api"])

logger = structlog.get_logger()


class StartRunRequest(BaseModel):
    """Request to start a pipeline run."""

    input: dict[str, Any] = Field(default_factory=dict)


class ApprovalRequest(BaseModel):
    """Approval decision for a waiting node."""

    approved: bool


def _engine(request: Request) -> WorkflowEngine:
    return request.app.state.engine


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/status")
async def status(request: Request) -> dict[str, int]:
    """Engine status counters."""
    return _engine(request).get_status()


@router.get("/pipelines")
async def list_pipelines(request: Request) -> list[dict[str, Any]]:
    """Summaries of every registered pipeline."""
    return [
        {
            "id": pipeline.id,
            "name": pipeline.name,
            "description": pipeline.description,
            "version": pipeline.version,
            "node_count": len(pipeline.nodes),
        }
        for pipeline in _engine(request).list_pipelines()
    ]


@router.get("/pipelines/{pipeline_id}")
async def get_pipeline(request: Request, pipeline_id: str) -> dict[str, Any]:
    pipeline = _engine(request).get_pipeline(pipeline_id)
    if pipeline is None:
        raise HTTPException(status_code=404, detail=f"Pipeline '{pipeline_id}' not found")
    return pipeline.to_dict()


@router.post("/pipelines", status_code=201)
async def register_pipeline(request: Request, payload: dict[str, Any]) -> dict[str, Any]:
    """Register (or replace) a pipeline from its JSON definition.

    Returns:
        The stored definition.
    """
    try:
        pipeline = PipelineDefinition.model_validate(payload)
        _engine(request).register(pipeline)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except InvalidDefinitionError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "problems": e.problems}) from e

    logger.info("Pipeline registered via API", id=pipeline.id)
    return pipeline.to_dict()


@router.delete("/pipelines/{pipeline_id}")
async def delete_pipeline(request: Request, pipeline_id: str) -> dict[str, Any]:
    if not _engine(request).unregister(pipeline_id):
        raise HTTPException(status_code=404, detail=f"Pipeline '{pipeline_id}' not found")
    return {"status": "deleted", "id": pipeline_id}


@router.post("/pipelines/{pipeline_id}/runs", status_code=202)
async def start_run(request: Request, pipeline_id: str, payload: StartRunRequest | None = None) -> dict[str, Any]:
    """Start a run in the background.

    Returns:
        Snapshot of the new run's context.
    """
    input_data = payload.input if payload else {}
    try:
        ctx = _engine(request).start(pipeline_id, input_data)
    except PipelineNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return ctx.to_dict(include_logs=False)


@router.get("/runs")
async def list_runs(request: Request) -> list[dict[str, Any]]:
    return [ctx.to_dict(include_logs=False) for ctx in _engine(request).get_all_runs()]


@router.get("/runs/{run_id}")
async def get_run(request: Request, run_id: str) -> dict[str, Any]:
    ctx = _engine(request).get_run(run_id)
    if ctx is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return ctx.to_dict()


@router.post("/runs/{run_id}/approvals/{node_id}")
async def decide_approval(request: Request, run_id: str, node_id: str, payload: ApprovalRequest) -> dict[str, Any]:
    """Deliver an approval decision.

    A decision with no pending approval is accepted and reported as
    ``delivered: false``.
    """
    delivered = _engine(request).handle_approval(run_id, node_id, payload.approved)
    return {"run_id": run_id, "node_id": node_id, "approved": payload.approved, "delivered": delivered}


@router.post("/runs/{run_id}/pause")
async def pause_run(request: Request, run_id: str) -> dict[str, Any]:
    engine = _engine(request)
    if engine.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    paused = engine.pause(run_id)
    if not paused:
        raise HTTPException(status_code=409, detail="Run is not running")
    return {"run_id": run_id, "status": "paused"}


@router.post("/runs/{run_id}/resume")
async def resume_run(request: Request, run_id: str) -> dict[str, Any]:
    engine = _engine(request)
    if engine.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")
    ctx = engine.resume(run_id)
    if ctx is None:
        raise HTTPException(status_code=409, detail="Run is not paused")
    return {"run_id": run_id, "status": ctx.status.value}
