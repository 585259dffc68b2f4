"""
Runs API
========
Manual trigger, status polling and abort for pipeline runs.

Routes:
    POST /runs                 — start a run (optional branch override)
    GET  /runs                 — runs known to this process, newest first
    GET  /runs/{run_id}        — per-stage status and terminal status
    GET  /runs/{run_id}/report — terminal report text
    POST /runs/{run_id}/abort  — request cancellation
"""
import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, field_validator

from deploy_pipeline.core.errors import ConfigError
from deploy_pipeline.models.pipeline_run import PipelineRun, TriggerSource
from deploy_pipeline.services.run_manager import RunManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/runs", tags=["Runs"])


@lru_cache(maxsize=1)
def get_run_manager() -> RunManager:
    return RunManager()


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------
class TriggerRequest(BaseModel):
    branch: Optional[str] = None

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v or v.startswith("-") or " " in v:
            raise ValueError("Invalid branch name")
        return v


class StageSummary(BaseModel):
    name: str
    status: str
    fatal: bool
    duration_seconds: float
    error_type: str = ""
    error_message: str = ""
    warnings: List[str] = []


class RunSummary(BaseModel):
    run_id: int
    trigger: str
    branch: str
    status: str
    current_stage: str
    failed_stage: str
    stages: List[StageSummary]


def to_summary(run: PipelineRun) -> RunSummary:
    return RunSummary(
        run_id=run.run_id,
        trigger=run.trigger.value,
        branch=run.branch,
        status=run.status.value,
        current_stage=run.current_stage,
        failed_stage=run.failed_stage,
        stages=[
            StageSummary(
                name=s.name,
                status=s.status.value,
                fatal=s.fatal,
                duration_seconds=s.duration_seconds,
                error_type=s.error_type,
                error_message=s.error_message,
                warnings=s.warnings,
            )
            for s in run.stages
        ],
    )


def _require(run: Optional[PipelineRun], run_id: int) -> PipelineRun:
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run #{run_id} not found")
    return run


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("", response_model=RunSummary, status_code=202)
def trigger_run(request: TriggerRequest, manager: RunManager = Depends(get_run_manager)):
    """Start a manual run of the configured repository."""
    try:
        run = manager.trigger(TriggerSource.MANUAL, branch=request.branch)
    except ConfigError as e:
        logger.error("[API] Run not started: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    return to_summary(run)


@router.get("", response_model=List[RunSummary])
def list_runs(manager: RunManager = Depends(get_run_manager)):
    return [to_summary(r) for r in manager.list_runs()]


@router.get("/{run_id}", response_model=RunSummary)
def get_run(run_id: int, manager: RunManager = Depends(get_run_manager)):
    return to_summary(_require(manager.get(run_id), run_id))


@router.get("/{run_id}/report", response_class=PlainTextResponse)
def get_report(run_id: int, manager: RunManager = Depends(get_run_manager)):
    run = _require(manager.get(run_id), run_id)
    if not run.is_terminal:
        raise HTTPException(status_code=409, detail=f"Run #{run_id} is still {run.status.value}")
    return run.report


@router.post("/{run_id}/abort", response_model=RunSummary)
def abort_run(run_id: int, manager: RunManager = Depends(get_run_manager)):
    run = _require(manager.abort(run_id), run_id)
    logger.info("[API] Abort requested for run #%d (status=%s)", run_id, run.status.value)
    return to_summary(run)
