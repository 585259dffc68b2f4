"""
Pipeline Run Model
==================
Pydantic models for one execution of the delivery pipeline.

Fields:
    run_id          — monotonically increasing build number
    trigger         — manual / schedule / scm_event
    branch          — branch fetched by this run
    status          — idle → running → succeeded | failed | aborted
    current_stage   — name of the stage in flight (empty when idle/terminal)
    stages          — one StageResult per declared stage, in order
    failed_stage    — first failing stage, if any
    report          — terminal report text emitted on completion

The run status is a small state machine; ``transition`` is the only way
to change it and rejects moves the pipeline never makes.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from deploy_pipeline.core.errors import InvalidTransition


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class TriggerSource(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"
    SCM_EVENT = "scm_event"


TERMINAL_STATUSES = {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED}

_TRANSITIONS: Dict[RunStatus, set] = {
    RunStatus.IDLE: {RunStatus.RUNNING, RunStatus.ABORTED},
    RunStatus.RUNNING: {RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ABORTED},
    RunStatus.SUCCEEDED: set(),
    RunStatus.FAILED: set(),
    RunStatus.ABORTED: set(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StageResult(BaseModel):
    name: str
    kind: str = ""
    status: StageStatus = StageStatus.PENDING
    fatal: bool = True
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    output: str = ""
    error_type: str = ""
    error_message: str = ""
    warnings: List[str] = []
    data: Dict[str, Any] = {}


class PipelineRun(BaseModel):
    run_id: int
    trigger: TriggerSource = TriggerSource.MANUAL
    branch: str = ""
    status: RunStatus = RunStatus.IDLE
    current_stage: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    stages: List[StageResult] = []
    failed_stage: str = ""
    report: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, new_status: RunStatus) -> None:
        """Move the run to ``new_status`` or raise InvalidTransition."""
        if new_status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Run #{self.run_id}: {self.status.value} -> {new_status.value} is not allowed"
            )
        self.status = new_status
        if new_status == RunStatus.RUNNING:
            self.started_at = _utcnow()
        elif new_status in TERMINAL_STATUSES:
            self.finished_at = _utcnow()
            self.current_stage = ""

    def stage(self, name: str) -> Optional[StageResult]:
        for result in self.stages:
            if result.name == name:
                return result
        return None
