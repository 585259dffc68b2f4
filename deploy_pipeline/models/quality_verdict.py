"""
Quality Verdict Model
=====================
Result of waiting on the analysis service's quality gate.

Fields:
    passed          — True only for an explicit passing gate status
    gate_status     — raw status from the service (OK, ERROR, WARN, NONE)
    task_id         — analysis task the verdict belongs to
    analysis_id     — analysis id reported once the task completed
    conditions      — per-metric gate conditions as returned by the service
    timeout_seconds — the deadline that bounded the wait
    waited_seconds  — how long the pipeline actually blocked
"""
from typing import Any, Dict, List

from pydantic import BaseModel

PASSING_GATE_STATUSES = {"OK"}


class QualityVerdict(BaseModel):
    passed: bool
    gate_status: str
    task_id: str = ""
    analysis_id: str = ""
    conditions: List[Dict[str, Any]] = []
    timeout_seconds: float = 0.0
    waited_seconds: float = 0.0

    @classmethod
    def from_gate_status(cls, gate_status: str, **kwargs: Any) -> "QualityVerdict":
        status = (gate_status or "NONE").upper()
        return cls(passed=status in PASSING_GATE_STATUSES, gate_status=status, **kwargs)

    def failing_conditions(self) -> List[Dict[str, Any]]:
        return [c for c in self.conditions if c.get("status") not in ("OK", None)]
