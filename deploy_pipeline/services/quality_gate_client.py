"""
Quality Gate Client
===================
Blocking, deadline-bounded wait for the static-analysis service's verdict.

The scanner submits an analysis and gets back a background task id. The
service computes asynchronously; this client polls the task until it
completes, then reads the quality gate status of the resulting analysis.

FAIL-CLOSED CONTRACT:
    - Only an explicit passing gate status yields ``passed=True``.
    - No verdict before the deadline → QualityGateTimeout.
    - Failed/cancelled task, refused request (4xx), or a missing analysis
      id → QualityGateRejected.
    - Transient errors (5xx, network) are retried until the deadline.
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from deploy_pipeline.core.errors import PipelineAborted, QualityGateRejected, QualityGateTimeout
from deploy_pipeline.executor.cancellation import AbortSignal
from deploy_pipeline.models.quality_verdict import QualityVerdict

logger = logging.getLogger(__name__)

_TASK_DONE = "SUCCESS"
_TASK_FAILED = ("FAILED", "CANCELED")
_MAX_BACKOFF = 30.0


class QualityGateClient:
    """
    Client for a SonarQube-compatible Web API.

    ``clock`` and ``sleep`` are injectable so the deadline logic can be
    exercised without waiting. Without ``sleep`` the backoff waits on the
    run's abort signal, so an abort ends the wait at once.
    """

    def __init__(
        self,
        host_url: str,
        token: Optional[str] = None,
        poll_interval: float = 5.0,
        http_timeout: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.host_url = host_url.rstrip("/")
        self.poll_interval = poll_interval
        self.http_timeout = http_timeout
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self.headers = {
            "Accept": "application/json",
            "User-Agent": "deploy-pipeline",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.host_url,
            headers=self.headers,
            timeout=self.http_timeout,
            transport=self._transport,
        )

    def wait_for_verdict(
        self,
        task_id: str,
        timeout_seconds: float,
        abort: Optional[AbortSignal] = None,
    ) -> QualityVerdict:
        """
        Block until the gate verdict for ``task_id`` is known.

        Returns a QualityVerdict (passing or not). Raises QualityGateTimeout
        when ``timeout_seconds`` elapse first.
        """
        start = self._clock()
        deadline = start + timeout_seconds

        with self._client() as client:
            task = self._poll(
                client, "/api/ce/task", {"id": task_id}, deadline, timeout_seconds, abort,
                done=self._task_finished,
            )["task"]
            status = task.get("status", "")
            if status in _TASK_FAILED:
                raise QualityGateRejected(
                    f"Analysis task {task_id} ended with status {status}",
                    task.get("errorMessage", ""),
                    gate_status=status,
                )

            analysis_id = task.get("analysisId", "")
            if not analysis_id:
                raise QualityGateRejected(
                    f"Analysis task {task_id} completed without an analysis id",
                    gate_status="NONE",
                )

            payload = self._poll(
                client, "/api/qualitygates/project_status", {"analysisId": analysis_id},
                deadline, timeout_seconds, abort,
                done=lambda data: "projectStatus" in data,
            )

        project_status = payload.get("projectStatus", {})
        verdict = QualityVerdict.from_gate_status(
            project_status.get("status", "NONE"),
            task_id=task_id,
            analysis_id=analysis_id,
            conditions=project_status.get("conditions", []) or [],
            timeout_seconds=timeout_seconds,
            waited_seconds=round(self._clock() - start, 3),
        )
        logger.info(
            "Quality gate verdict | task=%s | status=%s | waited=%.1fs",
            task_id, verdict.gate_status, verdict.waited_seconds,
        )
        return verdict

    def _pause(self, seconds: float, abort: Optional[AbortSignal]) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif abort is not None:
            abort.wait(seconds)
        else:
            time.sleep(seconds)

    @staticmethod
    def _task_finished(data: Dict[str, Any]) -> bool:
        status = (data.get("task") or {}).get("status", "")
        return status == _TASK_DONE or status in _TASK_FAILED

    def _poll(
        self,
        client: httpx.Client,
        path: str,
        params: Dict[str, str],
        deadline: float,
        timeout_seconds: float,
        abort: Optional[AbortSignal],
        done: Callable[[Dict[str, Any]], bool],
    ) -> Dict[str, Any]:
        """GET ``path`` until ``done(json)`` holds, with backoff, before ``deadline``."""
        backoff = self.poll_interval
        last_state = ""

        while True:
            if abort is not None and abort.is_set():
                raise PipelineAborted("Quality gate wait aborted", stage="Static Analyzer")
            if self._clock() >= deadline:
                raise QualityGateTimeout(
                    f"No quality gate verdict within {timeout_seconds:.0f}s",
                    f"last state: {last_state or 'no response'}",
                    timeout_seconds=timeout_seconds,
                )

            try:
                response = client.get(path, params=params)
                response.raise_for_status()
                data = response.json()
                if done(data):
                    return data
                state = str((data.get("task") or {}).get("status", "pending"))
                if state != last_state:
                    logger.info("Analysis %s status: %s", params, state)
                    last_state = state

            except httpx.HTTPStatusError as http_err:
                status_code = http_err.response.status_code
                if 400 <= status_code < 500:
                    # 4xx = permanent (unknown task, bad token)
                    raise QualityGateRejected(
                        f"Analysis service refused {path} (HTTP {status_code})",
                        http_err.response.text[:500],
                        gate_status=f"HTTP_{status_code}",
                    )
                logger.error("Analysis service error (HTTP %d), retrying", status_code)
                last_state = f"HTTP {status_code}"
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Error polling analysis service: %s", e)
                last_state = f"{type(e).__name__}"

            remaining = deadline - self._clock()
            if remaining <= 0:
                continue
            self._pause(min(backoff, remaining), abort)
            backoff = min(backoff * 1.5, _MAX_BACKOFF)
