"""
Pipeline Executor
=================
The central state machine of the delivery pipeline.
Drives one run through an ordered list of StageDefinitions.

States:
    idle → running(stage_i) → running(stage_i+1) | failed | succeeded
    running(stage_i) → aborted   (external cancellation)

Core Rules:
    - Advance only when the current stage returns successfully.
    - Any non-success exit signal (raised error, non-zero tool exit turned
      into an error by the stage, failed post-condition, timeout) moves the
      run straight to failed. Later stages are marked skipped and never
      invoked.
    - Non-fatal stages record their failure and the run continues.
    - Credentials are checked out per stage and released on stage exit.
    - No stage is retried. A retry is a new run.
    - On completion a terminal report is emitted and the run is archived.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from deploy_pipeline.core.config import RunConfig
from deploy_pipeline.core.errors import PipelineAborted, PipelineError
from deploy_pipeline.core.report_formatter import format_report
from deploy_pipeline.executor.cancellation import AbortSignal
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.models.pipeline_run import PipelineRun, RunStatus, StageResult, StageStatus
from deploy_pipeline.models.stage import StageDefinition, StageOutcome
from deploy_pipeline.security.credentials import CredentialStore
from deploy_pipeline.services.results_writer import ResultsWriter
from deploy_pipeline.utils.logging_config import redact

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PipelineExecutor:
    """
    Runs the stages of one PipelineRun strictly in order.

    The executor exclusively owns its run record while it executes. Other
    threads may read the record (status polling) but never write it.
    """

    def __init__(
        self,
        run: PipelineRun,
        config: RunConfig,
        credentials: CredentialStore,
        abort: Optional[AbortSignal] = None,
        results_writer: Optional[ResultsWriter] = None,
    ) -> None:
        self.run_record = run
        self.config = config
        self.credentials = credentials
        self.abort = abort or AbortSignal()
        self.results_writer = results_writer
        self._outputs: Dict[str, Dict[str, Any]] = {}

    @property
    def outputs(self) -> Dict[str, Dict[str, Any]]:
        return self._outputs

    def run(self, stages: Sequence[StageDefinition]) -> RunStatus:
        """Execute ``stages`` and return the terminal RunStatus."""
        run = self.run_record
        run.stages = [
            StageResult(name=s.name, kind=s.kind.value, fatal=s.fatal) for s in stages
        ]
        tag = f"[RUN #{run.run_id}]"

        if self.abort.is_set():
            logger.warning("%s Aborted before start", tag)
            self._skip_from(0)
            run.transition(RunStatus.ABORTED)
            return self._finish()

        run.transition(RunStatus.RUNNING)
        logger.info("%s Started | branch=%s | stages=%d", tag, run.branch, len(stages))

        for index, stage in enumerate(stages):
            # --- Stage boundary: honour cancellation ---
            if self.abort.is_set():
                logger.warning("%s Abort observed before stage '%s'", tag, stage.name)
                self._skip_from(index)
                run.transition(RunStatus.ABORTED)
                break

            result = run.stages[index]
            run.current_stage = stage.name
            result.status = StageStatus.RUNNING
            result.started_at = _now()
            stage_start = time.monotonic()
            logger.info("%s Stage %d/%d: %s", tag, index + 1, len(stages), stage.name)

            error: Optional[BaseException] = None
            outcome: Optional[StageOutcome] = None
            try:
                with self.credentials.checkout(stage.name, stage.credentials) as scoped:
                    ctx = StageContext.build(
                        run_id=run.run_id,
                        stage_name=stage.name,
                        config=self.config,
                        credentials=scoped,
                        abort=self.abort,
                        outputs=self._outputs,
                        timeout_seconds=stage.timeout_seconds,
                    )
                    outcome = stage.action(ctx) or StageOutcome()
                    if stage.post_condition is not None and not stage.post_condition(ctx, outcome):
                        raise PipelineError(
                            f"Post-condition failed for stage '{stage.name}'",
                            outcome.output,
                            stage=stage.name,
                        )
            except Exception as exc:
                error = exc

            result.finished_at = _now()
            result.duration_seconds = round(time.monotonic() - stage_start, 3)

            # --- Success: record outputs and advance ---
            if error is None:
                result.status = StageStatus.SUCCEEDED
                result.output = redact(outcome.output)
                result.data = dict(outcome.data)
                result.warnings = [redact(w) for w in outcome.warnings]
                self._outputs[stage.name] = dict(outcome.data)
                logger.info(
                    "%s Stage '%s' succeeded in %.2fs", tag, stage.name, result.duration_seconds
                )
                for warning in result.warnings:
                    logger.warning("%s [%s] %s", tag, stage.name, warning)
                if self.abort.is_set():
                    logger.warning("%s Abort observed after stage '%s'", tag, stage.name)
                    self._skip_from(index + 1)
                    run.transition(RunStatus.ABORTED)
                    break
                continue

            # --- Failure ---
            self._record_failure(result, error)

            if self.abort.is_set() or isinstance(error, PipelineAborted):
                logger.warning("%s Stage '%s' stopped by abort", tag, stage.name)
                self._skip_from(index + 1)
                run.transition(RunStatus.ABORTED)
                break

            fatal = stage.fatal and getattr(error, "fatal", True)
            if not fatal:
                result.fatal = False
                logger.warning(
                    "%s Non-fatal failure in '%s': %s", tag, stage.name, result.error_message
                )
                continue

            logger.error(
                "%s Stage '%s' failed: %s: %s",
                tag, stage.name, result.error_type, result.error_message,
            )
            run.failed_stage = stage.name
            self._skip_from(index + 1)
            run.transition(RunStatus.FAILED)
            break

        if run.status == RunStatus.RUNNING:
            run.transition(RunStatus.SUCCEEDED)

        return self._finish()

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _record_failure(self, result: StageResult, error: BaseException) -> None:
        result.status = StageStatus.FAILED
        result.error_type = type(error).__name__
        result.error_message = redact(str(error))
        output = getattr(error, "output", "") or ""
        result.output = redact(output)
        if not isinstance(error, PipelineError):
            logger.debug("Unexpected exception in stage %s", result.name, exc_info=error)
        extra = {}
        for attr in ("pushed_tags", "gate_status", "timeout_seconds", "failed", "total"):
            if hasattr(error, attr):
                extra[attr] = getattr(error, attr)
        if extra:
            result.data = {**result.data, **extra}

    def _skip_from(self, index: int) -> None:
        for result in self.run_record.stages[index:]:
            if result.status == StageStatus.PENDING:
                result.status = StageStatus.SKIPPED

    def _finish(self) -> RunStatus:
        run = self.run_record
        run.report = format_report(run)
        if run.status == RunStatus.SUCCEEDED:
            logger.info("Pipeline run complete.\n%s", run.report)
        else:
            logger.error("Pipeline run complete.\n%s", run.report)

        if self.results_writer is not None:
            try:
                self.results_writer.write_results(run)
            except Exception as exc:
                logger.error("Results writer failed: %s", exc)

        return run.status


def stage_statuses(run: PipelineRun) -> List[str]:
    """Convenience for logs and tests: ``["succeeded", "failed", "skipped", ...]``."""
    return [s.status.value for s in run.stages]
