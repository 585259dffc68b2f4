"""
Report Formatter
================
THE SINGLE SOURCE OF TRUTH for the terminal run report.

STRICT DETERMINISM CONTRACT:
  - This module NEVER reads environment variables.
  - Given the same run record, it ALWAYS returns the same text.
  - Secrets are masked before anything leaves this module.

Layout:
    Pipeline run #{id} (branch {branch}, trigger {trigger})
      {stage name padded} → {STATUS} ({seconds}s)
      ...
    Result: {STATUS}[ at stage '{failing stage}']
    {ErrorType}: {message}
    --- {failing stage} output ---
    {diagnostic output}
"""
from deploy_pipeline.core.constants import ARROW
from deploy_pipeline.models.pipeline_run import PipelineRun, RunStatus, StageResult, StageStatus
from deploy_pipeline.utils.logging_config import redact

_NAME_WIDTH = 20


def format_stage_line(result: StageResult) -> str:
    line = f"  {result.name:<{_NAME_WIDTH}} {ARROW} {result.status.value.upper()}"
    if result.status in (StageStatus.SUCCEEDED, StageStatus.FAILED):
        line += f" ({result.duration_seconds:.1f}s)"
    if result.status == StageStatus.FAILED and not result.fatal:
        line += " [non-fatal]"
    if result.warnings:
        line += f" [{len(result.warnings)} warning(s)]"
    return line


def format_report(run: PipelineRun) -> str:
    lines = [
        f"Pipeline run #{run.run_id} (branch {run.branch or '-'}, trigger {run.trigger.value})"
    ]
    lines.extend(format_stage_line(s) for s in run.stages)

    result_line = f"Result: {run.status.value.upper()}"
    if run.status == RunStatus.FAILED and run.failed_stage:
        result_line += f" at stage '{run.failed_stage}'"
    lines.append(result_line)

    failing = run.stage(run.failed_stage) if run.failed_stage else None
    if failing is not None:
        if failing.error_type:
            lines.append(f"{failing.error_type}: {failing.error_message}")
        if failing.output:
            lines.append(f"--- {failing.name} output ---")
            lines.append(failing.output.rstrip())

    for result in run.stages:
        for warning in result.warnings:
            lines.append(f"WARNING [{result.name}]: {warning}")

    return redact("\n".join(lines))
