"""
Static Analyzer
===============
Two steps against the fetched workspace:

    1. Style checker → report file consumed by the analysis service.
       Informational: a failure here is a warning unless gating is enabled.
    2. Analysis scanner → submits the analysis, then blocks on the
       quality gate verdict. Only an explicit pass lets the run continue.
"""
import logging
import os
import shlex
from typing import Dict, Optional, Tuple

from deploy_pipeline.core.constants import ANALYSIS_CREDENTIAL
from deploy_pipeline.core.errors import QualityGateRejected, StyleCheckWarning
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.executor.tool_runner import ExecutionResult, run_in_container
from deploy_pipeline.models.stage import StageOutcome
from deploy_pipeline.services.quality_gate_client import QualityGateClient

logger = logging.getLogger(__name__)

# Written by the scanner into its working directory
REPORT_TASK_FILE = os.path.join(".scannerwork", "report-task.txt")


def check_style(ctx: StageContext) -> ExecutionResult:
    """Run the style checker. Raises StyleCheckWarning when no report is produced."""
    cfg = ctx.config
    execution = run_in_container(
        workspace_path=ctx.workspace,
        image=cfg.test_image,
        command=cfg.style_command,
        timeout_seconds=ctx.timeout_seconds,
        abort=ctx.abort,
        label="style",
    )
    report_file = os.path.join(ctx.workspace, cfg.style_report_path)
    if not execution.succeeded:
        raise StyleCheckWarning(
            f"Style checker exited with code {execution.exit_code}", execution.diagnostic()
        )
    if not os.path.exists(report_file):
        raise StyleCheckWarning(
            f"Style checker produced no report at {cfg.style_report_path}", execution.log_excerpt
        )
    return execution


def scanner_command(properties: Dict[str, str]) -> str:
    args = ["sonar-scanner"] + [f"-D{key}={value}" for key, value in properties.items() if value]
    return " ".join(shlex.quote(a) for a in args)


def read_report_task(workspace_path: str) -> Dict[str, str]:
    """Parse the scanner's ``key=value`` task file. Missing file → empty dict."""
    path = os.path.join(workspace_path, REPORT_TASK_FILE)
    if not os.path.exists(path):
        return {}
    values = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            key, sep, value = line.strip().partition("=")
            if sep:
                values[key] = value
    return values


def submit_analysis(ctx: StageContext, token: Optional[str]) -> Tuple[str, ExecutionResult]:
    """Run the scanner and return the background task id it reported."""
    cfg = ctx.config
    properties = cfg.analysis.scanner_properties(ctx.build_tag)
    properties["sonar.host.url"] = cfg.sonar_host_url

    environment = {"SONAR_HOST_URL": cfg.sonar_host_url}
    if token:
        environment["SONAR_TOKEN"] = token

    execution = run_in_container(
        workspace_path=ctx.workspace,
        image=cfg.scanner_image,
        command=scanner_command(properties),
        timeout_seconds=ctx.timeout_seconds,
        environment=environment,
        abort=ctx.abort,
        label="analysis",
    )
    task = read_report_task(ctx.workspace)
    task_id = task.get("ceTaskId", "")
    if not execution.succeeded or not task_id:
        # No submission means no verdict
        raise QualityGateRejected(
            "Analysis submission failed; no quality gate verdict available",
            execution.diagnostic(),
            gate_status="NONE",
        )
    logger.info("Analysis submitted | task=%s | dashboard=%s", task_id, task.get("dashboardUrl", ""))
    return task_id, execution


def run_static_analysis(ctx: StageContext) -> StageOutcome:
    """
    Output data:
        verdict (QualityVerdict dump), style_report
    """
    cfg = ctx.config
    warnings = []

    try:
        check_style(ctx)
        style_report = cfg.style_report_path
    except StyleCheckWarning as warning:
        if cfg.style_check_gating:
            warning.fatal = True
            raise
        logger.warning("Style check: %s", warning)
        warnings.append(f"Style check: {warning}")
        style_report = ""

    token = ctx.credentials.get_optional(ANALYSIS_CREDENTIAL, "token")
    task_id, execution = submit_analysis(ctx, token)

    client = QualityGateClient(
        cfg.sonar_host_url,
        token=token,
        poll_interval=cfg.quality_gate_poll_interval,
    )
    verdict = client.wait_for_verdict(task_id, cfg.quality_gate_timeout, abort=ctx.abort)

    if not verdict.passed:
        failing = "\n".join(
            f"{c.get('metricKey', '?')}: {c.get('actualValue', '?')} "
            f"({c.get('comparator', '')} {c.get('errorThreshold', '')})"
            for c in verdict.failing_conditions()
        )
        raise QualityGateRejected(
            f"Quality gate returned {verdict.gate_status}",
            failing,
            gate_status=verdict.gate_status,
        )

    return StageOutcome(
        output=execution.log_excerpt,
        data={
            "verdict": verdict.model_dump(),
            "style_report": style_report,
        },
        warnings=warnings,
    )
