"""
Test Runner
===========
Executes the project's automated test suite in a sandbox container and
summarises the JUnit-XML reports the build tool leaves in the workspace.

Contract:
    - exit code 0 and no failed/errored test → success
    - anything else → TestFailure (fatal)
"""
import glob
import logging
import os
import xml.etree.ElementTree as ET
from typing import List

from deploy_pipeline.core.errors import TestFailure
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.executor.tool_runner import run_in_container
from deploy_pipeline.models.stage import StageOutcome
from deploy_pipeline.models.suite_report import SuiteReport

logger = logging.getLogger(__name__)


def _report_files(workspace_path: str, report_path: str) -> List[str]:
    base = os.path.join(workspace_path, report_path)
    if os.path.isfile(base):
        return [base]
    return sorted(glob.glob(os.path.join(base, "**", "*.xml"), recursive=True))


def _int_attr(element: ET.Element, name: str) -> int:
    try:
        return int(float(element.get(name, "0") or 0))
    except ValueError:
        return 0


def parse_suite_reports(workspace_path: str, report_path: str) -> SuiteReport:
    """
    Sum the counters of every <testsuite> found under ``report_path``.

    Unreadable files are skipped; the exit code remains the authority on
    pass/fail, the report only adds detail.
    """
    report = SuiteReport()
    for path in _report_files(workspace_path, report_path):
        try:
            root = ET.parse(path).getroot()
        except (ET.ParseError, OSError) as exc:
            logger.warning("Skipping unreadable test report %s: %s", path, exc)
            continue

        suites = [root] if root.tag == "testsuite" else root.findall("testsuite")
        if not suites:
            continue
        report.report_files += 1
        for suite in suites:
            report.total += _int_attr(suite, "tests")
            report.failed += _int_attr(suite, "failures")
            report.errors += _int_attr(suite, "errors")
            report.skipped += _int_attr(suite, "skipped")
    return report


def run_tests(ctx: StageContext) -> StageOutcome:
    """Run ``config.test_command`` against the fetched workspace."""
    cfg = ctx.config
    workspace = ctx.workspace

    execution = run_in_container(
        workspace_path=workspace,
        image=cfg.test_image,
        command=cfg.test_command,
        timeout_seconds=ctx.timeout_seconds,
        abort=ctx.abort,
        label="test",
    )
    report = parse_suite_reports(workspace, cfg.test_report_path)
    logger.info("Test run finished | exit=%d | %s", execution.exit_code, report.describe())

    if execution.timed_out:
        raise TestFailure(
            f"Test command timed out after {ctx.timeout_seconds}s",
            execution.diagnostic(),
            failed=report.failed + report.errors,
            total=report.total,
        )
    if not execution.succeeded or report.has_failures:
        failing = report.failed + report.errors
        if failing:
            message = f"{failing} of {report.total} tests failed"
        else:
            message = f"Test command exited with code {execution.exit_code}"
        raise TestFailure(message, execution.diagnostic(), failed=failing, total=report.total)

    return StageOutcome(
        output=execution.log_excerpt,
        data={
            "report": report.model_dump(),
            "exit_code": execution.exit_code,
        },
    )
