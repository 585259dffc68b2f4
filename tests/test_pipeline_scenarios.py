"""
End-to-End Scenarios — Default Pipeline
=======================================
The six real stages driven by the executor, with git, the container
tooling, the analysis service and the deployment CLI mocked at their
boundaries.

A: everything passes               → succeeded, six stages succeeded
B: 1 of 50 tests fail              → failed at Test Runner, nothing after runs
C: quality gate exceeds deadline   → failed with QualityGateTimeout, no build
D: unique tag pushed, latest fails → failed, unique tag left in the registry
"""
import json
import os
import pytest
from unittest.mock import patch, MagicMock

from docker.errors import APIError

from deploy_pipeline.core.constants import (
    DEPLOYMENT_TRIGGER,
    IMAGE_BUILDER,
    IMAGE_PUBLISHER,
    STATIC_ANALYZER,
    TEST_RUNNER,
)
from deploy_pipeline.core.errors import QualityGateTimeout
from deploy_pipeline.executor.pipeline_executor import PipelineExecutor, stage_statuses
from deploy_pipeline.executor.tool_runner import ExecutionResult
from deploy_pipeline.models.pipeline_run import PipelineRun, RunStatus
from deploy_pipeline.models.quality_verdict import QualityVerdict
from deploy_pipeline.stages.default_pipeline import default_stages

_JUNIT_FAILING = """<?xml version="1.0"?>
<testsuite name="OrderServiceTest" tests="50" failures="1" errors="0" skipped="0">
  <testcase name="totals"><failure message="expected 10 but was 9"/></testcase>
</testsuite>
"""


def _ok(log=""):
    return ExecutionResult(exit_code=0, full_log=log, log_excerpt=log)


class FakeTooling:
    """Stands in for git, the container runtime, the analysis service and the AWS CLI."""

    def __init__(self):
        self.tests_fail = False
        self.gate_times_out = False
        self.latest_push_fails = False
        self.calls = []
        self.docker = MagicMock()
        self.image = MagicMock(id="sha256:feedface", short_id="feedface")
        self.docker.images.build.return_value = (self.image, [{"stream": "Step 1/3 : FROM eclipse-temurin:17"}])
        self.docker.images.get.return_value = self.image
        self.docker.images.push.side_effect = self._push
        self.pushed = []

    # git + aws
    def run_command(self, args, cwd=None, env=None, timeout_seconds=0, abort=None):
        self.calls.append(args[1] if args[0] == "git" else "aws")
        if args[:2] == ["git", "clone"]:
            dest = args[-1]
            os.makedirs(os.path.join(dest, "target", "surefire-reports"))
            with open(os.path.join(dest, "Dockerfile"), "w") as f:
                f.write("FROM eclipse-temurin:17\n")
        if args[:2] == ["git", "rev-parse"]:
            return _ok("0123456789abcdef\n")
        if args[0] == "aws":
            return _ok(json.dumps({"service": {"deployments": [{"id": "ecs-svc/1", "status": "PRIMARY"}]}}))
        return _ok()

    # containers
    def run_in_container(self, workspace_path, image, command, timeout_seconds=0, environment=None, abort=None, label="tool"):
        self.calls.append(label)
        if label == "test" and self.tests_fail:
            with open(os.path.join(workspace_path, "target", "surefire-reports", "TEST-orders.xml"), "w") as f:
                f.write(_JUNIT_FAILING)
            return ExecutionResult(exit_code=1, full_log="Tests run: 50, Failures: 1")
        if label == "style":
            with open(os.path.join(workspace_path, "target", "checkstyle-result.xml"), "w") as f:
                f.write("<checkstyle/>")
        if label == "analysis":
            os.makedirs(os.path.join(workspace_path, ".scannerwork"), exist_ok=True)
            with open(os.path.join(workspace_path, ".scannerwork", "report-task.txt"), "w") as f:
                f.write("projectKey=orders-api\nceTaskId=AXtask1\n")
        return _ok(f"{label} ok")

    def wait_for_verdict(self, task_id, timeout_seconds, abort=None):
        self.calls.append("gate")
        if self.gate_times_out:
            raise QualityGateTimeout("No quality gate verdict within 60s", timeout_seconds=timeout_seconds)
        return QualityVerdict.from_gate_status("OK", task_id=task_id)

    def _push(self, repository, tag, stream, decode):
        if tag == "latest" and self.latest_push_fails:
            return iter([{"status": "Preparing"}, {"error": "net/http: TLS handshake timeout"}])
        self.pushed.append(tag)
        return iter([{"status": "Pushed"}, {"status": f"{tag}: digest: sha256:abc"}])


@pytest.fixture
def tooling():
    fake = FakeTooling()
    gate = MagicMock()
    gate.wait_for_verdict.side_effect = fake.wait_for_verdict
    with patch("deploy_pipeline.stages.source_fetcher.run_command", side_effect=fake.run_command), \
         patch("deploy_pipeline.stages.deployment_trigger.run_command", side_effect=fake.run_command), \
         patch("deploy_pipeline.stages.test_runner.run_in_container", side_effect=fake.run_in_container), \
         patch("deploy_pipeline.stages.static_analyzer.run_in_container", side_effect=fake.run_in_container), \
         patch("deploy_pipeline.stages.static_analyzer.QualityGateClient", return_value=gate), \
         patch("docker.from_env", return_value=fake.docker):
        yield fake


def _run(run_config, credential_store, run_id=41):
    run = PipelineRun(run_id=run_id, branch=run_config.branch)
    PipelineExecutor(run, run_config, credential_store).run(default_stages())
    return run


class TestScenarios:

    def test_a_everything_passes(self, tooling, run_config, credential_store):
        run = _run(run_config, credential_store)

        assert run.status == RunStatus.SUCCEEDED
        assert stage_statuses(run) == ["succeeded"] * 6
        assert tooling.pushed == ["41", "latest"]
        publisher = run.stage(IMAGE_PUBLISHER)
        assert publisher.data["artifact"]["pushed_tags"] == ["41", "latest"]
        assert run.stage(DEPLOYMENT_TRIGGER).data["deployment_id"] == "ecs-svc/1"
        for name in ("Source Fetcher", TEST_RUNNER, STATIC_ANALYZER, IMAGE_BUILDER, IMAGE_PUBLISHER, DEPLOYMENT_TRIGGER):
            assert name in run.report
        assert "Result: SUCCEEDED" in run.report

    def test_b_failing_tests_halt_the_run(self, tooling, run_config, credential_store):
        tooling.tests_fail = True
        run = _run(run_config, credential_store)

        assert run.status == RunStatus.FAILED
        assert run.failed_stage == TEST_RUNNER
        assert stage_statuses(run) == ["succeeded", "failed", "skipped", "skipped", "skipped", "skipped"]
        assert run.stage(TEST_RUNNER).error_message == "1 of 50 tests failed"
        assert "style" not in tooling.calls
        assert "gate" not in tooling.calls
        assert "aws" not in tooling.calls
        tooling.docker.images.build.assert_not_called()

    def test_c_quality_gate_timeout_prevents_build(self, tooling, run_config, credential_store):
        tooling.gate_times_out = True
        run = _run(run_config, credential_store)

        assert run.status == RunStatus.FAILED
        assert run.failed_stage == STATIC_ANALYZER
        assert run.stage(STATIC_ANALYZER).error_type == "QualityGateTimeout"
        assert run.stage(IMAGE_BUILDER).status.value == "skipped"
        tooling.docker.images.build.assert_not_called()
        tooling.docker.images.push.assert_not_called()

    def test_d_partial_push_leaves_unique_tag(self, tooling, run_config, credential_store):
        tooling.latest_push_fails = True
        run = _run(run_config, credential_store)

        assert run.status == RunStatus.FAILED
        assert run.failed_stage == IMAGE_PUBLISHER
        publisher = run.stage(IMAGE_PUBLISHER)
        assert publisher.error_type == "PublishError"
        assert publisher.data["pushed_tags"] == ["41"]
        assert "TLS handshake timeout" in publisher.output
        assert run.stage(DEPLOYMENT_TRIGGER).status.value == "skipped"
        assert "aws" not in tooling.calls
        # no cleanup of the orphaned tag
        tooling.docker.images.remove.assert_not_called()


def test_registry_login_uses_registry_credential(tooling, run_config, credential_store):
    _run(run_config, credential_store)
    tooling.docker.login.assert_called_once_with(
        username="ci-bot", password="registry-pass-0002", registry="registry.example.com"
    )


def test_apierror_on_build_is_reported(tooling, run_config, credential_store):
    tooling.docker.images.build.side_effect = APIError("daemon unavailable")
    run = _run(run_config, credential_store)
    assert run.failed_stage == IMAGE_BUILDER
    assert run.stage(IMAGE_BUILDER).error_type == "BuildError"
