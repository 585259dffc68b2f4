"""
Shared fixtures: a complete RunConfig, a populated credential store and a
factory for stage contexts. No Docker daemon, git remote, analysis server
or cloud account is touched by any test.
"""
import pytest
from pydantic import SecretStr

from deploy_pipeline.core.config import AnalysisSettings, RunConfig
from deploy_pipeline.executor.cancellation import AbortSignal
from deploy_pipeline.executor.context import StageContext
from deploy_pipeline.security.credentials import CredentialBinding, CredentialStore, ScopedCredentials


@pytest.fixture
def run_config(tmp_path):
    return RunConfig(
        repo_url="https://git.example.com/team/orders-api.git",
        branch="main",
        workspace_root=str(tmp_path / "workspace"),
        image_name="team/orders-api",
        registry_url="registry.example.com",
        cluster="prod-cluster",
        service="orders-api",
        region="eu-west-1",
        analysis=AnalysisSettings(project_key="orders-api", project_name="Orders API"),
        test_image="maven:3.9-eclipse-temurin-17",
        test_command="mvn -B clean verify",
        test_report_path="target/surefire-reports",
        style_command="mvn -B checkstyle:checkstyle",
        style_report_path="target/checkstyle-result.xml",
        style_check_gating=False,
        sonar_host_url="http://sonar.local",
        build_context=".",
        dockerfile="Dockerfile",
        quality_gate_timeout=60,
        quality_gate_poll_interval=0.01,
        stage_timeout=30,
    )


@pytest.fixture
def credential_store():
    store = CredentialStore()
    store.add("scm", token="scm-token-0001")
    store.add("registry", username="ci-bot", password="registry-pass-0002")
    store.add("analysis", token="sonar-token-0003")
    store.add(
        "deploy",
        access_key_id="AKIAEXAMPLE0004",
        secret_access_key="deploy-secret-0005",
    )
    return store


@pytest.fixture
def make_context(run_config):
    """Factory: make_context(stage_name, outputs=..., credentials={name: {field: value}})."""

    def _make(stage_name="Stage", outputs=None, credentials=None, abort=None, config=None, run_id=7):
        bindings = {
            name: CredentialBinding(
                name=name, secrets={k: SecretStr(v) for k, v in fields.items()}
            )
            for name, fields in (credentials or {}).items()
        }
        return StageContext.build(
            run_id=run_id,
            stage_name=stage_name,
            config=config or run_config,
            credentials=ScopedCredentials(stage_name, bindings),
            abort=abort or AbortSignal(),
            outputs=outputs or {},
        )

    return _make
