"""
Configuration
=============
Loads environment variables from .env file using python-dotenv, and
optionally a YAML pipeline file that overrides them.

Environment Variables:
    PIPELINE_CONFIG            — Optional YAML file with run configuration
    REPO_URL / REPO_BRANCH     — Source repository and default branch
    WORKSPACE_ROOT             — Where per-run workspaces are cloned
    TEST_IMAGE / TEST_COMMAND  — Sandbox image and fixed test command
    STYLE_COMMAND              — Style checker command (report is informational)
    STYLE_CHECK_GATING         — "true" makes style failures fatal
    SONAR_HOST_URL             — Static-analysis service endpoint
    QUALITY_GATE_TIMEOUT       — Seconds to wait for a verdict (default: 3600)
    IMAGE_NAME / REGISTRY_URL  — Target image repository and registry endpoint
    ECS_CLUSTER / ECS_SERVICE  — Deployment target
    AWS_REGION                 — Region for the orchestration API

Credentials (read only by the credential store, never by stages directly):
    SCM_TOKEN, REGISTRY_USERNAME, REGISTRY_PASSWORD, SONAR_TOKEN,
    DEPLOY_AWS_ACCESS_KEY_ID, DEPLOY_AWS_SECRET_ACCESS_KEY,
    DEPLOY_AWS_SESSION_TOKEN

Timeout Philosophy:
    Every external tool call is bounded. DEFAULT_STAGE_TIMEOUT caps a single
    container or CLI invocation; the quality gate has its own, longer
    deadline because the analysis service computes asynchronously.
"""
import os
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from deploy_pipeline.core.errors import ConfigError

load_dotenv()

PIPELINE_CONFIG = os.getenv("PIPELINE_CONFIG", "")

REPO_URL = os.getenv("REPO_URL", "")
REPO_BRANCH = os.getenv("REPO_BRANCH", "main")
WORKSPACE_ROOT = os.getenv("WORKSPACE_ROOT", os.path.abspath("workspace"))
STATE_DIR = os.getenv("STATE_DIR", os.path.abspath(".pipeline"))
RUNS_DIR = os.getenv("RUNS_DIR", os.path.abspath("runs"))

TEST_IMAGE = os.getenv("TEST_IMAGE", "maven:3.9-eclipse-temurin-17")
TEST_COMMAND = os.getenv("TEST_COMMAND", "mvn -B clean verify")
TEST_REPORT_PATH = os.getenv("TEST_REPORT_PATH", "target/surefire-reports")
STYLE_COMMAND = os.getenv("STYLE_COMMAND", "mvn -B checkstyle:checkstyle")
STYLE_REPORT_PATH = os.getenv("STYLE_REPORT_PATH", "target/checkstyle-result.xml")
STYLE_CHECK_GATING = os.getenv("STYLE_CHECK_GATING", "false").lower() == "true"

SONAR_HOST_URL = os.getenv("SONAR_HOST_URL", "http://localhost:9000")
SONAR_SCANNER_IMAGE = os.getenv("SONAR_SCANNER_IMAGE", "sonarsource/sonar-scanner-cli:latest")
SONAR_PROJECT_KEY = os.getenv("SONAR_PROJECT_KEY", "")
SONAR_PROJECT_NAME = os.getenv("SONAR_PROJECT_NAME", "")
SONAR_SOURCES = os.getenv("SONAR_SOURCES", "src/main/java")
SONAR_TEST_BINARIES = os.getenv("SONAR_TEST_BINARIES", "target/test-classes")
SONAR_COVERAGE_REPORT = os.getenv("SONAR_COVERAGE_REPORT", "target/site/jacoco/jacoco.xml")
QUALITY_GATE_TIMEOUT = int(os.getenv("QUALITY_GATE_TIMEOUT", 3600))
QUALITY_GATE_POLL_INTERVAL = float(os.getenv("QUALITY_GATE_POLL_INTERVAL", 5))

IMAGE_NAME = os.getenv("IMAGE_NAME", "")
REGISTRY_URL = os.getenv("REGISTRY_URL", "")
BUILD_CONTEXT = os.getenv("BUILD_CONTEXT", ".")
DOCKERFILE = os.getenv("DOCKERFILE", "Dockerfile")

ECS_CLUSTER = os.getenv("ECS_CLUSTER", "")
ECS_SERVICE = os.getenv("ECS_SERVICE", "")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")

# Execution timeout in seconds: max time for a single container or CLI call
DEFAULT_STAGE_TIMEOUT = int(os.getenv("DEFAULT_STAGE_TIMEOUT", 1800))

# Concurrent independent runs served by the HTTP trigger surface
MAX_CONCURRENT_RUNS = int(os.getenv("MAX_CONCURRENT_RUNS", 2))

# Periodic trigger, 0 disables
PIPELINE_SCHEDULE_SECONDS = int(os.getenv("PIPELINE_SCHEDULE_SECONDS", 0))

# Shared secret for source-control webhook signatures, empty disables the check
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")


@dataclass(frozen=True)
class AnalysisSettings:
    """Options recognised by the static-analysis service."""
    project_key: str
    project_name: str
    sources: str = SONAR_SOURCES
    test_binaries: str = SONAR_TEST_BINARIES
    test_report_path: str = TEST_REPORT_PATH
    coverage_report_path: str = SONAR_COVERAGE_REPORT
    style_report_path: str = STYLE_REPORT_PATH

    def scanner_properties(self, version: str) -> Dict[str, str]:
        """Return the ``sonar.*`` properties for one analysis."""
        return {
            "sonar.projectKey": self.project_key,
            "sonar.projectName": self.project_name,
            "sonar.projectVersion": version,
            "sonar.sources": self.sources,
            "sonar.java.test.binaries": self.test_binaries,
            "sonar.junit.reportPaths": self.test_report_path,
            "sonar.coverage.jacoco.xmlReportPaths": self.coverage_report_path,
            "sonar.java.checkstyle.reportPaths": self.style_report_path,
        }


@dataclass(frozen=True)
class RunConfig:
    """
    Immutable configuration handed to every stage of one run.

    Replaces the global environment block of a scripted pipeline: stages
    read from this object only, never from os.environ.
    """
    repo_url: str
    branch: str
    workspace_root: str
    image_name: str
    registry_url: str
    cluster: str
    service: str
    analysis: AnalysisSettings
    region: str = AWS_REGION
    test_image: str = TEST_IMAGE
    test_command: str = TEST_COMMAND
    test_report_path: str = TEST_REPORT_PATH
    style_command: str = STYLE_COMMAND
    style_report_path: str = STYLE_REPORT_PATH
    style_check_gating: bool = STYLE_CHECK_GATING
    sonar_host_url: str = SONAR_HOST_URL
    scanner_image: str = SONAR_SCANNER_IMAGE
    quality_gate_timeout: int = QUALITY_GATE_TIMEOUT
    quality_gate_poll_interval: float = QUALITY_GATE_POLL_INTERVAL
    build_context: str = BUILD_CONTEXT
    dockerfile: str = DOCKERFILE
    stage_timeout: int = DEFAULT_STAGE_TIMEOUT
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def image_repository(self) -> str:
        """Registry path of the image, e.g. ``registry.example.com/team/app``."""
        if self.registry_url and not self.image_name.startswith(self.registry_url):
            return f"{self.registry_url.rstrip('/')}/{self.image_name}"
        return self.image_name

    def with_branch(self, branch: Optional[str]) -> "RunConfig":
        if not branch or branch == self.branch:
            return self
        return replace(self, branch=branch)

    def validate(self) -> None:
        missing = [
            name for name, value in (
                ("repo_url", self.repo_url),
                ("branch", self.branch),
                ("image_name", self.image_name),
                ("cluster", self.cluster),
                ("service", self.service),
                ("analysis.project_key", self.analysis.project_key),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")
        if self.quality_gate_timeout <= 0:
            raise ConfigError("quality_gate_timeout must be positive")


def _repo_name(repo_url: str) -> str:
    name = repo_url.rstrip("/").split("/")[-1]
    return name[:-4] if name.endswith(".git") else name


def load_pipeline_file(path: str) -> Dict[str, Any]:
    """Read the optional YAML pipeline file. Missing path → empty mapping."""
    if not path:
        return {}
    if not os.path.exists(path):
        raise ConfigError(f"Pipeline config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"Pipeline config {path} must be a mapping")
    return data


def load_run_config(path: str = PIPELINE_CONFIG) -> RunConfig:
    """
    Build the RunConfig from environment defaults overlaid with the YAML file.

    YAML layout (all keys optional)::

        repository: {url, branch}
        test: {image, command, report_path}
        style: {command, report_path, gating}
        analysis: {host_url, scanner_image, project_key, project_name,
                   sources, test_binaries, coverage_report_path,
                   timeout_seconds, poll_interval}
        image: {name, registry, context, dockerfile}
        deploy: {cluster, service, region}
        stage_timeout: 1800
    """
    data = load_pipeline_file(path)
    repo = data.get("repository", {}) or {}
    test = data.get("test", {}) or {}
    style = data.get("style", {}) or {}
    analysis = data.get("analysis", {}) or {}
    image = data.get("image", {}) or {}
    deploy = data.get("deploy", {}) or {}

    repo_url = repo.get("url", REPO_URL)
    test_report_path = test.get("report_path", TEST_REPORT_PATH)
    style_report_path = style.get("report_path", STYLE_REPORT_PATH)
    project_key = analysis.get("project_key", SONAR_PROJECT_KEY) or _repo_name(repo_url)

    settings = AnalysisSettings(
        project_key=project_key,
        project_name=analysis.get("project_name", SONAR_PROJECT_NAME) or project_key,
        sources=analysis.get("sources", SONAR_SOURCES),
        test_binaries=analysis.get("test_binaries", SONAR_TEST_BINARIES),
        test_report_path=test_report_path,
        coverage_report_path=analysis.get("coverage_report_path", SONAR_COVERAGE_REPORT),
        style_report_path=style_report_path,
    )

    return RunConfig(
        repo_url=repo_url,
        branch=repo.get("branch", REPO_BRANCH),
        workspace_root=data.get("workspace_root", WORKSPACE_ROOT),
        image_name=image.get("name", IMAGE_NAME),
        registry_url=image.get("registry", REGISTRY_URL),
        cluster=deploy.get("cluster", ECS_CLUSTER),
        service=deploy.get("service", ECS_SERVICE),
        region=deploy.get("region", AWS_REGION),
        analysis=settings,
        test_image=test.get("image", TEST_IMAGE),
        test_command=test.get("command", TEST_COMMAND),
        test_report_path=test_report_path,
        style_command=style.get("command", STYLE_COMMAND),
        style_report_path=style_report_path,
        style_check_gating=bool(style.get("gating", STYLE_CHECK_GATING)),
        sonar_host_url=analysis.get("host_url", SONAR_HOST_URL),
        scanner_image=analysis.get("scanner_image", SONAR_SCANNER_IMAGE),
        quality_gate_timeout=int(analysis.get("timeout_seconds", QUALITY_GATE_TIMEOUT)),
        quality_gate_poll_interval=float(analysis.get("poll_interval", QUALITY_GATE_POLL_INTERVAL)),
        build_context=image.get("context", BUILD_CONTEXT),
        dockerfile=image.get("dockerfile", DOCKERFILE),
        stage_timeout=int(data.get("stage_timeout", DEFAULT_STAGE_TIMEOUT)),
    )
