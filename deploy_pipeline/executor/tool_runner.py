"""
Tool Runner
===========
Invokes the external tools behind each stage and returns structured
execution results (logs, exit code, timing).

BOUNDARY RULES:
    - The runner ONLY observes execution.
    - It never decides whether a stage failed. Stages read the
      ExecutionResult and raise their own error types.
    - It never reads credentials. Callers pass an explicit environment.

Two execution paths:
    - run_in_container: build/test/analysis tools inside an ephemeral
      Docker container with the run workspace mounted at /workspace.
    - run_command: host CLIs (git, aws) as child processes with a minimal
      environment, so secrets only reach the process that needs them.
"""
import os
import subprocess
import time
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import docker
from docker.errors import (
    ContainerError,
    ImageNotFound,
    APIError,
)

from deploy_pipeline.core.config import DEFAULT_STAGE_TIMEOUT
from deploy_pipeline.executor.cancellation import AbortSignal
from deploy_pipeline.utils.logging_config import redact

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """
    Structured output from a single tool execution.

    Fields
    ------
    exit_code : int
        Process exit code (0 = success, non-zero = failure, -1 = never ran).
    full_log : str
        Full combined stdout + stderr, secrets masked.
    log_excerpt : str
        Abbreviated log (first + last N lines) for reports.
    execution_time_seconds : float
        Wall clock duration of the execution.
    timed_out : bool
        True if the tool was killed for exceeding its timeout.
    aborted : bool
        True if the run's abort signal stopped the tool.
    environment_metadata : dict
        Runtime info: image used, container ID, timeout applied.
    error : str | None
        Infrastructure error (tool missing, daemon down), not tool failures.
    """
    exit_code: int = -1
    full_log: str = ""
    log_excerpt: str = ""
    execution_time_seconds: float = 0.0
    timed_out: bool = False
    aborted: bool = False
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.aborted and not self.error

    def diagnostic(self) -> str:
        """Best text to surface when the execution failed."""
        parts = []
        if self.error:
            parts.append(self.error)
        if self.timed_out:
            parts.append(f"Timed out after {self.execution_time_seconds:.0f}s")
        if self.aborted:
            parts.append("Aborted")
        if self.log_excerpt:
            parts.append(self.log_excerpt)
        return "\n".join(parts)


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    If the log is short enough, returns it as-is.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    head_lines = lines[:head]
    tail_lines = lines[-tail:]
    omitted = total - head - tail

    return "\n".join(
        head_lines
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + tail_lines
    )


def _finalize(result: ExecutionResult, start_time: float) -> ExecutionResult:
    result.full_log = redact(result.full_log)
    if result.error:
        result.error = redact(result.error)
    result.execution_time_seconds = round(time.monotonic() - start_time, 3)
    result.log_excerpt = create_log_excerpt(result.full_log)
    return result


# ---------------------------------------------------------------------------
# Container Execution
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "4g"
_CPU_COUNT = 2


def run_in_container(
    workspace_path: str,
    image: str,
    command: str,
    timeout_seconds: int = DEFAULT_STAGE_TIMEOUT,
    environment: Optional[Dict[str, str]] = None,
    abort: Optional[AbortSignal] = None,
    label: str = "tool",
) -> ExecutionResult:
    """
    Execute a shell command inside an ephemeral Docker container.

    Lifecycle:
        1. Create container with workspace mounted at /workspace
        2. Wait for exit (bounded by timeout, interruptible by abort)
        3. Capture logs, exit code, timing
        4. Destroy container
        5. Return ExecutionResult

    Returns
    -------
    ExecutionResult
        Always returned; never raises for tool or Docker failures.
        On infrastructure failure, exit_code is -1 and error is set.
    """
    result = ExecutionResult()
    start_time = time.monotonic()
    container = None

    try:
        client = docker.from_env()

        logger.info(
            "Starting container | label=%s | image=%s | timeout=%ds",
            label, image, timeout_seconds,
        )

        container = client.containers.run(
            image=image,
            command=["sh", "-c", command],
            volumes={
                workspace_path: {"bind": "/workspace", "mode": "rw"},
            },
            environment={"CI": "true", **(environment or {})},
            working_dir="/workspace",
            mem_limit=_MEMORY_LIMIT,
            nano_cpus=_CPU_COUNT * 1_000_000_000,
            labels={"project": "deploy-pipeline", "role": label},
            detach=True,
            stdout=True,
            stderr=True,
        )

        guard = abort.on_abort(container.kill) if abort else nullcontext()
        with guard:
            try:
                wait_result = container.wait(timeout=timeout_seconds)
                result.exit_code = wait_result.get("StatusCode", -1)
            except Exception:
                # docker-py raises a transport timeout when the wait deadline passes
                if abort is not None and abort.is_set():
                    result.aborted = True
                else:
                    result.timed_out = True
                    logger.warning("Container %s exceeded %ds, killing", container.short_id, timeout_seconds)
                    container.kill()

        if abort is not None and abort.is_set():
            result.aborted = True

        log_bytes = container.logs(stdout=True, stderr=True)
        result.full_log = log_bytes.decode("utf-8", errors="replace")

        result.environment_metadata = {
            "image": image,
            "container_id": container.short_id,
            "timeout_applied": timeout_seconds,
            "memory_limit": _MEMORY_LIMIT,
            "cpu_count": _CPU_COUNT,
        }

    except ImageNotFound:
        result.error = f"Docker image '{image}' not found."
        result.exit_code = -1
        logger.error(result.error)

    except ContainerError as e:
        result.error = f"Container execution error: {e}"
        result.exit_code = e.exit_status if hasattr(e, "exit_status") else -1
        result.full_log = str(e)
        logger.error(result.error)

    except APIError as e:
        result.error = f"Docker API error: {e}"
        result.exit_code = -1
        logger.error(result.error)

    except Exception as e:
        # Catch-all: the stage must always receive a result
        result.error = f"Unexpected executor error: {type(e).__name__}: {e}"
        result.exit_code = -1
        logger.exception(result.error)

    finally:
        if container is not None:
            try:
                container.remove(force=True)
                logger.info("Container %s destroyed", container.short_id)
            except Exception:
                logger.warning("Failed to remove container", exc_info=True)

    _finalize(result, start_time)

    logger.info(
        "Execution complete | label=%s | exit=%d | time=%.2fs",
        label, result.exit_code, result.execution_time_seconds,
    )

    return result


# ---------------------------------------------------------------------------
# Host Process Execution
# ---------------------------------------------------------------------------
_PASSTHROUGH_ENV = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "SSL_CERT_FILE")


def minimal_environment(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Environment for a child process: a few non-secret host variables plus
    ``extra``. Nothing else from os.environ is inherited.
    """
    env = {k: os.environ[k] for k in _PASSTHROUGH_ENV if k in os.environ}
    env.update({k: v for k, v in (extra or {}).items() if v is not None})
    return env


def run_command(
    args: List[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout_seconds: int = DEFAULT_STAGE_TIMEOUT,
    abort: Optional[AbortSignal] = None,
) -> ExecutionResult:
    """
    Run a host CLI to completion and capture combined output.

    ``env`` is used as the complete child environment; pass the output of
    minimal_environment() rather than os.environ.
    """
    result = ExecutionResult()
    start_time = time.monotonic()

    try:
        proc = subprocess.Popen(
            args,
            cwd=cwd,
            env=env if env is not None else minimal_environment(),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except FileNotFoundError:
        result.error = f"Command not found: {args[0]}"
        logger.error(result.error)
        return _finalize(result, start_time)

    guard = abort.on_abort(proc.terminate) if abort else nullcontext()
    with guard:
        try:
            out, _ = proc.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("%s exceeded %ds, killing", args[0], timeout_seconds)
            proc.kill()
            out, _ = proc.communicate()
            result.timed_out = True

    result.exit_code = proc.returncode if proc.returncode is not None else -1
    result.full_log = out or ""
    if abort is not None and abort.is_set():
        result.aborted = True

    return _finalize(result, start_time)
