"""
Errors
======
Exception taxonomy for the delivery pipeline.

Every stage failure is a PipelineError carrying the stage name and the
verbatim tool output. The executor is the only place that turns these
into run state; stages raise, they never record failure themselves.
"""
from typing import List, Optional


class PipelineError(Exception):
    """Base class for stage failures. ``fatal`` controls fail-fast."""

    fatal = True
    stage = ""

    def __init__(self, message: str, output: str = "", stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.output = output
        if stage is not None:
            self.stage = stage


class FetchError(PipelineError):
    stage = "Source Fetcher"


class TestFailure(PipelineError):
    stage = "Test Runner"
    __test__ = False  # keep pytest from collecting this class

    def __init__(self, message: str, output: str = "", failed: int = 0, total: int = 0) -> None:
        super().__init__(message, output)
        self.failed = failed
        self.total = total


class StyleCheckWarning(PipelineError):
    """Style report generation failed. Informational unless gating is on."""
    stage = "Static Analyzer"
    fatal = False


class QualityGateTimeout(PipelineError):
    stage = "Static Analyzer"

    def __init__(self, message: str, output: str = "", timeout_seconds: float = 0) -> None:
        super().__init__(message, output)
        self.timeout_seconds = timeout_seconds


class QualityGateRejected(PipelineError):
    stage = "Static Analyzer"

    def __init__(self, message: str, output: str = "", gate_status: str = "") -> None:
        super().__init__(message, output)
        self.gate_status = gate_status


class BuildError(PipelineError):
    stage = "Image Builder"


class PublishError(PipelineError):
    stage = "Image Publisher"

    def __init__(self, message: str, output: str = "", pushed_tags: Optional[List[str]] = None) -> None:
        super().__init__(message, output)
        # Tags that reached the registry before the failure (left orphaned)
        self.pushed_tags = list(pushed_tags or [])


class DeploymentRequestError(PipelineError):
    stage = "Deployment Trigger"


class PipelineAborted(PipelineError):
    """Raised by a stage (or the executor) when the abort signal fired."""


class CredentialScopeError(Exception):
    """A stage touched a credential it did not declare, or after release."""


class InvalidTransition(Exception):
    """The run state machine was asked for a transition it does not allow."""


class ConfigError(Exception):
    """Run configuration is incomplete or malformed."""
