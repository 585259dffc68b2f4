"""
Stage Context
=============
Everything a stage action may touch during its execution.

The context is built fresh for each stage. Its credentials handle is the
one checked out for that stage and becomes unusable when the stage exits;
outputs from earlier stages are exposed read-only.
"""
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from deploy_pipeline.core.config import RunConfig
from deploy_pipeline.core.constants import SOURCE_FETCHER
from deploy_pipeline.executor.cancellation import AbortSignal
from deploy_pipeline.security.credentials import ScopedCredentials


@dataclass(frozen=True)
class StageContext:
    run_id: int
    stage_name: str
    config: RunConfig
    credentials: ScopedCredentials
    abort: AbortSignal
    outputs: Mapping[str, Mapping[str, Any]]
    timeout_seconds: int

    @classmethod
    def build(
        cls,
        run_id: int,
        stage_name: str,
        config: RunConfig,
        credentials: ScopedCredentials,
        abort: AbortSignal,
        outputs: Dict[str, Dict[str, Any]],
        timeout_seconds: Optional[int] = None,
    ) -> "StageContext":
        frozen = MappingProxyType({k: MappingProxyType(dict(v)) for k, v in outputs.items()})
        return cls(
            run_id=run_id,
            stage_name=stage_name,
            config=config,
            credentials=credentials,
            abort=abort,
            outputs=frozen,
            timeout_seconds=timeout_seconds or config.stage_timeout,
        )

    @property
    def build_tag(self) -> str:
        """Unique image tag for this run."""
        return str(self.run_id)

    def output_of(self, stage_name: str, key: str, default: Any = None) -> Any:
        return self.outputs.get(stage_name, {}).get(key, default)

    @property
    def workspace(self) -> str:
        path = self.output_of(SOURCE_FETCHER, "workspace_path")
        if not path:
            raise RuntimeError(f"Stage '{self.stage_name}' needs a workspace but none was fetched")
        return path
