"""
Run Manager
===========
Owns every pipeline run the process knows about.

Responsibilities:
    - Allocate build numbers and create run records.
    - Execute runs on a bounded thread pool; each run is independent
      (own workspace, own credential checkouts, own artifacts).
    - Route abort requests to the right run's signal.
    - Answer status queries from memory, falling back to the archive.
"""
import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from deploy_pipeline.core.config import MAX_CONCURRENT_RUNS, STATE_DIR, RunConfig, load_run_config
from deploy_pipeline.executor.cancellation import AbortSignal
from deploy_pipeline.executor.pipeline_executor import PipelineExecutor
from deploy_pipeline.models.pipeline_run import PipelineRun, TriggerSource
from deploy_pipeline.models.stage import StageDefinition
from deploy_pipeline.security.credentials import CredentialStore
from deploy_pipeline.services.results_writer import ResultsWriter
from deploy_pipeline.stages.default_pipeline import default_stages
from deploy_pipeline.state.build_counter import BuildCounter

logger = logging.getLogger(__name__)

# Finished runs kept in memory; older ones are served from the archive
_KEEP_FINISHED = 50


@dataclass
class ActiveRun:
    run: PipelineRun
    abort: AbortSignal
    future: Optional[Future] = None


class RunManager:

    def __init__(
        self,
        config_loader: Callable[[], RunConfig] = load_run_config,
        credentials: Optional[CredentialStore] = None,
        stages_factory: Callable[[], Sequence[StageDefinition]] = default_stages,
        counter: Optional[BuildCounter] = None,
        results_writer: Optional[ResultsWriter] = None,
        max_workers: int = MAX_CONCURRENT_RUNS,
        keep_finished: int = _KEEP_FINISHED,
    ) -> None:
        self._config_loader = config_loader
        self._credentials = credentials
        self._stages_factory = stages_factory
        self._counter = counter or BuildCounter(STATE_DIR)
        self._writer = results_writer or ResultsWriter()
        self._pool = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="pipeline-run")
        self._runs: Dict[int, ActiveRun] = {}
        self._keep_finished = max(0, keep_finished)
        self._lock = threading.Lock()

    @property
    def credentials(self) -> CredentialStore:
        if self._credentials is None:
            self._credentials = CredentialStore.from_env()
        return self._credentials

    def trigger(self, source: TriggerSource, branch: Optional[str] = None) -> PipelineRun:
        """
        Start a new run. Configuration is re-read per run so edits to the
        pipeline file apply to the next trigger. Raises ConfigError when the
        configuration is incomplete; no build number is consumed then.
        """
        config = self._config_loader().with_branch(branch)
        config.validate()

        run = PipelineRun(run_id=self._counter.next(), trigger=source, branch=config.branch)
        abort = AbortSignal()
        executor = PipelineExecutor(
            run, config, self.credentials, abort=abort, results_writer=self._writer
        )
        active = ActiveRun(run=run, abort=abort)
        with self._lock:
            self._runs[run.run_id] = active

        logger.info("[RUN #%d] Queued | trigger=%s | branch=%s", run.run_id, source.value, run.branch)
        active.future = self._pool.submit(self._execute, executor, self._stages_factory())
        return run

    def _execute(self, executor: PipelineExecutor, stages: Sequence[StageDefinition]) -> None:
        try:
            executor.run(stages)
        except Exception:
            logger.exception("[RUN #%d] Executor crashed", executor.run_record.run_id)
        finally:
            self._evict_finished()

    def _evict_finished(self) -> None:
        """Drop archived finished runs beyond the newest ``keep_finished``."""
        with self._lock:
            finished = sorted(
                run_id for run_id, active in self._runs.items()
                if active.run.is_terminal and os.path.exists(self._writer.path_for(run_id))
            )
            for run_id in finished[:max(0, len(finished) - self._keep_finished)]:
                del self._runs[run_id]

    def tracked_branch(self) -> str:
        """Branch that source-control events must name to start a run."""
        return self._config_loader().branch

    def get(self, run_id: int) -> Optional[PipelineRun]:
        with self._lock:
            active = self._runs.get(run_id)
        if active is not None:
            return active.run
        return self._writer.load(run_id)

    def list_runs(self) -> List[PipelineRun]:
        with self._lock:
            runs = [a.run for a in self._runs.values()]
        return sorted(runs, key=lambda r: r.run_id, reverse=True)

    def abort(self, run_id: int, reason: str = "aborted by operator") -> Optional[PipelineRun]:
        """Signal abort. Returns None for unknown runs; terminal runs are unchanged."""
        with self._lock:
            active = self._runs.get(run_id)
        if active is None:
            return self._writer.load(run_id)
        if not active.run.is_terminal:
            active.abort.abort(reason)
        return active.run

    def wait(self, run_id: int, timeout: Optional[float] = None) -> Optional[PipelineRun]:
        """Block until the run finishes."""
        with self._lock:
            active = self._runs.get(run_id)
        if active is None:
            return self._writer.load(run_id)
        if active.future is not None:
            active.future.result(timeout=timeout)
        return active.run

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            pending = [a for a in self._runs.values() if not a.run.is_terminal]
        for active in pending:
            active.abort.abort("service shutting down")
        self._pool.shutdown(wait=wait)
