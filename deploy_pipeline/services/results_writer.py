"""
Results Writer
==============
Archives a finished PipelineRun as JSON and reads archived runs back.
"""
import json
import logging
import os
from typing import Optional

from deploy_pipeline.core.config import RUNS_DIR
from deploy_pipeline.models.pipeline_run import PipelineRun
from deploy_pipeline.utils.logging_config import redact

logger = logging.getLogger(__name__)


class ResultsWriter:
    """
    Service responsible for persisting the full record of a pipeline run
    once it reaches a terminal state.
    """

    def __init__(self, output_dir: str = RUNS_DIR) -> None:
        self.output_dir = output_dir

    def path_for(self, run_id: int) -> str:
        return os.path.join(self.output_dir, f"run-{run_id}.json")

    def write_results(self, run: PipelineRun) -> bool:
        """Serialize the run to run-<id>.json. Returns False on I/O failure."""
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            data = run.model_dump(mode="json")
            abs_output = os.path.abspath(self.path_for(run.run_id))
            logger.info("Archiving run #%d to %s", run.run_id, abs_output)

            with open(abs_output, "w", encoding="utf-8") as f:
                f.write(redact(json.dumps(data, indent=2)))

            return True

        except Exception as e:
            logger.error("Failed to archive run #%d: %s", run.run_id, e, exc_info=True)
            return False

    def load(self, run_id: int) -> Optional[PipelineRun]:
        path = self.path_for(run_id)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return PipelineRun.model_validate(json.load(f))
