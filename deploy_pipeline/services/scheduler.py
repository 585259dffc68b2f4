"""
Schedule Trigger
Starts a run of the tracked branch every ``interval_seconds``.
"""
import logging
import threading
from typing import Optional

from deploy_pipeline.core.errors import ConfigError
from deploy_pipeline.models.pipeline_run import TriggerSource
from deploy_pipeline.services.run_manager import RunManager

logger = logging.getLogger(__name__)


class PeriodicTrigger:

    def __init__(self, manager: RunManager, interval_seconds: int) -> None:
        self.manager = manager
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.interval_seconds <= 0 or self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="pipeline-schedule", daemon=True)
        self._thread.start()
        logger.info("Scheduled trigger every %ds", self.interval_seconds)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def fire(self) -> None:
        try:
            run = self.manager.trigger(TriggerSource.SCHEDULE)
            logger.info("Schedule started run #%d", run.run_id)
        except ConfigError as e:
            logger.error("Scheduled run not started: %s", e)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.fire()
