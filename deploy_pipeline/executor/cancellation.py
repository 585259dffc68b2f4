"""
Cancellation
============
External abort signal for one pipeline run.

The executor checks the signal at every stage boundary. Stages that own
an interruptible resource (a container, a child process) register a hook
for as long as the resource is live; the hook is invoked once when the
signal fires.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)


class AbortSignal:

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._hooks: List[Callable[[], None]] = []
        self.reason = ""

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to ``timeout`` seconds, returning early (True) on abort."""
        return self._event.wait(timeout)

    def abort(self, reason: str = "aborted by operator") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            hooks = list(self._hooks)
        logger.warning("Abort requested: %s", reason)
        for hook in hooks:
            try:
                hook()
            except Exception:
                logger.warning("Cancellation hook failed", exc_info=True)

    @contextmanager
    def on_abort(self, hook: Callable[[], None]) -> Iterator[None]:
        """Register ``hook`` while the block runs. Fires at once if already aborted."""
        with self._lock:
            already = self._event.is_set()
            if not already:
                self._hooks.append(hook)
        if already:
            hook()
        try:
            yield
        finally:
            with self._lock:
                if hook in self._hooks:
                    self._hooks.remove(hook)
