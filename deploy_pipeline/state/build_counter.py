"""
Build Counter
Allocates monotonically increasing build numbers, persisted across restarts.
"""
import logging
import os
import threading

logger = logging.getLogger(__name__)


class BuildCounter:

    def __init__(self, state_dir: str) -> None:
        self.path = os.path.join(state_dir, "build_number")
        self._lock = threading.Lock()

    def _read(self) -> int:
        if not os.path.exists(self.path):
            return 0
        with open(self.path, "r", encoding="utf-8") as f:
            raw = f.read().strip()
        try:
            return int(raw or 0)
        except ValueError:
            logger.warning("Corrupt build counter %s (%r), restarting at 0", self.path, raw)
            return 0

    def current(self) -> int:
        with self._lock:
            return self._read()

    def next(self) -> int:
        with self._lock:
            number = self._read() + 1
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            tmp = f"{self.path}.tmp"
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(str(number))
            os.replace(tmp, self.path)
            return number
