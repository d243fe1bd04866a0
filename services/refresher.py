"""Optional background thread that keeps a header cache synchronized."""

import logging
import threading
from typing import Optional

from core.errors import HeaderCacheError

log = logging.getLogger(__name__)


class BackgroundRefresher:
    """Calls ``cache.synchronize()`` every ``interval`` seconds until stopped."""

    def __init__(self, cache, interval: float = 60.0):
        self.cache = cache
        self.interval = max(1.0, float(interval))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="header-cache-refresh", daemon=True)
        self._thread.start()
        log.info(f"Background refresh started (interval={self.interval:.1f}s)")

    def stop(self, timeout: Optional[float] = None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            log.info(f"Background refresh stopped after {self.runs} runs")

    def run_once(self):
        """One tick; failures are logged and retried on the next tick."""
        try:
            result = self.cache.synchronize()
            self.runs += 1
            return result
        except HeaderCacheError as e:
            self.failures += 1
            log.warning(f"Background refresh failed ({type(e).__name__}): {e}")
            return None

    def _run(self):
        while not self._stop.is_set():
            if self.cache.closed:
                log.info("Header cache closed, background refresh exiting")
                break
            self.run_once()
            self._stop.wait(self.interval)
