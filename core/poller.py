"""
Periodic refresh loop for dashboards.
"""
import logging
import threading
from typing import Callable, Optional

from .config import MIN_POLL_INTERVAL_SECONDS, MAX_POLL_INTERVAL_SECONDS, POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class Poller:
    """
    Calls ``refresh`` every ``interval`` seconds on a background thread.

    ``pause()`` is for when the view is hidden: no refreshes run until
    ``resume()``, which refreshes immediately.
    """

    def __init__(self, refresh: Callable[[], object], interval: float = POLL_INTERVAL_SECONDS,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.refresh = refresh
        self.interval = min(max(interval, MIN_POLL_INTERVAL_SECONDS), MAX_POLL_INTERVAL_SECONDS)
        self.on_error = on_error
        self.runs = 0
        self._visible = threading.Event()
        self._visible.set()
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def paused(self) -> bool:
        return not self._visible.is_set()

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name="poller", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5):
        self._stopped.set()
        self._visible.set()
        self._wake.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    def pause(self):
        self._visible.clear()

    def resume(self):
        self._visible.set()
        self._wake.set()

    def tick(self):
        """One refresh, errors reported but never raised."""
        try:
            self.refresh()
        except Exception as e:
            logger.warning("Refresh failed: %s", e)
            if self.on_error:
                self.on_error(e)
        finally:
            self.runs += 1

    def _loop(self):
        while not self._stopped.is_set():
            self._visible.wait()
            if self._stopped.is_set():
                break
            self.tick()
            self._wake.wait(self.interval)
            self._wake.clear()
