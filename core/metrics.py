"""
Running counters for the execution client.
"""
import threading
import time
from typing import Callable


class CommandMetrics:
    """Command, error and cache-hit counters with a derived view."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self.started_at = clock()
        self.total_commands = 0
        self.errors = 0
        self.cache_hits = 0
        self.total_execution_ms = 0.0

    def record_command(self, elapsed_ms: float, ok: bool):
        with self._lock:
            self.total_commands += 1
            self.total_execution_ms += elapsed_ms
            if not ok:
                self.errors += 1

    def record_cache_hit(self):
        with self._lock:
            self.total_commands += 1
            self.cache_hits += 1

    def reset(self):
        with self._lock:
            self.started_at = self._clock()
            self.total_commands = 0
            self.errors = 0
            self.cache_hits = 0
            self.total_execution_ms = 0.0

    def snapshot(self) -> dict:
        """
        uptime_s, error_rate and cache_hit_rate (0-1), avg_execution_ms
        over commands that reached the transport, commands_per_sec.
        """
        with self._lock:
            uptime = max(self._clock() - self.started_at, 0.0)
            total = self.total_commands
            executed = total - self.cache_hits
            return {
                "uptime_s": round(uptime, 3),
                "total_commands": total,
                "errors": self.errors,
                "cache_hits": self.cache_hits,
                "avg_execution_ms": round(self.total_execution_ms / executed, 2) if executed else 0.0,
                "error_rate": round(self.errors / total, 4) if total else 0.0,
                "cache_hit_rate": round(self.cache_hits / total, 4) if total else 0.0,
                "commands_per_sec": round(total / uptime, 4) if uptime > 0 else 0.0,
            }
