"""
Execution client: the single way commands reach the host bridge.

Adds to the raw transport:
- a timeout race per attempt
- bounded retries with capped exponential backoff
- a TTL response cache
- a FIFO queue that keeps at most MAX_CONCURRENT_COMMANDS calls in flight
- running metrics

A timed-out attempt is abandoned, not cancelled. Its queue slot stays
taken until the transport call returns, and no retry starts while that
call is still running.
"""
import logging
import re
import threading
import time
from collections import deque
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Callable, Dict, List, Optional

from .config import (
    DEFAULT_TIMEOUT_MS, DEFAULT_MAX_RETRIES, MAX_CONCURRENT_COMMANDS,
    CACHE_TTL_MS, CACHE_MAX_ENTRIES, BACKOFF_BASE_MS, BACKOFF_CAP_MS,
    NON_TRANSIENT_ERROR_PATTERNS,
)
from .errors import (
    ExecError, TransportUnavailableError, CommandTimeoutError,
    TransientCommandError, NonTransientCommandError,
)
from .metrics import CommandMetrics
from .models import CommandRequest, CommandResult, CacheEntry, QueuedCommand
from .transport import Transport

logger = logging.getLogger(__name__)


def backoff_delay_ms(attempt: int) -> int:
    """Delay after failed attempt ``attempt`` (1-based) before the next one."""
    return min(BACKOFF_CAP_MS, BACKOFF_BASE_MS * 2 ** (attempt - 1))


def is_non_transient(message: str) -> bool:
    text = (message or "").lower()
    return any(re.search(p, text) for p in NON_TRANSIENT_ERROR_PATTERNS)


def classify_failure(command: str, result: CommandResult) -> ExecError:
    """Turn a non-zero exit into the matching error class."""
    detail = (result.stderr or result.stdout or "").strip()
    message = detail or f"Command exited with status {result.exit_code}: {command[:100]}"
    error_cls = NonTransientCommandError if is_non_transient(detail) else TransientCommandError
    return error_cls(message, exit_code=result.exit_code, stderr=result.stderr)


class ExecutionClient:
    """
    Wraps a transport with timeout, retry, caching and a concurrency cap.
    """

    def __init__(self, transport: Transport,
                 max_concurrent: int = MAX_CONCURRENT_COMMANDS,
                 cache_ttl_ms: int = CACHE_TTL_MS,
                 cache_max_entries: int = CACHE_MAX_ENTRIES,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.transport = transport
        self.max_concurrent = max_concurrent
        self.cache_ttl_ms = cache_ttl_ms
        self.cache_max_entries = cache_max_entries
        self._clock = clock
        self._sleep = sleep
        self._cache: Dict[str, CacheEntry] = {}
        self._queue = deque()
        self._in_flight = 0
        self._lock = threading.Lock()
        self.metrics = CommandMetrics(clock)

    @property
    def demo(self) -> bool:
        return self.transport.demo

    def _now_ms(self) -> float:
        return self._clock() * 1000

    # ============= PUBLIC API =============

    def execute(self, command: str,
                timeout_ms: int = DEFAULT_TIMEOUT_MS,
                max_retries: int = DEFAULT_MAX_RETRIES,
                silent: bool = False,
                cacheable: bool = False,
                cache_key: Optional[str] = None,
                rate_limited: bool = True,
                on_output: Optional[Callable[[str], None]] = None) -> str:
        """
        Run ``command`` and return its stdout.

        Raises the last ExecError once every attempt has failed.
        """
        return self.execute_result(
            command, timeout_ms=timeout_ms, max_retries=max_retries, silent=silent,
            cacheable=cacheable, cache_key=cache_key, rate_limited=rate_limited,
            on_output=on_output,
        ).stdout

    def execute_result(self, command: str, **options) -> CommandResult:
        """Same as ``execute`` but returns the full CommandResult."""
        return self.submit(command, **options).result()

    def submit(self, command: str,
               timeout_ms: int = DEFAULT_TIMEOUT_MS,
               max_retries: int = DEFAULT_MAX_RETRIES,
               silent: bool = False,
               cacheable: bool = False,
               cache_key: Optional[str] = None,
               rate_limited: bool = True,
               on_output: Optional[Callable[[str], None]] = None) -> Future:
        """Queue ``command`` and return a Future for its CommandResult."""
        request = CommandRequest(
            command=command,
            timeout_ms=timeout_ms,
            max_retries=max(1, max_retries),
            silent=silent,
            cacheable=cacheable,
            cache_key=cache_key,
            rate_limited=rate_limited,
            on_output=on_output,
        )

        if request.cacheable:
            cached = self._cache_get(request.cache_key)
            if cached is not None:
                self.metrics.record_cache_hit()
                future = Future()
                future.set_result(cached)
                return future

        if request.rate_limited:
            return self._enqueue(request)

        future = Future()
        try:
            future.set_result(self._run(request))
        except Exception as e:
            future.set_exception(e)
        return future

    def invalidate(self, prefix: Optional[str] = None) -> int:
        """Drop cache entries (all, or those whose key starts with prefix)."""
        with self._lock:
            if prefix is None:
                count = len(self._cache)
                self._cache.clear()
                return count
            stale = [k for k in self._cache if k.startswith(prefix)]
            for key in stale:
                del self._cache[key]
            return len(stale)

    def get_metrics(self) -> dict:
        stats = self.metrics.snapshot()
        with self._lock:
            stats["in_flight"] = self._in_flight
            stats["queued"] = len(self._queue)
            stats["cache_size"] = len(self._cache)
        stats["transport"] = self.transport.name
        stats["demo"] = self.transport.demo
        return stats

    # ============= CACHE =============

    def _cache_get(self, key: str) -> Optional[CommandResult]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._now_ms() - entry.stored_at_ms > self.cache_ttl_ms:
                return None
            return entry.result

    def _cache_put(self, key: str, result: CommandResult):
        now = self._now_ms()
        with self._lock:
            if len(self._cache) > self.cache_max_entries:
                expired = [k for k, e in self._cache.items()
                           if now - e.stored_at_ms > self.cache_ttl_ms]
                for k in expired:
                    del self._cache[k]
            self._cache[key] = CacheEntry(key=key, result=result, stored_at_ms=now)

    # ============= QUEUE =============

    def _enqueue(self, request: CommandRequest) -> Future:
        future = Future()
        with self._lock:
            self._queue.append(QueuedCommand(request=request, future=future))
        self._pump()
        return future

    def _pump(self):
        """Start queued requests while slots are free, in FIFO order."""
        starting = []
        with self._lock:
            while self._queue and self._in_flight < self.max_concurrent:
                starting.append(self._queue.popleft())
                self._in_flight += 1
        for item in starting:
            worker = threading.Thread(target=self._run_queued, args=(item,), daemon=True)
            worker.start()

    def _run_queued(self, item: QueuedCommand):
        outstanding: List[Future] = []
        error = None
        try:
            result = self._run(item.request, outstanding)
        except Exception as e:
            error = e
        self._release_after(outstanding)
        if error is not None:
            item.future.set_exception(error)
        else:
            item.future.set_result(result)

    def _release_after(self, outstanding: List[Future]):
        """Free the slot once the last transport call of a request has returned."""
        if outstanding:
            # Runs at once when the call already finished
            outstanding[-1].add_done_callback(lambda _: self._release_slot())
        else:
            self._release_slot()

    def _release_slot(self):
        with self._lock:
            self._in_flight -= 1
        self._pump()

    # ============= EXECUTION =============

    def _run(self, request: CommandRequest, outstanding: Optional[List[Future]] = None) -> CommandResult:
        start = self._clock()
        try:
            result = self._execute_with_retry(request, outstanding if outstanding is not None else [])
        except ExecError:
            self.metrics.record_command((self._clock() - start) * 1000, ok=False)
            raise
        self.metrics.record_command((self._clock() - start) * 1000, ok=True)
        if request.cacheable:
            self._cache_put(request.cache_key, result)
        return result

    def _execute_with_retry(self, request: CommandRequest, outstanding: List[Future]) -> CommandResult:
        last_error: Optional[ExecError] = None
        for attempt in range(1, request.max_retries + 1):
            try:
                return self._attempt(request, outstanding)
            except TransportUnavailableError:
                raise
            except ExecError as e:
                last_error = e
                final = attempt >= request.max_retries
                non_transient = isinstance(e, NonTransientCommandError)
                if not request.silent:
                    logger.warning("Attempt %d/%d failed for %r: %s",
                                   attempt, request.max_retries, request.command[:80], e)
                if non_transient or final:
                    break
                self._sleep(backoff_delay_ms(attempt) / 1000.0)
                # Never stack a second call on one that is still running
                if not outstanding[-1].done():
                    logger.warning("Not retrying %r: previous attempt still running",
                                   request.command[:80])
                    break
        raise last_error

    def _attempt(self, request: CommandRequest, outstanding: List[Future]) -> CommandResult:
        """One transport call raced against the timeout."""
        timeout_s = request.timeout_ms / 1000.0
        box = Future()
        outstanding.append(box)

        def call():
            try:
                if request.on_output:
                    box.set_result(self.transport.spawn(
                        request.command, on_output=request.on_output, timeout_seconds=timeout_s))
                else:
                    box.set_result(self.transport.exec(request.command, timeout_seconds=timeout_s))
            except Exception as e:
                box.set_exception(e)

        threading.Thread(target=call, daemon=True).start()
        try:
            result = box.result(timeout=timeout_s)
        except FutureTimeoutError as e:
            raise CommandTimeoutError(
                f"Timed out after {request.timeout_ms}ms: {request.command[:100]}", e)
        except ExecError:
            raise
        except Exception as e:
            error_cls = NonTransientCommandError if is_non_transient(str(e)) else TransientCommandError
            raise error_cls(str(e) or e.__class__.__name__, original_error=e)

        if not result.ok:
            raise classify_failure(request.command, result)
        return result
