"""
Shared fixtures. No device needed: everything runs against fake or
demo transports.
"""
import threading
import time

import pytest

from core.client import ExecutionClient
from core.models import CommandResult
from core.transport import Transport, MockTransport


class FakeTransport(Transport):
    """
    Scripted transport.

    ``responses`` maps a command to a CommandResult, an exception, a list
    of those (consumed one per call, last one repeats) or a callable
    taking the command. Unscripted commands fail with "not found".
    """

    name = "fake"

    def __init__(self, responses=None, delay: float = 0.0):
        self.responses = dict(responses or {})
        self.delay = delay
        self.calls = []
        self.toasts = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def exec(self, command, timeout_seconds=30):
        with self._lock:
            self.calls.append(command)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            return self._respond(command)
        finally:
            with self._lock:
                self.active -= 1

    def _respond(self, command):
        response = self.responses.get(command)
        if response is None:
            return CommandResult(127, "", f"sh: {command.split()[0]}: not found")
        if isinstance(response, list):
            with self._lock:
                response = response.pop(0) if len(response) > 1 else response[0]
        if callable(response) and not isinstance(response, CommandResult):
            response = response(command)
        if isinstance(response, Exception):
            raise response
        return response

    def toast(self, message):
        self.toasts.append(message)

    def count(self, command) -> int:
        return self.calls.count(command)


def ok(stdout=""):
    return CommandResult(0, stdout, "")


def fail(stderr, exit_code=1):
    return CommandResult(exit_code, "", stderr)


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class SleepRecorder:
    """Stands in for time.sleep; records requested delays."""

    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def make_client(clock, sleeps):
    def factory(transport, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", sleeps)
        return ExecutionClient(transport, **kwargs)
    return factory


@pytest.fixture
def mock_transport():
    return MockTransport(seed=7)


@pytest.fixture(autouse=True)
def analytics_dir(tmp_path, monkeypatch):
    """Keep analytics out of the real home directory."""
    from utils import analytics
    monkeypatch.setattr(analytics, "ANALYTICS_DIR", tmp_path / "analytics")
    monkeypatch.setattr(analytics, "ANALYTICS_FILE", tmp_path / "analytics" / "analytics.jsonl")
    monkeypatch.setattr(analytics, "_last_action", None)
    return tmp_path / "analytics"
