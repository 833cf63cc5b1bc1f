"""
Text rendering helpers.
"""
import logging

from core.models import ActionOutcome, ActionState, StatusSnapshot
from tools import render
from utils.logger import setup_logging


def test_gauge():
    assert render.gauge(1, 4, width=4) == "[#---]  25%"
    assert render.gauge(9, 3, width=4) == "[####] 100%"
    assert render.gauge(1, 0, width=4) == "[----]   ?"


def test_format_size():
    assert render.format_size(512) == "512B"
    assert render.format_size(67108864) == "64.0MB"


def test_format_uptime():
    assert render.format_uptime(90060) == "1d 1h 1m"
    assert render.format_uptime(3660) == "1h 1m"


def test_status_lists_field_errors():
    text = render.render_status(StatusSnapshot(errors=("getprop: Permission denied",)))
    assert text.startswith("STATUS: DEGRADED")
    assert "getprop: Permission denied" in text


def test_outcome_status_lines():
    busy = ActionOutcome("clear_logs", ActionState.EXECUTING, False, "busy", error_kind="busy")
    assert render.render_outcome(busy).startswith("STATUS: BUSY")
    done = ActionOutcome("view_logs", ActionState.SUCCEEDED, True, "Logs loaded", output="a\nb\n")
    assert render.render_outcome(done).endswith("OUTPUT:\na\nb")


def test_setup_logging_file(tmp_path):
    log_file = tmp_path / "logs" / "abl.log"
    root = setup_logging("INFO", str(log_file))
    try:
        logging.getLogger("core.test").info("hello file")
        for handler in root.handlers:
            handler.flush()
        assert "hello file" in log_file.read_text()
    finally:
        setup_logging("WARNING")


def test_render_report_sorted():
    text = render.render_report({"safeMode": False, "bootCount": 2})
    assert text.split("\n") == ["STATUS: OK", "SYSTEM REPORT:", "  bootCount: 2", "  safeMode: False"]
