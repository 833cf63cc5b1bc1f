"""
End-to-end tests for the ModuleManager on the demo transport.

Covers the full loop a front end drives: poll status, run an action,
see the re-read state.
"""
import pytest

from core.config import (
    BOOT_COUNT_FILE, TOTAL_BOOTS_FILE, EMERGENCY_DISABLE_FLAG, SETTINGS_FILE,
)
from core.manager import ModuleManager, MAX_NOTIFICATIONS
from core.models import ActionState
from core.transport import MockTransport
from tools import dashboard


# ============= FIXTURES =============

@pytest.fixture
def mock():
    return MockTransport(seed=11)


@pytest.fixture
def manager(mock):
    notes = []
    m = ModuleManager(transport=mock, notify=lambda message, level: notes.append((level, message)))
    m.notes = notes
    yield m
    m.close()


# ============= STATE =============

def test_demo_mode_flagged(manager):
    assert manager.state.demo is True
    status = manager.refresh_status()
    assert status.demo is True
    assert manager.state.status is status


def test_refresh_all_populates_state(manager):
    everything = manager.refresh_all()
    assert manager.state.status is everything["status"]
    assert [b.name for b in manager.state.backups] == ["boot_patched", "boot_stock"]
    assert everything["hardware"].cpu_temperature > 0


def test_refresh_recovery_points_and_settings(manager):
    assert manager.refresh_recovery_points() == ["pre_update_2025_01"]
    assert manager.state.settings == {}
    assert manager.refresh_settings()["maxBootAttempts"] == 3


# ============= ACTIONS =============

def test_reset_counter_rereads_status(manager, mock):
    mock.files[BOOT_COUNT_FILE] = "2\n"
    assert manager.refresh_status().boot_count == 2

    outcome = manager.confirmed("reset_boot_counter")

    assert outcome.ok
    assert manager.state.status.boot_count == 0
    assert ("success", "Boot counter reset") in manager.notes
    assert "Boot counter reset" in mock.toasts


def test_emergency_disable(manager, mock):
    outcome = manager.run_action("emergency_disable", confirm=lambda prompt: True)
    assert outcome.ok
    assert EMERGENCY_DISABLE_FLAG in mock.files
    assert manager.state.status.emergency_disabled is True


def test_clear_emergency_disable(manager, mock):
    assert manager.confirmed("emergency_disable").ok
    outcome = manager.run_action("clear_emergency_disable")
    assert outcome.ok
    assert EMERGENCY_DISABLE_FLAG not in mock.files
    assert manager.state.status.emergency_disabled is False


def test_emergency_mode_round_trip(manager, mock):
    outcome = manager.confirmed("activate_emergency")
    assert outcome.ok
    assert manager.state.status.safe_mode is True
    assert manager.state.status.recovery_state == "emergency"
    assert any(b.name.startswith("emergency_") for b in manager.state.backups)

    assert manager.confirmed("deactivate_emergency").ok
    assert manager.state.status.safe_mode is False
    assert manager.state.status.recovery_state == "normal"


def test_export_and_import_backup(manager, mock):
    assert manager.run_action("export_backup", backup="boot_stock").ok
    del mock.backups["boot_stock"]
    outcome = manager.run_action("import_backup", path="/sdcard/KernelSU_Backups/boot_stock.tar.gz")
    assert outcome.ok
    assert "backups" in outcome.refreshed
    assert "boot_stock" in [b.name for b in manager.state.backups]


def test_bad_stored_setting_does_not_break_actions(manager, mock):
    mock.files[SETTINGS_FILE] = '{"maxBootAttempts": null}\n'

    outcome = manager.confirmed("reset_boot_counter")

    assert outcome.ok
    assert manager.dispatcher.state("reset_boot_counter") == ActionState.IDLE
    assert manager.state.status.max_attempts == 3
    assert any(e.startswith("max_attempts") for e in manager.state.status.errors)


def test_update_settings_rejects_bad_max_attempts(manager, mock):
    before = mock.files[SETTINGS_FILE]
    outcome = manager.run_action("update_settings", settings={"maxBootAttempts": "three"})
    assert not outcome.ok
    assert outcome.error_kind == "validation_error"
    assert mock.files[SETTINGS_FILE] == before


def test_fresh_device_without_counters_is_healthy(manager, mock):
    del mock.files[BOOT_COUNT_FILE]
    del mock.files[TOTAL_BOOTS_FILE]
    status = manager.refresh_status(use_cache=False)
    assert status.boot_count == 0
    assert status.has_errors is False


def test_polls_inside_ttl_do_not_reach_device(manager, mock):
    manager.refresh_all()
    issued = len(mock.commands)
    manager.refresh_all()
    assert len(mock.commands) == issued


def test_unconfirmed_action_leaves_state(manager, mock):
    manager.refresh_status()
    before = manager.state.status
    outcome = manager.run_action("emergency_disable")
    assert outcome.error_kind == "not_confirmed"
    assert manager.state.status is before
    assert EMERGENCY_DISABLE_FLAG not in mock.files


def test_create_backup_refreshes_list(manager):
    manager.refresh_backups()
    outcome = manager.run_action("create_backup", name="nightly", wait=True)
    assert outcome.ok
    assert "nightly" in [b.name for b in manager.state.backups]


def test_failed_action_notifies(manager):
    outcome = manager.confirmed("delete_backup", backup="ghost")
    assert outcome.state == ActionState.FAILED
    assert manager.notes[-1][0] == "error"
    assert manager.state.busy_actions == set()


def test_busy_actions_tracked(manager):
    seen = []

    def confirm(prompt):
        seen.append(set(manager.state.busy_actions))
        return True

    manager.run_action("clear_logs", confirm=confirm)
    assert seen == [{"clear_logs"}]
    assert manager.state.busy_actions == set()


def test_notifications_bounded(manager):
    for _ in range(MAX_NOTIFICATIONS + 10):
        manager.run_action("view_logs", lines=1)
    assert len(manager.state.notifications) == MAX_NOTIFICATIONS


def test_metrics(manager):
    manager.refresh_status()
    manager.refresh_status()
    metrics = manager.get_metrics()
    assert metrics["cache_hits"] > 0
    assert metrics["transport"] == "mock"


# ============= DASHBOARD =============

def test_dashboard_parse_params():
    assert dashboard.parse_params(["name=a", "description=x=y"]) == {"name": "a", "description": "x=y"}
    with pytest.raises(ValueError):
        dashboard.parse_params(["oops"])


def test_dashboard_action_prompts(manager, monkeypatch, capsys):
    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    assert dashboard.run_action(manager, "clear_logs", {}) == 1
    assert "CONFIRMATION_REQUIRED" in capsys.readouterr().out

    monkeypatch.setattr("builtins.input", lambda prompt: "y")
    assert dashboard.run_action(manager, "clear_logs", {}) == 0
    assert "STATUS: SUCCESS" in capsys.readouterr().out


def test_dashboard_yes_skips_prompt(manager, monkeypatch):
    def no_input(prompt):
        raise AssertionError("prompted")

    monkeypatch.setattr("builtins.input", no_input)
    assert dashboard.run_action(manager, "reset_boot_counter", {}, assume_yes=True) == 0


def test_dashboard_status_command(monkeypatch, capsys):
    monkeypatch.setattr("core.manager.TRANSPORT_MODE", "mock")
    assert dashboard.main(["status"]) == 0
    out = capsys.readouterr().out
    assert "Pixel 6 (demo)" in out
    assert "Backups: 2" in out


def test_dashboard_report_command(monkeypatch, capsys):
    monkeypatch.setattr("core.manager.TRANSPORT_MODE", "mock")
    assert dashboard.main(["report"]) == 0
    out = capsys.readouterr().out
    assert "SYSTEM REPORT:" in out
    assert "recoveryPoints: 1" in out
