"""
Transport selection and the demo transport's in-memory device.
"""
import json
import re

import pytest

from core import transport as transport_module
from core.config import (
    BACKUP_ENGINE, BOOT_COUNT_FILE, SAFE_MODE_FLAG, LOG_FILE, SETTINGS_FILE,
    RECOVERY_POINT_SCRIPT, RECOVERY_STATE_FILE, SAFE_MODE_SCRIPT, EXPORT_DIR, ANALYTICS_ENGINE,
)
from core.dispatcher import ACTIONS
from core.errors import TransportUnavailableError, CommandTimeoutError
from core.shell import Shell
from core.transport import MockTransport, AdbTransport, LocalShellTransport, select_transport


# ============= SELECTION =============

def test_select_mock():
    assert isinstance(select_transport("mock"), MockTransport)


def test_select_unknown_mode():
    with pytest.raises(ValueError):
        select_transport("bluetooth")


def test_auto_falls_back_to_mock(monkeypatch):
    monkeypatch.setattr(transport_module.shutil, "which", lambda name: None)
    selected = select_transport("auto")
    assert isinstance(selected, MockTransport)
    assert selected.demo is True


def test_adb_mode_without_device(monkeypatch):
    monkeypatch.setattr(transport_module, "_single_adb_device", lambda: None)
    with pytest.raises(TransportUnavailableError):
        select_transport("adb")


def test_local_requires_su(monkeypatch):
    monkeypatch.setattr(transport_module.shutil, "which", lambda name: None)
    with pytest.raises(TransportUnavailableError):
        LocalShellTransport()


def test_adb_transport_maps_failure_to_stderr():
    class FakeShell:
        def is_alive(self):
            return True

        def run(self, command, timeout_seconds):
            return 1, "cat: /x: No such file or directory"

        def disconnect(self):
            pass

    result = AdbTransport("SERIAL", shell=FakeShell()).exec("cat /x")
    assert result.exit_code == 1
    assert result.stdout == ""
    assert "No such file" in result.stderr


# ============= DEMO DEVICE =============

@pytest.fixture
def mock():
    return MockTransport(seed=1)


def test_results_flagged_demo(mock):
    assert mock.exec("getprop").demo is True


def test_unknown_command_not_found(mock):
    result = mock.exec("reboot bootloader")
    assert result.exit_code == 127
    assert "not found" in result.stderr


def test_backup_lifecycle(mock):
    assert mock.exec(ACTIONS["create_backup"].build("new_one", wait=True)).ok
    assert "new_one" in mock.backups
    listing = mock.exec(f"stat -c '%F|%s|%Y|%n' /data/local/tmp/antibootloop/kernels/* 2>/dev/null || true")
    assert "new_one.img" in listing.stdout

    assert mock.exec(f"sh {BACKUP_ENGINE} delete --name new_one").ok
    restore = mock.exec(f"sh {BACKUP_ENGINE} restore --name new_one")
    assert restore.exit_code == 1
    assert "not found" in restore.stderr


def test_detached_create_applies(mock):
    assert mock.exec(ACTIONS["create_backup"].build("bg", wait=False)).ok
    assert "bg" in mock.backups


def test_file_writes(mock):
    mock.exec(f"printf '%s\\n' 7 > {BOOT_COUNT_FILE}")
    assert mock.exec(f"cat {BOOT_COUNT_FILE} 2>/dev/null || true").stdout == "7\n"

    mock.exec(f"touch {SAFE_MODE_FLAG}")
    assert mock.exec(f"if [ -f {SAFE_MODE_FLAG} ]; then echo 1; else echo 0; fi").stdout == "1\n"
    mock.exec(f"rm -f {SAFE_MODE_FLAG}")
    assert mock.exec(f"if [ -f {SAFE_MODE_FLAG} ]; then echo 1; else echo 0; fi").stdout == "0\n"

    mock.exec(f": > {LOG_FILE}")
    assert mock.files[LOG_FILE] == ""


def test_settings_write(mock):
    command = ACTIONS["update_settings"].build({"maxBootAttempts": 6})
    assert mock.exec(command).ok
    assert json.loads(mock.files[SETTINGS_FILE]) == {"maxBootAttempts": 6}


def test_missing_file_strict_and_tolerant(mock):
    assert mock.exec("cat /nope").exit_code == 1
    assert mock.exec("cat /nope 2>/dev/null || true").stdout == ""


def test_recovery_points(mock):
    mock.exec(f"sh {RECOVERY_POINT_SCRIPT} create rp1 ''")
    assert "rp1" in mock.exec(f"sh {RECOVERY_POINT_SCRIPT} list").stdout
    assert mock.exec(f"sh {RECOVERY_POINT_SCRIPT} restore missing").exit_code == 1


def test_toast_recorded(mock):
    mock.toast("hello")
    assert mock.toasts == ["hello"]


def test_emergency_mode_cycle(mock):
    command = ACTIONS["activate_emergency"].build()
    assert mock.exec(command).ok
    assert SAFE_MODE_FLAG in mock.files
    assert mock.files[RECOVERY_STATE_FILE] == "emergency\n"
    assert any(name.startswith("emergency_") for name in mock.backups)

    assert mock.exec(ACTIONS["deactivate_emergency"].build()).ok
    assert SAFE_MODE_FLAG not in mock.files
    assert mock.files[RECOVERY_STATE_FILE] == "normal\n"


def test_script_chain_stops_on_failure(mock):
    missing = f"sh {BACKUP_ENGINE} delete --name nope"
    result = mock.exec(f"{missing} && sh {SAFE_MODE_SCRIPT} activate_emergency")
    assert result.exit_code == 1
    assert SAFE_MODE_FLAG not in mock.files

    result = mock.exec(f"{missing}; sh {SAFE_MODE_SCRIPT} activate_emergency")
    assert result.ok
    assert SAFE_MODE_FLAG in mock.files


def test_export_then_import(mock):
    assert mock.exec(ACTIONS["export_backup"].build(backup="boot_stock")).ok
    archive = f"{EXPORT_DIR}/boot_stock.tar.gz"
    assert archive in mock.files

    del mock.backups["boot_stock"]
    assert mock.exec(ACTIONS["import_backup"].build(path=archive)).ok
    assert "boot_stock" in mock.backups
    assert mock.exec(ACTIONS["import_backup"].build(path="/sdcard/missing.tar.gz")).exit_code == 1


def test_system_status_report(mock):
    result = mock.exec(f"sh {ANALYTICS_ENGINE} get_system_status")
    report = json.loads(result.stdout)
    assert report["backups"] == 2
    assert report["safeMode"] is False


def test_bootloop_test_logged(mock):
    assert mock.exec(ACTIONS["test_bootloop"].build()).ok
    assert "Bootloop protection test run" in mock.files[LOG_FILE]


# ============= REAL DEVICE =============

@pytest.mark.skipif(not transport_module.list_adb_devices(), reason="no adb device attached")
def test_adb_root_shell_roundtrip():
    serial = transport_module.list_adb_devices()[0]
    adb = AdbTransport(serial, shell=Shell(serial))
    try:
        result = adb.exec("echo hello")
    finally:
        adb.close()
    assert result.ok
    assert result.stdout.strip() == "hello"


# ============= PEXPECT SHELL =============

class FakePty:
    """Echoes the sent line, then prints scripted output and the markers."""

    def __init__(self, output, exit_code=0):
        self.output = output
        self.exit_code = exit_code
        self.before = ""

    def isalive(self):
        return True

    def sendline(self, line):
        exit_marker = re.search(r'"(__EXIT_\w+?__)\$\?', line).group(1)
        self.before = (f"{line}\r\n{self.output}\r\n"
                       f"{exit_marker}{self.exit_code}{exit_marker}\r\n")

    def expect(self, pattern, timeout=None):
        return 0


def connected_shell(pty):
    shell = Shell("SERIAL")
    shell._process = pty
    shell._is_connected = True
    return shell


def test_shell_run_strips_echo_and_markers():
    exit_code, output = connected_shell(FakePty("line one\r\nline two")).run("cat /x")
    assert exit_code == 0
    assert output == "line one\nline two"


def test_shell_run_reports_exit_code():
    exit_code, output = connected_shell(FakePty("cat: /x: No such file", exit_code=1)).run("cat /x")
    assert exit_code == 1
    assert output == "cat: /x: No such file"


def test_shell_run_requires_connection():
    with pytest.raises(TransportUnavailableError):
        Shell("SERIAL").run("id")


def test_shell_busy_command_not_sent():
    pty = FakePty("rebooting")
    shell = connected_shell(pty)
    shell._lock.acquire()
    try:
        with pytest.raises(CommandTimeoutError):
            shell.run("reboot", timeout_seconds=0.05)
    finally:
        shell._lock.release()
    assert pty.before == ""
