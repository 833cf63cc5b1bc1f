"""
Host bridge adapters.

A transport runs one shell command with root privileges and returns the
exit code with its output. The manager picks one implementation at
start-up; nothing above this layer checks which one it got.
"""
import json
import logging
import os
import random
import re
import shlex
import shutil
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from .config import (
    ADB_BINARY, MODULE_PROP_FILE, MODULE_ID, THERMAL_ZONE_PATHS,
    BOOT_COUNT_FILE, TOTAL_BOOTS_FILE, RECOVERY_STATE_FILE, LOG_FILE, BACKUP_DIR,
    SETTINGS_FILE, STORAGE_HEALTH_FILE, DEFAULT_SETTINGS, BACKUP_ENGINE,
    RECOVERY_POINT_SCRIPT, WEBUI_MANAGER_SCRIPT, APPLY_SETTINGS_SCRIPT, SAFE_MODE_SCRIPT,
    ANALYTICS_ENGINE, TEST_BOOTLOOP_SCRIPT, SAFE_MODE_FLAG, EXPORT_DIR,
)
from .errors import TransportUnavailableError, TransientCommandError
from .models import CommandResult, ShellType
from .shell import Shell

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]


class Transport(ABC):
    """Privileged command bridge."""

    name = "transport"
    demo = False

    @abstractmethod
    def exec(self, command: str, timeout_seconds: float = 30) -> CommandResult:
        """Run a command to completion."""

    def spawn(self, command: str, args: Optional[List[str]] = None,
              on_output: Optional[OutputCallback] = None,
              timeout_seconds: float = 30) -> CommandResult:
        """
        Run a command, streaming output through ``on_output``.

        The base version runs ``exec`` and emits the output once.
        """
        full = command if not args else " ".join([command] + list(args))
        result = self.exec(full, timeout_seconds)
        if on_output and result.stdout:
            on_output(result.stdout)
        return result

    def toast(self, message: str) -> None:
        logger.info("[%s] %s", self.name, message)

    def close(self) -> None:
        pass


class LocalShellTransport(Transport):
    """Runs on the device itself, one ``su -c`` per command."""

    name = "local"

    def __init__(self, su_binary: Optional[str] = None):
        self.su_binary = su_binary or shutil.which("su")
        if not self.su_binary:
            raise TransportUnavailableError("su binary not found; not running on a rooted device")

    def _argv(self, command: str) -> List[str]:
        return [self.su_binary, "-c", command]

    def exec(self, command: str, timeout_seconds: float = 30) -> CommandResult:
        try:
            proc = subprocess.run(self._argv(command), capture_output=True, text=True,
                                  timeout=timeout_seconds)
        except FileNotFoundError as e:
            raise TransportUnavailableError(f"su disappeared: {self.su_binary}", e)
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills the child on timeout
            raise TransientCommandError(f"su -c timed out after {timeout_seconds}s", original_error=e)
        return CommandResult(proc.returncode, proc.stdout, proc.stderr)

    def spawn(self, command: str, args: Optional[List[str]] = None,
              on_output: Optional[OutputCallback] = None,
              timeout_seconds: float = 30) -> CommandResult:
        full = command if not args else " ".join([command] + list(args))
        try:
            proc = subprocess.Popen(self._argv(full), stdout=subprocess.PIPE,
                                    stderr=subprocess.PIPE, text=True, bufsize=1)
        except FileNotFoundError as e:
            raise TransportUnavailableError(f"su disappeared: {self.su_binary}", e)

        stderr_lines = []

        def drain_stderr():
            for line in proc.stderr:
                stderr_lines.append(line)

        reader = threading.Thread(target=drain_stderr, daemon=True)
        reader.start()

        stdout_lines = []
        for line in proc.stdout:
            stdout_lines.append(line)
            if on_output:
                on_output(line.rstrip('\n'))

        try:
            exit_code = proc.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired as e:
            proc.kill()
            raise TransientCommandError(f"Spawned command timed out: {full[:100]}", original_error=e)
        reader.join(timeout=1)
        return CommandResult(exit_code, "".join(stdout_lines), "".join(stderr_lines))


class AdbTransport(Transport):
    """Root shell on an attached device over adb."""

    name = "adb"

    def __init__(self, device_serial: str, shell: Optional[Shell] = None):
        self.device_serial = device_serial
        self._shell = shell or Shell(device_serial, ShellType.ROOT)

    def _ensure_connected(self):
        if not self._shell.is_alive():
            self._shell.connect()

    def exec(self, command: str, timeout_seconds: float = 30) -> CommandResult:
        self._ensure_connected()
        exit_code, output = self._shell.run(command, timeout_seconds)
        if exit_code == 0:
            return CommandResult(exit_code, output, "")
        return CommandResult(exit_code, "", output)

    def close(self) -> None:
        self._shell.disconnect()


def list_adb_devices() -> List[str]:
    """Serials of devices in ``device`` state."""
    try:
        result = subprocess.run(
            [ADB_BINARY, "devices"],
            capture_output=True, text=True, timeout=10
        )
    except (OSError, subprocess.TimeoutExpired):
        return []
    serials = []
    for line in result.stdout.strip().split('\n')[1:]:
        parts = line.split()
        if len(parts) >= 2 and parts[1] == "device":
            serials.append(parts[0])
    return serials


# ============= DEMO MODE =============

MOCK_GETPROP = """[ro.product.model]: [Pixel 6 (demo)]
[ro.product.device]: [oriole]
[ro.build.version.release]: [14]
[ro.kernelsu.version]: [11986]
[ro.build.type]: [user]
"""

MOCK_MEMINFO = """MemTotal:        7869428 kB
MemFree:          412876 kB
MemAvailable:    3145728 kB
Buffers:            3420 kB
Cached:          2801120 kB
"""

MOCK_DF = """Filesystem       Size  Used Avail Use% Mounted on
/dev/block/dm-40 110G   38G   72G  35% /data
"""

MOCK_LOG = """[2025-01-05 10:00:01] Boot counter reset after successful boot
[2025-01-05 10:00:02] Kernel backup verified: boot_stock.img
[2025-01-05 10:00:03] Monitoring started (cpu_temp, ram)
"""

TOLERANT_SUFFIX = " 2>/dev/null || true"


class MockTransport(Transport):
    """
    Demo/offline bridge with synthetic outputs.

    Keeps a small in-memory filesystem (counter files, flags, backups,
    recovery points) so actions have visible effects during a demo
    session. Unknown commands fail with "not found", as sh would.
    """

    name = "mock"
    demo = True

    def __init__(self, latency_seconds: float = 0.0, seed: Optional[int] = None):
        self.latency_seconds = latency_seconds
        self._random = random.Random(seed)
        self._lock = threading.Lock()
        self._started = time.time()
        self.toasts: List[str] = []
        self.commands: List[str] = []
        self.files: Dict[str, str] = {
            BOOT_COUNT_FILE: "0\n",
            TOTAL_BOOTS_FILE: "42\n",
            RECOVERY_STATE_FILE: "normal\n",
            LOG_FILE: MOCK_LOG,
            STORAGE_HEALTH_FILE: "0x01 0x01\n",
            SETTINGS_FILE: json.dumps(DEFAULT_SETTINGS) + "\n",
            MODULE_PROP_FILE: (
                f"id={MODULE_ID}\nname=KernelSU Anti-Bootloop & Backup\n"
                "version=v1.0.0\nversionCode=1\nauthor=OverModules Team\n"
            ),
        }
        # name -> (size, mtime, has_hash)
        self.backups: Dict[str, tuple] = {
            "boot_stock": (67108864, 1735000000, True),
            "boot_patched": (67108864, 1736000000, False),
        }
        self.recovery_points: List[str] = ["pre_update_2025_01"]

    # ============= READS =============

    def _reply(self, cmd: str) -> CommandResult:
        if cmd == "getprop":
            return self._ok(MOCK_GETPROP)
        if cmd == "uname -r":
            return self._ok("5.10.198-android13-4-demo\n")
        if cmd == "su -v":
            return self._ok("11986:KernelSU\n")
        if cmd == "cat /proc/uptime":
            return self._ok(f"{time.time() - self._started + 3600:.2f} 1000.00\n")
        if cmd == "cat /proc/meminfo":
            return self._ok(MOCK_MEMINFO)
        if cmd.startswith("df "):
            return self._ok(MOCK_DF)

        tolerant = cmd.endswith(TOLERANT_SUFFIX)
        if tolerant:
            cmd = cmd[:-len(TOLERANT_SUFFIX)]

        if cmd.startswith("stat ") and BACKUP_DIR in cmd:
            return self._ok(self._stat_backups())
        if cmd.startswith("cat "):
            path = cmd.split()[1]
            if path == THERMAL_ZONE_PATHS[0]:
                return self._ok(f"{self._random.randint(38, 46)}000\n")
            if path in self.files:
                return self._ok(self.files[path])
            if tolerant:
                return self._ok("")
            return self._fail(1, f"cat: {path}: No such file or directory")

        flag = re.match(r'^if \[ -f (\S+) \]; then echo 1; else echo 0; fi$', cmd)
        if flag:
            return self._ok("1\n" if flag.group(1) in self.files else "0\n")

        tail = re.match(r'^tail -n (\d+) (\S+)', cmd)
        if tail:
            content = self.files.get(tail.group(2))
            if content is None:
                return self._ok("No logs available\n")
            lines = content.splitlines()[-int(tail.group(1)):]
            return self._ok("\n".join(lines) + "\n" if lines else "")

        if cmd.startswith("echo "):
            return self._ok(" ".join(shlex.split(cmd[5:])) + "\n")
        return self._apply_write(cmd)

    def _stat_backups(self) -> str:
        lines = []
        for name, (size, mtime, has_hash) in sorted(self.backups.items()):
            lines.append(f"regular file|{size}|{mtime}|{BACKUP_DIR}/{name}.img")
            if has_hash:
                lines.append(f"regular file|65|{mtime}|{BACKUP_DIR}/{name}.sha256")
        return "\n".join(lines) + ("\n" if lines else "")

    # ============= WRITES =============

    def _apply_write(self, cmd: str) -> CommandResult:
        detached = re.match(r'^nohup (.+) >/dev/null 2>&1 &$', cmd)
        if detached:
            self._apply_write(detached.group(1))
            return self._ok("")

        write = re.match(r"^printf '%s\\n' (.+?) > (\S+)(?: && .*)?$", cmd)
        if write:
            self.files[write.group(2)] = " ".join(shlex.split(write.group(1))) + "\n"
            return self._ok("")
        touch = re.match(r'^touch (\S+)$', cmd)
        if touch:
            self.files.setdefault(touch.group(1), "")
            return self._ok("")
        remove = re.match(r'^rm -f (\S+)$', cmd)
        if remove:
            self.files.pop(remove.group(1), None)
            return self._ok("")
        if cmd.startswith(": > "):
            self.files[cmd[4:].strip()] = ""
            return self._ok("")
        if cmd.startswith("for d in "):
            return self._ok("")
        if cmd.startswith("sh "):
            return self._script_chain(cmd)
        return self._fail(127, f"sh: {cmd.split()[0]}: not found")

    def _script_chain(self, cmd: str) -> CommandResult:
        """``sh a; sh b && sh c`` with sh semantics for ``;`` and ``&&``."""
        lexer = shlex.shlex(cmd, posix=True, punctuation_chars=";&")
        lexer.whitespace_split = True
        group: List[str] = []
        result = self._ok("")
        for token in list(lexer) + [";"]:
            if token not in (";", "&&"):
                group.append(token)
                continue
            if group:
                if group[0] != "sh":
                    return self._fail(127, f"sh: {group[0]}: not found")
                result = self._script(group[1:])
                group = []
            if token == "&&" and not result.ok:
                return result
        return result

    def _script(self, argv: List[str]) -> CommandResult:
        script = argv[0] if argv else ""
        args = argv[1:]
        if script == BACKUP_ENGINE and args:
            return self._backup_engine(args[0], args[1:])
        if script == RECOVERY_POINT_SCRIPT and args:
            return self._recovery_point(args[0], args[1:])
        if script == WEBUI_MANAGER_SCRIPT:
            return self._ok("running\n")
        if script == APPLY_SETTINGS_SCRIPT:
            return self._ok("Settings applied\n")
        if script == SAFE_MODE_SCRIPT and args:
            return self._safe_mode(args[0])
        if script == TEST_BOOTLOOP_SCRIPT:
            self.files[LOG_FILE] = self.files.get(LOG_FILE, "") + "[demo] Bootloop protection test run\n"
            return self._ok("Bootloop protection test initiated\n")
        if script == ANALYTICS_ENGINE and args[:1] == ["get_system_status"]:
            return self._ok(json.dumps({
                "bootCount": int(self.files.get(BOOT_COUNT_FILE, "0").strip() or 0),
                "backups": len(self.backups),
                "recoveryPoints": len(self.recovery_points),
                "safeMode": SAFE_MODE_FLAG in self.files,
            }) + "\n")
        return self._fail(127, f"sh: {script}: not found")

    def _backup_engine(self, verb: str, args: List[str]) -> CommandResult:
        if verb == "create_emergency_backup":
            name = f"emergency_{int(time.time())}"
            self.backups[name] = (67108864, int(time.time()), True)
            return self._ok(f"Emergency backup {name} created\n")
        if verb == "export_backup":
            name = args[0] if args else ""
            if name not in self.backups:
                return self._fail(1, f"Backup {name} not found")
            self.files[f"{EXPORT_DIR}/{name}.tar.gz"] = ""
            return self._ok(f"Exported to {EXPORT_DIR}/{name}.tar.gz\n")
        if verb == "import_backup":
            path = args[0] if args else ""
            if path not in self.files:
                return self._fail(1, f"{path}: No such file or directory")
            name = os.path.basename(path).split(".")[0]
            self.backups[name] = (self._random.randint(32, 96) * 1048576, int(time.time()), False)
            return self._ok(f"Backup {name} imported\n")
        options = dict(zip(args[::2], args[1::2]))
        name = options.get("--name", "")
        if verb == "create":
            self.backups[name] = (self._random.randint(32, 96) * 1048576, int(time.time()), True)
            return self._ok(f"Backup {name} created\n")
        if name not in self.backups:
            return self._fail(1, f"Backup {name} not found")
        if verb == "restore":
            return self._ok(f"Backup {name} restored\n")
        if verb == "delete":
            del self.backups[name]
            return self._ok(f"Backup {name} deleted\n")
        return self._fail(2, f"Unknown backup-engine command: {verb}")

    def _safe_mode(self, verb: str) -> CommandResult:
        if verb == "activate_emergency":
            self.files[SAFE_MODE_FLAG] = ""
            self.files[RECOVERY_STATE_FILE] = "emergency\n"
            return self._ok("Emergency mode active\n")
        if verb == "deactivate_emergency":
            self.files.pop(SAFE_MODE_FLAG, None)
            self.files[RECOVERY_STATE_FILE] = "normal\n"
            return self._ok("Emergency mode cleared\n")
        return self._fail(2, f"Unknown safe-mode command: {verb}")

    def _recovery_point(self, verb: str, args: List[str]) -> CommandResult:
        if verb == "list":
            return self._ok("".join(f"{p}\n" for p in self.recovery_points))
        name = args[0] if args else ""
        if verb == "create":
            self.recovery_points.append(name)
            return self._ok(f"Recovery point {name} created\n")
        if name not in self.recovery_points:
            return self._fail(1, f"Recovery point {name} not found")
        if verb == "delete":
            self.recovery_points.remove(name)
        return self._ok(f"Recovery point {name} {verb}d\n")

    def _ok(self, stdout: str) -> CommandResult:
        return CommandResult(0, stdout, "", demo=True)

    def _fail(self, code: int, stderr: str) -> CommandResult:
        return CommandResult(code, "", stderr, demo=True)

    def exec(self, command: str, timeout_seconds: float = 30) -> CommandResult:
        if self.latency_seconds:
            time.sleep(self.latency_seconds)
        with self._lock:
            self.commands.append(command)
            return self._reply(command.strip())

    def toast(self, message: str) -> None:
        self.toasts.append(message)
        logger.info("[demo] %s", message)


def select_transport(mode: str = "auto", device_serial: Optional[str] = None) -> Transport:
    """
    Pick the host bridge once, at start-up.

    ``auto`` prefers local su, then a single attached adb device, and
    falls back to demo mode.
    """
    mode = (mode or "auto").lower()
    if mode == "mock":
        return MockTransport()
    if mode == "local":
        return LocalShellTransport()
    if mode == "adb":
        serial = device_serial or _single_adb_device()
        if not serial:
            raise TransportUnavailableError("No adb device available; pass a device serial")
        return AdbTransport(serial)
    if mode != "auto":
        raise ValueError(f"Unknown transport mode '{mode}'. Use: auto, local, adb, mock")

    if shutil.which("su") and os.path.isdir("/system"):
        return LocalShellTransport()
    serial = device_serial or _single_adb_device()
    if serial:
        return AdbTransport(serial)
    logger.warning("No host bridge found, running in demo mode with synthetic data")
    return MockTransport()


def _single_adb_device() -> Optional[str]:
    if not shutil.which(ADB_BINARY):
        return None
    devices = list_adb_devices()
    if len(devices) == 1:
        return devices[0]
    if len(devices) > 1:
        logger.warning("Several adb devices attached (%s); set ABL_DEVICE_SERIAL", ", ".join(devices))
    return None
