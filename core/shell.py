"""
Persistent root shell on an attached device, driven through pexpect.
Used by AdbTransport when the manager runs on a host machine.
"""
import logging
import re
import threading
import time
import uuid
from typing import Optional, Tuple

import pexpect

from .models import ShellType
from .errors import TransportUnavailableError, CommandTimeoutError, TransientCommandError
from .config import ADB_BINARY, MARKER_PREFIX, SHELL_PROMPT_PATTERNS

logger = logging.getLogger(__name__)


class Shell:
    """
    A single interactive shell session on an Android device.
    Can be root or non-root.
    """

    def __init__(self, device_serial: str, shell_type: ShellType = ShellType.ROOT):
        self.device_serial = device_serial
        self.shell_type = shell_type
        self._process: Optional[pexpect.spawn] = None
        self._is_connected: bool = False
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Establish the shell connection, escalating with su for root shells."""
        with self._lock:
            if self._is_connected and self._process and self._process.isalive():
                return

            try:
                self._process = pexpect.spawn(
                    f"{ADB_BINARY} -s {self.device_serial} shell",
                    encoding="utf-8",
                    codec_errors="replace",
                    timeout=30,
                    maxread=65536,
                    searchwindowsize=4096
                )

                try:
                    self._process.expect(SHELL_PROMPT_PATTERNS, timeout=10)
                except pexpect.TIMEOUT:
                    self._process.sendline("")
                    try:
                        self._process.expect(SHELL_PROMPT_PATTERNS, timeout=5)
                    except (pexpect.TIMEOUT, pexpect.EOF) as e:
                        self._force_close()
                        raise TransportUnavailableError(
                            f"Could not detect shell prompt on {self.device_serial}", e)

                if self.shell_type == ShellType.ROOT:
                    self._escalate()

                self._is_connected = True
                logger.info("Connected %s shell on %s", self.shell_type.value, self.device_serial)

            except pexpect.exceptions.EOF as e:
                self._force_close()
                raise TransportUnavailableError(f"ADB connection to {self.device_serial} failed", e)
            except pexpect.exceptions.ExceptionPexpect as e:
                self._force_close()
                raise TransportUnavailableError(str(e), e)

    def _escalate(self) -> None:
        self._process.sendline("su")
        index = self._process.expect([
            r'#\s*$',
            r'denied|not allowed',
            r'not found|No such file',
            r'waiting|confirm|allow',
            pexpect.TIMEOUT
        ], timeout=15)

        if index == 0:
            self._process.sendline("id")
            try:
                self._process.expect(r'uid=0', timeout=5)
                self._process.expect(SHELL_PROMPT_PATTERNS, timeout=5)
                return
            except (pexpect.TIMEOUT, pexpect.EOF) as e:
                self._force_close()
                raise TransportUnavailableError("su succeeded but uid != 0", e)

        reasons = {
            1: "Root access denied. Grant root to the shell in the root manager.",
            2: f"su not found. Device {self.device_serial} is not rooted.",
            3: f"Waiting for root permission. Tap ALLOW on device {self.device_serial}.",
        }
        self._force_close()
        raise TransportUnavailableError(reasons.get(index, "Timeout during su."))

    def _force_close(self):
        """Force close without graceful exit."""
        if self._process:
            try:
                self._process.close(force=True)
            except pexpect.ExceptionPexpect:
                pass
        self._process = None
        self._is_connected = False

    def disconnect(self) -> None:
        """Gracefully close the shell."""
        with self._lock:
            if self._process:
                try:
                    if self.shell_type == ShellType.ROOT:
                        self._process.sendline("exit")  # Exit su
                        time.sleep(0.1)
                    self._process.sendline("exit")
                    time.sleep(0.1)
                    self._process.close()
                except (OSError, pexpect.ExceptionPexpect):
                    self._force_close()
            self._process = None
            self._is_connected = False

    def is_alive(self) -> bool:
        if not self._is_connected or not self._process:
            return False
        return self._process.isalive()

    def verify_responsive(self) -> bool:
        """Verify shell responds to commands."""
        if not self.is_alive():
            return False
        try:
            marker = f"__PING_{uuid.uuid4().hex[:6]}__"
            self._process.sendline(f"echo {marker}")
            index = self._process.expect([marker, pexpect.TIMEOUT, pexpect.EOF], timeout=3)
            return index == 0
        except (OSError, pexpect.ExceptionPexpect):
            return False

    def _multi_stage_interrupt(self) -> bool:
        """
        Recover a stuck shell: Ctrl+C, then Ctrl+D, then Ctrl+Z + kill.
        Returns True when the shell answers again.
        """
        stages = [
            lambda: self._process.sendcontrol('c'),
            lambda: self._process.sendcontrol('d'),
            lambda: (self._process.sendcontrol('z'),
                     self._process.sendline('kill %1 2>/dev/null; fg 2>/dev/null || true')),
            lambda: self._process.sendline(''),
        ]
        for stage in stages:
            try:
                stage()
                time.sleep(0.3)
                if self.verify_responsive():
                    return True
            except (OSError, pexpect.ExceptionPexpect):
                continue
        return False

    def run(self, command: str, timeout_seconds: float = 30) -> Tuple[int, str]:
        """
        Execute a command and return (exit_code, output).

        stderr and stdout share the pty, so output holds both. A command
        that cannot get the shell within ``timeout_seconds`` is never sent.
        """
        if not self._lock.acquire(timeout=timeout_seconds):
            raise CommandTimeoutError(
                f"Shell busy for {timeout_seconds}s, command not sent: {command[:100]}")
        try:
            return self._run_locked(command, timeout_seconds)
        finally:
            self._lock.release()

    def _run_locked(self, command: str, timeout_seconds: float) -> Tuple[int, str]:
        if not self.is_alive():
            raise TransportUnavailableError(f"Shell on {self.device_serial} not connected")

        marker = f"{MARKER_PREFIX}{uuid.uuid4().hex[:8]}"
        exit_marker = f"__EXIT_{uuid.uuid4().hex[:8]}__"
        wrapped = f'{command}; echo "{exit_marker}$?{exit_marker}"; echo "{marker}"'

        try:
            self._process.sendline(wrapped)
            # The echoed command line also contains the marker text, so
            # wait for it on a line of its own.
            self._process.expect(rf'\n{re.escape(marker)}', timeout=timeout_seconds)
        except pexpect.TIMEOUT as e:
            recovered = self._multi_stage_interrupt()
            if not recovered:
                self._force_close()
            raise CommandTimeoutError(
                f"Command timed out after {timeout_seconds}s: {command[:100]}", e)
        except pexpect.EOF as e:
            self._is_connected = False
            raise TransportUnavailableError("Shell connection lost", e)

        output = self._process.before.replace('\r\n', '\n').replace('\r', '\n')

        exit_match = re.search(rf'{exit_marker}(\d+){exit_marker}', output)
        if not exit_match:
            raise TransientCommandError(f"Exit status missing for: {command[:100]}")
        exit_code = int(exit_match.group(1))
        body = output[:exit_match.start()]

        # Drop the echoed command line
        lines = body.split('\n')
        if lines and exit_marker in lines[0]:
            lines = lines[1:]
        clean = [l for l in lines if MARKER_PREFIX not in l and '__EXIT_' not in l]
        return exit_code, '\n'.join(clean).strip('\n')

