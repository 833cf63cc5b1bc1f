"""
Action dispatcher: one confirmed user intent -> one host command.

Per action: IDLE -> [CONFIRMING] -> EXECUTING -> SUCCEEDED|FAILED -> IDLE.
Destructive actions only reach EXECUTING after an explicit yes from the
confirm callback. A successful action always re-reads the affected
state from the host; nothing is patched locally.
"""
import json
import logging
import re
import shlex
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .client import ExecutionClient
from .config import (
    BACKUP_ENGINE, RECOVERY_POINT_SCRIPT, APPLY_SETTINGS_SCRIPT, SAFE_MODE_SCRIPT,
    TEST_BOOTLOOP_SCRIPT, EXPORT_DIR, IMPORT_PATH_PATTERN,
    SETTINGS_FILE, BOOT_COUNT_FILE, SAFE_MODE_FLAG, EMERGENCY_DISABLE_FLAG,
    LOG_FILE, MODULES_ROOT, NAME_PATTERN, MAX_DESCRIPTION_LENGTH, BACKUP_TYPES,
    CREATE_BACKUP_WAIT, BACKUP_TIMEOUT_MS, DEFAULT_TIMEOUT_MS, DEFAULT_MAX_RETRIES,
    DEFAULT_LOG_LINES, MAX_LOG_LINES,
)
from .errors import ExecError, ValidationError, CommandFailedError
from .models import ActionState, ActionOutcome

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]
NotifyCallback = Callable[[str, str], None]
TransitionCallback = Callable[[str, ActionState], None]

# Refresh targets
REFRESH_STATUS = "status"
REFRESH_BACKUPS = "backups"
REFRESH_RECOVERY_POINTS = "recovery_points"
REFRESH_SETTINGS = "settings"


@dataclass
class ActionSpec:
    name: str
    build: Callable[..., str]
    destructive: bool
    prompt: str
    success_message: str
    refresh: List[str] = field(default_factory=list)
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    # Non-idempotent actions default to a single attempt
    max_retries: Optional[int] = None

    def retries(self) -> int:
        if self.max_retries is not None:
            return self.max_retries
        return 1 if self.destructive else DEFAULT_MAX_RETRIES


# ============= ARGUMENT CHECKS =============

def validate_name(value, label: str = "name") -> str:
    if not isinstance(value, str) or not re.match(NAME_PATTERN, value):
        raise ValidationError(
            f"Invalid {label} {value!r}: use letters, digits, '.', '_' or '-' (max 64)")
    return value


def quote_description(value) -> str:
    text = str(value or "").strip()[:MAX_DESCRIPTION_LENGTH]
    return shlex.quote(text)


def validate_import_path(value) -> str:
    if (not isinstance(value, str) or not re.match(IMPORT_PATH_PATTERN, value)
            or ".." in value.split("/")):
        raise ValidationError(
            f"Invalid backup path {value!r}: use an absolute path under /sdcard, /storage or /data/local/tmp")
    return value


def validate_lines(value) -> int:
    try:
        lines = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid line count {value!r}")
    return max(1, min(lines, MAX_LOG_LINES))


# ============= COMMAND BUILDERS =============

def build_create_backup(name: str, description: str = "", backup_type: str = "full",
                        wait: bool = CREATE_BACKUP_WAIT) -> str:
    validate_name(name)
    if backup_type not in BACKUP_TYPES:
        raise ValidationError(f"Invalid backup type {backup_type!r}. Use: {', '.join(BACKUP_TYPES)}")
    command = (f"sh {BACKUP_ENGINE} create --name {shlex.quote(name)} --type {backup_type}"
               f" --description {quote_description(description)}")
    if not wait:
        return f"nohup {command} >/dev/null 2>&1 &"
    return command


def build_restore_backup(backup: str) -> str:
    return f"sh {BACKUP_ENGINE} restore --name {shlex.quote(validate_name(backup, 'backup'))}"


def build_delete_backup(backup: str) -> str:
    return f"sh {BACKUP_ENGINE} delete --name {shlex.quote(validate_name(backup, 'backup'))}"


def build_create_recovery_point(name: str, description: str = "") -> str:
    validate_name(name)
    return f"sh {RECOVERY_POINT_SCRIPT} create {shlex.quote(name)} {quote_description(description)}"


def build_restore_recovery_point(name: str) -> str:
    return f"sh {RECOVERY_POINT_SCRIPT} restore {shlex.quote(validate_name(name))}"


def build_delete_recovery_point(name: str) -> str:
    return f"sh {RECOVERY_POINT_SCRIPT} delete {shlex.quote(validate_name(name))}"


def build_update_settings(settings: dict) -> str:
    if not isinstance(settings, dict):
        raise ValidationError("Settings must be a JSON object")
    attempts = settings.get("maxBootAttempts", 1)
    if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
        raise ValidationError(f"maxBootAttempts must be a positive integer, got {attempts!r}")
    payload = shlex.quote(json.dumps(settings, sort_keys=True))
    return f"printf '%s\\n' {payload} > {SETTINGS_FILE} && sh {APPLY_SETTINGS_SCRIPT}"


def build_export_backup(backup: str) -> str:
    return f"sh {BACKUP_ENGINE} export_backup {shlex.quote(validate_name(backup, 'backup'))}"


def build_import_backup(path: str) -> str:
    return f"sh {BACKUP_ENGINE} import_backup {shlex.quote(validate_import_path(path))}"


def build_activate_emergency() -> str:
    # Backup failure does not block the switch to safe mode
    return f"sh {BACKUP_ENGINE} create_emergency_backup; sh {SAFE_MODE_SCRIPT} activate_emergency"


def build_view_logs(lines: int = DEFAULT_LOG_LINES) -> str:
    return f"tail -n {validate_lines(lines)} {LOG_FILE} 2>/dev/null || echo 'No logs available'"


ACTIONS: Dict[str, ActionSpec] = {spec.name: spec for spec in [
    ActionSpec("create_backup", build_create_backup, False,
               "Create backup?", "Backup {name} created",
               [REFRESH_BACKUPS], timeout_ms=BACKUP_TIMEOUT_MS),
    ActionSpec("restore_backup", build_restore_backup, True,
               "Restore backup '{backup}'? The device state will be rolled back.",
               "Backup {backup} restored",
               [REFRESH_BACKUPS, REFRESH_STATUS], timeout_ms=BACKUP_TIMEOUT_MS),
    ActionSpec("delete_backup", build_delete_backup, True,
               "Delete backup '{backup}'? This cannot be undone.", "Backup {backup} deleted",
               [REFRESH_BACKUPS]),
    ActionSpec("export_backup", build_export_backup, False,
               "Export backup?", f"Backup {{backup}} exported to {EXPORT_DIR}/",
               [], timeout_ms=BACKUP_TIMEOUT_MS, max_retries=1),
    ActionSpec("import_backup", build_import_backup, False,
               "Import backup?", "Backup imported from {path}",
               [REFRESH_BACKUPS], timeout_ms=BACKUP_TIMEOUT_MS, max_retries=1),
    ActionSpec("create_recovery_point", build_create_recovery_point, False,
               "Create recovery point?", "Recovery point {name} created",
               [REFRESH_RECOVERY_POINTS], timeout_ms=BACKUP_TIMEOUT_MS),
    ActionSpec("restore_recovery_point", build_restore_recovery_point, True,
               "Roll back to recovery point '{name}'?", "Recovery point {name} restored",
               [REFRESH_RECOVERY_POINTS, REFRESH_STATUS], timeout_ms=BACKUP_TIMEOUT_MS),
    ActionSpec("delete_recovery_point", build_delete_recovery_point, True,
               "Delete recovery point '{name}'?", "Recovery point {name} deleted",
               [REFRESH_RECOVERY_POINTS]),
    ActionSpec("emergency_disable", lambda: f"touch {EMERGENCY_DISABLE_FLAG}", True,
               "Disable bootloop protection until the flag is removed?",
               "Emergency disable activated", [REFRESH_STATUS]),
    ActionSpec("clear_emergency_disable", lambda: f"rm -f {EMERGENCY_DISABLE_FLAG}", False,
               "Re-enable bootloop protection?", "Bootloop protection re-enabled", [REFRESH_STATUS]),
    ActionSpec("activate_emergency", build_activate_emergency, True,
               "Activate emergency mode? This enables safe mode and creates an emergency backup.",
               "Emergency mode activated", [REFRESH_STATUS], timeout_ms=BACKUP_TIMEOUT_MS),
    ActionSpec("deactivate_emergency", lambda: f"sh {SAFE_MODE_SCRIPT} deactivate_emergency", True,
               "Deactivate emergency mode?", "Emergency mode deactivated", [REFRESH_STATUS]),
    ActionSpec("test_bootloop", lambda: f"sh {TEST_BOOTLOOP_SCRIPT}", True,
               "Run the bootloop protection test? It exercises the boot counter and recovery path.",
               "Bootloop protection test initiated", [REFRESH_STATUS]),
    ActionSpec("disable_all_modules",
               lambda: f'for d in {MODULES_ROOT}/*/; do touch "$d/disable"; done', True,
               "Disable ALL modules? They stay disabled after the next reboot.",
               "All modules disabled", [REFRESH_STATUS]),
    ActionSpec("reset_boot_counter", lambda: f"printf '%s\\n' 0 > {BOOT_COUNT_FILE}", True,
               "Reset the boot attempt counter?", "Boot counter reset", [REFRESH_STATUS]),
    ActionSpec("enable_safe_mode", lambda: f"touch {SAFE_MODE_FLAG}", True,
               "Enable safe mode? Modules will be skipped on next boot.",
               "Safe mode enabled", [REFRESH_STATUS]),
    ActionSpec("disable_safe_mode", lambda: f"rm -f {SAFE_MODE_FLAG}", False,
               "Disable safe mode?", "Safe mode disabled", [REFRESH_STATUS]),
    ActionSpec("view_logs", build_view_logs, False,
               "View logs?", "Logs loaded", []),
    ActionSpec("clear_logs", lambda: f": > {LOG_FILE}", True,
               "Clear the protection log?", "Logs cleared", []),
    ActionSpec("update_settings", build_update_settings, False,
               "Save settings?", "Settings updated", [REFRESH_SETTINGS]),
]}


def _format(template: str, params: dict) -> str:
    try:
        return template.format(**params)
    except (KeyError, IndexError):
        return template


class ActionDispatcher:
    """
    Runs registered actions through the execution client.

    ``refreshers`` maps a refresh target to a callable that re-reads it
    from the host; the manager wires these to the aggregator.
    """

    def __init__(self, client: ExecutionClient,
                 refreshers: Optional[Dict[str, Callable[[], object]]] = None,
                 notify: Optional[NotifyCallback] = None,
                 on_transition: Optional[TransitionCallback] = None):
        self.client = client
        self.refreshers = refreshers or {}
        self._notify = notify
        self._on_transition = on_transition
        self._states: Dict[str, ActionState] = {}
        self._lock = threading.Lock()

    def state(self, action: str) -> ActionState:
        with self._lock:
            return self._states.get(action, ActionState.IDLE)

    def is_destructive(self, action: str) -> bool:
        return self._spec(action).destructive

    def _spec(self, action: str) -> ActionSpec:
        if action not in ACTIONS:
            raise ValidationError(f"Unknown action '{action}'. Use: {', '.join(sorted(ACTIONS))}")
        return ACTIONS[action]

    def _set_state(self, action: str, state: ActionState):
        with self._lock:
            self._states[action] = state
        if self._on_transition:
            self._on_transition(action, state)

    def _emit(self, notify: Optional[NotifyCallback], message: str, level: str):
        callback = notify or self._notify
        if callback:
            callback(message, level)
        else:
            self.client.transport.toast(message)

    def dispatch(self, action: str, confirm: Optional[ConfirmCallback] = None,
                 notify: Optional[NotifyCallback] = None, **params) -> ActionOutcome:
        """
        Run ``action`` with ``params``.

        ``confirm`` receives the prompt text and must return True for a
        destructive action to proceed. Without it, destructive actions
        are refused.
        """
        try:
            spec = self._spec(action)
        except ValidationError as e:
            self._emit(notify, e.message, "error")
            return ActionOutcome(action, ActionState.IDLE, False, e.message, error_kind=e.kind)

        with self._lock:
            current = self._states.get(action, ActionState.IDLE)
            if current in (ActionState.CONFIRMING, ActionState.EXECUTING):
                return ActionOutcome(action, current, False,
                                     f"{action} is already in progress", error_kind="busy")
            self._states[action] = ActionState.CONFIRMING if spec.destructive else ActionState.EXECUTING

        try:
            try:
                command = spec.build(**params)
            except TypeError as e:
                raise ValidationError(f"Bad parameters for {action}: {e}", e)
        except ValidationError as e:
            self._set_state(action, ActionState.IDLE)
            self._emit(notify, e.message, "error")
            return ActionOutcome(action, ActionState.IDLE, False, e.message, error_kind=e.kind)

        if spec.destructive:
            if self._on_transition:
                self._on_transition(action, ActionState.CONFIRMING)
            prompt = _format(spec.prompt, params)
            if confirm is None or not confirm(prompt):
                self._set_state(action, ActionState.IDLE)
                logger.info("Action %s not confirmed", action)
                return ActionOutcome(action, ActionState.IDLE, False,
                                     "Cancelled: confirmation required", error_kind="not_confirmed")
            self._set_state(action, ActionState.EXECUTING)
        elif self._on_transition:
            self._on_transition(action, ActionState.EXECUTING)

        logger.info("Executing action %s", action)
        try:
            output = self.client.execute(
                command,
                timeout_ms=spec.timeout_ms,
                max_retries=spec.retries(),
                rate_limited=True,
            )
        except ExecError as e:
            return self._failed(action, e, notify)

        message = _format(spec.success_message, params)
        if action == "create_backup" and not params.get("wait", CREATE_BACKUP_WAIT):
            message = _format("Backup {name} creation initiated", params)
        self._set_state(action, ActionState.SUCCEEDED)
        self._emit(notify, message, "success")
        targets = list(spec.refresh)
        # Destructive actions always re-list backups
        if spec.destructive and REFRESH_BACKUPS not in targets:
            targets.append(REFRESH_BACKUPS)
        refreshed = self._refresh(targets)
        self._set_state(action, ActionState.IDLE)
        return ActionOutcome(action, ActionState.SUCCEEDED, True, message,
                             output=output, refreshed=refreshed)

    def _failed(self, action: str, error: ExecError, notify) -> ActionOutcome:
        if isinstance(error, CommandFailedError):
            detail = error.stderr.strip() or error.message or "Command failed"
        else:
            detail = error.message or "Command failed"
        message = f"{action} failed: {detail}"
        logger.error(message)
        self._set_state(action, ActionState.FAILED)
        self._emit(notify, message, "error")
        self._set_state(action, ActionState.IDLE)
        return ActionOutcome(action, ActionState.FAILED, False, message, error_kind=error.kind)

    def _refresh(self, targets: List[str]) -> List[str]:
        """Re-read each target from the host. Failures are logged, not raised."""
        self.client.invalidate()
        done = []
        for target in targets:
            refresher = self.refreshers.get(target)
            if refresher is None:
                continue
            try:
                refresher()
                done.append(target)
            except Exception as e:
                logger.warning("Refresh of %s after action failed: %s", target, e)
        return done
