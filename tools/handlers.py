"""
MCP tool definitions for the anti-bootloop module manager.

Eight tools. Reads are cheap and cached; anything that changes the
device goes through the action dispatcher, and destructive actions are
refused unless the caller passes ``confirm=True``.

Analytics: one event per tool call in ~/.antibootloop/analytics.jsonl
"""
from typing import Optional

from mcp.server.fastmcp import FastMCP

from core.errors import ExecError
from core.manager import ModuleManager
from utils import analytics
from . import render

PROTECTION_ACTIONS = (
    "emergency_disable", "clear_emergency_disable", "activate_emergency",
    "deactivate_emergency", "test_bootloop", "disable_all_modules",
    "reset_boot_counter", "enable_safe_mode", "disable_safe_mode", "clear_logs",
)


def _run_action(manager: ModuleManager, action: str, confirm: bool, **params) -> str:
    """Dispatch ``action``; a refused confirmation is reported with its prompt."""
    prompts = []

    def confirm_callback(prompt: str) -> bool:
        prompts.append(prompt)
        return bool(confirm)

    outcome = manager.run_action(action, confirm=confirm_callback, **params)
    analytics.log_event(action, ok=outcome.ok, destructive=bool(prompts))
    text = render.render_outcome(outcome)
    if outcome.error_kind == "not_confirmed" and prompts:
        text += f"\nPrompt: {prompts[0]}\nRe-run with confirm=True to proceed."
    return text


def register_tools(mcp: FastMCP, manager: ModuleManager):
    """Register all MCP tools with the server."""

    # ==================== TOOL 1: module_status ====================
    @mcp.tool()
    def module_status(refresh: bool = False, include_report: bool = False) -> str:
        """
        Device and bootloop-protection status.

        Args:
            refresh: Bypass the 30s cache and re-read everything from the device
            include_report: Append the module analytics engine's system report

        Returns:
        - STATUS: OK, or DEGRADED when some fields could not be read
        - Device, kernel, boot attempt counter, safe mode, emergency flag
        - CPU temperature, memory and storage usage
        - WARNINGS listing fields that fell back to defaults
        """
        status = manager.refresh_status(use_cache=not refresh)
        analytics.log_event("module_status", ok=not status.has_errors)
        text = render.render_status(status)
        if include_report:
            try:
                text += "\n\n" + render.render_report(manager.aggregator.get_system_report())
            except ExecError as e:
                text += f"\n\nSYSTEM REPORT: unavailable ({e})"
        return text

    # ==================== TOOL 2: hardware_status ====================
    @mcp.tool()
    def hardware_status() -> str:
        """
        Hardware monitor readings against their thresholds.

        Returns CPU temperature, available RAM and storage health, with
        ISSUES when a threshold is crossed.
        """
        hardware = manager.aggregator.get_hardware()
        analytics.log_event("hardware_status", ok=not hardware.has_errors)
        return render.render_hardware(hardware)

    # ==================== TOOL 3: list_backups ====================
    @mcp.tool()
    def list_backups() -> str:
        """List kernel backups, newest first, with size and integrity hash state."""
        try:
            backups = manager.refresh_backups()
        except ExecError as e:
            analytics.log_event("list_backups", ok=False)
            return f"STATUS: ERROR\nReason: {e}"
        analytics.log_event("list_backups", ok=True)
        return render.render_backups(backups)

    # ==================== TOOL 4: view_logs ====================
    @mcp.tool()
    def view_logs(lines: int = 100, grep: Optional[str] = None) -> str:
        """
        Tail the module's detailed log.

        Args:
            lines: Number of trailing lines (1-5000, default 100)
            grep: Keep only lines containing this string
        """
        outcome = manager.run_action("view_logs", lines=lines)
        analytics.log_event("view_logs", ok=outcome.ok)
        if not outcome.ok:
            return render.render_outcome(outcome)
        log_lines = outcome.output.rstrip("\n").split("\n")
        if grep:
            log_lines = [l for l in log_lines if grep in l]
        header = ["STATUS: SUCCESS", f"Lines: {len(log_lines)}"]
        if grep:
            header.append(f"GREP: '{grep}'")
        return "\n".join(header + ["OUTPUT:"] + log_lines)

    # ==================== TOOL 5: backup_action ====================
    @mcp.tool()
    def backup_action(action: str, name: Optional[str] = None, description: str = "",
                      backup_type: str = "full", path: Optional[str] = None,
                      confirm: bool = False) -> str:
        """
        Create, restore, delete, export or import a kernel backup.

        Args:
            action: "create", "restore", "delete", "export" or "import"
            name: Backup name (letters, digits, '.', '_', '-'); not used by "import"
            description: For "create" - free text stored with the backup
            backup_type: For "create" - "full", "incremental" or "kernel"
            path: For "import" - archive path under /sdcard, /storage or /data/local/tmp
            confirm: Required True for "restore" and "delete"

        Examples:
            backup_action("create", "before_update")
            backup_action("restore", "before_update", confirm=True)
            backup_action("import", path="/sdcard/KernelSU_Backups/old.tar.gz")
        """
        action = action.lower()
        if action == "import":
            if not path:
                return "STATUS: ERROR\nReason: 'import' requires path"
            return _run_action(manager, "import_backup", confirm, path=path)
        if action not in ("create", "restore", "delete", "export"):
            return f"STATUS: ERROR\nReason: Unknown action '{action}'. Use: create, restore, delete, export, import"
        if not name:
            return f"STATUS: ERROR\nReason: '{action}' requires name"
        if action == "create":
            return _run_action(manager, "create_backup", confirm,
                               name=name, description=description, backup_type=backup_type)
        return _run_action(manager, f"{action}_backup", confirm, backup=name)

    # ==================== TOOL 6: recovery_point ====================
    @mcp.tool()
    def recovery_point(action: str, name: Optional[str] = None, description: str = "",
                       confirm: bool = False) -> str:
        """
        Manage recovery points: list, create, restore or delete.

        Args:
            action: "list", "create", "restore" or "delete"
            name: Required for everything except "list"
            description: For "create"
            confirm: Required True for "restore" and "delete"
        """
        action = action.lower()
        if action == "list":
            try:
                points = manager.refresh_recovery_points()
            except ExecError as e:
                analytics.log_event("recovery_points", ok=False)
                return f"STATUS: ERROR\nReason: {e}"
            analytics.log_event("recovery_points", ok=True)
            return render.render_names("Recovery points", points)
        if action not in ("create", "restore", "delete"):
            return f"STATUS: ERROR\nReason: Unknown action '{action}'. Use: list, create, restore, delete"
        if not name:
            return f"STATUS: ERROR\nReason: '{action}' requires name"
        params = {"name": name}
        if action == "create":
            params["description"] = description
        return _run_action(manager, f"{action}_recovery_point", confirm, **params)

    # ==================== TOOL 7: protection_action ====================
    @mcp.tool()
    def protection_action(action: str, confirm: bool = False) -> str:
        """
        Bootloop protection controls.

        Args:
            action: "emergency_disable", "clear_emergency_disable", "activate_emergency",
                    "deactivate_emergency", "test_bootloop", "disable_all_modules",
                    "reset_boot_counter", "enable_safe_mode", "disable_safe_mode" or "clear_logs"
            confirm: Required True except for "clear_emergency_disable" and "disable_safe_mode"
        """
        action = action.lower()
        if action not in PROTECTION_ACTIONS:
            return f"STATUS: ERROR\nReason: Unknown action '{action}'. Use: {', '.join(PROTECTION_ACTIONS)}"
        return _run_action(manager, action, confirm)

    # ==================== TOOL 8: client_metrics ====================
    @mcp.tool()
    def client_metrics(include_analytics: bool = False) -> str:
        """
        Execution client counters: commands, errors, cache hits, queue depth.

        Args:
            include_analytics: Append the action usage summary
        """
        text = render.render_metrics(manager.get_metrics())
        if include_analytics:
            summary = analytics.get_summary()
            text += "\n\nANALYTICS:\n" + "\n".join(f"{k}: {v}" for k, v in summary.items())
        return text
