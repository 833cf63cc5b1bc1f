"""
Status aggregator: turns a fixed battery of read-only commands into
StatusSnapshot / HardwareStatus / backup listings.

Every field is fetched on its own. A field that fails keeps its default
and adds a line to ``errors``; a snapshot is always fully populated.
"""
import logging
from datetime import datetime
from typing import Callable, List, TypeVar

from .client import ExecutionClient
from .config import (
    DEVICE_PROPERTIES, THERMAL_ZONE_PATHS, STORAGE_HEALTH_FILE,
    BOOT_COUNT_FILE, TOTAL_BOOTS_FILE, RECOVERY_STATE_FILE, SAFE_MODE_FLAG,
    EMERGENCY_DISABLE_FLAG, LOG_FILE, BACKUP_DIR, SETTINGS_FILE,
    RECOVERY_POINT_SCRIPT, WEBUI_MANAGER_SCRIPT, ANALYTICS_ENGINE, MODULE_PROP_FILE,
    DEFAULT_SETTINGS, DEFAULT_MAX_BOOT_ATTEMPTS, CPU_TEMP_THRESHOLD, MIN_FREE_RAM_MB,
    DEFAULT_LOG_LINES, MAX_LOG_LINES, HTTP_PORT,
)
from .errors import ExecError, ParseError
from .models import StatusSnapshot, HardwareStatus, StorageUsage, BackupRecord
from . import parsers

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_CACHE_PREFIX = "status:"


def read_file_command(path: str) -> str:
    """cat that exits 0 with empty output when the file is missing."""
    return f"cat {path} 2>/dev/null || true"


def flag_command(path: str) -> str:
    return f"if [ -f {path} ]; then echo 1; else echo 0; fi"


class StatusAggregator:
    """Read side of the dashboard."""

    def __init__(self, client: ExecutionClient):
        self.client = client

    # ============= FIELD PLUMBING =============

    def _read(self, command: str, use_cache: bool, silent: bool = True) -> str:
        return self.client.execute(
            command,
            silent=silent,
            cacheable=use_cache,
            cache_key=f"{STATUS_CACHE_PREFIX}{command}",
        )

    def _field(self, label: str, fetch: Callable[[], T], default: T, errors: List[str]) -> T:
        try:
            return fetch()
        except (ExecError, ValueError, TypeError) as e:
            errors.append(f"{label}: {e}")
            logger.debug("Field %s fell back to default: %s", label, e)
            return default

    # ============= STATUS =============

    def get_status(self, use_cache: bool = True) -> StatusSnapshot:
        """
        Build a fresh StatusSnapshot.

        With ``use_cache`` the underlying reads go through the client's
        TTL cache, so polls inside the TTL window do not touch the host.
        """
        errors: List[str] = []
        read = lambda cmd: self._read(cmd, use_cache)

        getprop = self._field("getprop", lambda: read("getprop"), "", errors)

        def prop(key: str) -> str:
            if not getprop:
                raise ParseError("getprop unavailable")
            return parsers.parse_property(getprop, key)

        values = {}
        for name, key in DEVICE_PROPERTIES.items():
            if name == "kernelsu_version":
                continue
            values[name] = self._field(name, lambda k=key: prop(k), "Unknown", errors)

        def kernelsu_version() -> str:
            try:
                version = read("su -v").strip()
            except ExecError:
                version = ""
            return version or prop(DEVICE_PROPERTIES["kernelsu_version"])

        values["kernelsu_version"] = self._field("kernelsu_version", kernelsu_version, "Unknown", errors)

        kernel_version = self._field(
            "kernel_version", lambda: read("uname -r").strip() or _missing("uname -r"), "Unknown", errors)

        meminfo = self._field("meminfo", lambda: read("cat /proc/meminfo"), "", errors)
        mem_total = self._field("mem_total", lambda: parsers.parse_meminfo_mb(meminfo, "MemTotal"), 0, errors)
        free_ram = self._field("free_ram", lambda: parsers.parse_meminfo_mb(meminfo, "MemAvailable"), 0, errors)

        storage = self._field(
            "storage", lambda: parsers.parse_df(read("df -h /data")), StorageUsage(), errors)
        uptime = self._field(
            "uptime", lambda: parsers.parse_uptime(read("cat /proc/uptime")), 0.0, errors)
        cpu_temp = self._field("cpu_temp", lambda: self._read_cpu_temp(use_cache), 0, errors)

        boot_count = self._field(
            "boot_count", lambda: self._read_counter(BOOT_COUNT_FILE, use_cache), 0, errors)
        total_boots = self._field(
            "total_boots", lambda: self._read_counter(TOTAL_BOOTS_FILE, use_cache), 0, errors)
        recovery_state = self._field(
            "recovery_state",
            lambda: read(read_file_command(RECOVERY_STATE_FILE)).strip() or "normal",
            "normal", errors)
        safe_mode = self._field(
            "safe_mode", lambda: read(flag_command(SAFE_MODE_FLAG)).strip() == "1", False, errors)
        emergency = self._field(
            "emergency_disabled",
            lambda: read(flag_command(EMERGENCY_DISABLE_FLAG)).strip() == "1", False, errors)
        max_attempts = self._field(
            "max_attempts",
            lambda: self._read_max_attempts(use_cache),
            DEFAULT_MAX_BOOT_ATTEMPTS, errors)

        if errors:
            logger.info("Status snapshot built with %d field error(s)", len(errors))

        return StatusSnapshot(
            device_model=values["device_model"],
            device_name=values["device_name"],
            android_version=values["android_version"],
            kernel_version=kernel_version,
            kernelsu_version=values["kernelsu_version"],
            boot_count=boot_count,
            total_boots=total_boots,
            max_attempts=max_attempts,
            recovery_state=recovery_state,
            safe_mode=safe_mode,
            emergency_disabled=emergency,
            uptime_seconds=uptime,
            cpu_temp=cpu_temp,
            mem_total_mb=mem_total,
            free_ram_mb=free_ram,
            storage=storage,
            errors=tuple(errors),
            demo=self.client.demo,
            timestamp=datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        )

    def _read_counter(self, path: str, use_cache: bool) -> int:
        """Counter files the boot scripts have not written yet read as 0."""
        raw = self._read(read_file_command(path), use_cache).strip()
        return parsers.parse_int(raw) if raw else 0

    def _read_max_attempts(self, use_cache: bool) -> int:
        value = self._read_settings(use_cache).get("maxBootAttempts", DEFAULT_MAX_BOOT_ATTEMPTS)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ParseError(f"maxBootAttempts must be a positive integer, got {value!r}")
        return value

    def _read_cpu_temp(self, use_cache: bool) -> int:
        for path in THERMAL_ZONE_PATHS:
            raw = self._read(read_file_command(path), use_cache)
            try:
                return parsers.parse_thermal(raw)
            except ParseError:
                continue
        raise ParseError("No thermal zone readable")

    # ============= HARDWARE =============

    def get_hardware(self, use_cache: bool = True) -> HardwareStatus:
        errors: List[str] = []
        cpu_temp = self._field("cpu_temp", lambda: self._read_cpu_temp(use_cache), 0, errors)
        available = self._field(
            "available_ram",
            lambda: parsers.parse_meminfo_mb(self._read("cat /proc/meminfo", use_cache), "MemAvailable"),
            0, errors)
        health = self._field(
            "storage_health",
            lambda: self._read(read_file_command(STORAGE_HEALTH_FILE), use_cache).strip() or "unknown",
            "unknown", errors)
        return HardwareStatus(
            cpu_temperature=cpu_temp,
            available_ram_mb=available,
            storage_health=health,
            cpu_temp_threshold=CPU_TEMP_THRESHOLD,
            min_free_ram=MIN_FREE_RAM_MB,
            errors=tuple(errors),
        )

    # ============= BACKUPS & RECOVERY POINTS =============

    def get_backups(self, use_cache: bool = False) -> List[BackupRecord]:
        """
        List backups from the filesystem. Polls may pass ``use_cache``;
        re-reads after an action do not, and run on an emptied cache.
        """
        output = self._read(f"stat -c '%F|%s|%Y|%n' {BACKUP_DIR}/* 2>/dev/null || true", use_cache)
        return parsers.parse_backup_listing(output)

    def get_recovery_points(self) -> List[str]:
        output = self.client.execute(f"sh {RECOVERY_POINT_SCRIPT} list", silent=True)
        return parsers.parse_name_list(output)

    # ============= LOGS, SETTINGS, INFO =============

    def get_logs(self, lines: int = DEFAULT_LOG_LINES) -> str:
        lines = max(1, min(int(lines), MAX_LOG_LINES))
        output = self.client.execute(
            f"tail -n {lines} {LOG_FILE} 2>/dev/null || echo 'No logs available'",
            silent=True,
        )
        return output.strip() or "No logs available"

    def _read_settings(self, use_cache: bool) -> dict:
        raw = self._read(read_file_command(SETTINGS_FILE), use_cache)
        if not raw.strip():
            raise ParseError("settings.json missing or empty")
        return parsers.parse_json(raw)

    def get_settings(self, use_cache: bool = False) -> dict:
        """Stored settings layered over the defaults."""
        settings = dict(DEFAULT_SETTINGS)
        try:
            settings.update(self._read_settings(use_cache))
        except (ExecError, ParseError) as e:
            logger.info("Using default settings: %s", e)
        return settings

    def get_module_info(self) -> dict:
        try:
            info = parsers.parse_module_prop(self._read(f"cat {MODULE_PROP_FILE}", use_cache=True))
            if self.client.demo:
                info["demo"] = "true"
            return info
        except (ExecError, ParseError) as e:
            logger.info("Module info unavailable: %s", e)
            return {"id": "unknown", "version": "unknown"}

    def get_webui_status(self) -> dict:
        try:
            status = self.client.execute(f"sh {WEBUI_MANAGER_SCRIPT} status", silent=True, max_retries=1)
        except ExecError as e:
            status = f"unknown ({e})"
        return {"status": status.strip(), "port": HTTP_PORT}

    def get_system_report(self) -> dict:
        """System summary from the module's own analytics engine (JSON)."""
        output = self.client.execute(f"sh {ANALYTICS_ENGINE} get_system_status", silent=True)
        return parsers.parse_json(output)

    def get_everything(self, use_cache: bool = True) -> dict:
        """Status, hardware and backups in one call. Values are model objects."""
        errors: List[str] = []
        backups = self._field("backups", lambda: self.get_backups(use_cache), [], errors)
        status = self.get_status(use_cache)
        hardware = self.get_hardware(use_cache)
        all_errors = list(status.errors) + list(hardware.errors) + errors
        return {
            "status": status,
            "hardware": hardware,
            "backups": backups,
            "errors": all_errors,
            "has_errors": bool(all_errors),
            "demo": self.client.demo,
        }


def _missing(command: str) -> str:
    raise ParseError(f"{command} returned nothing")
