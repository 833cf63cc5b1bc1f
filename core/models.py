"""
Data models and enums for the Anti-Bootloop module manager.
"""
from concurrent.futures import Future
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Callable, Tuple


class ShellType(Enum):
    NON_ROOT = "non_root"
    ROOT = "root"


class ActionState(Enum):
    IDLE = "idle"
    CONFIRMING = "confirming"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one host bridge call."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    demo: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class CommandRequest:
    command: str
    timeout_ms: int
    max_retries: int
    silent: bool = False
    cacheable: bool = False
    cache_key: Optional[str] = None
    rate_limited: bool = True
    on_output: Optional[Callable[[str], None]] = None

    def __post_init__(self):
        if self.cache_key is None:
            self.cache_key = self.command


@dataclass
class CacheEntry:
    key: str
    result: CommandResult
    stored_at_ms: float


@dataclass
class QueuedCommand:
    """A rate-limited request waiting for an execution slot."""
    request: CommandRequest
    future: Future


@dataclass(frozen=True)
class StorageUsage:
    total_mb: int = 0
    used_mb: int = 0
    free_mb: int = 0
    percentage: int = 0


@dataclass(frozen=True)
class StatusSnapshot:
    """Device and protection state, rebuilt from scratch every poll."""
    device_model: str = "Unknown"
    device_name: str = "Unknown"
    android_version: str = "Unknown"
    kernel_version: str = "Unknown"
    kernelsu_version: str = "Unknown"
    boot_count: int = 0
    total_boots: int = 0
    max_attempts: int = 3
    recovery_state: str = "normal"
    safe_mode: bool = False
    emergency_disabled: bool = False
    uptime_seconds: float = 0.0
    cpu_temp: int = 0
    mem_total_mb: int = 0
    free_ram_mb: int = 0
    storage: StorageUsage = field(default_factory=StorageUsage)
    errors: Tuple[str, ...] = ()
    demo: bool = False
    timestamp: str = ""

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["errors"] = list(self.errors)
        data["has_errors"] = self.has_errors
        return data


@dataclass(frozen=True)
class HardwareStatus:
    cpu_temperature: int = 0
    available_ram_mb: int = 0
    storage_health: str = "unknown"
    cpu_temp_threshold: int = 75
    min_free_ram: int = 200
    errors: Tuple[str, ...] = ()

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def issues(self) -> List[str]:
        found = []
        if self.cpu_temperature and self.cpu_temperature > self.cpu_temp_threshold:
            found.append(f"CPU temperature {self.cpu_temperature}°C above {self.cpu_temp_threshold}°C")
        if self.available_ram_mb and self.available_ram_mb < self.min_free_ram:
            found.append(f"Available RAM {self.available_ram_mb}MB below {self.min_free_ram}MB")
        return found

    def to_dict(self) -> dict:
        return {
            "cpu_temperature": self.cpu_temperature,
            "available_ram_mb": self.available_ram_mb,
            "storage_health": self.storage_health,
            "hardware_issues": "; ".join(self.issues),
            "monitoring": {
                "cpu_temp_enabled": True,
                "cpu_temp_threshold": self.cpu_temp_threshold,
                "ram_enabled": True,
                "min_free_ram": self.min_free_ram,
            },
            "errors": list(self.errors),
            "has_errors": self.has_errors,
        }


@dataclass(frozen=True)
class BackupRecord:
    """One backup artifact as found on the filesystem."""
    name: str
    size_bytes: int
    created_at: str
    has_integrity_hash: bool
    type: str
    path: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "size": self.size_bytes,
            "created": self.created_at,
            "has_hash": self.has_integrity_hash,
            "type": self.type,
            "path": self.path,
        }


@dataclass
class ActionOutcome:
    """What the dispatcher reports back for one action."""
    action: str
    state: ActionState
    ok: bool
    message: str
    output: str = ""
    error_kind: Optional[str] = None
    refreshed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "state": self.state.value,
            "success": self.ok,
            "message": self.message,
            "output": self.output,
            "error_kind": self.error_kind,
            "refreshed": list(self.refreshed),
        }
