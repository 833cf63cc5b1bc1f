"""
Core module for the anti-bootloop module manager.
Contains configuration, models, host transports, the execution client,
and the status/action layers built on top of it.
"""
from .models import (
    ShellType, ActionState, CommandResult, StatusSnapshot,
    HardwareStatus, StorageUsage, BackupRecord, ActionOutcome,
)
from .errors import (
    ExecError, TransportUnavailableError, CommandTimeoutError, CommandFailedError,
    TransientCommandError, NonTransientCommandError, ParseError, ValidationError,
)
from .transport import (
    Transport, LocalShellTransport, AdbTransport, MockTransport, select_transport,
)
from .client import ExecutionClient
from .aggregator import StatusAggregator
from .dispatcher import ActionDispatcher, ACTIONS
from .poller import Poller
from .manager import ModuleManager, AppState

__all__ = [
    # Models
    "ShellType",
    "ActionState",
    "CommandResult",
    "StatusSnapshot",
    "HardwareStatus",
    "StorageUsage",
    "BackupRecord",
    "ActionOutcome",
    # Errors
    "ExecError",
    "TransportUnavailableError",
    "CommandTimeoutError",
    "CommandFailedError",
    "TransientCommandError",
    "NonTransientCommandError",
    "ParseError",
    "ValidationError",
    # Transports
    "Transport",
    "LocalShellTransport",
    "AdbTransport",
    "MockTransport",
    "select_transport",
    # Classes
    "ExecutionClient",
    "StatusAggregator",
    "ActionDispatcher",
    "ACTIONS",
    "Poller",
    "ModuleManager",
    "AppState",
]
