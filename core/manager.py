"""
ModuleManager: owns the transport, client, aggregator, dispatcher and
the last-known application state. Front ends get one of these and talk
to nothing else.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .aggregator import StatusAggregator
from .client import ExecutionClient
from .config import TRANSPORT_MODE, DEVICE_SERIAL
from .dispatcher import (
    ActionDispatcher, REFRESH_STATUS, REFRESH_BACKUPS,
    REFRESH_RECOVERY_POINTS, REFRESH_SETTINGS,
)
from .models import StatusSnapshot, BackupRecord, ActionOutcome, ActionState
from .transport import Transport, select_transport

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS = 50


@dataclass
class AppState:
    """Last values fetched from the host. Replaced wholesale, never patched."""
    status: Optional[StatusSnapshot] = None
    backups: List[BackupRecord] = field(default_factory=list)
    recovery_points: List[str] = field(default_factory=list)
    settings: dict = field(default_factory=dict)
    notifications: List[tuple] = field(default_factory=list)
    busy_actions: set = field(default_factory=set)
    demo: bool = False


class ModuleManager:
    """
    Top-level controller and single owner of AppState.
    """

    def __init__(self, transport: Optional[Transport] = None,
                 client: Optional[ExecutionClient] = None,
                 notify: Optional[Callable[[str, str], None]] = None):
        if client is None:
            transport = transport or select_transport(TRANSPORT_MODE, DEVICE_SERIAL)
            client = ExecutionClient(transport)
        self.client = client
        self.transport = client.transport
        self.aggregator = StatusAggregator(client)
        self.state = AppState(demo=self.transport.demo)
        self._external_notify = notify
        self._lock = threading.Lock()
        self.dispatcher = ActionDispatcher(
            client,
            refreshers={
                REFRESH_STATUS: lambda: self.refresh_status(use_cache=False),
                REFRESH_BACKUPS: self.refresh_backups,
                REFRESH_RECOVERY_POINTS: self.refresh_recovery_points,
                REFRESH_SETTINGS: self.refresh_settings,
            },
            notify=self._notify,
            on_transition=self._on_transition,
        )
        if self.transport.demo:
            logger.warning("Demo mode: all data shown is synthetic")

    # ============= NOTIFICATIONS =============

    def _notify(self, message: str, level: str = "info"):
        with self._lock:
            self.state.notifications.append((level, message))
            del self.state.notifications[:-MAX_NOTIFICATIONS]
        self.transport.toast(message)
        if self._external_notify:
            self._external_notify(message, level)

    def _on_transition(self, action: str, state: ActionState):
        with self._lock:
            if state in (ActionState.CONFIRMING, ActionState.EXECUTING):
                self.state.busy_actions.add(action)
            else:
                self.state.busy_actions.discard(action)

    # ============= READS =============

    def refresh_status(self, use_cache: bool = True) -> StatusSnapshot:
        snapshot = self.aggregator.get_status(use_cache=use_cache)
        with self._lock:
            self.state.status = snapshot
        return snapshot

    def refresh_backups(self) -> List[BackupRecord]:
        backups = self.aggregator.get_backups()
        with self._lock:
            self.state.backups = backups
        return backups

    def refresh_recovery_points(self) -> List[str]:
        points = self.aggregator.get_recovery_points()
        with self._lock:
            self.state.recovery_points = points
        return points

    def refresh_settings(self) -> dict:
        settings = self.aggregator.get_settings()
        with self._lock:
            self.state.settings = settings
        return settings

    def refresh_all(self, use_cache: bool = True) -> dict:
        """Poll body for dashboards: status, hardware and backups together."""
        everything = self.aggregator.get_everything(use_cache=use_cache)
        with self._lock:
            self.state.status = everything["status"]
            self.state.backups = everything["backups"]
        return everything

    # ============= ACTIONS =============

    def run_action(self, action: str, confirm=None, notify=None, **params) -> ActionOutcome:
        return self.dispatcher.dispatch(action, confirm=confirm, notify=notify, **params)

    def confirmed(self, action: str, **params) -> ActionOutcome:
        """Run an action whose confirmation was already collected by the caller's UI."""
        return self.dispatcher.dispatch(action, confirm=lambda prompt: True, **params)

    def get_metrics(self) -> dict:
        return self.client.get_metrics()

    def close(self):
        self.transport.close()
