"""
offline_mode.py - Connectivity Monitor

This module tracks the client's online/offline state from platform
network signals and notifies listeners when the connection is restored.
It also owns the "syncing" flag that keeps sync runs from overlapping.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional
from datetime import datetime, timezone

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineMode")


class ConnectionMode(Enum):
    """Client connectivity modes."""
    UNKNOWN = "unknown"  # No platform signal received yet
    ONLINE = "online"
    OFFLINE = "offline"


class ConnectivityMonitor:
    """
    Holds the current connectivity state.

    State changes only come from platform signals (on_network_change);
    nothing here polls. An offline -> online transition fires the
    reconnect callbacks exactly once.
    """

    def __init__(self, initial_online: Optional[bool] = None):
        if initial_online is None:
            self.current_mode = ConnectionMode.UNKNOWN
        else:
            self.current_mode = ConnectionMode.ONLINE if initial_online else ConnectionMode.OFFLINE
        self.last_change: Optional[datetime] = None
        self.pending_count: int = 0
        self.is_syncing: bool = False

        # Callbacks for mode changes
        self._on_mode_change_callbacks: List[Callable] = []
        self._on_reconnect_callbacks: List[Callable] = []

        logger.info(f"ConnectivityMonitor initialized ({self.current_mode.value})")

    # ==================== Mode Management ====================

    def get_current_mode(self) -> ConnectionMode:
        """Get the current connectivity mode."""
        return self.current_mode

    def is_online(self) -> bool:
        return self.current_mode == ConnectionMode.ONLINE

    def is_offline(self) -> bool:
        return self.current_mode == ConnectionMode.OFFLINE

    def _set_mode(self, new_mode: ConnectionMode, reason: str = ""):
        """
        Set the mode and trigger callbacks.

        Args:
            new_mode: The new mode to set
            reason: Reason for the mode change (for logging)
        """
        if new_mode == self.current_mode:
            return

        old_mode = self.current_mode
        self.current_mode = new_mode
        self.last_change = datetime.now(timezone.utc)

        logger.info(f"Mode changed: {old_mode.value} -> {new_mode.value} | Reason: {reason}")

        for callback in list(self._on_mode_change_callbacks):
            try:
                callback(old_mode, new_mode, reason)
            except Exception as e:
                logger.error(f"Mode change callback error: {e}")

        if old_mode == ConnectionMode.OFFLINE and new_mode == ConnectionMode.ONLINE:
            for callback in list(self._on_reconnect_callbacks):
                try:
                    callback()
                except Exception as e:
                    logger.error(f"Reconnect callback error: {e}")

    # ==================== Platform Signals ====================

    def set_online(self, reason: str = "Network available"):
        self._set_mode(ConnectionMode.ONLINE, reason)

    def set_offline(self, reason: str = "Network lost"):
        self._set_mode(ConnectionMode.OFFLINE, reason)

    def on_network_change(self, online: bool, reason: str = ""):
        """Entry point for platform online/offline events."""
        if online:
            self.set_online(reason or "Network available")
        else:
            self.set_offline(reason or "Network lost")

    # ==================== Sync Guard ====================

    def begin_sync(self) -> bool:
        """
        Claim the syncing flag.

        Returns False when a sync is already running; the caller should
        drop its request rather than wait.
        """
        if self.is_syncing:
            return False
        self.is_syncing = True
        return True

    def end_sync(self, pending_count: Optional[int] = None):
        self.is_syncing = False
        if pending_count is not None:
            self.pending_count = pending_count

    def set_pending_count(self, count: int):
        self.pending_count = count

    # ==================== Callbacks ====================

    def on_mode_change(self, callback: Callable):
        """
        Register a callback for mode changes.

        Callback signature: (old_mode: ConnectionMode, new_mode: ConnectionMode, reason: str)
        """
        self._on_mode_change_callbacks.append(callback)

    def on_reconnect(self, callback: Callable):
        """
        Register a callback for when connection is restored.

        Callback signature: ()
        """
        self._on_reconnect_callbacks.append(callback)

    def close(self):
        """Drop all registered callbacks."""
        self._on_mode_change_callbacks.clear()
        self._on_reconnect_callbacks.clear()

    # ==================== Status Report ====================

    def get_status(self) -> dict:
        """Get current status as a dictionary."""
        return {
            "mode": self.current_mode.value,
            "is_online": self.is_online(),
            "is_syncing": self.is_syncing,
            "pending_count": self.pending_count,
            "last_change": self.last_change.isoformat() if self.last_change else None,
        }
