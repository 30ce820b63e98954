"""
Services module for the MkulimaLink client.

Provides the offline action queue, connectivity tracking and sync.
"""

from .local_db import LocalDatabase
from .offline_mode import ConnectivityMonitor, ConnectionMode
from .actions import ActionType, ActionRoute, ACTION_ROUTES
from .api_client import MarketplaceApiClient
from .sync_manager import SyncManager
from .offline_client import OfflineAwareClient

__all__ = [
    'LocalDatabase',
    'ConnectivityMonitor',
    'ConnectionMode',
    'ActionType',
    'ActionRoute',
    'ACTION_ROUTES',
    'MarketplaceApiClient',
    'SyncManager',
    'OfflineAwareClient',
]
