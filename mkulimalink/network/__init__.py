"""
Network module: local WebSocket bridge between the UI and the sync services.
"""

from .ws_local import LocalBridge

__all__ = ['LocalBridge']
