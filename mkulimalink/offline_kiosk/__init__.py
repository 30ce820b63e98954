"""
Offline Kiosk Module

Provides the local status API for the client.
"""

from .app import create_status_app, serve_status_app

__all__ = ['create_status_app', 'serve_status_app']
