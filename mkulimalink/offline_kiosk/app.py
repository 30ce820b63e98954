"""
Offline Kiosk App - Local status API for the client

Serves connectivity state and the pending-action count to the UI and
lets it trigger a sync manually. Runs on port 8001 next to the local
WebSocket bridge on 8002.
"""

import logging

from fastapi import FastAPI

from ..services.local_db import LocalDatabase
from ..services.offline_mode import ConnectivityMonitor
from ..services.sync_manager import SyncManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineKiosk")


def create_status_app(monitor: ConnectivityMonitor, db: LocalDatabase, sync_manager: SyncManager) -> FastAPI:
    app = FastAPI(title="MkulimaLink Offline Kiosk")

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "mode": monitor.get_current_mode().value}

    @app.get("/api/status")
    async def get_status():
        """Connectivity, sync flag and pending count."""
        status = monitor.get_status()
        status["pending_count"] = db.get_pending_count()
        status["recent_logs"] = db.get_recent_logs(5)
        return status

    @app.post("/api/sync")
    async def trigger_sync():
        """Manual sync trigger; a no-op while offline or already syncing."""
        return await sync_manager.sync_pending_actions()

    return app


async def serve_status_app(app: FastAPI, port: int = 8001):
    """Run the status app on the current event loop."""
    import uvicorn
    logger.info(f"Starting Offline Kiosk status API on http://0.0.0.0:{port}")
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info"))
    await server.serve()
