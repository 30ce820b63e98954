"""
ws_local.py - Local WebSocket Bridge for the UI

The UI connects here to relay browser online/offline events, submit
mutations (queued locally while offline), trigger a manual sync and
watch the pending-action count.
"""

import asyncio
import json
import logging
from typing import Set

import websockets

from ..errors import MkulimaLinkError
from ..services.local_db import LocalDatabase
from ..services.offline_client import OfflineAwareClient
from ..services.offline_mode import ConnectivityMonitor
from ..services.sync_manager import SyncManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("LocalBridge")


class LocalBridge:

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        db: LocalDatabase,
        sync_manager: SyncManager,
        offline_client: OfflineAwareClient,
    ):
        self.monitor = monitor
        self.db = db
        self.sync_manager = sync_manager
        self.offline_client = offline_client
        # Connected clients
        self.clients: Set = set()
        self._server = None
        # Pending status broadcasts scheduled from mode-change callbacks
        self._tasks: Set[asyncio.Task] = set()

    def _status_message(self) -> str:
        status = self.monitor.get_status()
        status["pending_count"] = self.db.get_pending_count()
        return json.dumps({"type": "status", "data": status})

    async def broadcast_status(self):
        """Broadcast current status to all connected clients."""
        if not self.clients:
            return

        status_msg = self._status_message()
        await asyncio.gather(
            *[client.send(status_msg) for client in list(self.clients)],
            return_exceptions=True
        )

    async def handle_message(self, websocket, data: dict):
        msg_type = data.get("type")
        logger.info(f"Received: {msg_type}")

        # ==================== Network Signal ====================
        if msg_type == "network":
            self.monitor.on_network_change(bool(data.get("online")), "UI network event")
            await self.broadcast_status()

        # ==================== Mutation ====================
        elif msg_type == "queue_action":
            try:
                result = await self.offline_client.submit_action(
                    data.get("action_type"), data.get("payload") or {}
                )
            except MkulimaLinkError as e:
                await websocket.send(json.dumps({
                    "type": "action_error",
                    "error": str(e),
                    "code": type(e).__name__,
                }))
                return

            ack = {"type": "action_ack", "status": result["status"]}
            if result["status"] == "queued":
                ack["action_id"] = result["action"]["id"]
                ack["message"] = "Saved offline. Will sync when online."
            await websocket.send(json.dumps(ack))
            await self.broadcast_status()

        # ==================== Manual Sync ====================
        elif msg_type == "sync":
            result = await self.sync_manager.sync_pending_actions()
            await websocket.send(json.dumps({"type": "sync_result", "data": result}))
            await self.broadcast_status()

        # ==================== Status Request ====================
        elif msg_type == "get_status":
            await websocket.send(self._status_message())

        # ==================== Pending Count ====================
        elif msg_type == "get_pending":
            await websocket.send(json.dumps({
                "type": "pending_info",
                "count": self.db.get_pending_count()
            }))

        # ==================== Ping/Pong ====================
        elif msg_type == "ping":
            await websocket.send(json.dumps({
                "type": "pong",
                "timestamp": data.get("timestamp")
            }))

        else:
            logger.warning(f"Unknown message type: {msg_type}")

    async def handler(self, websocket):
        """Serve one UI connection."""
        logger.info(f"Client connected: {websocket.remote_address}")
        self.clients.add(websocket)

        try:
            await websocket.send(self._status_message())

            async for message in websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.error("Invalid JSON received")
                    await websocket.send(json.dumps({
                        "type": "error",
                        "error": "Invalid JSON format"
                    }))
                    continue
                if not isinstance(data, dict):
                    logger.error(f"Expected a JSON object, got {type(data).__name__}")
                    await websocket.send(json.dumps({
                        "type": "error",
                        "error": "Message must be a JSON object"
                    }))
                    continue
                await self.handle_message(websocket, data)

        except websockets.exceptions.ConnectionClosed:
            logger.info("Client disconnected")
        finally:
            self.clients.discard(websocket)

    async def start(self, host: str = "0.0.0.0", port: int = 8002):
        """Start listening and push status to clients on every mode change."""
        self._server = await websockets.serve(self.handler, host, port)
        logger.info(f"Local WebSocket Bridge started on ws://{host}:{port}")

        self.monitor.on_mode_change(self._schedule_broadcast)
        return self._server

    def _schedule_broadcast(self, old_mode, new_mode, reason):
        task = asyncio.get_running_loop().create_task(self.broadcast_status())
        self._tasks.add(task)
        task.add_done_callback(self._on_broadcast_done)

    def _on_broadcast_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Status broadcast failed: {task.exception()!r}")

    async def stop(self):
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
