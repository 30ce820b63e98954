"""
sync_manager.py - Store-and-Forward Sync Manager

This module replays actions queued while offline against the
marketplace API once the connection is restored.
"""

import asyncio
import logging
from typing import Dict, Optional

from ..errors import PersistenceError, RemoteCallError, ValidationError
from .actions import ACTION_ROUTES, ActionRoute, action_type_name, dispatch_action
from .local_db import LocalDatabase
from .offline_mode import ConnectivityMonitor

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SyncManager")


class SyncManager:
    """
    Drains the pending action queue.

    Actions are replayed one at a time in queue order. A successful
    action is removed before the next one is sent; a failed action
    stays queued and the rest of the batch still runs.
    """

    def __init__(
        self,
        db: LocalDatabase,
        monitor: ConnectivityMonitor,
        api,
        routes: Optional[Dict[str, ActionRoute]] = None,
    ):
        self.db = db
        self.monitor = monitor
        self.api = api
        self.routes: Dict[str, ActionRoute] = dict(ACTION_ROUTES if routes is None else routes)
        self._sync_task: Optional[asyncio.Task] = None

        # Register reconnect callback
        monitor.on_reconnect(self._on_reconnect)

        logger.info(f"SyncManager initialized with {len(self.routes)} action routes")

    def register_route(self, action_type, route: ActionRoute):
        self.routes[action_type_name(action_type)] = route

    def _on_reconnect(self):
        """Callback triggered when connection is restored."""
        logger.info("Reconnect detected - triggering sync")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, reconnect sync not scheduled")
            return
        self._sync_task = loop.create_task(self.sync_pending_actions())
        self._sync_task.add_done_callback(self._log_task_result)

    @staticmethod
    def _log_task_result(task: asyncio.Task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background sync failed: {error!r}")

    async def sync_pending_actions(self) -> Dict:
        """
        Replay all pending actions.

        Returns:
            Dict with status, synced, failed and skipped counts
        """
        if not self.monitor.is_online():
            logger.info("Offline, sync skipped")
            return {"status": "skipped", "reason": "offline", "synced": 0, "failed": 0, "skipped": 0}

        if not self.monitor.begin_sync():
            logger.warning("Sync already in progress, skipping")
            return {"status": "skipped", "reason": "sync_in_progress", "synced": 0, "failed": 0, "skipped": 0}

        synced = 0
        failed = 0
        skipped = 0

        try:
            pending = self.db.list_pending()

            if not pending:
                logger.info("No pending actions to sync")
                return {"status": "success", "synced": 0, "failed": 0, "skipped": 0}

            logger.info(f"Syncing {len(pending)} pending actions...")
            self.db.log_activity('sync_start', 'pending', f"Syncing {len(pending)} actions")

            for action in pending:
                route = self.routes.get(action['action_type'])
                if route is None:
                    logger.warning(f"Unknown action type {action['action_type']} (#{action['id']}), skipping")
                    skipped += 1
                    continue

                try:
                    await dispatch_action(self.api, route, action['payload'])
                except (RemoteCallError, ValidationError) as e:
                    logger.error(f"Sync failed for action #{action['id']} ({action['action_type']}): {e}")
                    failed += 1
                    continue

                try:
                    self.db.remove_action(action['id'])
                except PersistenceError as e:
                    # Sent but still queued; the idempotency key covers the replay.
                    logger.error(f"Action #{action['id']} sent but not dequeued: {e}")
                    failed += 1
                    continue

                synced += 1

            status = "success" if failed == 0 else "partial"
            self.db.log_activity(
                'sync_complete',
                'completed' if failed == 0 else 'partial',
                f"Synced {synced}, failed {failed}, skipped {skipped}"
            )
            logger.info(f"Sync complete: {synced} synced, {failed} failed, {skipped} skipped")
            return {"status": status, "synced": synced, "failed": failed, "skipped": skipped}

        finally:
            self.monitor.end_sync(pending_count=self.db.get_pending_count())

    def get_sync_status(self) -> Dict:
        """Get current sync status."""
        return {
            "is_syncing": self.monitor.is_syncing,
            "pending_count": self.db.get_pending_count(),
            "last_sync_logs": self.db.get_recent_logs(5),
        }

    async def close(self):
        """Cancel a reconnect sync that is still running."""
        task = self._sync_task
        self._sync_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            logger.info("Background sync cancelled on shutdown")
