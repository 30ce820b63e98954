"""
offline_client.py - Offline-aware front door for user mutations and reads.

Mutations go straight to the API while online and fall back to the
pending queue when the device is offline or the network drops mid-call.
Product and price reads are cached locally and served from the cache
when the API cannot be reached.
"""

import logging
from typing import Any, Dict, List

from ..errors import TransportError, ValidationError
from .actions import action_type_name, dispatch_action, prepare_payload
from .local_db import LocalDatabase
from .offline_mode import ConnectivityMonitor
from .sync_manager import SyncManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("OfflineClient")


class OfflineAwareClient:

    def __init__(self, db: LocalDatabase, monitor: ConnectivityMonitor, sync_manager: SyncManager):
        self.db = db
        self.monitor = monitor
        self.sync_manager = sync_manager
        self.api = sync_manager.api

    async def submit_action(self, action_type, payload: Dict[str, Any]) -> Dict:
        """
        Send a mutation, or queue it when the network is unavailable.

        Returns:
            {"status": "sent", "result": ...} or {"status": "queued", "action": ...}

        Raises:
            ValidationError: unknown action type or bad payload
            RemoteRejection / RemoteServerError: the API refused an online request
            PersistenceError: the action could not be queued
        """
        name = action_type_name(action_type)
        route = self.sync_manager.routes.get(name)
        if route is None:
            raise ValidationError(f"Unknown action type: {name}")
        payload = prepare_payload(route, payload)

        if self.monitor.is_online():
            try:
                result = await dispatch_action(self.api, route, payload)
                return {"status": "sent", "result": result}
            except TransportError as e:
                logger.warning(f"{name} could not reach the API, queuing instead: {e}")

        action = self.db.enqueue_action(name, payload)
        self.monitor.set_pending_count(self.db.get_pending_count())
        return {"status": "queued", "action": action}

    async def fetch_products(self) -> List[Dict]:
        """Fetch products from the API, falling back to the local cache."""
        if self.monitor.is_online():
            try:
                products = await self.api.get("/products")
                if isinstance(products, list):
                    self.db.cache_products(products)
                    return products
            except TransportError as e:
                logger.warning(f"Product fetch failed, serving cache: {e}")
        return self.db.get_cached_products()

    async def fetch_prices(self) -> List[Dict]:
        """Fetch market prices from the API, falling back to the local cache."""
        if self.monitor.is_online():
            try:
                prices = await self.api.get("/prices")
                if isinstance(prices, list):
                    self.db.cache_prices(prices)
                    return prices
            except TransportError as e:
                logger.warning(f"Price fetch failed, serving cache: {e}")
        return self.db.get_cached_prices()
