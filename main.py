import asyncio
import logging
import sys

from mkulimalink.config import SECRETS_PATH, ClientConfig, GatewayConfig, ServerConfig, load_env_file
from mkulimalink.network.ws_local import LocalBridge
from mkulimalink.offline_kiosk.app import create_status_app, serve_status_app
from mkulimalink.payments.gateway import PaymentGatewayClient
from mkulimalink.payments.order_service import OrderService
from mkulimalink.payments.order_store import OrderStore
from mkulimalink.payments.signing import CallbackVerifier
from mkulimalink.payments.webhook import create_webhook_app
from mkulimalink.services.api_client import MarketplaceApiClient
from mkulimalink.services.local_db import LocalDatabase
from mkulimalink.services.offline_client import OfflineAwareClient
from mkulimalink.services.offline_mode import ConnectivityMonitor
from mkulimalink.services.sync_manager import SyncManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("Main")

USAGE = "usage: python main.py [client|server]"


async def run_client(config: ClientConfig):
    """Offline-first client: local bridge + status API on one event loop."""
    db = LocalDatabase(config.db_path)
    # Until the UI reports otherwise, assume the network is up.
    monitor = ConnectivityMonitor(initial_online=True)
    monitor.set_pending_count(db.get_pending_count())
    api = MarketplaceApiClient(config.api_url, config.api_token)
    sync_manager = SyncManager(db, monitor, api)
    offline_client = OfflineAwareClient(db, monitor, sync_manager)

    bridge = LocalBridge(monitor, db, sync_manager, offline_client)
    status_app = create_status_app(monitor, db, sync_manager)

    try:
        await bridge.start(port=config.bridge_port)

        # Mount-time check: drain anything left from the previous run.
        result = await sync_manager.sync_pending_actions()
        logger.info(f"Startup sync: {result}")

        await serve_status_app(status_app, port=config.status_port)
    finally:
        logger.info("Shutting down client...")
        await bridge.stop()
        await sync_manager.close()
        await api.close()
        monitor.close()
        db.close()


def run_server(config: ServerConfig, gateway_config: GatewayConfig):
    """Payment webhook server."""
    import uvicorn

    store = OrderStore(config.orders_db_path)
    gateway = PaymentGatewayClient(gateway_config)
    verifier = CallbackVerifier(gateway_config.api_key)
    app = create_webhook_app(verifier, OrderService(store, gateway))

    logger.info(f"Starting payment webhook on http://0.0.0.0:{config.webhook_port}")
    uvicorn.run(app, host="0.0.0.0", port=config.webhook_port, log_level="info")


def main():
    print("=== MkulimaLink Sync & Payments ===")
    load_env_file(SECRETS_PATH)

    mode = sys.argv[1] if len(sys.argv) > 1 else "client"

    if mode == "client":
        try:
            asyncio.run(run_client(ClientConfig.from_env()))
        except KeyboardInterrupt:
            print("\n[!] Shutting down...")
    elif mode == "server":
        gateway_config = GatewayConfig.from_env()
        if not gateway_config.api_key:
            print("[!] CLICKPESA_API_KEY is not set.")
            sys.exit(1)
        run_server(ServerConfig.from_env(), gateway_config)
    else:
        print(USAGE)
        sys.exit(2)


if __name__ == "__main__":
    main()
