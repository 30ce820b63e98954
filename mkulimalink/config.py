"""
config.py - Environment-driven configuration.

Values come from process environment variables, optionally seeded from a
KEY=VALUE file (config/secrets.env) via load_env_file().
"""

import os
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent.parent
CONFIG_DIR = BASE_DIR / "config"
DATA_DIR = BASE_DIR / "data"
SECRETS_PATH = CONFIG_DIR / "secrets.env"

# Gateway endpoints
INITIATE_PAYMENT_ENDPOINT = "/v1/payment/initiate"
CHECK_STATUS_ENDPOINT = "/v1/payment/status"
REFUND_ENDPOINT = "/v1/payment/refund"
CALLBACK_ENDPOINT = "/v1/payment/callback"

DEFAULT_GATEWAY_URL = "https://api.clickpesa.com"
DEFAULT_COUNTRY_CODE = "255"


def load_env_file(path) -> None:
    """Simple replacement for load_dotenv to avoid external dependency."""
    if not os.path.exists(path):
        return
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, val = line.split('=', 1)
            os.environ.setdefault(key.strip(), val.strip())


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


class GatewayConfig:
    """Mobile-money gateway credentials and transport settings."""

    def __init__(
        self,
        client_id: str,
        api_key: str,
        base_url: str = DEFAULT_GATEWAY_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        country_code: str = DEFAULT_COUNTRY_CODE,
    ):
        self.client_id = client_id
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.country_code = country_code

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        return cls(
            client_id=os.getenv("CLICKPESA_CLIENT_ID", ""),
            api_key=os.getenv("CLICKPESA_API_KEY", ""),
            base_url=os.getenv("CLICKPESA_BASE_URL", DEFAULT_GATEWAY_URL),
            timeout=_env_float("CLICKPESA_TIMEOUT", 30.0),
            max_retries=_env_int("CLICKPESA_MAX_RETRIES", 3),
            retry_backoff=_env_float("CLICKPESA_RETRY_BACKOFF", 1.0),
            country_code=os.getenv("CLICKPESA_COUNTRY_CODE", DEFAULT_COUNTRY_CODE),
        )


class ClientConfig:
    """Settings for the offline-first client process."""

    def __init__(
        self,
        api_url: str,
        api_token: Optional[str] = None,
        db_path: Optional[str] = None,
        bridge_port: int = 8002,
        status_port: int = 8001,
    ):
        self.api_url = api_url.rstrip('/')
        self.api_token = api_token
        self.db_path = db_path or str(DATA_DIR / "offline.db")
        self.bridge_port = bridge_port
        self.status_port = status_port

    @classmethod
    def from_env(cls) -> "ClientConfig":
        return cls(
            api_url=os.getenv("MKULIMA_API_URL", "http://localhost:5000/api"),
            api_token=os.getenv("MKULIMA_API_TOKEN"),
            db_path=os.getenv("MKULIMA_DB_PATH"),
            bridge_port=_env_int("MKULIMA_BRIDGE_PORT", 8002),
            status_port=_env_int("MKULIMA_STATUS_PORT", 8001),
        )


class ServerConfig:
    """Settings for the payment webhook process."""

    def __init__(self, orders_db_path: Optional[str] = None, webhook_port: int = 8000):
        self.orders_db_path = orders_db_path or str(DATA_DIR / "orders.db")
        self.webhook_port = webhook_port

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            orders_db_path=os.getenv("MKULIMA_ORDERS_DB_PATH"),
            webhook_port=_env_int("MKULIMA_WEBHOOK_PORT", 8000),
        )
