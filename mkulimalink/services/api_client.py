"""
api_client.py - Async client for the marketplace REST API.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import aiohttp

from ..errors import RemoteRejection, RemoteServerError, TransportError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ApiClient")


def raise_for_status(status: int, body: str):
    """Map an HTTP status to the error taxonomy. 2xx/3xx pass through."""
    if status < 400:
        return
    message = body
    try:
        data = json.loads(body)
        if isinstance(data, dict):
            message = data.get('message') or data.get('error') or body
    except ValueError:
        pass
    if status >= 500:
        raise RemoteServerError(f"HTTP {status}: {message}", status=status)
    raise RemoteRejection(f"HTTP {status}: {message}", status=status)


class MarketplaceApiClient:
    """
    Thin aiohttp wrapper exposing get/post/put against the marketplace API.

    Raises TransportError for network failures and timeouts,
    RemoteRejection for 4xx and RemoteServerError for 5xx responses.
    """

    def __init__(self, base_url: str, api_token: Optional[str] = None, timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.api_token = api_token
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        try:
            async with session.request(method, url, json=payload) as response:
                body = await response.text()
        except asyncio.TimeoutError as e:
            logger.error(f"{method} {url} timed out")
            raise TransportError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            logger.error(f"{method} {url} connection error: {e}")
            raise TransportError(f"{method} {path} failed: {e}") from e

        raise_for_status(response.status, body)
        if not body:
            return None
        try:
            return json.loads(body)
        except ValueError:
            return body

    async def get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def post(self, path: str, payload: Any = None) -> Any:
        return await self._request("POST", path, payload)

    async def put(self, path: str, payload: Any = None) -> Any:
        return await self._request("PUT", path, payload)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
