"""Grocery shop backend client using httpx."""

import logging
from typing import Any, Optional

import httpx

from grocery_router import config

logger = logging.getLogger(__name__)


class ShopAPIError(Exception):
    """Raised when the shop backend answers with an error or is unreachable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ShopClient:
    """Async client for the grocery shop REST API."""

    def __init__(
        self,
        base_url: str = config.SHOP_API_URL,
        timeout: float = config.SHOP_API_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        async with self._client() as client:
            try:
                response = await client.get(path, params=params)
            except httpx.HTTPError as exc:
                raise ShopAPIError(f"Shop API unreachable: {exc}") from exc
        return self._decode(response)

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        async with self._client() as client:
            try:
                response = await client.post(path, json=payload)
            except httpx.HTTPError as exc:
                raise ShopAPIError(f"Shop API unreachable: {exc}") from exc
        return self._decode(response)

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}
        if not isinstance(data, dict):
            data = {"data": data}

        if not response.is_success:
            message = data.get("error") or data.get("message") or response.reason_phrase
            logger.warning("Shop API %s %s -> %s", response.request.method, response.request.url, response.status_code)
            raise ShopAPIError(f"{response.status_code}: {message}", status_code=response.status_code)
        return data


# Lazily initialised so the module can be imported without side-effects.
_shop_client: Optional[ShopClient] = None


def get_shop_client() -> ShopClient:
    global _shop_client
    if _shop_client is None:
        _shop_client = ShopClient()
    return _shop_client


def set_shop_client(client: Optional[ShopClient]) -> None:
    """Swap the shared client (``None`` resets to the configured default)."""
    global _shop_client
    _shop_client = client
