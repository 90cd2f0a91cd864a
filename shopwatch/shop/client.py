"""HTTP client for the upstream shop API."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from shopwatch.config import settings
from shopwatch.shop.schemas import Catalog, PurchaseResponse, extract_balance

logger = logging.getLogger(__name__)

CATALOG_PATH = "/api/ListResource.php"
BALANCE_PATH = "/api/GetBalance.php"
PURCHASE_PATH = "/api/BResource.php"

# Any failure to get a response: timeouts, refused connections, proxy and protocol errors
TRANSPORT_EXC = httpx.TransportError


class ShopError(RuntimeError):
    """Base class for upstream shop failures."""


class ShopTransportError(ShopError):
    """Raised when the shop could not be reached or answered with an HTTP error."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.detail = detail or message


class MalformedResponseError(ShopError):
    """Raised when the shop answered with a payload of unexpected shape."""


def _decode(response: httpx.Response) -> Any:
    """Decode JSON when possible, otherwise return the body text."""
    try:
        return response.json()
    except ValueError:
        return response.text


class ShopClient:
    """
    Thin async client over the shop endpoints.

    Every call carries a bounded timeout; one pooled keep-alive client is
    shared by all callers.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.shop_base_url).rstrip("/")
        self.timeout = timeout or settings.upstream_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=settings.max_keepalive_connections
                ),
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(path, params=params)
        except TRANSPORT_EXC as e:
            raise ShopTransportError(f"{type(e).__name__} calling {path}: {e}") from e

        if response.status_code >= 400:
            raise ShopTransportError(
                f"HTTP {response.status_code} from {path}",
                detail=response.text[:1000],
            )
        return _decode(response)

    async def fetch_catalog(self, username: str, password: str) -> Catalog:
        """Fetch the category tree visible to the account."""
        payload = await self._get(CATALOG_PATH, {"username": username, "password": password})
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Catalog response is not an object: {str(payload)[:200]}")
        try:
            return Catalog.model_validate(payload)
        except ValidationError as e:
            raise MalformedResponseError(f"Catalog response failed validation: {e}") from e

    async def fetch_balance(self, username: str, password: str) -> Optional[str]:
        """Fetch the account balance as the shop formats it (e.g. "116.565đ")."""
        payload = await self._get(BALANCE_PATH, {"username": username, "password": password})
        return extract_balance(payload)

    async def purchase(
        self,
        username: str,
        password: str,
        product_id: str,
        amount: int,
    ) -> PurchaseResponse:
        """
        Buy ``amount`` units of a product.

        A rejection by the shop is returned as a non-success response, not
        raised. Transport failures raise ShopTransportError.
        """
        payload = await self._get(
            PURCHASE_PATH,
            {
                "username": username,
                "password": password,
                "id": product_id,
                "amount": amount,
            },
        )
        if not isinstance(payload, dict):
            return PurchaseResponse(data=payload)
        try:
            return PurchaseResponse.model_validate(payload)
        except ValidationError:
            logger.warning(f"Unexpected purchase response shape for product {product_id}")
            return PurchaseResponse(data=payload)


# Global client instance
shop_client = ShopClient()
