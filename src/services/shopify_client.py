"""HTTP client for the Shopify Admin REST API.

Covers the handful of endpoints the restock service needs:

- GET  /customers/search.json?query=email:{email}  - Find customer by email
- GET  /customers/{id}.json                        - Fetch customer
- POST /customers.json                             - Create customer
- PUT  /customers/{id}.json                        - Update tags / consent
- GET  /products/{id}.json                         - Product with variants
- GET  /products.json?handle={handle}              - Product by handle

Failed calls raise UpstreamError with Shopify's ``errors`` payload attached.
Product lookups are the exception: they log and return None so callers can
answer 404.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from .config import Settings
from .errors import UpstreamError

logger = logging.getLogger(__name__)


def marketing_consent_fields(now: Optional[datetime] = None) -> dict[str, Any]:
    """Customer fields that opt a customer into email marketing.

    Args:
        now: Timestamp to record (defaults to current UTC time)

    Returns:
        Dict to merge into a customer create/update payload
    """
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    return {
        "accepts_marketing": True,
        "accepts_marketing_updated_at": timestamp,
        "marketing_opt_in_level": "confirmed_opt_in",
        "email_marketing_consent": {
            "state": "subscribed",
            "opt_in_level": "confirmed_opt_in",
            "consent_updated_at": timestamp,
        },
    }


def _error_details(response: httpx.Response) -> Any:
    """Extract Shopify's ``errors`` payload, falling back to the raw body."""
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and "errors" in data:
        return data["errors"]
    return data


class ShopifyClient:
    """Async client for the Shopify Admin REST API.

    Usage:
        client = ShopifyClient(settings)
        client.connect()
        customer = await client.search_customer_by_email("a@example.com")
        await client.close()
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            settings: Service settings (store domain, token, API version)
            transport: Optional httpx transport, used to stub Shopify in tests
        """
        self.settings = settings
        self.base_url = settings.admin_base_url
        self.timeout = settings.timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def connect(self) -> None:
        """Initialize HTTP client."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "X-Shopify-Access-Token": self.settings.access_token,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        logger.info(f"Shopify client initialized for {self.base_url}")

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and return the decoded JSON body.

        Raises:
            RuntimeError: If connect() was not called
            UpstreamError: On transport errors, non-2xx responses or a
                2xx body that is not JSON
        """
        if not self._client:
            raise RuntimeError("Not connected - call connect() first")

        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"HTTP error calling Shopify {method} {path}: {e}")
            raise UpstreamError(f"Shopify request failed: {method} {path}", details=str(e)) from e

        if response.is_error:
            details = _error_details(response)
            logger.error(f"Shopify {method} {path} failed: {response.status_code} - {details}")
            raise UpstreamError(
                f"Shopify returned {response.status_code} for {method} {path}",
                details=details,
                upstream_status=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Shopify {method} {path} returned a non-JSON body: {response.text[:200]}")
            raise UpstreamError(
                f"Shopify returned invalid JSON for {method} {path}",
                details=response.text,
                upstream_status=response.status_code,
            ) from e

    async def search_customer_by_email(self, email: str) -> Optional[dict[str, Any]]:
        """Find the first customer matching an email.

        Args:
            email: Customer email address

        Returns:
            Customer dict or None if no match
        """
        data = await self._request(
            "GET", "/customers/search.json", params={"query": f"email:{email}"}
        )
        customers = data.get("customers") or []
        return customers[0] if customers else None

    async def get_customer(self, customer_id: Any) -> Optional[dict[str, Any]]:
        """Fetch a customer by id, or None if Shopify does not know it (yet)."""
        try:
            data = await self._request("GET", f"/customers/{customer_id}.json")
        except UpstreamError as e:
            if e.upstream_status == 404:
                return None
            raise
        return data.get("customer")

    async def create_customer(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a customer.

        Args:
            fields: Customer fields (email, tags, consent, ...)

        Returns:
            Created customer dict
        """
        data = await self._request("POST", "/customers.json", json={"customer": fields})
        customer = data.get("customer")
        if not customer or "id" not in customer:
            raise UpstreamError("Shopify customer create returned no customer", details=data)
        logger.info(f"Created Shopify customer {customer['id']}")
        return customer

    async def update_customer(self, customer_id: Any, fields: dict[str, Any]) -> dict[str, Any]:
        """Update a customer.

        Args:
            customer_id: Shopify customer id
            fields: Fields to set (tags, consent, ...)

        Returns:
            Updated customer dict (may be empty if Shopify sent no body)
        """
        payload = {"customer": {"id": customer_id, **fields}}
        data = await self._request("PUT", f"/customers/{customer_id}.json", json=payload)
        logger.info(f"Updated Shopify customer {customer_id}")
        return data.get("customer") or {}

    async def get_product(self, product_id: Any) -> Optional[dict[str, Any]]:
        """Fetch a product with its variants and images.

        Returns:
            Product dict or None if not found or the lookup failed
        """
        try:
            data = await self._request("GET", f"/products/{product_id}.json")
        except UpstreamError as e:
            logger.error(f"Error fetching product {product_id}: {e.details}")
            return None
        return data.get("product")

    async def get_product_by_handle(self, handle: str) -> Optional[dict[str, Any]]:
        """Fetch a product by its storefront handle.

        Returns:
            Product dict or None if not found or the lookup failed
        """
        try:
            data = await self._request("GET", "/products.json", params={"handle": handle})
        except UpstreamError as e:
            logger.error(f"Error fetching product by handle {handle}: {e.details}")
            return None
        products = data.get("products") or []
        return products[0] if products else None
