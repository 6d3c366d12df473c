"""
Shared fixtures and a fake Shopify Admin API for tests.
"""
import json
import pytest
import httpx
from unittest.mock import patch

from src.services.config import Settings
from src.services.shopify_client import ShopifyClient
from src.services.restock import RestockService


API_PREFIX = "/admin/api/2024-01"

TEST_ENV = {
    "SHOPIFY_STORE_DOMAIN": "test-shop.myshopify.com",
    "SHOPIFY_ACCESS_TOKEN": "shpat_test_12345",
    "CONSENT_CONFIRM_INTERVAL": "0",
}


class FakeShopify:
    """In-memory stand-in for the Shopify Admin REST API.

    Served through ``httpx.MockTransport``. Records every request, keeps
    customers and products in dicts, and can be told to fail specific calls.
    """

    def __init__(self):
        self.customers = {}
        self.products = {}
        self.requests = []
        self.failures = []
        self.unreadable_after_create = 0
        self._next_id = 5000

    def add_customer(self, email, tags="", customer_id=None):
        customer_id = customer_id or self._new_id()
        self.customers[customer_id] = {"id": customer_id, "email": email, "tags": tags}
        return self.customers[customer_id]

    def add_product(self, product):
        self.products[product["id"]] = product
        return product

    def fail(self, method, path_suffix, status_code, body):
        """Make the next matching request fail with the given response."""
        self.failures.append((method, path_suffix, status_code, body))

    def calls(self, method, path_suffix=""):
        return [
            r for r in self.requests
            if r["method"] == method and r["path"].endswith(path_suffix)
        ]

    def _new_id(self):
        self._next_id += 1
        return self._next_id

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len(API_PREFIX):]
        body = json.loads(request.content) if request.content else None
        self.requests.append({
            "method": request.method,
            "path": path,
            "params": dict(request.url.params),
            "json": body,
            "headers": dict(request.headers),
        })

        for failure in self.failures:
            method, suffix, status_code, fail_body = failure
            if method == request.method and path.endswith(suffix):
                self.failures.remove(failure)
                return httpx.Response(status_code, json=fail_body)

        if request.method == "GET" and path == "/customers/search.json":
            email = request.url.params.get("query", "").split("email:", 1)[-1]
            found = [c for c in self.customers.values() if c["email"] == email]
            return httpx.Response(200, json={"customers": found})

        if request.method == "POST" and path == "/customers.json":
            fields = body["customer"]
            customer = {"id": self._new_id(), **fields}
            self.customers[customer["id"]] = customer
            return httpx.Response(201, json={"customer": customer})

        if path.startswith("/customers/"):
            customer_id = int(path[len("/customers/"):-len(".json")])
            customer = self.customers.get(customer_id)
            if request.method == "GET":
                if self.unreadable_after_create:
                    self.unreadable_after_create -= 1
                    return httpx.Response(404, json={"errors": "Not Found"})
                if customer is None:
                    return httpx.Response(404, json={"errors": "Not Found"})
                return httpx.Response(200, json={"customer": customer})
            if request.method == "PUT":
                if customer is None:
                    return httpx.Response(404, json={"errors": "Not Found"})
                customer.update({k: v for k, v in body["customer"].items() if k != "id"})
                return httpx.Response(200, json={"customer": customer})

        if request.method == "GET" and path == "/products.json":
            handle = request.url.params.get("handle")
            found = [p for p in self.products.values() if p.get("handle") == handle]
            return httpx.Response(200, json={"products": found})

        if request.method == "GET" and path.startswith("/products/"):
            product_id = int(path[len("/products/"):-len(".json")])
            product = self.products.get(product_id)
            if product is None:
                return httpx.Response(404, json={"errors": "Not Found"})
            return httpx.Response(200, json={"product": product})

        return httpx.Response(404, json={"errors": "Not Found"})


@pytest.fixture
def settings():
    """Settings as built from the test environment."""
    return Settings.from_env(TEST_ENV)


@pytest.fixture
def sample_product():
    """Shopify product payload with two variants."""
    return {
        "id": 111,
        "title": "Blue Shirt",
        "handle": "blue-shirt",
        "image": {"id": 9001, "src": "https://cdn.example.com/blue-shirt.jpg"},
        "images": [
            {"id": 9001, "src": "https://cdn.example.com/blue-shirt.jpg"},
            {"id": 9002, "src": "https://cdn.example.com/blue-shirt-large.jpg"},
        ],
        "variants": [
            {
                "id": 222,
                "title": "Large",
                "sku": "BS-L",
                "price": "19.99",
                "compare_at_price": "24.99",
                "image_id": 9002,
            },
            {
                "id": 333,
                "title": "Small / Navy",
                "sku": "BS-S",
                "price": "19.99",
                "compare_at_price": None,
                "image_id": None,
            },
        ],
    }


@pytest.fixture
def fake_shopify(sample_product):
    """Fake Shopify preloaded with the sample product."""
    fake = FakeShopify()
    fake.add_product(sample_product)
    return fake


@pytest.fixture
def shopify_client(settings, fake_shopify):
    """Connected ShopifyClient talking to the fake Shopify."""
    client = ShopifyClient(settings, transport=httpx.MockTransport(fake_shopify.handler))
    client.connect()
    return client


@pytest.fixture
def no_sleep():
    """Recording replacement for asyncio.sleep."""
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def restock_service(shopify_client, settings, no_sleep):
    """RestockService wired to the fake Shopify."""
    return RestockService(client=shopify_client, settings=settings, sleep=no_sleep)


@pytest.fixture
def api_client(fake_shopify):
    """TestClient for the API with Shopify replaced by the fake."""
    from fastapi.testclient import TestClient

    transport = httpx.MockTransport(fake_shopify.handler)

    def make_client(settings):
        return ShopifyClient(settings, transport=transport)

    with patch.dict('os.environ', TEST_ENV), \
            patch('src.api.main.ShopifyClient', side_effect=make_client):
        from src.api.main import app
        with TestClient(app) as client:
            yield client
