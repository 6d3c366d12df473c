"""Service layer for restock notification operations."""

from .restock import RestockService
from .shopify_client import ShopifyClient

__all__ = ["RestockService", "ShopifyClient"]
