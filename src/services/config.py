"""Service configuration.

Settings are read from the environment once at startup and passed explicitly
to the components that need them.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_API_VERSION = "2024-01"
DEFAULT_BASE_TAG = "restock"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def derive_storefront_url(store_domain: str) -> str:
    """Build the public storefront URL from a ``*.myshopify.com`` domain.

    ``my-shop.myshopify.com`` becomes ``https://my-shop.com``.
    """
    return f"https://{store_domain.replace('.myshopify.com', '')}.com"


@dataclass(frozen=True)
class Settings:
    """Configuration for the restock notify service."""

    store_domain: str
    access_token: str
    api_version: str = DEFAULT_API_VERSION
    storefront_url: Optional[str] = None
    base_tag: str = DEFAULT_BASE_TAG
    include_image: bool = False
    timeout: float = 30.0
    consent_confirm_attempts: int = 3
    consent_confirm_interval: float = 1.0

    @property
    def admin_base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"

    @property
    def product_link_base(self) -> str:
        if self.storefront_url:
            return self.storefront_url.rstrip("/")
        return derive_storefront_url(self.store_domain)

    def product_link(self, handle: str) -> str:
        return f"{self.product_link_base}/products/{handle}"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            Settings instance

        Raises:
            ValueError: If SHOPIFY_STORE_DOMAIN or SHOPIFY_ACCESS_TOKEN is missing,
                or RESTOCK_BASE_TAG contains "|" or ","
        """
        env = os.environ if environ is None else environ

        store_domain = env.get("SHOPIFY_STORE_DOMAIN")
        access_token = env.get("SHOPIFY_ACCESS_TOKEN")

        if not store_domain:
            raise ValueError("SHOPIFY_STORE_DOMAIN environment variable required")
        if not access_token:
            raise ValueError("SHOPIFY_ACCESS_TOKEN environment variable required")

        base_tag = env.get("RESTOCK_BASE_TAG", DEFAULT_BASE_TAG)
        if "|" in base_tag or "," in base_tag:
            raise ValueError(f"RESTOCK_BASE_TAG may not contain '|' or ',': {base_tag!r}")

        return cls(
            store_domain=store_domain,
            access_token=access_token,
            api_version=env.get("SHOPIFY_API_VERSION", DEFAULT_API_VERSION),
            storefront_url=env.get("STOREFRONT_URL") or None,
            base_tag=base_tag,
            include_image=env.get("TAG_INCLUDE_IMAGE", "false").lower() in _TRUE_VALUES,
            timeout=float(env.get("SHOPIFY_TIMEOUT", "30")),
            consent_confirm_attempts=int(env.get("CONSENT_CONFIRM_ATTEMPTS", "3")),
            consent_confirm_interval=float(env.get("CONSENT_CONFIRM_INTERVAL", "1.0")),
        )
