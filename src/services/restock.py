"""
Restock notification workflow.

This module coordinates the read-modify-write of a customer's tags on
Shopify: look the customer up by email, compute the new tag set with the
rules in ``tags``, and write it back together with email marketing consent.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .config import Settings
from .errors import NotFoundError, ValidationError
from .shopify_client import ShopifyClient, marketing_consent_fields
from .tags import (
    ProductRef,
    add_tag,
    as_id,
    decode_all,
    encode_tags,
    is_valid_base_tag,
    is_valid_raw_tag,
    join_tags,
    merge_tags,
    remove_tags,
    split_tags,
)

logger = logging.getLogger(__name__)

MESSAGE_UPDATED = "Product restock notification updated for existing customer"
MESSAGE_CREATED = "New customer created with product restock notification"
MESSAGE_REMOVED = "Restock notification removed"
MESSAGE_CUSTOMER_NOT_FOUND = "Customer not found"


class RestockService:
    """
    Registers, lists and removes restock notifications on Shopify customers.

    Flow for a registration:
    1. Resolve product (and variant) from Shopify
    2. Encode workflow + structured tags
    3. Find customer by email
    4. Existing customer: merge tags, write tags + consent in one update
    5. New customer: create with tags + consent, wait until Shopify returns
       the new record, then send the consent update again
    """

    def __init__(
        self,
        client: ShopifyClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the service.

        Args:
            client: Connected ShopifyClient
            settings: Service settings
            sleep: Coroutine used between consent confirmation polls
        """
        self.client = client
        self.settings = settings
        self._sleep = sleep

    async def register(
        self,
        email: Optional[str],
        product_id: Any,
        variant_id: Any = None,
        custom_tag: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Register a customer's interest in a product/variant.

        Args:
            email: Customer email
            product_id: Shopify product id
            variant_id: Optional Shopify variant id
            custom_tag: Optional structured tag prefix

        Returns:
            Response dict with message, customer_id, product_info and both tags

        Raises:
            ValidationError: If email or product_id is missing, or custom_tag contains a separator
            NotFoundError: If the product or requested variant cannot be found
            UpstreamError: If a Shopify customer call fails
        """
        product_id = as_id(product_id)
        if not email or not product_id:
            raise ValidationError("Missing email or productId")

        if custom_tag and not is_valid_base_tag(custom_tag):
            raise ValidationError("Invalid customTag")

        product = await self.resolve_product(product_id, as_id(variant_id))
        pair = encode_tags(
            product,
            base_tag=custom_tag or self.settings.base_tag,
            include_image=self.settings.include_image,
        )

        customer_id, created = await self._apply_to_customer(
            email,
            update=lambda tags: merge_tags(tags, pair),
            new_tags=[pair.workflow_tag, pair.structured_tag],
        )

        return {
            "message": MESSAGE_CREATED if created else MESSAGE_UPDATED,
            "customer_id": customer_id,
            "product_info": product.to_product_info(),
            "workflow_tag": pair.workflow_tag,
            "structured_tag": pair.structured_tag,
        }

    async def register_tag(
        self,
        email: Optional[str],
        tag: Optional[str],
        product_handle: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Merge a raw tag string into a customer's tags.

        Args:
            email: Customer email
            tag: Tag to add (kept verbatim, trimmed)
            product_handle: Optional product handle to validate and echo back

        Returns:
            Response dict with message, customer_id, tag and optional product_info
        """
        tag = tag.strip() if tag else None
        if not email or not tag:
            raise ValidationError("Missing email or tag")
        if not is_valid_raw_tag(tag):
            raise ValidationError("Invalid tag")

        product_info = None
        if product_handle:
            product = await self.client.get_product_by_handle(product_handle)
            if not product:
                raise NotFoundError("Product not found")
            product_info = self.build_product_ref(product).to_product_info()

        customer_id, created = await self._apply_to_customer(
            email,
            update=lambda tags: add_tag(tags, tag),
            new_tags=[tag],
        )

        result = {
            "message": MESSAGE_CREATED if created else MESSAGE_UPDATED,
            "customer_id": customer_id,
            "tag": tag,
        }
        if product_info is not None:
            result["product_info"] = product_info
        return result

    async def list_registrations(self, email: str) -> Dict[str, Any]:
        """
        List a customer's decoded restock registrations.

        Returns:
            ``{customer_id, email, restock_products}``, or
            ``{message, products: []}`` if the customer does not exist
        """
        if not email:
            raise ValidationError("Missing email")

        customer = await self.client.search_customer_by_email(email)
        if not customer:
            return {"message": MESSAGE_CUSTOMER_NOT_FOUND, "products": []}

        registrations = decode_all(split_tags(customer.get("tags")))
        return {
            "customer_id": customer["id"],
            "email": customer.get("email"),
            "restock_products": [r.to_dict() for r in registrations],
        }

    async def unregister(
        self,
        email: Optional[str],
        product_id: Any,
        variant_id: Any = None,
    ) -> Dict[str, Any]:
        """
        Remove a product/variant registration from a customer.

        Raises:
            ValidationError: If email or product_id is missing
            NotFoundError: If no customer has this email
        """
        product_id = as_id(product_id)
        if not email or not product_id:
            raise ValidationError("Missing email or productId")

        customer = await self.client.search_customer_by_email(email)
        if not customer:
            raise NotFoundError(MESSAGE_CUSTOMER_NOT_FOUND)

        tags = split_tags(customer.get("tags"))
        kept = remove_tags(tags, product_id, as_id(variant_id))
        logger.info(
            f"Removing {len(tags) - len(kept)} restock tag(s) for product {product_id} "
            f"from customer {customer['id']}"
        )

        await self.client.update_customer(customer["id"], {"tags": join_tags(kept)})
        return {"message": MESSAGE_REMOVED, "customer_id": customer["id"]}

    async def resolve_product(self, product_id: str, variant_id: Optional[str] = None) -> ProductRef:
        """
        Fetch a product and build its ProductRef.

        Raises:
            NotFoundError: If the product cannot be fetched, or it has no
                variant with the requested id
        """
        product = await self.client.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")

        ref = self.build_product_ref(product, variant_id)
        if variant_id and ref.variant_id is None:
            logger.warning(f"Variant {variant_id} not found on product {product_id}")
            raise NotFoundError("Product not found")
        return ref

    def build_product_ref(self, product: Dict[str, Any], variant_id: Optional[str] = None) -> ProductRef:
        """
        Convert a Shopify product payload into a ProductRef.

        Args:
            product: Product dict as returned by the Admin API
            variant_id: Variant to select, if any

        Returns:
            ProductRef with storefront link and best available image
        """
        variant = None
        if variant_id:
            for v in product.get("variants") or []:
                if as_id(v.get("id")) == variant_id:
                    variant = v
                    break

        handle = product.get("handle") or ""
        return ProductRef(
            product_id=as_id(product.get("id")),
            title=product.get("title") or "",
            link=self.settings.product_link(handle),
            variant_id=as_id(variant.get("id")) if variant else None,
            variant_title=variant.get("title") if variant else None,
            image=self._product_image(product, variant),
            handle=handle,
            sku=variant.get("sku") if variant else None,
            price=variant.get("price") if variant else None,
            compare_at_price=variant.get("compare_at_price") if variant else None,
        )

    @staticmethod
    def _product_image(product: Dict[str, Any], variant: Optional[Dict[str, Any]]) -> Optional[str]:
        """Variant image if the variant has one, else the featured product image."""
        if variant and variant.get("image_id"):
            for image in product.get("images") or []:
                if image.get("id") == variant["image_id"]:
                    return image.get("src")
        featured = product.get("image") or {}
        return featured.get("src")

    async def _apply_to_customer(
        self,
        email: str,
        update: Callable[[List[str]], List[str]],
        new_tags: List[str],
    ) -> Tuple[Any, bool]:
        """
        Update an existing customer's tags or create the customer.

        Args:
            email: Customer email
            update: Computes the new tag list from the existing one
            new_tags: Tags for a newly created customer

        Returns:
            (customer_id, created)
        """
        customer = await self.client.search_customer_by_email(email)

        if customer:
            tags = update(split_tags(customer.get("tags")))
            await self.client.update_customer(
                customer["id"],
                {"tags": join_tags(tags), **marketing_consent_fields()},
            )
            return customer["id"], False

        created = await self.client.create_customer({
            "email": email,
            "tags": join_tags(new_tags),
            **marketing_consent_fields(),
            "verified_email": True,
            "send_email_welcome": False,
        })
        await self._confirm_consent(created["id"])
        return created["id"], True

    async def _confirm_consent(self, customer_id: Any) -> None:
        """
        Re-send marketing consent once a new customer is readable.

        Shopify may not apply consent sent with the create call until the new
        record has settled, so poll for it (bounded) before updating.
        """
        attempts = max(1, self.settings.consent_confirm_attempts)

        for attempt in range(1, attempts + 1):
            if await self.client.get_customer(customer_id) is not None:
                break
            logger.info(f"Customer {customer_id} not readable yet (attempt {attempt}/{attempts})")
            if attempt < attempts:
                await self._sleep(self.settings.consent_confirm_interval)
        else:
            logger.warning(f"Customer {customer_id} still not readable; sending consent update anyway")

        await self.client.update_customer(customer_id, marketing_consent_fields())
