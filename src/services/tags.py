"""
Restock tag encoding, decoding and merge rules.

A restock registration is stored on the Shopify customer as two tags:

- a workflow tag, ``{product_id}`` or ``{product_id}-{variant_id}``, matched
  by downstream automation
- a structured tag carrying the full product context, pipe-delimited:

      {base}|{product_id}|{variant_id|no-variant}|{title}|{variant|default}|{link}[|{image|no-image}]

Structured tags come in two schema versions told apart by field count:
version 1 has 6 fields, version 2 appends the product image as a 7th.
Both versions are readable; which one is written is a configuration choice.

All functions here are pure; they never talk to Shopify.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .config import DEFAULT_BASE_TAG

FIELD_SEPARATOR = "|"
TAG_SEPARATOR = ","

NO_VARIANT = "no-variant"
DEFAULT_VARIANT = "default"
NO_IMAGE = "no-image"

SCHEMA_V1 = 1
SCHEMA_V2 = 2

# Minimum number of pipe-delimited fields per schema version
SCHEMA_MIN_FIELDS = {
    SCHEMA_V1: 6,
    SCHEMA_V2: 7,
}

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9]")


def normalize_text(text: str) -> str:
    """Replace every non-alphanumeric character with ``_`` and lower-case."""
    return _NON_ALPHANUMERIC.sub("_", text).lower()


def as_id(value: Any) -> Optional[str]:
    """Coerce a Shopify id (int or str) to a string; empty values become None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def workflow_tag_for(product_id: Any, variant_id: Any = None) -> str:
    """Build the workflow tag for a product/variant pair."""
    product_id = as_id(product_id)
    variant_id = as_id(variant_id)
    return f"{product_id}-{variant_id}" if variant_id else f"{product_id}"


@dataclass(frozen=True)
class ProductRef:
    """Product/variant reference resolved from Shopify for one request."""

    product_id: str
    title: str
    link: str
    variant_id: Optional[str] = None
    variant_title: Optional[str] = None
    image: Optional[str] = None
    handle: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[str] = None
    compare_at_price: Optional[str] = None

    def to_product_info(self) -> Dict[str, Any]:
        """Summary echoed back to API clients as ``product_info``."""
        variant = None
        if self.variant_id:
            variant = {
                "id": self.variant_id,
                "title": self.variant_title,
                "sku": self.sku,
                "price": self.price,
                "compare_at_price": self.compare_at_price,
            }
        return {
            "product": {
                "id": self.product_id,
                "title": self.title,
                "handle": self.handle,
                "link": self.link,
                "image": self.image,
            },
            "variant": variant,
        }


@dataclass(frozen=True)
class TagPair:
    """The two tags written for one product/variant registration."""

    workflow_tag: str
    structured_tag: str
    product_id: str
    variant_id: Optional[str] = None


@dataclass(frozen=True)
class StructuredTag:
    """Decoded structured tag."""

    base_tag: str
    product_id: str
    variant_id: Optional[str]
    product_name: str
    variant_name: Optional[str]
    product_link: str
    product_image: Optional[str] = None
    schema_version: int = SCHEMA_V1

    def matches(self, product_id: Any, variant_id: Any = None) -> bool:
        """True if this tag refers to exactly the given product/variant pair."""
        return self.product_id == as_id(product_id) and self.variant_id == as_id(variant_id)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "baseTag": self.base_tag,
            "productId": self.product_id,
            "variantId": self.variant_id,
            "productName": self.product_name,
            "variantName": self.variant_name,
            "productLink": self.product_link,
        }
        if self.schema_version >= SCHEMA_V2:
            data["productImage"] = self.product_image
        return data


def is_valid_base_tag(base_tag: str) -> bool:
    """A structured tag prefix may not contain the field or tag separator."""
    return FIELD_SEPARATOR not in base_tag and TAG_SEPARATOR not in base_tag


def is_valid_raw_tag(tag: str) -> bool:
    """A raw tag may not contain the tag separator, or Shopify would split it."""
    return TAG_SEPARATOR not in tag


def encode_tags(
    product: ProductRef,
    base_tag: Optional[str] = None,
    include_image: bool = False,
) -> TagPair:
    """
    Encode a product/variant into its workflow and structured tags.

    Args:
        product: Resolved product reference
        base_tag: Structured tag prefix; blank falls back to ``restock``
        include_image: Write the schema version 2 (with image) format

    Returns:
        TagPair with both tags and the ids they were built from

    Raises:
        ValueError: If the base tag contains ``|`` or ``,``
    """
    base = base_tag or DEFAULT_BASE_TAG

    if not is_valid_base_tag(base):
        raise ValueError(f"Invalid base tag: {base!r}")

    fields = [
        base,
        product.product_id,
        product.variant_id or NO_VARIANT,
        normalize_text(product.title),
        normalize_text(product.variant_title) if product.variant_id and product.variant_title else DEFAULT_VARIANT,
        product.link,
    ]
    if include_image:
        fields.append(product.image or NO_IMAGE)

    return TagPair(
        workflow_tag=workflow_tag_for(product.product_id, product.variant_id),
        structured_tag=FIELD_SEPARATOR.join(fields),
        product_id=product.product_id,
        variant_id=product.variant_id,
    )


def decode_tag(tag: str) -> Optional[StructuredTag]:
    """
    Decode a structured tag.

    Workflow tags and free-form tags are not errors; they simply do not
    decode.

    Args:
        tag: A single customer tag

    Returns:
        StructuredTag, or None if the tag is not a structured tag
    """
    parts = tag.split(FIELD_SEPARATOR)
    if len(parts) < SCHEMA_MIN_FIELDS[SCHEMA_V1]:
        return None

    schema_version = SCHEMA_V2 if len(parts) >= SCHEMA_MIN_FIELDS[SCHEMA_V2] else SCHEMA_V1

    image = None
    if schema_version == SCHEMA_V2 and parts[6] != NO_IMAGE:
        image = parts[6]

    return StructuredTag(
        base_tag=parts[0],
        product_id=parts[1],
        variant_id=parts[2] if parts[2] != NO_VARIANT else None,
        product_name=parts[3].replace("_", " "),
        variant_name=parts[4].replace("_", " ") if parts[4] != DEFAULT_VARIANT else None,
        product_link=parts[5],
        product_image=image,
        schema_version=schema_version,
    )


def decode_all(tags: Iterable[str]) -> List[StructuredTag]:
    """Decode every structured tag in a tag set, skipping the rest."""
    decoded = []
    for tag in tags:
        parsed = decode_tag(tag)
        if parsed is not None:
            decoded.append(parsed)
    return decoded


def split_tags(raw: Optional[str]) -> List[str]:
    """Split Shopify's comma-joined tags string into trimmed, non-empty tags."""
    if not raw:
        return []
    return [t.strip() for t in raw.split(TAG_SEPARATOR) if t.strip()]


def join_tags(tags: Iterable[str]) -> str:
    return ", ".join(tags)


def merge_tags(tags: List[str], pair: TagPair) -> List[str]:
    """
    Merge a registration into a customer's tags.

    The workflow tag is appended if absent. The first structured tag for the
    same product/variant is replaced in place; if none exists the new one is
    appended. Extra copies of either tag for that pair are dropped.

    Args:
        tags: Existing tags in stored order
        pair: Tags to merge

    Returns:
        New tag list; ``tags`` is not modified
    """
    result = []
    has_workflow = False
    replaced = False

    for tag in tags:
        if tag == pair.workflow_tag:
            if not has_workflow:
                has_workflow = True
                result.append(tag)
            continue

        parsed = decode_tag(tag)
        if parsed is not None and parsed.matches(pair.product_id, pair.variant_id):
            if not replaced:
                replaced = True
                result.append(pair.structured_tag)
            continue

        result.append(tag)

    if not has_workflow:
        result.append(pair.workflow_tag)
    if not replaced:
        result.append(pair.structured_tag)

    return result


def remove_tags(tags: List[str], product_id: Any, variant_id: Any = None) -> List[str]:
    """
    Remove a product/variant registration from a customer's tags.

    Drops the literal workflow tag and any structured tag decoding to the
    same pair; all other tags keep their relative order.
    """
    workflow_tag = workflow_tag_for(product_id, variant_id)

    kept = []
    for tag in tags:
        if tag == workflow_tag:
            continue
        parsed = decode_tag(tag)
        if parsed is not None and parsed.matches(product_id, variant_id):
            continue
        kept.append(tag)
    return kept


def add_tag(tags: List[str], tag: str) -> List[str]:
    """Append a raw tag if it is not already present."""
    tag = tag.strip()
    if not tag or tag in tags:
        return list(tags)
    return [*tags, tag]
