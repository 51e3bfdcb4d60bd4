"""
Hydrates configured SKUs into display-ready product records.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .client import CatalogApiClient
from ..core.errors import CatalogApiError
from ..core.models import LIST_SECTIONS, ProductConfiguration, utcnow
from ..util.logging import logger

_FEATURE_SPLIT = re.compile(r"[•\n\r-]")
EXTRA_IMAGE_FIELDS = [f"extraImage{i}" for i in range(1, 7)]


@dataclass
class ProductRecord:
    id: str
    name: str
    price: Optional[float] = None
    original_price: Optional[float] = None
    image: Optional[str] = None
    order_count: int = 0
    description: str = ""
    images: List[str] = field(default_factory=list)
    features: List[str] = field(default_factory=list)
    specifications: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "originalPrice": self.original_price,
            "image": self.image,
            "orderCount": self.order_count,
            "description": self.description,
            "images": self.images,
            "features": self.features,
            "specifications": self.specifications,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class SkuValidation:
    sku: str
    is_valid: bool
    last_checked: str
    product_name: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sku": self.sku,
            "isValid": self.is_valid,
            "productName": self.product_name,
            "error": self.error,
            "lastChecked": self.last_checked,
        }


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def map_variant_to_product(variant: Dict[str, Any]) -> ProductRecord:
    """Map a catalog variant to a ProductRecord. Order count is passed through as-is."""
    specifications: Dict[str, str] = {}
    raw_specs = variant.get("specifications")
    if raw_specs:
        try:
            parsed = json.loads(raw_specs)
            specifications = parsed if isinstance(parsed, dict) else {"Specifications": raw_specs}
        except (TypeError, ValueError):
            specifications = {"Specifications": raw_specs}

    features = []
    if variant.get("howToUse"):
        features = [part.strip() for part in _FEATURE_SPLIT.split(variant["howToUse"])]
        features = [f for f in features if 0 < len(f) < 100]

    price = _number(variant.get("productPrice"))
    profit = _number(variant.get("productProfit"))
    description = variant.get("description") or {}

    return ProductRecord(
        id=variant["id"],
        name=variant["productName"],
        price=price,
        original_price=price + profit if price is not None and profit is not None else price,
        image=variant.get("productPicture"),
        order_count=int(variant.get("orderCount") or 0),
        description=(description.get("en") if isinstance(description, dict) else None)
        or variant.get("productDescription") or "",
        images=[variant[name] for name in EXTRA_IMAGE_FIELDS if variant.get(name)],
        features=features,
        specifications=specifications,
        created_at=variant.get("createdAt"),
        updated_at=variant.get("updatedAt"),
    )


async def validate_sku(client: CatalogApiClient, sku: str) -> SkuValidation:
    """Check a SKU against the live catalog, bypassing the cache."""
    result = SkuValidation(sku=sku, is_valid=False, last_checked=utcnow().isoformat())
    try:
        group = await client.get_variant_group(sku, use_cache=False)
    except CatalogApiError as e:
        result.error = e.message
        return result

    if group is None:
        result.error = "Product not found"
    else:
        result.is_valid = True
        result.product_name = group["primaryVariant"]["productName"]
    return result


async def validate_configured_skus(client: CatalogApiClient,
                                   product_config: ProductConfiguration) -> List[SkuValidation]:
    return [await validate_sku(client, sku) for sku in product_config.all_references()]


async def hydrate_product_configuration(client: CatalogApiClient,
                                        product_config: ProductConfiguration) -> Dict[str, Any]:
    """
    Product records for every configured section, keyed by wire name.

    A section whose lookups all fail comes back empty; the display degrades
    instead of failing the page.
    """
    hydrated: Dict[str, Any] = {"primaryReference": None}

    if product_config.primary_reference:
        try:
            group = await client.get_variant_group(product_config.primary_reference)
        except CatalogApiError as e:
            logger.warning(f"Primary product {product_config.primary_reference} unavailable: {e.message}")
            group = None
        if group is not None:
            hydrated["primaryReference"] = map_variant_to_product(group["primaryVariant"])

    for wire_name, (field_name, _) in LIST_SECTIONS.items():
        skus = getattr(product_config, field_name)
        try:
            groups = await client.get_multiple_variant_groups(skus)
        except CatalogApiError as e:
            logger.warning(f"Section {wire_name} could not be hydrated: {e.message}")
            groups = []
        hydrated[wire_name] = [map_variant_to_product(group["primaryVariant"]) for group in groups]

    return hydrated
