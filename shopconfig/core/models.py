"""
Configuration document model with the data-model invariants enforced by pydantic.
Persisted documents and the wire envelope use camelCase keys via aliases.
"""

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .config import get_catalog_base_url, get_catalog_country

SKU_PATTERN = re.compile(r"^[A-Za-z0-9]{6,20}$")

FEATURE_IDS = (
    "frequentlyBoughtTogether",
    "youMightAlsoLike",
    "freeShippingProgressBar",
    "postCartUpsellOffers",
    "crossSellRecommendations",
)

# Bounded product lists: wire name -> (field name, max length)
LIST_SECTIONS = {
    "recommendations": ("recommendations", 3),
    "bundleReferences": ("bundle_references", 3),
    "postPurchaseOffers": ("post_purchase_offers", 10),
    "crossSellReferences": ("cross_sell_references", 6),
}
_LIMITS_BY_FIELD = {field: limit for field, limit in LIST_SECTIONS.values()}

# Top-level keys a stored document must carry to be structurally valid
REQUIRED_DOCUMENT_KEYS = ("upselling", "productConfiguration", "apiCredentials", "lastUpdated")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_sku(sku: Any) -> bool:
    return isinstance(sku, str) and bool(SKU_PATTERN.match(sku))


def resolve_section(section: str) -> str:
    """Map a wire or field name of a bounded list to its model field name."""
    if section in LIST_SECTIONS:
        return LIST_SECTIONS[section][0]
    if section in _LIMITS_BY_FIELD:
        return section
    raise ValueError(f"Unknown product list section: {section}")


def section_limit(section: str) -> int:
    return _LIMITS_BY_FIELD[resolve_section(section)]


def default_features() -> Dict[str, bool]:
    return {feature: True for feature in FEATURE_IDS}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductConfiguration(_CamelModel):
    primary_reference: Optional[str] = None
    recommendations: List[str] = Field(default_factory=list)
    bundle_references: List[str] = Field(default_factory=list)
    post_purchase_offers: List[str] = Field(default_factory=list)
    cross_sell_references: List[str] = Field(default_factory=list)

    @field_validator('primary_reference')
    @classmethod
    def primary_reference_must_be_sku(cls, v):
        if v is not None and not is_valid_sku(v):
            raise ValueError(f'invalid SKU format: {v}')
        return v

    @field_validator('recommendations', 'bundle_references', 'post_purchase_offers', 'cross_sell_references')
    @classmethod
    def list_must_respect_bounds(cls, v, info):
        limit = _LIMITS_BY_FIELD[info.field_name]
        if len(v) > limit:
            raise ValueError(f'{info.field_name} holds at most {limit} SKUs, got {len(v)}')
        for sku in v:
            if not is_valid_sku(sku):
                raise ValueError(f'invalid SKU format: {sku}')
        if len(set(v)) != len(v):
            raise ValueError(f'{info.field_name} contains duplicate SKUs')
        return v

    def all_references(self) -> List[str]:
        """Every configured SKU, primary first, without duplicates."""
        seen = []
        for sku in [self.primary_reference, *self.recommendations, *self.bundle_references,
                    *self.post_purchase_offers, *self.cross_sell_references]:
            if sku and sku not in seen:
                seen.append(sku)
        return seen


class ApiCredentials(_CamelModel):
    api_key: Optional[str] = None
    account_id: Optional[int] = None
    base_url: str = Field(default_factory=get_catalog_base_url)
    country: str = Field(default_factory=get_catalog_country)
    is_configured: bool = False
    last_validated: Optional[datetime] = None

    @field_validator('base_url')
    @classmethod
    def base_url_must_be_http(cls, v):
        if not v or not v.startswith(("http://", "https://")):
            raise ValueError('baseUrl must be an http(s) URL')
        return v.rstrip("/")

    @model_validator(mode='after')
    def configured_requires_validated_credentials(self):
        if self.is_configured and not (self.api_key and self.account_id is not None and self.last_validated):
            raise ValueError('isConfigured requires apiKey, accountId and a successful validation')
        return self

    def has_credentials(self) -> bool:
        return bool(self.api_key and self.account_id is not None and self.base_url and self.country)


class Configuration(_CamelModel):
    upselling: Dict[str, StrictBool] = Field(default_factory=default_features)
    product_configuration: ProductConfiguration = Field(default_factory=ProductConfiguration)
    api_credentials: ApiCredentials = Field(default_factory=ApiCredentials)
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator('upselling')
    @classmethod
    def upselling_must_cover_known_features(cls, v):
        missing = [feature for feature in FEATURE_IDS if feature not in v]
        if missing:
            raise ValueError(f'missing feature flags: {missing}')
        unknown = [feature for feature in v if feature not in FEATURE_IDS]
        if unknown:
            raise ValueError(f'unknown feature flags: {unknown}')
        return v

    @field_validator('last_updated')
    @classmethod
    def last_updated_must_be_aware(cls, v):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def stamped(self, previous: Optional[datetime] = None) -> 'Configuration':
        """Copy with lastUpdated advanced past both now and any earlier stamp."""
        floor = self.last_updated
        if previous is not None and previous > floor:
            floor = previous
        stamp = max(utcnow(), floor + timedelta(microseconds=1))
        return self.model_copy(update={"last_updated": stamp}, deep=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def public_document(self) -> Dict[str, Any]:
        """Document with the API key and validation state withheld."""
        document = self.to_document()
        credentials = document["apiCredentials"]
        credentials["apiKey"] = None
        credentials["isConfigured"] = False
        credentials["lastValidated"] = None
        return document

    def to_json(self) -> str:
        return json.dumps(self.to_document(), ensure_ascii=False)

    def same_content(self, other: 'Configuration') -> bool:
        """Equality ignoring lastUpdated."""
        mine = self.to_document()
        theirs = other.to_document()
        mine.pop("lastUpdated")
        theirs.pop("lastUpdated")
        return mine == theirs


def default_config() -> Configuration:
    """Fresh default snapshot: every feature enabled, no references, unconfigured credentials."""
    return Configuration()


def revalidate(config: Any) -> Configuration:
    """Run every invariant on a Configuration instance or a raw document. Raises ValidationError."""
    if isinstance(config, Configuration):
        return Configuration.model_validate(config.to_document())
    return Configuration.model_validate(config)


def parse_document(data: Any) -> Optional[Configuration]:
    """Parse a stored document; None when it is structurally invalid."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            return None
    if not isinstance(data, dict):
        return None
    if any(key not in data for key in REQUIRED_DOCUMENT_KEYS):
        return None
    try:
        return Configuration.model_validate(data)
    except ValidationError:
        return None


def upgrade_legacy_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Backfill sections missing from documents written before product references
    and catalog credentials existed. Existing values are kept.
    """
    upgraded = dict(data)
    defaults = default_config().to_document()
    features = dict(defaults["upselling"])
    features.update({k: v for k, v in (data.get("upselling") or {}).items() if k in FEATURE_IDS})
    upgraded["upselling"] = features
    upgraded.setdefault("productConfiguration", defaults["productConfiguration"])
    upgraded.setdefault("apiCredentials", defaults["apiCredentials"])
    upgraded.setdefault("lastUpdated", defaults["lastUpdated"])
    return upgraded


def backfill_legacy(document: Any) -> Optional[Configuration]:
    """Upgraded snapshot for a legacy document; None when it needs no upgrade or cannot be upgraded."""
    if not isinstance(document, dict) or all(key in document for key in REQUIRED_DOCUMENT_KEYS):
        return None
    return parse_document(upgrade_legacy_document(document))
