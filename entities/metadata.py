"""
entities/metadata.py -- Type-specific entity metadata as a tagged union.

Each entity classification carries its own metadata shape. Instead of a
free-form dict checked at the call site, every shape is a dataclass whose
required fields have no default. parse_metadata() is the single boundary:
it looks up the variant by entity_type, reports exactly which required keys
are missing, and builds the variant. Unknown keys are dropped.

    network    -> NetworkMetadata
    affiliate  -> AffiliateMetadata
    advertiser -> AdvertiserMetadata

Presence is what is checked, not truthiness: an empty list for
supported_models is a valid (if unhelpful) answer, a missing key is not.
"""

from __future__ import annotations

from dataclasses import MISSING, asdict, dataclass, field, fields
from typing import Any, Union

from core.errors import ValidationError


@dataclass
class NetworkMetadata:
    network_name: str
    signup_url: str
    tracking_platform: str
    supported_models: list[str]
    verticals: list[str]
    payment_terms: str
    offers_available: int = 0
    minimum_payout: float = 0
    referral_commission: float = 0


@dataclass
class AffiliateMetadata:
    verticals: list[str]
    monthly_revenue: float
    traffic_provided_geos: list[str]
    reference_details: dict[str, Any] = field(default_factory=dict)


def _default_social_media() -> dict[str, str]:
    return {"facebook": "", "twitter": "", "linkedin": ""}


@dataclass
class AdvertiserMetadata:
    company_name: str
    signup_url: str
    program_name: str
    program_category: str
    payout_types: list[str]
    payment_terms: str
    social_media: dict[str, str] = field(default_factory=_default_social_media)
    referral_commission: float = 0


EntityMetadata = Union[NetworkMetadata, AffiliateMetadata, AdvertiserMetadata]

METADATA_TYPES: dict[str, type] = {
    "network": NetworkMetadata,
    "affiliate": AffiliateMetadata,
    "advertiser": AdvertiserMetadata,
}

# Placeholder values for required fields when rendering a blank template.
_BLANK_BY_ANNOTATION: dict[str, Any] = {
    "str": "",
    "float": 0,
    "int": 0,
    "list[str]": [],
}


def required_fields(entity_type: str) -> list[str]:
    """Return the required metadata keys for a classification, in declaration order."""
    cls = METADATA_TYPES[entity_type]
    return [f.name for f in fields(cls) if f.default is MISSING and f.default_factory is MISSING]


def parse_metadata(entity_type: str, raw: dict[str, Any]) -> EntityMetadata:
    """Validate a raw metadata mapping and build the variant for entity_type.

    Raises ValidationError when entity_type is unknown, raw is not a mapping,
    or required keys are missing. For missing keys, errors lists exactly the
    missing field names.
    """
    cls = METADATA_TYPES.get(entity_type)
    if cls is None:
        raise ValidationError(
            "Invalid entity type. Must be one of: advertiser, affiliate, network",
            errors=["entity_type"],
        )
    if not isinstance(raw, dict):
        raise ValidationError("entity_metadata must be an object", errors=["entity_metadata"])

    missing = [name for name in required_fields(entity_type) if name not in raw]
    if missing:
        raise ValidationError(
            f"Missing required fields for {entity_type}: {', '.join(missing)}",
            errors=missing,
        )
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in known})


def metadata_to_dict(metadata: EntityMetadata) -> dict[str, Any]:
    return asdict(metadata)


def default_metadata(entity_type: str) -> dict[str, Any]:
    """Return a blank metadata template for entity_type (used by the template endpoint)."""
    cls = METADATA_TYPES[entity_type]
    template: dict[str, Any] = {}
    for f in fields(cls):
        if f.default is not MISSING:
            template[f.name] = f.default
        elif f.default_factory is not MISSING:
            template[f.name] = f.default_factory()
        else:
            blank = _BLANK_BY_ANNOTATION.get(str(f.type), "")
            template[f.name] = list(blank) if isinstance(blank, list) else blank
    return template
