"""
entities/models.py -- Domain dataclasses for marketplace entities.

These are pure data containers with zero logic. Validation lives in
entities/store.py (and entities/metadata.py for the type-specific shape);
the verification state machine is driven by entities/verification.py.

id is None before the record is written to the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from entities.metadata import EntityMetadata

ENTITY_TYPES = ("advertiser", "affiliate", "network")
VERIFICATION_STATUSES = ("pending", "approved", "rejected", "on_hold")
CONTACT_METHODS = ("phone", "telegram", "teams", "linkedin", "address")


@dataclass
class ContactInfo:
    """How to reach an entity. At least one method must be present."""

    phone: Optional[str] = None
    telegram: Optional[str] = None
    teams: Optional[str] = None
    linkedin: Optional[str] = None
    address: Optional[str] = None

    def has_any(self) -> bool:
        return any(getattr(self, name) for name in CONTACT_METHODS)


@dataclass
class NewEntity:
    """Self-registration input, before validation.

    contact_info and entity_metadata are raw mappings here; the store turns
    them into ContactInfo and the metadata variant for entity_type.
    """

    entity_type: str
    name: str
    email: str
    website: str
    description: str
    contact_info: dict[str, Any]
    entity_metadata: dict[str, Any]
    secondary_email: Optional[str] = None
    additional_notes: Optional[str] = None
    how_you_heard: Optional[str] = None


@dataclass
class Entity:
    """An advertiser, affiliate, or network holding marketplace trust status.

    verification_status -- "pending" | "approved" | "rejected" | "on_hold"
    approved_by         -- admin user id, written only by an approval
    user_account_created -- set once the provisioner has created the login

    reputation_score is a running average of review ratings (0.00-5.00).
    """

    entity_type: str
    name: str
    email: str
    website: str
    description: str
    contact_info: ContactInfo
    entity_metadata: EntityMetadata
    id: Optional[str] = None
    secondary_email: Optional[str] = None
    additional_notes: Optional[str] = None
    how_you_heard: Optional[str] = None
    verification_status: str = "pending"
    approved_by: Optional[str] = None
    user_account_created: bool = False
    reputation_score: float = 0.0
    total_reviews: int = 0
    is_public: bool = True
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class StatusTransition:
    """Result of a verification status write.

    changed is True only for the call whose UPDATE actually moved the status.
    A second, concurrent or repeated request for the same target status sees
    changed=False and must not repeat side effects.
    """

    entity: Entity
    changed: bool


@dataclass
class EntityPage:
    """One page of entities plus the total row count for the query."""

    entities: list[Entity] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
