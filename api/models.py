"""
API request and response models for the AdBond REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in entities/models.py
and auth/models.py, which own the internal domain representation. Route
handlers map between the two.

Request models check shape only (types, lengths). Business rules -- required
contact method, type-specific metadata keys, allowed verification statuses,
email uniqueness -- are enforced by the entity store and the verification
workflow so the CLI gets the same rules as the API.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User
from entities.metadata import metadata_to_dict
from entities.models import Entity

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EntityTypeEnum(str, Enum):
    advertiser = "advertiser"
    affiliate = "affiliate"
    network = "network"


class RoleEnum(str, Enum):
    user = "user"
    advertiser = "advertiser"
    affiliate = "affiliate"
    network = "network"
    admin = "admin"


# ---------------------------------------------------------------------------
# Entity -- request models
# ---------------------------------------------------------------------------


class EntityRegister(BaseModel):
    """Request body for POST /api/entities/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    entity_type: EntityTypeEnum
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    secondary_email: Optional[str] = Field(default=None, max_length=255)
    website: str = Field(min_length=1, max_length=500)
    contact_info: dict[str, Optional[str]] = Field(default_factory=dict)
    description: str = Field(min_length=1, max_length=5000)
    additional_notes: Optional[str] = Field(default=None, max_length=5000)
    how_you_heard: Optional[str] = Field(default=None, max_length=500)
    entity_metadata: dict[str, Any] = Field(default_factory=dict)


class EntityDraft(BaseModel):
    """Request body for POST /api/entities/validate.

    Every field is optional: the endpoint reports what is missing instead of
    rejecting the request.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    entity_type: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    contact_info: dict[str, Optional[str]] = Field(default_factory=dict)
    description: Optional[str] = None
    entity_metadata: dict[str, Any] = Field(default_factory=dict)


class EntityUpdate(BaseModel):
    """Request body for PUT /api/entities/{entity_id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=255)
    secondary_email: Optional[str] = Field(default=None, max_length=255)
    website: Optional[str] = Field(default=None, min_length=1, max_length=500)
    contact_info: Optional[dict[str, Optional[str]]] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    additional_notes: Optional[str] = Field(default=None, max_length=5000)
    how_you_heard: Optional[str] = Field(default=None, max_length=500)
    entity_metadata: Optional[dict[str, Any]] = None
    is_public: Optional[bool] = None


class VerificationUpdate(BaseModel):
    """Request body for PUT /api/entities/{entity_id}/verification.

    verification_status is a plain string so an unknown value produces the
    workflow's own error message rather than a generic schema error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    verification_status: str = Field(max_length=20)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class BulkVerificationUpdate(BaseModel):
    """Request body for PUT /api/entities/admin/bulk-verification."""

    model_config = ConfigDict(str_strip_whitespace=True)

    entity_ids: list[str] = Field(default_factory=list, max_length=200)
    verification_status: str = Field(max_length=20)
    admin_notes: Optional[str] = Field(default=None, max_length=2000)


class ReputationUpdate(BaseModel):
    """Request body for PUT /api/entities/{entity_id}/reputation."""

    new_rating: float = Field(ge=1, le=5)


# ---------------------------------------------------------------------------
# Entity -- response models
# ---------------------------------------------------------------------------


class EntityResponse(BaseModel):
    """Full entity record, returned to admins and authenticated users."""

    model_config = ConfigDict(frozen=True)

    id: str
    entity_type: str
    name: str
    email: str
    secondary_email: Optional[str]
    website: str
    contact_info: dict[str, Optional[str]]
    description: str
    additional_notes: Optional[str]
    how_you_heard: Optional[str]
    entity_metadata: dict[str, Any]
    verification_status: str
    approved_by: Optional[str]
    user_account_created: bool
    reputation_score: float
    total_reviews: int
    is_public: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_entity(cls, entity: Entity) -> "EntityResponse":
        """Build an EntityResponse from the domain dataclass."""
        return cls(
            id=entity.id,
            entity_type=entity.entity_type,
            name=entity.name,
            email=entity.email,
            secondary_email=entity.secondary_email,
            website=entity.website,
            contact_info=entity.contact_info.__dict__,
            description=entity.description,
            additional_notes=entity.additional_notes,
            how_you_heard=entity.how_you_heard,
            entity_metadata=metadata_to_dict(entity.entity_metadata),
            verification_status=entity.verification_status,
            approved_by=entity.approved_by,
            user_account_created=entity.user_account_created,
            reputation_score=entity.reputation_score,
            total_reviews=entity.total_reviews,
            is_public=entity.is_public,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


class EntityPublicRow(BaseModel):
    """Directory listing row. Contact details and admin fields are left out."""

    model_config = ConfigDict(frozen=True)

    id: str
    entity_type: str
    name: str
    website: str
    description: str
    entity_metadata: dict[str, Any]
    reputation_score: float
    total_reviews: int
    created_at: str

    @classmethod
    def from_entity(cls, entity: Entity) -> "EntityPublicRow":
        return cls(
            id=entity.id,
            entity_type=entity.entity_type,
            name=entity.name,
            website=entity.website,
            description=entity.description,
            entity_metadata=metadata_to_dict(entity.entity_metadata),
            reputation_score=entity.reputation_score,
            total_reviews=entity.total_reviews,
            created_at=entity.created_at,
        )


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    entity: EntityResponse


class ValidateResponse(BaseModel):
    """Response for POST /api/entities/validate."""

    model_config = ConfigDict(frozen=True)

    is_valid: bool
    errors: list[str]
    warnings: list[str]


class PublicListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    entities: list[EntityPublicRow]
    count: int


class PublicPageResponse(BaseModel):
    """Response for GET /api/entities/type/{entity_type}."""

    model_config = ConfigDict(frozen=True)

    entities: list[EntityPublicRow]
    total: int
    page: int
    limit: int
    total_pages: int


class PendingPageResponse(BaseModel):
    """Response for GET /api/entities/admin/pending-verification."""

    model_config = ConfigDict(frozen=True)

    entities: list[EntityResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class MetadataTemplateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_type: str
    required_fields: list[str]
    template: dict[str, Any]


class EntityDetailResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity: EntityResponse


class EntityUpdateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    entity: EntityResponse


class VerificationResultRow(BaseModel):
    """Per-entity side-effect result, shared by single and bulk verification."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    success: bool
    email_sent: Optional[bool] = None
    email_error: Optional[str] = None
    error: Optional[str] = None


class VerificationResponse(BaseModel):
    """Response for PUT /api/entities/{entity_id}/verification."""

    model_config = ConfigDict(frozen=True)

    message: str
    entity: EntityResponse
    result: VerificationResultRow


class BulkVerificationResponse(BaseModel):
    """Response for PUT /api/entities/admin/bulk-verification."""

    model_config = ConfigDict(frozen=True)

    message: str
    updated_entities: list[EntityResponse]
    verification_status: str
    account_creation_results: list[VerificationResultRow]


class ReputationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    entity_id: str
    previous_score: float
    new_score: float
    total_reviews: int


class StatisticsRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_type: str
    verification_status: str
    count: int
    avg_reputation: float


class StatisticsOverall(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_entities: int
    public_entities: int
    approved_entities: int
    avg_reputation: float


class StatisticsResponse(BaseModel):
    """Response for GET /api/entities/statistics."""

    model_config = ConfigDict(frozen=True)

    by_type_and_status: list[StatisticsRow]
    overall: StatisticsOverall


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    errors lists offending fields for validation failures (e.g. the missing
    metadata keys for an entity type).
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    errors: Optional[list[str]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- request/response models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class LoginResponse(BaseModel):
    """Response for a successful password login."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    email: str
    role: str
    password_reset_required: bool


class PasswordReset(BaseModel):
    """Request body for POST /api/auth/reset-password.

    current_password is required unless the user still holds a temporary
    password that must be replaced.
    """

    current_password: Optional[str] = Field(default=None, max_length=128)
    new_password: str = Field(min_length=6, max_length=128)


class MeResponse(BaseModel):
    """Response for GET /api/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    role: str
    first_name: str
    last_name: str
    entity_id: Optional[str]
    password_reset_required: bool


class UserCreate(BaseModel):
    """Request body for POST /api/auth/users (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    role: RoleEnum = RoleEnum.user
    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)


class UserResponse(BaseModel):
    """User record returned by admin user management endpoints."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    role: str
    first_name: str
    last_name: str
    entity_id: Optional[str]
    is_active: bool
    password_reset_required: bool
    created_at: str
    last_login: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            first_name=user.first_name,
            last_name=user.last_name,
            entity_id=user.entity_id,
            is_active=user.is_active,
            password_reset_required=user.password_reset_required,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )
