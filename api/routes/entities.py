"""
api/routes/entities.py -- Entity registration, directory, and verification routes.

Routes (in registration order to avoid FastAPI path capture conflicts --
every static path is registered before /entities/{entity_id}):
  POST   /entities/register                         -- public self-registration
  POST   /entities/validate                         -- public pre-submit check
  GET    /entities/public                           -- public directory
  GET    /entities/type/{entity_type}               -- public directory, one type, paginated
  GET    /entities/metadata/template/{entity_type}  -- blank metadata for a type
  GET    /entities/statistics                       -- counts (any user)
  GET    /entities/admin/pending-verification       -- review queue (admin)
  PUT    /entities/admin/bulk-verification          -- bulk decision (admin)
  GET    /entities/{entity_id}                      -- detail (any user)
  PUT    /entities/{entity_id}                      -- profile update (admin or owner)
  DELETE /entities/{entity_id}                      -- delete (admin)
  PUT    /entities/{entity_id}/verification         -- single decision (admin)
  PUT    /entities/{entity_id}/reputation           -- record a review rating (admin)

Handlers are plain `def`: FastAPI runs them in its worker thread pool, so
the blocking store calls and email sends do not stall the event loop.

Domain errors (ValidationError, NotFoundError, ConflictError, ...) are not
caught here. They propagate to the AdBondError handler in api/main.py,
which renders the error envelope.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.limiter import limiter
from api.models import (
    BulkVerificationResponse,
    BulkVerificationUpdate,
    EntityDetailResponse,
    EntityDraft,
    EntityPublicRow,
    EntityRegister,
    EntityResponse,
    EntityUpdate,
    EntityUpdateResponse,
    MetadataTemplateResponse,
    PendingPageResponse,
    PublicListResponse,
    PublicPageResponse,
    RegisterResponse,
    ReputationResponse,
    ReputationUpdate,
    StatisticsResponse,
    ValidateResponse,
    VerificationResponse,
    VerificationUpdate,
)
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from auth.store import UserStore
from core.errors import ForeignKeyError, NotFoundError, ValidationError
from entities.metadata import default_metadata, required_fields
from entities.models import CONTACT_METHODS, ENTITY_TYPES, NewEntity
from entities.store import EntityStore
from entities.verification import VerificationWorkflow

router = APIRouter()

_MIN_DESCRIPTION_LENGTH = 50


def _check_entity_type(entity_type: str) -> None:
    if entity_type not in ENTITY_TYPES:
        raise ValidationError(
            "Invalid entity type. Must be one of: advertiser, affiliate, network",
            errors=["entity_type"],
        )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit("20/minute")
@router.post("/entities/register", response_model=RegisterResponse, status_code=201)
def register_entity(request: Request, body: EntityRegister) -> RegisterResponse:
    """Self-register an advertiser, affiliate, or network.

    The entity is stored as pending and the admin inbox is notified. A failed
    admin email is logged and does not fail the registration.
    """
    workflow: VerificationWorkflow = request.app.state.workflow
    new = NewEntity(
        entity_type=body.entity_type.value,
        name=body.name,
        email=body.email,
        website=body.website,
        description=body.description,
        contact_info=body.contact_info,
        entity_metadata=body.entity_metadata,
        secondary_email=body.secondary_email,
        additional_notes=body.additional_notes,
        how_you_heard=body.how_you_heard,
    )
    entity, _sent = workflow.register(new)
    return RegisterResponse(
        message="Entity registered successfully. Pending verification.",
        entity=EntityResponse.from_entity(entity),
    )


@router.post("/entities/validate", response_model=ValidateResponse)
def validate_entity(request: Request, body: EntityDraft) -> ValidateResponse:
    """Check a registration draft without saving it.

    errors are the problems that would make /register fail; warnings are
    advisory (thin description, suspicious LinkedIn link, zero offers or
    revenue).
    """
    entity_store: EntityStore = request.app.state.entity_store
    errors: list[str] = []
    warnings: list[str] = []

    type_ok = body.entity_type in ENTITY_TYPES
    if not type_ok:
        errors.append("Invalid entity type. Must be one of: advertiser, affiliate, network")

    for name in ("name", "email", "website", "description"):
        if not getattr(body, name):
            errors.append(f"{name} is required")

    contact = body.contact_info
    if not any(contact.get(k) for k in CONTACT_METHODS):
        errors.append("At least one contact method is required (phone, telegram, teams, linkedin, or address)")

    metadata = body.entity_metadata
    if type_ok:
        missing = [f for f in required_fields(body.entity_type) if f not in metadata]
        if missing:
            errors.append(f"Missing required fields for {body.entity_type}: {', '.join(missing)}")

    if body.email and entity_store.get_by_email(body.email) is not None:
        errors.append("Entity already exists with this email")

    if body.description and len(body.description) < _MIN_DESCRIPTION_LENGTH:
        warnings.append("Description is quite short. Consider adding more details.")
    linkedin = contact.get("linkedin")
    if linkedin and "linkedin.com" not in linkedin:
        warnings.append("LinkedIn URL format may be incorrect")
    if body.entity_type == "network" and metadata.get("offers_available") == 0:
        warnings.append("No offers available. Consider adding offer information.")
    if body.entity_type == "affiliate" and metadata.get("monthly_revenue") == 0:
        warnings.append("Monthly revenue is 0. This may affect your verification.")

    return ValidateResponse(is_valid=not errors, errors=errors, warnings=warnings)


@router.get("/entities/public", response_model=PublicListResponse)
def list_public_entities(request: Request, entity_type: str | None = None) -> PublicListResponse:
    """Approved, public entities, optionally filtered by type."""
    if entity_type is not None:
        _check_entity_type(entity_type)
    entity_store: EntityStore = request.app.state.entity_store
    entities = entity_store.list_public(entity_type)
    return PublicListResponse(
        entities=[EntityPublicRow.from_entity(e) for e in entities],
        count=len(entities),
    )


@router.get("/entities/type/{entity_type}", response_model=PublicPageResponse)
def list_entities_by_type(request: Request, entity_type: str, page: int = 1, limit: int = 10) -> PublicPageResponse:
    """One page of approved, public entities of a single type."""
    _check_entity_type(entity_type)
    entity_store: EntityStore = request.app.state.entity_store
    result = entity_store.list_by_type(entity_type, page=page, limit=min(limit, 100))
    return PublicPageResponse(
        entities=[EntityPublicRow.from_entity(e) for e in result.entities],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/entities/metadata/template/{entity_type}", response_model=MetadataTemplateResponse)
def metadata_template(entity_type: str) -> MetadataTemplateResponse:
    """Blank metadata object and required keys for a registration form."""
    _check_entity_type(entity_type)
    return MetadataTemplateResponse(
        entity_type=entity_type,
        required_fields=required_fields(entity_type),
        template=default_metadata(entity_type),
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/entities/statistics", response_model=StatisticsResponse)
def entity_statistics(request: Request, current_user: User = Depends(get_current_user)) -> StatisticsResponse:
    """Entity counts by type and verification status."""
    entity_store: EntityStore = request.app.state.entity_store
    return StatisticsResponse(**entity_store.get_statistics())


# ---------------------------------------------------------------------------
# Admin review queue (static paths -- must be before /entities/{entity_id})
# ---------------------------------------------------------------------------


@router.get("/entities/admin/pending-verification", response_model=PendingPageResponse)
def pending_verification(
    request: Request,
    page: int = 1,
    limit: int = 10,
    current_user: User = Depends(require_admin),
) -> PendingPageResponse:
    """Entities awaiting a decision, oldest first."""
    entity_store: EntityStore = request.app.state.entity_store
    result = entity_store.list_pending(page=page, limit=min(limit, 100))
    return PendingPageResponse(
        entities=[EntityResponse.from_entity(e) for e in result.entities],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.put("/entities/admin/bulk-verification", response_model=BulkVerificationResponse)
def bulk_verification(
    request: Request,
    body: BulkVerificationUpdate,
    current_user: User = Depends(require_admin),
) -> BulkVerificationResponse:
    """Apply one decision to many entities.

    updated_entities lists the entities whose status actually changed.
    account_creation_results carries one record per existing entity. A
    failure for one entity (provisioning, email) is reported in its record
    and does not affect the others.
    """
    workflow: VerificationWorkflow = request.app.state.workflow
    outcomes = workflow.decide_bulk(body.entity_ids, body.verification_status, current_user.id, body.admin_notes)
    updated = [EntityResponse.from_entity(o.entity) for o in outcomes if o.changed]
    return BulkVerificationResponse(
        message=f"{len(updated)} entities updated to {body.verification_status}",
        updated_entities=updated,
        verification_status=body.verification_status,
        account_creation_results=[o.as_result() for o in outcomes],
    )


# ---------------------------------------------------------------------------
# Single-entity endpoints
# ---------------------------------------------------------------------------


@router.get("/entities/{entity_id}", response_model=EntityDetailResponse)
def get_entity(
    request: Request,
    entity_id: str,
    current_user: User = Depends(get_current_user),
) -> EntityDetailResponse:
    entity_store: EntityStore = request.app.state.entity_store
    entity = entity_store.get_by_id(entity_id)
    if entity is None:
        raise NotFoundError("Entity not found")
    return EntityDetailResponse(entity=EntityResponse.from_entity(entity))


@router.put("/entities/{entity_id}", response_model=EntityUpdateResponse)
def update_entity(
    request: Request,
    entity_id: str,
    body: EntityUpdate,
    current_user: User = Depends(get_current_user),
) -> EntityUpdateResponse:
    """Update an entity's profile. Admins may edit any entity, users only their own.

    Verification status, reputation and type are not editable here.
    """
    if current_user.role != "admin" and current_user.entity_id != entity_id:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You can only update your own entity."},
        )
    entity_store: EntityStore = request.app.state.entity_store
    updated = entity_store.update_entity(entity_id, **body.model_dump(exclude_none=True))
    return EntityUpdateResponse(message="Entity updated successfully", entity=EntityResponse.from_entity(updated))


@router.delete("/entities/{entity_id}", status_code=204)
def delete_entity(
    request: Request,
    entity_id: str,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete an entity. Refused while a user account is still linked to it."""
    entity_store: EntityStore = request.app.state.entity_store
    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_entity_id(entity_id) is not None:
        raise ForeignKeyError(
            "Cannot delete entity with a linked user account. Delete the user first.",
            errors=["entity_id"],
        )
    if not entity_store.delete_entity(entity_id):
        raise NotFoundError("Entity not found")
    return Response(status_code=204)


@router.put("/entities/{entity_id}/verification", response_model=VerificationResponse)
def update_verification(
    request: Request,
    entity_id: str,
    body: VerificationUpdate,
    current_user: User = Depends(require_admin),
) -> VerificationResponse:
    """Approve, reject, hold, or reset an entity.

    The status change is always applied once validated. Account provisioning
    and email results are reported in `result`; their failure never turns
    into an error response.
    """
    workflow: VerificationWorkflow = request.app.state.workflow
    outcome = workflow.decide(entity_id, body.verification_status, current_user.id, body.admin_notes)
    return VerificationResponse(
        message=outcome.message or f"Entity verification status updated to {body.verification_status}",
        entity=EntityResponse.from_entity(outcome.entity),
        result=outcome.as_result(),
    )


@router.put("/entities/{entity_id}/reputation", response_model=ReputationResponse)
def update_reputation(
    request: Request,
    entity_id: str,
    body: ReputationUpdate,
    current_user: User = Depends(require_admin),
) -> ReputationResponse:
    """Fold one review rating into the entity's running average."""
    entity_store: EntityStore = request.app.state.entity_store
    entity = entity_store.get_by_id(entity_id)
    if entity is None:
        raise NotFoundError("Entity not found")
    updated = entity_store.update_reputation(entity_id, body.new_rating)
    return ReputationResponse(
        message="Reputation updated successfully",
        entity_id=entity_id,
        previous_score=entity.reputation_score,
        new_score=updated.reputation_score,
        total_reviews=updated.total_reviews,
    )
