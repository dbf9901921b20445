"""
entities/store.py -- SQLAlchemy-backed persistence layer for marketplace entities.

Uses SQLAlchemy Core (not ORM) so the dataclasses in entities/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change, not a rewrite.

Pattern: Repository + Data Mapper. EntityStore is the repository; the
_row_to_entity function is the mapper. Route handlers and the verification
workflow never touch SQL directly.

Security: all queries use bound parameters. No f-strings in SQL.

Verification status writes are conditional:

    UPDATE entities SET verification_status = :new ...
    WHERE id = :id AND verification_status != :new
    RETURNING *

The returned row is the authoritative "this call moved the status" signal.
Two concurrent approvals of the same entity cannot both get a row back, so
only one of them goes on to provision an account and send the welcome email.

Usage:
    store = EntityStore("sqlite:///adbond.db")
    entity = store.create_entity(new_entity)
    transition = store.set_verification_status(entity.id, "approved", admin_id)
    store.mark_account_created(entity.id)
    store.close()
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import ConflictError, NotFoundError, ValidationError
from entities.metadata import metadata_to_dict, parse_metadata
from entities.models import (
    CONTACT_METHODS,
    ENTITY_TYPES,
    VERIFICATION_STATUSES,
    ContactInfo,
    Entity,
    EntityPage,
    NewEntity,
    StatusTransition,
)

logger = logging.getLogger("adbond.entities")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_entities = Table(
    "entities",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("entity_type", String(20), nullable=False, index=True),
    Column("name", String(200), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("secondary_email", String(255)),
    Column("website", String(500), nullable=False),
    Column("contact_info", Text, nullable=False),  # JSON object
    Column("description", Text, nullable=False),
    Column("additional_notes", Text),
    Column("how_you_heard", Text),
    Column("entity_metadata", Text, nullable=False),  # JSON object, shape keyed by entity_type
    Column("verification_status", String(20), nullable=False, server_default="pending", index=True),
    Column("approved_by", String(36)),
    Column("user_account_created", Integer, nullable=False, server_default="0"),
    Column("reputation_score", Float, nullable=False, server_default="0"),
    Column("total_reviews", Integer, nullable=False, server_default="0"),
    Column("is_public", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Profile fields update_entity() accepts. entity_type is immutable and the
# trust fields only change through their dedicated methods.
_UPDATABLE_FIELDS = {
    "name",
    "email",
    "secondary_email",
    "website",
    "contact_info",
    "description",
    "additional_notes",
    "how_you_heard",
    "entity_metadata",
    "is_public",
}

_REQUIRED_TEXT_FIELDS = ("name", "email", "website", "description")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def parse_contact_info(raw: Any) -> ContactInfo:
    """Build ContactInfo from a raw mapping, requiring at least one method."""
    if not isinstance(raw, dict):
        raise ValidationError("contact_info must be an object", errors=["contact_info"])
    contact = ContactInfo(**{k: raw.get(k) for k in CONTACT_METHODS})
    if not contact.has_any():
        raise ValidationError(
            "At least one contact method is required (phone, telegram, teams, linkedin, or address)",
            errors=["contact_info"],
        )
    return contact


def validate_new_entity(new: NewEntity) -> tuple[ContactInfo, Any]:
    """Validate registration input. Returns (contact_info, metadata variant).

    Checks run in order and stop at the first failing group so that the
    errors list of a metadata failure names exactly the missing metadata keys.
    """
    if new.entity_type not in ENTITY_TYPES:
        raise ValidationError(
            "Invalid entity type. Must be one of: advertiser, affiliate, network",
            errors=["entity_type"],
        )
    missing = [name for name in _REQUIRED_TEXT_FIELDS if not (getattr(new, name) or "").strip()]
    if missing:
        raise ValidationError("All required fields must be provided", errors=missing)
    contact = parse_contact_info(new.contact_info)
    entity_metadata = parse_metadata(new.entity_type, new.entity_metadata)
    return contact, entity_metadata


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _status_values(status: str, admin_id: Optional[str]) -> dict:
    """Column values for a verification status write.

    approved_by is written only by an approval; every other transition leaves
    it as it was, so a later rejection still records who approved originally.
    """
    values: dict = {"verification_status": status, "updated_at": _now_iso()}
    if status == "approved":
        values["approved_by"] = admin_id
    return values


def check_status(status: str) -> None:
    if status not in VERIFICATION_STATUSES:
        raise ValidationError(
            "Invalid verification status. Must be one of: pending, approved, rejected, on_hold",
            errors=["verification_status"],
        )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class EntityStore:
    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # SQLite requires check_same_thread=False when used from FastAPI's
            # worker threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, entity_id: str) -> Optional[Entity]:
        """Return the entity with this id, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_entities.select().where(_entities.c.id == entity_id)).fetchone()
        return _row_to_entity(row) if row is not None else None

    def get_by_email(self, email: str) -> Optional[Entity]:
        """Return the entity registered with this primary email, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_entities.select().where(_entities.c.email == _normalize_email(email))).fetchone()
        return _row_to_entity(row) if row is not None else None

    def list_pending(self, page: int = 1, limit: int = 10) -> EntityPage:
        """Entities awaiting verification, oldest registration first."""
        where = _entities.c.verification_status == "pending"
        return self._page(where, [_entities.c.created_at.asc()], page, limit)

    def list_public(self, entity_type: Optional[str] = None) -> list[Entity]:
        """Approved, public entities for the open directory, best reputation first."""
        where = (_entities.c.verification_status == "approved") & (_entities.c.is_public == 1)
        if entity_type:
            where = where & (_entities.c.entity_type == entity_type)
        stmt = _entities.select().where(where).order_by(_entities.c.reputation_score.desc(), _entities.c.name)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entity(r) for r in rows]

    def list_by_type(self, entity_type: str, page: int = 1, limit: int = 10) -> EntityPage:
        """One page of approved, public entities of a single classification."""
        where = (
            (_entities.c.entity_type == entity_type)
            & (_entities.c.verification_status == "approved")
            & (_entities.c.is_public == 1)
        )
        order = [_entities.c.reputation_score.desc(), _entities.c.created_at.desc()]
        return self._page(where, order, page, limit)

    def get_statistics(self) -> dict:
        """Counts per (entity_type, verification_status) plus overall totals."""
        by_group = select(
            _entities.c.entity_type,
            _entities.c.verification_status,
            func.count().label("entity_count"),
            func.avg(_entities.c.reputation_score).label("avg_reputation"),
        ).group_by(_entities.c.entity_type, _entities.c.verification_status)
        overall = select(
            func.count().label("total_entities"),
            func.sum(_entities.c.is_public).label("public_entities"),
            func.count().filter(_entities.c.verification_status == "approved").label("approved_entities"),
            func.avg(_entities.c.reputation_score).label("avg_reputation"),
        )
        with self.engine.connect() as conn:
            groups = conn.execute(by_group.order_by(_entities.c.entity_type, _entities.c.verification_status))
            rows = groups.fetchall()
            totals = conn.execute(overall).fetchone()
        return {
            "by_type_and_status": [
                {
                    "entity_type": r.entity_type,
                    "verification_status": r.verification_status,
                    "count": r.entity_count,
                    "avg_reputation": round(r.avg_reputation or 0.0, 2),
                }
                for r in rows
            ],
            "overall": {
                "total_entities": totals.total_entities or 0,
                "public_entities": totals.public_entities or 0,
                "approved_entities": totals.approved_entities or 0,
                "avg_reputation": round(totals.avg_reputation or 0.0, 2),
            },
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_entity(self, new: NewEntity) -> Entity:
        """Validate and insert a self-registered entity. Always starts pending.

        Raises ValidationError for bad input and ConflictError if the email is
        already registered (checked up front and again via the UNIQUE
        constraint, which catches concurrent registrations).
        """
        contact, entity_metadata = validate_new_entity(new)
        email = _normalize_email(new.email)
        if self.get_by_email(email) is not None:
            raise ConflictError("Entity already exists with this email", errors=["email"])

        entity_id = str(uuid.uuid4())
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _entities.insert().values(
                        id=entity_id,
                        entity_type=new.entity_type,
                        name=new.name.strip(),
                        email=email,
                        secondary_email=new.secondary_email,
                        website=new.website.strip(),
                        contact_info=json.dumps(contact.__dict__),
                        description=new.description,
                        additional_notes=new.additional_notes,
                        how_you_heard=new.how_you_heard,
                        entity_metadata=json.dumps(metadata_to_dict(entity_metadata)),
                        verification_status="pending",
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("Entity already exists with this email", errors=["email"]) from exc

        created = self.get_by_id(entity_id)
        logger.info("Entity registered: %s (%s) status=%s", created.name, created.id, created.verification_status)
        return created

    def update_entity(self, entity_id: str, **fields) -> Entity:
        """Update profile fields. None values are ignored (partial update).

        contact_info and entity_metadata are revalidated; metadata is checked
        against the entity's existing (immutable) type. A changed email must
        not belong to another entity.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown entity fields: {unknown!r}")
        fields = {k: v for k, v in fields.items() if v is not None}

        existing = self.get_by_id(entity_id)
        if existing is None:
            raise NotFoundError("Entity not found")

        values: dict = {}
        if "email" in fields:
            email = _normalize_email(fields.pop("email"))
            if email != existing.email:
                other = self.get_by_email(email)
                if other is not None and other.id != entity_id:
                    raise ConflictError("Email already taken by another entity", errors=["email"])
            values["email"] = email
        if "contact_info" in fields:
            values["contact_info"] = json.dumps(parse_contact_info(fields.pop("contact_info")).__dict__)
        if "entity_metadata" in fields:
            parsed = parse_metadata(existing.entity_type, fields.pop("entity_metadata"))
            values["entity_metadata"] = json.dumps(metadata_to_dict(parsed))
        if "is_public" in fields:
            values["is_public"] = 1 if fields.pop("is_public") else 0
        values.update(fields)
        if not values:
            return existing
        values["updated_at"] = _now_iso()

        try:
            with self.engine.connect() as conn:
                conn.execute(_entities.update().where(_entities.c.id == entity_id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("Email already taken by another entity", errors=["email"]) from exc
        return self.get_by_id(entity_id)

    def set_verification_status(self, entity_id: str, status: str, admin_id: Optional[str]) -> StatusTransition:
        """Move an entity to `status`. Raises NotFoundError if it does not exist.

        The UPDATE only matches when the current status differs, so
        StatusTransition.changed tells the caller whether this call performed
        the transition. When the entity is already in `status` nothing is
        written (approved_by keeps the first approver).
        """
        check_status(status)
        stmt = (
            _entities.update()
            .where((_entities.c.id == entity_id) & (_entities.c.verification_status != status))
            .values(**_status_values(status, admin_id))
            .returning(*_entities.c)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            conn.commit()
        if rows:
            return StatusTransition(entity=_row_to_entity(rows[0]), changed=True)

        entity = self.get_by_id(entity_id)
        if entity is None:
            raise NotFoundError("Entity not found")
        return StatusTransition(entity=entity, changed=False)

    def bulk_set_verification_status(
        self, entity_ids: list[str], status: str, admin_id: Optional[str]
    ) -> list[StatusTransition]:
        """Apply one status to many entities with a single UPDATE.

        Returns a StatusTransition per existing id, in request order, with
        duplicates collapsed. Ids that match no entity are skipped silently.
        """
        check_status(status)
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        stmt = (
            _entities.update()
            .where(_entities.c.id.in_(ids) & (_entities.c.verification_status != status))
            .values(**_status_values(status, admin_id))
            .returning(_entities.c.id)
        )
        with self.engine.connect() as conn:
            changed_ids = {r.id for r in conn.execute(stmt).fetchall()}
            conn.commit()
            rows = conn.execute(_entities.select().where(_entities.c.id.in_(ids))).fetchall()

        by_id = {r.id: _row_to_entity(r) for r in rows}
        return [StatusTransition(entity=by_id[i], changed=i in changed_ids) for i in ids if i in by_id]

    def mark_account_created(self, entity_id: str) -> Optional[Entity]:
        """Flag that the entity's user account exists. Idempotent."""
        with self.engine.connect() as conn:
            conn.execute(
                _entities.update()
                .where(_entities.c.id == entity_id)
                .values(user_account_created=1, updated_at=_now_iso())
            )
            conn.commit()
        return self.get_by_id(entity_id)

    def update_reputation(self, entity_id: str, rating: float) -> Entity:
        """Fold one review rating (1-5) into the running average.

        The new average is computed inside the UPDATE so concurrent reviews
        cannot overwrite each other's contribution.
        """
        if not 1 <= rating <= 5:
            raise ValidationError("new_rating must be between 1 and 5", errors=["new_rating"])
        c = _entities.c
        with self.engine.connect() as conn:
            result = conn.execute(
                _entities.update()
                .where(c.id == entity_id)
                .values(
                    reputation_score=func.round((c.reputation_score * c.total_reviews + rating) / (c.total_reviews + 1), 2),
                    total_reviews=c.total_reviews + 1,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("Entity not found")
        return self.get_by_id(entity_id)

    def delete_entity(self, entity_id: str) -> bool:
        """Permanently delete an entity. Returns True if deleted, False if not found.

        Callers must make sure no user account still points at the entity
        (see UserStore.get_by_entity_id) before calling this.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_entities.delete().where(_entities.c.id == entity_id))
            conn.commit()
        return result.rowcount > 0

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Entity database health check failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _page(self, where, order_by: list, page: int, limit: int) -> EntityPage:
        page = max(page, 1)
        limit = max(limit, 1)
        stmt = _entities.select().where(where).order_by(*order_by).limit(limit).offset((page - 1) * limit)
        count_stmt = select(func.count()).select_from(_entities).where(where)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
            total = conn.execute(count_stmt).scalar() or 0
        return EntityPage(entities=[_row_to_entity(r) for r in rows], total=total, page=page, limit=limit)


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_entity(row) -> Entity:
    contact_raw = json.loads(row.contact_info) if row.contact_info else {}
    return Entity(
        id=row.id,
        entity_type=row.entity_type,
        name=row.name,
        email=row.email,
        secondary_email=row.secondary_email,
        website=row.website,
        contact_info=ContactInfo(**{k: contact_raw.get(k) for k in CONTACT_METHODS}),
        description=row.description,
        additional_notes=row.additional_notes,
        how_you_heard=row.how_you_heard,
        entity_metadata=parse_metadata(row.entity_type, json.loads(row.entity_metadata)),
        verification_status=row.verification_status,
        approved_by=row.approved_by,
        user_account_created=bool(row.user_account_created),
        reputation_score=float(row.reputation_score or 0.0),
        total_reviews=row.total_reviews or 0,
        is_public=bool(row.is_public),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
